from datetime import date, datetime, timedelta

import pytest

from fleet_service.deadlines import DeadlineStatus, evaluate_deadline
from fleet_service.models import ServiceOrderPhase

TODAY = date(2024, 5, 10)


@pytest.mark.parametrize("offset, expected, message", [
    (-10, DeadlineStatus.OVERDUE, "Atrasada!"),
    (-1, DeadlineStatus.OVERDUE, "Atrasada!"),
    (0, DeadlineStatus.DUE_TODAY, "Vence Hoje!"),
    (1, DeadlineStatus.DUE_SOON, "Vence em Breve"),
    (2, DeadlineStatus.DUE_SOON, "Vence em Breve"),
    (3, DeadlineStatus.NONE, None),
    (30, DeadlineStatus.NONE, None),
])
def test_classifica_prazo_em_relacao_a_hoje(offset, expected, message):
    info = evaluate_deadline(TODAY + timedelta(days=offset), ServiceOrderPhase.IN_PROGRESS, TODAY)
    assert info.status is expected
    assert info.message == message


@pytest.mark.parametrize("phase", [
    ServiceOrderPhase.COMPLETED,
    ServiceOrderPhase.CANCELLED,
    "Concluída",
    "Cancelada",
])
def test_os_encerrada_nunca_tem_alerta(phase):
    assert evaluate_deadline(TODAY - timedelta(days=5), phase, TODAY).status is DeadlineStatus.NONE


def test_sem_prazo_ou_prazo_invalido():
    assert evaluate_deadline(None, ServiceOrderPhase.IN_PROGRESS, TODAY).status is DeadlineStatus.NONE
    assert evaluate_deadline("", ServiceOrderPhase.IN_PROGRESS, TODAY).status is DeadlineStatus.NONE
    assert evaluate_deadline("31/02/2024", ServiceOrderPhase.IN_PROGRESS, TODAY).status is DeadlineStatus.NONE


def test_hora_do_dia_e_ignorada():
    late_tonight = datetime(2024, 5, 10, 23, 59)
    assert evaluate_deadline(late_tonight, ServiceOrderPhase.AWAITING_PARTS, TODAY).status \
        is DeadlineStatus.DUE_TODAY
    assert evaluate_deadline("2024-05-09T08:00:00", "Em Execução", TODAY).status \
        is DeadlineStatus.OVERDUE


def test_usa_data_atual_quando_hoje_nao_informado():
    info = evaluate_deadline(date.today(), ServiceOrderPhase.AWAITING_EVALUATION)
    assert info.status is DeadlineStatus.DUE_TODAY
