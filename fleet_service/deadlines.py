from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional, Union

from fleet_service.models import TERMINAL_PHASES, ServiceOrderPhase

# Prazos até hoje + 2 dias contam como "vence em breve"
DUE_SOON_DAYS = 2


class DeadlineStatus(str, Enum):
    OVERDUE = "overdue"
    DUE_TODAY = "due_today"
    DUE_SOON = "due_soon"
    NONE = "none"


@dataclass(frozen=True)
class DeadlineInfo:
    status: DeadlineStatus
    message: Optional[str] = None


NO_DEADLINE = DeadlineInfo(DeadlineStatus.NONE)


def _as_date(value: Union[date, datetime, str, None]) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def evaluate_deadline(
    end_date: Union[date, datetime, str, None],
    phase: Union[ServiceOrderPhase, str, None],
    today: Optional[date] = None,
) -> DeadlineInfo:
    """
    Classifica a urgência do prazo de uma OS.

    Hora do dia é ignorada. OS concluídas ou canceladas, sem prazo ou com
    data inválida não têm alerta.
    """
    if getattr(phase, "value", phase) in {p.value for p in TERMINAL_PHASES}:
        return NO_DEADLINE
    deadline = _as_date(end_date)
    if deadline is None:
        return NO_DEADLINE

    today = _as_date(today) or date.today()
    if deadline < today:
        return DeadlineInfo(DeadlineStatus.OVERDUE, "Atrasada!")
    if deadline == today:
        return DeadlineInfo(DeadlineStatus.DUE_TODAY, "Vence Hoje!")
    if deadline <= today + timedelta(days=DUE_SOON_DAYS):
        return DeadlineInfo(DeadlineStatus.DUE_SOON, "Vence em Breve")
    return NO_DEADLINE
