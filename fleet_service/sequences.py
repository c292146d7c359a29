"""
Numeração sequencial por contador nomeado.

O incremento é um ``UPDATE current_value = current_value + 1`` atômico na
mesma transação que grava o documento novo. Na primeira utilização o contador
é semeado com o maior número já existente, então bases antigas continuam a
sequência de onde pararam.
"""

import logging
import re
from typing import Callable, Iterable

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from fleet_service.models import Budget, PartsRequisition, SequenceCounter, ServiceOrder
from fleet_service.transactions import StaleWriteError

logger = logging.getLogger(__name__)

SERVICE_ORDER_SEQUENCE = "service_order"
REQUISITION_SEQUENCE = "parts_requisition"
BUDGET_SEQUENCE = "budget"

# A numeração de OS começa em 4000
SERVICE_ORDER_NUMBER_FLOOR = 3999

_REQUISITION_RE = re.compile(r"REQ-(\d+)")
_TRAILING_DIGITS_RE = re.compile(r"(\d+)$")


def max_number(values: Iterable[str], pattern: re.Pattern, floor: int = 0) -> int:
    """Maior número encontrado em ``values`` (ou ``floor``)."""
    highest = floor
    for value in values:
        match = pattern.search(value or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


def next_value(session: Session, name: str, seed: Callable[[], int]) -> int:
    result = session.exec(
        update(SequenceCounter)
        .where(SequenceCounter.name == name)
        .values(current_value=SequenceCounter.current_value + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        # Primeiro uso: outra transação pode criar o contador ao mesmo tempo
        try:
            session.add(SequenceCounter(name=name, current_value=seed() + 1))
            session.flush()
        except IntegrityError as exc:
            raise StaleWriteError(f"SequenceCounter {name}") from exc
    counter = session.get(SequenceCounter, name, populate_existing=True)
    logger.debug("Sequência %s -> %d", name, counter.current_value)
    return counter.current_value


def next_service_order_number(session: Session) -> str:
    def seed():
        numbers = session.exec(select(ServiceOrder.order_number)).all()
        return max_number(numbers, _TRAILING_DIGITS_RE, SERVICE_ORDER_NUMBER_FLOOR)

    return str(next_value(session, SERVICE_ORDER_SEQUENCE, seed))


def next_requisition_number(session: Session) -> str:
    def seed():
        numbers = session.exec(select(PartsRequisition.requisition_number)).all()
        return max_number(numbers, _REQUISITION_RE)

    return f"REQ-{next_value(session, REQUISITION_SEQUENCE, seed):04d}"


def next_budget_number(session: Session) -> str:
    def seed():
        numbers = session.exec(select(Budget.budget_number)).all()
        return max_number(numbers, _TRAILING_DIGITS_RE)

    return f"{next_value(session, BUDGET_SEQUENCE, seed):04d}"
