"""
Ciclo de vida da Ordem de Serviço.

Fases::

    Aguardando Avaliação Técnica -> Avaliado, Aguardando Autorização
        -> Autorizado, Aguardando Peça -> Em Execução -> Concluída
    (qualquer fase não terminal) -> Cancelada

O avanço automático (``advance_phase``) anda uma fase por vez. Na edição o
usuário pode escolher qualquer fase não terminal. Só as fases terminais têm
pré-condições: concluir exige conclusão técnica. Depois de concluída ou
cancelada, a OS aceita apenas observações e anexos.

Toda escrita de OS passa por ``run_transaction`` (escrita condicional na
coluna ``version``) e recalcula ``estimated_travel_cost``.
"""

import logging
import time
from datetime import date
from typing import Callable, Dict, FrozenSet, Optional, Tuple

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from fleet_service import config
from fleet_service.deadlines import evaluate_deadline
from fleet_service.distance import DistanceEstimate, DistanceStatus, calculate_distance
from fleet_service.errors import (
    ServiceOrderNotFoundError,
    TerminalPhaseError,
    ValidationError,
)
from fleet_service.models import (
    TERMINAL_PHASES,
    Budget,
    Customer,
    Equipment,
    PartsRequisition,
    ServiceOrder,
    ServiceOrderPhase,
    Technician,
    Vehicle,
)
from fleet_service.schemas import ServiceOrderCreate
from fleet_service.sequences import next_service_order_number
from fleet_service.storage import LocalBlobStore, safe_filename
from fleet_service.transactions import Transaction, run_transaction
from fleet_service.travel import estimate_travel_cost, round_trip_distance, round_trip_tolls

logger = logging.getLogger(__name__)

MAX_MEDIA_FILES = 5

PHASE_SEQUENCE = (
    ServiceOrderPhase.AWAITING_EVALUATION,
    ServiceOrderPhase.AWAITING_AUTHORIZATION,
    ServiceOrderPhase.AWAITING_PARTS,
    ServiceOrderPhase.IN_PROGRESS,
    ServiceOrderPhase.COMPLETED,
)

EDITABLE_FIELDS: FrozenSet[str] = frozenset({
    "customer_id", "equipment_id", "technician_id", "vehicle_id", "phase",
    "service_type", "requester_name", "start_date", "end_date", "description",
    "notes", "technical_conclusion", "estimated_travel_distance_km",
    "estimated_toll_costs", "media_urls",
})
TERMINAL_EDITABLE_FIELDS: FrozenSet[str] = frozenset({"notes", "media_urls"})

_REFERENCES = {
    "customer_id": (Customer, "Cliente"),
    "equipment_id": (Equipment, "Máquina"),
    "technician_id": (Technician, "Técnico"),
    "vehicle_id": (Vehicle, "Veículo"),
}


# --- Máquina de estados ---

def is_terminal(phase) -> bool:
    return ServiceOrderPhase(phase) in TERMINAL_PHASES


def editable_fields(phase) -> FrozenSet[str]:
    """Campos que a interface deve manter habilitados nesta fase."""
    return TERMINAL_EDITABLE_FIELDS if is_terminal(phase) else EDITABLE_FIELDS


def next_phase(phase) -> Optional[ServiceOrderPhase]:
    phase = ServiceOrderPhase(phase)
    if phase in TERMINAL_PHASES:
        return None
    return PHASE_SEQUENCE[PHASE_SEQUENCE.index(phase) + 1]


def closing_end_date(end_date: Optional[date], today: Optional[date] = None) -> date:
    """Data de encerramento: mantém o prazo se já passou, senão usa hoje."""
    today = today or date.today()
    if end_date is not None and end_date <= today:
        return end_date
    return today


def transition_changes(order: ServiceOrder, target, conclusion: Optional[str] = None,
                       today: Optional[date] = None) -> Dict[str, object]:
    """
    Campos a gravar para levar ``order`` até ``target``.

    Levanta ``TerminalPhaseError`` se a OS já estiver encerrada e
    ``ValidationError`` se faltar a conclusão técnica.
    """
    target = ServiceOrderPhase(target)
    if is_terminal(order.phase):
        raise TerminalPhaseError(order.order_number, order.phase.value, ["phase"])
    if target == order.phase:
        return {}
    if target is ServiceOrderPhase.COMPLETED:
        text = conclusion if conclusion is not None else order.technical_conclusion
        text = (text or "").strip()
        if not text:
            raise ValidationError("Informe a conclusão técnica para concluir a OS.",
                                  field="technical_conclusion")
        return {
            "phase": target,
            "technical_conclusion": text,
            "end_date": closing_end_date(order.end_date, today),
        }
    if target is ServiceOrderPhase.CANCELLED:
        return {"phase": target, "end_date": closing_end_date(order.end_date, today)}
    return {"phase": target}


# --- Campos derivados ---

def travel_cost_for(session: Session, vehicle_id: Optional[int], distance_km: Optional[float],
                    toll_costs: Optional[float]) -> Optional[float]:
    cost_per_km = None
    if vehicle_id is not None:
        vehicle = session.get(Vehicle, vehicle_id)
        if vehicle is not None:
            cost_per_km = vehicle.cost_per_kilometer
    return estimate_travel_cost(distance_km, cost_per_km, toll_costs)


def _with_travel_cost(session: Session, order: ServiceOrder, values: dict) -> dict:
    def current(name):
        return values[name] if name in values else getattr(order, name)

    values["estimated_travel_cost"] = travel_cost_for(
        session,
        current("vehicle_id"),
        current("estimated_travel_distance_km"),
        current("estimated_toll_costs"),
    )
    return values


def _check_references(session: Session, values: dict) -> None:
    for field, (model, label) in _REFERENCES.items():
        ident = values.get(field)
        if ident is not None and session.get(model, ident) is None:
            raise ValidationError(f"{label} não encontrado.", field=field)


def load_order(tx: Transaction, order_id: int) -> ServiceOrder:
    order = tx.get(ServiceOrder, order_id)
    if order is None:
        raise ServiceOrderNotFoundError(order_id)
    return order


# --- Operações ---

def create_service_order_in(tx: Transaction, data: ServiceOrderCreate) -> ServiceOrder:
    """Abre uma OS dentro de uma transação já iniciada, sempre na fase inicial."""
    values = data.model_dump()
    _check_references(tx.session, values)
    order = ServiceOrder(
        order_number=next_service_order_number(tx.session),
        phase=ServiceOrderPhase.AWAITING_EVALUATION,
        **values,
    )
    order.estimated_travel_cost = travel_cost_for(
        tx.session, order.vehicle_id, order.estimated_travel_distance_km,
        order.estimated_toll_costs,
    )
    return tx.add(order)


def create_service_order(engine: Engine, data: ServiceOrderCreate) -> ServiceOrder:
    order = run_transaction(engine, lambda tx: create_service_order_in(tx, data))
    logger.info("OS %s criada", order.order_number)
    return order


def _write(engine: Engine, order_id: int,
           build: Callable[[Transaction, ServiceOrder], dict]) -> ServiceOrder:
    def work(tx: Transaction) -> ServiceOrder:
        order = load_order(tx, order_id)
        values = build(tx, order)
        if not is_terminal(order.phase):
            values = _with_travel_cost(tx.session, order, values)
        return tx.update(order, **values)

    return run_transaction(engine, work)


def update_service_order(engine: Engine, order_id: int, changes: dict,
                         today: Optional[date] = None) -> ServiceOrder:
    """
    Edição parcial da OS.

    ``estimated_travel_cost`` é ignorado se vier em ``changes``. Em OS
    encerrada, apenas campos liberados por ``editable_fields`` podem mudar.
    """
    changes = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS and k != "media_urls"}

    def build(tx: Transaction, order: ServiceOrder) -> dict:
        modified = {k: v for k, v in changes.items() if getattr(order, k) != v}
        if is_terminal(order.phase):
            blocked = sorted(set(modified) - TERMINAL_EDITABLE_FIELDS)
            if blocked:
                raise TerminalPhaseError(order.order_number, order.phase.value, blocked)
            return modified
        for field in ("customer_id", "equipment_id", "description", "service_type"):
            if field in modified and not modified[field]:
                raise ValidationError(f"Campo obrigatório: {field}", field=field)
        _check_references(tx.session, modified)
        target = modified.pop("phase", None)
        if target is not None:
            modified.update(transition_changes(
                order, target, modified.get("technical_conclusion"), today,
            ))
        return modified

    order = _write(engine, order_id, build)
    logger.info("OS %s atualizada", order.order_number)
    return order


def advance_phase(engine: Engine, order_id: int, today: Optional[date] = None) -> ServiceOrder:
    """Move a OS para a próxima fase da sequência."""
    def build(tx: Transaction, order: ServiceOrder) -> dict:
        target = next_phase(order.phase)
        if target is None:
            raise TerminalPhaseError(order.order_number, order.phase.value, ["phase"])
        return transition_changes(order, target, today=today)

    order = _write(engine, order_id, build)
    logger.info("OS %s avançou para '%s'", order.order_number, order.phase.value)
    return order


def complete_service_order(engine: Engine, order_id: int, technical_conclusion: str,
                           today: Optional[date] = None) -> ServiceOrder:
    if not (technical_conclusion or "").strip():
        raise ValidationError("Informe a conclusão técnica para concluir a OS.",
                              field="technical_conclusion")

    def build(tx: Transaction, order: ServiceOrder) -> dict:
        return transition_changes(order, ServiceOrderPhase.COMPLETED, technical_conclusion, today)

    order = _write(engine, order_id, build)
    logger.info("OS %s concluída", order.order_number)
    return order


def cancel_service_order(engine: Engine, order_id: int,
                         today: Optional[date] = None) -> ServiceOrder:
    def build(tx: Transaction, order: ServiceOrder) -> dict:
        return transition_changes(order, ServiceOrderPhase.CANCELLED, today=today)

    order = _write(engine, order_id, build)
    logger.info("OS %s cancelada", order.order_number)
    return order


def delete_service_order(session: Session, blob_store: LocalBlobStore, order_id: int) -> None:
    """Exclui a OS, as requisições de peças dela e todos os arquivos anexados."""
    order = session.get(ServiceOrder, order_id)
    if order is None:
        raise ServiceOrderNotFoundError(order_id)
    number = order.order_number
    urls = list(order.media_urls or [])
    linked = session.exec(
        select(PartsRequisition).where(PartsRequisition.service_order_id == order_id)
    ).all()
    for requisition in linked:
        urls.extend(item.image_url for item in requisition.parsed_items() if item.image_url)
        session.delete(requisition)
    # Orçamentos continuam existindo, apenas sem a OS
    for budget in session.exec(select(Budget).where(Budget.service_order_id == order_id)).all():
        budget.service_order_id = None
        budget.version += 1
        session.add(budget)
    # Requisições primeiro: a OS é referenciada por chave estrangeira
    session.flush()
    session.delete(order)
    session.commit()
    for url in urls:
        blob_store.delete(url)
    logger.info("OS %s excluída (%d requisições, %d arquivos)", number, len(linked), len(urls))


# --- Anexos ---

def add_media(engine: Engine, blob_store: LocalBlobStore, order_id: int, data: bytes,
              filename: str) -> ServiceOrder:
    """Anexa um arquivo à OS; permitido também em OS encerrada."""
    blob_store.ensure_available()
    path = f"service_order_media/{order_id}/{int(time.time() * 1000)}-{safe_filename(filename)}"
    url = blob_store.upload(data, path)

    def build(tx: Transaction, order: ServiceOrder) -> dict:
        urls = list(order.media_urls or [])
        if len(urls) >= MAX_MEDIA_FILES:
            raise ValidationError(f"Máximo de {MAX_MEDIA_FILES} arquivos de mídia.",
                                  field="media_urls")
        return {"media_urls": urls + [url]}

    try:
        return _write(engine, order_id, build)
    except Exception:
        blob_store.delete(url)
        raise


def remove_media(engine: Engine, blob_store: LocalBlobStore, order_id: int,
                 url: str) -> ServiceOrder:
    def build(tx: Transaction, order: ServiceOrder) -> dict:
        urls = list(order.media_urls or [])
        if url not in urls:
            raise ValidationError("Arquivo não pertence a esta OS.", field="media_urls")
        urls.remove(url)
        return {"media_urls": urls}

    order = _write(engine, order_id, build)
    blob_store.delete(url)
    return order


# --- Estimativa de deslocamento ---

def apply_distance_estimate(engine: Engine, order_id: int,
                            origin_address: Optional[str] = None,
                            estimator: Callable[[str, str], DistanceEstimate] = calculate_distance,
                            ) -> Tuple[ServiceOrder, DistanceEstimate]:
    """
    Estima distância (ida e volta) e pedágio até o cliente da OS.

    Não sobrescreve distância já informada pelo operador; o pedágio estimado
    só é usado se nenhum pedágio tiver sido informado.
    """
    origin = origin_address if origin_address is not None else config.COMPANY_ORIGIN_ADDRESS
    with Session(engine) as session:
        order = session.get(ServiceOrder, order_id)
        if order is None:
            raise ServiceOrderNotFoundError(order_id)
        if is_terminal(order.phase):
            raise TerminalPhaseError(order.order_number, order.phase.value,
                                     ["estimated_travel_distance_km"])
        if order.estimated_travel_distance_km is not None:
            return order, DistanceEstimate(None, DistanceStatus.SKIPPED)
        customer = session.get(Customer, order.customer_id)
        destination = customer.address() if customer else ""

    estimate = estimator(origin, destination)
    if not estimate.ok:
        logger.warning("Estimativa de distância da OS %s falhou: %s (%s)", order.order_number,
                       estimate.status.value, estimate.error_message)
        return order, estimate

    def build(tx: Transaction, current: ServiceOrder) -> dict:
        if current.estimated_travel_distance_km is not None:
            return {}
        values = {"estimated_travel_distance_km": round_trip_distance(estimate.distance_km)}
        if current.estimated_toll_costs is None and estimate.estimated_toll_cost:
            values["estimated_toll_costs"] = round_trip_tolls(estimate.estimated_toll_cost)
        return values

    order = _write(engine, order_id, build)
    return order, estimate


# --- Consultas ---

def list_service_orders(session: Session, phase: Optional[ServiceOrderPhase] = None):
    query = select(ServiceOrder).order_by(ServiceOrder.created_at.desc(), ServiceOrder.id.desc())
    if phase is not None:
        query = query.where(ServiceOrder.phase == phase)
    return session.exec(query).all()


def deadline_for(order: ServiceOrder, today: Optional[date] = None):
    return evaluate_deadline(order.end_date, order.phase, today)
