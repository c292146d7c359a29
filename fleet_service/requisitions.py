"""
Requisições de peças: criação, triagem de itens e ações do almoxarifado.

Toda escrita de itens passa por ``item_fields``, que grava a lista de itens e
o status agregado juntos. Nenhum outro caminho altera ``status``.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from fleet_service.errors import (
    RequisitionItemNotFoundError,
    RequisitionNotFoundError,
    ValidationError,
)
from fleet_service.models import (
    TERMINAL_PHASES,
    PartsRequisition,
    PartsRequisitionItem,
    RequisitionItemStatus,
    RequisitionStatus,
    ServiceOrder,
    Technician,
)
from fleet_service.schemas import RequisitionItemCreate
from fleet_service.sequences import next_requisition_number
from fleet_service.storage import LocalBlobStore, safe_filename
from fleet_service.transactions import Transaction, run_transaction

logger = logging.getLogger(__name__)

TRIAGE_STATUSES = frozenset({RequisitionItemStatus.APPROVED, RequisitionItemStatus.REFUSED})

WAREHOUSE_STATUSES = frozenset({
    RequisitionItemStatus.AWAITING_PURCHASE,
    RequisitionItemStatus.SEPARATED,
    RequisitionItemStatus.DELIVERED,
})


def aggregate_requisition_status(statuses: Iterable) -> RequisitionStatus:
    """
    Status da requisição a partir dos status dos itens.

    Enquanto houver item "Pendente Aprovação" a requisição continua
    "Pendente"; quando todos foram triados, "Triagem Realizada".
    """
    values = [RequisitionItemStatus(s) for s in statuses]
    if not values or RequisitionItemStatus.PENDING_APPROVAL in values:
        return RequisitionStatus.PENDING
    return RequisitionStatus.TRIAGED


def item_fields(items: Sequence[PartsRequisitionItem]) -> dict:
    """Itens serializados e o status agregado correspondente."""
    return {
        "items": [item.model_dump(mode="json") for item in items],
        "status": aggregate_requisition_status(item.status for item in items),
    }


def _new_item(data: RequisitionItemCreate) -> PartsRequisitionItem:
    # Itens novos sempre entram pendentes; só a triagem muda o status
    return PartsRequisitionItem(part_name=data.part_name.strip(), quantity=data.quantity,
                                notes=data.notes)


def load_requisition(tx: Transaction, requisition_id: int) -> PartsRequisition:
    requisition = tx.get(PartsRequisition, requisition_id)
    if requisition is None:
        raise RequisitionNotFoundError(requisition_id)
    return requisition


def find_item(requisition: PartsRequisition, items: List[PartsRequisitionItem],
              item_id: str) -> PartsRequisitionItem:
    for item in items:
        if item.id == item_id:
            return item
    raise RequisitionItemNotFoundError(requisition.id, item_id)


# --- Triagem ---

def apply_triage(tx: Transaction, requisition: PartsRequisition, item_id: str,
                 new_status: RequisitionItemStatus,
                 notes: Optional[str] = None) -> PartsRequisition:
    """Aplica a decisão de triagem sobre a requisição lida em ``tx``."""
    items = requisition.parsed_items()
    item = find_item(requisition, items, item_id)
    if item.status in WAREHOUSE_STATUSES:
        raise ValidationError(
            f"A peça '{item.part_name}' já está '{item.status.value}' no almoxarifado.",
            field="status",
        )
    item.status = new_status
    if notes is not None:
        item.triage_notes = notes
    return tx.update(requisition, **item_fields(items))


def triage_item(engine: Engine, requisition_id: int, item_id: str, new_status,
                notes: Optional[str] = None,
                max_attempts: Optional[int] = None) -> PartsRequisition:
    """
    Aprova ou recusa uma peça e recalcula o status da requisição.

    Roda em uma única transação condicional; triagens simultâneas de itens
    diferentes da mesma requisição não se sobrescrevem.
    """
    new_status = RequisitionItemStatus(new_status)
    if new_status not in TRIAGE_STATUSES:
        raise ValidationError(f"Status inválido para a triagem: {new_status.value}", field="status")

    def work(tx: Transaction) -> PartsRequisition:
        requisition = load_requisition(tx, requisition_id)
        return apply_triage(tx, requisition, item_id, new_status, notes)

    requisition = run_transaction(engine, work, max_attempts)
    logger.info("Requisição %s: item %s -> %s (status %s)", requisition.requisition_number,
                item_id, new_status.value, requisition.status.value)
    return requisition


def record_warehouse_action(engine: Engine, requisition_id: int, item_id: str, new_status,
                            warehouse_notes: Optional[str] = None,
                            estimated_cost: Optional[float] = None) -> PartsRequisition:
    """Compra, separação ou entrega de uma peça já aprovada."""
    new_status = RequisitionItemStatus(new_status)
    if new_status not in WAREHOUSE_STATUSES:
        raise ValidationError(f"Status inválido para o almoxarifado: {new_status.value}",
                              field="status")
    if estimated_cost is not None and estimated_cost < 0:
        raise ValidationError("Custo estimado não pode ser negativo.", field="estimated_cost")

    def work(tx: Transaction) -> PartsRequisition:
        requisition = load_requisition(tx, requisition_id)
        items = requisition.parsed_items()
        item = find_item(requisition, items, item_id)
        if item.status in (RequisitionItemStatus.PENDING_APPROVAL, RequisitionItemStatus.REFUSED):
            raise ValidationError(
                f"A peça '{item.part_name}' está '{item.status.value}' e não pode ser movimentada.",
                field="status",
            )
        item.status = new_status
        if warehouse_notes is not None:
            item.warehouse_notes = warehouse_notes
        if estimated_cost is not None:
            item.estimated_cost = estimated_cost
        return tx.update(requisition, **item_fields(items))

    requisition = run_transaction(engine, work)
    logger.info("Almoxarifado: requisição %s item %s -> %s", requisition.requisition_number,
                item_id, new_status.value)
    return requisition


# --- Cadastro da requisição ---

def create_requisition(engine: Engine, service_order_id: int, technician_id: int,
                       items: Sequence[RequisitionItemCreate],
                       general_notes: Optional[str] = None) -> PartsRequisition:
    if not items:
        raise ValidationError("A requisição deve ter pelo menos uma peça.", field="items")
    new_items = [_new_item(data) for data in items]

    def work(tx: Transaction) -> PartsRequisition:
        order = tx.session.get(ServiceOrder, service_order_id)
        if order is None:
            raise ValidationError("Selecione uma Ordem de Serviço válida.", field="service_order_id")
        if order.phase in TERMINAL_PHASES:
            raise ValidationError(f"A OS {order.order_number} está '{order.phase.value}'.",
                                  field="service_order_id")
        if tx.session.get(Technician, technician_id) is None:
            raise ValidationError("Selecione um Técnico válido.", field="technician_id")
        requisition = PartsRequisition(
            requisition_number=next_requisition_number(tx.session),
            service_order_id=service_order_id,
            technician_id=technician_id,
            general_notes=general_notes,
            **item_fields(new_items),
        )
        return tx.add(requisition)

    requisition = run_transaction(engine, work)
    logger.info("Requisição %s criada para a OS %s", requisition.requisition_number,
                service_order_id)
    return requisition


def update_requisition(engine: Engine, requisition_id: int,
                       general_notes: Optional[str] = None,
                       add_items: Sequence[RequisitionItemCreate] = (),
                       remove_item_ids: Sequence[str] = ()) -> PartsRequisition:
    """
    Observações gerais, inclusão de peças e remoção de peças ainda pendentes.
    OS e técnico não mudam depois da criação.
    """
    new_items = [_new_item(data) for data in add_items]

    def work(tx: Transaction) -> PartsRequisition:
        requisition = load_requisition(tx, requisition_id)
        items = requisition.parsed_items()
        for item_id in remove_item_ids:
            item = find_item(requisition, items, item_id)
            if item.status is not RequisitionItemStatus.PENDING_APPROVAL:
                raise ValidationError(
                    f"A peça '{item.part_name}' já foi triada e não pode ser removida.",
                    field="remove_item_ids",
                )
            items.remove(item)
        items.extend(new_items)
        if not items:
            raise ValidationError("A requisição deve ter pelo menos uma peça.", field="items")
        values = item_fields(items)
        if general_notes is not None:
            values["general_notes"] = general_notes
        return tx.update(requisition, **values)

    return run_transaction(engine, work)


def set_item_image(engine: Engine, blob_store: LocalBlobStore, requisition_id: int,
                   item_id: str, data: bytes, filename: str) -> PartsRequisition:
    """Anexa a foto da peça, substituindo a anterior."""
    blob_store.ensure_available()
    path = f"parts_requisitions/{requisition_id}/{item_id}/{safe_filename(filename)}"
    url = blob_store.upload(data, path)
    previous = {}

    def work(tx: Transaction) -> PartsRequisition:
        requisition = load_requisition(tx, requisition_id)
        items = requisition.parsed_items()
        item = find_item(requisition, items, item_id)
        previous["url"] = item.image_url
        item.image_url = url
        return tx.update(requisition, **item_fields(items))

    try:
        requisition = run_transaction(engine, work)
    except Exception:
        blob_store.delete(url)
        raise
    if previous.get("url") and previous["url"] != url:
        blob_store.delete(previous["url"])
    return requisition


def delete_requisition(session: Session, blob_store: LocalBlobStore, requisition_id: int) -> None:
    requisition = session.get(PartsRequisition, requisition_id)
    if requisition is None:
        raise RequisitionNotFoundError(requisition_id)
    number = requisition.requisition_number
    image_urls = [item.image_url for item in requisition.parsed_items() if item.image_url]
    session.delete(requisition)
    session.commit()
    for url in image_urls:
        blob_store.delete(url)
    logger.info("Requisição %s excluída", number)


def list_requisitions(session: Session, status: Optional[RequisitionStatus] = None):
    query = select(PartsRequisition).order_by(PartsRequisition.created_at.desc(),
                                              PartsRequisition.id.desc())
    if status is not None:
        query = query.where(PartsRequisition.status == status)
    return session.exec(query).all()
