from typing import Optional

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.engine import Engine
from sqlmodel import Session, func, select

from fleet_service import budgets, config, requisitions, service_orders
from fleet_service.database import create_db_and_tables, ensure_available, get_engine, get_session
from fleet_service.deadlines import DeadlineStatus
from fleet_service.errors import (
    FleetServiceError,
    NotFoundError,
    RequisitionNotFoundError,
    ServiceOrderNotFoundError,
)
from fleet_service.logging_config import configure_logging
from fleet_service.models import (
    TERMINAL_PHASES,
    BudgetStatus,
    Customer,
    Equipment,
    PartsRequisition,
    RequisitionStatus,
    ServiceOrder,
    ServiceOrderPhase,
    Technician,
    Vehicle,
)
from fleet_service.schemas import (
    BudgetCreate,
    BudgetStatusUpdate,
    CompleteRequest,
    CustomerCreate,
    EquipmentCreate,
    RequisitionCreate,
    RequisitionUpdate,
    ServiceOrderCreate,
    ServiceOrderUpdate,
    TechnicianCreate,
    TriageRequest,
    VehicleCreate,
    WarehouseActionRequest,
)
from fleet_service.storage import LocalBlobStore, get_blob_store

configure_logging()

app = FastAPI(title="Gestão de Frota - OS e Requisições")
app.mount("/media", StaticFiles(directory=config.MEDIA_ROOT, check_dir=False), name="media")


@app.on_event("startup")
def on_startup():
    create_db_and_tables()


@app.exception_handler(FleetServiceError)
async def fleet_service_error_handler(request: Request, exc: FleetServiceError):
    # O cliente mantém o formulário preenchido; só informa o erro
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.code, "detail": exc.detail, "retryable": exc.retryable},
    )


def _order_view(order: ServiceOrder) -> dict:
    deadline = service_orders.deadline_for(order)
    data = order.model_dump(mode="json")
    data["deadline"] = {"status": deadline.status.value, "message": deadline.message}
    data["editable_fields"] = sorted(service_orders.editable_fields(order.phase))
    return data


def _get_or_404(session: Session, model, ident, label: str):
    obj = session.get(model, ident)
    if obj is None:
        raise NotFoundError(f"{label} não encontrado")
    return obj


@app.get("/")
async def read_root(session: Session = Depends(get_session)):
    # 1. OS abertas e atrasadas
    open_orders = session.exec(
        select(ServiceOrder).where(ServiceOrder.phase.not_in(list(TERMINAL_PHASES)))
    ).all()
    overdue_count = sum(
        1 for order in open_orders
        if service_orders.deadline_for(order).status is DeadlineStatus.OVERDUE
    )

    # 2. Requisições aguardando triagem
    pending_requisitions = session.exec(
        select(func.count()).select_from(PartsRequisition)
        .where(PartsRequisition.status == RequisitionStatus.PENDING)
    ).one()

    # 3. Orçamentos aprovados sem OS
    eligible = budgets.eligible_budgets(budgets.list_budgets(session, BudgetStatus.APPROVED))

    return {
        "open_os_count": len(open_orders),
        "overdue_os_count": overdue_count,
        "pending_requisitions_count": pending_requisitions,
        "budgets_awaiting_os_count": len(eligible),
    }


# --- Cadastros ---
@app.get("/customers")
async def read_customers(session: Session = Depends(get_session)):
    return session.exec(select(Customer).order_by(Customer.name)).all()


@app.post("/customers", status_code=201)
async def add_customer(data: CustomerCreate, session: Session = Depends(get_session)):
    ensure_available(session.get_bind())
    customer = Customer.model_validate(data)
    session.add(customer)
    session.commit()
    session.refresh(customer)
    return customer


@app.get("/equipment")
async def read_equipment(session: Session = Depends(get_session)):
    return session.exec(select(Equipment)).all()


@app.post("/equipment", status_code=201)
async def add_equipment(data: EquipmentCreate, session: Session = Depends(get_session)):
    ensure_available(session.get_bind())
    if data.customer_id is not None:
        _get_or_404(session, Customer, data.customer_id, "Cliente")
    equipment = Equipment.model_validate(data)
    session.add(equipment)
    session.commit()
    session.refresh(equipment)
    return equipment


@app.get("/technicians")
async def read_technicians(session: Session = Depends(get_session)):
    return session.exec(select(Technician).order_by(Technician.name)).all()


@app.post("/technicians", status_code=201)
async def add_technician(data: TechnicianCreate, session: Session = Depends(get_session)):
    ensure_available(session.get_bind())
    technician = Technician.model_validate(data)
    session.add(technician)
    session.commit()
    session.refresh(technician)
    return technician


@app.get("/vehicles")
async def read_vehicles(session: Session = Depends(get_session)):
    return session.exec(select(Vehicle)).all()


@app.post("/vehicles", status_code=201)
async def add_vehicle(data: VehicleCreate, session: Session = Depends(get_session)):
    ensure_available(session.get_bind())
    vehicle = Vehicle.model_validate(data)
    session.add(vehicle)
    session.commit()
    session.refresh(vehicle)
    return vehicle


# --- Rotas de OS ---
@app.get("/os")
async def read_os_list(phase: Optional[ServiceOrderPhase] = None,
                       session: Session = Depends(get_session)):
    return [_order_view(order) for order in service_orders.list_service_orders(session, phase)]


@app.post("/os", status_code=201)
async def create_os(data: ServiceOrderCreate, engine: Engine = Depends(get_engine)):
    order = service_orders.create_service_order(engine, data)
    return {"message": f"Ordem {order.order_number} criada.", "order": _order_view(order)}


@app.get("/os/{os_id}")
async def read_os_details(os_id: int, session: Session = Depends(get_session)):
    order = session.get(ServiceOrder, os_id)
    if not order:
        raise ServiceOrderNotFoundError(os_id)
    requisition_list = session.exec(
        select(PartsRequisition).where(PartsRequisition.service_order_id == os_id)
    ).all()
    return {
        "order": _order_view(order),
        "customer": session.get(Customer, order.customer_id),
        "equipment": session.get(Equipment, order.equipment_id),
        "requisitions": requisition_list,
    }


@app.put("/os/{os_id}")
async def update_os(os_id: int, data: ServiceOrderUpdate, engine: Engine = Depends(get_engine)):
    order = service_orders.update_service_order(engine, os_id, data.model_dump(exclude_unset=True))
    return {"message": f"Ordem {order.order_number} atualizada.", "order": _order_view(order)}


@app.post("/os/{os_id}/advance")
async def advance_os(os_id: int, engine: Engine = Depends(get_engine)):
    order = service_orders.advance_phase(engine, os_id)
    return {"message": f"OS {order.order_number}: {order.phase.value}.", "order": _order_view(order)}


@app.post("/os/{os_id}/complete")
async def complete_os(os_id: int, data: CompleteRequest, engine: Engine = Depends(get_engine)):
    order = service_orders.complete_service_order(engine, os_id, data.technical_conclusion)
    return {"message": f"OS {order.order_number} marcada como concluída.", "order": _order_view(order)}


@app.post("/os/{os_id}/cancel")
async def cancel_os(os_id: int, engine: Engine = Depends(get_engine)):
    order = service_orders.cancel_service_order(engine, os_id)
    return {"message": f"OS {order.order_number} marcada como cancelada.", "order": _order_view(order)}


@app.delete("/os/{os_id}")
async def delete_os(os_id: int, session: Session = Depends(get_session),
                    blob_store: LocalBlobStore = Depends(get_blob_store)):
    ensure_available(session.get_bind())
    service_orders.delete_service_order(session, blob_store, os_id)
    return {"message": "Ordem de Serviço excluída."}


@app.post("/os/{os_id}/media")
async def upload_os_media(os_id: int, file: UploadFile = File(...),
                          engine: Engine = Depends(get_engine),
                          blob_store: LocalBlobStore = Depends(get_blob_store)):
    data = await file.read()
    order = service_orders.add_media(engine, blob_store, os_id, data, file.filename)
    return _order_view(order)


@app.delete("/os/{os_id}/media")
async def delete_os_media(os_id: int, url: str, engine: Engine = Depends(get_engine),
                          blob_store: LocalBlobStore = Depends(get_blob_store)):
    order = service_orders.remove_media(engine, blob_store, os_id, url)
    return _order_view(order)


# --- IA / deslocamento ---
@app.post("/os/{os_id}/estimate_distance")
async def estimate_os_distance(os_id: int, engine: Engine = Depends(get_engine)):
    order, estimate = service_orders.apply_distance_estimate(engine, os_id)
    return {
        "status": estimate.status.value,
        "error_message": estimate.error_message,
        "one_way_distance_km": estimate.distance_km,
        "one_way_toll_cost": estimate.estimated_toll_cost,
        "order": _order_view(order),
    }


# --- Requisições de Peças ---
@app.get("/requisitions")
async def read_requisitions(status: Optional[RequisitionStatus] = None,
                            session: Session = Depends(get_session)):
    return requisitions.list_requisitions(session, status)


@app.get("/requisitions/triage")
async def read_triage_queue(session: Session = Depends(get_session)):
    """Requisições com peças aguardando aprovação."""
    return requisitions.list_requisitions(session, RequisitionStatus.PENDING)


@app.post("/requisitions", status_code=201)
async def create_requisition(data: RequisitionCreate, engine: Engine = Depends(get_engine)):
    requisition = requisitions.create_requisition(
        engine, data.service_order_id, data.technician_id, data.items, data.general_notes,
    )
    return {"message": f"Requisição {requisition.requisition_number} foi criada.",
            "requisition": requisition}


@app.get("/requisitions/{requisition_id}")
async def read_requisition(requisition_id: int, session: Session = Depends(get_session)):
    requisition = session.get(PartsRequisition, requisition_id)
    if requisition is None:
        raise RequisitionNotFoundError(requisition_id)
    return requisition


@app.put("/requisitions/{requisition_id}")
async def update_requisition(requisition_id: int, data: RequisitionUpdate,
                             engine: Engine = Depends(get_engine)):
    requisition = requisitions.update_requisition(
        engine, requisition_id, data.general_notes, data.add_items, data.remove_item_ids,
    )
    return {"message": f"Requisição {requisition.requisition_number} foi atualizada.",
            "requisition": requisition}


@app.delete("/requisitions/{requisition_id}")
async def delete_requisition(requisition_id: int, session: Session = Depends(get_session),
                             blob_store: LocalBlobStore = Depends(get_blob_store)):
    ensure_available(session.get_bind())
    requisitions.delete_requisition(session, blob_store, requisition_id)
    return {"message": "Requisição excluída."}


@app.post("/requisitions/{requisition_id}/items/{item_id}/triage")
async def triage_requisition_item(requisition_id: int, item_id: str, data: TriageRequest,
                                  engine: Engine = Depends(get_engine)):
    requisition = requisitions.triage_item(engine, requisition_id, item_id, data.status, data.notes)
    return {"message": "Triagem registrada.", "requisition": requisition}


@app.post("/requisitions/{requisition_id}/items/{item_id}/warehouse")
async def warehouse_requisition_item(requisition_id: int, item_id: str,
                                     data: WarehouseActionRequest,
                                     engine: Engine = Depends(get_engine)):
    requisition = requisitions.record_warehouse_action(
        engine, requisition_id, item_id, data.status, data.warehouse_notes, data.estimated_cost,
    )
    return {"message": "O item foi atualizado com sucesso.", "requisition": requisition}


@app.post("/requisitions/{requisition_id}/items/{item_id}/image")
async def upload_item_image(requisition_id: int, item_id: str, file: UploadFile = File(...),
                            engine: Engine = Depends(get_engine),
                            blob_store: LocalBlobStore = Depends(get_blob_store)):
    data = await file.read()
    return requisitions.set_item_image(engine, blob_store, requisition_id, item_id, data,
                                       file.filename)


# --- Orçamentos ---
@app.get("/budgets")
async def read_budgets(status: Optional[BudgetStatus] = None,
                       session: Session = Depends(get_session)):
    return budgets.list_budgets(session, status)


@app.get("/budgets/eligible")
async def read_eligible_budgets(session: Session = Depends(get_session)):
    return budgets.eligible_budgets(budgets.list_budgets(session, BudgetStatus.APPROVED))


@app.post("/budgets", status_code=201)
async def create_budget(data: BudgetCreate, engine: Engine = Depends(get_engine)):
    budget = budgets.create_budget(engine, data)
    return {"message": f"Orçamento {budget.budget_number} criado.", "budget": budget}


@app.put("/budgets/{budget_id}/status")
async def update_budget_status(budget_id: int, data: BudgetStatusUpdate,
                               engine: Engine = Depends(get_engine)):
    return budgets.set_budget_status(engine, budget_id, data.status)


@app.post("/budgets/{budget_id}/promote", status_code=201)
async def promote_budget(budget_id: int, engine: Engine = Depends(get_engine)):
    budget, order = budgets.promote_budget(engine, budget_id)
    return {"message": f"OS {order.order_number} criada a partir do orçamento {budget.budget_number}.",
            "budget": budget, "order": _order_view(order)}
