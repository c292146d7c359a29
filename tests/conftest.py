from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from fleet_service.database import build_engine, create_db_and_tables, get_engine, get_session
from fleet_service.main import app
from fleet_service.models import Customer, Equipment, Technician, Vehicle
from fleet_service.requisitions import create_requisition
from fleet_service.schemas import RequisitionItemCreate, ServiceOrderCreate
from fleet_service.service_orders import create_service_order
from fleet_service.storage import LocalBlobStore, get_blob_store


@pytest.fixture
def engine(tmp_path):
    # Banco em arquivo: cada sessão usa sua própria conexão, como em produção
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(str(tmp_path / "media"), "/media")


@pytest.fixture
def seed(engine):
    """Cliente, máquina, técnico e dois veículos cadastrados."""
    with Session(engine) as session:
        customer = Customer(name="Metalúrgica Alfa Ltda", street="Rua das Indústrias",
                            number="100", neighborhood="Distrito Industrial",
                            city="Campinas", state="SP", cep="13000-000")
        equipment = Equipment(brand="Toyota", model="8FGU25", chassis_number="CH-12345")
        technician = Technician(name="Carlos Souza")
        van = Vehicle(model="Fiorino", license_plate="ABC1D23", cost_per_kilometer=0.6)
        pickup = Vehicle(model="Strada", license_plate="XYZ9K87")
        session.add_all([customer, equipment, technician, van, pickup])
        session.commit()
        return SimpleNamespace(
            customer_id=customer.id,
            equipment_id=equipment.id,
            technician_id=technician.id,
            vehicle_id=van.id,
            vehicle_without_cost_id=pickup.id,
        )


@pytest.fixture
def make_order(engine, seed):
    def _make(**overrides):
        data = {
            "customer_id": seed.customer_id,
            "equipment_id": seed.equipment_id,
            "description": "Empilhadeira não levanta o garfo",
        }
        data.update(overrides)
        return create_service_order(engine, ServiceOrderCreate(**data))

    return _make


@pytest.fixture
def make_requisition(engine, seed, make_order):
    def _make(part_names=("Filtro de óleo", "Correia", "Rolamento"), order=None):
        order = order or make_order()
        items = [RequisitionItemCreate(part_name=name, quantity=1) for name in part_names]
        return create_requisition(engine, order.id, seed.technician_id, items)

    return _make


@pytest.fixture
def client(engine, blob_store):
    def override_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    yield TestClient(app)
    app.dependency_overrides.clear()
