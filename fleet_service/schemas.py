"""Corpos de requisição da API (modelos SQLModel sem tabela)."""

from datetime import date
from typing import List, Optional

from sqlmodel import Field, SQLModel

from fleet_service.models import (
    BudgetItem,
    BudgetStatus,
    EquipmentStatus,
    RequisitionItemStatus,
    ServiceOrderPhase,
    VehicleStatus,
)


class CustomerCreate(SQLModel):
    name: str = Field(min_length=1)
    fantasy_name: Optional[str] = None
    cnpj: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    street: Optional[str] = None
    number: Optional[str] = None
    complement: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = Field(default=None, min_length=2, max_length=2)
    cep: Optional[str] = None


class EquipmentCreate(SQLModel):
    brand: str = Field(min_length=1)
    model: str = Field(min_length=1)
    chassis_number: str = Field(min_length=1)
    fleet_number: Optional[str] = None
    equipment_type: Optional[str] = None
    operational_status: EquipmentStatus = EquipmentStatus.AVAILABLE
    customer_id: Optional[int] = None


class TechnicianCreate(SQLModel):
    name: str = Field(min_length=1)
    role: str = "Técnico"
    specialization: Optional[str] = None
    phone: Optional[str] = None


class VehicleCreate(SQLModel):
    model: str = Field(min_length=1)
    license_plate: str = Field(min_length=1)
    cost_per_kilometer: Optional[float] = Field(default=None, ge=0)
    status: VehicleStatus = VehicleStatus.AVAILABLE


# --- OS ---

class ServiceOrderCreate(SQLModel):
    customer_id: int
    equipment_id: int
    technician_id: Optional[int] = None
    vehicle_id: Optional[int] = None
    service_type: str = Field(default="Manutenção Corretiva", min_length=1)
    requester_name: Optional[str] = None
    start_date: Optional[date] = Field(default_factory=date.today)
    end_date: Optional[date] = None
    description: str = Field(min_length=1, description="Problema relatado")
    notes: Optional[str] = None
    estimated_travel_distance_km: Optional[float] = Field(default=None, ge=0)
    estimated_toll_costs: Optional[float] = Field(default=None, ge=0)


class ServiceOrderUpdate(SQLModel):
    """Edição parcial; apenas os campos enviados são considerados."""
    customer_id: Optional[int] = None
    equipment_id: Optional[int] = None
    technician_id: Optional[int] = None
    vehicle_id: Optional[int] = None
    phase: Optional[ServiceOrderPhase] = None
    service_type: Optional[str] = None
    requester_name: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    technical_conclusion: Optional[str] = None
    estimated_travel_distance_km: Optional[float] = Field(default=None, ge=0)
    estimated_toll_costs: Optional[float] = Field(default=None, ge=0)


class CompleteRequest(SQLModel):
    technical_conclusion: str


# --- Requisição de Peças ---

class RequisitionItemCreate(SQLModel):
    part_name: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)
    notes: Optional[str] = None


class RequisitionCreate(SQLModel):
    service_order_id: int
    technician_id: int
    items: List[RequisitionItemCreate] = Field(min_length=1)
    general_notes: Optional[str] = None


class RequisitionUpdate(SQLModel):
    general_notes: Optional[str] = None
    add_items: List[RequisitionItemCreate] = Field(default_factory=list)
    remove_item_ids: List[str] = Field(default_factory=list)


class TriageRequest(SQLModel):
    status: RequisitionItemStatus
    notes: Optional[str] = None


class WarehouseActionRequest(SQLModel):
    status: RequisitionItemStatus
    warehouse_notes: Optional[str] = None
    estimated_cost: Optional[float] = Field(default=None, ge=0)


# --- Orçamento ---

class BudgetCreate(SQLModel):
    customer_id: int
    equipment_id: int
    service_order_id: Optional[int] = None
    items: List[BudgetItem] = Field(min_length=1)
    shipping_cost: Optional[float] = Field(default=None, ge=0)
    valid_until_date: Optional[date] = None
    notes: Optional[str] = None


class BudgetStatusUpdate(SQLModel):
    status: BudgetStatus
