import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Enums ---
class ServiceOrderPhase(str, Enum):
    """Fases do ciclo de vida de uma Ordem de Serviço."""
    AWAITING_EVALUATION = "Aguardando Avaliação Técnica"
    AWAITING_AUTHORIZATION = "Avaliado, Aguardando Autorização"
    AWAITING_PARTS = "Autorizado, Aguardando Peça"
    IN_PROGRESS = "Em Execução"
    COMPLETED = "Concluída"
    CANCELLED = "Cancelada"


TERMINAL_PHASES = frozenset({ServiceOrderPhase.COMPLETED, ServiceOrderPhase.CANCELLED})


class RequisitionStatus(str, Enum):
    """Status agregado da requisição, derivado dos status dos itens."""
    PENDING = "Pendente"
    TRIAGED = "Triagem Realizada"


class RequisitionItemStatus(str, Enum):
    PENDING_APPROVAL = "Pendente Aprovação"
    APPROVED = "Aprovado"
    REFUSED = "Recusado"
    AWAITING_PURCHASE = "Aguardando Compra"
    SEPARATED = "Separado"
    DELIVERED = "Entregue"


class BudgetStatus(str, Enum):
    PENDING = "Pendente"
    SENT = "Enviado"
    APPROVED = "Aprovado"
    REFUSED = "Recusado"
    CANCELLED = "Cancelado"


class EquipmentStatus(str, Enum):
    AVAILABLE = "Disponível"
    RENTED = "Locada"
    IN_MAINTENANCE = "Em Manutenção"
    SCRAP = "Sucata"


class VehicleStatus(str, Enum):
    AVAILABLE = "Disponível"
    IN_USE = "Em Uso"
    MAINTENANCE = "Manutenção"


# --- Cadastros ---

class Customer(SQLModel, table=True):
    """
    Cliente atendido pela oficina.
    O endereço é o destino usado na estimativa de distância da OS.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(description="Razão social")
    fantasy_name: Optional[str] = None
    cnpj: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = Field(default=None, description="Telefone para contato/WhatsApp")
    street: Optional[str] = None
    number: Optional[str] = None
    complement: Optional[str] = None
    neighborhood: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = Field(default=None, description="UF com 2 caracteres")
    cep: Optional[str] = None

    def address(self) -> str:
        """Endereço em uma linha, sem as partes vazias."""
        parts = [self.street, self.number, self.complement, self.neighborhood,
                 self.city, self.state, self.cep]
        return ", ".join(p for p in parts if p)


class Equipment(SQLModel, table=True):
    """Máquina atendida (empilhadeira, transpaleteira...)."""
    id: Optional[int] = Field(default=None, primary_key=True)
    brand: str
    model: str
    chassis_number: str = Field(description="Número do chassi")
    fleet_number: Optional[str] = None
    equipment_type: Optional[str] = None
    operational_status: EquipmentStatus = Field(default=EquipmentStatus.AVAILABLE)
    customer_id: Optional[int] = Field(default=None, foreign_key="customer.id")


class Technician(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    role: str = Field(default="Técnico")
    specialization: Optional[str] = None
    phone: Optional[str] = None


class Vehicle(SQLModel, table=True):
    """Veículo usado no deslocamento do técnico até o cliente."""
    id: Optional[int] = Field(default=None, primary_key=True)
    model: str
    license_plate: str
    cost_per_kilometer: Optional[float] = Field(default=None, description="Custo por km rodado (R$)")
    status: VehicleStatus = Field(default=VehicleStatus.AVAILABLE)


# --- Ordem de Serviço ---

class ServiceOrder(SQLModel, table=True):
    """
    Representa uma Ordem de Serviço (OS).
    A fase só muda pelas transições de ``service_orders``; o custo de viagem
    estimado é sempre recalculado, nunca informado pelo usuário.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    order_number: str = Field(index=True, unique=True, description="Número sequencial da OS")
    customer_id: int = Field(foreign_key="customer.id")
    equipment_id: int = Field(foreign_key="equipment.id")
    technician_id: Optional[int] = Field(default=None, foreign_key="technician.id")
    vehicle_id: Optional[int] = Field(default=None, foreign_key="vehicle.id")
    phase: ServiceOrderPhase = Field(default=ServiceOrderPhase.AWAITING_EVALUATION)
    service_type: str = Field(default="Manutenção Corretiva")
    requester_name: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = Field(default=None, description="Previsão de conclusão (prazo)")
    description: str = Field(description="Problema relatado")
    notes: Optional[str] = None
    technical_conclusion: Optional[str] = None
    estimated_travel_distance_km: Optional[float] = None
    estimated_toll_costs: Optional[float] = None
    estimated_travel_cost: Optional[float] = None
    media_urls: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True),
                                 description="Data de abertura")
    version: int = Field(default=1, description="Versão para escrita condicional")


# --- Requisição de Peças ---

class PartsRequisitionItem(SQLModel):
    """
    Peça solicitada pelo técnico. Não é tabela: vive dentro do documento da
    requisição (coluna JSON) e não tem ciclo de vida próprio.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    part_name: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)
    notes: Optional[str] = None
    image_url: Optional[str] = None
    status: RequisitionItemStatus = RequisitionItemStatus.PENDING_APPROVAL
    triage_notes: Optional[str] = None
    warehouse_notes: Optional[str] = None
    estimated_cost: Optional[float] = Field(default=None, ge=0)


class PartsRequisition(SQLModel, table=True):
    """
    Requisição de peças vinculada a uma OS.
    ``status`` é sempre o agregado dos status dos itens.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    requisition_number: str = Field(index=True, unique=True)
    service_order_id: int = Field(foreign_key="serviceorder.id")
    technician_id: int = Field(foreign_key="technician.id")
    status: RequisitionStatus = Field(default=RequisitionStatus.PENDING)
    items: List[dict] = Field(default_factory=list, sa_column=Column(JSON))
    general_notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True))
    version: int = Field(default=1)

    def parsed_items(self) -> List[PartsRequisitionItem]:
        return [PartsRequisitionItem.model_validate(raw) for raw in self.items or []]


# --- Orçamento ---

class BudgetItem(SQLModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    description: str = Field(min_length=1)
    quantity: float = Field(default=1, gt=0)
    unit_price: float = Field(default=0, ge=0)
    total_price: Optional[float] = None


class Budget(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    budget_number: str = Field(index=True, unique=True)
    service_order_id: Optional[int] = Field(default=None, foreign_key="serviceorder.id")
    customer_id: int = Field(foreign_key="customer.id")
    equipment_id: int = Field(foreign_key="equipment.id")
    status: BudgetStatus = Field(default=BudgetStatus.PENDING)
    items: List[dict] = Field(default_factory=list, sa_column=Column(JSON))
    shipping_cost: Optional[float] = None
    subtotal: float = Field(default=0.0)
    total_amount: float = Field(default=0.0)
    created_date: date = Field(default_factory=date.today)
    valid_until_date: Optional[date] = None
    notes: Optional[str] = None
    service_order_created: bool = Field(default=False)
    version: int = Field(default=1)


# --- Numeração sequencial ---

class SequenceCounter(SQLModel, table=True):
    """Contador nomeado usado na numeração de OS, requisições e orçamentos."""
    name: str = Field(primary_key=True)
    current_value: int = Field(default=0)
