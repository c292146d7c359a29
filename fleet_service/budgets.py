"""
Orçamentos e a promoção de orçamento aprovado para Ordem de Serviço.

Um orçamento é elegível quando está "Aprovado" e ainda não gerou OS. A
promoção abre a OS na fase inicial com o cliente e a máquina do orçamento e
marca o orçamento na mesma transação, então um orçamento nunca gera duas OS.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from fleet_service.errors import BudgetNotFoundError, ValidationError
from fleet_service.models import Budget, BudgetItem, BudgetStatus, Customer, Equipment, ServiceOrder
from fleet_service.schemas import BudgetCreate, ServiceOrderCreate
from fleet_service.sequences import next_budget_number
from fleet_service.service_orders import create_service_order_in
from fleet_service.transactions import Transaction, run_transaction

logger = logging.getLogger(__name__)


def is_eligible_for_promotion(budget: Budget) -> bool:
    return budget.status == BudgetStatus.APPROVED and not budget.service_order_created


def eligible_budgets(budgets: Sequence[Budget]) -> List[Budget]:
    return [budget for budget in budgets if is_eligible_for_promotion(budget)]


def budget_totals(items: Sequence[BudgetItem],
                  shipping_cost: Optional[float]) -> Tuple[List[BudgetItem], float, float]:
    """Itens com ``total_price`` preenchido, subtotal e total com frete."""
    priced = [item.model_copy(update={"total_price": round(item.quantity * item.unit_price, 2)})
              for item in items]
    subtotal = round(sum(item.total_price for item in priced), 2)
    return priced, subtotal, round(subtotal + (shipping_cost or 0), 2)


def create_budget(engine: Engine, data: BudgetCreate) -> Budget:
    items, subtotal, total = budget_totals(data.items, data.shipping_cost)

    def work(tx: Transaction) -> Budget:
        if tx.session.get(Customer, data.customer_id) is None:
            raise ValidationError("Cliente não encontrado.", field="customer_id")
        if tx.session.get(Equipment, data.equipment_id) is None:
            raise ValidationError("Máquina não encontrada.", field="equipment_id")
        if data.service_order_id is not None and tx.session.get(ServiceOrder, data.service_order_id) is None:
            raise ValidationError("Ordem de Serviço não encontrada.", field="service_order_id")
        budget = Budget(
            budget_number=next_budget_number(tx.session),
            service_order_id=data.service_order_id,
            customer_id=data.customer_id,
            equipment_id=data.equipment_id,
            items=[item.model_dump(mode="json") for item in items],
            shipping_cost=data.shipping_cost,
            subtotal=subtotal,
            total_amount=total,
            valid_until_date=data.valid_until_date,
            notes=data.notes,
        )
        return tx.add(budget)

    budget = run_transaction(engine, work)
    logger.info("Orçamento %s criado (R$ %.2f)", budget.budget_number, budget.total_amount)
    return budget


def _load_budget(tx: Transaction, budget_id: int) -> Budget:
    budget = tx.get(Budget, budget_id)
    if budget is None:
        raise BudgetNotFoundError(budget_id)
    return budget


def set_budget_status(engine: Engine, budget_id: int, status: BudgetStatus) -> Budget:
    def work(tx: Transaction) -> Budget:
        budget = _load_budget(tx, budget_id)
        return tx.update(budget, status=BudgetStatus(status))

    return run_transaction(engine, work)


def promote_budget(engine: Engine, budget_id: int,
                   description: Optional[str] = None) -> Tuple[Budget, ServiceOrder]:
    def work(tx: Transaction):
        budget = _load_budget(tx, budget_id)
        if not is_eligible_for_promotion(budget):
            raise ValidationError(
                f"Orçamento {budget.budget_number} não está aprovado ou já gerou OS.",
                field="status",
            )
        order = create_service_order_in(tx, ServiceOrderCreate(
            customer_id=budget.customer_id,
            equipment_id=budget.equipment_id,
            description=description or f"Serviço aprovado no orçamento {budget.budget_number}",
        ))
        budget = tx.update(budget, service_order_created=True)
        return budget, order

    budget, order = run_transaction(engine, work)
    logger.info("Orçamento %s gerou a OS %s", budget.budget_number, order.order_number)
    return budget, order


def list_budgets(session: Session, status: Optional[BudgetStatus] = None):
    query = select(Budget).order_by(Budget.created_date.desc(), Budget.id.desc())
    if status is not None:
        query = query.where(Budget.status == status)
    return session.exec(query).all()
