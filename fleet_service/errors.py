"""
Erros tipados do núcleo de ordens de serviço e requisições.

Cada erro carrega um ``code`` legível por máquina e o status HTTP usado pela
API. A camada web converte qualquer ``FleetServiceError`` em uma resposta
JSON ``{"code", "detail", "retryable"}``.

    FleetServiceError
    +-- ValidationError
    +-- TerminalPhaseError
    +-- NotFoundError
    |   +-- ServiceOrderNotFoundError
    |   +-- RequisitionNotFoundError
    |   +-- RequisitionItemNotFoundError
    |   +-- BudgetNotFoundError
    +-- WriteConflictError          (retryable)
    +-- BackendUnavailableError     (retryable)
"""

from typing import Optional


class FleetServiceError(Exception):
    code = "FLEET_SERVICE_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(FleetServiceError):
    """Dados inválidos; rejeitado antes de qualquer escrita."""

    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(self, detail: str, field: Optional[str] = None):
        super().__init__(detail)
        self.field = field


class TerminalPhaseError(FleetServiceError):
    """Tentativa de alterar campos protegidos de uma OS concluída/cancelada."""

    code = "TERMINAL_PHASE"
    status_code = 409

    def __init__(self, order_number: str, phase: str, fields=()):
        self.order_number = order_number
        self.phase = phase
        self.fields = tuple(fields)
        detail = f"OS {order_number} está '{phase}' e não pode ser alterada"
        if self.fields:
            detail += f" (campos: {', '.join(self.fields)})"
        super().__init__(detail)


class NotFoundError(FleetServiceError):
    code = "NOT_FOUND"
    status_code = 404


class ServiceOrderNotFoundError(NotFoundError):
    code = "SERVICE_ORDER_NOT_FOUND"

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__("OS não encontrada")


class RequisitionNotFoundError(NotFoundError):
    code = "REQUISITION_NOT_FOUND"

    def __init__(self, requisition_id):
        self.requisition_id = requisition_id
        super().__init__("Requisição não encontrada.")


class RequisitionItemNotFoundError(NotFoundError):
    code = "REQUISITION_ITEM_NOT_FOUND"

    def __init__(self, requisition_id, item_id):
        self.requisition_id = requisition_id
        self.item_id = item_id
        super().__init__("Item da requisição não encontrado.")


class BudgetNotFoundError(NotFoundError):
    code = "BUDGET_NOT_FOUND"

    def __init__(self, budget_id):
        self.budget_id = budget_id
        super().__init__("Orçamento não encontrado")


class WriteConflictError(FleetServiceError):
    """Escritas concorrentes esgotaram as tentativas da transação."""

    code = "WRITE_CONFLICT"
    status_code = 409
    retryable = True

    def __init__(self, document: str, attempts: int):
        self.document = document
        self.attempts = attempts
        super().__init__(
            f"Conflito de escrita em {document} após {attempts} tentativas. Tente novamente."
        )


class BackendUnavailableError(FleetServiceError):
    """Banco de dados ou armazenamento de arquivos inacessível."""

    code = "BACKEND_UNAVAILABLE"
    status_code = 503
    retryable = True

    def __init__(self, backend: str, reason: str = ""):
        self.backend = backend
        detail = f"Serviço indisponível: {backend}"
        if reason:
            detail += f" ({reason})"
        super().__init__(detail)
