"""
Transações de leitura-modificação-escrita com escrita condicional.

Cada documento transacionado (requisição de peças, ordem de serviço) tem uma
coluna ``version``. ``Transaction.update`` grava com
``UPDATE ... WHERE id = :id AND version = :lida``; se outra transação gravou
no meio do caminho nenhuma linha é afetada, a tentativa inteira é desfeita e
``run_transaction`` executa a função de novo com uma leitura nova.
"""

import logging
from typing import Callable, Dict, Optional, Tuple, TypeVar

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlmodel import Session

from fleet_service import config
from fleet_service.database import ensure_available
from fleet_service.errors import WriteConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StaleWriteError(Exception):
    """O documento mudou desde a leitura; a tentativa deve ser refeita."""

    def __init__(self, document: str):
        super().__init__(document)
        self.document = document


class Transaction:
    """Sessão de uma tentativa, com as versões lidas de cada documento."""

    def __init__(self, session: Session):
        self.session = session
        self._versions: Dict[Tuple[type, int], int] = {}

    def get(self, model, ident):
        obj = self.session.get(model, ident, populate_existing=True)
        if obj is not None:
            self._versions[(model, ident)] = obj.version
        return obj

    def add(self, obj):
        self.session.add(obj)
        self.session.flush()
        return obj

    def update(self, obj, **values):
        """Grava ``values`` somente se o documento ainda estiver na versão lida."""
        model = type(obj)
        key = (model, obj.id)
        if key not in self._versions:
            raise RuntimeError(f"{model.__name__} {obj.id} não foi lido nesta transação")
        expected = self._versions[key]
        stmt = (
            update(model)
            .where(model.id == obj.id, model.version == expected)
            .values(version=expected + 1, **values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.exec(stmt)
        if result.rowcount != 1:
            raise StaleWriteError(f"{model.__name__} {obj.id}")
        self._versions[key] = expected + 1
        self.session.refresh(obj)
        return obj


def run_transaction(
    engine: Engine,
    work: Callable[[Transaction], T],
    max_attempts: Optional[int] = None,
) -> T:
    """
    Executa ``work`` atomicamente, repetindo em caso de conflito de escrita.

    Erros de negócio levantados por ``work`` (documento não encontrado,
    validação) desfazem a tentativa e são propagados sem nova tentativa.
    Esgotadas as tentativas, levanta ``WriteConflictError``.
    """
    attempts = max_attempts or config.TRANSACTION_MAX_ATTEMPTS
    ensure_available(engine)
    last_document = "documento"
    for attempt in range(1, attempts + 1):
        with Session(engine, expire_on_commit=False) as session:
            try:
                result = work(Transaction(session))
                session.commit()
                return result
            except StaleWriteError as exc:
                session.rollback()
                last_document = exc.document
                logger.info(
                    "Conflito de escrita em %s (tentativa %d/%d)", exc.document, attempt, attempts
                )
            except Exception:
                session.rollback()
                raise
    logger.warning("Tentativas esgotadas para %s", last_document)
    raise WriteConflictError(last_document, attempts)
