import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, create_engine

from fleet_service import config
from fleet_service.errors import BackendUnavailableError
from fleet_service.models import *  # noqa: F401,F403 - registra as tabelas no metadata

logger = logging.getLogger(__name__)


def build_engine(url: str) -> Engine:
    # Configurações para SQLite (necessário para evitar erros de thread em alguns casos)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = build_engine(config.DATABASE_URL)


def create_db_and_tables(bind: Optional[Engine] = None):
    """
    Cria o banco de dados e todas as tabelas definidas nos modelos.
    Deve ser chamado na inicialização da aplicação.
    """
    SQLModel.metadata.create_all(bind or engine)


def get_engine() -> Engine:
    """Dependência usada pelas rotas que abrem suas próprias transações."""
    return engine


def get_session():
    """
    Dependência para obter uma sessão do banco de dados.
    Gerencia o ciclo de vida da sessão (abre e fecha automaticamente).
    """
    with Session(engine) as session:
        yield session


def ensure_available(bind: Engine) -> None:
    """Verifica a conexão antes de iniciar uma operação de escrita."""
    try:
        with bind.connect() as conn:
            conn.execute(text("SELECT 1"))
    except OperationalError as exc:
        logger.error("Banco de dados indisponível: %s", exc)
        raise BackendUnavailableError("banco de dados", str(exc.orig)) from exc
