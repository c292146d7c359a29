import logging
import sys
from typing import Optional

from fleet_service import config

LOG_FORMAT = "%(asctime)s - [%(levelname)s] %(name)s: %(message)s"

# Bibliotecas que ficam em WARNING independente do nível da aplicação.
# httpx loga a URL completa, com a chave do Google Maps na query string.
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "google", "urllib3")


def _level(name: Optional[str]) -> int:
    return getattr(logging, (name or config.LOG_LEVEL).upper(), logging.INFO)


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Logging da aplicação em stdout (uvicorn já escreve o acesso em stderr).

    ``level`` padrão vem de ``LOG_LEVEL``. Devolve o logger raiz do pacote.
    """
    logging.basicConfig(format=LOG_FORMAT, level=_level(level),
                        handlers=[logging.StreamHandler(sys.stdout)], force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    package_logger = logging.getLogger("fleet_service")
    package_logger.setLevel(_level(level))
    return package_logger
