import logging
import os
import re
from pathlib import Path
from typing import Optional

from fleet_service import config
from fleet_service.errors import BackendUnavailableError, ValidationError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def safe_filename(name: str) -> str:
    return _UNSAFE_CHARS.sub("_", name or "arquivo")


class LocalBlobStore:
    """
    Armazenamento de arquivos em disco, servido pela aplicação em ``base_url``.

    Um upload bem-sucedido devolve uma URL estável; apagar um arquivo que não
    existe não é erro.
    """

    def __init__(self, root: str, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def ensure_available(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackendUnavailableError("armazenamento de arquivos", str(exc)) from exc
        if not os.access(self.root, os.W_OK):
            raise BackendUnavailableError("armazenamento de arquivos", "sem permissão de escrita")

    def _resolve(self, relative: str) -> Path:
        target = (self.root / relative).resolve()
        if self.root.resolve() not in target.parents:
            raise ValidationError(f"Caminho de arquivo inválido: {relative}")
        return target

    def upload(self, data: bytes, path: str) -> str:
        self.ensure_available()
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info("Arquivo salvo: %s (%d bytes)", path, len(data))
        return f"{self.base_url}/{path}"

    def path_for(self, url: str) -> Optional[Path]:
        prefix = self.base_url + "/"
        if not url or not url.startswith(prefix):
            return None
        return self._resolve(url[len(prefix):])

    def delete(self, url: Optional[str]) -> None:
        if not url:
            return
        target = self.path_for(url)
        if target is None:
            logger.warning("URL fora do armazenamento, ignorada: %s", url)
            return
        try:
            target.unlink()
            logger.info("Arquivo removido: %s", url)
        except FileNotFoundError:
            logger.debug("Arquivo já removido: %s", url)


blob_store = LocalBlobStore(config.MEDIA_ROOT, config.MEDIA_URL)


def get_blob_store() -> LocalBlobStore:
    return blob_store
