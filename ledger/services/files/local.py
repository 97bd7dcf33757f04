"""
Local Filesystem Storage

Attachment files are kept under one root directory. Storage paths are
relative to that root; anything resolving outside it is refused.
"""

from pathlib import Path
from typing import Optional

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ledger.config import AttachmentSettings, get_settings
from ledger.services.files.interface import FileStorageError, FileStorageInterface


logger = structlog.get_logger(__name__)


class LocalFileStorage(FileStorageInterface):
    """Deletes attachment files from a local directory tree."""

    def __init__(
        self,
        root_dir: Optional[str] = None,
        settings: Optional[AttachmentSettings] = None,
    ):
        settings = settings or get_settings().attachments
        self._root = Path(root_dir or settings.root_dir).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, storage_path: str) -> Path:
        """Absolute path for a storage path, confined to the root."""
        path = (self._root / storage_path.lstrip("/")).resolve()
        if path != self._root and self._root not in path.parents:
            raise FileStorageError(f"Storage path escapes the upload root: {storage_path}")
        return path

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(PermissionError),
        reraise=True,
    )
    def _unlink(self, path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    async def delete(self, storage_path: str) -> bool:
        path = self.resolve(storage_path)
        try:
            removed = self._unlink(path)
        except OSError as e:
            raise FileStorageError(f"Failed to delete {storage_path}: {e}") from e
        if removed:
            logger.debug("stored_file_deleted", storage_path=storage_path)
        else:
            logger.debug("stored_file_missing", storage_path=storage_path)
        return removed
