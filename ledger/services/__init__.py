"""Services package."""

from ledger.services.files import (
    FileStorageError,
    FileStorageInterface,
    LocalFileStorage,
)
from ledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerSession,
    LedgerStorageInterface,
    NotFoundError,
    SqlLedgerStorage,
    StorageError,
)

__all__ = [
    # File storage
    "FileStorageError",
    "FileStorageInterface",
    "LocalFileStorage",
    # Ledger storage
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "LedgerSession",
    "LedgerStorageInterface",
    "NotFoundError",
    "SqlLedgerStorage",
    "StorageError",
]
