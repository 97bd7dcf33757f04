"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements SQLAlchemy as the backend, but designed to be swappable.
"""

from ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerSession,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)
from ledger.services.storage.sql import (
    SqlLedgerSession,
    SqlLedgerStorage,
    build_engine,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerSession",
    "LedgerStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # SQLAlchemy implementation
    "SqlLedgerSession",
    "SqlLedgerStorage",
    "build_engine",
]
