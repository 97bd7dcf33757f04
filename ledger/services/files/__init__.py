"""
Stored-File Services Package

The ledger never reads attachment files. It only asks for them to be
deleted when their metadata goes away.
"""

from ledger.services.files.interface import FileStorageError, FileStorageInterface
from ledger.services.files.local import LocalFileStorage

__all__ = [
    "FileStorageError",
    "FileStorageInterface",
    "LocalFileStorage",
]
