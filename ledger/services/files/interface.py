"""
Abstract Stored-File Interface

DESIGN DECISION: Physical file deletion is an external side effect.
It runs AFTER the metadata deletion has committed, and a failure here
never rolls the ledger back. Callers log the failure and move on.
"""

from abc import ABC, abstractmethod


class FileStorageInterface(ABC):
    """Where attachment files live."""

    @abstractmethod
    async def delete(self, storage_path: str) -> bool:
        """
        Delete one stored file.

        Args:
            storage_path: Path recorded on the attachment

        Returns:
            True if a file was removed, False if it was already gone

        Raises:
            FileStorageError: If the file exists but could not be removed
        """
        pass


class FileStorageError(Exception):
    """A stored file could not be removed."""
    pass
