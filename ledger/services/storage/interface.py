"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap SQLite for PostgreSQL without touching ledger rules
2. Use an in-memory database for testing
3. Keep business logic decoupled from storage implementation

Every ledger operation runs inside ONE unit of work obtained from
`LedgerStorageInterface.atomic()`. The unit of work commits on normal exit
and rolls back on any exception, so a rejected or failed operation never
leaves partial effects behind (no refund without its balance adjustment).

The interface is intentionally narrow - we're not exposing the ORM.
Just the operations the ledger needs.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from ledger.models.audit import AuditEvent
from ledger.models.ledger import (
    Account,
    AccountType,
    Attachment,
    BalanceAdjustment,
    Budget,
    Refund,
    TransactionBase,
    TransactionType,
    Valuation,
)


class LedgerSession(ABC):
    """
    One unit of work against the ledger store.

    Reads see the session's own uncommitted writes. Accounts and
    transactions fetched with `for_update=True` stay row-locked until the
    unit of work ends.
    """

    # -- Accounts ------------------------------------------------------------

    @abstractmethod
    async def get_account(
        self,
        account_id: UUID,
        for_update: bool = False,
    ) -> Optional[Account]:
        """
        Retrieve an account by ID.

        Args:
            account_id: The account's unique identifier
            for_update: Lock the row until the unit of work ends

        Returns:
            The account if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_accounts(
        self,
        owner_id: UUID,
        account_type: Optional[AccountType] = None,
    ) -> list[Account]:
        """List a user's accounts, oldest first."""
        pass

    @abstractmethod
    async def add_account(self, account: Account) -> None:
        pass

    @abstractmethod
    async def save_account(self, account: Account) -> None:
        """
        Persist changed fields of an existing account.

        Raises:
            NotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
    async def delete_account(self, account_id: UUID) -> bool:
        pass

    @abstractmethod
    async def count_account_references(self, account_id: UUID) -> int:
        """Number of transactions naming the account on any side."""
        pass

    # -- Transactions --------------------------------------------------------

    @abstractmethod
    async def get_transaction(
        self,
        transaction_id: UUID,
        for_update: bool = False,
    ) -> Optional[TransactionBase]:
        """
        Retrieve a transaction by ID.

        With `for_update=True` the row is locked until the unit of work
        ends and re-read from the store, so a caller that waited on the
        lock sees the committed state (or None if it was deleted).
        """
        pass

    @abstractmethod
    async def add_transaction(self, transaction: TransactionBase) -> None:
        pass

    @abstractmethod
    async def save_transaction(self, transaction: TransactionBase) -> None:
        """
        Persist changed fields of an existing transaction.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        pass

    @abstractmethod
    async def delete_transactions(self, transaction_ids: Iterable[UUID]) -> int:
        """Delete transactions by ID. Returns the number of rows removed."""
        pass

    @abstractmethod
    async def list_transactions(
        self,
        owner_id: UUID,
        account_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        transaction_type: Optional[TransactionType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[TransactionBase]:
        """
        List a user's transactions with optional filters.

        Args:
            owner_id: Whose transactions to list
            account_id: Match the account on any side (account, source, target)
            category_id: Filter by category
            transaction_type: Filter by type
            date_from: Filter transactions on or after this date
            date_to: Filter transactions on or before this date
            limit: Maximum number of results (None for all)
            offset: Number of results to skip

        Returns:
            Matching transactions, newest first
        """
        pass

    @abstractmethod
    async def count_transactions(
        self,
        owner_id: UUID,
        account_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        transaction_type: Optional[TransactionType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> int:
        """Count transactions matching the same filters as list_transactions."""
        pass

    @abstractmethod
    async def sum_by_type(
        self,
        owner_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> dict[TransactionType, tuple[Decimal, int]]:
        """(total amount, count) per transaction type within a date range."""
        pass

    @abstractmethod
    async def sum_by_category(
        self,
        owner_id: UUID,
        transaction_type: TransactionType,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> dict[Optional[UUID], tuple[Decimal, int]]:
        """(total amount, count) per category for one transaction type."""
        pass

    @abstractmethod
    async def list_refunds_for(self, original_transaction_id: UUID) -> list[Refund]:
        """All refunds issued against one original expense, newest first."""
        pass

    # -- Attachments ---------------------------------------------------------

    @abstractmethod
    async def get_attachment(self, attachment_id: UUID) -> Optional[Attachment]:
        pass

    @abstractmethod
    async def add_attachment(self, attachment: Attachment) -> None:
        pass

    @abstractmethod
    async def save_attachment(self, attachment: Attachment) -> None:
        pass

    @abstractmethod
    async def delete_attachments(self, attachment_ids: Iterable[UUID]) -> int:
        pass

    @abstractmethod
    async def list_attachments_for(
        self,
        transaction_ids: Iterable[UUID],
    ) -> list[Attachment]:
        """Attachments linked to any of the given transactions."""
        pass

    @abstractmethod
    async def list_unlinked_attachments(
        self,
        owner_id: UUID,
        created_before: datetime,
    ) -> list[Attachment]:
        pass

    # -- Balance adjustments -------------------------------------------------

    @abstractmethod
    async def add_adjustment(self, adjustment: BalanceAdjustment) -> None:
        pass

    @abstractmethod
    async def list_adjustments(
        self,
        owner_id: UUID,
        account_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[BalanceAdjustment]:
        """List quick-balance records, newest first."""
        pass

    # -- Valuations ----------------------------------------------------------

    @abstractmethod
    async def add_valuation(self, valuation: Valuation) -> None:
        pass

    @abstractmethod
    async def list_valuations(
        self,
        account_id: UUID,
        limit: Optional[int] = None,
    ) -> list[Valuation]:
        """Valuation history of one investment account, newest first."""
        pass

    # -- Budgets -------------------------------------------------------------

    @abstractmethod
    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        pass

    @abstractmethod
    async def find_budget(
        self,
        owner_id: UUID,
        category_id: Optional[UUID],
        month: str,
    ) -> Optional[Budget]:
        """
        The budget for one category (None for the overall budget) and month.

        The row, if found, stays locked until the unit of work ends.
        """
        pass

    @abstractmethod
    async def add_budget(self, budget: Budget) -> None:
        pass

    @abstractmethod
    async def save_budget(self, budget: Budget) -> None:
        pass

    @abstractmethod
    async def delete_budget(self, budget_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_budgets(self, owner_id: UUID, month: str) -> list[Budget]:
        """A month's budgets, the overall budget first."""
        pass


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage.

    Any storage implementation (SQLite, PostgreSQL, etc.)
    must implement this method.
    """

    @abstractmethod
    def atomic(self) -> AbstractAsyncContextManager[LedgerSession]:
        """
        Open a unit of work.

        Usage:
            async with storage.atomic() as session:
                account = await session.get_account(account_id, for_update=True)
                ...

        Raises:
            StorageError: If the unit of work cannot be committed
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one cascade delete).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'account', 'transaction')
            entity_id: The entity's ID

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
