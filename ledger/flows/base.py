"""
Shared Plumbing for Ledger Flows

Balance effects are computed as signed per-account deltas:

    income   +a on account          expense  -a on account
    refund   +a on account          transfer -a on account, +a on target
    repayment -a on source (the credit side has no direct effect)

Reverting a transaction applies the same legs with the opposite sign, so
"revert old, apply new" is one merged delta map and moving a transaction
between two non-credit accounts always nets to zero.

Legs landing on credit accounts are skipped. After any mutation that
touches a credit account, its stored balance is re-derived from the ledger
as the overpayment credit.
"""

from collections import defaultdict
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Iterable, Optional
from uuid import UUID

import structlog

from ledger.audit import AuditLogger
from ledger.errors import LedgerError
from ledger.models.ledger import (
    ZERO,
    Account,
    Attachment,
    TransactionBase,
    TransactionType,
    to_money,
)
from ledger.reconciliation import calculate_overpayment
from ledger.services.files import FileStorageInterface
from ledger.services.storage import LedgerSession, LedgerStorageInterface, StorageError
from ledger.validation import TransactionValidator, ensure_owned


def effect_deltas(transaction: TransactionBase, sign: int = 1) -> dict[UUID, Decimal]:
    """Signed balance delta per account for applying (+1) or reverting (-1)."""
    deltas = defaultdict(lambda: ZERO)
    for account_id, direction in transaction.balance_legs():
        deltas[account_id] += direction * sign * transaction.amount
    return dict(deltas)


def merge_deltas(*delta_maps: dict[UUID, Decimal]) -> dict[UUID, Decimal]:
    merged = defaultdict(lambda: ZERO)
    for deltas in delta_maps:
        for account_id, delta in deltas.items():
            merged[account_id] += delta
    return dict(merged)


async def lock_accounts(
    session: LedgerSession,
    account_ids: Iterable[UUID],
    user_id: UUID,
) -> dict[UUID, Account]:
    """
    Fetch and row-lock every account an operation touches.

    Locks are taken in a fixed order so two operations on the same pair
    of accounts can't deadlock.
    """
    accounts = {}
    for account_id in sorted(set(account_ids), key=str):
        account = await session.get_account(account_id, for_update=True)
        accounts[account_id] = ensure_owned(account, "Account", account_id, user_id)
    return accounts


async def lock_transaction(
    session: LedgerSession,
    transaction_id: UUID,
    user_id: UUID,
    entity_name: str = "Transaction",
) -> TransactionBase:
    """
    Fetch and row-lock a transaction before anything is derived from it.

    A refund's original expense is locked first, so every operation that
    changes the refunds of one expense queues on the same row. Taken before
    `lock_accounts`; the returned copy reflects whatever committed while
    this one waited.
    """
    peek = ensure_owned(
        await session.get_transaction(transaction_id), entity_name, transaction_id, user_id
    )
    if peek.type == TransactionType.REFUND:
        await session.get_transaction(peek.original_transaction_id, for_update=True)
    transaction = await session.get_transaction(transaction_id, for_update=True)
    return ensure_owned(transaction, entity_name, transaction_id, user_id)


async def post_deltas(
    session: LedgerSession,
    accounts: dict[UUID, Account],
    deltas: dict[UUID, Decimal],
) -> None:
    for account_id, delta in deltas.items():
        account = accounts[account_id]
        if account.is_credit or delta == 0:
            continue
        account.balance = to_money(account.balance + delta)
        await session.save_account(account)


async def refresh_credit_balances(
    session: LedgerSession,
    accounts: dict[UUID, Account],
) -> None:
    """Re-derive the overpayment credit of every credit account touched."""
    for account in accounts.values():
        if not account.is_credit:
            continue
        transactions = await session.list_transactions(account.owner_id, account_id=account.id)
        overpayment = calculate_overpayment(account.id, transactions)
        if account.balance != overpayment:
            account.balance = overpayment
            await session.save_account(account)


class LedgerFlow:
    """
    Base class for services that mutate the ledger.

    Holds the collaborators every flow needs and turns business-rule
    rejections into audit events.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[TransactionValidator] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._validator = validator or TransactionValidator()
        self._logger = structlog.get_logger(type(self).__module__)

    @asynccontextmanager
    async def _rejections(
        self,
        operation: str,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AsyncIterator[None]:
        """Audit any LedgerError or StorageError raised inside the block, then re-raise it."""
        try:
            yield
        except LedgerError as e:
            await self._audit.log_rejection(operation, e, user_id, correlation_id)
            raise
        except StorageError as e:
            await self._audit.log_error(
                type(e).__name__,
                str(e),
                {"operation": operation, "owner_id": user_id},
                correlation_id=correlation_id,
            )
            raise


async def delete_stored_files(
    files: Optional[FileStorageInterface],
    attachments: Iterable[Attachment],
    audit_logger: AuditLogger,
    correlation_id: Optional[UUID] = None,
) -> list[str]:
    """
    Delete the stored file of each attachment, best-effort.

    Runs after the metadata delete has committed. Failures are audited
    and returned; they never propagate.
    """
    failed = []
    if files is None:
        return failed
    for attachment in attachments:
        try:
            await files.delete(attachment.storage_path)
        except Exception as e:
            failed.append(attachment.storage_path)
            await audit_logger.log_file_delete_failed(
                storage_path=attachment.storage_path,
                error_message=str(e),
                owner_id=attachment.owner_id,
                correlation_id=correlation_id,
            )
    return failed
