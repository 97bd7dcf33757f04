"""
Cascade Delete Coordinator

DESIGN DECISION: Deleting a transaction is planned first and executed once.

PLAN (read-only, once the transaction row and a refund's expense are locked):
- The transaction itself
- Every refund referencing it (only expenses have refunds)
- Every attachment linked to any of those transactions
- The reversed balance deltas of all deleted transactions

EXECUTE (one unit of work):
- Lock every affected account
- Apply the reversed deltas, delete attachment rows, delete transactions
- Re-derive touched credit accounts

AFTER COMMIT (best-effort):
- Ask file storage to delete each attachment's stored file, once each.
  A failed file delete is audited; the metadata delete stays committed.

Refunds have no dependents, so deleting a refund deletes just the refund
and its own attachments. Nothing unrelated to the planned set is touched.
"""

from typing import Callable, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ledger.audit import AuditLogger, create_correlation_id
from ledger.flows.base import (
    LedgerFlow,
    delete_stored_files,
    effect_deltas,
    lock_accounts,
    lock_transaction,
    merge_deltas,
    post_deltas,
    refresh_credit_balances,
)
from ledger.models.audit import AuditEventType
from ledger.models.ledger import (
    Attachment,
    CascadeResult,
    TransactionBase,
    TransactionType,
)
from ledger.services.files import FileStorageInterface
from ledger.services.storage import LedgerSession, LedgerStorageInterface
from ledger.validation import TransactionValidator


class CascadePlan(BaseModel):
    """Everything one delete will remove, computed before anything is removed."""

    root: TransactionBase
    transactions: list[TransactionBase] = Field(default_factory=list)
    attachments: list[Attachment] = Field(default_factory=list)

    @property
    def transaction_ids(self) -> list[UUID]:
        return [t.id for t in self.transactions]

    @property
    def attachment_ids(self) -> list[UUID]:
        return [a.id for a in self.attachments]

    @property
    def account_ids(self) -> set[UUID]:
        ids = set()
        for transaction in self.transactions:
            ids |= transaction.account_ids()
        return ids

    def reversed_deltas(self):
        return merge_deltas(*(effect_deltas(t, -1) for t in self.transactions))


class CascadeDeleteCoordinator(LedgerFlow):
    """Deletes a transaction together with everything that depends on it."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        file_storage: Optional[FileStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[TransactionValidator] = None,
    ):
        super().__init__(storage, audit_logger, validator)
        self._files = file_storage

    @staticmethod
    async def plan(session: LedgerSession, transaction: TransactionBase) -> CascadePlan:
        """Compute the full dependent set of a transaction."""
        transactions = [transaction]
        if transaction.type == TransactionType.EXPENSE:
            transactions.extend(await session.list_refunds_for(transaction.id))
        attachments = await session.list_attachments_for(t.id for t in transactions)
        return CascadePlan(root=transaction, transactions=transactions, attachments=attachments)

    async def delete_transaction(
        self,
        transaction_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
        operation: str = "delete_transaction",
        check: Optional[Callable[[TransactionBase], None]] = None,
    ) -> CascadeResult:
        """
        Delete a transaction and its dependents in one unit of work.

        `check` runs on the loaded transaction before anything is planned;
        subsystems use it to insist on their own transaction type.

        Raises:
            LedgerError(NOT_FOUND / FORBIDDEN): Missing or someone else's transaction
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._rejections(operation, user_id, correlation_id):
            async with self._storage.atomic() as session:
                transaction = await lock_transaction(session, transaction_id, user_id)
                if check:
                    check(transaction)
                plan = await self.plan(session, transaction)
                await self.execute(session, plan, user_id)

        failed = await delete_stored_files(
            self._files, plan.attachments, self._audit, correlation_id
        )
        if failed:
            self._logger.warning(
                "stored_file_delete_failed",
                transaction_id=str(transaction_id),
                failed_paths=failed,
            )

        await self._log_deleted(plan, user_id, correlation_id)
        return CascadeResult(
            deleted_transaction_ids=plan.transaction_ids,
            deleted_attachment_ids=plan.attachment_ids,
            failed_file_paths=failed,
        )

    @staticmethod
    async def execute(session: LedgerSession, plan: CascadePlan, user_id: UUID) -> None:
        """Apply a plan inside an open unit of work."""
        accounts = await lock_accounts(session, plan.account_ids, user_id)
        await post_deltas(session, accounts, plan.reversed_deltas())
        await session.delete_attachments(plan.attachment_ids)
        await session.delete_transactions(plan.transaction_ids)
        await refresh_credit_balances(session, accounts)

    async def _log_deleted(
        self,
        plan: CascadePlan,
        user_id: UUID,
        correlation_id: UUID,
    ) -> None:
        event_types = {
            TransactionType.REFUND: AuditEventType.REFUND_DELETED,
            TransactionType.REPAYMENT: AuditEventType.REPAYMENT_DELETED,
        }
        for transaction in plan.transactions:
            await self._audit.log_transaction(
                event_types.get(transaction.type, AuditEventType.TRANSACTION_DELETED),
                transaction,
                correlation_id=correlation_id,
            )
        await self._audit.log_cascade_delete(
            transaction_id=plan.root.id,
            owner_id=user_id,
            deleted_transaction_ids=plan.transaction_ids,
            deleted_attachment_ids=plan.attachment_ids,
            correlation_id=correlation_id,
        )
