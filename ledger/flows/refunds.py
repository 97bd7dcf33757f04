"""
Refund Subsystem

A refund is a transaction of type `refund` pointing at ONE original
expense. Many partial refunds may point at the same expense, but never
more than it cost:

    refundable = original.amount - sum(existing refunds)

Checks run in this order, and the first failure decides the error:
1. original exists and belongs to the user      NOT_FOUND / FORBIDDEN
2. original is an expense                       REFUND_INVALID_TYPE
3. amount > 0                                   REFUND_AMOUNT_INVALID
4. something is left to refund                  REFUND_ALREADY_FULL
5. amount <= refundable (+ tolerance)           REFUND_AMOUNT_EXCEEDED

Creating or editing a refund locks the original expense row before its
refunds are summed, so two refunds of the same expense never both see
the same refundable amount.

A refund inherits account and category from the original. On a regular
account it adds to the balance; on a credit account it lowers the derived
outstanding balance instead.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from ledger.audit import AuditLogger, create_correlation_id
from ledger.errors import ErrorCode, LedgerError
from ledger.flows.base import (
    LedgerFlow,
    effect_deltas,
    lock_accounts,
    lock_transaction,
    merge_deltas,
    post_deltas,
    refresh_credit_balances,
)
from ledger.flows.cascade import CascadeDeleteCoordinator
from ledger.models.audit import AuditEventType
from ledger.models.ledger import (
    ZERO,
    CascadeResult,
    Expense,
    Refund,
    RefundInfo,
    RefundResult,
    TransactionBase,
    TransactionType,
    to_money,
)
from ledger.services.storage import LedgerSession, LedgerStorageInterface
from ledger.validation import TransactionValidator, ensure_owned


def default_refund_note(original: Expense) -> str:
    return f"Refund - {original.note}" if original.note else "Refund"


def require_refund(transaction: TransactionBase) -> Refund:
    if transaction.type != TransactionType.REFUND:
        raise LedgerError(
            ErrorCode.REFUND_INVALID_TYPE,
            f"Transaction {transaction.id} is not a refund",
            {"transaction_id": transaction.id, "type": transaction.type.value},
        )
    return transaction


class RefundService(LedgerFlow):
    """Creates, edits and deletes refunds against expenses."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        cascade: Optional[CascadeDeleteCoordinator] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[TransactionValidator] = None,
    ):
        super().__init__(storage, audit_logger, validator)
        self._cascade = cascade or CascadeDeleteCoordinator(
            storage, audit_logger=self._audit, validator=self._validator
        )

    async def _load_original(
        self,
        session: LedgerSession,
        original_transaction_id: UUID,
        user_id: UUID,
        for_update: bool = False,
    ) -> Expense:
        """Load the expense a refund points at; lock it before its refunds are summed."""
        original = ensure_owned(
            await session.get_transaction(original_transaction_id, for_update=for_update),
            "Transaction", original_transaction_id, user_id,
        )
        return self._validator.check_refund_target(original)

    async def _info(self, session: LedgerSession, original: Expense) -> RefundInfo:
        refunds = await session.list_refunds_for(original.id)
        total = to_money(sum((r.amount for r in refunds), ZERO))
        return RefundInfo(
            original=original,
            refunds=refunds,
            total_refunded=total,
            refundable_amount=self._validator.refundable_amount(original, refunds),
        )

    # =========================================================================
    # READ
    # =========================================================================

    async def calculate_refundable_amount(
        self,
        original_transaction_id: UUID,
        user_id: UUID,
    ) -> Decimal:
        info = await self.get_refund_info(original_transaction_id, user_id)
        return info.refundable_amount

    async def get_refund_info(
        self,
        original_transaction_id: UUID,
        user_id: UUID,
    ) -> RefundInfo:
        """The expense, its refunds (newest first) and what is left to refund."""
        async with self._rejections("get_refund_info", user_id):
            async with self._storage.atomic() as session:
                original = await self._load_original(session, original_transaction_id, user_id)
                return await self._info(session, original)

    # =========================================================================
    # CREATE / UPDATE
    # =========================================================================

    async def create_refund(
        self,
        user_id: UUID,
        original_transaction_id: UUID,
        amount: Decimal,
        date: Optional[date] = None,
        note: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> RefundResult:
        """Refund part or all of an expense."""
        correlation_id = correlation_id or create_correlation_id()

        async with self._rejections("create_refund", user_id, correlation_id):
            async with self._storage.atomic() as session:
                original = await self._load_original(
                    session, original_transaction_id, user_id, for_update=True
                )
                info = await self._info(session, original)
                amount = self._validator.check_refund_amount(amount, info.refundable_amount)

                refund = Refund(
                    owner_id=user_id,
                    amount=amount,
                    account_id=original.account_id,
                    category_id=original.category_id,
                    original_transaction_id=original.id,
                    date=date or datetime.utcnow().date(),
                    note=note if note is not None else default_refund_note(original),
                )
                accounts = await lock_accounts(session, [refund.account_id], user_id)
                await session.add_transaction(refund)
                await post_deltas(session, accounts, effect_deltas(refund))
                await refresh_credit_balances(session, accounts)

        await self._audit.log_transaction(
            AuditEventType.REFUND_CREATED,
            refund,
            details={"original_transaction_id": original.id},
            correlation_id=correlation_id,
        )
        refunded = to_money(info.total_refunded + amount)
        return RefundResult(
            refund=refund,
            original_transaction_id=original.id,
            original_amount=original.amount,
            refunded_amount=refunded,
            refundable_amount=to_money(original.amount - refunded),
            account_balance=accounts[refund.account_id].balance,
        )

    async def update_refund(
        self,
        refund_id: UUID,
        user_id: UUID,
        amount: Optional[Decimal] = None,
        date: Optional[date] = None,
        note: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> RefundResult:
        """
        Change a refund's amount, date or note.

        A new amount is checked against what the OTHER refunds leave.
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._rejections("update_refund", user_id, correlation_id):
            async with self._storage.atomic() as session:
                old = require_refund(
                    await lock_transaction(session, refund_id, user_id, "Refund")
                )
                original = await session.get_transaction(old.original_transaction_id)
                others = [
                    r for r in await session.list_refunds_for(original.id) if r.id != old.id
                ]
                others_total = to_money(sum((r.amount for r in others), ZERO))

                updates = {"updated_at": datetime.utcnow()}
                if amount is not None:
                    updates["amount"] = self._validator.check_refund_amount(
                        amount, self._validator.refundable_amount(original, others)
                    )
                if date is not None:
                    updates["date"] = date
                if note is not None:
                    updates["note"] = note
                new = Refund.model_validate({**old.model_dump(), **updates})

                accounts = await lock_accounts(session, [new.account_id], user_id)
                await post_deltas(
                    session, accounts, merge_deltas(effect_deltas(old, -1), effect_deltas(new))
                )
                await session.save_transaction(new)
                await refresh_credit_balances(session, accounts)

        await self._audit.log_transaction(
            AuditEventType.REFUND_UPDATED,
            new,
            details={"previous_amount": old.amount},
            correlation_id=correlation_id,
        )
        refunded = to_money(others_total + new.amount)
        return RefundResult(
            refund=new,
            original_transaction_id=original.id,
            original_amount=original.amount,
            refunded_amount=refunded,
            refundable_amount=to_money(original.amount - refunded),
            account_balance=accounts[new.account_id].balance,
        )

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete_refund(
        self,
        refund_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> CascadeResult:
        """
        Exact inverse of create_refund.

        The original expense and its other refunds are never touched.
        """
        return await self._cascade.delete_transaction(
            refund_id,
            user_id,
            correlation_id=correlation_id,
            operation="delete_refund",
            check=require_refund,
        )
