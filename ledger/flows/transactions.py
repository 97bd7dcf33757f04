"""
Transaction Ledger

DESIGN DECISION: The ledger is a state machine over transaction TYPE.
The type alone decides how a transaction moves balances; amounts are
always positive.

Entry points:
- create() for income, expense and transfer (and the create_* shortcuts
  external schedulers call exactly like a user would)
- update() for account, category, amount, date and note changes
- delete() through the Cascade Delete Coordinator

Refunds and repayments are created only through their own subsystems,
which enforce the extra preconditions those types carry.

CRITICAL: every check runs before the first write. A rejected operation
leaves the store exactly as it was.
"""

from datetime import date, datetime
from decimal import Decimal
from math import ceil
from typing import Optional
from uuid import UUID

from ledger.audit import AuditLogger, create_correlation_id
from ledger.config import AppSettings, get_settings
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
    Account,
    CascadeResult,
    Expense,
    Income,
    Refund,
    Repayment,
    TransactionBase,
    TransactionChanges,
    TransactionFilter,
    TransactionPage,
    TransactionType,
    Transfer,
    to_money,
)
from ledger.services.storage import LedgerSession, LedgerStorageInterface
from ledger.validation import TransactionValidator, ensure_owned


CREATABLE_TYPES = (TransactionType.INCOME, TransactionType.EXPENSE, TransactionType.TRANSFER)


class TransactionLedger(LedgerFlow):
    """Creates, edits, lists and deletes transactions."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        cascade: Optional[CascadeDeleteCoordinator] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[TransactionValidator] = None,
        settings: Optional[AppSettings] = None,
    ):
        super().__init__(storage, audit_logger, validator)
        self._cascade = cascade or CascadeDeleteCoordinator(
            storage, audit_logger=self._audit, validator=self._validator
        )
        self._settings = settings or get_settings().app

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create(
        self,
        user_id: UUID,
        type: TransactionType,
        account_id: UUID,
        amount: Decimal,
        date: date,
        category_id: Optional[UUID] = None,
        note: str = "",
        target_account_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionBase:
        """
        Record an income, expense or transfer and apply its balance effect.

        Raises:
            LedgerError(UNSUPPORTED_TRANSACTION_TYPE): refund/repayment requested here
            LedgerError(INVALID_AMOUNT): amount <= 0
            LedgerError(NOT_FOUND / FORBIDDEN): account missing or someone else's
            LedgerError(INVALID_ACCOUNT_TYPE): account-type isolation violated
        """
        correlation_id = correlation_id or create_correlation_id()
        type = TransactionType(type)

        async with self._rejections(f"create_{type.value}", user_id, correlation_id):
            if type not in CREATABLE_TYPES:
                raise LedgerError(
                    ErrorCode.UNSUPPORTED_TRANSACTION_TYPE,
                    f"{type.value.capitalize()} transactions have their own entry point",
                    {"type": type.value},
                )
            amount = self._validator.check_amount(amount)

            async with self._storage.atomic() as session:
                if type == TransactionType.TRANSFER:
                    transaction = Transfer(
                        owner_id=user_id,
                        amount=amount,
                        account_id=account_id,
                        target_account_id=target_account_id,
                        category_id=category_id,
                        date=date,
                        note=note,
                    )
                    accounts = await lock_accounts(session, transaction.account_ids(), user_id)
                    self._validator.check_transfer_accounts(
                        accounts[account_id], accounts[target_account_id]
                    )
                else:
                    model = Income if type == TransactionType.INCOME else Expense
                    transaction = model(
                        owner_id=user_id,
                        amount=amount,
                        account_id=account_id,
                        category_id=category_id,
                        date=date,
                        note=note,
                    )
                    accounts = await lock_accounts(session, [account_id], user_id)
                    self._validator.check_ledger_account(accounts[account_id], type)

                await session.add_transaction(transaction)
                await post_deltas(session, accounts, effect_deltas(transaction))
                await refresh_credit_balances(session, accounts)

        await self._audit.log_transaction(
            AuditEventType.TRANSACTION_CREATED, transaction, correlation_id=correlation_id
        )
        return transaction

    async def create_income(
        self,
        user_id: UUID,
        account_id: UUID,
        amount: Decimal,
        date: date,
        category_id: UUID,
        note: str = "",
        correlation_id: Optional[UUID] = None,
    ) -> Income:
        return await self.create(
            user_id, TransactionType.INCOME, account_id, amount, date,
            category_id=category_id, note=note, correlation_id=correlation_id,
        )

    async def create_expense(
        self,
        user_id: UUID,
        account_id: UUID,
        amount: Decimal,
        date: date,
        category_id: UUID,
        note: str = "",
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        return await self.create(
            user_id, TransactionType.EXPENSE, account_id, amount, date,
            category_id=category_id, note=note, correlation_id=correlation_id,
        )

    async def create_transfer(
        self,
        user_id: UUID,
        from_account_id: UUID,
        to_account_id: UUID,
        amount: Decimal,
        date: date,
        category_id: Optional[UUID] = None,
        note: str = "",
        correlation_id: Optional[UUID] = None,
    ) -> Transfer:
        return await self.create(
            user_id, TransactionType.TRANSFER, from_account_id, amount, date,
            category_id=category_id, note=note, target_account_id=to_account_id,
            correlation_id=correlation_id,
        )

    # =========================================================================
    # READ
    # =========================================================================

    async def get(self, transaction_id: UUID, user_id: UUID) -> TransactionBase:
        async with self._rejections("get_transaction", user_id):
            async with self._storage.atomic() as session:
                return ensure_owned(
                    await session.get_transaction(transaction_id),
                    "Transaction", transaction_id, user_id,
                )

    async def list(
        self,
        user_id: UUID,
        filter: Optional[TransactionFilter] = None,
    ) -> TransactionPage:
        """One page of a user's transactions, newest first."""
        filter = filter or TransactionFilter()
        page_size = filter.page_size or self._settings.default_page_size
        criteria = {
            "account_id": filter.account_id,
            "category_id": filter.category_id,
            "transaction_type": filter.type,
            "date_from": filter.date_from,
            "date_to": filter.date_to,
        }

        async with self._storage.atomic() as session:
            total = await session.count_transactions(user_id, **criteria)
            items = await session.list_transactions(
                user_id,
                limit=page_size,
                offset=(filter.page - 1) * page_size,
                **criteria,
            )

        return TransactionPage(
            items=items,
            total=total,
            page=filter.page,
            page_size=page_size,
            total_pages=ceil(total / page_size) if total else 0,
        )

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update(
        self,
        transaction_id: UUID,
        user_id: UUID,
        changes: TransactionChanges,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionBase:
        """
        Edit a transaction and re-balance the accounts it touches.

        The balance adjustment is "revert old effects, apply new effects",
        merged into one signed delta per account. Moving a transaction from
        account A to account B therefore changes A and B by exact opposites;
        a change that moves nothing is a no-op on balances.

        The edited row (and a refund's expense) is locked before anything
        is derived from it, so a concurrent edit or delete is seen as
        committed rather than overwritten with a stale copy.

        Raises:
            LedgerError(INVALID_AMOUNT / REFUND_AMOUNT_INVALID): amount <= 0
            LedgerError(REFUND_AMOUNT_EXCEEDED): refund cap violated, or an
                expense shrunk below what was refunded against it
            LedgerError(INSUFFICIENT_BALANCE): repayment increase not covered
            LedgerError(INVALID_ACCOUNT_TYPE / INVALID_CREDIT_ACCOUNT): new
                account breaks account-type isolation
            LedgerError(TRADE_NOT_EDITABLE): the transaction is an investment trade
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._rejections("update_transaction", user_id, correlation_id):
            async with self._storage.atomic() as session:
                old = await lock_transaction(session, transaction_id, user_id)
                self._validator.check_not_trade(old)
                if changes.is_empty:
                    return old

                updates = changes.model_dump(exclude_none=True)
                if "amount" in updates:
                    code = (
                        ErrorCode.REFUND_AMOUNT_INVALID
                        if old.type == TransactionType.REFUND
                        else ErrorCode.INVALID_AMOUNT
                    )
                    updates["amount"] = self._validator.check_amount(updates["amount"], code)
                updates["updated_at"] = datetime.utcnow()
                new = type(old).model_validate({**old.model_dump(), **updates})

                accounts = await lock_accounts(
                    session, old.account_ids() | new.account_ids(), user_id
                )
                await self._check_update(session, old, new, accounts)

                deltas = merge_deltas(effect_deltas(old, -1), effect_deltas(new, 1))
                await post_deltas(session, accounts, deltas)
                await session.save_transaction(new)
                await refresh_credit_balances(session, accounts)

        event_type = {
            TransactionType.REFUND: AuditEventType.REFUND_UPDATED,
        }.get(new.type, AuditEventType.TRANSACTION_UPDATED)
        await self._audit.log_transaction(
            event_type,
            new,
            details={"fields": sorted(k for k in updates if k != "updated_at")},
            correlation_id=correlation_id,
        )
        return new

    async def _check_update(
        self,
        session: LedgerSession,
        old: TransactionBase,
        new: TransactionBase,
        accounts: dict[UUID, Account],
    ) -> None:
        """Type-specific rules for an edit. Runs before any write."""
        if isinstance(new, Transfer):
            self._validator.check_transfer_accounts(
                accounts[new.account_id], accounts[new.target_account_id]
            )
            return

        if isinstance(new, Repayment):
            credit_account = accounts[new.account_id]
            source_account = accounts[new.source_account_id]
            self._validator.check_repayment_accounts(credit_account, source_account)
            increase = new.amount - old.amount
            if increase > 0:
                self._validator.check_source_balance(source_account, increase)
            return

        self._validator.check_ledger_account(accounts[new.account_id], new.type)

        if isinstance(new, Expense) and new.amount < old.amount:
            refunds = await session.list_refunds_for(new.id)
            refunded = to_money(sum((r.amount for r in refunds), ZERO))
            self._validator.check_expense_covers_refunds(new.amount, refunded)

        if isinstance(new, Refund) and new.amount > old.amount:
            original = await session.get_transaction(new.original_transaction_id)
            others = [
                r for r in await session.list_refunds_for(new.original_transaction_id)
                if r.id != new.id
            ]
            refundable = self._validator.refundable_amount(original, others)
            self._validator.check_refund_amount(new.amount, refundable)

    # =========================================================================
    # DELETE
    # =========================================================================

    async def delete(
        self,
        transaction_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> CascadeResult:
        """
        Delete a transaction with its refunds and attachments.

        Raises:
            LedgerError(TRADE_NOT_EDITABLE): The transaction is an investment trade
        """
        return await self._cascade.delete_transaction(
            transaction_id,
            user_id,
            correlation_id=correlation_id,
            check=self._validator.check_not_trade,
        )
