"""
Repayment Subsystem

A repayment moves money from a regular account into a credit account:

    source.balance       -= amount          (exactly, never partial)
    credit outstanding   -= amount          (floored at 0)

Anything paid beyond the outstanding debt is NOT an error. It is absorbed
and shows up as a positive balance (overpayment credit) on the credit
account. Deleting the repayment is the exact inverse: the source gets its
money back and the credit account returns to its previous state.

Checks run in this order:
1. amount > 0                                   INVALID_AMOUNT
2. destination is a credit account              INVALID_CREDIT_ACCOUNT
3. source is not credit (nor investment)        INVALID_SOURCE_ACCOUNT
4. source balance covers the amount             INSUFFICIENT_BALANCE
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
    post_deltas,
    refresh_credit_balances,
)
from ledger.flows.cascade import CascadeDeleteCoordinator
from ledger.models.audit import AuditEventType
from ledger.models.ledger import (
    ZERO,
    CascadeResult,
    Repayment,
    RepaymentResult,
    TransactionBase,
    TransactionType,
    to_money,
)
from ledger.reconciliation import CreditService
from ledger.services.storage import LedgerStorageInterface
from ledger.validation import TransactionValidator, ensure_owned


def require_repayment(transaction: TransactionBase) -> Repayment:
    if transaction.type != TransactionType.REPAYMENT:
        raise LedgerError(
            ErrorCode.UNSUPPORTED_TRANSACTION_TYPE,
            f"Transaction {transaction.id} is not a repayment",
            {"transaction_id": transaction.id, "type": transaction.type.value},
        )
    return transaction


class RepaymentService(LedgerFlow):
    """Pays down credit accounts from regular accounts."""

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

    async def create_repayment(
        self,
        user_id: UUID,
        credit_account_id: UUID,
        source_account_id: UUID,
        amount: Decimal,
        date: Optional[date] = None,
        note: Optional[str] = None,
        category_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> RepaymentResult:
        """Repay a credit account. No partial repayment is ever made."""
        correlation_id = correlation_id or create_correlation_id()

        async with self._rejections("create_repayment", user_id, correlation_id):
            amount = self._validator.check_amount(amount)

            async with self._storage.atomic() as session:
                accounts = await lock_accounts(
                    session, [credit_account_id, source_account_id], user_id
                )
                credit_account = accounts[credit_account_id]
                source_account = accounts[source_account_id]
                self._validator.check_repayment_accounts(credit_account, source_account)
                self._validator.check_source_balance(source_account, amount)

                before = await CreditService.details_in(session, credit_account)

                repayment = Repayment(
                    owner_id=user_id,
                    amount=amount,
                    account_id=credit_account_id,
                    source_account_id=source_account_id,
                    category_id=category_id,
                    date=date or datetime.utcnow().date(),
                    note=note if note is not None else f"Repayment - {credit_account.name}",
                )
                await session.add_transaction(repayment)
                await post_deltas(session, accounts, effect_deltas(repayment))
                await refresh_credit_balances(session, accounts)

                after = await CreditService.details_in(session, credit_account)

        absorbed = max(ZERO, to_money(amount - before.outstanding_balance))
        if absorbed:
            self._logger.info(
                "repayment_overpayment_absorbed",
                account_id=str(credit_account_id),
                absorbed=str(absorbed),
            )
        await self._audit.log_transaction(
            AuditEventType.REPAYMENT_CREATED,
            repayment,
            details={
                "source_account_id": source_account_id,
                "absorbed_overpayment": absorbed,
            },
            correlation_id=correlation_id,
        )
        return RepaymentResult(
            transaction=repayment,
            new_outstanding_balance=after.outstanding_balance,
            new_available_credit=after.available_credit,
            absorbed_overpayment=absorbed,
            source_balance=source_account.balance,
        )

    async def get_repayment_history(
        self,
        account_id: UUID,
        user_id: UUID,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Repayment]:
        """Repayments into (or out of) one account, newest first."""
        async with self._rejections("get_repayment_history", user_id):
            async with self._storage.atomic() as session:
                ensure_owned(await session.get_account(account_id), "Account", account_id, user_id)
                return await session.list_transactions(
                    user_id,
                    account_id=account_id,
                    transaction_type=TransactionType.REPAYMENT,
                    limit=limit,
                    offset=offset,
                )

    async def get_user_repayment_history(
        self,
        user_id: UUID,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Repayment]:
        async with self._storage.atomic() as session:
            return await session.list_transactions(
                user_id,
                transaction_type=TransactionType.REPAYMENT,
                limit=limit,
                offset=offset,
            )

    async def delete_repayment(
        self,
        repayment_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> CascadeResult:
        """Exact inverse of create_repayment."""
        return await self._cascade.delete_transaction(
            repayment_id,
            user_id,
            correlation_id=correlation_id,
            operation="delete_repayment",
            check=require_repayment,
        )
