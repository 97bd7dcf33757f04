"""
Quick Balance

When the number in the app drifts from the number in the real wallet or
bank, the user types in the actual balance and the ledger snaps to it.
Every correction is recorded as a BalanceAdjustment so the drift stays
visible:

    difference = actual - current      > 0 profit, < 0 loss

Credit accounts are excluded: their balance is derived from the ledger
and would be overwritten by the next credit refresh anyway.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from ledger.audit import AuditLogger, create_correlation_id
from ledger.config import AppSettings, get_settings
from ledger.errors import ErrorCode, LedgerError
from ledger.flows.base import LedgerFlow, lock_accounts
from ledger.models.ledger import (
    Account,
    BalanceAdjustment,
    BalancePreview,
    DifferenceType,
    difference_type,
    to_money,
)
from ledger.services.storage import LedgerStorageInterface
from ledger.validation import TransactionValidator, ensure_owned


class BalanceAdjustmentService(LedgerFlow):
    """Preview and apply quick-balance corrections."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[TransactionValidator] = None,
        settings: Optional[AppSettings] = None,
    ):
        super().__init__(storage, audit_logger, validator)
        self._settings = settings or get_settings().app

    @staticmethod
    def _check_actual(actual_balance: Decimal) -> Decimal:
        actual = to_money(actual_balance)
        if actual < 0:
            raise LedgerError(
                ErrorCode.INVALID_AMOUNT,
                "Actual balance cannot be negative",
                {"actual_balance": actual_balance},
            )
        return actual

    @staticmethod
    def _check_adjustable(account: Account) -> None:
        if account.is_credit:
            raise LedgerError(
                ErrorCode.INVALID_ACCOUNT_TYPE,
                "Credit account balances are derived from the ledger and cannot be set",
                {"account_id": account.id},
            )

    async def preview_balance(
        self,
        account_id: UUID,
        user_id: UUID,
        actual_balance: Decimal,
    ) -> BalancePreview:
        """Show what a quick balance would change, without changing it."""
        async with self._rejections("preview_balance", user_id):
            actual = self._check_actual(actual_balance)
            async with self._storage.atomic() as session:
                account = ensure_owned(
                    await session.get_account(account_id), "Account", account_id, user_id
                )
                self._check_adjustable(account)

        difference = to_money(actual - account.balance)
        return BalancePreview(
            account_id=account.id,
            account_name=account.name,
            current_balance=account.balance,
            actual_balance=actual,
            difference=difference,
            difference_type=difference_type(difference),
        )

    async def execute_quick_balance(
        self,
        account_id: UUID,
        user_id: UUID,
        actual_balance: Decimal,
        note: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> BalanceAdjustment:
        """
        Set an account's balance to the actual balance.

        Raises:
            LedgerError(INVALID_AMOUNT): Negative actual balance
            LedgerError(INVALID_ACCOUNT_TYPE): Credit account
            LedgerError(BALANCE_UNCHANGED): Nothing to correct
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._rejections("quick_balance", user_id, correlation_id):
            actual = self._check_actual(actual_balance)
            async with self._storage.atomic() as session:
                accounts = await lock_accounts(session, [account_id], user_id)
                account = accounts[account_id]
                self._check_adjustable(account)

                previous = account.balance
                difference = to_money(actual - previous)
                if difference_type(difference) == DifferenceType.NONE:
                    raise LedgerError(
                        ErrorCode.BALANCE_UNCHANGED,
                        "Actual balance matches the recorded balance",
                        {"account_id": account_id, "balance": previous},
                    )

                adjustment = BalanceAdjustment(
                    owner_id=user_id,
                    account_id=account_id,
                    previous_balance=previous,
                    new_balance=actual,
                    difference=difference,
                    note=note,
                )
                account.balance = actual
                await session.save_account(account)
                await session.add_adjustment(adjustment)

        await self._audit.log_balance_adjusted(
            adjustment.id,
            account_id,
            user_id,
            previous_balance=previous,
            new_balance=actual,
            correlation_id=correlation_id,
        )
        return adjustment

    async def list_adjustments(
        self,
        user_id: UUID,
        account_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> list[BalanceAdjustment]:
        page_size = page_size or self._settings.default_page_size
        async with self._rejections("list_adjustments", user_id):
            async with self._storage.atomic() as session:
                if account_id:
                    ensure_owned(
                        await session.get_account(account_id), "Account", account_id, user_id
                    )
                return await session.list_adjustments(
                    user_id,
                    account_id=account_id,
                    date_from=date_from,
                    date_to=date_to,
                    limit=page_size,
                    offset=(max(page, 1) - 1) * page_size,
                )
