"""
Credit Reconciliation

DESIGN DECISION: A credit account's debt is NEVER stored. It is derived
from the ledger every time it's needed:

    outstanding = max(0, expenses - refunds - repayments)
    available   = credit_limit - outstanding      (negative = over limit)

The functions at the top of this module are pure: they take a transaction
set and return numbers. Only transactions whose `account_id` is the credit
account count; a repayment's source side lives on another account.

The stored `balance` of a credit account holds the other side of the floor:
    overpayment = max(0, refunds + repayments - expenses)
so outstanding and overpayment are never both positive.

CreditService is the read side: it loads a user's credit accounts and
their transactions and feeds them through the pure functions.
"""

from calendar import monthrange
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from ledger.config import AppSettings, get_settings
from ledger.errors import ErrorCode, LedgerError
from ledger.models.ledger import (
    ZERO,
    Account,
    AccountType,
    CreditAccountDetails,
    CreditSummary,
    DueReminder,
    TransactionBase,
    TransactionType,
    to_money,
)
from ledger.services.storage import LedgerSession, LedgerStorageInterface
from ledger.validation import ensure_owned


# =============================================================================
# PURE COMPUTATION
# =============================================================================

def _totals(account_id: UUID, transactions: Iterable[TransactionBase]) -> dict[TransactionType, Decimal]:
    totals = {
        TransactionType.EXPENSE: ZERO,
        TransactionType.REFUND: ZERO,
        TransactionType.REPAYMENT: ZERO,
    }
    for tx in transactions:
        if tx.account_id == account_id and tx.type in totals:
            totals[tx.type] += tx.amount
    return totals


def calculate_outstanding_balance(
    account_id: UUID,
    transactions: Iterable[TransactionBase],
) -> Decimal:
    """Unpaid debt on a credit account, floored at 0."""
    t = _totals(account_id, transactions)
    net = t[TransactionType.EXPENSE] - t[TransactionType.REFUND] - t[TransactionType.REPAYMENT]
    return to_money(max(ZERO, net))


def calculate_overpayment(
    account_id: UUID,
    transactions: Iterable[TransactionBase],
) -> Decimal:
    """Credit the holder has on a credit account, floored at 0."""
    t = _totals(account_id, transactions)
    net = t[TransactionType.REFUND] + t[TransactionType.REPAYMENT] - t[TransactionType.EXPENSE]
    return to_money(max(ZERO, net))


def calculate_available_credit(credit_limit: Decimal, outstanding: Decimal) -> Decimal:
    return to_money(credit_limit - outstanding)


def is_over_limit(
    credit_limit: Decimal,
    outstanding: Decimal,
    additional_amount: Decimal = ZERO,
) -> bool:
    return outstanding + additional_amount > credit_limit


def next_due_date(due_day: int, today: date) -> date:
    """This month's due date, or next month's once today is past it."""
    if today.day <= due_day:
        return today.replace(day=due_day)
    year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
    return date(year, month, min(due_day, monthrange(year, month)[1]))


def calculate_days_until_due(due_day: int, today: date) -> int:
    return (next_due_date(due_day, today) - today).days


def is_overdue(due_day: int, today: date) -> bool:
    return today.day > due_day


def build_due_reminders(
    accounts: Iterable[CreditAccountDetails],
    today: date,
    days_threshold: int = 3,
) -> list[DueReminder]:
    """
    Reminders for accounts with debt that is due soon or overdue.

    Accounts with nothing outstanding never get a reminder.
    Sorted overdue first, then by days until due.
    """
    reminders = []
    for details in accounts:
        if details.outstanding_balance <= 0:
            continue
        days = calculate_days_until_due(details.due_day, today)
        overdue = is_overdue(details.due_day, today)
        if days <= days_threshold or overdue:
            reminders.append(DueReminder(
                account_id=details.account_id,
                account_name=details.name,
                outstanding_balance=details.outstanding_balance,
                due_day=details.due_day,
                days_until_due=days,
                is_overdue=overdue,
            ))
    reminders.sort(key=lambda r: (not r.is_overdue, r.days_until_due))
    return reminders


def build_credit_details(
    account: Account,
    transactions: Iterable[TransactionBase],
) -> CreditAccountDetails:
    transactions = list(transactions)
    outstanding = calculate_outstanding_balance(account.id, transactions)
    return CreditAccountDetails(
        account_id=account.id,
        name=account.name,
        credit_limit=account.credit_limit,
        billing_day=account.billing_day,
        due_day=account.due_day,
        outstanding_balance=outstanding,
        available_credit=calculate_available_credit(account.credit_limit, outstanding),
        overpayment=calculate_overpayment(account.id, transactions),
    )


# =============================================================================
# READ SIDE
# =============================================================================

class CreditService:
    """
    Derives credit-account state from stored transactions.

    Never mutates anything.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[AppSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().app

    @staticmethod
    async def details_in(session: LedgerSession, account: Account) -> CreditAccountDetails:
        """Credit details computed inside an open unit of work."""
        transactions = await session.list_transactions(account.owner_id, account_id=account.id)
        return build_credit_details(account, transactions)

    @staticmethod
    def _require_credit(account: Account) -> Account:
        if not account.is_credit:
            raise LedgerError(
                ErrorCode.INVALID_CREDIT_ACCOUNT,
                f"Account {account.id} is not a credit account",
                {"account_id": account.id, "account_type": account.type.value},
            )
        return account

    async def get_credit_account_details(
        self,
        account_id: UUID,
        user_id: UUID,
    ) -> CreditAccountDetails:
        async with self._storage.atomic() as session:
            account = ensure_owned(
                await session.get_account(account_id), "Account", account_id, user_id
            )
            self._require_credit(account)
            return await self.details_in(session, account)

    async def get_user_credit_summary(self, user_id: UUID) -> CreditSummary:
        """Totals across all of a user's credit accounts."""
        async with self._storage.atomic() as session:
            accounts = await session.list_accounts(user_id, AccountType.CREDIT)
            details = [await self.details_in(session, a) for a in accounts]

        return CreditSummary(
            total_outstanding=to_money(sum((d.outstanding_balance for d in details), ZERO)),
            total_credit_limit=to_money(sum((d.credit_limit for d in details), ZERO)),
            total_available=to_money(sum((d.available_credit for d in details), ZERO)),
            accounts=details,
        )

    async def get_due_reminders(
        self,
        user_id: UUID,
        today: Optional[date] = None,
        days_threshold: Optional[int] = None,
    ) -> list[DueReminder]:
        summary = await self.get_user_credit_summary(user_id)
        return build_due_reminders(
            summary.accounts,
            today or date.today(),
            self._settings.due_reminder_days if days_threshold is None else days_threshold,
        )

    async def check_over_limit(
        self,
        account_id: UUID,
        user_id: UUID,
        additional_amount: Decimal = ZERO,
    ) -> bool:
        """Would spending `additional_amount` more push the account over its limit?"""
        details = await self.get_credit_account_details(account_id, user_id)
        return is_over_limit(
            details.credit_limit, details.outstanding_balance, to_money(additional_amount)
        )
