"""
Pre-Mutation Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION (pydantic models):
- Type checking
- Required fields per transaction type
- Cent precision, credit fields iff credit account
- This catches malformed input before a unit of work even opens

STAGE 2 - BUSINESS-RULE VALIDATION (this module):
- Ownership and existence
- Account-type isolation
- Refundable-amount and source-balance caps
- This needs the entities loaded inside the unit of work

IMPORTANT: Validation NEVER mutates anything and NEVER silently fixes input.
Every check raises a LedgerError carrying the rejection code, and every
check runs before the first write of an operation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, TypeVar
from uuid import UUID

from ledger.config import AppSettings, AttachmentSettings, get_settings
from ledger.errors import ErrorCode, LedgerError, forbidden, not_found
from ledger.models.ledger import (
    ZERO,
    Account,
    Expense,
    Refund,
    TransactionBase,
    TransactionType,
    Transfer,
    to_money,
    to_units,
)


T = TypeVar("T")


def ensure_owned(entity: Optional[T], entity_name: str, entity_id: UUID, user_id: UUID) -> T:
    """
    Return the entity if it exists and belongs to the user.

    Raises:
        LedgerError(NOT_FOUND): The entity doesn't exist
        LedgerError(FORBIDDEN): The entity belongs to someone else
    """
    if entity is None:
        raise not_found(entity_name, entity_id)
    if entity.owner_id != user_id:
        raise forbidden(entity_name, entity_id)
    return entity


class TransactionValidator:
    """
    Business-rule checks for ledger operations.

    Checks that need several conditions are ordered exactly as callers
    observe them: the first failing rule decides the error code.
    """

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        attachment_settings: Optional[AttachmentSettings] = None,
    ):
        self._settings = settings or get_settings().app
        self._attachment_settings = attachment_settings or get_settings().attachments

    @property
    def refund_tolerance(self) -> Decimal:
        return self._settings.refund_tolerance

    # -- Amounts -------------------------------------------------------------

    @staticmethod
    def check_amount(
        amount: Decimal,
        code: ErrorCode = ErrorCode.INVALID_AMOUNT,
    ) -> Decimal:
        """Amount must be positive; returns it quantized to cents."""
        if amount is None or Decimal(amount) <= 0:
            raise LedgerError(code, "Amount must be greater than zero", {"amount": amount})
        money = to_money(amount)
        if money <= 0:
            raise LedgerError(code, "Amount rounds to zero cents", {"amount": amount})
        return money

    # -- Account-type isolation ----------------------------------------------

    @staticmethod
    def check_ledger_account(account: Account, transaction_type: TransactionType) -> None:
        """
        Income, expense and refund may not touch investment accounts.

        Investment accounts only take part in transfers.
        """
        if account.is_investment:
            raise LedgerError(
                ErrorCode.INVALID_ACCOUNT_TYPE,
                f"Investment accounts cannot record {transaction_type.value} transactions; "
                "use a transfer",
                {"account_id": account.id, "account_type": account.type.value},
            )

    @staticmethod
    def check_transfer_accounts(source: Account, target: Account) -> None:
        if source.id == target.id:
            raise LedgerError(
                ErrorCode.INVALID_ACCOUNT_TYPE,
                "Transfer source and target must be different accounts",
                {"account_id": source.id},
            )
        for account in (source, target):
            if account.is_credit:
                raise LedgerError(
                    ErrorCode.INVALID_ACCOUNT_TYPE,
                    "Credit accounts cannot take part in transfers; use a repayment",
                    {"account_id": account.id},
                )

    @staticmethod
    def check_repayment_accounts(credit_account: Account, source_account: Account) -> None:
        """Credit side must be credit; source must be non-credit, non-investment."""
        if not credit_account.is_credit:
            raise LedgerError(
                ErrorCode.INVALID_CREDIT_ACCOUNT,
                "Repayments must be made to a credit account",
                {"account_id": credit_account.id, "account_type": credit_account.type.value},
            )
        if source_account.is_credit or source_account.is_investment:
            raise LedgerError(
                ErrorCode.INVALID_SOURCE_ACCOUNT,
                f"A {source_account.type.value} account cannot fund a repayment",
                {"account_id": source_account.id, "account_type": source_account.type.value},
            )

    @staticmethod
    def check_source_balance(source_account: Account, amount: Decimal) -> None:
        if source_account.balance < amount:
            raise LedgerError(
                ErrorCode.INSUFFICIENT_BALANCE,
                f"Insufficient balance: {source_account.balance} available, {amount} required",
                {
                    "account_id": source_account.id,
                    "balance": source_account.balance,
                    "amount": amount,
                },
            )

    # -- Investments ---------------------------------------------------------

    @staticmethod
    def check_units(value: Decimal, field: str) -> Decimal:
        """Shares, prices and net values must be positive at four places."""
        if value is None or Decimal(value) <= 0:
            raise LedgerError(
                ErrorCode.INVALID_AMOUNT,
                f"{field.replace('_', ' ').capitalize()} must be greater than zero",
                {field: value},
            )
        units = to_units(value)
        if units <= 0:
            raise LedgerError(
                ErrorCode.INVALID_AMOUNT,
                f"{field.replace('_', ' ').capitalize()} rounds to zero",
                {field: value},
            )
        return units

    @staticmethod
    def check_investment_account(account: Account) -> Account:
        if not account.is_investment:
            raise LedgerError(
                ErrorCode.INVALID_ACCOUNT_TYPE,
                f"A {account.type.value} account holds no shares",
                {"account_id": account.id, "account_type": account.type.value},
            )
        return account

    @staticmethod
    def check_trade_counterpart(account: Account) -> None:
        """The account paying for a buy or receiving a sale holds plain money."""
        if account.is_investment or account.is_credit:
            raise LedgerError(
                ErrorCode.INVALID_ACCOUNT_TYPE,
                f"A {account.type.value} account cannot pay for or receive a trade",
                {"account_id": account.id, "account_type": account.type.value},
            )

    @staticmethod
    def check_shares_held(account: Account, shares: Decimal) -> None:
        held = account.shares or ZERO
        if shares > held:
            raise LedgerError(
                ErrorCode.INSUFFICIENT_SHARES,
                f"Cannot sell {shares} shares; {held} held",
                {"account_id": account.id, "shares": shares, "held": held},
            )

    @staticmethod
    def check_not_trade(transaction: TransactionBase) -> None:
        """Trades changed holdings; the ledger entry alone can't be edited or removed."""
        if isinstance(transaction, Transfer) and transaction.is_trade:
            raise LedgerError(
                ErrorCode.TRADE_NOT_EDITABLE,
                "Investment trades cannot be edited or deleted",
                {"transaction_id": transaction.id, "trade_side": transaction.trade_side.value},
            )

    # -- Budgets -------------------------------------------------------------

    @staticmethod
    def check_month(month: str) -> str:
        """A budget month is written YYYY-MM."""
        try:
            parsed = datetime.strptime(month, "%Y-%m")
        except (TypeError, ValueError):
            raise LedgerError(
                ErrorCode.INVALID_MONTH,
                f"Month must be written YYYY-MM, got {month!r}",
                {"month": month},
            ) from None
        return f"{parsed.year:04d}-{parsed.month:02d}"

    # -- Refunds -------------------------------------------------------------

    @staticmethod
    def refundable_amount(original: Expense, refunds: Iterable[Refund]) -> Decimal:
        total = sum((r.amount for r in refunds), ZERO)
        return max(ZERO, to_money(original.amount - total))

    @staticmethod
    def check_refund_target(original: TransactionBase) -> Expense:
        if original.type != TransactionType.EXPENSE:
            raise LedgerError(
                ErrorCode.REFUND_INVALID_TYPE,
                "Only expenses can be refunded",
                {"transaction_id": original.id, "type": original.type.value},
            )
        return original

    def check_refund_amount(self, amount: Decimal, refundable: Decimal) -> Decimal:
        """
        Check a refund against what is left to refund.

        Order: non-positive amount, nothing left, over the cap.
        """
        amount = self.check_amount(amount, ErrorCode.REFUND_AMOUNT_INVALID)
        if refundable <= 0:
            raise LedgerError(
                ErrorCode.REFUND_ALREADY_FULL,
                "This expense has already been fully refunded",
            )
        if amount - refundable > self.refund_tolerance:
            raise LedgerError(
                ErrorCode.REFUND_AMOUNT_EXCEEDED,
                f"Refund amount {amount} exceeds refundable amount {refundable}",
                {"amount": amount, "refundable_amount": refundable},
            )
        return amount

    @staticmethod
    def check_expense_covers_refunds(new_amount: Decimal, refunded: Decimal) -> None:
        """An expense can't shrink below what was already refunded against it."""
        if new_amount < refunded:
            raise LedgerError(
                ErrorCode.REFUND_AMOUNT_EXCEEDED,
                f"Expense amount {new_amount} is below the {refunded} already refunded",
                {"amount": new_amount, "refunded_amount": refunded},
            )

    # -- Attachments ---------------------------------------------------------

    def check_attachment_file(self, mime_type: str, size: int) -> None:
        limit = self._attachment_settings.size_limit_bytes(mime_type)
        if limit == 0:
            raise LedgerError(
                ErrorCode.INVALID_FILE,
                f"Unsupported file type: {mime_type}",
                {"mime_type": mime_type},
            )
        if size > limit:
            raise LedgerError(
                ErrorCode.INVALID_FILE,
                f"File too large: {size} bytes (limit {limit})",
                {"mime_type": mime_type, "size": size, "limit": limit},
            )
