"""
Core Data Models for Family Ledger

These models define the strict schemas for all data flowing through the ledger.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Support the audit trail

DESIGN DECISION: Transactions are a tagged union, one model per type.
Each model carries exactly the fields its type needs, so "field X only
valid when type = Y" never has to be checked at runtime. Rules that
relate a transaction to other rows (distinct transfer endpoints, account
types) belong to the validator, which reports them with ledger error codes.
"""

from abc import abstractmethod
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


DateType = date

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Shares, cost prices and net values carry four decimal places
SHARE_UNIT = Decimal("0.0001")


def to_money(value: Any) -> Decimal:
    """Quantize any numeric input to cents."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_units(value: Any) -> Decimal:
    """Quantize a share count, price or net value to four places."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(SHARE_UNIT, rounding=ROUND_HALF_UP)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Supported account types."""
    CASH = "cash"
    BANK = "bank"
    ALIPAY = "alipay"
    WECHAT = "wechat"
    CREDIT = "credit"
    INVESTMENT = "investment"
    OTHER = "other"


class TransactionType(str, Enum):
    """
    Money-movement event types.

    The direction of a balance effect is decided by the type,
    NEVER by the sign of the amount (amounts are always positive).
    """
    INCOME = "income"
    EXPENSE = "expense"
    REFUND = "refund"
    REPAYMENT = "repayment"
    TRANSFER = "transfer"


class TradeSide(str, Enum):
    """Direction of an investment trade."""
    BUY = "buy"
    SELL = "sell"


class BudgetState(str, Enum):
    """How far a budget has been used up."""
    NORMAL = "normal"
    WARNING = "warning"
    EXCEEDED = "exceeded"


class DifferenceType(str, Enum):
    """Direction of a quick-balance difference."""
    PROFIT = "profit"
    LOSS = "loss"
    NONE = "none"


# =============================================================================
# ACCOUNT MODEL
# =============================================================================

class Account(BaseModel):
    """
    An account owned by one user.

    CRITICAL: For credit accounts `balance` is NOT the debt.
    Outstanding debt is derived from the ledger; a positive balance on a
    credit account is an overpayment credit.

    For investment accounts every change in the held shares' market value
    is added to `balance`; money transferred in and not yet invested stays
    on top of it.
    """
    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    balance: Decimal = Field(default=ZERO, description="Current balance")
    icon: Optional[str] = Field(default=None, max_length=50)

    # Credit accounts only
    credit_limit: Optional[Decimal] = Field(default=None, ge=0)
    billing_day: Optional[int] = Field(default=None, ge=1, le=28)
    due_day: Optional[int] = Field(default=None, ge=1, le=28)

    # Investment accounts only; None reads as zero
    shares: Optional[Decimal] = Field(default=None, ge=0)
    cost_price: Optional[Decimal] = Field(default=None, ge=0)
    net_value: Optional[Decimal] = Field(default=None, ge=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('balance', 'credit_limit', mode='before')
    @classmethod
    def quantize_money(cls, v: Any) -> Any:
        return to_money(v) if v is not None else v

    @field_validator('shares', 'cost_price', 'net_value', mode='before')
    @classmethod
    def quantize_units(cls, v: Any) -> Any:
        return to_units(v) if v is not None else v

    @model_validator(mode='after')
    def validate_credit_fields(self) -> 'Account':
        """Credit fields are present iff the account is a credit account."""
        credit_fields = (self.credit_limit, self.billing_day, self.due_day)
        if self.type == AccountType.CREDIT:
            if any(f is None for f in credit_fields):
                raise ValueError(
                    "Credit accounts require credit_limit, billing_day and due_day"
                )
        elif any(f is not None for f in credit_fields):
            raise ValueError("Only credit accounts carry credit fields")
        return self

    @model_validator(mode='after')
    def validate_holding_fields(self) -> 'Account':
        if self.type != AccountType.INVESTMENT and any(
            f is not None for f in (self.shares, self.cost_price, self.net_value)
        ):
            raise ValueError("Only investment accounts carry shares, cost price and net value")
        return self

    @property
    def is_credit(self) -> bool:
        return self.type == AccountType.CREDIT

    @property
    def is_investment(self) -> bool:
        return self.type == AccountType.INVESTMENT

    @property
    def market_value(self) -> Decimal:
        """Value of the held shares at the last known net value."""
        return to_money((self.shares or 0) * (self.net_value or 0))


# =============================================================================
# TRANSACTION MODELS (tagged union)
# =============================================================================

class TransactionBase(BaseModel):
    """
    Fields shared by every transaction type.

    Abstract: only the concrete per-type models below can be built.
    """
    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    amount: Decimal = Field(..., gt=0, description="Always positive, cent precision")
    account_id: UUID
    date: DateType
    note: str = Field(default="", max_length=500)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('amount', mode='before')
    @classmethod
    def quantize_amount(cls, v: Any) -> Any:
        return to_money(v)

    @abstractmethod
    def balance_legs(self) -> list[tuple[UUID, int]]:
        """
        (account_id, sign) pairs this transaction moves when applied.

        The ledger skips legs that land on credit accounts.
        """

    def account_ids(self) -> set[UUID]:
        """Every account this transaction references."""
        return {self.account_id}


class Income(TransactionBase):
    type: Literal[TransactionType.INCOME] = TransactionType.INCOME
    category_id: UUID

    def balance_legs(self) -> list[tuple[UUID, int]]:
        return [(self.account_id, 1)]


class Expense(TransactionBase):
    type: Literal[TransactionType.EXPENSE] = TransactionType.EXPENSE
    category_id: UUID

    def balance_legs(self) -> list[tuple[UUID, int]]:
        return [(self.account_id, -1)]


class Refund(TransactionBase):
    """A (partial) refund against one original expense."""
    type: Literal[TransactionType.REFUND] = TransactionType.REFUND
    category_id: UUID
    original_transaction_id: UUID

    def balance_legs(self) -> list[tuple[UUID, int]]:
        return [(self.account_id, 1)]


class Repayment(TransactionBase):
    """
    Funds moved from a non-credit source into a credit account.

    `account_id` is the credit account; only the source side has a
    direct balance effect.
    """
    type: Literal[TransactionType.REPAYMENT] = TransactionType.REPAYMENT
    category_id: Optional[UUID] = None
    source_account_id: UUID

    def balance_legs(self) -> list[tuple[UUID, int]]:
        return [(self.source_account_id, -1)]

    def account_ids(self) -> set[UUID]:
        return {self.account_id, self.source_account_id}


class Transfer(TransactionBase):
    """
    Funds moved from `account_id` to `target_account_id`.

    An investment trade is a transfer with `trade_side` set: a buy moves
    money into the investment account, a sell moves the proceeds out. The
    investment side of a trade is valued through its holdings, so only the
    other side is a balance leg.
    """
    type: Literal[TransactionType.TRANSFER] = TransactionType.TRANSFER
    category_id: Optional[UUID] = None
    target_account_id: UUID

    # Investment trades only
    trade_side: Optional[TradeSide] = None
    shares: Optional[Decimal] = Field(default=None, gt=0)
    price: Optional[Decimal] = Field(default=None, gt=0)

    @field_validator('shares', 'price', mode='before')
    @classmethod
    def quantize_units(cls, v: Any) -> Any:
        return to_units(v) if v is not None else v

    @model_validator(mode='after')
    def validate_trade_fields(self) -> 'Transfer':
        trade_fields = (self.trade_side, self.shares, self.price)
        if any(f is None for f in trade_fields) and any(f is not None for f in trade_fields):
            raise ValueError("A trade needs a side, shares and a price; a plain transfer has none")
        return self

    @property
    def is_trade(self) -> bool:
        return self.trade_side is not None

    @property
    def investment_account_id(self) -> Optional[UUID]:
        if self.trade_side == TradeSide.BUY:
            return self.target_account_id
        if self.trade_side == TradeSide.SELL:
            return self.account_id
        return None

    def balance_legs(self) -> list[tuple[UUID, int]]:
        if self.trade_side == TradeSide.BUY:
            return [(self.account_id, -1)]
        if self.trade_side == TradeSide.SELL:
            return [(self.target_account_id, 1)]
        return [(self.account_id, -1), (self.target_account_id, 1)]

    def account_ids(self) -> set[UUID]:
        return {self.account_id, self.target_account_id}


Transaction = Annotated[
    Union[Income, Expense, Refund, Repayment, Transfer],
    Field(discriminator="type"),
]

TRANSACTION_MODELS: dict[TransactionType, type[TransactionBase]] = {
    TransactionType.INCOME: Income,
    TransactionType.EXPENSE: Expense,
    TransactionType.REFUND: Refund,
    TransactionType.REPAYMENT: Repayment,
    TransactionType.TRANSFER: Transfer,
}


# =============================================================================
# ATTACHMENTS, ADJUSTMENTS, VALUATIONS & BUDGETS
# =============================================================================

class Attachment(BaseModel):
    """
    File metadata owned by the uploading user.

    The file itself lives in external storage; the ledger only needs
    the path to request deletion.
    """
    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    transaction_id: Optional[UUID] = None
    filename: str = Field(..., min_length=1, max_length=255)
    storage_path: str = Field(..., min_length=1, max_length=500)
    mime_type: str = Field(..., max_length=100)
    size: int = Field(..., ge=0)
    thumbnail_path: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


class BalanceAdjustment(BaseModel):
    """Record of one quick-balance correction."""

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    account_id: UUID
    previous_balance: Decimal
    new_balance: Decimal
    difference: Decimal
    note: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def difference_type(self) -> DifferenceType:
        return difference_type(self.difference)


def difference_type(difference: Decimal) -> DifferenceType:
    if difference > 0:
        return DifferenceType.PROFIT
    if difference < 0:
        return DifferenceType.LOSS
    return DifferenceType.NONE


class Valuation(BaseModel):
    """Net value and market value of an investment account on one day."""

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    account_id: UUID
    net_value: Decimal
    market_value: Decimal
    date: DateType
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Budget(BaseModel):
    """
    Spending limit for one month.

    A budget without a category caps the month's total expenses.
    """
    model_config = ConfigDict(validate_assignment=True)

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    category_id: Optional[UUID] = None
    amount: Decimal = Field(..., gt=0)
    month: str = Field(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('amount', mode='before')
    @classmethod
    def quantize_amount(cls, v: Any) -> Any:
        return to_money(v)


# =============================================================================
# INPUT MODELS
# =============================================================================

class TransactionChanges(BaseModel):
    """
    Editable fields of an existing transaction.

    Amount is unconstrained so that non-positive values reach the
    validator and are reported as INVALID_AMOUNT, not as a schema error.
    """

    account_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    amount: Optional[Decimal] = None
    date: Optional[DateType] = None
    note: Optional[str] = Field(default=None, max_length=500)

    @property
    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class TransactionFilter(BaseModel):
    """Listing filter for the transaction ledger."""

    account_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    type: Optional[TransactionType] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    page: int = Field(default=1, ge=1)
    page_size: Optional[int] = Field(default=None, ge=1, le=200)


# =============================================================================
# RESULT MODELS
# =============================================================================

class TransactionPage(BaseModel):
    items: list[Transaction] = Field(default_factory=list)
    total: int = Field(ge=0)
    page: int
    page_size: int
    total_pages: int


class RefundInfo(BaseModel):
    """Refund state of one expense."""

    original: Expense
    refunds: list[Refund] = Field(default_factory=list)
    total_refunded: Decimal
    refundable_amount: Decimal


class RefundResult(BaseModel):
    refund: Refund
    original_transaction_id: UUID
    original_amount: Decimal
    refunded_amount: Decimal
    refundable_amount: Decimal
    account_balance: Decimal


class RepaymentResult(BaseModel):
    transaction: Repayment
    new_outstanding_balance: Decimal
    new_available_credit: Decimal
    absorbed_overpayment: Decimal = ZERO
    source_balance: Decimal


class CreditAccountDetails(BaseModel):
    account_id: UUID
    name: str
    credit_limit: Decimal
    billing_day: int
    due_day: int
    outstanding_balance: Decimal
    available_credit: Decimal
    overpayment: Decimal = ZERO

    @property
    def is_over_limit(self) -> bool:
        return self.available_credit < 0


class CreditSummary(BaseModel):
    total_outstanding: Decimal = ZERO
    total_credit_limit: Decimal = ZERO
    total_available: Decimal = ZERO
    accounts: list[CreditAccountDetails] = Field(default_factory=list)


class DueReminder(BaseModel):
    account_id: UUID
    account_name: str
    outstanding_balance: Decimal
    due_day: int
    days_until_due: int
    is_overdue: bool


class CascadeResult(BaseModel):
    """What one cascade delete removed."""

    deleted_transaction_ids: list[UUID] = Field(default_factory=list)
    deleted_attachment_ids: list[UUID] = Field(default_factory=list)
    failed_file_paths: list[str] = Field(default_factory=list)


class BalancePreview(BaseModel):
    account_id: UUID
    account_name: str
    current_balance: Decimal
    actual_balance: Decimal
    difference: Decimal
    difference_type: DifferenceType


class MonthlyStats(BaseModel):
    """
    Period summary.

    net_expense is NOT floored: refunds larger than expenses in a
    period make it negative.
    """

    year: int
    month: str
    total_income: Decimal = ZERO
    total_expense: Decimal = ZERO
    total_refund: Decimal = ZERO
    net_expense: Decimal = ZERO
    balance: Decimal = ZERO
    transaction_count: int = 0


class CategoryStat(BaseModel):
    """Per-category total; expense totals are floored at 0 after refunds."""

    category_id: UUID
    amount: Decimal = Field(ge=0)
    percentage: float = Field(default=0.0, description="Share of the net total, 0-100")
    count: int = 0


class CategoryBreakdown(BaseModel):
    """
    Category totals for one transaction type over a date range.

    For expenses, net_total subtracts every refund in the range, even
    refunds whose category had no expense in it.
    """

    type: TransactionType
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    total: Decimal = ZERO
    total_refund: Decimal = ZERO
    net_total: Decimal = ZERO
    categories: list[CategoryStat] = Field(default_factory=list)


class YearlyStats(BaseModel):
    """Twelve monthly summaries of one year plus the year totals."""

    year: int
    total_income: Decimal = ZERO
    total_expense: Decimal = ZERO
    total_balance: Decimal = ZERO
    months: list[MonthlyStats] = Field(default_factory=list)


class InvestmentHolding(BaseModel):
    """One investment account with its cost and profit figures."""

    account_id: UUID
    name: str
    shares: Decimal
    cost_price: Decimal
    net_value: Decimal
    balance: Decimal
    total_cost: Decimal
    market_value: Decimal
    profit: Decimal
    profit_rate: float = Field(description="Profit as a percentage of cost")


class InvestmentSummary(BaseModel):
    total_cost: Decimal = ZERO
    total_value: Decimal = ZERO
    total_profit: Decimal = ZERO
    profit_rate: float = 0.0
    accounts: list[InvestmentHolding] = Field(default_factory=list)


class TradeResult(BaseModel):
    """
    Outcome of one buy or sell.

    `transfer` is the ledger entry moving the money; it is None when the
    trade named no account to pay from or to.
    """

    side: TradeSide
    holding: InvestmentHolding
    trade_amount: Decimal
    transfer: Optional[Transfer] = None
    realized_profit: Optional[Decimal] = None
    valuation: Valuation


class BudgetStatus(BaseModel):
    budget_id: UUID
    category_id: Optional[UUID] = None
    month: str
    budget_amount: Decimal
    spent_amount: Decimal
    remaining_amount: Decimal
    percentage: float
    state: BudgetState
