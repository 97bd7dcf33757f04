"""
Data Models Package

This package contains all Pydantic models used in the Family Ledger.
All data flowing through the ledger must conform to these schemas.
"""

from ledger.models.ledger import (
    TRANSACTION_MODELS,
    Account,
    AccountType,
    Attachment,
    BalanceAdjustment,
    BalancePreview,
    Budget,
    BudgetState,
    BudgetStatus,
    CascadeResult,
    CategoryBreakdown,
    CategoryStat,
    CreditAccountDetails,
    CreditSummary,
    DifferenceType,
    DueReminder,
    Expense,
    Income,
    InvestmentHolding,
    InvestmentSummary,
    MonthlyStats,
    Refund,
    RefundInfo,
    RefundResult,
    Repayment,
    RepaymentResult,
    TradeResult,
    TradeSide,
    Transaction,
    TransactionBase,
    TransactionChanges,
    TransactionFilter,
    TransactionPage,
    TransactionType,
    Transfer,
    Valuation,
    YearlyStats,
    to_money,
    to_units,
)
from ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "TRANSACTION_MODELS",
    "Account",
    "AccountType",
    "Attachment",
    "BalanceAdjustment",
    "BalancePreview",
    "Budget",
    "BudgetState",
    "BudgetStatus",
    "CascadeResult",
    "CategoryBreakdown",
    "CategoryStat",
    "CreditAccountDetails",
    "CreditSummary",
    "DifferenceType",
    "DueReminder",
    "Expense",
    "Income",
    "InvestmentHolding",
    "InvestmentSummary",
    "MonthlyStats",
    "Refund",
    "RefundInfo",
    "RefundResult",
    "Repayment",
    "RepaymentResult",
    "TradeResult",
    "TradeSide",
    "Transaction",
    "TransactionBase",
    "TransactionChanges",
    "TransactionFilter",
    "TransactionPage",
    "TransactionType",
    "Transfer",
    "Valuation",
    "YearlyStats",
    "to_money",
    "to_units",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
