"""Derived figures: credit debt from the ledger, investment holdings from shares."""

from ledger.reconciliation.credit import (
    CreditService,
    build_credit_details,
    build_due_reminders,
    calculate_available_credit,
    calculate_days_until_due,
    calculate_outstanding_balance,
    calculate_overpayment,
    is_over_limit,
    is_overdue,
    next_due_date,
)
from ledger.reconciliation.investment import (
    build_holding,
    market_value,
    profit_rate,
    realized_profit,
    summarize_holdings,
    weighted_cost_price,
)

__all__ = [
    # Pure computation
    "build_credit_details",
    "build_due_reminders",
    "calculate_available_credit",
    "calculate_days_until_due",
    "calculate_outstanding_balance",
    "calculate_overpayment",
    "is_over_limit",
    "is_overdue",
    "next_due_date",
    "build_holding",
    "market_value",
    "profit_rate",
    "realized_profit",
    "summarize_holdings",
    "weighted_cost_price",
    # Read side
    "CreditService",
]
