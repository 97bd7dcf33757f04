"""
Investment Holdings

Pure figures for investment accounts. Nothing here touches storage.

    cost price after a buy  = (held * cost + bought * price) / (held + bought)
    realized profit         = sold * (price - cost price)
    market value            = shares * net value
    profit                  = market value - shares * cost price
    profit rate             = profit / total cost * 100, or 0 without cost

Share counts, prices and net values keep four decimal places; money
figures are rounded to cents.
"""

from decimal import Decimal
from typing import Iterable

from ledger.models.ledger import (
    ZERO,
    Account,
    InvestmentHolding,
    InvestmentSummary,
    to_money,
    to_units,
)


def weighted_cost_price(
    shares: Decimal,
    cost_price: Decimal,
    bought: Decimal,
    price: Decimal,
) -> Decimal:
    total_shares = shares + bought
    if total_shares <= 0:
        return to_units(ZERO)
    return to_units((shares * cost_price + bought * price) / total_shares)


def realized_profit(sold: Decimal, price: Decimal, cost_price: Decimal) -> Decimal:
    return to_money(sold * (price - cost_price))


def market_value(shares: Decimal, net_value: Decimal) -> Decimal:
    return to_money(shares * net_value)


def profit_rate(profit: Decimal, total_cost: Decimal) -> float:
    if total_cost <= 0:
        return 0.0
    return float((profit / total_cost * 100).quantize(Decimal("0.01")))


def build_holding(account: Account) -> InvestmentHolding:
    shares = account.shares or ZERO
    cost_price = account.cost_price or ZERO
    net_value = account.net_value or ZERO
    total_cost = to_money(shares * cost_price)
    value = market_value(shares, net_value)
    profit = to_money(value - total_cost)
    return InvestmentHolding(
        account_id=account.id,
        name=account.name,
        shares=to_units(shares),
        cost_price=to_units(cost_price),
        net_value=to_units(net_value),
        balance=account.balance,
        total_cost=total_cost,
        market_value=value,
        profit=profit,
        profit_rate=profit_rate(profit, total_cost),
    )


def summarize_holdings(accounts: Iterable[Account]) -> InvestmentSummary:
    """Totals over every investment account; value is each account's balance."""
    holdings = [build_holding(account) for account in accounts if account.is_investment]
    total_cost = to_money(sum((h.total_cost for h in holdings), ZERO))
    total_value = to_money(sum((h.balance for h in holdings), ZERO))
    total_profit = to_money(total_value - total_cost)
    return InvestmentSummary(
        total_cost=total_cost,
        total_value=total_value,
        total_profit=total_profit,
        profit_rate=profit_rate(total_profit, total_cost),
        accounts=holdings,
    )
