"""
Statistics Executor

DESIGN DECISION: Statistics are READ-ONLY and DETERMINISTIC.
Every number is computed from the stored transaction set at query time;
nothing is cached, estimated or written back.

Refunds are netted against expenses in two different ways, on purpose:

    net_expense (period)   = expense - refund            may be negative
    category amount        = max(0, expense - refund)    never negative

A period where refunds arrive after the expense's month therefore shows a
negative net expense, while no single category can show negative spend.
Transfers and repayments move money between the user's own accounts and
count toward neither income nor expense.
"""

import calendar
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from ledger.models.ledger import (
    ZERO,
    CategoryBreakdown,
    CategoryStat,
    MonthlyStats,
    TransactionType,
    YearlyStats,
    to_money,
)
from ledger.services.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last day of a calendar month."""
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def percentage_of(amount: Decimal, total: Decimal) -> float:
    if total <= 0:
        return 0.0
    return float((amount / total * 100).quantize(Decimal("0.01")))


class StatisticsExecutor:
    """
    Aggregates a user's ledger into period and category statistics.

    GUARANTEES:
    - Only returns real data from storage
    - Never mutates anything
    - Empty periods return zeros, not errors
    """

    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage

    async def get_monthly_stats(self, user_id: UUID, year: int, month: int) -> MonthlyStats:
        """Income, expense, refunds and the resulting balance of one month."""
        start, end = month_bounds(year, month)
        async with self._storage.atomic() as session:
            sums = await session.sum_by_type(user_id, date_from=start, date_to=end)

        def total(type_: TransactionType) -> Decimal:
            return sums.get(type_, (ZERO, 0))[0]

        income = total(TransactionType.INCOME)
        expense = total(TransactionType.EXPENSE)
        refund = total(TransactionType.REFUND)
        net_expense = to_money(expense - refund)

        return MonthlyStats(
            year=year,
            month=f"{year}-{month:02d}",
            total_income=income,
            total_expense=expense,
            total_refund=refund,
            net_expense=net_expense,
            balance=to_money(income - net_expense),
            transaction_count=sum(count for _, count in sums.values()),
        )

    async def get_category_stats(
        self,
        user_id: UUID,
        transaction_type: TransactionType = TransactionType.EXPENSE,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> CategoryBreakdown:
        """
        Per-category totals for income or expense, largest first.

        For expenses, refunds are subtracted per category (floored at 0)
        and all refunds in the range are subtracted from the net total.
        """
        transaction_type = TransactionType(transaction_type)
        if transaction_type not in (TransactionType.INCOME, TransactionType.EXPENSE):
            raise ValueError(f"Category statistics cover income or expense, not {transaction_type.value}")

        async with self._storage.atomic() as session:
            by_category = await session.sum_by_category(
                user_id, transaction_type, date_from=date_from, date_to=date_to
            )
            refunds = {}
            if transaction_type == TransactionType.EXPENSE:
                refunds = await session.sum_by_category(
                    user_id, TransactionType.REFUND, date_from=date_from, date_to=date_to
                )

        by_category.pop(None, None)
        total = to_money(sum((amount for amount, _ in by_category.values()), ZERO))
        total_refund = to_money(sum((amount for amount, _ in refunds.values()), ZERO))
        net_total = to_money(total - total_refund)

        categories = []
        for category_id, (amount, count) in by_category.items():
            refunded = refunds.get(category_id, (ZERO, 0))[0]
            amount = max(ZERO, to_money(amount - refunded))
            categories.append(CategoryStat(
                category_id=category_id,
                amount=amount,
                percentage=percentage_of(amount, net_total),
                count=count,
            ))
        categories.sort(key=lambda stat: stat.amount, reverse=True)

        return CategoryBreakdown(
            type=transaction_type,
            date_from=date_from,
            date_to=date_to,
            total=total,
            total_refund=total_refund,
            net_total=net_total,
            categories=categories,
        )

    async def get_trend_stats(
        self,
        user_id: UUID,
        months: int = 6,
        today: Optional[date] = None,
    ) -> list[MonthlyStats]:
        """Monthly summaries for the last `months` months, oldest first."""
        if months < 1:
            raise ValueError("months must be at least 1")
        today = today or datetime.utcnow().date()
        trend = []
        for offset in range(months - 1, -1, -1):
            year, month = shift_month(today.year, today.month, -offset)
            trend.append(await self.get_monthly_stats(user_id, year, month))
        return trend

    async def get_yearly_stats(self, user_id: UUID, year: int) -> YearlyStats:
        months = [await self.get_monthly_stats(user_id, year, m) for m in range(1, 13)]
        income = to_money(sum((m.total_income for m in months), ZERO))
        expense = to_money(sum((m.total_expense for m in months), ZERO))
        logger.debug("yearly_stats_computed", owner_id=str(user_id), year=year)
        return YearlyStats(
            year=year,
            total_income=income,
            total_expense=expense,
            total_balance=to_money(income - expense),
            months=months,
        )
