"""Tests for the read-only statistics executor."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger.models import TransactionType


class TestMonthlyStats:
    """Tests for monthly summaries."""

    async def test_month_summary(self, ledger, user_id, cash, bank, food, salary):
        """Test income, expense, refunds and balance within one month."""
        expense = await ledger.transactions.create_expense(
            user_id, cash.id, Decimal("100"), date(2024, 5, 3), food
        )
        await ledger.refunds.create_refund(user_id, expense.id, Decimal("40"), date(2024, 5, 4))
        await ledger.transactions.create_income(user_id, bank.id, Decimal("500"), date(2024, 5, 31), salary)
        await ledger.transactions.create_transfer(user_id, bank.id, cash.id, Decimal("50"), date(2024, 5, 5))
        await ledger.transactions.create_income(user_id, bank.id, Decimal("999"), date(2024, 6, 1), salary)

        stats = await ledger.statistics.get_monthly_stats(user_id, 2024, 5)

        assert stats.month == "2024-05"
        assert stats.total_income == Decimal("500.00")
        assert stats.total_expense == Decimal("100.00")
        assert stats.total_refund == Decimal("40.00")
        assert stats.net_expense == Decimal("60.00")
        assert stats.balance == Decimal("440.00")
        assert stats.transaction_count == 4

    async def test_net_expense_may_go_negative(self, ledger, user_id, cash, food):
        """Test that a refund in a later month makes that month's net expense negative."""
        expense = await ledger.transactions.create_expense(
            user_id, cash.id, Decimal("100"), date(2024, 4, 28), food
        )
        await ledger.refunds.create_refund(user_id, expense.id, Decimal("100"), date(2024, 5, 2))

        stats = await ledger.statistics.get_monthly_stats(user_id, 2024, 5)

        assert stats.net_expense == Decimal("-100.00")
        assert stats.balance == Decimal("100.00")

    async def test_empty_month(self, ledger, user_id):
        """Test zeros for a month without transactions."""
        stats = await ledger.statistics.get_monthly_stats(user_id, 2024, 2)
        assert stats.transaction_count == 0
        assert stats.balance == Decimal("0")


class TestCategoryStats:
    """Tests for per-category breakdowns."""

    async def test_refunds_floored_per_category(self, ledger, user_id, cash, food):
        """Test that a category never shows negative spend while the total nets all refunds."""
        transport = uuid4()
        start, end = date(2024, 5, 1), date(2024, 5, 31)
        dinner = await ledger.transactions.create_expense(
            user_id, cash.id, Decimal("80"), date(2024, 4, 30), food
        )
        await ledger.transactions.create_expense(user_id, cash.id, Decimal("20"), date(2024, 5, 2), food)
        await ledger.transactions.create_expense(user_id, cash.id, Decimal("60"), date(2024, 5, 2), transport)
        await ledger.refunds.create_refund(user_id, dinner.id, Decimal("50"), date(2024, 5, 3))

        stats = await ledger.statistics.get_category_stats(
            user_id, TransactionType.EXPENSE, start, end
        )

        assert stats.total == Decimal("80.00")
        assert stats.total_refund == Decimal("50.00")
        assert stats.net_total == Decimal("30.00")
        by_category = {c.category_id: c for c in stats.categories}
        assert by_category[food].amount == Decimal("0.00")
        assert by_category[transport].amount == Decimal("60.00")
        assert by_category[transport].percentage == 200.0
        assert stats.categories[0].category_id == transport

    async def test_income_percentages(self, ledger, user_id, bank, salary):
        """Test percentages of the total for income."""
        bonus = uuid4()
        await ledger.transactions.create_income(user_id, bank.id, Decimal("750"), date(2024, 5, 1), salary)
        await ledger.transactions.create_income(user_id, bank.id, Decimal("250"), date(2024, 5, 1), bonus)

        stats = await ledger.statistics.get_category_stats(user_id, TransactionType.INCOME)

        assert [c.percentage for c in stats.categories] == [75.0, 25.0]
        assert stats.total_refund == Decimal("0")

    async def test_refund_type_not_supported(self, ledger, user_id):
        """Test that category stats cover income and expense only."""
        with pytest.raises(ValueError):
            await ledger.statistics.get_category_stats(user_id, TransactionType.REFUND)


class TestTrendStats:
    """Tests for multi-month trends."""

    async def test_trend_crosses_year(self, ledger, user_id, cash, salary):
        """Test the last three months, oldest first, across a year boundary."""
        await ledger.transactions.create_income(user_id, cash.id, Decimal("10"), date(2023, 12, 5), salary)
        await ledger.transactions.create_income(user_id, cash.id, Decimal("20"), date(2024, 2, 5), salary)

        trend = await ledger.statistics.get_trend_stats(user_id, months=3, today=date(2024, 2, 10))

        assert [m.month for m in trend] == ["2023-12", "2024-01", "2024-02"]
        assert [m.total_income for m in trend] == [Decimal("10.00"), Decimal("0"), Decimal("20.00")]

    async def test_yearly(self, ledger, user_id, cash, food, salary):
        """Test year totals across months."""
        await ledger.transactions.create_income(user_id, cash.id, Decimal("300"), date(2024, 1, 5), salary)
        await ledger.transactions.create_expense(user_id, cash.id, Decimal("120"), date(2024, 7, 5), food)

        yearly = await ledger.statistics.get_yearly_stats(user_id, 2024)

        assert len(yearly.months) == 12
        assert yearly.total_balance == Decimal("180.00")
