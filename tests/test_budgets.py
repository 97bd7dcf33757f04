"""Tests for monthly budgets."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger.audit import create_correlation_id
from ledger.errors import ErrorCode, LedgerError
from ledger.models import AuditEventType, BudgetState


MONTH = "2024-05"


class TestSetBudget:
    """Tests for creating and replacing budgets."""

    async def test_setting_again_replaces_amount(self, ledger, user_id, food):
        """Test that one month and category keep a single budget."""
        first = await ledger.budgets.set_budget(user_id, MONTH, Decimal("100"), category_id=food)
        second = await ledger.budgets.set_budget(user_id, MONTH, Decimal("150"), category_id=food)

        assert second.id == first.id
        budgets = await ledger.budgets.list_budgets(user_id, MONTH)
        assert [(b.id, b.amount) for b in budgets] == [(first.id, Decimal("150.00"))]

    async def test_overall_budget_listed_first(self, ledger, user_id, food):
        """Test that the budget without a category comes before category budgets."""
        await ledger.budgets.set_budget(user_id, MONTH, Decimal("100"), category_id=food)
        overall = await ledger.budgets.set_budget(user_id, MONTH, Decimal("2000"))

        budgets = await ledger.budgets.list_budgets(user_id, MONTH)

        assert budgets[0].id == overall.id
        assert budgets[0].category_id is None
        assert len(budgets) == 2

    async def test_month_is_normalized(self, ledger, user_id):
        """Test that a single-digit month is stored zero-padded."""
        budget = await ledger.budgets.set_budget(user_id, "2024-5", Decimal("10"))
        assert budget.month == MONTH

    @pytest.mark.parametrize("month", ["2024-13", "May 2024", ""])
    async def test_invalid_month(self, ledger, user_id, storage, month):
        """Test INVALID_MONTH, audited as a rejection."""
        correlation_id = create_correlation_id()
        with pytest.raises(LedgerError) as exc:
            await ledger.budgets.set_budget(user_id, month, Decimal("10"), correlation_id=correlation_id)

        assert exc.value.code == ErrorCode.INVALID_MONTH
        events = await storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in events] == [AuditEventType.OPERATION_REJECTED]

    async def test_non_positive_amount(self, ledger, user_id):
        """Test INVALID_AMOUNT for a zero budget."""
        with pytest.raises(LedgerError) as exc:
            await ledger.budgets.set_budget(user_id, MONTH, Decimal("0"))
        assert exc.value.code == ErrorCode.INVALID_AMOUNT


class TestDeleteBudget:
    """Tests for removing budgets."""

    async def test_delete(self, ledger, user_id, storage):
        """Test that a deleted budget is gone and the delete is audited."""
        budget = await ledger.budgets.set_budget(user_id, MONTH, Decimal("500"))
        correlation_id = create_correlation_id()

        await ledger.budgets.delete_budget(budget.id, user_id, correlation_id=correlation_id)

        assert await ledger.budgets.list_budgets(user_id, MONTH) == []
        events = await storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in events] == [AuditEventType.BUDGET_DELETED]

    async def test_foreign_budget(self, ledger, user_id, other_user_id):
        """Test that someone else's budget can't be deleted."""
        budget = await ledger.budgets.set_budget(user_id, MONTH, Decimal("500"))
        with pytest.raises(LedgerError) as exc:
            await ledger.budgets.delete_budget(budget.id, other_user_id)
        assert exc.value.code == ErrorCode.FORBIDDEN
        assert len(await ledger.budgets.list_budgets(user_id, MONTH)) == 1

    async def test_missing_budget(self, ledger, user_id):
        """Test NOT_FOUND for an unknown budget."""
        with pytest.raises(LedgerError) as exc:
            await ledger.budgets.delete_budget(uuid4(), user_id)
        assert exc.value.code == ErrorCode.NOT_FOUND


class TestBudgetStatus:
    """Tests for spending against budgets."""

    @pytest.fixture
    async def spending(self, ledger, user_id, cash, food):
        """85 on food and 400 on rent in May, 50 on food in June."""
        rent = uuid4()
        await ledger.transactions.create_expense(user_id, cash.id, Decimal("85"), date(2024, 5, 1), food)
        await ledger.transactions.create_expense(user_id, cash.id, Decimal("400"), date(2024, 5, 31), rent)
        await ledger.transactions.create_expense(user_id, cash.id, Decimal("50"), date(2024, 6, 1), food)
        await ledger.budgets.set_budget(user_id, MONTH, Decimal("1000"))
        await ledger.budgets.set_budget(user_id, MONTH, Decimal("100"), category_id=food)

    async def test_overall_and_category(self, ledger, user_id, food, spending):
        """Test spent, remaining and state for the month and for one category."""
        overall, food_budget = await ledger.budgets.get_budget_status(user_id, MONTH)

        assert overall.category_id is None
        assert overall.spent_amount == Decimal("485.00")
        assert overall.remaining_amount == Decimal("515.00")
        assert overall.percentage == 48.5
        assert overall.state == BudgetState.NORMAL

        assert food_budget.category_id == food
        assert food_budget.spent_amount == Decimal("85.00")
        assert food_budget.remaining_amount == Decimal("15.00")
        assert food_budget.percentage == 85.0
        assert food_budget.state == BudgetState.WARNING

    async def test_exceeded(self, ledger, user_id, cash, food, spending):
        """Test that spending past the amount is EXCEEDED with a negative remainder."""
        await ledger.transactions.create_expense(user_id, cash.id, Decimal("20"), date(2024, 5, 20), food)

        statuses = await ledger.budgets.get_budget_status(user_id, MONTH)

        assert statuses[1].spent_amount == Decimal("105.00")
        assert statuses[1].remaining_amount == Decimal("-5.00")
        assert statuses[1].state == BudgetState.EXCEEDED

    async def test_warning_starts_at_eighty_percent(self, ledger, user_id, cash, food):
        """Test the exact warning line."""
        await ledger.transactions.create_expense(user_id, cash.id, Decimal("80"), date(2024, 5, 2), food)
        await ledger.budgets.set_budget(user_id, MONTH, Decimal("100"), category_id=food)

        [status] = await ledger.budgets.get_budget_status(user_id, MONTH)

        assert status.percentage == 80.0
        assert status.state == BudgetState.WARNING

    async def test_check_warnings(self, ledger, user_id, food, spending):
        """Test that only budgets past the warning line are reported."""
        warnings = await ledger.budgets.check_warnings(user_id, MONTH)
        assert [w.category_id for w in warnings] == [food]

    async def test_no_budgets(self, ledger, user_id, spending):
        """Test that a month without budgets has no status."""
        assert await ledger.budgets.get_budget_status(user_id, "2024-06") == []
