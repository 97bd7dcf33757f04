"""Tests for credit reconciliation: pure computation and the read side."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger.errors import ErrorCode, LedgerError
from ledger.models import CreditAccountDetails, Expense, Refund, Repayment
from ledger.reconciliation import (
    build_due_reminders,
    calculate_available_credit,
    calculate_days_until_due,
    calculate_outstanding_balance,
    calculate_overpayment,
    is_over_limit,
    is_overdue,
    next_due_date,
)


def make_details(name, outstanding, due_day):
    return CreditAccountDetails(
        account_id=uuid4(),
        name=name,
        credit_limit=Decimal("5000"),
        billing_day=1,
        due_day=due_day,
        outstanding_balance=Decimal(outstanding),
        available_credit=Decimal("5000") - Decimal(outstanding),
    )


class TestOutstandingBalance:
    """Tests for the derived outstanding balance."""

    def setup_method(self):
        self.card = uuid4()
        self.owner = uuid4()
        self.day = date(2024, 5, 1)

    def expense(self, amount, account_id=None):
        return Expense(owner_id=self.owner, amount=Decimal(amount),
                       account_id=account_id or self.card, category_id=uuid4(), date=self.day)

    def test_expenses_minus_refunds_and_repayments(self):
        """Test the basic formula."""
        expense = self.expense("3000")
        txs = [
            expense,
            Refund(owner_id=self.owner, amount=Decimal("200"), account_id=self.card,
                   category_id=expense.category_id, original_transaction_id=expense.id, date=self.day),
            Repayment(owner_id=self.owner, amount=Decimal("800"), account_id=self.card,
                      source_account_id=uuid4(), date=self.day),
        ]
        assert calculate_outstanding_balance(self.card, txs) == Decimal("2000.00")
        assert calculate_overpayment(self.card, txs) == Decimal("0.00")

    def test_floored_at_zero(self):
        """Test that repaying more than owed leaves zero debt and an overpayment."""
        txs = [
            self.expense("3000"),
            Repayment(owner_id=self.owner, amount=Decimal("3500"), account_id=self.card,
                      source_account_id=uuid4(), date=self.day),
        ]
        assert calculate_outstanding_balance(self.card, txs) == Decimal("0.00")
        assert calculate_overpayment(self.card, txs) == Decimal("500.00")

    def test_only_counts_the_card(self):
        """Test that other accounts' expenses are ignored."""
        txs = [self.expense("100"), self.expense("999", account_id=uuid4())]
        assert calculate_outstanding_balance(self.card, txs) == Decimal("100.00")

    def test_empty_set(self):
        """Test an account with no transactions."""
        assert calculate_outstanding_balance(self.card, []) == Decimal("0.00")


class TestCreditLimits:
    """Tests for available credit and over-limit checks."""

    def test_available_credit_may_go_negative(self):
        """Test that over-limit shows as negative available credit."""
        assert calculate_available_credit(Decimal("5000"), Decimal("3000")) == Decimal("2000.00")
        assert calculate_available_credit(Decimal("5000"), Decimal("5200")) == Decimal("-200.00")

    def test_is_over_limit(self):
        """Test the over-limit check with an additional amount."""
        assert not is_over_limit(Decimal("5000"), Decimal("4000"), Decimal("1000"))
        assert is_over_limit(Decimal("5000"), Decimal("4000"), Decimal("1000.01"))


class TestDueDates:
    """Tests for due-date arithmetic."""

    def test_due_later_this_month(self):
        """Test a due day still ahead this month."""
        assert next_due_date(20, date(2024, 5, 15)) == date(2024, 5, 20)
        assert calculate_days_until_due(20, date(2024, 5, 15)) == 5
        assert not is_overdue(20, date(2024, 5, 15))

    def test_due_today(self):
        """Test that the due day itself is not overdue."""
        assert calculate_days_until_due(15, date(2024, 5, 15)) == 0
        assert not is_overdue(15, date(2024, 5, 15))

    def test_past_due_rolls_to_next_month(self):
        """Test that a passed due day points at next month."""
        assert next_due_date(10, date(2024, 12, 15)) == date(2025, 1, 10)
        assert is_overdue(10, date(2024, 12, 15))


class TestDueReminders:
    """Tests for the reminder policy."""

    def test_reminder_policy(self):
        """Test due-soon, overdue, far-off and zero-debt accounts."""
        today = date(2024, 5, 15)
        soon = make_details("soon", "100", 17)
        overdue = make_details("overdue", "50", 10)
        far = make_details("far", "100", 28)
        paid = make_details("paid", "0", 16)

        reminders = build_due_reminders([soon, far, paid, overdue], today)

        assert [r.account_name for r in reminders] == ["overdue", "soon"]
        assert reminders[0].is_overdue
        assert reminders[1].days_until_due == 2

    def test_zero_debt_never_reminds(self):
        """Test that an overdue-looking account with no debt is silent."""
        assert build_due_reminders([make_details("paid", "0", 1)], date(2024, 5, 28)) == []


class TestCreditService:
    """Tests for the credit read side against the store."""

    async def test_account_details_and_summary(self, ledger, user_id, credit_card, food):
        """Test details of a card with an expense."""
        await ledger.transactions.create_expense(
            user_id, credit_card.id, Decimal("3000"), date(2024, 5, 1), food
        )
        details = await ledger.credit.get_credit_account_details(credit_card.id, user_id)
        assert details.outstanding_balance == Decimal("3000.00")
        assert details.available_credit == Decimal("2000.00")

        summary = await ledger.credit.get_user_credit_summary(user_id)
        assert summary.total_outstanding == Decimal("3000.00")
        assert summary.total_credit_limit == Decimal("5000.00")
        assert summary.total_available == Decimal("2000.00")
        assert len(summary.accounts) == 1

    async def test_details_of_non_credit_account(self, ledger, user_id, cash):
        """Test that asking for credit details of cash is rejected."""
        with pytest.raises(LedgerError) as exc:
            await ledger.credit.get_credit_account_details(cash.id, user_id)
        assert exc.value.code == ErrorCode.INVALID_CREDIT_ACCOUNT

    async def test_due_reminders(self, ledger, user_id, credit_card, food):
        """Test reminders for a card due in five days."""
        await ledger.transactions.create_expense(
            user_id, credit_card.id, Decimal("100"), date(2024, 5, 1), food
        )
        assert await ledger.credit.get_due_reminders(user_id, today=date(2024, 5, 10)) == []
        reminders = await ledger.credit.get_due_reminders(user_id, today=date(2024, 5, 18))
        assert len(reminders) == 1
        assert reminders[0].days_until_due == 2

    async def test_check_over_limit(self, ledger, user_id, credit_card, food):
        """Test the over-limit check for a prospective expense."""
        await ledger.transactions.create_expense(
            user_id, credit_card.id, Decimal("4500"), date(2024, 5, 1), food
        )
        assert await ledger.credit.check_over_limit(credit_card.id, user_id, Decimal("600"))
        assert not await ledger.credit.check_over_limit(credit_card.id, user_id, Decimal("500"))
