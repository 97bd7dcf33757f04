"""Tests for the cascade delete coordinator."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger.errors import ErrorCode, LedgerError
from ledger.flows import CascadeDeleteCoordinator


DAY = date(2024, 5, 1)


async def balance_of(ledger, account, user_id):
    return (await ledger.accounts.get_account(account.id, user_id)).balance


async def attach(ledger, user_id, transaction_id, name):
    attachment = await ledger.attachments.register_attachment(
        user_id, f"{name}.jpg", f"receipts/{name}.jpg", "image/jpeg", 2048
    )
    await ledger.attachments.link_attachments([attachment.id], transaction_id, user_id)
    return attachment


class TestCascadeDelete:
    """Tests for deleting a transaction with its dependents."""

    async def test_expense_with_two_refunds(self, ledger, user_id, cash, food):
        """Test that deleting an expense removes its refunds and nothing else."""
        expense = await ledger.transactions.create_expense(user_id, cash.id, Decimal("100"), DAY, food)
        first = await ledger.refunds.create_refund(user_id, expense.id, Decimal("40"))
        second = await ledger.refunds.create_refund(user_id, expense.id, Decimal("30"))
        unrelated = await ledger.transactions.create_expense(user_id, cash.id, Decimal("25"), DAY, food)

        result = await ledger.transactions.delete(expense.id, user_id)

        assert set(result.deleted_transaction_ids) == {expense.id, first.refund.id, second.refund.id}
        page = await ledger.transactions.list(user_id)
        assert [t.id for t in page.items] == [unrelated.id]
        assert await balance_of(ledger, cash, user_id) == Decimal("975.00")

    async def test_attachments_and_files(self, ledger, user_id, cash, food, files):
        """Test that linked attachments go too, each file deleted once."""
        expense = await ledger.transactions.create_expense(user_id, cash.id, Decimal("100"), DAY, food)
        refund = await ledger.refunds.create_refund(user_id, expense.id, Decimal("10"))
        other = await ledger.transactions.create_expense(user_id, cash.id, Decimal("5"), DAY, food)
        receipt = await attach(ledger, user_id, expense.id, "receipt")
        slip = await attach(ledger, user_id, refund.refund.id, "slip")
        kept = await attach(ledger, user_id, other.id, "kept")

        result = await ledger.transactions.delete(expense.id, user_id)

        assert set(result.deleted_attachment_ids) == {receipt.id, slip.id}
        assert sorted(files.deleted) == ["receipts/receipt.jpg", "receipts/slip.jpg"]
        assert result.failed_file_paths == []
        remaining = await ledger.attachments.list_for_transaction(other.id, user_id)
        assert [a.id for a in remaining] == [kept.id]

    async def test_file_failure_keeps_metadata_delete(self, ledger, user_id, cash, food, files, storage):
        """Test that a failed file delete is reported, audited and not rolled back."""
        expense = await ledger.transactions.create_expense(user_id, cash.id, Decimal("100"), DAY, food)
        await attach(ledger, user_id, expense.id, "locked")
        files.failing.add("receipts/locked.jpg")

        result = await ledger.transactions.delete(expense.id, user_id)

        assert result.failed_file_paths == ["receipts/locked.jpg"]
        with pytest.raises(LedgerError) as exc:
            await ledger.transactions.get(expense.id, user_id)
        assert exc.value.code == ErrorCode.NOT_FOUND
        events = await storage.get_recent_events(limit=20)
        assert any(e.event_type.value == "stored_file_delete_failed" for e in events)

    async def test_delete_refund_does_not_cascade(self, ledger, user_id, cash, food):
        """Test that a refund has no dependents beyond its own attachments."""
        expense = await ledger.transactions.create_expense(user_id, cash.id, Decimal("100"), DAY, food)
        refund = await ledger.refunds.create_refund(user_id, expense.id, Decimal("10"))

        result = await ledger.transactions.delete(refund.refund.id, user_id)

        assert result.deleted_transaction_ids == [refund.refund.id]
        assert (await ledger.transactions.get(expense.id, user_id)).amount == Decimal("100.00")

    async def test_transfer_delete_restores_both_sides(self, ledger, user_id, cash, bank):
        """Test the reversed deltas of a transfer."""
        transfer = await ledger.transactions.create_transfer(user_id, bank.id, cash.id, Decimal("300"), DAY)
        await ledger.transactions.delete(transfer.id, user_id)
        assert await balance_of(ledger, cash, user_id) == Decimal("1000.00")
        assert await balance_of(ledger, bank, user_id) == Decimal("10000.00")

    async def test_card_expense_with_refund(self, ledger, user_id, credit_card, food):
        """Test that deleting a card expense clears its debt and refunds."""
        expense = await ledger.transactions.create_expense(
            user_id, credit_card.id, Decimal("500"), DAY, food
        )
        await ledger.refunds.create_refund(user_id, expense.id, Decimal("100"))
        await ledger.transactions.delete(expense.id, user_id)
        details = await ledger.credit.get_credit_account_details(credit_card.id, user_id)
        assert details.outstanding_balance == Decimal("0.00")
        assert details.overpayment == Decimal("0.00")

    async def test_missing_transaction(self, ledger, user_id):
        """Test NOT_FOUND for an unknown id."""
        with pytest.raises(LedgerError) as exc:
            await ledger.transactions.delete(uuid4(), user_id)
        assert exc.value.code == ErrorCode.NOT_FOUND


class TestCascadePlan:
    """Tests for planning without executing."""

    async def test_plan_is_read_only(self, ledger, user_id, cash, food, storage):
        """Test that a plan lists dependents and reversed deltas, changing nothing."""
        expense = await ledger.transactions.create_expense(user_id, cash.id, Decimal("100"), DAY, food)
        await ledger.refunds.create_refund(user_id, expense.id, Decimal("40"))

        async with storage.atomic() as session:
            plan = await CascadeDeleteCoordinator.plan(session, expense)

        assert len(plan.transactions) == 2
        assert plan.account_ids == {cash.id}
        assert plan.reversed_deltas() == {cash.id: Decimal("60.00")}
        assert await balance_of(ledger, cash, user_id) == Decimal("940.00")
