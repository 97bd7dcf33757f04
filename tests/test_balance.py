"""Tests for quick-balance corrections."""

from decimal import Decimal

import pytest

from ledger.errors import ErrorCode, LedgerError
from ledger.models import DifferenceType


class TestPreview:
    """Tests for previewing a quick balance."""

    async def test_preview_profit_and_loss(self, ledger, user_id, cash):
        """Test the difference and its direction without changing anything."""
        preview = await ledger.balance.preview_balance(cash.id, user_id, Decimal("1200"))
        assert preview.difference == Decimal("200.00")
        assert preview.difference_type == DifferenceType.PROFIT

        preview = await ledger.balance.preview_balance(cash.id, user_id, Decimal("900.5"))
        assert preview.difference == Decimal("-99.50")
        assert preview.difference_type == DifferenceType.LOSS

        assert (await ledger.accounts.get_account(cash.id, user_id)).balance == Decimal("1000.00")


class TestExecute:
    """Tests for applying a quick balance."""

    async def test_sets_balance_and_records(self, ledger, user_id, cash):
        """Test that the balance is set and an adjustment recorded."""
        adjustment = await ledger.balance.execute_quick_balance(
            cash.id, user_id, Decimal("850"), note="Counted the wallet"
        )
        assert adjustment.previous_balance == Decimal("1000.00")
        assert adjustment.new_balance == Decimal("850.00")
        assert adjustment.difference_type == DifferenceType.LOSS
        assert (await ledger.accounts.get_account(cash.id, user_id)).balance == Decimal("850.00")

        history = await ledger.balance.list_adjustments(user_id, account_id=cash.id)
        assert [a.id for a in history] == [adjustment.id]
        assert history[0].note == "Counted the wallet"

    async def test_negative_actual_balance(self, ledger, user_id, cash):
        """Test INVALID_AMOUNT for a negative actual balance."""
        with pytest.raises(LedgerError) as exc:
            await ledger.balance.execute_quick_balance(cash.id, user_id, Decimal("-1"))
        assert exc.value.code == ErrorCode.INVALID_AMOUNT

    async def test_unchanged(self, ledger, user_id, cash):
        """Test BALANCE_UNCHANGED when nothing differs."""
        with pytest.raises(LedgerError) as exc:
            await ledger.balance.execute_quick_balance(cash.id, user_id, Decimal("1000.00"))
        assert exc.value.code == ErrorCode.BALANCE_UNCHANGED
        assert await ledger.balance.list_adjustments(user_id) == []

    async def test_credit_account_rejected(self, ledger, user_id, credit_card):
        """Test that derived credit balances can't be set."""
        with pytest.raises(LedgerError) as exc:
            await ledger.balance.execute_quick_balance(credit_card.id, user_id, Decimal("10"))
        assert exc.value.code == ErrorCode.INVALID_ACCOUNT_TYPE

    async def test_foreign_account(self, ledger, user_id, other_cash):
        """Test FORBIDDEN for another user's account."""
        with pytest.raises(LedgerError) as exc:
            await ledger.balance.execute_quick_balance(other_cash.id, user_id, Decimal("10"))
        assert exc.value.code == ErrorCode.FORBIDDEN

    async def test_listing_pages(self, ledger, user_id, cash, bank):
        """Test paging across accounts, newest first."""
        first = await ledger.balance.execute_quick_balance(cash.id, user_id, Decimal("1"))
        second = await ledger.balance.execute_quick_balance(bank.id, user_id, Decimal("2"))
        page = await ledger.balance.list_adjustments(user_id, page=1, page_size=1)
        assert [a.id for a in page] == [second.id]
        page = await ledger.balance.list_adjustments(user_id, page=2, page_size=1)
        assert [a.id for a in page] == [first.id]
