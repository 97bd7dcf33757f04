"""
Tests for operations racing on the same rows.

The SQLite test store ignores FOR UPDATE, so these tests run on a storage
that gives `for_update=True` reads real lock semantics inside the event
loop: every locking read first yields to other tasks, then waits for the
row until the holding unit of work has committed. That reproduces what
PostgreSQL does for two requests arriving together.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal

import pytest

from ledger.errors import ErrorCode, LedgerError
from ledger.models import CascadeResult, RefundResult, TransactionChanges
from ledger.services.storage import SqlLedgerStorage


DAY = date(2024, 5, 1)


class RowLockingSession:
    """Wraps a session so locking reads queue per row until commit."""

    def __init__(self, session, locks, held):
        self._session = session
        self._locks = locks
        self._held = held

    def __getattr__(self, name):
        return getattr(self._session, name)

    async def _lock(self, key):
        await asyncio.sleep(0)
        if key in self._held:
            return
        lock = self._locks[key]
        await lock.acquire()
        self._held[key] = lock

    async def get_account(self, account_id, for_update=False):
        if for_update:
            await self._lock(("account", account_id))
        return await self._session.get_account(account_id, for_update=for_update)

    async def get_transaction(self, transaction_id, for_update=False):
        if for_update:
            await self._lock(("transaction", transaction_id))
        return await self._session.get_transaction(transaction_id, for_update=for_update)


class RowLockingStorage(SqlLedgerStorage):
    """SQL storage whose row locks are held until the unit of work ends."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._row_locks = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def atomic(self):
        held = {}
        try:
            async with super().atomic() as session:
                yield RowLockingSession(session, self._row_locks, held)
        finally:
            for lock in held.values():
                lock.release()


@pytest.fixture
def storage():
    store = RowLockingStorage("sqlite://")
    store.initialize()
    yield store
    store.dispose()


async def balance_of(ledger, account, user_id):
    return (await ledger.accounts.get_account(account.id, user_id)).balance


def split(results, kind):
    done = [r for r in results if isinstance(r, kind)]
    failed = [r for r in results if isinstance(r, LedgerError)]
    assert len(done) + len(failed) == len(results), results
    return done, failed


class TestConcurrentDeletes:
    """Tests for two deletes of overlapping transactions."""

    async def test_same_expense_reverted_once(self, ledger, user_id, cash, food):
        """Test that the second delete finds nothing instead of reverting again."""
        expense = await ledger.transactions.create_expense(user_id, cash.id, Decimal("100"), DAY, food)

        results = await asyncio.gather(
            ledger.transactions.delete(expense.id, user_id),
            ledger.transactions.delete(expense.id, user_id),
            return_exceptions=True,
        )

        done, failed = split(results, CascadeResult)
        assert len(done) == 1
        assert [e.code for e in failed] == [ErrorCode.NOT_FOUND]
        assert await balance_of(ledger, cash, user_id) == Decimal("1000.00")

    async def test_refund_and_its_expense(self, ledger, user_id, cash, food):
        """Test that a refund deleted by the expense cascade isn't reverted a second time."""
        expense = await ledger.transactions.create_expense(user_id, cash.id, Decimal("100"), DAY, food)
        refund = await ledger.refunds.create_refund(user_id, expense.id, Decimal("40"))

        results = await asyncio.gather(
            ledger.transactions.delete(expense.id, user_id),
            ledger.refunds.delete_refund(refund.refund.id, user_id),
            return_exceptions=True,
        )

        done, failed = split(results, CascadeResult)
        assert set(done[0].deleted_transaction_ids) == {expense.id, refund.refund.id}
        assert [e.code for e in failed] == [ErrorCode.NOT_FOUND]
        assert await balance_of(ledger, cash, user_id) == Decimal("1000.00")


class TestConcurrentUpdates:
    """Tests for edits racing on one transaction."""

    async def test_second_edit_reverts_committed_amount(self, ledger, user_id, cash, food):
        """Test that the balance matches whichever amount was saved last."""
        expense = await ledger.transactions.create_expense(user_id, cash.id, Decimal("100"), DAY, food)

        await asyncio.gather(
            ledger.transactions.update(expense.id, user_id, TransactionChanges(amount=Decimal("150"))),
            ledger.transactions.update(expense.id, user_id, TransactionChanges(amount=Decimal("200"))),
        )

        saved = await ledger.transactions.get(expense.id, user_id)
        assert await balance_of(ledger, cash, user_id) == Decimal("1000.00") - saved.amount
        assert saved.amount == Decimal("200.00")

    async def test_shrink_races_refund(self, ledger, user_id, cash, food):
        """Test that an expense never ends up below what was refunded against it."""
        expense = await ledger.transactions.create_expense(user_id, cash.id, Decimal("100"), DAY, food)

        results = await asyncio.gather(
            ledger.transactions.update(expense.id, user_id, TransactionChanges(amount=Decimal("50"))),
            ledger.refunds.create_refund(user_id, expense.id, Decimal("80")),
            return_exceptions=True,
        )

        assert isinstance(results[1], LedgerError)
        assert results[1].code == ErrorCode.REFUND_AMOUNT_EXCEEDED
        info = await ledger.refunds.get_refund_info(expense.id, user_id)
        assert info.original.amount == Decimal("50.00")
        assert info.total_refunded == Decimal("0")
        assert await balance_of(ledger, cash, user_id) == Decimal("950.00")


class TestConcurrentRefunds:
    """Tests for refunds racing on one expense."""

    async def test_two_refunds_cannot_both_fit(self, ledger, user_id, cash, food):
        """Test that only one of two 80 refunds of a 100 expense is accepted."""
        expense = await ledger.transactions.create_expense(user_id, cash.id, Decimal("100"), DAY, food)

        results = await asyncio.gather(
            ledger.refunds.create_refund(user_id, expense.id, Decimal("80")),
            ledger.refunds.create_refund(user_id, expense.id, Decimal("80")),
            return_exceptions=True,
        )

        done, failed = split(results, RefundResult)
        assert len(done) == 1
        assert [e.code for e in failed] == [ErrorCode.REFUND_AMOUNT_EXCEEDED]
        info = await ledger.refunds.get_refund_info(expense.id, user_id)
        assert info.total_refunded == Decimal("80.00")
        assert await balance_of(ledger, cash, user_id) == Decimal("980.00")

    async def test_two_refund_increases(self, ledger, user_id, cash, food):
        """Test that raising two sibling refunds together respects the cap."""
        expense = await ledger.transactions.create_expense(user_id, cash.id, Decimal("100"), DAY, food)
        first = await ledger.refunds.create_refund(user_id, expense.id, Decimal("30"))
        second = await ledger.refunds.create_refund(user_id, expense.id, Decimal("30"))

        results = await asyncio.gather(
            ledger.refunds.update_refund(first.refund.id, user_id, amount=Decimal("60")),
            ledger.refunds.update_refund(second.refund.id, user_id, amount=Decimal("60")),
            return_exceptions=True,
        )

        done, failed = split(results, RefundResult)
        assert len(done) == 1
        assert [e.code for e in failed] == [ErrorCode.REFUND_AMOUNT_EXCEEDED]
        info = await ledger.refunds.get_refund_info(expense.id, user_id)
        assert info.total_refunded == Decimal("90.00")
        assert await balance_of(ledger, cash, user_id) == Decimal("990.00")
