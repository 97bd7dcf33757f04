"""Tests for attachment association."""

from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger.errors import ErrorCode, LedgerError


DAY = date(2024, 5, 1)


@pytest.fixture
async def expense(ledger, user_id, cash, food):
    return await ledger.transactions.create_expense(user_id, cash.id, Decimal("10"), DAY, food)


async def register(ledger, user_id, name="receipt.png", mime="image/png", size=1024):
    return await ledger.attachments.register_attachment(
        user_id, name, f"uploads/{uuid4()}/{name}", mime, size
    )


class TestRegister:
    """Tests for registering uploaded files."""

    async def test_register_unlinked(self, ledger, user_id):
        """Test that a new attachment is owned and unlinked."""
        attachment = await register(ledger, user_id)
        assert attachment.owner_id == user_id
        assert attachment.transaction_id is None
        assert attachment.is_image

    async def test_rejects_unknown_type(self, ledger, user_id):
        """Test INVALID_FILE for an unaccepted MIME type."""
        with pytest.raises(LedgerError) as exc:
            await register(ledger, user_id, "notes.zip", "application/zip")
        assert exc.value.code == ErrorCode.INVALID_FILE

    async def test_rejects_oversized_image(self, ledger, user_id):
        """Test INVALID_FILE for an image over 10MB, while a large video passes."""
        with pytest.raises(LedgerError) as exc:
            await register(ledger, user_id, size=10 * 1024 * 1024 + 1)
        assert exc.value.code == ErrorCode.INVALID_FILE
        video = await register(ledger, user_id, "clip.mp4", "video/mp4", 40 * 1024 * 1024)
        assert video.mime_type == "video/mp4"


class TestLink:
    """Tests for linking attachments to transactions."""

    async def test_link_and_relink_same(self, ledger, user_id, expense):
        """Test linking, then re-linking to the same transaction idempotently."""
        first = await register(ledger, user_id)
        second = await register(ledger, user_id)

        linked = await ledger.attachments.link_attachments([first.id, second.id], expense.id, user_id)
        assert {a.transaction_id for a in linked} == {expense.id}

        again = await ledger.attachments.link_attachments([first.id], expense.id, user_id)
        assert again[0].transaction_id == expense.id
        listed = await ledger.attachments.list_for_transaction(expense.id, user_id)
        assert {a.id for a in listed} == {first.id, second.id}

    async def test_relink_elsewhere_rejected(self, ledger, user_id, cash, food, expense):
        """Test ALREADY_LINKED for a different transaction."""
        attachment = await register(ledger, user_id)
        await ledger.attachments.link_attachments([attachment.id], expense.id, user_id)
        other = await ledger.transactions.create_expense(user_id, cash.id, Decimal("1"), DAY, food)

        with pytest.raises(LedgerError) as exc:
            await ledger.attachments.link_attachments([attachment.id], other.id, user_id)
        assert exc.value.code == ErrorCode.ALREADY_LINKED

    async def test_all_or_nothing(self, ledger, user_id, other_user_id, expense):
        """Test that one foreign id stops the whole batch."""
        mine = await register(ledger, user_id)
        theirs = await register(ledger, other_user_id)

        with pytest.raises(LedgerError) as exc:
            await ledger.attachments.link_attachments([mine.id, theirs.id], expense.id, user_id)
        assert exc.value.code == ErrorCode.FORBIDDEN
        assert await ledger.attachments.list_for_transaction(expense.id, user_id) == []

    async def test_missing_attachment(self, ledger, user_id, expense):
        """Test NOT_FOUND for an unknown attachment id."""
        mine = await register(ledger, user_id)
        with pytest.raises(LedgerError) as exc:
            await ledger.attachments.link_attachments([mine.id, uuid4()], expense.id, user_id)
        assert exc.value.code == ErrorCode.NOT_FOUND
        assert await ledger.attachments.list_for_transaction(expense.id, user_id) == []

    async def test_foreign_transaction(self, ledger, user_id, other_user_id, expense):
        """Test FORBIDDEN when linking to someone else's transaction."""
        theirs = await register(ledger, other_user_id)
        with pytest.raises(LedgerError) as exc:
            await ledger.attachments.link_attachments([theirs.id], expense.id, other_user_id)
        assert exc.value.code == ErrorCode.FORBIDDEN


class TestDeleteAndCleanup:
    """Tests for removing attachments."""

    async def test_delete_attachment(self, ledger, user_id, expense, files):
        """Test that deleting removes the row and asks for the file."""
        attachment = await register(ledger, user_id)
        await ledger.attachments.link_attachments([attachment.id], expense.id, user_id)

        assert await ledger.attachments.delete_attachment(attachment.id, user_id)
        assert files.deleted == [attachment.storage_path]
        assert await ledger.attachments.list_for_transaction(expense.id, user_id) == []

    async def test_delete_with_failing_file(self, ledger, user_id, files):
        """Test that a failing file delete returns False but the row is gone."""
        attachment = await register(ledger, user_id)
        files.failing.add(attachment.storage_path)

        assert not await ledger.attachments.delete_attachment(attachment.id, user_id)
        with pytest.raises(LedgerError) as exc:
            await ledger.attachments.delete_attachment(attachment.id, user_id)
        assert exc.value.code == ErrorCode.NOT_FOUND

    async def test_cleanup_unlinked(self, ledger, user_id, expense, storage, files):
        """Test that only old unlinked attachments are removed."""
        stale = await register(ledger, user_id, "old.png")
        fresh = await register(ledger, user_id, "new.png")
        linked = await register(ledger, user_id, "kept.png")
        await ledger.attachments.link_attachments([linked.id], expense.id, user_id)

        async with storage.atomic() as session:
            for attachment in (stale, linked):
                attachment.created_at = datetime.utcnow() - timedelta(hours=48)
                attachment.transaction_id = expense.id if attachment is linked else None
                await session.save_attachment(attachment)

        removed = await ledger.attachments.cleanup_unlinked(user_id)

        assert removed == [stale.id]
        assert files.deleted == [stale.storage_path]
        removed = await ledger.attachments.cleanup_unlinked(user_id, older_than_hours=0)
        assert removed == [fresh.id]
