"""
Pytest fixtures for Family Ledger tests.

Every test gets a fresh in-memory SQLite database and a fully wired
Ledger facade on top of it. Stored-file deletion goes to a recording
fake, so tests can check which files were asked for and make deletes fail.

Sections:
    - Infrastructure Fixtures: store, fake file storage, ledger facade
    - Identity Fixtures: user ids and category ids
    - Account Fixtures: pre-funded accounts of each relevant type
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger.models import AccountType
from ledger.orchestrator import create_app_components
from ledger.services.files import FileStorageError, FileStorageInterface
from ledger.services.storage import SqlLedgerStorage


class RecordingFileStorage(FileStorageInterface):
    """Records every delete request; paths in `failing` raise instead."""

    def __init__(self):
        self.deleted = []
        self.failing = set()

    async def delete(self, storage_path: str) -> bool:
        self.deleted.append(storage_path)
        if storage_path in self.failing:
            raise FileStorageError(f"Permission denied: {storage_path}")
        return True


# ==========================================================================
# Infrastructure Fixtures
# ==========================================================================


@pytest.fixture
def storage():
    store = SqlLedgerStorage("sqlite://")
    store.initialize()
    yield store
    store.dispose()


@pytest.fixture
def files():
    return RecordingFileStorage()


@pytest.fixture
def ledger(storage, files):
    """The wired facade, with audit events persisted to the same store."""
    return create_app_components(storage=storage, file_storage=files)


# ==========================================================================
# Identity Fixtures
# ==========================================================================


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def other_user_id():
    return uuid4()


@pytest.fixture
def food():
    """Category id for food expenses."""
    return uuid4()


@pytest.fixture
def salary():
    """Category id for salary income."""
    return uuid4()


@pytest.fixture
def today():
    return date(2024, 5, 15)


# ==========================================================================
# Account Fixtures
# ==========================================================================


@pytest.fixture
async def cash(ledger, user_id):
    """Cash wallet starting at 1000."""
    return await ledger.accounts.create_account(
        user_id, "Wallet", AccountType.CASH, initial_balance=Decimal("1000")
    )


@pytest.fixture
async def bank(ledger, user_id):
    """Bank account starting at 10000."""
    return await ledger.accounts.create_account(
        user_id, "Checking", AccountType.BANK, initial_balance=Decimal("10000")
    )


@pytest.fixture
async def credit_card(ledger, user_id):
    """Credit card with a 5000 limit, billed on the 5th and due on the 20th."""
    return await ledger.accounts.create_account(
        user_id,
        "Visa",
        AccountType.CREDIT,
        credit_limit=Decimal("5000"),
        billing_day=5,
        due_day=20,
    )


@pytest.fixture
async def investment(ledger, user_id):
    """Brokerage account starting at 2000."""
    return await ledger.accounts.create_account(
        user_id, "Brokerage", AccountType.INVESTMENT, initial_balance=Decimal("2000")
    )


@pytest.fixture
async def other_cash(ledger, other_user_id):
    """Another user's cash wallet."""
    return await ledger.accounts.create_account(
        other_user_id, "Their wallet", AccountType.CASH, initial_balance=Decimal("500")
    )
