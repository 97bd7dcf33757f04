"""
SQLAlchemy Storage Implementation

DESIGN DECISION: A relational store is the backing store because the ledger
needs real transactions:
1. Every ledger operation commits or rolls back as one unit
2. Row-level locks (SELECT ... FOR UPDATE) serialize balance updates
3. Foreign keys with ON DELETE CASCADE back up the cascade planner
4. SQLite for development and tests, PostgreSQL in production

TRADEOFFS:
- The ORM session is synchronous; async methods call it directly.
  The ledger is single-writer per operation, so nothing interleaves
  inside a unit of work.
- SQLite ignores FOR UPDATE; its database-level write lock gives the
  same serialization for our purposes.

All transaction types share one table. Type-specific columns are NULL
for the types that don't carry them; the pydantic models enforce which
columns each type requires.
"""

import json
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import AsyncIterator, Iterable, Optional, Union
from uuid import UUID

import structlog
from sqlalchemy import (
    Date,
    DateTime,
    Engine,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    create_engine,
    delete,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ledger.config import DatabaseSettings, get_settings
from ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from ledger.models.ledger import (
    TRANSACTION_MODELS,
    Account,
    AccountType,
    Attachment,
    BalanceAdjustment,
    Budget,
    DateType,
    Refund,
    TradeSide,
    TransactionBase,
    TransactionType,
    Valuation,
    to_money,
    to_units,
)
from ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerSession,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)


logger = structlog.get_logger(__name__)

MONEY = Numeric(14, 2)
UNITS = Numeric(15, 4)


# =============================================================================
# ORM ROWS
# =============================================================================

class Base(DeclarativeBase):
    pass


class AccountRow(Base):
    __tablename__ = "accounts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    owner_id: Mapped[UUID] = mapped_column(Uuid, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    icon: Mapped[Optional[str]] = mapped_column(String(50))
    credit_limit: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    billing_day: Mapped[Optional[int]] = mapped_column(Integer)
    due_day: Mapped[Optional[int]] = mapped_column(Integer)
    shares: Mapped[Optional[Decimal]] = mapped_column(UNITS)
    cost_price: Mapped[Optional[Decimal]] = mapped_column(UNITS)
    net_value: Mapped[Optional[Decimal]] = mapped_column(UNITS)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class TransactionRow(Base):
    __tablename__ = "transactions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    owner_id: Mapped[UUID] = mapped_column(Uuid, index=True, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    account_id: Mapped[UUID] = mapped_column(
        ForeignKey("accounts.id"), index=True, nullable=False
    )
    source_account_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("accounts.id"), index=True
    )
    target_account_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("accounts.id"), index=True
    )
    category_id: Mapped[Optional[UUID]] = mapped_column(Uuid, index=True)
    original_transaction_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"), index=True
    )
    trade_side: Mapped[Optional[str]] = mapped_column(String(10))
    shares: Mapped[Optional[Decimal]] = mapped_column(UNITS)
    price: Mapped[Optional[Decimal]] = mapped_column(UNITS)
    date: Mapped[DateType] = mapped_column(Date, nullable=False)
    note: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class AttachmentRow(Base):
    __tablename__ = "attachments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    owner_id: Mapped[UUID] = mapped_column(Uuid, index=True, nullable=False)
    transaction_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"), index=True
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    storage_path: Mapped[str] = mapped_column(String(500), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    thumbnail_path: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class BalanceAdjustmentRow(Base):
    __tablename__ = "balance_adjustments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    owner_id: Mapped[UUID] = mapped_column(Uuid, index=True, nullable=False)
    account_id: Mapped[UUID] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), index=True, nullable=False
    )
    previous_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    new_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    difference: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class ValuationRow(Base):
    __tablename__ = "valuations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    owner_id: Mapped[UUID] = mapped_column(Uuid, index=True, nullable=False)
    account_id: Mapped[UUID] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), index=True, nullable=False
    )
    net_value: Mapped[Decimal] = mapped_column(UNITS, nullable=False)
    market_value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    date: Mapped[DateType] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class BudgetRow(Base):
    __tablename__ = "budgets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    owner_id: Mapped[UUID] = mapped_column(Uuid, index=True, nullable=False)
    category_id: Mapped[Optional[UUID]] = mapped_column(Uuid)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    month: Mapped[str] = mapped_column(String(7), index=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class AuditEventRow(Base):
    __tablename__ = "audit_events"

    event_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_type: Mapped[Optional[str]] = mapped_column(String(50))
    entity_id: Mapped[Optional[UUID]] = mapped_column(Uuid, index=True)
    owner_id: Mapped[Optional[UUID]] = mapped_column(Uuid)
    correlation_id: Mapped[Optional[UUID]] = mapped_column(Uuid, index=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    details_json: Mapped[str] = mapped_column(Text, nullable=False, default="")
    error_code: Mapped[Optional[str]] = mapped_column(String(50))
    error_message: Mapped[Optional[str]] = mapped_column(Text)


# =============================================================================
# ROW <-> MODEL MAPPING
# =============================================================================

def _account_from_row(row: AccountRow) -> Account:
    return Account(
        id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        type=AccountType(row.type),
        balance=to_money(row.balance),
        icon=row.icon,
        credit_limit=to_money(row.credit_limit) if row.credit_limit is not None else None,
        billing_day=row.billing_day,
        due_day=row.due_day,
        shares=row.shares,
        cost_price=row.cost_price,
        net_value=row.net_value,
        created_at=row.created_at,
    )


def _copy_account(account: Account, row: AccountRow) -> None:
    row.owner_id = account.owner_id
    row.name = account.name
    row.type = account.type.value
    row.balance = account.balance
    row.icon = account.icon
    row.credit_limit = account.credit_limit
    row.billing_day = account.billing_day
    row.due_day = account.due_day
    row.shares = account.shares
    row.cost_price = account.cost_price
    row.net_value = account.net_value
    row.created_at = account.created_at


def _transaction_from_row(row: TransactionRow) -> TransactionBase:
    model = TRANSACTION_MODELS[TransactionType(row.type)]
    data = {
        "id": row.id,
        "owner_id": row.owner_id,
        "amount": to_money(row.amount),
        "account_id": row.account_id,
        "category_id": row.category_id,
        "date": row.date,
        "note": row.note,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
        "source_account_id": row.source_account_id,
        "target_account_id": row.target_account_id,
        "original_transaction_id": row.original_transaction_id,
        "trade_side": TradeSide(row.trade_side) if row.trade_side else None,
        "shares": row.shares,
        "price": row.price,
    }
    # Only pass the columns this type actually has
    return model(**{k: v for k, v in data.items() if k in model.model_fields})


def _copy_transaction(transaction: TransactionBase, row: TransactionRow) -> None:
    row.owner_id = transaction.owner_id
    row.type = transaction.type.value
    row.amount = transaction.amount
    row.account_id = transaction.account_id
    row.category_id = getattr(transaction, "category_id", None)
    row.source_account_id = getattr(transaction, "source_account_id", None)
    row.target_account_id = getattr(transaction, "target_account_id", None)
    row.original_transaction_id = getattr(transaction, "original_transaction_id", None)
    trade_side = getattr(transaction, "trade_side", None)
    row.trade_side = trade_side.value if trade_side else None
    row.shares = getattr(transaction, "shares", None)
    row.price = getattr(transaction, "price", None)
    row.date = transaction.date
    row.note = transaction.note
    row.created_at = transaction.created_at
    row.updated_at = transaction.updated_at


def _attachment_from_row(row: AttachmentRow) -> Attachment:
    return Attachment(
        id=row.id,
        owner_id=row.owner_id,
        transaction_id=row.transaction_id,
        filename=row.filename,
        storage_path=row.storage_path,
        mime_type=row.mime_type,
        size=row.size,
        thumbnail_path=row.thumbnail_path,
        created_at=row.created_at,
    )


def _copy_attachment(attachment: Attachment, row: AttachmentRow) -> None:
    row.owner_id = attachment.owner_id
    row.transaction_id = attachment.transaction_id
    row.filename = attachment.filename
    row.storage_path = attachment.storage_path
    row.mime_type = attachment.mime_type
    row.size = attachment.size
    row.thumbnail_path = attachment.thumbnail_path
    row.created_at = attachment.created_at


def _adjustment_from_row(row: BalanceAdjustmentRow) -> BalanceAdjustment:
    return BalanceAdjustment(
        id=row.id,
        owner_id=row.owner_id,
        account_id=row.account_id,
        previous_balance=to_money(row.previous_balance),
        new_balance=to_money(row.new_balance),
        difference=to_money(row.difference),
        note=row.note,
        created_at=row.created_at,
    )


def _valuation_from_row(row: ValuationRow) -> Valuation:
    return Valuation(
        id=row.id,
        owner_id=row.owner_id,
        account_id=row.account_id,
        net_value=to_units(row.net_value),
        market_value=to_money(row.market_value),
        date=row.date,
        created_at=row.created_at,
    )


def _budget_from_row(row: BudgetRow) -> Budget:
    return Budget(
        id=row.id,
        owner_id=row.owner_id,
        category_id=row.category_id,
        amount=to_money(row.amount),
        month=row.month,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _copy_budget(budget: Budget, row: BudgetRow) -> None:
    row.owner_id = budget.owner_id
    row.category_id = budget.category_id
    row.amount = budget.amount
    row.month = budget.month
    row.created_at = budget.created_at
    row.updated_at = budget.updated_at


def _event_from_row(row: AuditEventRow) -> AuditEvent:
    return AuditEvent(
        event_id=row.event_id,
        timestamp=row.timestamp,
        event_type=AuditEventType(row.event_type),
        severity=AuditSeverity(row.severity),
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        owner_id=row.owner_id,
        correlation_id=row.correlation_id,
        description=row.description,
        details=json.loads(row.details_json) if row.details_json else {},
        error_code=row.error_code,
        error_message=row.error_message,
    )


# =============================================================================
# UNIT OF WORK
# =============================================================================

class SqlLedgerSession(LedgerSession):
    """LedgerSession over one SQLAlchemy ORM session."""

    def __init__(self, session: Session):
        self._session = session

    # -- Accounts ------------------------------------------------------------

    async def get_account(
        self,
        account_id: UUID,
        for_update: bool = False,
    ) -> Optional[Account]:
        row = self._session.get(
            AccountRow,
            account_id,
            with_for_update=True if for_update else None,
            populate_existing=for_update,
        )
        return _account_from_row(row) if row else None

    async def list_accounts(
        self,
        owner_id: UUID,
        account_type: Optional[AccountType] = None,
    ) -> list[Account]:
        stmt = select(AccountRow).where(AccountRow.owner_id == owner_id)
        if account_type:
            stmt = stmt.where(AccountRow.type == account_type.value)
        stmt = stmt.order_by(AccountRow.created_at, AccountRow.name)
        return [_account_from_row(row) for row in self._session.scalars(stmt)]

    async def add_account(self, account: Account) -> None:
        row = AccountRow(id=account.id)
        _copy_account(account, row)
        self._session.add(row)
        self._session.flush()

    async def save_account(self, account: Account) -> None:
        row = self._session.get(AccountRow, account.id)
        if row is None:
            raise NotFoundError(f"Account not found: {account.id}")
        _copy_account(account, row)
        self._session.flush()

    async def delete_account(self, account_id: UUID) -> bool:
        result = self._session.execute(
            delete(AccountRow).where(AccountRow.id == account_id)
        )
        return result.rowcount > 0

    async def count_account_references(self, account_id: UUID) -> int:
        stmt = select(func.count()).select_from(TransactionRow).where(
            or_(
                TransactionRow.account_id == account_id,
                TransactionRow.source_account_id == account_id,
                TransactionRow.target_account_id == account_id,
            )
        )
        return self._session.scalar(stmt) or 0

    # -- Transactions --------------------------------------------------------

    async def get_transaction(
        self,
        transaction_id: UUID,
        for_update: bool = False,
    ) -> Optional[TransactionBase]:
        row = self._session.get(
            TransactionRow,
            transaction_id,
            with_for_update=True if for_update else None,
            populate_existing=for_update,
        )
        return _transaction_from_row(row) if row else None

    async def add_transaction(self, transaction: TransactionBase) -> None:
        row = TransactionRow(id=transaction.id)
        _copy_transaction(transaction, row)
        self._session.add(row)
        self._session.flush()

    async def save_transaction(self, transaction: TransactionBase) -> None:
        row = self._session.get(TransactionRow, transaction.id)
        if row is None:
            raise NotFoundError(f"Transaction not found: {transaction.id}")
        _copy_transaction(transaction, row)
        self._session.flush()

    async def delete_transactions(self, transaction_ids: Iterable[UUID]) -> int:
        ids = list(transaction_ids)
        if not ids:
            return 0
        # Children first so the statement never trips the self-referencing FK
        removed = self._session.execute(
            delete(TransactionRow)
            .where(TransactionRow.id.in_(ids))
            .where(TransactionRow.original_transaction_id.is_not(None))
        ).rowcount
        removed += self._session.execute(
            delete(TransactionRow)
            .where(TransactionRow.id.in_(ids))
        ).rowcount
        return removed

    def _filtered(
        self,
        stmt,
        owner_id: UUID,
        account_id: Optional[UUID],
        category_id: Optional[UUID],
        transaction_type: Optional[TransactionType],
        date_from: Optional[date],
        date_to: Optional[date],
    ):
        stmt = stmt.where(TransactionRow.owner_id == owner_id)
        if account_id:
            stmt = stmt.where(
                or_(
                    TransactionRow.account_id == account_id,
                    TransactionRow.source_account_id == account_id,
                    TransactionRow.target_account_id == account_id,
                )
            )
        if category_id:
            stmt = stmt.where(TransactionRow.category_id == category_id)
        if transaction_type:
            stmt = stmt.where(TransactionRow.type == transaction_type.value)
        if date_from:
            stmt = stmt.where(TransactionRow.date >= date_from)
        if date_to:
            stmt = stmt.where(TransactionRow.date <= date_to)
        return stmt

    async def list_transactions(
        self,
        owner_id: UUID,
        account_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        transaction_type: Optional[TransactionType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[TransactionBase]:
        stmt = self._filtered(
            select(TransactionRow),
            owner_id, account_id, category_id, transaction_type, date_from, date_to,
        )
        stmt = stmt.order_by(TransactionRow.date.desc(), TransactionRow.created_at.desc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [_transaction_from_row(row) for row in self._session.scalars(stmt)]

    async def count_transactions(
        self,
        owner_id: UUID,
        account_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        transaction_type: Optional[TransactionType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> int:
        stmt = self._filtered(
            select(func.count()).select_from(TransactionRow),
            owner_id, account_id, category_id, transaction_type, date_from, date_to,
        )
        return self._session.scalar(stmt) or 0

    async def sum_by_type(
        self,
        owner_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> dict[TransactionType, tuple[Decimal, int]]:
        stmt = self._filtered(
            select(TransactionRow.type, func.sum(TransactionRow.amount), func.count()),
            owner_id, None, None, None, date_from, date_to,
        ).group_by(TransactionRow.type)
        return {
            TransactionType(type_): (to_money(total or 0), count)
            for type_, total, count in self._session.execute(stmt)
        }

    async def sum_by_category(
        self,
        owner_id: UUID,
        transaction_type: TransactionType,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> dict[Optional[UUID], tuple[Decimal, int]]:
        stmt = self._filtered(
            select(TransactionRow.category_id, func.sum(TransactionRow.amount), func.count()),
            owner_id, None, None, transaction_type, date_from, date_to,
        ).group_by(TransactionRow.category_id)
        return {
            category_id: (to_money(total or 0), count)
            for category_id, total, count in self._session.execute(stmt)
        }

    async def list_refunds_for(self, original_transaction_id: UUID) -> list[Refund]:
        stmt = (
            select(TransactionRow)
            .where(TransactionRow.original_transaction_id == original_transaction_id)
            .where(TransactionRow.type == TransactionType.REFUND.value)
            .order_by(TransactionRow.created_at.desc())
        )
        return [_transaction_from_row(row) for row in self._session.scalars(stmt)]

    # -- Attachments ---------------------------------------------------------

    async def get_attachment(self, attachment_id: UUID) -> Optional[Attachment]:
        row = self._session.get(AttachmentRow, attachment_id)
        return _attachment_from_row(row) if row else None

    async def add_attachment(self, attachment: Attachment) -> None:
        row = AttachmentRow(id=attachment.id)
        _copy_attachment(attachment, row)
        self._session.add(row)
        self._session.flush()

    async def save_attachment(self, attachment: Attachment) -> None:
        row = self._session.get(AttachmentRow, attachment.id)
        if row is None:
            raise NotFoundError(f"Attachment not found: {attachment.id}")
        _copy_attachment(attachment, row)
        self._session.flush()

    async def delete_attachments(self, attachment_ids: Iterable[UUID]) -> int:
        ids = list(attachment_ids)
        if not ids:
            return 0
        result = self._session.execute(
            delete(AttachmentRow)
            .where(AttachmentRow.id.in_(ids))
        )
        return result.rowcount

    async def list_attachments_for(
        self,
        transaction_ids: Iterable[UUID],
    ) -> list[Attachment]:
        ids = list(transaction_ids)
        if not ids:
            return []
        stmt = (
            select(AttachmentRow)
            .where(AttachmentRow.transaction_id.in_(ids))
            .order_by(AttachmentRow.created_at)
        )
        return [_attachment_from_row(row) for row in self._session.scalars(stmt)]

    async def list_unlinked_attachments(
        self,
        owner_id: UUID,
        created_before: datetime,
    ) -> list[Attachment]:
        stmt = (
            select(AttachmentRow)
            .where(AttachmentRow.owner_id == owner_id)
            .where(AttachmentRow.transaction_id.is_(None))
            .where(AttachmentRow.created_at < created_before)
            .order_by(AttachmentRow.created_at)
        )
        return [_attachment_from_row(row) for row in self._session.scalars(stmt)]

    # -- Balance adjustments -------------------------------------------------

    async def add_adjustment(self, adjustment: BalanceAdjustment) -> None:
        self._session.add(BalanceAdjustmentRow(
            id=adjustment.id,
            owner_id=adjustment.owner_id,
            account_id=adjustment.account_id,
            previous_balance=adjustment.previous_balance,
            new_balance=adjustment.new_balance,
            difference=adjustment.difference,
            note=adjustment.note,
            created_at=adjustment.created_at,
        ))
        self._session.flush()

    async def list_adjustments(
        self,
        owner_id: UUID,
        account_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[BalanceAdjustment]:
        stmt = select(BalanceAdjustmentRow).where(BalanceAdjustmentRow.owner_id == owner_id)
        if account_id:
            stmt = stmt.where(BalanceAdjustmentRow.account_id == account_id)
        if date_from:
            stmt = stmt.where(
                BalanceAdjustmentRow.created_at >= datetime.combine(date_from, datetime.min.time())
            )
        if date_to:
            stmt = stmt.where(
                BalanceAdjustmentRow.created_at <= datetime.combine(date_to, datetime.max.time())
            )
        stmt = stmt.order_by(BalanceAdjustmentRow.created_at.desc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [_adjustment_from_row(row) for row in self._session.scalars(stmt)]

    # -- Valuations ----------------------------------------------------------

    async def add_valuation(self, valuation: Valuation) -> None:
        self._session.add(ValuationRow(
            id=valuation.id,
            owner_id=valuation.owner_id,
            account_id=valuation.account_id,
            net_value=valuation.net_value,
            market_value=valuation.market_value,
            date=valuation.date,
            created_at=valuation.created_at,
        ))
        self._session.flush()

    async def list_valuations(
        self,
        account_id: UUID,
        limit: Optional[int] = None,
    ) -> list[Valuation]:
        stmt = (
            select(ValuationRow)
            .where(ValuationRow.account_id == account_id)
            .order_by(ValuationRow.date.desc(), ValuationRow.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [_valuation_from_row(row) for row in self._session.scalars(stmt)]

    # -- Budgets -------------------------------------------------------------

    async def get_budget(self, budget_id: UUID) -> Optional[Budget]:
        row = self._session.get(BudgetRow, budget_id)
        return _budget_from_row(row) if row else None

    async def find_budget(
        self,
        owner_id: UUID,
        category_id: Optional[UUID],
        month: str,
    ) -> Optional[Budget]:
        stmt = (
            select(BudgetRow)
            .where(BudgetRow.owner_id == owner_id)
            .where(BudgetRow.month == month)
            .with_for_update()
        )
        if category_id is None:
            stmt = stmt.where(BudgetRow.category_id.is_(None))
        else:
            stmt = stmt.where(BudgetRow.category_id == category_id)
        row = self._session.scalars(stmt).first()
        return _budget_from_row(row) if row else None

    async def add_budget(self, budget: Budget) -> None:
        row = BudgetRow(id=budget.id)
        _copy_budget(budget, row)
        self._session.add(row)
        self._session.flush()

    async def save_budget(self, budget: Budget) -> None:
        row = self._session.get(BudgetRow, budget.id)
        if row is None:
            raise NotFoundError(f"Budget not found: {budget.id}")
        _copy_budget(budget, row)
        self._session.flush()

    async def delete_budget(self, budget_id: UUID) -> bool:
        result = self._session.execute(
            delete(BudgetRow).where(BudgetRow.id == budget_id)
        )
        return result.rowcount > 0

    async def list_budgets(self, owner_id: UUID, month: str) -> list[Budget]:
        stmt = (
            select(BudgetRow)
            .where(BudgetRow.owner_id == owner_id)
            .where(BudgetRow.month == month)
            .order_by(BudgetRow.category_id.is_not(None), BudgetRow.created_at)
        )
        return [_budget_from_row(row) for row in self._session.scalars(stmt)]


# =============================================================================
# STORAGE
# =============================================================================

def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(settings: Optional[DatabaseSettings] = None) -> Engine:
    """
    Create an engine from database settings.

    In-memory SQLite gets a single shared connection so every session
    sees the same database.
    """
    settings = settings or get_settings().database
    kwargs = {"echo": settings.echo}
    if settings.url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if settings.url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(settings.url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


class SqlLedgerStorage(LedgerStorageInterface, AuditStorageInterface):
    """
    SQLAlchemy implementation of ledger and audit storage.

    One instance owns the engine; each `atomic()` call opens a fresh
    ORM session.
    """

    def __init__(
        self,
        engine: Union[Engine, str, None] = None,
        settings: Optional[DatabaseSettings] = None,
    ):
        self._settings = settings or get_settings().database
        if isinstance(engine, str):
            engine = build_engine(self._settings.model_copy(update={"url": engine}))
        self._engine = engine or build_engine(self._settings)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._initialized = False

    @property
    def engine(self) -> Engine:
        return self._engine

    def initialize(self) -> None:
        """
        Verify the connection and create missing tables.

        Transient connection failures are retried with exponential backoff.
        """
        if self._initialized:
            return
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self._settings.connect_retries),
                wait=wait_exponential(multiplier=1, min=2, max=10),
                retry=retry_if_exception_type(OperationalError),
                reraise=True,
            ):
                with attempt:
                    Base.metadata.create_all(self._engine)
        except OperationalError as e:
            raise ConnectionError(f"Failed to connect to database: {e}") from e
        self._initialized = True
        logger.info("ledger_storage_ready", dialect=self._engine.dialect.name)

    def dispose(self) -> None:
        self._engine.dispose()

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[LedgerSession]:
        self.initialize()
        session = self._session_factory()
        try:
            yield SqlLedgerSession(session)
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise DuplicateError(f"Constraint violated: {e.orig}") from e
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(f"Unit of work failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # -- AuditStorageInterface -----------------------------------------------

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event in its own unit of work."""
        self.initialize()
        try:
            with self._session_factory.begin() as session:
                session.add(AuditEventRow(
                    event_id=event.event_id,
                    timestamp=event.timestamp,
                    event_type=event.event_type.value,
                    severity=event.severity.value,
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    owner_id=event.owner_id,
                    correlation_id=event.correlation_id,
                    description=event.description,
                    details_json=event.details_json(),
                    error_code=event.error_code,
                    error_message=event.error_message,
                ))
            return True
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to write audit event: {e}") from e

    async def _select_events(self, stmt) -> list[AuditEvent]:
        self.initialize()
        try:
            with self._session_factory() as session:
                return [_event_from_row(row) for row in session.scalars(stmt)]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get audit events: {e}") from e

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return await self._select_events(
            select(AuditEventRow)
            .where(AuditEventRow.correlation_id == correlation_id)
            .order_by(AuditEventRow.timestamp)
        )

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        return await self._select_events(
            select(AuditEventRow)
            .where(AuditEventRow.entity_type == entity_type)
            .where(AuditEventRow.entity_id == entity_id)
            .order_by(AuditEventRow.timestamp)
        )

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return await self._select_events(
            select(AuditEventRow)
            .order_by(AuditEventRow.timestamp.desc())
            .limit(limit)
        )
