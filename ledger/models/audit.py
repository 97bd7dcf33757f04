"""
Audit Models for Family Ledger

Every ledger mutation and every rejected operation is logged for audit purposes.
This provides:
1. Complete traceability of all balance movements
2. Debugging information when things go wrong
3. Accountability across family members sharing a ledger
4. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every ledger entry point has its own event type.
    """
    # Accounts
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"
    BALANCE_ADJUSTED = "balance_adjusted"

    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"

    # Refunds
    REFUND_CREATED = "refund_created"
    REFUND_UPDATED = "refund_updated"
    REFUND_DELETED = "refund_deleted"

    # Repayments
    REPAYMENT_CREATED = "repayment_created"
    REPAYMENT_DELETED = "repayment_deleted"

    # Investments
    SHARES_BOUGHT = "shares_bought"
    SHARES_SOLD = "shares_sold"
    NET_VALUE_UPDATED = "net_value_updated"

    # Budgets
    BUDGET_SET = "budget_set"
    BUDGET_DELETED = "budget_deleted"

    # Cascade delete
    CASCADE_DELETE_COMPLETED = "cascade_delete_completed"

    # Attachments
    ATTACHMENT_REGISTERED = "attachment_registered"
    ATTACHMENTS_LINKED = "attachments_linked"
    ATTACHMENT_DELETED = "attachment_deleted"
    STORED_FILE_DELETE_FAILED = "stored_file_delete_failed"

    # Rejections and system events
    OPERATION_REJECTED = "operation_rejected"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _jsonable(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    return value


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every ledger mutation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about, and whose is it?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'transaction', 'attachment')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    owner_id: Optional[UUID] = Field(
        default=None,
        description="User whose ledger the event touched"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one cascade delete)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "owner_id": str(self.owner_id) if self.owner_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": _jsonable(self.details),
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def details_json(self) -> str:
        """Details serialized for a single text column."""
        return json.dumps(_jsonable(self.details)) if self.details else ""


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(tx, correlation_id)
        event = AuditEventBuilder.operation_rejected("create_refund", error, owner_id)
    """

    @staticmethod
    def account_event(
        event_type: AuditEventType,
        account_id: UUID,
        owner_id: UUID,
        description: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type="account",
            entity_id=account_id,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=description,
            details=details or {},
        )

    @staticmethod
    def transaction_event(
        event_type: AuditEventType,
        transaction_id: UUID,
        owner_id: UUID,
        transaction_type: str,
        amount: Decimal,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = event_type.value.rsplit("_", 1)[-1]
        return AuditEvent(
            event_type=event_type,
            entity_type="transaction",
            entity_id=transaction_id,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"{transaction_type.capitalize()} {verb}: {amount}",
            details={"transaction_type": transaction_type, "amount": amount, **(details or {})},
        )

    @staticmethod
    def budget_event(
        event_type: AuditEventType,
        budget_id: UUID,
        owner_id: UUID,
        month: str,
        amount: Decimal,
        category_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        scope = "overall" if category_id is None else "category"
        verb = "set" if event_type == AuditEventType.BUDGET_SET else "deleted"
        return AuditEvent(
            event_type=event_type,
            entity_type="budget",
            entity_id=budget_id,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"Budget {verb} for {month} ({scope}): {amount}",
            details={"month": month, "amount": amount, "category_id": category_id},
        )

    @staticmethod
    def cascade_delete_completed(
        transaction_id: UUID,
        owner_id: UUID,
        deleted_transaction_ids: list[UUID],
        deleted_attachment_ids: list[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CASCADE_DELETE_COMPLETED,
            entity_type="transaction",
            entity_id=transaction_id,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=(
                f"Deleted {len(deleted_transaction_ids)} transactions and "
                f"{len(deleted_attachment_ids)} attachments"
            ),
            details={
                "deleted_transaction_ids": deleted_transaction_ids,
                "deleted_attachment_ids": deleted_attachment_ids,
            },
        )

    @staticmethod
    def attachments_linked(
        transaction_id: UUID,
        owner_id: UUID,
        attachment_ids: list[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ATTACHMENTS_LINKED,
            entity_type="transaction",
            entity_id=transaction_id,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"Linked {len(attachment_ids)} attachments",
            details={"attachment_ids": attachment_ids},
        )

    @staticmethod
    def attachment_event(
        event_type: AuditEventType,
        attachment_id: UUID,
        owner_id: UUID,
        description: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type="attachment",
            entity_id=attachment_id,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=description,
        )

    @staticmethod
    def stored_file_delete_failed(
        storage_path: str,
        error_message: str,
        owner_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORED_FILE_DELETE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="file",
            owner_id=owner_id,
            correlation_id=correlation_id,
            description="Stored file could not be deleted",
            error_message=error_message,
            details={"storage_path": storage_path},
        )

    @staticmethod
    def balance_adjusted(
        adjustment_id: UUID,
        account_id: UUID,
        owner_id: UUID,
        previous_balance: Decimal,
        new_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_ADJUSTED,
            entity_type="account",
            entity_id=account_id,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"Balance adjusted: {previous_balance} -> {new_balance}",
            details={
                "adjustment_id": adjustment_id,
                "previous_balance": previous_balance,
                "new_balance": new_balance,
            },
        )

    @staticmethod
    def operation_rejected(
        operation: str,
        error_code: str,
        error_message: str,
        owner_id: Optional[UUID] = None,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_REJECTED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"Operation rejected: {operation}",
            error_code=error_code,
            error_message=error_message,
            details={"operation": operation, **(details or {})},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
