"""
Audit Logger

DESIGN DECISION: Every ledger mutation and every rejection is logged.
This provides:
1. Complete traceability of balance movements
2. Debugging capability
3. Family members can see who changed what
4. Compliance readiness

The audit logger:
- Is async to fit the ledger's call style
- Gracefully handles failures (a failed audit write never fails a ledger operation)
- Supports correlation IDs to trace related events
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledger.errors import LedgerError
from ledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from ledger.models.ledger import Budget, TransactionBase
from ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_account(
        self,
        event_type: AuditEventType,
        account_id: UUID,
        owner_id: UUID,
        description: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an account lifecycle event."""
        event = AuditEventBuilder.account_event(
            event_type=event_type,
            account_id=account_id,
            owner_id=owner_id,
            description=description,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction(
        self,
        event_type: AuditEventType,
        transaction: TransactionBase,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a transaction, refund or repayment change."""
        event = AuditEventBuilder.transaction_event(
            event_type=event_type,
            transaction_id=transaction.id,
            owner_id=transaction.owner_id,
            transaction_type=transaction.type.value,
            amount=transaction.amount,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_budget(
        self,
        event_type: AuditEventType,
        budget: Budget,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.budget_event(
            event_type=event_type,
            budget_id=budget.id,
            owner_id=budget.owner_id,
            month=budget.month,
            amount=budget.amount,
            category_id=budget.category_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_cascade_delete(
        self,
        transaction_id: UUID,
        owner_id: UUID,
        deleted_transaction_ids: list[UUID],
        deleted_attachment_ids: list[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log the outcome of one cascade delete."""
        event = AuditEventBuilder.cascade_delete_completed(
            transaction_id=transaction_id,
            owner_id=owner_id,
            deleted_transaction_ids=deleted_transaction_ids,
            deleted_attachment_ids=deleted_attachment_ids,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_attachment(
        self,
        event_type: AuditEventType,
        attachment_id: UUID,
        owner_id: UUID,
        description: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an attachment registration or deletion."""
        event = AuditEventBuilder.attachment_event(
            event_type=event_type,
            attachment_id=attachment_id,
            owner_id=owner_id,
            description=description,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_attachments_linked(
        self,
        transaction_id: UUID,
        owner_id: UUID,
        attachment_ids: list[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.attachments_linked(
            transaction_id=transaction_id,
            owner_id=owner_id,
            attachment_ids=attachment_ids,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_file_delete_failed(
        self,
        storage_path: str,
        error_message: str,
        owner_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a stored file that outlived its metadata."""
        event = AuditEventBuilder.stored_file_delete_failed(
            storage_path=storage_path,
            error_message=error_message,
            owner_id=owner_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_balance_adjusted(
        self,
        adjustment_id: UUID,
        account_id: UUID,
        owner_id: UUID,
        previous_balance: Decimal,
        new_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.balance_adjusted(
            adjustment_id=adjustment_id,
            account_id=account_id,
            owner_id=owner_id,
            previous_balance=previous_balance,
            new_balance=new_balance,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_rejection(
        self,
        operation: str,
        error: LedgerError,
        owner_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a business-rule rejection."""
        event = AuditEventBuilder.operation_rejected(
            operation=operation,
            error_code=error.code.value,
            error_message=error.message,
            owner_id=owner_id,
            details=error.details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., deleting an expense).
    Pass it through all subsequent operations.
    """
    return uuid4()
