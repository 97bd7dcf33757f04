"""
Business-Rule Errors

Every rejection the ledger makes is a LedgerError carrying one ErrorCode.
Rejections are raised BEFORE any mutation, so a caught LedgerError always
means the store is exactly as it was.

Infrastructure failures (lost connection, constraint violations) are NOT
LedgerErrors - they surface as StorageError from the storage package.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Rejection codes reported to callers."""
    # Amounts
    INVALID_AMOUNT = "INVALID_AMOUNT"
    REFUND_AMOUNT_INVALID = "REFUND_AMOUNT_INVALID"

    # Caps
    REFUND_AMOUNT_EXCEEDED = "REFUND_AMOUNT_EXCEEDED"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    REFUND_ALREADY_FULL = "REFUND_ALREADY_FULL"
    INSUFFICIENT_SHARES = "INSUFFICIENT_SHARES"

    # Types
    REFUND_INVALID_TYPE = "REFUND_INVALID_TYPE"
    INVALID_ACCOUNT_TYPE = "INVALID_ACCOUNT_TYPE"
    INVALID_SOURCE_ACCOUNT = "INVALID_SOURCE_ACCOUNT"
    INVALID_CREDIT_ACCOUNT = "INVALID_CREDIT_ACCOUNT"
    UNSUPPORTED_TRANSACTION_TYPE = "UNSUPPORTED_TRANSACTION_TYPE"
    TRADE_NOT_EDITABLE = "TRADE_NOT_EDITABLE"

    # Ownership / existence
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"

    # Associations
    ALREADY_LINKED = "ALREADY_LINKED"
    ACCOUNT_HAS_TRANSACTIONS = "ACCOUNT_HAS_TRANSACTIONS"

    # Quick balance / attachments / budgets
    BALANCE_UNCHANGED = "BALANCE_UNCHANGED"
    INVALID_FILE = "INVALID_FILE"
    INVALID_MONTH = "INVALID_MONTH"


class LedgerError(Exception):
    """A business-rule rejection."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        return f"LedgerError({self.code.value}, {self.message!r})"

    def to_dict(self) -> dict:
        """Serializable form for API layers and audit events."""
        return {
            "code": self.code.value,
            "message": self.message,
            "details": {k: str(v) for k, v in self.details.items()},
        }


def not_found(entity: str, entity_id: Any) -> LedgerError:
    return LedgerError(
        ErrorCode.NOT_FOUND,
        f"{entity} not found: {entity_id}",
        {"entity": entity, "id": entity_id},
    )


def forbidden(entity: str, entity_id: Any) -> LedgerError:
    return LedgerError(
        ErrorCode.FORBIDDEN,
        f"{entity} {entity_id} belongs to another user",
        {"entity": entity, "id": entity_id},
    )
