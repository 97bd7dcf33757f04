"""Validation package."""

from ledger.validation.validator import TransactionValidator, ensure_owned

__all__ = ["TransactionValidator", "ensure_owned"]
