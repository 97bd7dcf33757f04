"""
Ledger flows package.

Every mutating operation of the ledger lives here, one service per
subsystem, all sharing the unit-of-work plumbing in flows/base.py.
"""

from ledger.flows.accounts import AccountService
from ledger.flows.attachments import AttachmentService
from ledger.flows.balance import BalanceAdjustmentService
from ledger.flows.base import LedgerFlow, effect_deltas, merge_deltas
from ledger.flows.budgets import BudgetService
from ledger.flows.cascade import CascadeDeleteCoordinator, CascadePlan
from ledger.flows.investments import InvestmentService
from ledger.flows.refunds import RefundService
from ledger.flows.repayments import RepaymentService
from ledger.flows.transactions import TransactionLedger

__all__ = [
    # Services
    "AccountService",
    "AttachmentService",
    "BalanceAdjustmentService",
    "BudgetService",
    "CascadeDeleteCoordinator",
    "InvestmentService",
    "RefundService",
    "RepaymentService",
    "TransactionLedger",
    # Plumbing
    "CascadePlan",
    "LedgerFlow",
    "effect_deltas",
    "merge_deltas",
]
