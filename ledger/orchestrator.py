"""
Main Orchestrator for Family Ledger

This module ties together all the components behind one facade, the
in-process boundary the ledger exposes to its callers:
1. The UI/API layer (accounts, transactions, refunds, repayments, attachments,
   investments, budgets)
2. External schedulers (create_expense / create_transfer, exactly like a user)
3. Reporting (read-only statistics and credit views)

DESIGN DECISION: The orchestrator owns the wiring, never the rules.
- One AuditLogger shared by every service, so a caller's correlation id
  ties together everything one action did
- One validator and one cascade coordinator shared by the ledger, refund
  and repayment services, so every delete path cascades the same way
- The file-storage port is handed only to the services that delete files

Business rules live in flows/; this is the "glue".
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from ledger.audit import AuditLogger
from ledger.config import Settings, get_settings
from ledger.flows import (
    AccountService,
    AttachmentService,
    BalanceAdjustmentService,
    BudgetService,
    CascadeDeleteCoordinator,
    InvestmentService,
    RefundService,
    RepaymentService,
    TransactionLedger,
)
from ledger.queries import StatisticsExecutor
from ledger.reconciliation import CreditService
from ledger.services.files import FileStorageInterface, LocalFileStorage
from ledger.services.storage import SqlLedgerStorage
from ledger.validation import TransactionValidator


logger = structlog.get_logger(__name__)


@dataclass
class Ledger:
    """Every ledger service, wired to one store."""

    storage: SqlLedgerStorage
    audit: AuditLogger
    accounts: AccountService
    transactions: TransactionLedger
    refunds: RefundService
    repayments: RepaymentService
    cascade: CascadeDeleteCoordinator
    attachments: AttachmentService
    balance: BalanceAdjustmentService
    investments: InvestmentService
    budgets: BudgetService
    credit: CreditService
    statistics: StatisticsExecutor

    def close(self) -> None:
        self.storage.dispose()


def create_app_components(
    settings: Optional[Settings] = None,
    storage: Optional[SqlLedgerStorage] = None,
    file_storage: Optional[FileStorageInterface] = None,
    persist_audit: bool = True,
) -> Ledger:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to build from (defaults to get_settings())
        storage: An existing store, e.g. an in-memory one for tests
        file_storage: Where attachment files are deleted from
                      (defaults to the local upload directory)
        persist_audit: Also write audit events to the store's audit table.
                       Set to False to keep audit events in the local log only.

    Returns:
        The wired Ledger facade
    """
    settings = settings or get_settings()
    app_settings = settings.app
    attachment_settings = settings.attachments

    storage = storage or SqlLedgerStorage(settings=settings.database)
    storage.initialize()
    file_storage = file_storage or LocalFileStorage(settings=attachment_settings)

    audit = AuditLogger(storage if persist_audit else None)
    validator = TransactionValidator(app_settings, attachment_settings)
    cascade = CascadeDeleteCoordinator(
        storage, file_storage=file_storage, audit_logger=audit, validator=validator
    )

    ledger = Ledger(
        storage=storage,
        audit=audit,
        accounts=AccountService(storage, audit_logger=audit, validator=validator),
        transactions=TransactionLedger(
            storage, cascade=cascade, audit_logger=audit,
            validator=validator, settings=app_settings,
        ),
        refunds=RefundService(
            storage, cascade=cascade, audit_logger=audit, validator=validator
        ),
        repayments=RepaymentService(
            storage, cascade=cascade, audit_logger=audit, validator=validator
        ),
        cascade=cascade,
        attachments=AttachmentService(
            storage, file_storage=file_storage, audit_logger=audit,
            validator=validator, settings=attachment_settings,
        ),
        balance=BalanceAdjustmentService(
            storage, audit_logger=audit, validator=validator, settings=app_settings
        ),
        investments=InvestmentService(storage, audit_logger=audit, validator=validator),
        budgets=BudgetService(storage, audit_logger=audit, validator=validator),
        credit=CreditService(storage, settings=app_settings),
        statistics=StatisticsExecutor(storage),
    )
    logger.info(
        "ledger_components_ready",
        environment=app_settings.app_environment,
        persist_audit=persist_audit,
    )
    return ledger
