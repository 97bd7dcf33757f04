"""
Account Store

Accounts are created and renamed here, but their balances are NEVER set
here. Balances move only through ledger operations (and the explicit
quick-balance correction in flows/balance.py).

Credit accounts start with a zero balance: their balance is derived from
the ledger as an overpayment credit, so an opening balance has no meaning.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from ledger.audit import create_correlation_id
from ledger.errors import ErrorCode, LedgerError
from ledger.flows.base import LedgerFlow
from ledger.models.audit import AuditEventType
from ledger.models.ledger import ZERO, Account, AccountType, to_money
from ledger.validation import ensure_owned


CREDIT_FIELDS = ("credit_limit", "billing_day", "due_day")


class AccountService(LedgerFlow):
    """Create, read, rename and delete accounts."""

    async def create_account(
        self,
        user_id: UUID,
        name: str,
        type: AccountType,
        initial_balance: Decimal = ZERO,
        icon: Optional[str] = None,
        credit_limit: Optional[Decimal] = None,
        billing_day: Optional[int] = None,
        due_day: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        """
        Create an account.

        Credit fields are required for credit accounts and dropped for
        every other type.

        Raises:
            pydantic.ValidationError: Missing credit fields, days out of 1..28
        """
        type = AccountType(type)
        if type == AccountType.CREDIT:
            account = Account(
                owner_id=user_id,
                name=name,
                type=type,
                balance=ZERO,
                icon=icon,
                credit_limit=credit_limit,
                billing_day=billing_day,
                due_day=due_day,
            )
        else:
            account = Account(
                owner_id=user_id,
                name=name,
                type=type,
                balance=to_money(initial_balance),
                icon=icon,
            )

        async with self._storage.atomic() as session:
            await session.add_account(account)

        await self._audit.log_account(
            AuditEventType.ACCOUNT_CREATED,
            account.id,
            user_id,
            f"Account created: {account.name} ({account.type.value})",
            details={"balance": account.balance},
            correlation_id=correlation_id or create_correlation_id(),
        )
        return account

    async def get_account(self, account_id: UUID, user_id: UUID) -> Account:
        async with self._rejections("get_account", user_id):
            async with self._storage.atomic() as session:
                return ensure_owned(
                    await session.get_account(account_id), "Account", account_id, user_id
                )

    async def list_accounts(
        self,
        user_id: UUID,
        type: Optional[AccountType] = None,
    ) -> list[Account]:
        async with self._storage.atomic() as session:
            return await session.list_accounts(user_id, AccountType(type) if type else None)

    async def update_account(
        self,
        account_id: UUID,
        user_id: UUID,
        name: Optional[str] = None,
        icon: Optional[str] = None,
        credit_limit: Optional[Decimal] = None,
        billing_day: Optional[int] = None,
        due_day: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        """
        Rename an account or change its credit terms.

        Never touches the balance.
        """
        changes = {
            "name": name,
            "icon": icon,
            "credit_limit": credit_limit,
            "billing_day": billing_day,
            "due_day": due_day,
        }
        changes = {k: v for k, v in changes.items() if v is not None}

        async with self._rejections("update_account", user_id, correlation_id):
            async with self._storage.atomic() as session:
                account = ensure_owned(
                    await session.get_account(account_id, for_update=True),
                    "Account", account_id, user_id,
                )
                if not account.is_credit and any(f in changes for f in CREDIT_FIELDS):
                    raise LedgerError(
                        ErrorCode.INVALID_ACCOUNT_TYPE,
                        "Only credit accounts have a credit limit, billing day and due day",
                        {"account_id": account_id, "account_type": account.type.value},
                    )
                if not changes:
                    return account
                updated = Account.model_validate({**account.model_dump(), **changes})
                await session.save_account(updated)

        await self._audit.log_account(
            AuditEventType.ACCOUNT_UPDATED,
            account_id,
            user_id,
            f"Account updated: {updated.name}",
            details={"fields": sorted(changes)},
            correlation_id=correlation_id,
        )
        return updated

    async def delete_account(
        self,
        account_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Delete an account nothing references any more.

        Raises:
            LedgerError(ACCOUNT_HAS_TRANSACTIONS): Transactions still name the account
        """
        async with self._rejections("delete_account", user_id, correlation_id):
            async with self._storage.atomic() as session:
                account = ensure_owned(
                    await session.get_account(account_id, for_update=True),
                    "Account", account_id, user_id,
                )
                references = await session.count_account_references(account_id)
                if references:
                    raise LedgerError(
                        ErrorCode.ACCOUNT_HAS_TRANSACTIONS,
                        f"Account still has {references} transactions; "
                        "move or delete them first",
                        {"account_id": account_id, "transaction_count": references},
                    )
                await session.delete_account(account_id)

        await self._audit.log_account(
            AuditEventType.ACCOUNT_DELETED,
            account_id,
            user_id,
            f"Account deleted: {account.name}",
            correlation_id=correlation_id,
        )
        return True
