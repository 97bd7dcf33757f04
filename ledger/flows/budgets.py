"""
Monthly Budgets

A budget caps one month's gross expenses, either for one category or,
without a category, for the month as a whole. There is at most one
budget per (owner, category, month); setting it again replaces the
amount.

Status is computed on read from the expenses of that month:

    percentage = spent / amount * 100
    >= 100  EXCEEDED
    >= 80   WARNING
    else    NORMAL

Refunds are not netted against spending here.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from ledger.audit import create_correlation_id
from ledger.flows.base import LedgerFlow
from ledger.models.audit import AuditEventType
from ledger.models.ledger import (
    ZERO,
    Budget,
    BudgetState,
    BudgetStatus,
    TransactionType,
    to_money,
)
from ledger.queries import month_bounds
from ledger.validation import ensure_owned


WARNING_PERCENTAGE = Decimal("80")
EXCEEDED_PERCENTAGE = Decimal("100")


def budget_state(percentage: Decimal) -> BudgetState:
    if percentage >= EXCEEDED_PERCENTAGE:
        return BudgetState.EXCEEDED
    if percentage >= WARNING_PERCENTAGE:
        return BudgetState.WARNING
    return BudgetState.NORMAL


class BudgetService(LedgerFlow):
    """Set, list and check monthly budgets."""

    async def set_budget(
        self,
        user_id: UUID,
        month: str,
        amount: Decimal,
        category_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        """
        Create the budget for a month and category, or replace its amount.

        Raises:
            LedgerError(INVALID_MONTH): month not written YYYY-MM
            LedgerError(INVALID_AMOUNT): amount <= 0
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._rejections("set_budget", user_id, correlation_id):
            month = self._validator.check_month(month)
            amount = self._validator.check_amount(amount)

            async with self._storage.atomic() as session:
                budget = await session.find_budget(user_id, category_id, month)
                if budget is None:
                    budget = Budget(owner_id=user_id, category_id=category_id, month=month, amount=amount)
                    await session.add_budget(budget)
                else:
                    budget.amount = amount
                    budget.updated_at = datetime.utcnow()
                    await session.save_budget(budget)

        await self._audit.log_budget(AuditEventType.BUDGET_SET, budget, correlation_id=correlation_id)
        return budget

    async def delete_budget(
        self,
        budget_id: UUID,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        correlation_id = correlation_id or create_correlation_id()

        async with self._rejections("delete_budget", user_id, correlation_id):
            async with self._storage.atomic() as session:
                budget = ensure_owned(await session.get_budget(budget_id), "Budget", budget_id, user_id)
                await session.delete_budget(budget_id)

        await self._audit.log_budget(AuditEventType.BUDGET_DELETED, budget, correlation_id=correlation_id)

    async def list_budgets(self, user_id: UUID, month: str) -> list[Budget]:
        async with self._rejections("list_budgets", user_id):
            month = self._validator.check_month(month)
        async with self._storage.atomic() as session:
            return await session.list_budgets(user_id, month)

    async def get_budget_status(self, user_id: UUID, month: str) -> list[BudgetStatus]:
        """Spending against every budget of the month, the overall budget first."""
        async with self._rejections("get_budget_status", user_id):
            month = self._validator.check_month(month)
        year, month_number = (int(part) for part in month.split("-"))
        date_from, date_to = month_bounds(year, month_number)

        async with self._storage.atomic() as session:
            budgets = await session.list_budgets(user_id, month)
            if not budgets:
                return []
            by_category = await session.sum_by_category(
                user_id, TransactionType.EXPENSE, date_from, date_to
            )

        total_spent = sum((total for total, _ in by_category.values()), ZERO)
        statuses = []
        for budget in budgets:
            if budget.category_id is None:
                spent = total_spent
            else:
                spent = by_category.get(budget.category_id, (ZERO, 0))[0]
            spent = to_money(spent)
            percentage = (spent / budget.amount * 100).quantize(Decimal("0.01"))
            statuses.append(BudgetStatus(
                budget_id=budget.id,
                category_id=budget.category_id,
                month=budget.month,
                budget_amount=budget.amount,
                spent_amount=spent,
                remaining_amount=to_money(budget.amount - spent),
                percentage=float(percentage),
                state=budget_state(percentage),
            ))
        return statuses

    async def check_warnings(self, user_id: UUID, month: str) -> list[BudgetStatus]:
        """Budgets of the month at or past the warning line."""
        statuses = await self.get_budget_status(user_id, month)
        return [s for s in statuses if s.state != BudgetState.NORMAL]
