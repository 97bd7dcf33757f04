"""
Investment Holdings

An investment account holds shares valued at a net value. Buying and
selling change the holding; naming an account to pay from (buy) or to
receive the proceeds (sell) also records the money movement as a
transfer-type trade entry, so investment accounts still only ever take
part in transfers.

Balance rule: every change in the holding's market value is added to the
investment account's balance.

    buy   shares += bought      cost price = weighted average
    sell  shares -= sold        realized profit = sold * (price - cost)
                                cost price resets to 0 when nothing is left
    revalue                     net value = new net value

An account that has only ever been traded and revalued therefore carries
balance = shares * net value. Money transferred in and not invested stays
on top of it. Each buy, sell and revaluation appends a Valuation record.

Locks: the investment account and the paying or receiving account are
row-locked together, in the same fixed order as every other flow, before
the holding is read.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from ledger.audit import create_correlation_id
from ledger.flows.base import LedgerFlow, effect_deltas, lock_accounts, post_deltas
from ledger.models.audit import AuditEventType
from ledger.models.ledger import (
    ZERO,
    Account,
    AccountType,
    InvestmentHolding,
    InvestmentSummary,
    TradeResult,
    TradeSide,
    Transfer,
    Valuation,
    to_money,
)
from ledger.reconciliation import (
    build_holding,
    realized_profit,
    summarize_holdings,
    weighted_cost_price,
)
from ledger.services.storage import LedgerSession
from ledger.validation import ensure_owned


VALUATION_HISTORY_LIMIT = 30


async def revalue(session: LedgerSession, account: Account, value_before: Decimal, on: date) -> Valuation:
    """Carry the holding's market value change into the balance and record it."""
    account.balance = to_money(account.balance + account.market_value - value_before)
    await session.save_account(account)
    valuation = Valuation(
        owner_id=account.owner_id,
        account_id=account.id,
        net_value=account.net_value or ZERO,
        market_value=account.market_value,
        date=on,
    )
    await session.add_valuation(valuation)
    return valuation


class InvestmentService(LedgerFlow):
    """Opens investment accounts, trades shares and records net values."""

    async def create_investment_account(
        self,
        user_id: UUID,
        name: str,
        shares: Decimal = ZERO,
        cost_price: Decimal = ZERO,
        net_value: Decimal = ZERO,
        icon: Optional[str] = None,
        date: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> InvestmentHolding:
        """
        Open an investment account with an existing holding.

        The opening balance is the holding's market value, and the opening
        net value is the first entry of its valuation history.

        Raises:
            pydantic.ValidationError: Negative shares, cost price or net value
        """
        account = Account(
            owner_id=user_id,
            name=name,
            type=AccountType.INVESTMENT,
            icon=icon,
            shares=shares,
            cost_price=cost_price,
            net_value=net_value,
        )
        account.balance = account.market_value

        async with self._storage.atomic() as session:
            await session.add_account(account)
            await session.add_valuation(Valuation(
                owner_id=user_id,
                account_id=account.id,
                net_value=account.net_value,
                market_value=account.market_value,
                date=date or datetime.utcnow().date(),
            ))

        await self._audit.log_account(
            AuditEventType.ACCOUNT_CREATED,
            account.id,
            user_id,
            f"Investment account created: {account.name}",
            details={"shares": account.shares, "cost_price": account.cost_price, "balance": account.balance},
            correlation_id=correlation_id or create_correlation_id(),
        )
        return build_holding(account)

    # =========================================================================
    # TRADES
    # =========================================================================

    async def buy_shares(
        self,
        user_id: UUID,
        account_id: UUID,
        shares: Decimal,
        price: Decimal,
        date: Optional[date] = None,
        source_account_id: Optional[UUID] = None,
        note: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> TradeResult:
        """
        Buy shares at a price, optionally paid from another account.

        Raises:
            LedgerError(INVALID_AMOUNT): shares or price <= 0
            LedgerError(NOT_FOUND / FORBIDDEN): account missing or someone else's
            LedgerError(INVALID_ACCOUNT_TYPE): not an investment account, or
                paid from an investment or credit account
        """
        return await self._trade(
            TradeSide.BUY, user_id, account_id, shares, price, date,
            source_account_id, note, correlation_id,
        )

    async def sell_shares(
        self,
        user_id: UUID,
        account_id: UUID,
        shares: Decimal,
        price: Decimal,
        date: Optional[date] = None,
        target_account_id: Optional[UUID] = None,
        note: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> TradeResult:
        """
        Sell held shares at a price, optionally paying the proceeds out.

        Raises:
            LedgerError(INSUFFICIENT_SHARES): more shares than are held
            LedgerError(INVALID_AMOUNT / NOT_FOUND / FORBIDDEN /
                INVALID_ACCOUNT_TYPE): as for buy_shares
        """
        return await self._trade(
            TradeSide.SELL, user_id, account_id, shares, price, date,
            target_account_id, note, correlation_id,
        )

    async def _trade(
        self,
        side: TradeSide,
        user_id: UUID,
        account_id: UUID,
        shares: Decimal,
        price: Decimal,
        date: Optional[date],
        counterpart_id: Optional[UUID],
        note: Optional[str],
        correlation_id: Optional[UUID],
    ) -> TradeResult:
        correlation_id = correlation_id or create_correlation_id()
        operation = f"{side.value}_shares"

        async with self._rejections(operation, user_id, correlation_id):
            shares = self._validator.check_units(shares, "shares")
            price = self._validator.check_units(price, "price")
            trade_amount = self._validator.check_amount(shares * price)
            trade_date = date or datetime.utcnow().date()

            async with self._storage.atomic() as session:
                account_ids = [account_id] if counterpart_id is None else [account_id, counterpart_id]
                accounts = await lock_accounts(session, account_ids, user_id)
                account = self._validator.check_investment_account(accounts[account_id])
                if side == TradeSide.SELL:
                    self._validator.check_shares_held(account, shares)
                if counterpart_id is not None:
                    self._validator.check_trade_counterpart(accounts[counterpart_id])

                transfer = None
                if counterpart_id is not None:
                    source, target = (
                        (counterpart_id, account_id) if side == TradeSide.BUY
                        else (account_id, counterpart_id)
                    )
                    transfer = Transfer(
                        owner_id=user_id,
                        amount=trade_amount,
                        account_id=source,
                        target_account_id=target,
                        trade_side=side,
                        shares=shares,
                        price=price,
                        date=trade_date,
                        note=note if note is not None else f"{side.value.capitalize()} {shares} @ {price}",
                    )
                    await session.add_transaction(transfer)
                    await post_deltas(session, accounts, effect_deltas(transfer))

                held = account.shares or ZERO
                cost_price = account.cost_price or ZERO
                value_before = account.market_value
                profit = None
                if side == TradeSide.BUY:
                    account.cost_price = weighted_cost_price(held, cost_price, shares, price)
                    account.shares = held + shares
                else:
                    profit = realized_profit(shares, price, cost_price)
                    account.shares = held - shares
                    if account.shares == 0:
                        account.cost_price = ZERO
                if not account.net_value:
                    account.net_value = price
                valuation = await revalue(session, account, value_before, trade_date)

        await self._audit.log_account(
            AuditEventType.SHARES_BOUGHT if side == TradeSide.BUY else AuditEventType.SHARES_SOLD,
            account_id,
            user_id,
            f"{side.value.capitalize()} {shares} shares at {price}",
            details={
                "shares": shares,
                "price": price,
                "trade_amount": trade_amount,
                "realized_profit": profit,
                "transfer_id": transfer.id if transfer else None,
            },
            correlation_id=correlation_id,
        )
        if transfer is not None:
            await self._audit.log_transaction(
                AuditEventType.TRANSACTION_CREATED, transfer, correlation_id=correlation_id
            )
        return TradeResult(
            side=side,
            holding=build_holding(account),
            trade_amount=trade_amount,
            transfer=transfer,
            realized_profit=profit,
            valuation=valuation,
        )

    # =========================================================================
    # NET VALUES
    # =========================================================================

    async def update_net_value(
        self,
        user_id: UUID,
        account_id: UUID,
        net_value: Decimal,
        date: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> InvestmentHolding:
        """Record today's (or `date`'s) net value and revalue the holding."""
        holdings = await self.update_net_values(
            user_id, [(account_id, net_value)], date=date, correlation_id=correlation_id
        )
        return holdings[0]

    async def update_net_values(
        self,
        user_id: UUID,
        updates: Iterable[tuple[UUID, Decimal]],
        date: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[InvestmentHolding]:
        """
        Revalue several accounts in one unit of work.

        Either every account is revalued or, if any value or account is
        rejected, none is.

        Raises:
            LedgerError(INVALID_AMOUNT): a net value <= 0
            LedgerError(NOT_FOUND / FORBIDDEN / INVALID_ACCOUNT_TYPE): a bad account
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._rejections("update_net_value", user_id, correlation_id):
            net_values = {
                account_id: self._validator.check_units(value, "net_value")
                for account_id, value in updates
            }
            on = date or datetime.utcnow().date()

            async with self._storage.atomic() as session:
                accounts = await lock_accounts(session, net_values, user_id)
                for account in accounts.values():
                    self._validator.check_investment_account(account)
                for account_id, net_value in net_values.items():
                    account = accounts[account_id]
                    value_before = account.market_value
                    account.net_value = net_value
                    await revalue(session, account, value_before, on)

        for account_id, net_value in net_values.items():
            await self._audit.log_account(
                AuditEventType.NET_VALUE_UPDATED,
                account_id,
                user_id,
                f"Net value updated: {net_value}",
                details={"net_value": net_value, "balance": accounts[account_id].balance},
                correlation_id=correlation_id,
            )
        return [build_holding(accounts[account_id]) for account_id in net_values]

    # =========================================================================
    # READ
    # =========================================================================

    async def get_holding(self, account_id: UUID, user_id: UUID) -> InvestmentHolding:
        async with self._rejections("get_holding", user_id):
            async with self._storage.atomic() as session:
                account = ensure_owned(
                    await session.get_account(account_id), "Account", account_id, user_id
                )
                return build_holding(self._validator.check_investment_account(account))

    async def get_valuation_history(
        self,
        account_id: UUID,
        user_id: UUID,
        limit: Optional[int] = VALUATION_HISTORY_LIMIT,
    ) -> list[Valuation]:
        """Most recent valuations first."""
        async with self._rejections("get_valuation_history", user_id):
            async with self._storage.atomic() as session:
                account = ensure_owned(
                    await session.get_account(account_id), "Account", account_id, user_id
                )
                self._validator.check_investment_account(account)
                return await session.list_valuations(account_id, limit=limit)

    async def get_investment_summary(self, user_id: UUID) -> InvestmentSummary:
        """Cost, value and profit over all of a user's investment accounts."""
        async with self._storage.atomic() as session:
            accounts = await session.list_accounts(user_id, AccountType.INVESTMENT)
        return summarize_holdings(accounts)
