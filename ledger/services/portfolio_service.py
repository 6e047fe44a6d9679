"""Portfolio service - the ledger operations exposed to the presentation layer."""

import asyncio
import functools
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pandas as pd

from ledger.db.base import PortfolioStore
from ledger.domain.errors import LedgerError, StoreWriteFailed
from ledger.domain.models import (
    DEFAULT_CATEGORY,
    DEFAULT_STARTING_CASH,
    AccountState,
    HistoryPoint,
    LeaderboardEntry,
    OrderRequest,
    OrderStatus,
    OrderTicket,
    PortfolioSummary,
    PriceRefresh,
    Trade,
    utc_now,
)
from ledger.services.aggregator import (
    apply_quotes,
    compute_summary,
    history_frame,
    reconstruct_history,
    refresh_market_prices,
)
from ledger.services.order_processor import apply_order

logger = logging.getLogger(__name__)

CATEGORY_ALIASES = {"Students": "Student"}
FLAT_HISTORY_DAYS = 30


def normalize_category(category: Optional[str]) -> Optional[str]:
    """Map UI category names to stored values; None/ALL means no filter."""
    if not category or category.strip().upper() == "ALL":
        return None
    category = category.strip()
    return CATEGORY_ALIASES.get(category, category)


class PortfolioService:
    """
    Paper-trading operations over one store and one quote source.

    Every operation takes an explicit account id. Order placement,
    price refresh and reset are serialized per account; store calls are
    blocking and run in the default executor.

    An order moves through an explicit pending -> confirmed transition:
    while its write is in flight the optimistic result is visible through
    ``current_view``; if the write fails the pending state is discarded, the
    last confirmed state is restored and ``StoreWriteFailed`` is raised.
    """

    def __init__(
        self,
        store: PortfolioStore,
        quote_source=None,
        starting_cash: float = DEFAULT_STARTING_CASH,
    ):
        if starting_cash <= 0:
            raise ValueError("starting_cash must be > 0")
        self.store = store
        self.quote_source = quote_source
        self.starting_cash = starting_cash
        self._locks: Dict[str, asyncio.Lock] = {}
        self._confirmed: Dict[str, AccountState] = {}
        self._pending: Dict[str, AccountState] = {}
        self._tickets: Dict[str, OrderTicket] = {}

    def _lock(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    async def _run(self, fn, *args):
        """Run a blocking store call in the default executor."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    async def _load(self, account_id: str) -> AccountState:
        state = await self._run(self.store.load_account, account_id)
        self._confirmed[account_id] = state
        return state

    # ==================== Accounts ====================

    async def open_account(self, account_id: str, category: str = DEFAULT_CATEGORY) -> AccountState:
        """
        Create a paper-trading account funded with the starting balance.

        Opening an existing account returns it unchanged.
        """
        account_id = account_id.strip()
        if not account_id:
            raise ValueError("account_id is required")
        category = normalize_category(category) or DEFAULT_CATEGORY

        async with self._lock(account_id):
            state = await self._run(
                self.store.create_account,
                account_id,
                self.starting_cash,
                category,
                utc_now(),
            )
        self._confirmed[account_id] = state
        logger.info("Opened account %s (%s) with $%.2f", account_id, state.category, state.cash)
        return state

    async def reset_account(self, account_id: str) -> AccountState:
        """Clear positions and trade history and restore the starting balance."""
        async with self._lock(account_id):
            await self._run(self.store.load_account, account_id)
            await self._run(self.store.reset_account, account_id, self.starting_cash)
            return await self._load(account_id)

    # ==================== Orders ====================

    async def place_order(self, account_id: str, request: OrderRequest) -> Trade:
        """
        Validate, apply and persist one order.

        The order is done only once the store write succeeds. No retry is
        attempted; callers may resubmit.

        Raises:
            InvalidOrder, InsufficientFunds, InsufficientPosition,
            AccountNotFound, StoreWriteFailed
        """
        async with self._lock(account_id):
            state = await self._load(account_id)
            try:
                result = apply_order(state, request)
            except LedgerError as exc:
                logger.warning("Order rejected for %s: %s", account_id, exc)
                raise

            ticket = OrderTicket(account_id=account_id, request=request, trade=result.trade)
            self._tickets[account_id] = ticket
            self._pending[account_id] = result.state

            try:
                await self._run(
                    self.store.save_order,
                    account_id,
                    result.trade,
                    result.state.cash,
                    result.change,
                    result.state.summary,
                )
            except Exception as exc:
                ticket.status = OrderStatus.FAILED
                ticket.error = str(exc)
                self._confirmed[account_id] = state
                logger.error(
                    "Order %s for %s not persisted, rolled back: %s",
                    result.trade.trade_id,
                    account_id,
                    exc,
                )
                if isinstance(exc, LedgerError):
                    raise
                raise StoreWriteFailed(f"save_order failed for {account_id}: {exc}") from exc
            finally:
                self._pending.pop(account_id, None)

            ticket.status = OrderStatus.CONFIRMED
            self._confirmed[account_id] = result.state

        trade = result.trade
        logger.info(
            "Executed %s order for %g %s at $%.2f (%s)",
            trade.side.value,
            trade.quantity,
            trade.ticker,
            trade.price,
            account_id,
        )
        return trade

    def get_pending(self, account_id: str) -> Optional[OrderTicket]:
        """Ticket of the order currently awaiting its store write, if any."""
        if account_id not in self._pending:
            return None
        return self._tickets.get(account_id)

    def get_last_ticket(self, account_id: str) -> Optional[OrderTicket]:
        return self._tickets.get(account_id)

    def current_view(self, account_id: str) -> Optional[AccountState]:
        """Optimistic in-memory view: the pending state if an order is in flight, else the last confirmed one."""
        return self._pending.get(account_id) or self._confirmed.get(account_id)

    # ==================== Queries ====================

    async def get_snapshot(self, account_id: str) -> AccountState:
        """Load the confirmed account state from the store."""
        return await self._load(account_id)

    async def get_summary(self, account_id: str) -> PortfolioSummary:
        state = await self._load(account_id)
        return compute_summary(state.cash, state.positions, state.starting_cash)

    async def get_trade_history(self, account_id: str, limit: int = 50) -> List[Trade]:
        """Most recent trades first."""
        state = await self._load(account_id)
        trades = sorted(state.trades, key=lambda t: t.timestamp)[::-1]
        return trades[:limit] if limit and limit > 0 else trades

    async def get_history_series(
        self,
        account_id: str,
        now: Optional[datetime] = None,
    ) -> List[HistoryPoint]:
        """
        Account value series for charting.

        Without trades this is a flat daily line at the starting balance for
        the last 30 days. Otherwise it is anchored at the starting balance one
        day before the first trade, followed by the (approximate) replayed
        trade values and a final point at today's total value.
        """
        state = await self._load(account_id)
        now = now or utc_now()

        if not state.trades:
            return [
                HistoryPoint(timestamp=now - timedelta(days=i), value=state.starting_cash)
                for i in range(FLAT_HISTORY_DAYS, -1, -1)
            ]

        points = reconstruct_history(state.trades, state.starting_cash)
        anchor = HistoryPoint(timestamp=points[0].timestamp - timedelta(days=1), value=state.starting_cash)
        current = compute_summary(state.cash, state.positions, state.starting_cash)
        return [anchor, *points, HistoryPoint(timestamp=now, value=current.total_value)]

    async def get_history_frame(
        self,
        account_id: str,
        time_range: str = "ALL",
        now: Optional[datetime] = None,
    ) -> pd.DataFrame:
        points = await self.get_history_series(account_id, now=now)
        return history_frame(points, time_range=time_range, now=now)

    async def get_leaderboard(
        self,
        category: Optional[str] = None,
        current_account_id: Optional[str] = None,
    ) -> List[LeaderboardEntry]:
        """Accounts ranked by percent gain (highest first)."""
        stats = await self._run(self.store.list_summaries, normalize_category(category))
        ranked = sorted(stats, key=lambda s: (-s.percent_gain, s.account_id))
        return [
            LeaderboardEntry(
                rank=index + 1,
                account_id=s.account_id,
                category=s.category,
                total_value=s.total_value,
                percent_gain=s.percent_gain,
                amount_gained=s.amount_gained,
                is_current_account=s.account_id == current_account_id,
            )
            for index, s in enumerate(ranked)
        ]

    # ==================== Prices ====================

    async def refresh_prices(self, account_id: str) -> PriceRefresh:
        """
        Reprice open positions and persist the new summary.

        Quotes are fetched without holding the account lock so readers keep
        seeing the stale snapshot meanwhile; the fetched prices are then
        applied to a freshly loaded state under the lock and written together
        with the summary in one store call.

        Raises:
            AccountNotFound, StoreWriteFailed
        """
        if self.quote_source is None:
            raise RuntimeError("No quote source configured")

        snapshot = await self._load(account_id)
        fetched = await refresh_market_prices(snapshot.positions, self.quote_source)

        async with self._lock(account_id):
            state = await self._load(account_id)
            positions = apply_quotes(state.positions, fetched.updated)
            summary = compute_summary(state.cash, positions, state.starting_cash)

            repriced = {t: p for t, p in positions.items() if t in fetched.updated}
            try:
                await self._run(self.store.save_prices, account_id, repriced, summary)
            except Exception as exc:
                logger.error("Price refresh for %s not persisted: %s", account_id, exc)
                if isinstance(exc, LedgerError):
                    raise
                raise StoreWriteFailed(f"save_prices failed for {account_id}: {exc}") from exc
            self._confirmed[account_id] = replace(state, positions=positions, summary=summary)

        logger.info(
            "Portfolio %s updated: Total Value = $%.2f, Gain = %.2f%% (%d stale)",
            account_id,
            summary.total_value,
            summary.percent_gain,
            len(fetched.failed),
        )
        return PriceRefresh(
            positions=positions,
            updated=fetched.updated,
            failed=fetched.failed,
            summary=summary,
        )
