"""Upstash Redis REST portfolio store (networked)."""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from ledger.db.base import PortfolioStore
from ledger.domain.errors import AccountNotFound, StoreWriteFailed
from ledger.domain.models import (
    AccountState,
    AccountStats,
    PortfolioSummary,
    Position,
    PositionChange,
    Trade,
    utc_now,
)

logger = logging.getLogger(__name__)


class UpstashRedisStore(PortfolioStore):
    """
    Account ledgers as JSON documents in Redis via the Upstash REST API.

    Each account lives in one key (``<prefix>:account:<id>``) holding cash,
    positions, trades and summary, so every write is a single ``SET`` and
    lands atomically. Account ids are indexed in ``<prefix>:accounts`` for
    the leaderboard.
    """

    def __init__(
        self,
        rest_url: str,
        rest_token: str,
        key_prefix: str = "papertrade",
        timeout_sec: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        if not rest_url or not rest_token:
            raise ValueError("Upstash REST url and token are required")
        self.rest_url = rest_url.rstrip("/")
        self.rest_token = rest_token
        self.key_prefix = key_prefix
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()

    def _command(self, *args: Any) -> Any:
        resp = self.session.post(
            self.rest_url,
            headers={
                "Authorization": f"Bearer {self.rest_token}",
                "Content-Type": "application/json",
            },
            json=[str(a) for a in args],
            timeout=self.timeout_sec,
        )
        resp.raise_for_status()
        payload = resp.json()
        if payload.get("error"):
            raise requests.HTTPError(f"Upstash error: {payload['error']}")
        return payload.get("result")

    def _account_key(self, account_id: str) -> str:
        return f"{self.key_prefix}:account:{account_id}"

    def _index_key(self) -> str:
        return f"{self.key_prefix}:accounts"

    def _get_state(self, account_id: str) -> AccountState:
        raw = self._command("GET", self._account_key(account_id))
        if raw is None:
            raise AccountNotFound(account_id)
        return AccountState.from_dict(json.loads(raw))

    def _put_state(self, state: AccountState) -> None:
        self._command(
            "SET",
            self._account_key(state.account_id),
            json.dumps(state.to_dict(), ensure_ascii=True),
        )

    def _write(self, operation: str, account_id: str, fn) -> Any:
        """Run a read-modify-write, wrapping transport failures."""
        try:
            return fn()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Upstash %s failed for %s: %s", operation, account_id, exc)
            raise StoreWriteFailed(f"{operation} failed for {account_id}: {exc}") from exc

    # ==================== Accounts ====================

    def create_account(
        self,
        account_id: str,
        starting_cash: float,
        category: str,
        created_at: datetime,
    ) -> AccountState:
        state = AccountState(
            account_id=account_id,
            starting_cash=starting_cash,
            cash=starting_cash,
            created_at=created_at,
            category=category,
            summary=PortfolioSummary.flat(starting_cash),
        )

        def _create() -> AccountState:
            created = self._command(
                "SET",
                self._account_key(account_id),
                json.dumps(state.to_dict(), ensure_ascii=True),
                "NX",
            )
            self._command("SADD", self._index_key(), account_id)
            if created is None:
                return self._get_state(account_id)
            return state

        return self._write("create_account", account_id, _create)

    def load_account(self, account_id: str) -> AccountState:
        state = self._get_state(account_id)
        state.trades.sort(key=lambda t: t.timestamp)
        return state

    # ==================== Orders ====================

    def save_order(
        self,
        account_id: str,
        trade: Trade,
        cash: float,
        change: PositionChange,
        summary: PortfolioSummary,
    ) -> Trade:
        def _save() -> Trade:
            state = self._get_state(account_id)
            if change.position is None:
                state.positions.pop(change.ticker, None)
            else:
                state.positions[change.ticker] = change.position
            state.trades.append(trade)
            state.cash = cash
            state.summary = summary
            self._put_state(state)
            return trade

        return self._write("save_order", account_id, _save)

    # ==================== Positions / stats ====================

    def save_prices(
        self,
        account_id: str,
        positions: Dict[str, Position],
        summary: PortfolioSummary,
    ) -> None:
        def _save() -> None:
            state = self._get_state(account_id)
            for ticker, position in positions.items():
                held = state.positions.get(ticker)
                if held is None:
                    continue
                state.positions[ticker] = Position(
                    ticker=held.ticker,
                    name=held.name,
                    quantity=held.quantity,
                    average_cost=held.average_cost,
                    current_price=position.current_price,
                    updated_at=position.updated_at or utc_now(),
                )
            state.summary = summary
            self._put_state(state)

        self._write("save_prices", account_id, _save)

    def save_summary(self, account_id: str, summary: PortfolioSummary) -> None:
        def _save() -> None:
            state = self._get_state(account_id)
            state.summary = summary
            self._put_state(state)

        self._write("save_summary", account_id, _save)

    def reset_account(self, account_id: str, starting_cash: float) -> None:
        def _reset() -> None:
            state = self._get_state(account_id)
            state.starting_cash = starting_cash
            state.cash = starting_cash
            state.positions = {}
            state.trades = []
            state.summary = PortfolioSummary.flat(starting_cash)
            self._put_state(state)

        self._write("reset_account", account_id, _reset)
        logger.info("Reset account %s to $%.2f", account_id, starting_cash)

    def list_summaries(self, category: Optional[str] = None) -> List[AccountStats]:
        account_ids = sorted(self._command("SMEMBERS", self._index_key()) or [])
        if not account_ids:
            return []

        raw_docs = self._command("MGET", *(self._account_key(a) for a in account_ids)) or []
        stats: List[AccountStats] = []
        for raw in raw_docs:
            if raw is None:
                continue
            state = AccountState.from_dict(json.loads(raw))
            if category and state.category != category:
                continue
            summary = state.summary or PortfolioSummary.flat(state.starting_cash)
            stats.append(
                AccountStats(
                    account_id=state.account_id,
                    category=state.category,
                    total_value=summary.total_value,
                    percent_gain=summary.percent_gain,
                    amount_gained=summary.amount_gained,
                )
            )
        stats.sort(key=lambda s: (-s.percent_gain, s.account_id))
        return stats
