"""SQLite-backed portfolio store (local embedded database)."""

import json
import logging
import sqlite3
from datetime import datetime
from typing import Dict, List, Optional

from ledger.db.base import PortfolioStore
from ledger.db.schema import migrate_schema
from ledger.domain.errors import AccountNotFound, StoreWriteFailed
from ledger.domain.models import (
    AccountState,
    AccountStats,
    InstrumentKind,
    OptionDetails,
    OrderSide,
    PortfolioSummary,
    Position,
    PositionChange,
    Trade,
    parse_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)


class SQLiteStore(PortfolioStore):
    """Portfolio store over the ``users`` / ``positions`` / ``orders`` tables."""

    def __init__(self, db_path: str):
        """
        Initialize store and apply schema migrations.

        Args:
            db_path: Path to SQLite database
        """
        self.db_path = db_path
        migrate_schema(db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    # ==================== Accounts ====================

    def create_account(
        self,
        account_id: str,
        starting_cash: float,
        category: str,
        created_at: datetime,
    ) -> AccountState:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO users (
                        account_id, category, starting_cash, cash, total_value,
                        percent_gain, amount_gained, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, 0, 0, ?, ?)
                    ON CONFLICT(account_id) DO NOTHING
                    """,
                    (
                        account_id,
                        category,
                        starting_cash,
                        starting_cash,
                        starting_cash,
                        created_at.isoformat(),
                        created_at.isoformat(),
                    ),
                )
                conn.commit()
        except sqlite3.Error as exc:
            logger.error("Failed to create account %s: %s", account_id, exc)
            raise StoreWriteFailed(f"create_account failed for {account_id}: {exc}") from exc

        return self.load_account(account_id)

    def load_account(self, account_id: str) -> AccountState:
        with self._connect() as conn:
            user = conn.execute(
                "SELECT * FROM users WHERE account_id = ?",
                (account_id,),
            ).fetchone()
            if not user:
                raise AccountNotFound(account_id)

            position_rows = conn.execute(
                "SELECT * FROM positions WHERE account_id = ? ORDER BY ticker",
                (account_id,),
            ).fetchall()
            order_rows = conn.execute(
                "SELECT * FROM orders WHERE account_id = ? ORDER BY created_at ASC, seq ASC",
                (account_id,),
            ).fetchall()

        positions = {row["ticker"]: self._row_to_position(row) for row in position_rows}
        return AccountState(
            account_id=user["account_id"],
            starting_cash=user["starting_cash"],
            cash=user["cash"],
            created_at=parse_timestamp(user["created_at"]),
            category=user["category"],
            positions=positions,
            trades=[self._row_to_trade(row) for row in order_rows],
            summary=PortfolioSummary(
                total_value=user["total_value"],
                percent_gain=user["percent_gain"],
                amount_gained=user["amount_gained"],
            ),
        )

    # ==================== Orders ====================

    def save_order(
        self,
        account_id: str,
        trade: Trade,
        cash: float,
        change: PositionChange,
        summary: PortfolioSummary,
    ) -> Trade:
        now = utc_now().isoformat()
        try:
            with self._connect() as conn:
                updated = conn.execute(
                    """
                    UPDATE users SET
                        cash = ?, total_value = ?, percent_gain = ?,
                        amount_gained = ?, updated_at = ?
                    WHERE account_id = ?
                    """,
                    (
                        cash,
                        summary.total_value,
                        summary.percent_gain,
                        summary.amount_gained,
                        now,
                        account_id,
                    ),
                )
                if updated.rowcount == 0:
                    raise AccountNotFound(account_id)

                conn.execute(
                    """
                    INSERT INTO orders (
                        trade_id, account_id, ticker, name, kind, side, quantity,
                        price, total_value, option_details, status, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'filled', ?)
                    """,
                    (
                        trade.trade_id,
                        account_id,
                        trade.ticker,
                        trade.name,
                        trade.kind.value,
                        trade.side.value,
                        trade.quantity,
                        trade.price,
                        trade.total_value,
                        json.dumps(trade.option_details.to_dict()) if trade.option_details else None,
                        trade.timestamp.isoformat(),
                    ),
                )

                if change.position is None:
                    conn.execute(
                        "DELETE FROM positions WHERE account_id = ? AND ticker = ?",
                        (account_id, change.ticker),
                    )
                else:
                    self._upsert_position(conn, account_id, change.position)

                conn.commit()
        except sqlite3.Error as exc:
            logger.error("Failed to save order %s for %s: %s", trade.trade_id, account_id, exc)
            raise StoreWriteFailed(f"save_order failed for {account_id}: {exc}") from exc

        logger.debug("Saved order %s for %s", trade.trade_id, account_id)
        return trade

    # ==================== Positions / stats ====================

    def save_prices(
        self,
        account_id: str,
        positions: Dict[str, Position],
        summary: PortfolioSummary,
    ) -> None:
        try:
            with self._connect() as conn:
                now = utc_now().isoformat()
                updated = conn.execute(
                    """
                    UPDATE users SET
                        total_value = ?, percent_gain = ?, amount_gained = ?, updated_at = ?
                    WHERE account_id = ?
                    """,
                    (
                        summary.total_value,
                        summary.percent_gain,
                        summary.amount_gained,
                        now,
                        account_id,
                    ),
                )
                if updated.rowcount == 0:
                    raise AccountNotFound(account_id)

                for position in positions.values():
                    conn.execute(
                        """
                        UPDATE positions SET current_price = ?, updated_at = ?
                        WHERE account_id = ? AND ticker = ?
                        """,
                        (
                            position.current_price,
                            position.updated_at.isoformat() if position.updated_at else now,
                            account_id,
                            position.ticker,
                        ),
                    )
                conn.commit()
        except sqlite3.Error as exc:
            logger.error("Failed to save prices for %s: %s", account_id, exc)
            raise StoreWriteFailed(f"save_prices failed for {account_id}: {exc}") from exc

    def save_summary(self, account_id: str, summary: PortfolioSummary) -> None:
        try:
            with self._connect() as conn:
                updated = conn.execute(
                    """
                    UPDATE users SET
                        total_value = ?, percent_gain = ?, amount_gained = ?, updated_at = ?
                    WHERE account_id = ?
                    """,
                    (
                        summary.total_value,
                        summary.percent_gain,
                        summary.amount_gained,
                        utc_now().isoformat(),
                        account_id,
                    ),
                )
                if updated.rowcount == 0:
                    raise AccountNotFound(account_id)
                conn.commit()
        except sqlite3.Error as exc:
            logger.error("Failed to save summary for %s: %s", account_id, exc)
            raise StoreWriteFailed(f"save_summary failed for {account_id}: {exc}") from exc

    def reset_account(self, account_id: str, starting_cash: float) -> None:
        try:
            with self._connect() as conn:
                updated = conn.execute(
                    """
                    UPDATE users SET
                        starting_cash = ?, cash = ?, total_value = ?,
                        percent_gain = 0, amount_gained = 0, updated_at = ?
                    WHERE account_id = ?
                    """,
                    (starting_cash, starting_cash, starting_cash, utc_now().isoformat(), account_id),
                )
                if updated.rowcount == 0:
                    raise AccountNotFound(account_id)
                conn.execute("DELETE FROM positions WHERE account_id = ?", (account_id,))
                conn.execute("DELETE FROM orders WHERE account_id = ?", (account_id,))
                conn.commit()
        except sqlite3.Error as exc:
            logger.error("Failed to reset account %s: %s", account_id, exc)
            raise StoreWriteFailed(f"reset_account failed for {account_id}: {exc}") from exc

        logger.info("Reset account %s to $%.2f", account_id, starting_cash)

    def list_summaries(self, category: Optional[str] = None) -> List[AccountStats]:
        query = "SELECT account_id, category, total_value, percent_gain, amount_gained FROM users"
        params: tuple = ()
        if category:
            query += " WHERE category = ?"
            params = (category,)
        query += " ORDER BY percent_gain DESC, account_id ASC"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()

        return [
            AccountStats(
                account_id=row["account_id"],
                category=row["category"],
                total_value=row["total_value"],
                percent_gain=row["percent_gain"],
                amount_gained=row["amount_gained"],
            )
            for row in rows
        ]

    # ==================== Row mapping ====================

    @staticmethod
    def _upsert_position(conn: sqlite3.Connection, account_id: str, position: Position) -> None:
        conn.execute(
            """
            INSERT INTO positions (
                account_id, ticker, name, quantity, average_cost, current_price, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(account_id, ticker) DO UPDATE SET
                name = excluded.name,
                quantity = excluded.quantity,
                average_cost = excluded.average_cost,
                current_price = excluded.current_price,
                updated_at = excluded.updated_at
            """,
            (
                account_id,
                position.ticker,
                position.name,
                position.quantity,
                position.average_cost,
                position.current_price,
                (position.updated_at or utc_now()).isoformat(),
            ),
        )

    @staticmethod
    def _row_to_position(row: sqlite3.Row) -> Position:
        return Position(
            ticker=row["ticker"],
            name=row["name"],
            quantity=row["quantity"],
            average_cost=row["average_cost"],
            current_price=row["current_price"],
            updated_at=parse_timestamp(row["updated_at"]) if row["updated_at"] else None,
        )

    @staticmethod
    def _row_to_trade(row: sqlite3.Row) -> Trade:
        details = row["option_details"]
        return Trade(
            trade_id=row["trade_id"],
            ticker=row["ticker"],
            name=row["name"] or row["ticker"],
            kind=InstrumentKind(row["kind"]),
            side=OrderSide(row["side"]),
            quantity=row["quantity"],
            price=row["price"],
            total_value=row["total_value"],
            timestamp=parse_timestamp(row["created_at"]),
            option_details=OptionDetails.from_dict(json.loads(details)) if details else None,
        )
