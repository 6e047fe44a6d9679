"""
Database schema and migrations for the SQLite portfolio store.

Three tables back each account: ``users`` (cash and summary stats),
``positions`` (current holdings) and ``orders`` (full trade history).
"""

import sqlite3
import logging

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def migrate_schema(db_path: str) -> None:
    """
    Create all tables and indexes.

    This is safe to run multiple times - it only creates missing tables.
    """
    with sqlite3.connect(db_path) as conn:
        _create_users(conn)
        _create_positions(conn)
        _create_orders(conn)
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        conn.commit()

    logger.info("Schema migration completed for %s", db_path)


def _create_users(conn: sqlite3.Connection) -> None:
    """Create per-account cash/stats table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            account_id TEXT PRIMARY KEY,
            category TEXT NOT NULL DEFAULT 'Student',
            starting_cash REAL NOT NULL,
            cash REAL NOT NULL,
            total_value REAL NOT NULL,
            percent_gain REAL NOT NULL DEFAULT 0,
            amount_gained REAL NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_users_category ON users(category)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_users_percent_gain ON users(percent_gain DESC)")


def _create_positions(conn: sqlite3.Connection) -> None:
    """Create current holdings table (one row per account + ticker)."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS positions (
            account_id TEXT NOT NULL,
            ticker TEXT NOT NULL,
            name TEXT,
            quantity REAL NOT NULL CHECK (quantity > 0),
            average_cost REAL NOT NULL,
            current_price REAL NOT NULL,
            updated_at TEXT,
            PRIMARY KEY(account_id, ticker)
        )
        """
    )


def _create_orders(conn: sqlite3.Connection) -> None:
    """Create trade history table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS orders (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            trade_id TEXT NOT NULL UNIQUE,
            account_id TEXT NOT NULL,
            ticker TEXT NOT NULL,
            name TEXT,
            kind TEXT NOT NULL,
            side TEXT NOT NULL,
            quantity REAL NOT NULL,
            price REAL NOT NULL,
            total_value REAL NOT NULL,
            option_details TEXT,
            status TEXT NOT NULL DEFAULT 'filled',
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_orders_account_time ON orders(account_id, created_at)")


def get_schema_version(db_path: str) -> int:
    """Return the stored schema version (0 for an uninitialized database)."""
    with sqlite3.connect(db_path) as conn:
        row = conn.execute("PRAGMA user_version").fetchone()
    return int(row[0]) if row else 0
