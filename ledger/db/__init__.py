"""Database access layer."""

from .base import PortfolioStore
from .schema import migrate_schema, get_schema_version
from .sqlite_store import SQLiteStore

__all__ = [
    "PortfolioStore",
    "migrate_schema",
    "get_schema_version",
    "SQLiteStore",
]
