"""Portfolio store abstraction."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from ledger.domain.models import (
    AccountState,
    AccountStats,
    PortfolioSummary,
    Position,
    PositionChange,
    Trade,
)


class PortfolioStore(ABC):
    """
    Durable persistence of account ledgers.

    Implementations raise ``AccountNotFound`` for unknown accounts and wrap
    any backend failure on writes in ``StoreWriteFailed``. Calls are
    blocking; async callers run them in an executor.
    """

    @abstractmethod
    def create_account(
        self,
        account_id: str,
        starting_cash: float,
        category: str,
        created_at: datetime,
    ) -> AccountState:
        """Create an account with a flat summary (no-op if it already exists)."""
        pass

    @abstractmethod
    def load_account(self, account_id: str) -> AccountState:
        """Load cash, positions, trades (chronological) and stored summary."""
        pass

    @abstractmethod
    def save_order(
        self,
        account_id: str,
        trade: Trade,
        cash: float,
        change: PositionChange,
        summary: PortfolioSummary,
    ) -> Trade:
        """
        Persist one executed order as a single unit.

        Records the trade, upserts (or deletes, when ``change.position`` is
        None) the position, and writes the new cash and summary.
        """
        pass

    @abstractmethod
    def save_prices(
        self,
        account_id: str,
        positions: Dict[str, Position],
        summary: PortfolioSummary,
    ) -> None:
        """
        Persist a price refresh as a single unit.

        Overwrites ``current_price`` of the given positions that are still
        held (quantity and average cost are left alone) and writes the
        recomputed summary.
        """
        pass

    @abstractmethod
    def save_summary(self, account_id: str, summary: PortfolioSummary) -> None:
        pass

    @abstractmethod
    def reset_account(self, account_id: str, starting_cash: float) -> None:
        """Drop all positions and trades and restore the starting balance."""
        pass

    @abstractmethod
    def list_summaries(self, category: Optional[str] = None) -> List[AccountStats]:
        """Stored summaries, optionally filtered by category."""
        pass
