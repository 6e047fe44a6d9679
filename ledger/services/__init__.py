"""Ledger services - order processing, aggregation and the portfolio facade."""

from .aggregator import (
    TIME_RANGES,
    apply_quotes,
    compute_summary,
    history_frame,
    reconstruct_history,
    refresh_market_prices,
)
from .order_processor import OrderResult, apply_order, validate_order
from .portfolio_service import PortfolioService

__all__ = [
    "TIME_RANGES",
    "apply_quotes",
    "compute_summary",
    "history_frame",
    "reconstruct_history",
    "refresh_market_prices",
    "OrderResult",
    "apply_order",
    "validate_order",
    "PortfolioService",
]
