"""Quote providers package."""

from .base import QuoteSource
from .fallback import FallbackQuoteSource
from .massive import MassiveQuoteSource
from .rate_limiter import RateLimiter
from .yfinance_source import YFinanceQuoteSource

__all__ = [
    "QuoteSource",
    "FallbackQuoteSource",
    "MassiveQuoteSource",
    "RateLimiter",
    "YFinanceQuoteSource",
]
