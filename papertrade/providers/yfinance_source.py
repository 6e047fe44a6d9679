"""yfinance quote source (runs blocking downloads in an executor)."""

import asyncio
import logging
from typing import Optional

import pandas as pd
import yfinance as yf

from ledger.domain.errors import QuoteFetchFailed
from ledger.domain.models import Quote, normalize_ticker

from ..cache import InMemoryCache
from .base import QuoteSource

logger = logging.getLogger(__name__)


class YFinanceQuoteSource(QuoteSource):
    """Last daily close from Yahoo Finance; no API key, no documented rate limit."""

    def __init__(self, cache: Optional[InMemoryCache] = None, cache_ttl: int = 60):
        self.name = "yfinance"
        self.cache = cache or InMemoryCache(default_ttl=cache_ttl)
        self.cache_ttl = cache_ttl

    async def get_last_close(self, ticker: str) -> Quote:
        symbol = normalize_ticker(ticker)
        cache_key = f"yfinance:{symbol}"
        cached = self.cache.get(cache_key, ttl_seconds=self.cache_ttl)
        if cached is not None:
            return cached

        def _download() -> pd.DataFrame:
            """Blocking yfinance call."""
            return yf.Ticker(symbol).history(period="5d", interval="1d")

        loop = asyncio.get_event_loop()
        try:
            df = await loop.run_in_executor(None, _download)
        except Exception as exc:
            logger.warning("yfinance failed for %s: %s", symbol, exc)
            raise QuoteFetchFailed(symbol, f"yfinance_error: {exc}") from exc

        quote = self._last_close(symbol, df)
        self.cache.set(cache_key, quote)
        logger.info("%s: $%.2f (%s)", symbol, quote.price, self.name)
        return quote

    @staticmethod
    def _last_close(symbol: str, df: Optional[pd.DataFrame]) -> Quote:
        if df is None or df.empty or "Close" not in df.columns:
            raise QuoteFetchFailed(symbol, "no_data")

        closes = df["Close"].dropna()
        if closes.empty:
            raise QuoteFetchFailed(symbol, "no_data")

        as_of = pd.Timestamp(closes.index[-1])
        if as_of.tzinfo is None:
            as_of = as_of.tz_localize("UTC")
        return Quote(
            ticker=symbol,
            price=float(closes.iloc[-1]),
            as_of=as_of.tz_convert("UTC").to_pydatetime(),
        )
