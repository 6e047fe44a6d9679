"""Massive market data API quote source (previous-day aggregates)."""

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from ledger.domain.errors import QuoteFetchFailed
from ledger.domain.models import Quote, normalize_ticker

from ..cache import InMemoryCache
from .base import QuoteSource
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

MASSIVE_BASE_URL = "https://api.massive.com"
MASSIVE_PREV_CLOSE_PATH = "/v2/aggs/ticker/{ticker}/prev"


class MassiveQuoteSource(QuoteSource):
    """
    Previous-close quotes from the Massive REST API.

    Features:
    - Rate limiter: free tier allows 5 requests/minute, requests are spaced out
    - Caching: identical requests within the TTL are served from memory
    - 429 handling: one retry after a fixed backoff, then the ticker fails
    """

    def __init__(
        self,
        api_key: str,
        http_client: httpx.AsyncClient,
        cache: Optional[InMemoryCache] = None,
        base_url: str = MASSIVE_BASE_URL,
        rpm: int = 5,
        cache_ttl: int = 60,
        rate_limit_backoff: float = 60.0,
        timeout: int = 30,
    ):
        """
        Initialize Massive quote source.

        Args:
            api_key: Massive API key (sent as Bearer token)
            http_client: Shared httpx.AsyncClient
            cache: Quote cache (a private one is created if omitted)
            base_url: API root
            rpm: Requests per minute limit
            cache_ttl: Seconds a cached response stays valid
            rate_limit_backoff: Seconds to wait before retrying a 429
            timeout: Request timeout in seconds
        """
        if not api_key:
            raise ValueError("Massive API key is required")

        self.name = "Massive"
        self.api_key = api_key
        self.http_client = http_client
        self.cache = cache or InMemoryCache(default_ttl=cache_ttl)
        self.base_url = base_url.rstrip("/")
        self.cache_ttl = cache_ttl
        self.rate_limit_backoff = rate_limit_backoff
        self.timeout = timeout
        self.rate_limiter = RateLimiter(rpm=rpm)

        logger.info("Initialized MassiveQuoteSource with RPM=%d", rpm)

    async def get_last_close(self, ticker: str) -> Quote:
        symbol = normalize_ticker(ticker)
        url = self.base_url + MASSIVE_PREV_CLOSE_PATH.format(ticker=symbol)

        cached = self.cache.get(url, ttl_seconds=self.cache_ttl)
        if cached is not None:
            logger.debug("Using cached quote for %s", symbol)
            return cached

        payload = await self._request(url, symbol)
        quote = self._parse_prev_close(symbol, payload)
        self.cache.cleanup(self.cache_ttl)
        self.cache.set(url, quote)
        logger.info("%s: $%.2f (%s)", symbol, quote.price, self.name)
        return quote

    async def _request(self, url: str, symbol: str) -> Dict[str, Any]:
        """GET with a single fixed-backoff retry on 429."""
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        for attempt in range(2):
            await self.rate_limiter.acquire()
            try:
                response = await self.http_client.get(url, headers=headers, timeout=self.timeout)
            except httpx.HTTPError as exc:
                logger.warning("Quote request failed for %s: %s", symbol, exc)
                raise QuoteFetchFailed(symbol, f"http_error: {exc}") from exc

            if response.status_code == 429:
                self.rate_limiter.record_429()
                if attempt == 0:
                    logger.warning(
                        "Rate limited (429) for %s. Waiting %.0fs before retry...",
                        symbol,
                        self.rate_limit_backoff,
                    )
                    await asyncio.sleep(self.rate_limit_backoff)
                    continue
                raise QuoteFetchFailed(symbol, "rate_limit")

            if response.status_code != 200:
                raise QuoteFetchFailed(symbol, f"http_{response.status_code}")

            self.rate_limiter.reset_429_count()
            try:
                return response.json()
            except ValueError as exc:
                raise QuoteFetchFailed(symbol, "invalid_json") from exc

        raise QuoteFetchFailed(symbol, "rate_limit")

    @staticmethod
    def _parse_prev_close(symbol: str, payload: Dict[str, Any]) -> Quote:
        if not isinstance(payload, dict):
            raise QuoteFetchFailed(symbol, "invalid_payload")

        results = payload.get("results") or []
        if not results:
            raise QuoteFetchFailed(symbol, "no_data")

        try:
            bar = results[0]
            close = bar.get("c")
            if close is None:
                raise QuoteFetchFailed(symbol, "missing_close")
            ts = bar.get("t")
            as_of = datetime.fromtimestamp(ts / 1000, tz=timezone.utc) if ts else None
            price = float(close)
            if not math.isfinite(price):
                raise QuoteFetchFailed(symbol, "invalid_payload")
            return Quote(ticker=symbol, price=price, as_of=as_of)
        except (TypeError, ValueError, AttributeError, KeyError, OverflowError, OSError) as exc:
            logger.warning("Malformed previous-close payload for %s: %s", symbol, exc)
            raise QuoteFetchFailed(symbol, "invalid_payload") from exc
