"""Quote source chain - first source that answers wins."""

import logging
from typing import List

from ledger.domain.errors import QuoteFetchFailed
from ledger.domain.models import Quote, normalize_ticker

from .base import QuoteSource

logger = logging.getLogger(__name__)


class FallbackQuoteSource(QuoteSource):
    """Try each source in order; raise the last failure if none succeeds."""

    def __init__(self, sources: List[QuoteSource]):
        if not sources:
            raise ValueError("at least one quote source is required")
        self.name = "fallback"
        self.sources = list(sources)

    async def get_last_close(self, ticker: str) -> Quote:
        symbol = normalize_ticker(ticker)
        last_error = QuoteFetchFailed(symbol, "no_sources")
        for source in self.sources:
            try:
                return await source.get_last_close(symbol)
            except QuoteFetchFailed as exc:
                logger.info("%s failed for %s (%s), trying next source", source.name, symbol, exc.reason)
                last_error = exc
        raise last_error
