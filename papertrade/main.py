"""Main entry point for the paper-trading ledger API."""

import logging
import sys
from typing import List, Optional

import httpx
import uvicorn

from ledger.db.base import PortfolioStore
from ledger.db.sqlite_store import SQLiteStore
from ledger.services.portfolio_service import PortfolioService

from .cache import InMemoryCache
from .config import Config
from .providers.base import QuoteSource
from .providers.fallback import FallbackQuoteSource
from .providers.massive import MassiveQuoteSource
from .providers.yfinance_source import YFinanceQuoteSource
from .storage.upstash import UpstashRedisStore
from .web_api import configure_service, web_api

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


def build_store(config: Config) -> PortfolioStore:
    """Select the portfolio store; redis without credentials falls back to sqlite."""
    if config.storage_backend == "redis":
        if config.upstash_redis_rest_url and config.upstash_redis_rest_token:
            logger.info("Using Upstash Redis store (prefix=%s)", config.redis_key_prefix)
            return UpstashRedisStore(
                rest_url=config.upstash_redis_rest_url,
                rest_token=config.upstash_redis_rest_token,
                key_prefix=config.redis_key_prefix,
            )
        logger.warning(
            "PAPERTRADE_STORAGE_BACKEND=redis but UPSTASH_REDIS_REST_URL/TOKEN missing; using sqlite"
        )

    logger.info("Using SQLite store at %s", config.db_path)
    return SQLiteStore(config.db_path)


def build_quote_source(
    config: Config,
    http_client: httpx.AsyncClient,
    cache: Optional[InMemoryCache] = None,
) -> QuoteSource:
    """
    Build the quote source chain.

    ``auto`` tries Massive first (when a key is configured) and falls back
    to yfinance.
    """
    cache = cache or InMemoryCache(default_ttl=config.quote_cache_ttl)
    sources: List[QuoteSource] = []

    if config.quote_provider in ("auto", "massive"):
        if config.massive_api_key:
            sources.append(
                MassiveQuoteSource(
                    api_key=config.massive_api_key,
                    http_client=http_client,
                    cache=cache,
                    base_url=config.massive_base_url,
                    rpm=config.massive_rpm,
                    cache_ttl=config.quote_cache_ttl,
                    rate_limit_backoff=config.quote_rate_limit_backoff,
                    timeout=config.http_timeout,
                )
            )
        elif config.quote_provider == "massive":
            raise ValueError("QUOTE_PROVIDER=massive requires MASSIVE_API_KEY")
        else:
            logger.warning("MASSIVE_API_KEY not set; quotes will come from yfinance only")

    if config.quote_provider in ("auto", "yfinance"):
        sources.append(YFinanceQuoteSource(cache=cache, cache_ttl=config.quote_cache_ttl))

    if len(sources) == 1:
        return sources[0]
    return FallbackQuoteSource(sources)


def build_service(config: Config, http_client: httpx.AsyncClient) -> PortfolioService:
    return PortfolioService(
        store=build_store(config),
        quote_source=build_quote_source(config, http_client),
        starting_cash=config.starting_cash,
    )


def main() -> None:
    """Main application entry point."""
    config = Config.from_env()

    # Shared HTTP client with connection pooling
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(config.http_timeout),
        limits=httpx.Limits(max_keepalive_connections=20, max_connections=50),
    )
    configure_service(build_service(config, http_client))

    @web_api.on_event("shutdown")
    async def _close_http_client() -> None:
        await http_client.aclose()
        logger.info("HTTP client closed")

    if not config.web_api_token:
        logger.warning("WEB_API_TOKEN not set; API endpoints are unauthenticated")

    logger.info("Starting paper-trading API on %s:%d", config.host, config.port)
    uvicorn.run(web_api, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
