"""Configuration management for the paper-trading service."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

STORAGE_BACKENDS = ("sqlite", "redis")
QUOTE_PROVIDERS = ("auto", "massive", "yfinance")


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # Storage
    storage_backend: str = "sqlite"
    db_path: str = "papertrade.db"
    upstash_redis_rest_url: Optional[str] = None
    upstash_redis_rest_token: Optional[str] = None
    redis_key_prefix: str = "papertrade"

    # Ledger
    starting_cash: float = 10000.0

    # Massive API (previous-close quotes; free tier: 5 requests per minute)
    massive_api_key: Optional[str] = None
    massive_base_url: str = "https://api.massive.com"
    massive_rpm: int = 5

    # Quotes
    quote_provider: str = "auto"
    quote_cache_ttl: int = 60  # 1 minute
    quote_rate_limit_backoff: float = 60.0  # fixed wait before the single 429 retry

    # Network settings
    http_timeout: int = 30

    # Web API
    web_api_token: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        backend = os.getenv("PAPERTRADE_STORAGE_BACKEND", "sqlite").strip().lower() or "sqlite"
        if backend not in STORAGE_BACKENDS:
            raise ValueError(
                f"PAPERTRADE_STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)} (got {backend!r})"
            )

        quote_provider = os.getenv("QUOTE_PROVIDER", "auto").strip().lower() or "auto"
        if quote_provider not in QUOTE_PROVIDERS:
            raise ValueError(
                f"QUOTE_PROVIDER must be one of {', '.join(QUOTE_PROVIDERS)} (got {quote_provider!r})"
            )

        starting_cash = float(os.getenv("PAPERTRADE_STARTING_CASH", "10000"))
        if starting_cash <= 0:
            raise ValueError("PAPERTRADE_STARTING_CASH must be > 0")

        return cls(
            storage_backend=backend,
            db_path=os.getenv("PAPERTRADE_DB_PATH", "papertrade.db"),
            upstash_redis_rest_url=os.getenv("UPSTASH_REDIS_REST_URL", "").strip() or None,
            upstash_redis_rest_token=os.getenv("UPSTASH_REDIS_REST_TOKEN", "").strip() or None,
            redis_key_prefix=os.getenv("PAPERTRADE_REDIS_PREFIX", "papertrade").strip() or "papertrade",
            starting_cash=starting_cash,
            massive_api_key=os.getenv("MASSIVE_API_KEY", "").strip() or None,
            massive_base_url=os.getenv("MASSIVE_BASE_URL", "https://api.massive.com").strip().rstrip("/"),
            massive_rpm=int(os.getenv("MASSIVE_RPM", "5")),
            quote_provider=quote_provider,
            quote_cache_ttl=int(os.getenv("QUOTE_CACHE_TTL", "60")),
            quote_rate_limit_backoff=float(os.getenv("QUOTE_RATE_LIMIT_BACKOFF", "60")),
            http_timeout=int(os.getenv("HTTP_TIMEOUT", "30")),
            web_api_token=os.getenv("WEB_API_TOKEN", "").strip() or None,
            host=os.getenv("HOST", "0.0.0.0").strip() or "0.0.0.0",
            port=int(os.getenv("PORT", "8000")),
        )
