"""In-memory quote cache with TTL support."""

import logging
import time
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class InMemoryCache:
    """Simple in-memory cache; entries older than the TTL are treated as missing."""

    def __init__(self, default_ttl: int = 60):
        self._cache: Dict[str, Tuple[Any, float]] = {}
        self.default_ttl = default_ttl

    def get(self, key: str, ttl_seconds: Optional[int] = None) -> Optional[Any]:
        """Get cached value if it exists and is not expired."""
        if key not in self._cache:
            return None

        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        value, timestamp = self._cache[key]
        if time.monotonic() - timestamp > ttl:
            del self._cache[key]
            logger.debug("Cache miss (expired): %s", key)
            return None

        logger.debug("Cache hit: %s", key)
        return value

    def set(self, key: str, value: Any) -> None:
        """Store value in cache with current timestamp."""
        self._cache[key] = (value, time.monotonic())

    def cleanup(self, ttl_seconds: Optional[int] = None) -> int:
        """Remove expired items, return count of removed items."""
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        now = time.monotonic()
        expired_keys = [
            key for key, (_, timestamp) in self._cache.items()
            if now - timestamp > ttl
        ]
        for key in expired_keys:
            del self._cache[key]

        if expired_keys:
            logger.info("Cache cleanup: %d items removed", len(expired_keys))

        return len(expired_keys)

    def clear(self) -> None:
        count = len(self._cache)
        self._cache.clear()
        logger.info("Cache cleared: %d items removed", count)

    def __len__(self) -> int:
        return len(self._cache)
