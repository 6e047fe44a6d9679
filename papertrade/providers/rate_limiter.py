"""Rate limiter for the quote API (token bucket + minimum request spacing)."""

import asyncio
import logging
import time

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Token bucket rate limiter.

    Enforces:
    1. Per-minute limit (RPM): at most ``rpm`` requests in any rolling minute
    2. Spacing: consecutive requests are at least ``60 / rpm`` seconds apart,
       so a free-tier key (5 RPM) is never hit with a burst

    Attributes:
        rpm: Requests per minute limit
        min_interval: Minimum seconds between two requests
        error_429_count: Consecutive 429 responses seen
    """

    def __init__(self, rpm: int = 5, spread: bool = True):
        """
        Initialize rate limiter.

        Args:
            rpm: Requests per minute (default 5 for the free tier)
            spread: Space requests evenly instead of allowing bursts
        """
        if rpm <= 0:
            raise ValueError("rpm must be positive")

        self.rpm = rpm
        self.min_interval = 60.0 / rpm if spread else 0.0
        self.current_tokens = float(rpm)
        self.last_refill_ts = time.monotonic()
        self.last_request_ts: float = 0.0
        self.error_429_count = 0
        self.lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request may be sent, then consume a token."""
        async with self.lock:
            self._refill_tokens()
            wait_time = self._calculate_wait_time()
            if wait_time > 0:
                logger.info("Rate limiting: waiting %.1fs before next request", wait_time)
                await asyncio.sleep(wait_time)
                self._refill_tokens()

            self.current_tokens = max(self.current_tokens - 1, 0.0)
            self.last_request_ts = time.monotonic()

    def _refill_tokens(self) -> None:
        now = time.monotonic()
        elapsed_min = (now - self.last_refill_ts) / 60.0
        self.current_tokens = min(float(self.rpm), self.current_tokens + elapsed_min * self.rpm)
        self.last_refill_ts = now

    def _calculate_wait_time(self) -> float:
        now = time.monotonic()
        token_wait = 0.0
        if self.current_tokens < 1:
            token_wait = (1 - self.current_tokens) * 60.0 / self.rpm
        spacing_wait = 0.0
        if self.last_request_ts:
            spacing_wait = self.min_interval - (now - self.last_request_ts)
        return max(token_wait, spacing_wait, 0.0)

    def record_429(self) -> None:
        """Record a 429 (rate limit) response."""
        self.error_429_count += 1
        logger.warning("Quote API returned 429. Error count: %d", self.error_429_count)

    def reset_429_count(self) -> None:
        if self.error_429_count > 0:
            logger.info("Cleared 429 error count (was %d)", self.error_429_count)
        self.error_429_count = 0

    def get_stats(self) -> dict:
        return {
            "rpm": self.rpm,
            "min_interval": round(self.min_interval, 2),
            "current_tokens": round(self.current_tokens, 2),
            "consecutive_429_errors": self.error_429_count,
        }
