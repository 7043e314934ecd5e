"""
Provides an adaptive rate limiter so catalog requests back off after HTTP 429.
"""

import asyncio
import logging
import time
from typing import Optional

log = logging.getLogger(__name__)


class AdaptiveRateLimiter:
    """
    Spaces out catalog API calls and halves the call rate whenever the API
    answers 429 "Too Many Requests". A ``Retry-After`` delay sent with the 429
    holds back every call until it has passed.
    """

    RECOVERY_QUIET_PERIOD = 300  # seconds without a 429 before speeding up again
    MAX_RETRY_AFTER = 120.0

    def __init__(
        self, initial_calls_per_second: float = 4.0, max_calls_per_second: float = 8.0
    ):
        """
        Args:
            initial_calls_per_second: The starting rate of calls per second.
            max_calls_per_second: The maximum rate to recover to.
        """
        self._rate = initial_calls_per_second
        self._max_rate = max_calls_per_second
        self._min_interval = 1.0 / self._rate
        self._last_call_time = 0.0
        self._last_429_time = 0.0
        self._blocked_until = 0.0
        self._lock = asyncio.Lock()

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def blocked_for(self) -> float:
        """Seconds left before the server's Retry-After delay has passed."""
        return max(0.0, self._blocked_until - time.monotonic())

    async def on_429(self, retry_after: Optional[float] = None) -> None:
        """Halves the current request rate, down to one call per second."""
        async with self._lock:
            self._rate = max(1.0, self._rate * 0.5)
            self._min_interval = 1.0 / self._rate
            self._last_429_time = time.monotonic()
            if retry_after:
                delay = min(retry_after, self.MAX_RETRY_AFTER)
                self._blocked_until = max(self._blocked_until, self._last_429_time + delay)
            log.warning(
                f"[yellow]Catalog API rate limit hit. "
                f"Slowing down to {self._rate:.1f} calls/s"
                f"{f', pausing {retry_after:.0f}s' if retry_after else ''}[/yellow]"
            )

    async def acquire(self) -> None:
        """Waits until the next call is allowed under the current rate."""
        async with self._lock:
            blocked = self._blocked_until - time.monotonic()
            if blocked > 0:
                await asyncio.sleep(blocked)

            now = time.monotonic()
            if now - self._last_429_time > self.RECOVERY_QUIET_PERIOD:
                self._rate = min(self._max_rate, self._rate * 1.01)
                self._min_interval = 1.0 / self._rate

            wait = self._min_interval - (now - self._last_call_time)
            if wait > 0:
                await asyncio.sleep(wait)

            self._last_call_time = time.monotonic()
