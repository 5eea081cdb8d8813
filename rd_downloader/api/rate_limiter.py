"""
Provides a shared token-bucket rate limiter that keeps every worker together
under the Real-Debrid request ceiling, backing off on 429 "Too Many Requests".
"""

import asyncio
import logging
import time

log = logging.getLogger(__name__)


class TokenBucketRateLimiter:
    """
    Token bucket refilled at a per-minute rate, with an adaptive rate that is
    halved on 429 responses and slowly recovers afterwards.
    """

    def __init__(
        self,
        requests_per_minute: float = 250,
        burst: int = 5,
        clock=time.monotonic,
    ):
        """
        Initializes the rate limiter.

        Args:
            requests_per_minute: The documented ceiling, and the rate to recover to.
            burst: How many requests may be issued back to back from a full bucket.
            clock: Monotonic time source, replaceable in tests.
        """
        self._max_rate = requests_per_minute / 60.0
        self._rate = self._max_rate
        self._capacity = float(burst)
        self._tokens = float(burst)
        self._clock = clock
        self._last_refill = clock()
        self._last_429_time = 0.0
        self._lock = asyncio.Lock()

    @property
    def rate_per_second(self) -> float:
        return self._rate

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        self._last_refill = now
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)

    async def on_429(self) -> None:
        """
        Called when a 429 error is received. Halves the current request rate
        and empties the bucket.
        """
        async with self._lock:
            self._rate = max(self._max_rate / 16, self._rate * 0.5)
            self._tokens = 0.0
            self._last_429_time = self._clock()
            log.warning(
                f"[yellow]Rate limit hit. New rate: {self._rate * 60:.0f} "
                "requests/min[/yellow]"
            )

    async def acquire(self) -> None:
        """
        Waits until a token is available, then consumes it.
        """
        async with self._lock:
            # Gradually recover the rate if no 429 errors have occurred recently
            if (
                self._rate < self._max_rate
                and self._clock() - self._last_429_time > 300
            ):
                self._rate = min(self._max_rate, self._rate * 1.05)

            self._refill()
            if self._tokens < 1.0:
                await asyncio.sleep((1.0 - self._tokens) / self._rate)
                self._refill()
            self._tokens = max(0.0, self._tokens - 1.0)
