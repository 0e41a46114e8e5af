"""Fixed-window rate limiting backed by expiring counters."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from standup_sync.errors import ErrorCode, StandupError
from standup_sync.services.retry import RETRY_DELAYS, call_with_retry


class RateCounter(Protocol):
    """Counters that reset when their window expires."""

    async def increment(self, key: str, window_seconds: int) -> int:
        """Increment a counter, starting its window on first use."""

    async def count(self, key: str) -> int:
        """Return the current counter value, 0 when absent."""


@dataclass
class RateLimiter:
    """Checks and records hits against fixed windows."""

    counter: RateCounter
    retry_delays: Sequence[float] = RETRY_DELAYS

    async def is_exhausted(self, key: str, limit: int) -> bool:
        """Return True when ``key`` already reached ``limit`` in its window."""
        count = await call_with_retry(
            lambda: self.counter.count(key),
            action="read rate counter",
            delays=self.retry_delays,
        )
        return count >= limit

    async def record(self, key: str, window_seconds: int) -> int:
        """Count one hit against ``key``."""
        return await call_with_retry(
            lambda: self.counter.increment(key, window_seconds),
            action="increment rate counter",
            delays=self.retry_delays,
        )

    async def hit(
        self, key: str, limit: int, window_seconds: int, message: str | None = None
    ) -> None:
        """Record a hit, raising ``RATE_LIMITED`` once the limit is reached."""
        if await self.is_exhausted(key, limit):
            raise StandupError(ErrorCode.RATE_LIMITED, message)
        await self.record(key, window_seconds)
