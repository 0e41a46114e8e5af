"""Redis fixed-window counters."""

from dataclasses import dataclass

from redis.asyncio import Redis

from standup_sync.adapters.redis_support import redis_errors

KEY_PREFIX = "ratelimit:"


@dataclass
class RedisRateCounter:
    """INCR counters whose window starts on the first hit."""

    redis: Redis

    async def increment(self, key: str, window_seconds: int) -> int:
        """Increment a counter and start its window on first use."""
        with redis_errors("increment"):
            count = await self.redis.incr(f"{KEY_PREFIX}{key}")
            if count == 1:
                await self.redis.expire(f"{KEY_PREFIX}{key}", window_seconds)
        return int(count)

    async def count(self, key: str) -> int:
        """Return the current count."""
        with redis_errors("count"):
            raw = await self.redis.get(f"{KEY_PREFIX}{key}")
        return int(raw) if raw is not None else 0
