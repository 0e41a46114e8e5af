"""Shared helpers for the Redis-backed adapters."""

from collections.abc import Iterator
from contextlib import contextmanager

from redis.asyncio import Redis
from redis.exceptions import RedisError

from standup_sync.errors import UpstreamError


def create_redis(url: str, socket_timeout: float | None = None) -> Redis:
    """Create a Redis client that returns decoded strings."""
    return Redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )


@contextmanager
def redis_errors(action: str) -> Iterator[None]:
    """Re-raise Redis failures as ``UpstreamError``."""
    try:
        yield
    except RedisError as exc:
        raise UpstreamError(f"Redis {action} failed: {exc}") from exc
