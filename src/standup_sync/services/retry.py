"""Retry policy for calls to the store, channel and remote providers."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from standup_sync.errors import ErrorCode, StandupError, UpstreamError

RETRY_DELAYS: tuple[float, ...] = (0.1, 0.3, 0.9)

_logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    *,
    action: str,
    delays: Sequence[float] = RETRY_DELAYS,
) -> T:
    """Call ``func``, retrying upstream failures on a fixed backoff schedule.

    Only ``UpstreamError`` is retried. Once the schedule is exhausted the
    cause is logged and a generic ``TRANSIENT_UPSTREAM`` error is raised in
    its place so internal detail never reaches the caller.
    """
    attempt = 0
    while True:
        try:
            return await func()
        except UpstreamError as exc:
            attempt += 1
            if attempt > len(delays):
                _logger.error(
                    "%s failed after %s attempts: %s", action, attempt, exc
                )
                raise StandupError(ErrorCode.TRANSIENT_UPSTREAM) from exc
            _logger.warning(
                "%s failed (attempt %s/%s): %s",
                action,
                attempt,
                len(delays) + 1,
                exc,
            )
            await asyncio.sleep(delays[attempt - 1])
