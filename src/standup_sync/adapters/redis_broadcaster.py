"""Redis pub/sub transport for session events."""

import asyncio
import contextlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from standup_sync.adapters.redis_support import redis_errors
from standup_sync.domain.events import decode_message, encode_message
from standup_sync.errors import StandupError
from standup_sync.services.broadcaster import EventHandler

_logger = logging.getLogger(__name__)


@dataclass
class RedisBroadcaster:
    """Publishes event envelopes on Redis channels."""

    redis: Redis

    async def publish(
        self, channel_name: str, event_name: str, payload: dict[str, object]
    ) -> None:
        """Publish an event to a channel."""
        with redis_errors("publish"):
            await self.redis.publish(channel_name, encode_message(event_name, payload))

    def subscriber(self) -> "RedisChannelSubscriber":
        """Return a new subscription handle sharing this connection pool."""
        return RedisChannelSubscriber(self.redis)


@dataclass
class RedisChannelSubscriber:
    """One client's channel subscriptions over a dedicated pub/sub connection.

    A single reader task polls the connection and routes each envelope to
    the handler registered for its channel and event name. Events without
    a handler are dropped.
    """

    redis: Redis
    poll_timeout: float = 1.0
    _pubsub: PubSub | None = field(default=None, init=False)
    _handlers: dict[str, Mapping[str, EventHandler]] = field(
        default_factory=dict, init=False
    )
    _reader: asyncio.Task | None = field(default=None, init=False)

    async def subscribe(
        self, channel_name: str, handlers: Mapping[str, EventHandler]
    ) -> None:
        """Subscribe to a channel; already-subscribed channels are left as is."""
        if channel_name in self._handlers:
            return
        if self._pubsub is None:
            self._pubsub = self.redis.pubsub()
        with redis_errors("subscribe"):
            await self._pubsub.subscribe(channel_name)
        self._handlers[channel_name] = dict(handlers)
        if self._reader is None:
            self._reader = asyncio.create_task(self._read())

    async def unsubscribe(self, channel_name: str) -> None:
        """Unsubscribe from a channel."""
        if self._handlers.pop(channel_name, None) is None or self._pubsub is None:
            return
        with redis_errors("unsubscribe"):
            await self._pubsub.unsubscribe(channel_name)

    async def close(self) -> None:
        """Stop the reader and release the pub/sub connection."""
        self._handlers.clear()
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
            self._reader = None
        if self._pubsub is not None:
            with redis_errors("close"):
                await self._pubsub.aclose()
            self._pubsub = None

    def dispatch(self, channel_name: str, raw: str) -> None:
        """Route one raw envelope to its registered handler."""
        handlers = self._handlers.get(channel_name)
        if handlers is None:
            return
        try:
            event_name, payload = decode_message(raw)
        except StandupError:
            _logger.warning("Ignoring malformed message on %s", channel_name)
            return
        handler = handlers.get(event_name)
        if handler is None:
            return
        try:
            handler(payload)
        except Exception:
            _logger.exception("Handler for %s on %s failed", event_name, channel_name)

    async def _read(self) -> None:
        while True:
            pubsub = self._pubsub
            if pubsub is None:
                return
            try:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self.poll_timeout
                )
            except RedisError:
                _logger.exception("Realtime channel read failed")
                await asyncio.sleep(self.poll_timeout)
                continue
            if message is None or message.get("type") != "message":
                continue
            self.dispatch(message["channel"], message["data"])
