"""WebSocket subscription to the session event relay."""

import asyncio
import contextlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from standup_sync.domain.events import decode_message
from standup_sync.errors import StandupError, UpstreamError
from standup_sync.services.broadcaster import EventHandler

CHANNEL_PREFIX = "session-"

_logger = logging.getLogger(__name__)


def events_url(base_url: str, channel_name: str) -> str:
    """Return the relay URL for a session channel."""
    session_id = channel_name.removeprefix(CHANNEL_PREFIX)
    return f"{base_url.rstrip('/')}/api/sessions/{session_id}/events"


@dataclass
class _Subscription:
    connection: ClientConnection
    reader: asyncio.Task


@dataclass
class WebSocketChannel:
    """Realtime channel that opens one relay connection per session channel."""

    base_url: str
    open_timeout: float = 10.0
    _subscriptions: dict[str, _Subscription] = field(default_factory=dict, init=False)

    async def subscribe(
        self, channel_name: str, handlers: Mapping[str, EventHandler]
    ) -> None:
        """Connect to a channel's relay; already-open channels are left as is."""
        if channel_name in self._subscriptions:
            return
        url = events_url(self.base_url, channel_name)
        try:
            connection = await connect(url, open_timeout=self.open_timeout)
        except (OSError, TimeoutError, WebSocketException) as exc:
            raise UpstreamError(f"Realtime connect failed: {exc}") from exc
        reader = asyncio.create_task(
            self._read(channel_name, connection, dict(handlers))
        )
        self._subscriptions[channel_name] = _Subscription(connection, reader)

    async def unsubscribe(self, channel_name: str) -> None:
        """Close a channel's connection; unknown channels are ignored."""
        subscription = self._subscriptions.pop(channel_name, None)
        if subscription is None:
            return
        subscription.reader.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await subscription.reader
        await subscription.connection.close()

    async def close(self) -> None:
        """Close every open channel."""
        for channel_name in list(self._subscriptions):
            await self.unsubscribe(channel_name)

    def is_subscribed(self, channel_name: str) -> bool:
        """Return True while a channel's connection is open."""
        return channel_name in self._subscriptions

    async def _read(
        self,
        channel_name: str,
        connection: ClientConnection,
        handlers: dict[str, EventHandler],
    ) -> None:
        try:
            async for raw in connection:
                _dispatch(channel_name, raw, handlers)
        except ConnectionClosed:
            _logger.info("Realtime connection closed: %s", channel_name)
        except WebSocketException:
            _logger.exception("Realtime connection failed: %s", channel_name)
        finally:
            current = self._subscriptions.get(channel_name)
            if current is not None and current.connection is connection:
                del self._subscriptions[channel_name]


def _dispatch(
    channel_name: str, raw: str | bytes, handlers: dict[str, EventHandler]
) -> None:
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
