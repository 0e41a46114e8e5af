"""Best-effort fan-out of session events."""

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from standup_sync.domain.events import SessionEvent, channel_name
from standup_sync.errors import StandupError
from standup_sync.services.retry import RETRY_DELAYS, call_with_retry

EventHandler = Callable[[dict[str, object]], None]

_logger = logging.getLogger(__name__)


class RealtimeChannel(Protocol):
    """One client's subscriptions to session channels."""

    async def subscribe(
        self, channel_name: str, handlers: Mapping[str, EventHandler]
    ) -> None:
        """Start delivering events on a channel; repeated calls are no-ops."""

    async def unsubscribe(self, channel_name: str) -> None:
        """Stop delivering events on a channel; unknown channels are ignored."""

    async def close(self) -> None:
        """Drop every subscription held by this channel."""


class Broadcaster(Protocol):
    """Publish/subscribe transport for session events."""

    async def publish(
        self, channel_name: str, event_name: str, payload: dict[str, object]
    ) -> None:
        """Publish an event to every subscriber of a channel."""

    def subscriber(self) -> RealtimeChannel:
        """Return a fresh subscription handle for one client."""


@dataclass
class BroadcastService:
    """Publishes session events without ever failing the caller.

    The store write is the durable effect; a broadcast is only a hint, so a
    delivery failure is logged and reported as ``False`` instead of raised.
    """

    broadcaster: Broadcaster
    retry_delays: Sequence[float] = RETRY_DELAYS

    async def publish(self, session_id: str, event: SessionEvent) -> bool:
        """Publish an event on the session channel."""
        channel = channel_name(session_id)
        try:
            await call_with_retry(
                lambda: self.broadcaster.publish(channel, event.name, event.payload()),
                action=f"publish {event.name}",
                delays=self.retry_delays,
            )
        except StandupError:
            _logger.warning(
                "Dropped %s broadcast for session",
                event.name,
                extra={"session_id": session_id},
            )
            return False
        return True
