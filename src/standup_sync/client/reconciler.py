"""Client-side session cache kept in sync with broadcast events.

The reconciler never trusts the channel as the only source of truth: every
mount re-fetches the authoritative snapshot, and events are then merged
into that cache. Delivery is at-least-once and unordered, so every merge is
idempotent and status updates only ever move forward.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from standup_sync.domain.events import (
    EVENT_TYPES,
    SessionEvent,
    StatusChanged,
    TimerStarted,
    TimerStopped,
    UserJoined,
    UserLeft,
    channel_name,
    parse_event,
)
from standup_sync.domain.sessions import (
    ParticipantSnapshot,
    ParticipantStatus,
    SessionSnapshot,
    SessionStatus,
)
from standup_sync.errors import StandupError
from standup_sync.services.broadcaster import EventHandler, RealtimeChannel
from standup_sync.services.retry import RETRY_DELAYS, call_with_retry
from standup_sync.services.sessions import utcnow
from standup_sync.services.state_machine import status_rank

_logger = logging.getLogger(__name__)


class ReconcilerState(BaseModel):
    """Everything a client remembers about its current session."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    session: SessionSnapshot | None = None
    user_id: str | None = None
    user_name: str | None = None
    timer_running: bool = False


Listener = Callable[[ReconcilerState], None]


class SessionSource(Protocol):
    """Reads the authoritative session snapshot."""

    async def fetch_session(self, session_id: str) -> SessionSnapshot | None:
        """Return the current snapshot, or None when it no longer exists."""


class ClientStorage(Protocol):
    """Durable local storage for the reconciler state."""

    def load(self) -> ReconcilerState | None:
        """Return the last saved state, if any."""

    def save(self, state: ReconcilerState) -> None:
        """Persist the state."""

    def clear(self) -> None:
        """Forget any saved state."""


@dataclass
class SessionReconciler:
    """Merges broadcast events into a locally cached session view."""

    source: SessionSource
    channel: RealtimeChannel
    storage: ClientStorage
    clock: Callable[[], datetime] = utcnow
    retry_delays: Sequence[float] = RETRY_DELAYS
    state: ReconcilerState = field(default_factory=ReconcilerState)
    _listeners: list[Listener] = field(default_factory=list, init=False)
    _channel_name: str | None = field(default=None, init=False)

    @property
    def is_leader(self) -> bool:
        """Return True when the local user leads the cached session."""
        session = self.state.session
        return (
            session is not None
            and self.state.user_id is not None
            and session.leader_id == self.state.user_id
        )

    def restore(self) -> ReconcilerState:
        """Load the last persisted state before any network round-trip."""
        saved = self.storage.load()
        if saved is not None:
            self.state = saved
            self._notify()
        return self.state

    def identify(self, user_id: str, user_name: str) -> None:
        """Record who the local user is after creating or joining."""
        self._update(
            self.state.model_copy(update={"user_id": user_id, "user_name": user_name})
        )

    async def mount(self, session_id: str) -> SessionSnapshot | None:
        """Re-fetch the session and subscribe to its events.

        Call again after a reconnect; the fetch always replaces the cache.
        """
        snapshot = await call_with_retry(
            lambda: self.source.fetch_session(session_id),
            action="fetch session",
            delays=self.retry_delays,
        )
        if snapshot is None:
            _logger.info("Session no longer exists, clearing local state")
            await self.leave_session()
            return None
        self._update(
            self.state.model_copy(
                update={"session": snapshot, "timer_running": snapshot.timer_running}
            )
        )
        name = channel_name(session_id)
        if self._channel_name is not None and self._channel_name != name:
            await self.channel.unsubscribe(self._channel_name)
        handlers = self._handlers()
        await call_with_retry(
            lambda: self.channel.subscribe(name, handlers),
            action="subscribe to session events",
            delays=self.retry_delays,
        )
        self._channel_name = name
        return snapshot

    async def leave_session(self) -> None:
        """Forget the session locally; the server roster is left untouched."""
        if self._channel_name is not None:
            await self.channel.unsubscribe(self._channel_name)
            self._channel_name = None
        self.state = ReconcilerState()
        self.storage.clear()
        self._notify()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a state listener and return a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def apply_event(self, event: SessionEvent) -> bool:
        """Merge one event into the cache, returning whether anything changed."""
        session = self.state.session
        if session is None:
            return False
        if isinstance(event, (TimerStarted, TimerStopped)):
            running = isinstance(event, TimerStarted)
            if self.state.timer_running == running:
                return False
            updated = session.model_copy(update={"timer_running": running})
            if running:
                updated = _promote(updated)
            self._update(
                self.state.model_copy(
                    update={"session": updated, "timer_running": running}
                )
            )
            return True

        updated = _merge(session, event, self.clock)
        if updated is None:
            return False
        self._update(self.state.model_copy(update={"session": updated}))
        return True

    def _handlers(self) -> dict[str, EventHandler]:
        handlers: dict[str, EventHandler] = {}
        for event_name in EVENT_TYPES:
            handlers[event_name] = lambda payload, name=event_name: self._receive(
                name, payload
            )
        return handlers

    def _receive(self, event_name: str, payload: dict[str, object]) -> None:
        try:
            event = parse_event(event_name, payload)
        except StandupError:
            _logger.warning("Ignoring malformed %s event", event_name)
            return
        self.apply_event(event)

    def _update(self, state: ReconcilerState) -> None:
        self.state = state
        self.storage.save(state)
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self.state)


def _merge(
    session: SessionSnapshot,
    event: SessionEvent,
    clock: Callable[[], datetime],
) -> SessionSnapshot | None:
    """Return the session with ``event`` applied, or None for a no-op."""
    if isinstance(event, UserJoined):
        if session.participant(event.participant_id) is not None:
            return None
        participant = ParticipantSnapshot(
            id=event.participant_id,
            name=event.participant_name,
            joined_at=clock(),
            status=ParticipantStatus.WAITING,
        )
        return session.model_copy(
            update={"participants": (*session.participants, participant)}
        )

    if isinstance(event, UserLeft):
        if session.participant(event.participant_id) is None:
            return None
        return session.model_copy(
            update={
                "participants": tuple(
                    participant
                    for participant in session.participants
                    if participant.id != event.participant_id
                )
            }
        )

    if isinstance(event, StatusChanged):
        current = session.participant(event.participant_id)
        if current is None or status_rank(event.status) <= status_rank(current.status):
            return None
        participants = tuple(
            participant.model_copy(update={"status": event.status})
            if participant.id == event.participant_id
            else participant
            for participant in session.participants
        )
        return _promote(session.model_copy(update={"participants": participants}))

    return None


def _promote(session: SessionSnapshot) -> SessionSnapshot:
    if session.status == SessionStatus.WAITING:
        return session.model_copy(update={"status": SessionStatus.IN_PROGRESS})
    return session
