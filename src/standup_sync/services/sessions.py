"""Session state machine applied against the session store."""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from standup_sync.domain.events import StatusChanged, TimerStarted, TimerStopped
from standup_sync.domain.sessions import ParticipantStatus, Session, SessionSnapshot
from standup_sync.errors import ErrorCode, StandupError
from standup_sync.services import state_machine
from standup_sync.services.broadcaster import BroadcastService
from standup_sync.services.retry import RETRY_DELAYS, call_with_retry

MAX_WRITE_ATTEMPTS = 3

_logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    """Key-value persistence for session records with absolute expiry."""

    async def create(self, session: Session) -> bool:
        """Store a new session expiring at ``expires_at``; False if the id exists."""

    async def get(self, session_id: str) -> Session | None:
        """Return a session by id, or None once absent or expired."""

    async def replace(self, session: Session, expected_version: int) -> bool:
        """Overwrite a session if the stored version still matches."""

    async def delete(self, session_id: str) -> bool:
        """Delete a session; False if it was already absent."""


def utcnow() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(tz=UTC)


@dataclass
class SessionService:
    """Applies state machine transitions with optimistic concurrency.

    Each mutation is one read-modify-write cycle against a single key. The
    write is conditional on the version that was read; a concurrent writer
    makes it fail, and the cycle is replayed on the fresh record up to
    ``MAX_WRITE_ATTEMPTS`` times before ``CONFLICT`` is raised. The stored
    ``expires_at`` is always kept, so activity never extends a session.
    """

    store: SessionStore
    broadcasts: BroadcastService
    clock: Callable[[], datetime] = utcnow
    retry_delays: Sequence[float] = RETRY_DELAYS

    async def get_session(self, session_id: str) -> Session:
        """Return the stored session or raise ``NOT_FOUND``."""
        session = await self._load(session_id)
        if session is None:
            raise StandupError(ErrorCode.NOT_FOUND)
        return session

    async def get_snapshot(self, session_id: str) -> SessionSnapshot:
        """Return the public view of a live session."""
        session = await self.get_session(session_id)
        now = self.clock()
        if state_machine.is_expired(session, now):
            raise StandupError(ErrorCode.EXPIRED)
        return state_machine.to_snapshot(session, now)

    async def update_participant_status(
        self,
        session_id: str,
        participant_id: str,
        status: ParticipantStatus,
        actor: str | None = None,
    ) -> Session:
        """Advance a participant; stale or repeated updates are no-ops.

        ``actor`` is the caller's verified identity and must own the
        participant. Internal callers that already checked it pass None.
        """

        def change(session: Session) -> Session:
            state_machine.authorize_participant(session, participant_id, actor)
            return state_machine.advance_participant(session, participant_id, status)

        before, after = await self.mutate(session_id, change)
        if _status_of(before, participant_id) != _status_of(after, participant_id):
            await self.broadcasts.publish(
                session_id,
                StatusChanged(participant_id=participant_id, status=status),
            )
        return after

    async def attach_transcript(
        self,
        session_id: str,
        participant_id: str,
        text: str,
        language: str,
        actor: str | None = None,
    ) -> Session:
        """Attach a transcript; later calls overwrite earlier ones."""

        def change(session: Session) -> Session:
            state_machine.authorize_participant(session, participant_id, actor)
            return state_machine.record_transcript(
                session, participant_id, text, language
            )

        before, after = await self.mutate(session_id, change)
        if _status_of(before, participant_id) != _status_of(after, participant_id):
            await self.broadcasts.publish(
                session_id,
                StatusChanged(
                    participant_id=participant_id, status=ParticipantStatus.DONE
                ),
            )
        return after

    async def set_summary(self, session_id: str, text: str) -> tuple[Session, bool]:
        """Store the final summary and complete the session.

        Returns the session and whether this call stored the summary. A
        session that already has one is left untouched.
        """
        now = self.clock()
        before, after = await self.mutate(
            session_id,
            lambda session: state_machine.record_summary(session, text, now),
        )
        return after, before.summary is None

    async def start_timer(
        self, session_id: str, leader_id: str, actor: str | None = None
    ) -> Session:
        """Start the shared timer; leader only."""
        return await self._set_timer(session_id, leader_id, actor, running=True)

    async def stop_timer(
        self, session_id: str, leader_id: str, actor: str | None = None
    ) -> Session:
        """Stop the shared timer; leader only."""
        return await self._set_timer(session_id, leader_id, actor, running=False)

    async def delete_session(
        self, session_id: str, leader_id: str, actor: str | None = None
    ) -> None:
        """Terminate a session early; leader only."""
        session = await self.get_session(session_id)
        state_machine.authorize_leader(session, leader_id, actor)
        deleted = await call_with_retry(
            lambda: self.store.delete(session_id),
            action="delete session",
            delays=self.retry_delays,
        )
        if not deleted:
            raise StandupError(ErrorCode.NOT_FOUND)
        _logger.info("Session deleted by leader", extra={"session_id": session_id})

    async def mutate(
        self, session_id: str, change: Callable[[Session], Session]
    ) -> tuple[Session, Session]:
        """Run one read-modify-write cycle and return (before, after).

        ``change`` must be pure: it may run more than once when a concurrent
        write wins the race. Unchanged sessions are not written back.
        """
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            current = await self.get_session(session_id)
            if state_machine.is_expired(current, self.clock()):
                raise StandupError(ErrorCode.EXPIRED)
            changed = change(current)
            if changed == current:
                return current, current
            updated = changed.model_copy(
                update={
                    "version": current.version + 1,
                    "expires_at": current.expires_at,
                }
            )
            written = await call_with_retry(
                lambda updated=updated, current=current: self.store.replace(
                    updated, expected_version=current.version
                ),
                action="write session",
                delays=self.retry_delays,
            )
            if written:
                return current, updated
            _logger.info(
                "Session write conflict (attempt %s/%s)",
                attempt,
                MAX_WRITE_ATTEMPTS,
                extra={"session_id": session_id},
            )
        raise StandupError(ErrorCode.CONFLICT)

    async def _set_timer(
        self, session_id: str, leader_id: str, actor: str | None, *, running: bool
    ) -> Session:
        def change(session: Session) -> Session:
            state_machine.authorize_leader(session, leader_id, actor)
            return state_machine.set_timer(session, running)

        before, after = await self.mutate(session_id, change)
        if before.timer_running != after.timer_running:
            event = TimerStarted() if running else TimerStopped()
            await self.broadcasts.publish(session_id, event)
        return after

    async def _load(self, session_id: str) -> Session | None:
        return await call_with_retry(
            lambda: self.store.get(session_id),
            action="read session",
            delays=self.retry_delays,
        )


def _status_of(session: Session, participant_id: str) -> ParticipantStatus | None:
    participant = session.participant(participant_id)
    return participant.status if participant else None
