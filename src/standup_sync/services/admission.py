"""Admission checks for creating and joining sessions."""

import html
import logging
import re
import secrets
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from standup_sync.domain.events import UserJoined
from standup_sync.domain.sessions import Participant, Session
from standup_sync.errors import ErrorCode, StandupError
from standup_sync.services import state_machine
from standup_sync.services.passwords import hash_password, verify_password
from standup_sync.services.retry import RETRY_DELAYS, call_with_retry
from standup_sync.services.sessions import SessionService, SessionStore, utcnow

SESSION_TTL = timedelta(hours=4)
MAX_PARTICIPANTS = 20
MAX_NAME_LENGTH = 50
MIN_PASSWORD_LENGTH = 8
SESSION_ID_BYTES = 32
PARTICIPANT_ID_BYTES = 16

_TAG_PATTERN = re.compile(r"<[^>]*>")
_FORBIDDEN_NAME_PATTERN = re.compile(r"[\x00-\x1f\x7f<>&\"']")
_CREATE_ATTEMPTS = 3

_logger = logging.getLogger(__name__)


class IdentityVerifier(Protocol):
    """Checks an opaque proof of a verified identity."""

    def verify_token(self, token: str) -> str:
        """Return the proven identity or raise ``UNAUTHENTICATED``."""


@dataclass(frozen=True)
class CreateSessionResult:
    """Outcome of creating a session."""

    session_id: str
    leader_id: str
    expires_at: datetime
    session: Session


@dataclass(frozen=True)
class JoinSessionResult:
    """Outcome of joining a session."""

    session_id: str
    participant_id: str
    created: bool
    session: Session


def normalize_display_name(raw: str) -> str:
    """Validate a display name and return its sanitized form."""
    if not isinstance(raw, str):
        raise StandupError(ErrorCode.VALIDATION, "Name is required")
    trimmed = raw.strip()
    if not trimmed:
        raise StandupError(ErrorCode.VALIDATION, "Name is required")
    if len(trimmed) > MAX_NAME_LENGTH or _FORBIDDEN_NAME_PATTERN.search(trimmed):
        raise StandupError(
            ErrorCode.VALIDATION,
            f"Name must be 1-{MAX_NAME_LENGTH} characters "
            "and contain no special characters",
        )
    return sanitize_text(trimmed)


def sanitize_text(value: str) -> str:
    """Strip markup and escape HTML-significant characters."""
    return html.escape(_TAG_PATTERN.sub("", value), quote=True).strip()


def new_session_id() -> str:
    """Return an unguessable session id (256 bits)."""
    return secrets.token_urlsafe(SESSION_ID_BYTES)


def new_participant_id() -> str:
    """Return an unguessable participant id (128 bits)."""
    return secrets.token_urlsafe(PARTICIPANT_ID_BYTES)


@dataclass
class AdmissionService:
    """Gatekeeps session creation and joining."""

    store: SessionStore
    sessions: SessionService
    identity_verifier: IdentityVerifier
    clock: Callable[[], datetime] = utcnow
    session_ttl: timedelta = SESSION_TTL
    max_participants: int = MAX_PARTICIPANTS
    retry_delays: Sequence[float] = RETRY_DELAYS

    async def create_session(
        self,
        leader_name: str,
        password: str | None,
        identity_proof: str,
    ) -> CreateSessionResult:
        """Create a session with the caller as its leader."""
        identity = self.identity_verifier.verify_token(identity_proof)
        name = normalize_display_name(leader_name)
        password_hash = None
        if password:
            if len(password) < MIN_PASSWORD_LENGTH:
                raise StandupError(
                    ErrorCode.VALIDATION,
                    f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
                )
            password_hash = hash_password(password)

        for _ in range(_CREATE_ATTEMPTS):
            now = self.clock()
            leader = Participant(
                id=new_participant_id(),
                name=name,
                joined_at=now,
                identity=identity,
            )
            session = Session(
                id=new_session_id(),
                created_at=now,
                expires_at=now + self.session_ttl,
                password_hash=password_hash,
                leader_id=leader.id,
                participants=(leader,),
            )
            created = await call_with_retry(
                lambda session=session: self.store.create(session),
                action="create session",
                delays=self.retry_delays,
            )
            if created:
                _logger.info(
                    "Session created",
                    extra={
                        "session_id": session.id,
                        "password_protected": password_hash is not None,
                    },
                )
                return CreateSessionResult(
                    session_id=session.id,
                    leader_id=leader.id,
                    expires_at=session.expires_at,
                    session=session,
                )
        raise StandupError(ErrorCode.CONFLICT, "Could not allocate a session id")

    async def join_session(
        self,
        session_id: str,
        participant_name: str,
        password: str | None,
        identity_proof: str,
    ) -> JoinSessionResult:
        """Join a session, returning the existing participant on a name match.

        The password is checked before the name match, so re-joining a
        protected session under an existing name still needs the password.
        """
        identity = self.identity_verifier.verify_token(identity_proof)
        name = normalize_display_name(participant_name)
        session = await self.sessions.get_session(session_id)
        if state_machine.is_expired(session, self.clock()):
            raise StandupError(ErrorCode.EXPIRED)
        _check_password(session, password)

        joined: dict[str, Participant] = {}

        def change(current: Session) -> Session:
            joined.clear()
            existing = state_machine.find_participant_by_name(current, name)
            if existing is not None:
                joined["existing"] = existing
                return current
            participant = joined.setdefault(
                "new",
                Participant(
                    id=new_participant_id(),
                    name=name,
                    joined_at=self.clock(),
                    identity=identity,
                ),
            )
            return state_machine.append_participant(
                current, participant, self.max_participants
            )

        _, after = await self.sessions.mutate(session_id, change)
        if "existing" in joined:
            return JoinSessionResult(
                session_id=session_id,
                participant_id=joined["existing"].id,
                created=False,
                session=after,
            )

        participant = joined["new"]
        _logger.info(
            "Participant joined",
            extra={"session_id": session_id, "participant_id": participant.id},
        )
        await self.sessions.broadcasts.publish(
            session_id,
            UserJoined(
                participant_id=participant.id, participant_name=participant.name
            ),
        )
        return JoinSessionResult(
            session_id=session_id,
            participant_id=participant.id,
            created=True,
            session=after,
        )


def _check_password(session: Session, password: str | None) -> None:
    if session.password_hash is None:
        return
    if not password:
        raise StandupError(ErrorCode.PASSWORD_REQUIRED)
    if not verify_password(password, session.password_hash):
        raise StandupError(ErrorCode.INVALID_PASSWORD)
