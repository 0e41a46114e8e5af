"""Pure session state machine.

Every function here takes a ``Session`` and returns a new one; nothing does
I/O. ``SessionService`` applies these inside a read-modify-write cycle
against the store, and the client reconciler reuses the status ladder.

Participant ladder: ``waiting < recording < transcribing < done``. Only a
single-rung advance is applied. Repeating or regressing a status is a
no-op, so clients can retry safely; jumping rungs is rejected.

Session ladder: ``waiting -> in-progress -> completed``. ``expired`` is
never stored and is derived from ``expires_at`` at read time.
"""

from datetime import datetime
from enum import Enum

from standup_sync.domain.sessions import (
    Participant,
    ParticipantSnapshot,
    ParticipantStatus,
    Session,
    SessionSnapshot,
    SessionStatus,
)
from standup_sync.errors import ErrorCode, StandupError

PARTICIPANT_LADDER: tuple[ParticipantStatus, ...] = (
    ParticipantStatus.WAITING,
    ParticipantStatus.RECORDING,
    ParticipantStatus.TRANSCRIBING,
    ParticipantStatus.DONE,
)


class Transition(Enum):
    """Outcome of comparing a requested status with the current one."""

    ADVANCE = "advance"
    NOOP = "noop"
    SKIP = "skip"


def status_rank(status: ParticipantStatus) -> int:
    """Return the position of a status on the participant ladder."""
    return PARTICIPANT_LADDER.index(status)


def classify_transition(
    current: ParticipantStatus, requested: ParticipantStatus
) -> Transition:
    """Classify a requested participant status change."""
    delta = status_rank(requested) - status_rank(current)
    if delta <= 0:
        return Transition.NOOP
    if delta == 1:
        return Transition.ADVANCE
    return Transition.SKIP


def is_expired(session: Session | SessionSnapshot, now: datetime) -> bool:
    """Return True once the wall clock has passed the session's expiry."""
    return now > session.expires_at


def effective_status(session: Session, now: datetime) -> SessionStatus:
    """Return the status a reader should observe at ``now``."""
    if is_expired(session, now):
        return SessionStatus.EXPIRED
    return session.status


def find_participant_by_name(session: Session, name: str) -> Participant | None:
    """Return the first participant whose name matches, ignoring case."""
    wanted = name.casefold()
    for participant in session.participants:
        if participant.name.casefold() == wanted:
            return participant
    return None


def append_participant(
    session: Session, participant: Participant, capacity: int
) -> Session:
    """Append a participant, refusing to grow past ``capacity``."""
    if session.participant(participant.id) is not None:
        return session
    if len(session.participants) >= capacity:
        raise StandupError(
            ErrorCode.SESSION_FULL,
            f"Session is full (maximum {capacity} participants)",
        )
    return session.model_copy(
        update={"participants": (*session.participants, participant)}
    )


def advance_participant(
    session: Session, participant_id: str, requested: ParticipantStatus
) -> Session:
    """Move a participant one rung forward; stale requests are ignored."""
    participant = _require_participant(session, participant_id)
    transition = classify_transition(participant.status, requested)
    if transition is Transition.NOOP:
        return session
    if transition is Transition.SKIP:
        raise StandupError(
            ErrorCode.INVALID_TRANSITION,
            f"Cannot move from {participant.status.value} to {requested.value}",
        )
    updated = participant.model_copy(update={"status": requested})
    return _promote(_replace_participant(session, updated))


def record_transcript(
    session: Session, participant_id: str, text: str, language: str
) -> Session:
    """Attach a transcript, finishing the participant if still transcribing."""
    participant = _require_participant(session, participant_id)
    if participant.status not in {
        ParticipantStatus.TRANSCRIBING,
        ParticipantStatus.DONE,
    }:
        raise StandupError(
            ErrorCode.INVALID_TRANSITION,
            "A transcript can only be attached while transcribing or when done",
        )
    updated = participant.model_copy(
        update={
            "status": ParticipantStatus.DONE,
            "transcript": text,
            "transcript_language": language,
        }
    )
    return _promote(_replace_participant(session, updated))


def record_summary(session: Session, text: str, now: datetime) -> Session:
    """Store the final summary and complete the session.

    A summary is written once; later calls leave the session unchanged.
    """
    if session.summary is not None:
        return session
    return session.model_copy(
        update={
            "summary": text,
            "finished_at": now,
            "status": SessionStatus.COMPLETED,
        }
    )


def authorize_participant(
    session: Session, participant_id: str, actor: str | None
) -> Participant:
    """Return the participant, checking it belongs to the verified ``actor``.

    ``actor`` is None only for trusted internal callers.
    """
    participant = _require_participant(session, participant_id)
    if actor is not None and participant.identity != actor:
        raise StandupError(
            ErrorCode.FORBIDDEN, "You can only act for your own participant"
        )
    return participant


def authorize_leader(session: Session, leader_id: str, actor: str | None) -> None:
    """Raise ``FORBIDDEN`` unless ``leader_id`` leads and belongs to ``actor``."""
    if session.leader_id != leader_id:
        raise StandupError(ErrorCode.FORBIDDEN)
    leader = session.participant(leader_id)
    if actor is not None and (leader is None or leader.identity != actor):
        raise StandupError(ErrorCode.FORBIDDEN)


def set_timer(session: Session, running: bool) -> Session:
    """Start or stop the shared timer."""
    if session.timer_running == running:
        return session
    updated = session.model_copy(update={"timer_running": running})
    return _promote(updated) if running else updated


def to_snapshot(session: Session, now: datetime) -> SessionSnapshot:
    """Build the public view of a session."""
    return SessionSnapshot(
        id=session.id,
        created_at=session.created_at,
        expires_at=session.expires_at,
        status=effective_status(session, now),
        password_required=session.password_hash is not None,
        leader_id=session.leader_id,
        participants=tuple(
            ParticipantSnapshot(
                id=participant.id,
                name=participant.name,
                joined_at=participant.joined_at,
                status=participant.status,
                transcript=participant.transcript,
                transcript_language=participant.transcript_language,
            )
            for participant in session.participants
        ),
        summary=session.summary,
        finished_at=session.finished_at,
        timer_running=session.timer_running,
    )


def _require_participant(session: Session, participant_id: str) -> Participant:
    participant = session.participant(participant_id)
    if participant is None:
        raise StandupError(ErrorCode.NOT_FOUND, "Participant not found in session")
    return participant


def _replace_participant(session: Session, updated: Participant) -> Session:
    participants = tuple(
        updated if participant.id == updated.id else participant
        for participant in session.participants
    )
    return session.model_copy(update={"participants": participants})


def _promote(session: Session) -> Session:
    """Move a waiting session to in-progress once anything starts."""
    if session.status == SessionStatus.WAITING:
        return session.model_copy(update={"status": SessionStatus.IN_PROGRESS})
    return session
