"""Domain models for standup sessions."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class SessionStatus(StrEnum):
    """Session-level lifecycle status."""

    WAITING = "waiting"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    EXPIRED = "expired"


class ParticipantStatus(StrEnum):
    """Per-participant progress through the recording pipeline."""

    WAITING = "waiting"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"
    DONE = "done"


class _Record(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Participant(_Record):
    """Represents one member of a session."""

    id: str
    name: str
    joined_at: datetime
    status: ParticipantStatus = ParticipantStatus.WAITING
    transcript: str | None = None
    transcript_language: str | None = None
    identity: str | None = None


class Session(_Record):
    """Represents a persisted session record."""

    id: str
    created_at: datetime
    expires_at: datetime
    status: SessionStatus = SessionStatus.WAITING
    password_hash: str | None = None
    leader_id: str
    participants: tuple[Participant, ...]
    summary: str | None = None
    finished_at: datetime | None = None
    timer_running: bool = False
    version: int = 1

    def participant(self, participant_id: str) -> Participant | None:
        """Return a participant by id, if present."""
        for participant in self.participants:
            if participant.id == participant_id:
                return participant
        return None


class ParticipantSnapshot(_Record):
    """Public view of a participant."""

    id: str
    name: str
    joined_at: datetime
    status: ParticipantStatus
    transcript: str | None = None
    transcript_language: str | None = None


class SessionSnapshot(_Record):
    """Public view of a session, safe to send to any participant."""

    id: str
    created_at: datetime
    expires_at: datetime
    status: SessionStatus
    password_required: bool
    leader_id: str
    participants: tuple[ParticipantSnapshot, ...]
    summary: str | None = None
    finished_at: datetime | None = None
    timer_running: bool = False

    def participant(self, participant_id: str) -> ParticipantSnapshot | None:
        """Return a participant by id, if present."""
        for participant in self.participants:
            if participant.id == participant_id:
                return participant
        return None
