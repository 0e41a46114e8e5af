"""Pydantic models for the session and auth HTTP payloads."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from standup_sync.domain.sessions import ParticipantStatus, SessionSnapshot


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateSessionRequest(_Payload):
    """Create-session request body."""

    leader_name: str = Field(max_length=200)
    password: str | None = Field(default=None, max_length=256)


class JoinSessionRequest(_Payload):
    """Join-session request body."""

    participant_name: str = Field(max_length=200)
    password: str | None = Field(default=None, max_length=256)


class UpdateStatusRequest(_Payload):
    """Participant status update."""

    status: ParticipantStatus


class TranscriptRequest(_Payload):
    """Transcript supplied by the participant's client."""

    text: str = Field(min_length=1, max_length=100_000)
    language: str = Field(default="en", min_length=2, max_length=32)


class LeaderRequest(_Payload):
    """Body for leader-only operations."""

    leader_id: str = Field(min_length=1)


class CreateSessionResponse(_Payload):
    """Create-session response."""

    session_id: str
    leader_id: str
    expires_at: datetime
    session: SessionSnapshot


class JoinSessionResponse(_Payload):
    """Join-session response."""

    session_id: str
    participant_id: str
    created: bool
    session: SessionSnapshot


class SendCodeRequest(_Payload):
    """Verification-code request body."""

    email: str = Field(max_length=320)


class VerifyCodeRequest(_Payload):
    """Verification request body."""

    email: str = Field(max_length=320)
    code: str = Field(max_length=32)


class MessageResponse(_Payload):
    """Plain acknowledgement."""

    message: str


class TokenResponse(_Payload):
    """Identity token returned after verification."""

    token: str
