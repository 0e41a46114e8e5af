"""Real-time events fanned out to session subscribers."""

import json
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from standup_sync.domain.sessions import ParticipantStatus
from standup_sync.errors import ErrorCode, StandupError


class SessionEvent(BaseModel):
    """Base class for broadcast events."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    name: ClassVar[str]

    def payload(self) -> dict[str, object]:
        """Return the JSON-serializable wire payload."""
        return self.model_dump(mode="json", by_alias=True)


class UserJoined(SessionEvent):
    """A new participant was appended to the roster."""

    name: ClassVar[str] = "user-joined"

    participant_id: str
    participant_name: str = Field(alias="name")


class UserLeft(SessionEvent):
    """A participant left the roster."""

    name: ClassVar[str] = "user-left"

    participant_id: str


class TimerStarted(SessionEvent):
    """The leader started the shared timer."""

    name: ClassVar[str] = "timer-started"


class TimerStopped(SessionEvent):
    """The leader stopped the shared timer."""

    name: ClassVar[str] = "timer-stopped"


class StatusChanged(SessionEvent):
    """A participant advanced to a new status."""

    name: ClassVar[str] = "status-changed"

    participant_id: str
    status: ParticipantStatus


EVENT_TYPES: dict[str, type[SessionEvent]] = {
    event_type.name: event_type
    for event_type in (UserJoined, UserLeft, TimerStarted, TimerStopped, StatusChanged)
}


def channel_name(session_id: str) -> str:
    """Return the broadcast channel name for a session."""
    return f"session-{session_id}"


def parse_event(event_name: str, payload: dict[str, object]) -> SessionEvent:
    """Validate a raw wire event into a typed event."""
    event_type = EVENT_TYPES.get(event_name)
    if event_type is None:
        raise StandupError(ErrorCode.VALIDATION, f"Unknown event: {event_name}")
    try:
        return event_type.model_validate(payload)
    except ValidationError as exc:
        raise StandupError(
            ErrorCode.VALIDATION, f"Malformed {event_name} event payload"
        ) from exc


def encode_message(event_name: str, payload: dict[str, object]) -> str:
    """Serialize an event into the wire envelope."""
    return json.dumps({"event": event_name, "data": payload})


def decode_message(raw: str | bytes) -> tuple[str, dict[str, object]]:
    """Parse a wire envelope into its event name and payload."""
    try:
        message = json.loads(raw)
    except ValueError as exc:
        raise StandupError(ErrorCode.VALIDATION, "Malformed event message") from exc
    if not isinstance(message, dict):
        raise StandupError(ErrorCode.VALIDATION, "Malformed event message")
    event_name = message.get("event")
    payload = message.get("data")
    if not isinstance(event_name, str) or not isinstance(payload, dict):
        raise StandupError(ErrorCode.VALIDATION, "Malformed event message")
    return event_name, payload
