"""Models for transcripts and standup summaries."""

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


@dataclass(frozen=True)
class Transcription:
    """Speech-to-text result for one recording."""

    text: str
    language: str


@dataclass(frozen=True)
class TranscriptEntry:
    """A participant's transcript handed to the summarizer."""

    participant_name: str
    text: str
    language: str | None = None


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SummarySections(_Model):
    """Standup sections extracted for one participant."""

    yesterday: str | None = None
    today: str | None = None
    blockers: str | None = None
    action_items: str | None = None
    other: str | None = None


class ParticipantSummary(_Model):
    """Summary sections attributed to one participant."""

    name: str
    sections: SummarySections


class ParsedSummary(_Model):
    """Structured summary plus the raw model output."""

    raw_text: str
    participants: list[ParticipantSummary]
