"""Standup summaries: generation, parsing and delivery."""

import logging
import re
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from pydantic import ValidationError

from standup_sync.domain.sessions import Session
from standup_sync.domain.summaries import (
    ParsedSummary,
    ParticipantSummary,
    SummarySections,
    TranscriptEntry,
)
from standup_sync.errors import ErrorCode, StandupError, UpstreamError
from standup_sync.services import state_machine
from standup_sync.services.credentials import EmailClient
from standup_sync.services.retry import RETRY_DELAYS, call_with_retry
from standup_sync.services.sessions import SessionService

DEFAULT_LANGUAGE = "en"

_SECTION_MARKERS: tuple[tuple[str, str, re.Pattern[str]], ...] = (
    ("yesterday", "✅", re.compile(r"^✅\s*Yesterday\s*:?\s*", re.I)),
    ("today", "\U0001f3af", re.compile(r"^\U0001f3af\s*Today\s*:?\s*", re.I)),
    ("blockers", "\U0001f6ab", re.compile(r"^\U0001f6ab\s*Blockers?\s*:?\s*", re.I)),
    (
        "action_items",
        "\U0001f4cc",
        re.compile(r"^\U0001f4cc\s*Team\s*Action\s*Items?\s*:?\s*", re.I),
    ),
    ("other", "\U0001f4dd", re.compile(r"^\U0001f4dd\s*Other\s*:?\s*", re.I)),
)
_HEADER_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^#+\s*([^:*#]+?)\s*:?$"),
    re.compile(r"^\*\*([^:*]+?):?\*\*\s*:?$"),
    re.compile(r"^([^:*#\-•][^:*]*?):$"),
)
SECTION_INSTRUCTIONS = (
    "You are a professional standup meeting summarizer. Extract key "
    "information from one participant's standup update and return ONLY a "
    "JSON object with these fields, omitting any without content:\n"
    '{"yesterday": "What they completed yesterday", '
    '"today": "What they plan to do today", '
    '"blockers": "Any blockers or challenges", '
    '"actionItems": "Any actions needed from the team", '
    '"other": "Any other important information"}\n'
    "Be concise. Return only valid JSON, no additional text."
)
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")
_EMAIL_LABELS = {
    "yesterday": "Yesterday",
    "today": "Today",
    "blockers": "Blockers",
    "action_items": "Team action items",
    "other": "Other",
}

_logger = logging.getLogger(__name__)


class SummaryClient(Protocol):
    """Interface for LLM summarization."""

    async def summarize(self, *, model: str, instructions: str, prompt: str) -> str:
        """Return the model's text answer."""


@dataclass
class SummaryService:
    """Summarizes a finished standup and emails the result."""

    client: SummaryClient
    sessions: SessionService
    model: str
    email_client: EmailClient | None = None
    retry_delays: Sequence[float] = RETRY_DELAYS

    async def finish_session(
        self, session_id: str, leader_id: str, actor: str | None = None
    ) -> ParsedSummary:
        """Summarize all transcripts, store the summary and notify participants.

        A session is summarized once. Finishing it again returns the stored
        summary without calling the model or sending email.
        """
        session = await self.sessions.get_session(session_id)
        state_machine.authorize_leader(session, leader_id, actor)
        if session.summary is not None:
            return parse_summary(session.summary)
        transcripts = collect_transcripts(session)
        if not transcripts:
            raise StandupError(
                ErrorCode.VALIDATION, "At least one transcript is required"
            )
        instructions = summary_instructions(dominant_language(transcripts))
        prompt = format_transcripts(transcripts)
        text = await call_with_retry(
            lambda: self.client.summarize(
                model=self.model, instructions=instructions, prompt=prompt
            ),
            action="summarize transcripts",
            delays=self.retry_delays,
        )
        if not text.strip():
            raise StandupError(ErrorCode.TRANSIENT_UPSTREAM)
        updated, stored = await self.sessions.set_summary(session_id, text)
        parsed = parse_summary(updated.summary or text)
        if not stored:
            _logger.info(
                "Session already summarized", extra={"session_id": session_id}
            )
            return parsed
        _logger.info(
            "Session finished: transcripts=%s participants=%s",
            len(transcripts),
            len(parsed.participants),
        )
        await self._deliver(updated, parsed)
        return parsed

    async def summarize_participant(
        self, session_id: str, participant_id: str, actor: str | None = None
    ) -> SummarySections:
        """Extract standup sections from one transcript for live display.

        Nothing is stored; the final summary comes from ``finish_session``.
        """
        session = await self.sessions.get_session(session_id)
        participant = state_machine.authorize_participant(
            session, participant_id, actor
        )
        if not participant.transcript:
            raise StandupError(ErrorCode.VALIDATION, "No transcript to summarize")
        transcript = participant.transcript
        return await call_with_retry(
            lambda: self._extract_sections(transcript),
            action="summarize transcript",
            delays=self.retry_delays,
        )

    async def _extract_sections(self, transcript: str) -> SummarySections:
        text = await self.client.summarize(
            model=self.model,
            instructions=SECTION_INSTRUCTIONS,
            prompt=transcript,
        )
        try:
            return SummarySections.model_validate_json(_strip_code_fence(text))
        except ValidationError as exc:
            raise UpstreamError("Summary sections were not valid JSON") from exc

    async def _deliver(self, session: Session, summary: ParsedSummary) -> None:
        if self.email_client is None:
            _logger.info("Email delivery not configured, skipping summary emails")
            return
        email_client = self.email_client
        body = format_summary_email(summary)
        for participant in session.participants:
            if not participant.identity:
                continue
            try:
                await call_with_retry(
                    lambda to=participant.identity: email_client.send_email(
                        to, "Your standup summary", body
                    ),
                    action="send summary email",
                    delays=self.retry_delays,
                )
            except StandupError:
                _logger.warning(
                    "Summary email failed",
                    extra={"participant_id": participant.id},
                )


def collect_transcripts(session: Session) -> list[TranscriptEntry]:
    """Return transcripts in join order, skipping participants without one."""
    return [
        TranscriptEntry(
            participant_name=participant.name,
            text=participant.transcript,
            language=participant.transcript_language,
        )
        for participant in session.participants
        if participant.transcript
    ]


def dominant_language(transcripts: list[TranscriptEntry]) -> str:
    """Return the most common transcript language."""
    counts = Counter(entry.language for entry in transcripts if entry.language)
    if not counts:
        return DEFAULT_LANGUAGE
    return counts.most_common(1)[0][0]


def summary_instructions(language: str) -> str:
    """System instructions for the summarizer."""
    return (
        "You are a professional meeting summarizer. Extract key information "
        "from the standup meeting transcripts and format it clearly in "
        f"{language}.\n\n"
        "For each participant, write their name on its own line as "
        "**Name**: and then extract:\n"
        "✅ Yesterday: What they completed yesterday\n"
        "\U0001f3af Today: What they plan to do today\n"
        "\U0001f6ab Blockers: Any blockers or challenges\n"
        "\U0001f4cc Team Action Items: Any actions needed from the team\n"
        "\U0001f4dd Other: Anything important that fits none of the above\n\n"
        "Include all information provided, even if it goes into Other."
    )


def format_transcripts(transcripts: list[TranscriptEntry]) -> str:
    """Join transcripts into one prompt, one block per participant."""
    return "\n\n---\n\n".join(
        f"{entry.participant_name}:\n{entry.text}" for entry in transcripts
    )


def parse_summary(text: str) -> ParsedSummary:
    """Split summary text into per-participant standup sections.

    Expects a name header per participant (``**Alice**:``, ``## Alice`` or
    ``Alice:``) followed by emoji-marked section lines. Lines after a
    section marker are appended to that section until the next marker.
    """
    participants: list[ParticipantSummary] = []
    current_name: str | None = None
    sections: dict[str, str] = {}
    current_section: str | None = None

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        section = _match_section(stripped)
        if section is not None:
            current_section, content = section
            if content:
                sections[current_section] = content
            continue
        name = _match_header(stripped)
        if name is not None:
            if current_name is not None:
                participants.append(_participant(current_name, sections))
            current_name = name
            sections = {}
            current_section = None
            continue
        if current_name is not None and current_section is not None:
            existing = sections.get(current_section)
            sections[current_section] = (
                f"{existing}\n{stripped}" if existing else stripped
            )

    if current_name is not None:
        participants.append(_participant(current_name, sections))
    return ParsedSummary(raw_text=text, participants=participants)


def format_summary_email(summary: ParsedSummary) -> str:
    """Render a parsed summary as a plain-text email body."""
    if not summary.participants:
        return summary.raw_text
    blocks = []
    for participant in summary.participants:
        lines = [participant.name]
        for field, label in _EMAIL_LABELS.items():
            value = getattr(participant.sections, field)
            if value:
                lines.append(f"  {label}: {value}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def _participant(name: str, sections: dict[str, str]) -> ParticipantSummary:
    return ParticipantSummary(name=name, sections=SummarySections(**sections))


def _match_section(line: str) -> tuple[str, str] | None:
    for field, marker, pattern in _SECTION_MARKERS:
        if line.startswith(marker):
            return field, pattern.sub("", line, count=1).strip()
    return None


def _match_header(line: str) -> str | None:
    for pattern in _HEADER_PATTERNS:
        match = pattern.match(line)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def _strip_code_fence(text: str) -> str:
    return _CODE_FENCE.sub("", text.strip())
