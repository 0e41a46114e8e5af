"""Speech-to-text for participant recordings."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from standup_sync.domain.sessions import ParticipantStatus, Session
from standup_sync.domain.summaries import Transcription
from standup_sync.errors import ErrorCode, StandupError
from standup_sync.services.retry import RETRY_DELAYS, call_with_retry
from standup_sync.services.sessions import SessionService

MAX_AUDIO_BYTES = 25 * 1024 * 1024

_logger = logging.getLogger(__name__)


class TranscriptionClient(Protocol):
    """Interface for remote speech-to-text."""

    async def transcribe(
        self, *, model: str, audio: bytes, filename: str
    ) -> Transcription:
        """Return the recognised text and its language."""


@dataclass
class TranscriptionService:
    """Moves a participant through transcription and stores the result."""

    client: TranscriptionClient
    sessions: SessionService
    model: str
    retry_delays: Sequence[float] = RETRY_DELAYS

    async def transcribe_participant(
        self,
        session_id: str,
        participant_id: str,
        audio: bytes,
        filename: str = "recording.webm",
        actor: str | None = None,
    ) -> Session:
        """Transcribe a finished recording and attach it to the participant."""
        if not audio:
            raise StandupError(ErrorCode.VALIDATION, "Audio recording is empty")
        if len(audio) > MAX_AUDIO_BYTES:
            raise StandupError(ErrorCode.VALIDATION, "Audio recording is too large")
        session = await self.sessions.update_participant_status(
            session_id, participant_id, ParticipantStatus.TRANSCRIBING, actor=actor
        )
        participant = session.participant(participant_id)
        if participant is None or participant.status not in {
            ParticipantStatus.TRANSCRIBING,
            ParticipantStatus.DONE,
        }:
            raise StandupError(
                ErrorCode.INVALID_TRANSITION,
                "Finish recording before requesting a transcript",
            )
        result = await call_with_retry(
            lambda: self.client.transcribe(
                model=self.model, audio=audio, filename=filename
            ),
            action="transcribe recording",
            delays=self.retry_delays,
        )
        _logger.info(
            "Transcribed recording: chars=%s language=%s",
            len(result.text),
            result.language,
        )
        return await self.sessions.attach_transcript(
            session_id, participant_id, result.text, result.language, actor=actor
        )
