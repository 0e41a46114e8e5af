"""OpenAI client for transcription and summarization."""

from dataclasses import dataclass

from openai import APIError, AsyncOpenAI

from standup_sync.domain.summaries import Transcription
from standup_sync.errors import UpstreamError

UNKNOWN_LANGUAGE = "en"


@dataclass
class OpenAIAIClient:
    """Speech-to-text and summary client backed by the OpenAI API."""

    client: AsyncOpenAI

    @classmethod
    def create(cls, api_key: str, timeout: float = 60.0) -> "OpenAIAIClient":
        """Create an OpenAI client."""
        return cls(client=AsyncOpenAI(api_key=api_key, timeout=timeout))

    async def transcribe(
        self, *, model: str, audio: bytes, filename: str
    ) -> Transcription:
        """Transcribe a recording with language detection."""
        try:
            response = await self.client.audio.transcriptions.create(
                model=model,
                file=(filename, audio),
                response_format="verbose_json",
            )
        except APIError as exc:
            raise UpstreamError(f"OpenAI transcription failed: {exc}") from exc
        return Transcription(
            text=response.text.strip(),
            language=getattr(response, "language", None) or UNKNOWN_LANGUAGE,
        )

    async def summarize(self, *, model: str, instructions: str, prompt: str) -> str:
        """Call the Responses API and return its text output."""
        try:
            response = await self.client.responses.create(
                model=model,
                instructions=instructions,
                input=prompt,
                store=False,
            )
        except APIError as exc:
            raise UpstreamError(f"OpenAI summarization failed: {exc}") from exc
        output_text = response.output_text
        if not output_text:
            raise UpstreamError("OpenAI returned an empty response")
        return output_text

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.close()
