"""SendGrid email adapter."""

import logging
from dataclasses import dataclass

import httpx

from standup_sync.errors import UpstreamError

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"

_logger = logging.getLogger(__name__)


@dataclass
class HttpxSendGridClient:
    """Email client implemented with httpx against the SendGrid v3 API."""

    api_key: str
    from_email: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(cls, api_key: str, from_email: str) -> "HttpxSendGridClient":
        """Create a SendGrid client with a managed httpx session."""
        return cls(
            api_key=api_key,
            from_email=from_email,
            http_client=httpx.AsyncClient(),
        )

    async def send_email(self, to: str, subject: str, body: str) -> None:
        """Send a plain-text email."""
        payload: dict[str, object] = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.from_email},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            response = await self.http_client.post(
                SENDGRID_URL, json=payload, headers=headers, timeout=10
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise UpstreamError(f"SendGrid request failed: {exc}") from exc

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()


@dataclass
class LoggingEmailClient:
    """Development email client that writes messages to the log."""

    async def send_email(self, to: str, subject: str, body: str) -> None:
        """Log the email instead of sending it."""
        _logger.info("Email to %s: %s\n%s", to, subject, body)

    async def close(self) -> None:
        """Nothing to release."""
