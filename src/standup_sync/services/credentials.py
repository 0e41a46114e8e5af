"""Email verification codes and identity tokens."""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import re
import secrets
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from standup_sync.domain.credentials import VerificationCodeRecord
from standup_sync.errors import ErrorCode, StandupError
from standup_sync.services.rate_limit import RateLimiter
from standup_sync.services.retry import RETRY_DELAYS, call_with_retry
from standup_sync.services.sessions import utcnow

GENERIC_SEND_MESSAGE = "Check your email for the verification code"
_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_CODE_PATTERN = re.compile(r"^\d{6}$")
_HOUR_SECONDS = 3600

_logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """Short-lived storage for pending verification codes."""

    async def save_code(
        self, code_hash: str, record: VerificationCodeRecord, ttl_seconds: int
    ) -> None:
        """Store a code record under its hash."""

    async def get_code(self, code_hash: str) -> VerificationCodeRecord | None:
        """Return a pending code record, if present."""

    async def delete_code(self, code_hash: str) -> None:
        """Remove a code record."""


class EmailClient(Protocol):
    """Outbound email delivery."""

    async def send_email(self, to: str, subject: str, body: str) -> None:
        """Send a plain-text email."""


def normalize_identity(identity: str) -> str:
    """Return the canonical form of an email identity."""
    return identity.strip().lower()


def is_valid_email(value: str) -> bool:
    """Basic email shape check."""
    return isinstance(value, str) and bool(_EMAIL_PATTERN.match(value))


@dataclass
class CredentialService:
    """Issues single-use email codes and the tokens that prove them.

    Codes are stored only as an HMAC of identity and code, so a leaked
    store reveals neither. A verified code is exchanged for a signed token
    that session creation and joining accept as proof of identity.
    """

    store: CredentialStore
    rate_limiter: RateLimiter
    email_client: EmailClient
    secret: str
    clock: Callable[[], datetime] = utcnow
    code_ttl_seconds: int = 300
    max_codes_per_hour: int = 10
    max_verify_attempts: int = 5
    verify_window_seconds: int = 900
    token_ttl: timedelta = timedelta(days=30)
    retry_delays: Sequence[float] = RETRY_DELAYS

    async def send_code(self, identity: str) -> str:
        """Send a verification code; the reply never reveals anything."""
        if not isinstance(identity, str) or not is_valid_email(identity.strip()):
            return GENERIC_SEND_MESSAGE
        email = normalize_identity(identity)
        await self.rate_limiter.hit(
            f"email:verification:count:{email}",
            limit=self.max_codes_per_hour,
            window_seconds=_HOUR_SECONDS,
            message="Too many verification code requests. Please try again later.",
        )
        code = f"{secrets.randbelow(1_000_000):06d}"
        await call_with_retry(
            lambda: self.store.save_code(
                self._code_hash(email, code),
                VerificationCodeRecord(identity=email, created_at=self.clock()),
                self.code_ttl_seconds,
            ),
            action="save verification code",
            delays=self.retry_delays,
        )
        try:
            await call_with_retry(
                lambda: self.email_client.send_email(
                    email,
                    "Your standup verification code",
                    f"Your verification code is {code}. "
                    f"It expires in {self.code_ttl_seconds // 60} minutes.",
                ),
                action="send verification email",
                delays=self.retry_delays,
            )
        except StandupError:
            _logger.warning("Verification email could not be delivered")
        return GENERIC_SEND_MESSAGE

    async def verify_code(self, identity: str, code: str) -> str:
        """Exchange a valid code for an identity token."""
        if not isinstance(identity, str) or not is_valid_email(identity.strip()):
            raise StandupError(ErrorCode.INVALID_CODE)
        email = normalize_identity(identity)
        attempts_key = f"email:verification:attempts:{email}"
        if await self.rate_limiter.is_exhausted(attempts_key, self.max_verify_attempts):
            raise StandupError(
                ErrorCode.RATE_LIMITED,
                "Too many failed attempts. Please try again later.",
            )
        cleaned = code.strip() if isinstance(code, str) else ""
        if not _CODE_PATTERN.match(cleaned):
            await self.rate_limiter.record(attempts_key, self.verify_window_seconds)
            raise StandupError(ErrorCode.INVALID_CODE)

        code_hash = self._code_hash(email, cleaned)
        record = await call_with_retry(
            lambda: self.store.get_code(code_hash),
            action="read verification code",
            delays=self.retry_delays,
        )
        if record is None or record.identity != email:
            await self.rate_limiter.record(attempts_key, self.verify_window_seconds)
            raise StandupError(ErrorCode.INVALID_CODE)

        await call_with_retry(
            lambda: self.store.delete_code(code_hash),
            action="delete verification code",
            delays=self.retry_delays,
        )
        age = self.clock() - record.created_at
        if age > timedelta(seconds=self.code_ttl_seconds):
            await self.rate_limiter.record(attempts_key, self.verify_window_seconds)
            raise StandupError(ErrorCode.EXPIRED_CODE)
        return self.issue_token(email)

    def issue_token(self, identity: str) -> str:
        """Sign a token proving possession of ``identity``."""
        issued_at = self.clock()
        payload = {
            "sub": identity,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self.token_ttl).timestamp()),
        }
        body = _b64(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
        return f"{body}.{self._sign(body)}"

    def verify_token(self, token: str) -> str:
        """Return the identity a token proves, or raise ``UNAUTHENTICATED``."""
        if not isinstance(token, str) or token.count(".") != 1:
            raise StandupError(ErrorCode.UNAUTHENTICATED)
        body, signature = token.split(".")
        expected = self._sign(body).encode("ascii")
        if not hmac.compare_digest(signature.encode("utf-8"), expected):
            raise StandupError(ErrorCode.UNAUTHENTICATED)
        try:
            payload = json.loads(_unb64(body))
        except (binascii.Error, ValueError):
            raise StandupError(ErrorCode.UNAUTHENTICATED) from None
        identity = payload.get("sub") if isinstance(payload, dict) else None
        expires = payload.get("exp") if isinstance(payload, dict) else None
        if not isinstance(identity, str) or not isinstance(expires, int):
            raise StandupError(ErrorCode.UNAUTHENTICATED)
        if self.clock().timestamp() > expires:
            raise StandupError(ErrorCode.UNAUTHENTICATED, "Verification has expired.")
        return identity

    def _code_hash(self, identity: str, code: str) -> str:
        message = f"{identity}:{code}".encode()
        return hmac.new(self.secret.encode(), message, hashlib.sha256).hexdigest()

    def _sign(self, body: str) -> str:
        digest = hmac.new(self.secret.encode(), body.encode(), hashlib.sha256).digest()
        return _b64(digest)


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _unb64(value: str) -> bytes:
    return base64.urlsafe_b64decode((value + "=" * (-len(value) % 4)).encode("ascii"))
