"""Domain models for email verification."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class VerificationCodeRecord:
    """A pending verification code, stored under the code's hash."""

    identity: str
    created_at: datetime
