"""Error taxonomy shared by services and the HTTP edge."""

from enum import StrEnum


class ErrorCategory(StrEnum):
    """Coarse error groups that decide retry and surfacing behaviour."""

    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    AUTHORIZATION = "AUTHORIZATION"
    CAPACITY = "CAPACITY"
    TRANSIENT_UPSTREAM = "TRANSIENT_UPSTREAM"
    CONFLICT = "CONFLICT"


class ErrorCode(StrEnum):
    """Machine-readable error codes returned to callers."""

    VALIDATION = "VALIDATION"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INVALID_CODE = "INVALID_CODE"
    EXPIRED_CODE = "EXPIRED_CODE"
    NOT_FOUND = "NOT_FOUND"
    EXPIRED = "EXPIRED"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    PASSWORD_REQUIRED = "PASSWORD_REQUIRED"
    INVALID_PASSWORD = "INVALID_PASSWORD"
    FORBIDDEN = "FORBIDDEN"
    SESSION_FULL = "SESSION_FULL"
    RATE_LIMITED = "RATE_LIMITED"
    TRANSIENT_UPSTREAM = "TRANSIENT_UPSTREAM"
    CONFLICT = "CONFLICT"


_CATEGORIES: dict[ErrorCode, ErrorCategory] = {
    ErrorCode.VALIDATION: ErrorCategory.VALIDATION,
    ErrorCode.INVALID_TRANSITION: ErrorCategory.VALIDATION,
    ErrorCode.INVALID_CODE: ErrorCategory.VALIDATION,
    ErrorCode.EXPIRED_CODE: ErrorCategory.VALIDATION,
    ErrorCode.NOT_FOUND: ErrorCategory.NOT_FOUND,
    ErrorCode.EXPIRED: ErrorCategory.NOT_FOUND,
    ErrorCode.UNAUTHENTICATED: ErrorCategory.AUTHORIZATION,
    ErrorCode.PASSWORD_REQUIRED: ErrorCategory.AUTHORIZATION,
    ErrorCode.INVALID_PASSWORD: ErrorCategory.AUTHORIZATION,
    ErrorCode.FORBIDDEN: ErrorCategory.AUTHORIZATION,
    ErrorCode.SESSION_FULL: ErrorCategory.CAPACITY,
    ErrorCode.RATE_LIMITED: ErrorCategory.CAPACITY,
    ErrorCode.TRANSIENT_UPSTREAM: ErrorCategory.TRANSIENT_UPSTREAM,
    ErrorCode.CONFLICT: ErrorCategory.CONFLICT,
}

_DEFAULT_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION: "The request is invalid.",
    ErrorCode.INVALID_TRANSITION: "That status change is not allowed.",
    ErrorCode.INVALID_CODE: "Invalid or expired verification code.",
    ErrorCode.EXPIRED_CODE: "Code expired.",
    ErrorCode.NOT_FOUND: "Session not found or expired.",
    ErrorCode.EXPIRED: "Session has expired.",
    ErrorCode.UNAUTHENTICATED: "Please verify your email address first.",
    ErrorCode.PASSWORD_REQUIRED: "This session is password protected.",
    ErrorCode.INVALID_PASSWORD: "Incorrect password.",
    ErrorCode.FORBIDDEN: "Only the session leader can do that.",
    ErrorCode.SESSION_FULL: "Session is full.",
    ErrorCode.RATE_LIMITED: "Too many requests. Please wait before trying again.",
    ErrorCode.TRANSIENT_UPSTREAM: (
        "Something went wrong on our side. Please try again in a moment."
    ),
    ErrorCode.CONFLICT: "The session changed while saving. Please try again.",
}


class StandupError(Exception):
    """Domain error carrying a code and a human-readable message."""

    def __init__(self, code: ErrorCode, message: str | None = None) -> None:
        self.code = code
        self.message = message or _DEFAULT_MESSAGES[code]
        super().__init__(self.message)

    @property
    def category(self) -> ErrorCategory:
        """Return the category for this error's code."""
        return _CATEGORIES[self.code]

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"StandupError({self.code.value!r}, {self.message!r})"


class UpstreamError(Exception):
    """Internal failure talking to the store, channel or a remote provider."""
