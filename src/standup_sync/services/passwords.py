"""Password hashing for protected sessions."""

import base64
import binascii
import hashlib
import hmac
import secrets

ALGORITHM = "pbkdf2_sha256"
ITERATIONS = 200_000
SALT_BYTES = 16
KEY_BYTES = 32
_MAX_ITERATIONS = 2_000_000


def hash_password(password: str, iterations: int = ITERATIONS) -> str:
    """Hash a password with a fresh random salt.

    The result encodes algorithm, iteration count, salt and derived key as
    ``pbkdf2_sha256$<iterations>$<salt>$<key>`` so verification needs no
    other state.
    """
    salt = secrets.token_bytes(SALT_BYTES)
    key = _derive(password, salt, iterations, KEY_BYTES)
    return "$".join((ALGORITHM, str(iterations), _b64(salt), _b64(key)))


def verify_password(password: str, encoded: str) -> bool:
    """Return True when ``password`` matches ``encoded``; never raises."""
    if not isinstance(password, str) or not isinstance(encoded, str):
        return False
    parts = encoded.split("$")
    if len(parts) != 4 or parts[0] != ALGORITHM:  # noqa: PLR2004
        return False
    _, raw_iterations, raw_salt, raw_key = parts
    if not raw_iterations.isdigit():
        return False
    iterations = int(raw_iterations)
    if iterations < 1 or iterations > _MAX_ITERATIONS:
        return False
    try:
        salt = _unb64(raw_salt)
        expected = _unb64(raw_key)
    except (binascii.Error, ValueError):
        return False
    if not salt or not expected:
        return False
    candidate = _derive(password, salt, iterations, len(expected))
    return hmac.compare_digest(candidate, expected)


def _derive(password: str, salt: bytes, iterations: int, length: int) -> bytes:
    return hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt, iterations, dklen=length
    )


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _unb64(value: str) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))
