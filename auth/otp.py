"""
auth/otp.py -- One-time code generation and validation.

Codes are drawn from the OS CSPRNG (secrets.token_bytes). Each character is
charset[byte % len(charset)]. For the 62-character alphanumeric charset this
is slightly non-uniform (256 is not a multiple of 62); the bias is known and
kept so generated codes stay reproducible for a given byte stream.

is_otp_valid() is the only place codes are compared. The empty-input and
expiry checks return early; the equality check itself goes through
hmac.compare_digest so response time does not leak how many leading
characters matched.
"""

from __future__ import annotations

import hmac
import secrets
from datetime import datetime, timedelta, timezone

from core.config import OtpCharset

DIGITS = "0123456789"
LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"

_CHARSETS = {
    OtpCharset.numeric: DIGITS,
    OtpCharset.alphanumeric: DIGITS + LETTERS,
}


def generate_otp(length: int = 6, charset: OtpCharset | str = OtpCharset.numeric) -> str:
    """Return a random code of `length` characters from the chosen charset."""
    if length <= 0:
        raise ValueError("OTP length must be positive")
    alphabet = _CHARSETS[OtpCharset(charset)]
    return "".join(alphabet[b % len(alphabet)] for b in secrets.token_bytes(length))


def expiry_from_now(minutes: int, now: datetime | None = None) -> str:
    """ISO 8601 UTC timestamp `minutes` from now, the format stores persist."""
    now = now or datetime.now(timezone.utc)
    return (now + timedelta(minutes=minutes)).isoformat()


def _as_utc(expiry: datetime | str | int | float) -> datetime | None:
    if isinstance(expiry, datetime):
        return expiry if expiry.tzinfo else expiry.replace(tzinfo=timezone.utc)
    if isinstance(expiry, (int, float)) and not isinstance(expiry, bool):
        try:
            return datetime.fromtimestamp(expiry, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(expiry, str):
        try:
            parsed = datetime.fromisoformat(expiry)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def is_otp_valid(
    stored: str | None,
    expiry: datetime | str | int | float | None,
    supplied: str | None,
    now: datetime | None = None,
) -> bool:
    """Return True only if the supplied code matches the stored, unexpired one.

    Never raises. Any missing input, unparseable expiry, or expired code gives
    False. Expiry may be a datetime (naive is treated as UTC), an ISO 8601
    string, or epoch seconds.
    """
    if not isinstance(stored, str) or not isinstance(supplied, str):
        return False
    if not stored or not supplied or expiry is None or expiry == "":
        return False
    expires_at = _as_utc(expiry)
    if expires_at is None:
        return False
    now = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    if now > expires_at:
        return False
    a = stored.encode("utf-8")
    b = supplied.encode("utf-8")
    return len(a) == len(b) and hmac.compare_digest(a, b)
