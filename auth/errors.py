"""
auth/errors.py -- Exception taxonomy for the auth workflows.

Every workflow failure is an AuthError subclass carrying a stable HTTP
status_code and machine-checkable error_code. api/main.py renders them into
the {"error": {"code", "message"}} envelope; nothing else needs to know the
mapping.

Token and session sub-errors (TokenExpired, TokenMalformed,
TokenInvalidSignature, SessionNotFound) are internal. The access guard
collapses them into Unauthorized before they reach a client.

Layer rule: no imports from api/, core/, or mail/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for auth errors mapped to HTTP responses."""

    status_code: int = 400
    error_code: str = "invalid"

    def __init__(self, message: str, *, error_code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code


class InvalidInput(AuthError):
    """Malformed or policy-violating input (400)."""

    status_code = 400
    error_code = "invalid"


class InvalidOrExpiredCode(InvalidInput):
    """One-time code rejected. Never says which check failed."""

    error_code = "invalid_or_expired"

    def __init__(self, message: str = "Invalid or expired OTP.") -> None:
        super().__init__(message)


class Conflict(AuthError):
    status_code = 409
    error_code = "conflict"


class Unauthorized(AuthError):
    status_code = 401
    error_code = "unauthorized"


class InvalidCredentials(Unauthorized):
    error_code = "invalid_credentials"

    def __init__(self, message: str = "Invalid credentials.") -> None:
        super().__init__(message)


class Forbidden(AuthError):
    status_code = 403
    error_code = "forbidden"


class NotFound(AuthError):
    status_code = 404
    error_code = "not_found"


class RateLimited(AuthError):
    status_code = 429
    error_code = "rate_limited"


class ServerError(AuthError):
    """Unexpected repository, store, or hashing failure (500).

    The message is always generic; the cause is logged, never returned.
    """

    status_code = 500
    error_code = "server_error"


# ---------------------------------------------------------------------------
# Internal proof-verification errors
# ---------------------------------------------------------------------------


class TokenError(Exception):
    """Base for bearer token verification failures."""

    reason = "invalid"


class TokenExpired(TokenError):
    reason = "expired"


class TokenMalformed(TokenError):
    reason = "malformed"


class TokenInvalidSignature(TokenError):
    reason = "invalid_signature"


class SessionNotFound(Exception):
    """No live session record for the presented handle."""
