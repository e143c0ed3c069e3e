"""
auth/workflows.py -- Identity workflow engine.

AuthEngine owns every state transition of an identity:

  register                 Unregistered        -> Registered (unverified)
  send_verification_otp    Registered          -> VerificationPending
  verify_email             VerificationPending -> Verified
  login                    Registered|Verified -> AuthenticatedSession
  logout                   AuthenticatedSession -> Unauthenticated
  send_forgot_otp          any                 -> PasswordResetPending
  reset_password           PasswordResetPending -> PasswordReset

Error policy:
  Input problems raise InvalidInput before anything is read or written.
  Expected outcomes (Conflict, NotFound, InvalidCredentials, Forbidden,
  InvalidOrExpiredCode) are raised as-is. Anything else inside a workflow is
  logged, reported to on_error, and re-raised as a generic ServerError so
  internal detail never reaches a response body.

Existence disclosure:
  register and send_*_otp tell the caller whether an email exists (Conflict /
  NotFound). login and the code-redemption steps never do: unknown email and
  wrong password are the same InvalidCredentials, and login runs a dummy
  bcrypt check for unknown emails so timing matches [C1].

bcrypt runs in the threadpool so a login does not stall the event loop.
"""

from __future__ import annotations

import inspect
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi.concurrency import run_in_threadpool

from auth.errors import (
    AuthError,
    Conflict,
    Forbidden,
    InvalidCredentials,
    InvalidInput,
    InvalidOrExpiredCode,
    NotFound,
    ServerError,
)
from auth.hooks import AuthHooks, call_hook, report_error
from auth.models import Identity, LoginResult, Principal
from auth.otp import expiry_from_now, generate_otp, is_otp_valid
from auth.passwords import dummy_verify, hash_password, verify_password
from auth.sessions import SessionManager
from auth.store import IdentityRepository
from auth.tokens import TokenIssuer
from auth.validators import check_password, is_valid_email, normalize_email
from core.config import AuthMode, OtpPolicy, Settings
from mail.sender import Mailer

logger = logging.getLogger("lightauth.workflows")

_FAILURE_MESSAGES = {
    "register": "Registration failed.",
    "login": "Login failed.",
    "logout": "Failed to log out.",
    "verify": "Email verification failed.",
    "reset": "Password reset failed.",
}

# Login payload keys an on_login extension may not overwrite.
_RESERVED_CLAIMS = frozenset({"id", "role"})


def _portable_claims(extension: dict) -> bool:
    """True if the extension survives a strict JSON encode with string keys."""
    if not all(isinstance(key, str) for key in extension):
        return False
    try:
        json.dumps(extension, allow_nan=False)
    except (TypeError, ValueError):
        return False
    return True


class AuthEngine:
    """Registration, login, logout, email verification, and password reset."""

    def __init__(
        self,
        settings: Settings,
        repository: IdentityRepository,
        *,
        tokens: TokenIssuer,
        sessions: SessionManager | None,
        mailer: Mailer,
        hooks: AuthHooks | None = None,
    ) -> None:
        if settings.auth_mode is AuthMode.SESSION and sessions is None:
            raise ValueError("auth_mode=session requires a SessionManager")
        self.settings = settings
        self.repository = repository
        self.tokens = tokens
        self.sessions = sessions
        self.mailer = mailer
        self.hooks = hooks or AuthHooks()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _boundary(self, kind: str, request: Any = None) -> AsyncIterator[None]:
        """Pass AuthErrors through; turn anything else into ServerError."""
        try:
            yield
        except AuthError:
            raise
        except Exception as exc:
            logger.exception("%s workflow failed", kind)
            await report_error(self.hooks, kind, exc, request)
            raise ServerError(_FAILURE_MESSAGES[kind]) from exc

    async def _deliver(self, email: str, otp: str, purpose: str, url: str | None) -> None:
        send = self.mailer.send_otp
        if inspect.iscoroutinefunction(send):
            await send(email, otp, purpose, url)
        else:
            await run_in_threadpool(send, email, otp, purpose, url)

    def _require_email(self, email: str | None, message: str = "Valid email required.") -> str:
        normalized = normalize_email(email)
        if not is_valid_email(normalized):
            raise InvalidInput(message)
        return normalized

    @staticmethod
    def _require_otp(otp: str | None, policy: OtpPolicy) -> str:
        code = (otp or "").strip() if isinstance(otp, str) else ""
        if len(code) != policy.length:
            raise InvalidInput(f"OTP must be exactly {policy.length} characters.")
        return code

    def _require_password(self, password: str | None) -> str:
        error = check_password(password, self.settings.password_policy)
        if error:
            raise InvalidInput(error)
        return password  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Register
    # ------------------------------------------------------------------

    async def register(
        self,
        email: str | None,
        password: str | None,
        role: str | None = None,
        request: Any = None,
    ) -> Identity:
        """Create an unverified identity. Raises InvalidInput or Conflict."""
        email = self._require_email(email, "Invalid email format.")
        password = self._require_password(password)
        role = role or self.settings.default_role
        if role not in self.settings.roles:
            raise InvalidInput(f"Invalid role. Allowed: {', '.join(self.settings.roles)}")

        async with self._boundary("register", request):
            if self.repository.get_by_email(email) is not None:
                raise Conflict("User already exists.")
            digest = await run_in_threadpool(hash_password, password, self.settings.bcrypt_rounds)
            identity = Identity(email=email, role=role, password_hash=digest)
            identity.id = self.repository.create_identity(identity)

        logger.info("Registered identity %s (role=%s)", identity.id, role)
        await call_hook("on_register", self.hooks.on_register, identity)
        return identity

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    async def login(self, email: str | None, password: str | None, request: Any = None) -> LoginResult:
        """Verify credentials and issue the configured session artifact.

        The returned user payload is {id, email, role} plus whatever dict
        on_login returned (it cannot replace id or role). Everything except id
        and role also travels inside the token / session record as claims.
        """
        if not email or not password:
            raise InvalidInput("Email and password required.")
        email = normalize_email(email)
        rounds = self.settings.bcrypt_rounds

        async with self._boundary("login", request):
            identity = self.repository.get_by_email(email)
            if identity is None:
                await run_in_threadpool(dummy_verify, password, rounds)
                raise InvalidCredentials()
            if not await run_in_threadpool(verify_password, password, identity.password_hash):
                raise InvalidCredentials()
            if self.settings.require_email_verified and not identity.verified:
                raise Forbidden("Email not verified. Please verify before logging in.")

            user = identity.public()
            extension = await call_hook("on_login", self.hooks.on_login, identity)
            if isinstance(extension, dict) and not _portable_claims(extension):
                logger.warning("on_login returned claims that are not JSON serializable; ignoring them")
                extension = None
            if isinstance(extension, dict):
                user.update({k: v for k, v in extension.items() if k not in _RESERVED_CLAIMS})
            claims = {k: v for k, v in user.items() if k not in _RESERVED_CLAIMS}

            self.repository.update_last_login(identity.id)
            if self.settings.auth_mode is AuthMode.SESSION:
                handle = self.sessions.create(identity.id, identity.role, claims)
                result = LoginResult(user=user, expires_in=self.sessions.ttl_seconds, session_handle=handle)
            else:
                token = self.tokens.issue(identity.id, identity.role, claims=claims)
                result = LoginResult(user=user, expires_in=self.tokens.ttl_seconds, token=token)

        logger.info("Login for identity %s via %s", identity.id, self.settings.auth_mode.value)
        return result

    async def logout(
        self,
        principal: Principal | None,
        session_handle: str | None = None,
        request: Any = None,
    ) -> str:
        """End the caller's session; return the acknowledgement message.

        Session mode destroys the server record (store failure -> ServerError).
        JWT mode cannot revoke a token it never stored, so it only
        acknowledges; the client must discard the token.
        """
        if self.settings.auth_mode is AuthMode.SESSION:
            if session_handle:
                async with self._boundary("logout", request):
                    self.sessions.destroy(session_handle)
            await call_hook("on_logout", self.hooks.on_logout, principal)
            return "Logged out successfully."

        await call_hook("on_logout", self.hooks.on_logout, principal)
        return "Client should clear JWT manually."

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    async def send_verification_otp(self, email: str | None, request: Any = None) -> str:
        """Issue and mail a verification code. Raises NotFound for unknown email."""
        email = self._require_email(email)
        policy = self.settings.verify_otp_policy

        async with self._boundary("verify", request):
            identity = self.repository.get_by_email(email)
            if identity is None:
                raise NotFound("User not found.")
            otp = generate_otp(policy.length, policy.charset)
            self.repository.set_email_code(identity.id, otp, expiry_from_now(policy.expiry_minutes))
            await self._deliver(email, otp, "verify", policy.url)

        return "Verification OTP sent."

    async def verify_email(self, email: str | None, otp: str | None, request: Any = None) -> str:
        """Redeem a verification code. Raises InvalidOrExpiredCode on any mismatch."""
        email = self._require_email(email, "Email is required.")
        otp = self._require_otp(otp, self.settings.verify_otp_policy)

        async with self._boundary("verify", request):
            identity = self.repository.get_by_email(email)
            if identity is None or not is_otp_valid(identity.email_code, identity.email_code_expires, otp):
                raise InvalidOrExpiredCode()
            if not self.repository.consume_email_code(identity.id, identity.email_code):
                raise InvalidOrExpiredCode()
            identity.verified = True
            identity.email_code = None
            identity.email_code_expires = None

        logger.info("Identity %s verified its email", identity.id)
        await call_hook("on_verify", self.hooks.on_verify, identity)
        return "Email verified successfully."

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def send_forgot_otp(self, email: str | None, request: Any = None) -> str:
        """Issue and mail a reset code. Raises NotFound for unknown email."""
        email = self._require_email(email)
        policy = self.settings.reset_otp_policy

        async with self._boundary("reset", request):
            identity = self.repository.get_by_email(email)
            if identity is None:
                raise NotFound("User not found.")
            otp = generate_otp(policy.length, policy.charset)
            self.repository.set_reset_code(identity.id, otp, expiry_from_now(policy.expiry_minutes))
            await self._deliver(email, otp, "reset", policy.url)

        return "Password reset OTP sent."

    async def reset_password(
        self,
        email: str | None,
        otp: str | None,
        new_password: str | None,
        request: Any = None,
    ) -> str:
        """Redeem a reset code and rotate the password hash.

        No completion hook fires here, unlike verify_email.
        """
        email = self._require_email(email, "Email is required.")
        otp = self._require_otp(otp, self.settings.reset_otp_policy)
        new_password = self._require_password(new_password)

        async with self._boundary("reset", request):
            identity = self.repository.get_by_email(email)
            if identity is None or not is_otp_valid(identity.reset_code, identity.reset_code_expires, otp):
                raise InvalidOrExpiredCode()
            digest = await run_in_threadpool(hash_password, new_password, self.settings.bcrypt_rounds)
            if not self.repository.consume_reset_code(identity.id, identity.reset_code, digest):
                raise InvalidOrExpiredCode()

        logger.info("Identity %s reset its password", identity.id)
        return "Password reset successful."
