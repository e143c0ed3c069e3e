"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for LightAuth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead,
or pass a Settings instance into create_app().

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, auth_mode -> AUTH_MODE).

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved: SECRET_KEY policy, default role membership, and mail delivery
      requirements for the email workflows.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing and
       session cookie signing both rely on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

  [M8] bcrypt_rounds below 10 is rejected. The hasher must stay deliberately
       slow.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or mail/.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("lightauth.config")


class AuthMode(str, Enum):
    """Session artifact kind. Chosen once per deployment, never per request."""

    JWT = "jwt"
    SESSION = "session"


class OtpCharset(str, Enum):
    numeric = "numeric"
    alphanumeric = "alphanumeric"


@dataclass(frozen=True)
class PasswordPolicy:
    min_length: int = 8
    require_uppercase: bool = False
    require_lowercase: bool = False
    require_numbers: bool = False
    require_symbols: bool = False


@dataclass(frozen=True)
class OtpPolicy:
    """One-time code settings for a single workflow (verify or reset)."""

    length: int = 6
    charset: OtpCharset = OtpCharset.numeric
    expiry_minutes: int = 5
    url: str | None = None


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true). The
    model_validator enforces production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///lightauth.db"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    auth_mode: AuthMode = AuthMode.JWT
    base_route: str = "/auth"
    roles: list[str] = Field(default_factory=lambda: ["user"])
    default_role: str = "user"
    bcrypt_rounds: int = Field(default=12, ge=10, le=31)
    token_expire_seconds: int = Field(default=3600, gt=0)

    password_min_length: int = Field(default=8, ge=1)
    password_require_uppercase: bool = False
    password_require_lowercase: bool = False
    password_require_numbers: bool = False
    password_require_symbols: bool = False

    # ------------------------------------------------------------------
    # Sessions (auth_mode=session only)
    # ------------------------------------------------------------------

    session_ttl_seconds: int = Field(default=86400, gt=0)
    session_cookie_name: str = "lightauth_session"
    session_store: str = "memory"  # "memory" or "sql"
    session_purge_interval_seconds: int = Field(default=3600, ge=0)  # 0 disables the periodic sweep
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    rate_limit_storage_uri: str = "memory://"
    login_rate_max: int = Field(default=5, gt=0)
    login_rate_window_seconds: int = Field(default=15 * 60, gt=0)
    register_rate_max: int = Field(default=5, gt=0)
    register_rate_window_seconds: int = Field(default=60 * 60, gt=0)

    # ------------------------------------------------------------------
    # Email verification / forgot password
    # ------------------------------------------------------------------

    email_verification_enabled: bool = False
    email_verification_required_to_login: bool = False
    verify_otp_length: int = Field(default=6, ge=4, le=32)
    verify_otp_charset: OtpCharset = OtpCharset.numeric
    verify_otp_expiry_minutes: int = Field(default=5, gt=0)
    verify_url: str | None = None

    forgot_password_enabled: bool = False
    reset_otp_length: int = Field(default=6, ge=4, le=32)
    reset_otp_charset: OtpCharset = OtpCharset.numeric
    reset_otp_expiry_minutes: int = Field(default=5, gt=0)
    reset_url: str | None = None

    # ------------------------------------------------------------------
    # Mail
    # ------------------------------------------------------------------

    mail_from: str = "noreply@lightauth.local"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    allow_mock_emails: bool = False

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1", "*.localhost", "testserver"])
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost", "http://localhost:3000"])

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def password_policy(self) -> PasswordPolicy:
        return PasswordPolicy(
            min_length=self.password_min_length,
            require_uppercase=self.password_require_uppercase,
            require_lowercase=self.password_require_lowercase,
            require_numbers=self.password_require_numbers,
            require_symbols=self.password_require_symbols,
        )

    @property
    def verify_otp_policy(self) -> OtpPolicy:
        return OtpPolicy(
            length=self.verify_otp_length,
            charset=self.verify_otp_charset,
            expiry_minutes=self.verify_otp_expiry_minutes,
            url=self.verify_url,
        )

    @property
    def reset_otp_policy(self) -> OtpPolicy:
        return OtpPolicy(
            length=self.reset_otp_length,
            charset=self.reset_otp_charset,
            expiry_minutes=self.reset_otp_expiry_minutes,
            url=self.reset_url,
        )

    @property
    def require_email_verified(self) -> bool:
        return self.email_verification_enabled and self.email_verification_required_to_login

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M6] [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens and session cookies will not survive restart.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_roles(self) -> "Settings":
        """Roles form a closed, non-empty set that contains the default role."""
        if not self.roles:
            raise ValueError("ROLES must contain at least one role.")
        if self.default_role not in self.roles:
            raise ValueError(f"DEFAULT_ROLE {self.default_role!r} is not one of ROLES {self.roles!r}.")
        if not self.base_route.startswith("/"):
            raise ValueError("BASE_ROUTE must start with '/'.")
        return self

    @model_validator(mode="after")
    def validate_mail_delivery(self) -> "Settings":
        """Email workflows need a real mailer in production.

        Without SMTP settings the LogMailer only writes codes to the log, which
        is fine for development. Production must opt in via ALLOW_MOCK_EMAILS.
        """
        wants_mail = self.email_verification_enabled or self.forgot_password_enabled
        if wants_mail and not self.smtp_configured and not self.debug and not self.allow_mock_emails:
            raise ValueError(
                "Email verification or forgot password is enabled but SMTP_HOST is not set. "
                "Configure SMTP or set ALLOW_MOCK_EMAILS=true."
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or build Settings(...) directly
    and hand it to create_app().
    """
    return Settings()
