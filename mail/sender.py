"""
mail/sender.py -- One-time code delivery.

Two senders:
  LogMailer  -- development fallback. Writes the code to the log instead of
                sending it. Settings refuses this in production unless
                ALLOW_MOCK_EMAILS=true.
  SMTPMailer -- smtplib with optional STARTTLS.

Any object with a matching send_otp() satisfies Mailer; send_otp may also be
a coroutine function.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from collections import deque
from email.message import EmailMessage
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("lightauth.mail")

_SUBJECTS = {
    "verify": "Verify your email address",
    "reset": "Reset your password",
}


class Mailer(Protocol):
    def send_otp(self, email: str, otp: str, purpose: str, url: str | None = None) -> None: ...


def redact_email(email: str) -> str:
    """Keep the first two characters of the local part for log correlation."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def render_body(otp: str, purpose: str, url: str | None) -> str:
    if purpose == "reset":
        lines = [
            f"Your password reset code is: {otp}",
            "",
            "If you did not ask to reset your password, ignore this email.",
        ]
    else:
        lines = [f"Your email verification code is: {otp}"]
    if url:
        lines += ["", f"Continue at: {url}"]
    return "\n".join(lines)


class LogMailer:
    """Log codes instead of sending them.

    The last `history` messages stay readable on .sent; older ones drop off.
    """

    def __init__(self, from_email: str = "noreply@lightauth.local", history: int = 50) -> None:
        self.from_email = from_email
        self.sent: deque[dict] = deque(maxlen=history)

    def send_otp(self, email: str, otp: str, purpose: str, url: str | None = None) -> None:
        self.sent.append({"email": email, "otp": otp, "purpose": purpose, "url": url})
        logger.info(
            "Mock %s OTP for %s from %s: %s%s",
            purpose.upper(),
            redact_email(email),
            self.from_email,
            otp,
            f" ({url})" if url else "",
        )


class SMTPMailer:
    """Send codes through an SMTP relay."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        from_email: str = "noreply@lightauth.local",
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email
        self.timeout = timeout

    def send_otp(self, email: str, otp: str, purpose: str, url: str | None = None) -> None:
        msg = EmailMessage()
        msg["Subject"] = _SUBJECTS.get(purpose, "Your one-time code")
        msg["From"] = self.from_email
        msg["To"] = email
        msg.set_content(render_body(otp, purpose, url))

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls(context=ssl.create_default_context())
            if self.user:
                smtp.login(self.user, self.password)
            smtp.send_message(msg)
        logger.info("Sent %s OTP to %s", purpose, redact_email(email))


def build_mailer(settings: Settings) -> Mailer:
    """SMTP when configured, otherwise the logging fallback."""
    if settings.smtp_configured:
        return SMTPMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_email=settings.mail_from,
        )
    logger.warning("SMTP_HOST not set -- one-time codes will be written to the log")
    return LogMailer(from_email=settings.mail_from)
