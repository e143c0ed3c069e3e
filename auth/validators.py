"""
auth/validators.py -- Input checks shared by the workflows.

Each check returns an error message or None, so callers decide which error
type to raise. Nothing here touches storage.
"""

from __future__ import annotations

import re

from core.config import PasswordPolicy

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]{2,}$")
_SYMBOL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")

# bcrypt only reads the first 72 bytes; 5.x refuses anything longer.
MAX_PASSWORD_BYTES = 72


def normalize_email(email: str | None) -> str:
    """Strip and lower-case. Identities are unique on the normalized form."""
    return (email or "").strip().lower()


def is_valid_email(email: str | None) -> bool:
    return isinstance(email, str) and bool(_EMAIL_RE.match(email))


def check_password(password: str | None, policy: PasswordPolicy) -> str | None:
    """Return the first policy violation as a message, or None if acceptable."""
    if not isinstance(password, str) or not password:
        return "Password is required."
    if len(password) < policy.min_length:
        return f"Password must be at least {policy.min_length} characters long."
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return f"Password must be at most {MAX_PASSWORD_BYTES} bytes long."
    if policy.require_uppercase and not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter."
    if policy.require_lowercase and not re.search(r"[a-z]", password):
        return "Password must contain at least one lowercase letter."
    if policy.require_numbers and not re.search(r"[0-9]", password):
        return "Password must contain at least one number."
    if policy.require_symbols and not _SYMBOL_RE.search(password):
        return "Password must contain at least one symbol."
    return None
