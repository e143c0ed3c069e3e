"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
workflow engine do the work; these classes only own the domain shape.

Layer rule: no imports from api/, core/, or mail/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Identity:
    """A registered principal.

    email is stored case-normalized (stripped, lower-cased) so lookups never
    depend on how the user typed it.

    The two code pairs are transient proof state. Each code is only ever
    written together with its expiry and cleared together with it:
      email_code / email_code_expires -- email verification
      reset_code / reset_code_expires -- password recovery

    Expiries are ISO 8601 UTC strings, matching created_at / last_login.
    password_hash never leaves the process; use public() for responses.
    """

    email: str
    role: str
    password_hash: str
    id: int | None = None
    verified: bool = False
    email_code: str | None = None
    email_code_expires: str | None = None
    reset_code: str | None = None
    reset_code_expires: str | None = None
    created_at: str | None = None
    last_login: str | None = None

    def public(self) -> dict[str, Any]:
        """Response-safe view: no hash, no codes."""
        return {"id": self.id, "email": self.email, "role": self.role}


@dataclass
class Principal:
    """The caller identity resolved from a bearer token or a session record.

    claims carries everything the login payload held beyond id and role
    (email plus any on_login extension claims). Claims are trusted as issued
    for the artifact's lifetime; they are not re-read from the repository.
    """

    id: int
    role: str
    claims: dict[str, Any] = field(default_factory=dict)


@dataclass
class SessionRecord:
    """Server-side state behind an opaque session handle."""

    identity_id: int
    role: str
    claims: dict[str, Any] = field(default_factory=dict)

    def to_principal(self) -> Principal:
        return Principal(id=self.identity_id, role=self.role, claims=dict(self.claims))


@dataclass
class LoginResult:
    """Outcome of a successful login.

    Exactly one of token / session_handle is set, depending on the configured
    auth mode.
    """

    user: dict[str, Any]
    expires_in: int
    token: str | None = None
    session_handle: str | None = None
