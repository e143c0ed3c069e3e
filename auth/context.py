"""
auth/context.py -- Per-application auth wiring.

One AuthContext is built by create_app() and stored on app.state.auth. It is
the only place the auth components for an application are held together, and
it owns the session-middleware initialization flag.
"""

from __future__ import annotations

from dataclasses import dataclass

from auth.hooks import AuthHooks
from auth.sessions import SessionManager
from auth.store import IdentityRepository
from auth.tokens import TokenIssuer
from auth.workflows import AuthEngine
from core.config import AuthMode, Settings


@dataclass
class AuthContext:
    settings: Settings
    repository: IdentityRepository
    engine: AuthEngine
    tokens: TokenIssuer
    sessions: SessionManager | None
    hooks: AuthHooks
    session_initialized: bool = False

    @property
    def mode(self) -> AuthMode:
        return self.settings.auth_mode
