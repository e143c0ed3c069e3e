"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The auth mode decides where the caller's identity comes from:
  jwt     -- Authorization: Bearer <token>, verified by TokenIssuer.
  session -- the signed session cookie, resolved by the session middleware
             (request.state.session) or by SessionManager directly.

Both converge on a Principal stored at request.state.principal.

authenticate() raises Unauthorized if the caller cannot be resolved.
try_authenticate() is the soft variant (returns None instead).
authorize([...]) checks the role of an already-attached principal;
require_roles(...) authenticates first. Both raise Forbidden if the role is
not allowed.

Token sub-reasons (expired / malformed / bad signature) are logged and
collapsed into the one external code "unauthorized".

Layer rule: may import fastapi (this module is part of the DI system).
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from fastapi import Depends, Request

from auth.errors import Forbidden, SessionNotFound, TokenError, TokenExpired, Unauthorized
from auth.models import Principal
from core.config import AuthMode

logger = logging.getLogger("lightauth.auth")


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:].strip() or None


def _resolve(request: Request) -> Principal:
    """Resolve the caller or raise Unauthorized."""
    ctx = request.app.state.auth

    if ctx.mode is AuthMode.SESSION:
        record = getattr(request.state, "session", None)
        if record is None:
            try:
                record = ctx.sessions.resolve(ctx.sessions.handle_from_request(request))
            except SessionNotFound:
                raise Unauthorized("Unauthorized: No active session.") from None
        return record.to_principal()

    token = _bearer_token(request)
    if token is None:
        raise Unauthorized("Unauthorized: Bearer token missing.")
    try:
        return ctx.tokens.verify(token)
    except TokenExpired:
        raise Unauthorized("Unauthorized: Token expired.") from None
    except TokenError as exc:
        logger.info("Rejected bearer token (%s)", exc.reason)
        raise Unauthorized("Unauthorized: Invalid token.") from None


def try_authenticate(request: Request) -> Principal | None:
    """Return the authenticated principal, or None. Never raises."""
    existing = getattr(request.state, "principal", None)
    if existing is not None:
        return existing
    try:
        principal = _resolve(request)
    except Unauthorized:
        return None
    request.state.principal = principal
    return principal


def authenticate(request: Request) -> Principal:
    """Require authentication. Raises Unauthorized (401).

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(authenticate)): ...
    """
    existing = getattr(request.state, "principal", None)
    if existing is not None:
        return existing
    principal = _resolve(request)
    request.state.principal = principal
    return principal


def authorize(allowed_roles: Iterable[str]) -> Callable[[Request], Principal]:
    """Build a dependency that admits only principals whose role is allowed.

    Checks the principal a preceding authenticate dependency attached. It does
    not authenticate by itself: with no attached principal the caller gets
    Forbidden, same as a caller with the wrong role.

        @router.get("/admin", dependencies=[Depends(authenticate), Depends(authorize(["admin"]))])
    """
    allowed = frozenset(allowed_roles)

    def dependency(request: Request) -> Principal:
        principal = getattr(request.state, "principal", None)
        check_role(principal, allowed)
        return principal

    return dependency


def require_roles(*roles: str) -> Callable[..., Principal]:
    """authenticate + authorize in one dependency.

    Unauthenticated callers get 401, authenticated callers with the wrong role
    get 403:
        async def route(principal: Principal = Depends(require_roles("admin"))): ...
    """
    allowed = frozenset(roles)

    def dependency(principal: Principal = Depends(authenticate)) -> Principal:
        check_role(principal, allowed)
        return principal

    return dependency


def check_role(principal: Principal | None, allowed: Iterable[str]) -> None:
    """Raise Forbidden unless principal carries one of the allowed roles."""
    if principal is None or not principal.role:
        raise Forbidden("Forbidden: No role assigned.")
    if principal.role not in frozenset(allowed):
        raise Forbidden("Forbidden: Insufficient permissions.")
