"""
auth/sessions.py -- Stateful server-side sessions (auth_mode=session).

The client only ever holds an opaque handle: secrets.token_urlsafe(32), signed
with itsdangerous so tampered or forged cookies are rejected before any store
lookup. Everything else (identity id, role, claims) stays server-side in a
SessionStore.

Stores:
  MemorySessionStore -- process-local dict; expired entries are swept on
                        save. Single worker / development only; sessions
                        vanish on restart.
  SQLSessionStore    -- SQLAlchemy Core table, shared by every worker pointed
                        at the same database. purge_expired() trims old rows.

install() registers the session-loading middleware at most once per
application. The flag lives on the AuthContext passed in, not on a module
global, so separate apps (tests) each get their own wiring.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

import json
import logging
import secrets
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Protocol

from itsdangerous import BadSignature, TimestampSigner
from sqlalchemy import Column, Integer, MetaData, String, Table, Text
from starlette.requests import Request

from auth.errors import SessionNotFound
from auth.models import SessionRecord
from auth.store import build_engine

if TYPE_CHECKING:
    from fastapi import FastAPI
    from starlette.responses import Response

    from auth.context import AuthContext

logger = logging.getLogger("lightauth.sessions")


class SessionStore(Protocol):
    def save(self, handle: str, record: SessionRecord, ttl_seconds: int) -> None: ...

    def load(self, handle: str) -> SessionRecord | None: ...

    def delete(self, handle: str) -> None: ...


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class MemorySessionStore:
    """In-process session store.

    Expired entries are dropped when touched, and save() sweeps the whole
    table at most once per sweep_interval seconds so abandoned sessions do
    not pile up.
    """

    def __init__(self, sweep_interval: float = 60.0) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, tuple[SessionRecord, float]] = {}
        self.sweep_interval = sweep_interval
        self._next_sweep = time.monotonic() + sweep_interval

    def _sweep(self, now: float) -> int:
        # Caller holds the lock.
        expired = [handle for handle, (_, expires_at) in self._data.items() if now > expires_at]
        for handle in expired:
            del self._data[handle]
        self._next_sweep = now + self.sweep_interval
        return len(expired)

    def save(self, handle: str, record: SessionRecord, ttl_seconds: int) -> None:
        now = time.monotonic()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            self._data[handle] = (record, now + ttl_seconds)

    def load(self, handle: str) -> SessionRecord | None:
        with self._lock:
            entry = self._data.get(handle)
            if entry is None:
                return None
            record, expires_at = entry
            if time.monotonic() > expires_at:
                del self._data[handle]
                return None
            return record

    def delete(self, handle: str) -> None:
        with self._lock:
            self._data.pop(handle, None)

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        with self._lock:
            return self._sweep(time.monotonic())

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("handle", String(64), primary_key=True),
    Column("identity_id", Integer, nullable=False),
    Column("role", String(30), nullable=False),
    Column("claims", Text, nullable=False),  # JSON object
    Column("expires_at", String(40), nullable=False),
)


class SQLSessionStore:
    """Session records in a SQL table, one row per live handle.

    expires_at is an ISO 8601 UTC string; lexical order equals time order for
    the fixed-width isoformat() output, so the expiry filter runs in SQL.
    """

    def __init__(self, db_url: str) -> None:
        self.engine = build_engine(db_url)
        _metadata.create_all(self.engine)

    def save(self, handle: str, record: SessionRecord, ttl_seconds: int) -> None:
        expires_at = (datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)).isoformat()
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    handle=handle,
                    identity_id=record.identity_id,
                    role=record.role,
                    claims=json.dumps(record.claims),
                    expires_at=expires_at,
                )
            )
            conn.commit()

    def load(self, handle: str) -> SessionRecord | None:
        now = datetime.now(timezone.utc).isoformat()
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where((_sessions.c.handle == handle) & (_sessions.c.expires_at > now))
            ).fetchone()
        if row is None:
            return None
        return SessionRecord(identity_id=row.identity_id, role=row.role, claims=json.loads(row.claims))

    def delete(self, handle: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.handle == handle))
            conn.commit()

    def purge_expired(self) -> int:
        """Delete expired rows. Returns the number removed."""
        now = datetime.now(timezone.utc).isoformat()
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= now))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class SessionManager:
    """Create, resolve, and destroy server-side sessions; manage the cookie."""

    def __init__(
        self,
        store: SessionStore,
        secret_key: str,
        ttl_seconds: int = 86400,
        cookie_name: str = "lightauth_session",
        secure_cookies: bool = False,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.cookie_name = cookie_name
        self.secure_cookies = secure_cookies
        self._signer = TimestampSigner(secret_key, salt="lightauth-session")

    def create(self, identity_id: int, role: str, claims: dict | None = None) -> str:
        """Persist a new session record and return its handle."""
        handle = secrets.token_urlsafe(32)
        record = SessionRecord(identity_id=identity_id, role=role, claims=dict(claims or {}))
        self.store.save(handle, record, self.ttl_seconds)
        return handle

    def resolve(self, handle: str | None) -> SessionRecord:
        if not handle:
            raise SessionNotFound("No session handle.")
        record = self.store.load(handle)
        if record is None:
            raise SessionNotFound("Session not found or expired.")
        return record

    def destroy(self, handle: str) -> None:
        """Remove the record. Store failures propagate to the caller."""
        self.store.delete(handle)

    def purge_expired(self) -> int:
        """Ask the store to drop expired records, if it knows how."""
        purge = getattr(self.store, "purge_expired", None)
        if purge is None:
            return 0
        return purge()

    # ------------------------------------------------------------------
    # Cookie helpers
    # ------------------------------------------------------------------

    def set_cookie(self, response: Response, handle: str) -> None:
        """Write the signed handle as an httpOnly cookie.

        httponly=True: JS cannot read the cookie (XSS mitigation).
        samesite="lax": not sent on cross-site POST (CSRF mitigation).
        max_age matches the store TTL so both expire together.
        """
        response.set_cookie(
            self.cookie_name,
            value=self._signer.sign(handle).decode("utf-8"),
            httponly=True,
            samesite="lax",
            secure=self.secure_cookies,
            max_age=self.ttl_seconds,
        )

    def clear_cookie(self, response: Response) -> None:
        response.delete_cookie(self.cookie_name)

    def handle_from_request(self, request: Request) -> str | None:
        """Return the verified handle from the request cookie, or None."""
        raw = request.cookies.get(self.cookie_name)
        if not raw:
            return None
        try:
            return self._signer.unsign(raw, max_age=self.ttl_seconds).decode("utf-8")
        except BadSignature:
            return None

    # ------------------------------------------------------------------
    # Middleware wiring
    # ------------------------------------------------------------------

    def install(self, app: FastAPI, context: AuthContext) -> bool:
        """Register the session-loading middleware once per application.

        Returns True if the middleware was registered by this call, False if
        the context says it already was.
        """
        if context.session_initialized:
            logger.debug("Session middleware already installed; skipping")
            return False
        app.middleware("http")(self._load_session)
        context.session_initialized = True
        logger.info("Session middleware installed (cookie=%s, ttl=%ds)", self.cookie_name, self.ttl_seconds)
        return True

    async def _load_session(self, request: Request, call_next):
        """Attach session_handle / session to request.state before routing."""
        handle = self.handle_from_request(request)
        record: SessionRecord | None = None
        if handle:
            try:
                record = self.resolve(handle)
            except SessionNotFound:
                record = None
        request.state.session_handle = handle if record is not None else None
        request.state.session = record
        return await call_next(request)
