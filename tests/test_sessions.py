"""
tests/test_sessions.py -- Server-side session stores, SessionManager, and
session-middleware installation.
"""

from __future__ import annotations

import asyncio
import uuid

import pytest
from fastapi import FastAPI
from starlette.responses import Response

from api.main import _purge_loop
from auth.errors import SessionNotFound
from auth.models import SessionRecord
from auth.sessions import MemorySessionStore, SessionManager, SQLSessionStore

SECRET = "session-test-secret-0123456789abcdef"


def _sql_store() -> SQLSessionStore:
    return SQLSessionStore(f"sqlite:///file:sessions_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


class TestMemorySessionStore:
    def test_save_load_delete(self) -> None:
        store = MemorySessionStore()
        record = SessionRecord(identity_id=1, role="user", claims={"email": "a@b.co"})
        store.save("h1", record, ttl_seconds=60)
        assert store.load("h1") == record
        store.delete("h1")
        assert store.load("h1") is None

    def test_expired_record_dropped(self) -> None:
        store = MemorySessionStore()
        store.save("h1", SessionRecord(identity_id=1, role="user"), ttl_seconds=-1)
        assert store.load("h1") is None
        assert len(store) == 0

    def test_delete_unknown_is_noop(self) -> None:
        MemorySessionStore().delete("missing")

    def test_save_sweeps_abandoned_sessions(self) -> None:
        store = MemorySessionStore(sweep_interval=0)
        store.save("stale", SessionRecord(identity_id=1, role="user"), ttl_seconds=-1)
        store.save("fresh", SessionRecord(identity_id=2, role="user"), ttl_seconds=60)
        assert len(store) == 1
        assert store.load("fresh") is not None

    def test_sweep_waits_for_interval(self) -> None:
        store = MemorySessionStore(sweep_interval=3600)
        store.save("stale", SessionRecord(identity_id=1, role="user"), ttl_seconds=-1)
        store.save("fresh", SessionRecord(identity_id=2, role="user"), ttl_seconds=60)
        assert len(store) == 2
        assert store.purge_expired() == 1
        assert len(store) == 1


class TestSQLSessionStore:
    def test_save_load_delete(self) -> None:
        store = _sql_store()
        try:
            store.save("h1", SessionRecord(identity_id=5, role="admin", claims={"tier": 2}), ttl_seconds=60)
            loaded = store.load("h1")
            assert loaded == SessionRecord(identity_id=5, role="admin", claims={"tier": 2})
            store.delete("h1")
            assert store.load("h1") is None
        finally:
            store.close()

    def test_expired_rows_invisible_and_purged(self) -> None:
        store = _sql_store()
        try:
            store.save("old", SessionRecord(identity_id=1, role="user"), ttl_seconds=-60)
            store.save("live", SessionRecord(identity_id=2, role="user"), ttl_seconds=60)
            assert store.load("old") is None
            assert store.purge_expired() == 1
            assert store.load("live") is not None
        finally:
            store.close()


class TestSessionManager:
    def test_create_and_resolve(self) -> None:
        manager = SessionManager(MemorySessionStore(), SECRET, ttl_seconds=60)
        handle = manager.create(3, "user", {"email": "c@d.co"})
        record = manager.resolve(handle)
        assert record.identity_id == 3
        assert record.to_principal().claims == {"email": "c@d.co"}

    def test_handles_are_unique(self) -> None:
        manager = SessionManager(MemorySessionStore(), SECRET)
        assert manager.create(1, "user") != manager.create(1, "user")

    def test_resolve_missing(self) -> None:
        manager = SessionManager(MemorySessionStore(), SECRET)
        with pytest.raises(SessionNotFound):
            manager.resolve(None)
        with pytest.raises(SessionNotFound):
            manager.resolve("never-issued")

    def test_destroy(self) -> None:
        manager = SessionManager(MemorySessionStore(), SECRET)
        handle = manager.create(1, "user")
        manager.destroy(handle)
        with pytest.raises(SessionNotFound):
            manager.resolve(handle)

    def test_cookie_is_signed_httponly(self) -> None:
        manager = SessionManager(MemorySessionStore(), SECRET, ttl_seconds=120, cookie_name="sid")
        response = Response()
        manager.set_cookie(response, "raw-handle")
        header = response.headers["set-cookie"].lower()
        assert header.startswith("sid=")
        assert "raw-handle." in header
        assert "httponly" in header
        assert "samesite=lax" in header
        assert "max-age=120" in header


class TestInstall:
    """install() registers the session loader at most once per context."""

    def test_install_is_idempotent(self, session_harness) -> None:
        context = session_harness.app.state.auth
        assert context.session_initialized is True
        assert context.sessions.install(session_harness.app, context) is False

    def test_fresh_context_installs(self) -> None:
        class _Context:
            session_initialized = False

        app = FastAPI()
        context = _Context()
        manager = SessionManager(MemorySessionStore(), SECRET)
        assert manager.install(app, context) is True
        assert context.session_initialized is True
        assert manager.install(app, context) is False


class _PlainStore:
    """A SessionStore with no purge_expired()."""

    def save(self, handle, record, ttl_seconds) -> None:
        pass

    def load(self, handle):
        return None

    def delete(self, handle) -> None:
        pass


class TestPurge:
    def test_manager_delegates_to_store(self) -> None:
        store = MemorySessionStore(sweep_interval=3600)
        store.save("stale", SessionRecord(identity_id=1, role="user"), ttl_seconds=-1)
        assert SessionManager(store, SECRET).purge_expired() == 1
        assert SessionManager(_PlainStore(), SECRET).purge_expired() == 0

    def test_startup_purges_sql_store(self, build_harness) -> None:
        store = _sql_store()
        try:
            store.save("old", SessionRecord(identity_id=1, role="user"), ttl_seconds=-60)
            store.save("live", SessionRecord(identity_id=2, role="user"), ttl_seconds=60)
            build_harness(auth_mode="session", session_store=store)
            assert store.purge_expired() == 0
            assert store.load("live") is not None
        finally:
            store.close()

    def test_periodic_purge(self) -> None:
        store = MemorySessionStore(sweep_interval=3600)
        store.save("stale", SessionRecord(identity_id=1, role="user"), ttl_seconds=-1)

        async def scenario() -> None:
            task = asyncio.create_task(_purge_loop(SessionManager(store, SECRET), 0.01))
            await asyncio.sleep(0.2)
            task.cancel()

        asyncio.run(scenario())
        assert len(store) == 0
