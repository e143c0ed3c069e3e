"""
tests/conftest.py -- Shared fixtures for LightAuth tests.

This module provides:
  - make_settings(): Settings with fast bcrypt and both email features on
  - memory_db_url(): a fresh named shared-memory SQLite URL
  - AuthHarness: a running TestClient plus the store and mailer behind it
  - build_harness: factory fixture for apps with custom settings or hooks
  - jwt_harness / session_harness: ready-made apps for each auth mode
  - settings_factory / identity_store: for tests that drive AuthEngine directly

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync work in a thread pool. Plain :memory: DBs are
per-connection and would present a blank schema to each worker thread. Each
URL carries a uuid so no two apps ever share a database.

The DEBUG env var must be set before any core import so Settings() never
refuses to start for lack of SECRET_KEY or SMTP.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from dataclasses import dataclass

os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.main import create_app
from auth.hooks import AuthHooks
from auth.store import IdentityStore
from core.config import Settings
from mail.sender import LogMailer

TEST_SECRET = "lightauth-test-secret-key-0123456789abcdef"
PASSWORD = "correct-horse-battery"


def memory_db_url(prefix: str = "lightauth") -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_settings(**overrides) -> Settings:
    """Settings tuned for tests: bcrypt at its floor, limits off, mail on."""
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "database_url": memory_db_url("settings"),
        "bcrypt_rounds": 10,
        "roles": ["user", "admin"],
        "default_role": "user",
        "rate_limit_enabled": False,
        "email_verification_enabled": True,
        "forgot_password_enabled": True,
    }
    values.update(overrides)
    return Settings(**values)


@dataclass
class AuthHarness:
    app: FastAPI
    client: TestClient
    store: IdentityStore
    mailer: LogMailer
    settings: Settings

    def url(self, path: str) -> str:
        return f"{self.settings.base_route}/{path}"

    def post(self, path: str, body: dict | None = None, **kwargs):
        return self.client.post(self.url(path), json=body, **kwargs)

    def register(self, email: str = "alice@example.com", password: str = PASSWORD, **extra):
        return self.post("register", {"email": email, "password": password, **extra})

    def login(self, email: str = "alice@example.com", password: str = PASSWORD):
        return self.post("login", {"email": email, "password": password})

    def last_otp(self, purpose: str) -> str:
        sent = [m for m in self.mailer.sent if m["purpose"] == purpose]
        assert sent, f"no {purpose} code was sent"
        return sent[-1]["otp"]


@pytest.fixture
def build_harness() -> Generator[Callable[..., AuthHarness], None, None]:
    """Yield a factory; every harness it builds is torn down afterwards.

    Usage:
        harness = build_harness(auth_mode="session", hooks=AuthHooks(...))
    Keyword arguments other than hooks, repository, session_store and
    configure go to make_settings(). configure(app) runs before the client
    starts, so tests can mount extra routes.
    """
    opened: list[tuple[TestClient, IdentityStore]] = []

    def _build(
        *,
        hooks: AuthHooks | None = None,
        repository=None,
        session_store=None,
        configure: Callable[[FastAPI], None] | None = None,
        **overrides,
    ) -> AuthHarness:
        settings = make_settings(**overrides)
        store = IdentityStore(memory_db_url("identities"))
        mailer = LogMailer()
        app = create_app(
            settings,
            repository=repository or store,
            hooks=hooks,
            mailer=mailer,
            session_store=session_store,
        )
        if configure is not None:
            configure(app)
        client = TestClient(app)
        client.__enter__()
        opened.append((client, store))
        return AuthHarness(app=app, client=client, store=store, mailer=mailer, settings=settings)

    yield _build

    for client, store in opened:
        client.__exit__(None, None, None)
        store.close()


@pytest.fixture
def jwt_harness(build_harness) -> AuthHarness:
    return build_harness(auth_mode="jwt")


@pytest.fixture
def session_harness(build_harness) -> AuthHarness:
    return build_harness(auth_mode="session")


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    return make_settings


@pytest.fixture
def identity_store() -> Generator[IdentityStore, None, None]:
    store = IdentityStore(memory_db_url("engine"))
    yield store
    store.close()
