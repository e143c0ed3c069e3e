"""
tests/test_health.py -- Integration tests for GET /health.

Covers:
  - 200 response with status, version, and mode fields
  - No authentication required in either auth mode
  - The auth routes honour a custom base route
  - Security headers on every response, including rejections
  - on_error(type="setup") when the app cannot be assembled
"""

from __future__ import annotations

import pytest

from api.main import SECURITY_HEADERS, create_app
from auth.hooks import AuthHooks


def test_health_returns_200(jwt_harness):
    """Health endpoint returns 200 with status, version, and the auth mode."""
    resp = jwt_harness.client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["mode"] == "jwt"


def test_health_no_auth_required_in_session_mode(session_harness):
    resp = session_harness.client.get("/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["mode"] == "session"


def test_custom_base_route(build_harness):
    """Routes move with BASE_ROUTE; the default prefix is no longer served."""
    harness = build_harness(base_route="/api/identity")
    assert harness.register().status_code == 201
    assert harness.client.post("/auth/register", json={}).status_code == 404


def test_unknown_host_rejected(jwt_harness):
    """TrustedHostMiddleware refuses Host headers outside ALLOWED_HOSTS."""
    resp = jwt_harness.client.get("/health", headers={"host": "evil.example.com"})
    assert resp.status_code == 400


def test_security_headers_on_every_response(jwt_harness):
    for resp in (
        jwt_harness.client.get("/health"),
        jwt_harness.login("ghost@example.com"),
        jwt_harness.client.get("/health", headers={"host": "evil.example.com"}),
    ):
        for name, value in SECURITY_HEADERS.items():
            assert resp.headers[name] == value


class TestSetupFailure:
    def test_on_error_fires_with_setup_type(self, settings_factory):
        errors = []
        settings = settings_factory(auth_mode="session", session_store="redis")
        with pytest.raises(ValueError, match="Unknown SESSION_STORE"):
            create_app(settings, hooks=AuthHooks(on_error=errors.append))
        assert [e.type for e in errors] == ["setup"]
        assert isinstance(errors[0].error, ValueError)

    def test_async_on_error_hook_awaited(self, settings_factory):
        errors = []

        async def on_error(ctx):
            errors.append(ctx.type)

        with pytest.raises(ValueError):
            create_app(settings_factory(auth_mode="session", session_store="bogus"), hooks=AuthHooks(on_error=on_error))
        assert errors == ["setup"]

    def test_failing_on_error_hook_does_not_mask_setup_error(self, settings_factory):
        def explode(ctx):
            raise RuntimeError("hook bug")

        with pytest.raises(ValueError, match="Unknown SESSION_STORE"):
            create_app(settings_factory(auth_mode="session", session_store="bogus"), hooks=AuthHooks(on_error=explode))
