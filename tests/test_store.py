"""
tests/test_store.py -- IdentityStore persistence and atomic code redemption.

Each test gets its own named shared-memory database (see conftest.py).
"""

from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest

from auth.errors import Conflict
from auth.models import Identity
from auth.store import IdentityStore


@pytest.fixture
def store() -> Generator[IdentityStore, None, None]:
    s = IdentityStore(f"sqlite:///file:store_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield s
    s.close()


def _identity(email: str = "bob@example.com", role: str = "user") -> Identity:
    return Identity(email=email, role=role, password_hash="$2b$10$placeholder")


class TestCreateAndRead:
    def test_create_assigns_id(self, store: IdentityStore) -> None:
        new_id = store.create_identity(_identity())
        assert isinstance(new_id, int)
        loaded = store.get_by_id(new_id)
        assert loaded is not None
        assert loaded.email == "bob@example.com"
        assert loaded.verified is False
        assert loaded.created_at is not None

    def test_get_by_email_missing(self, store: IdentityStore) -> None:
        assert store.get_by_email("nobody@example.com") is None
        assert store.get_by_id(999) is None

    def test_duplicate_email_is_conflict(self, store: IdentityStore) -> None:
        store.create_identity(_identity())
        with pytest.raises(Conflict):
            store.create_identity(_identity())

    def test_last_login_stamped(self, store: IdentityStore) -> None:
        new_id = store.create_identity(_identity())
        store.update_last_login(new_id)
        assert store.get_by_id(new_id).last_login is not None


class TestEmailCode:
    def test_consume_marks_verified_and_clears(self, store: IdentityStore) -> None:
        new_id = store.create_identity(_identity())
        store.set_email_code(new_id, "123456", "2099-01-01T00:00:00+00:00")
        assert store.get_by_id(new_id).email_code == "123456"

        assert store.consume_email_code(new_id, "123456") is True
        loaded = store.get_by_id(new_id)
        assert loaded.verified is True
        assert loaded.email_code is None
        assert loaded.email_code_expires is None

    def test_consume_is_single_use(self, store: IdentityStore) -> None:
        """A second redemption of the same code must fail."""
        new_id = store.create_identity(_identity())
        store.set_email_code(new_id, "123456", "2099-01-01T00:00:00+00:00")
        assert store.consume_email_code(new_id, "123456") is True
        assert store.consume_email_code(new_id, "123456") is False

    def test_consume_after_replacement_fails(self, store: IdentityStore) -> None:
        new_id = store.create_identity(_identity())
        store.set_email_code(new_id, "111111", "2099-01-01T00:00:00+00:00")
        store.set_email_code(new_id, "222222", "2099-01-01T00:00:00+00:00")
        assert store.consume_email_code(new_id, "111111") is False
        assert store.get_by_id(new_id).verified is False


class TestResetCode:
    def test_consume_rotates_hash(self, store: IdentityStore) -> None:
        new_id = store.create_identity(_identity())
        store.set_reset_code(new_id, "654321", "2099-01-01T00:00:00+00:00")
        assert store.consume_reset_code(new_id, "654321", "$2b$10$newhash") is True
        loaded = store.get_by_id(new_id)
        assert loaded.password_hash == "$2b$10$newhash"
        assert loaded.reset_code is None
        assert loaded.reset_code_expires is None

    def test_consume_twice_fails(self, store: IdentityStore) -> None:
        new_id = store.create_identity(_identity())
        store.set_reset_code(new_id, "654321", "2099-01-01T00:00:00+00:00")
        assert store.consume_reset_code(new_id, "654321", "$2b$10$first") is True
        assert store.consume_reset_code(new_id, "654321", "$2b$10$second") is False
        assert store.get_by_id(new_id).password_hash == "$2b$10$first"
