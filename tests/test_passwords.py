"""
tests/test_passwords.py -- Password hashing and the password/email input checks.

bcrypt runs at 10 rounds here (the configured floor) to keep the suite fast;
the digests are otherwise identical in shape to production ones.
"""

from __future__ import annotations

from auth.passwords import dummy_verify, hash_password, verify_password
from auth.validators import check_password, is_valid_email, normalize_email
from core.config import PasswordPolicy

ROUNDS = 10


class TestHashPassword:
    def test_hash_verifies(self) -> None:
        digest = hash_password("s3cret-value", ROUNDS)
        assert verify_password("s3cret-value", digest)

    def test_wrong_password_rejected(self) -> None:
        digest = hash_password("s3cret-value", ROUNDS)
        assert not verify_password("s3cret-valuE", digest)

    def test_hash_is_salted(self) -> None:
        """Two hashes of the same password differ but both verify."""
        first = hash_password("same-password", ROUNDS)
        second = hash_password("same-password", ROUNDS)
        assert first != second
        assert verify_password("same-password", first)
        assert verify_password("same-password", second)

    def test_work_factor_embedded(self) -> None:
        assert hash_password("pw-12345678", ROUNDS).startswith("$2b$10$")


class TestVerifyPassword:
    """verify_password() must never raise."""

    def test_empty_inputs(self) -> None:
        digest = hash_password("x" * 8, ROUNDS)
        assert verify_password("", digest) is False
        assert verify_password("x" * 8, "") is False
        assert verify_password("x" * 8, None) is False

    def test_garbage_digest(self) -> None:
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    def test_dummy_verify_returns_none(self) -> None:
        assert dummy_verify("whatever", ROUNDS) is None
        assert dummy_verify("", ROUNDS) is None


class TestPasswordPolicy:
    def test_minimum_length(self) -> None:
        policy = PasswordPolicy(min_length=8)
        assert check_password("short", policy) == "Password must be at least 8 characters long."
        assert check_password("longenough", policy) is None

    def test_missing_password(self) -> None:
        assert check_password(None, PasswordPolicy()) == "Password is required."
        assert check_password("", PasswordPolicy()) == "Password is required."

    def test_bcrypt_byte_ceiling(self) -> None:
        """The ceiling counts UTF-8 bytes, not characters."""
        policy = PasswordPolicy(min_length=8)
        assert check_password("a" * 72, policy) is None
        assert check_password("a" * 73, policy) == "Password must be at most 72 bytes long."
        assert check_password("\u00e9" * 36, policy) is None
        assert check_password("\u00e9" * 50, policy) == "Password must be at most 72 bytes long."

    def test_character_classes(self) -> None:
        policy = PasswordPolicy(
            min_length=4,
            require_uppercase=True,
            require_lowercase=True,
            require_numbers=True,
            require_symbols=True,
        )
        assert "uppercase" in check_password("abcd1!", policy)
        assert "lowercase" in check_password("ABCD1!", policy)
        assert "number" in check_password("Abcd!!", policy)
        assert "symbol" in check_password("Abcd12", policy)
        assert check_password("Abcd1!", policy) is None


class TestEmail:
    def test_normalize(self) -> None:
        assert normalize_email("  Alice@Example.COM ") == "alice@example.com"
        assert normalize_email(None) == ""

    def test_valid_formats(self) -> None:
        assert is_valid_email("a@b.co")
        assert is_valid_email("first.last+tag@sub.example.org")

    def test_invalid_formats(self) -> None:
        for bad in ("", "plain", "a@b", "a@b.c", "a b@c.com", "@example.com", None):
            assert not is_valid_email(bad), bad
