"""
tests/test_tokens.py -- JWT issue/verify and the failure taxonomy.
"""

from __future__ import annotations

import pytest
from jose import jwt

from auth.errors import TokenExpired, TokenInvalidSignature, TokenMalformed
from auth.tokens import TokenIssuer

SECRET = "token-test-secret-0123456789abcdef-xyz"


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(SECRET, ttl_seconds=3600)


class TestIssue:
    def test_round_trip_principal(self, issuer: TokenIssuer) -> None:
        token = issuer.issue(7, "admin", claims={"email": "a@b.co", "tenant": "acme"})
        principal = issuer.verify(token)
        assert principal.id == 7
        assert principal.role == "admin"
        assert principal.claims == {"email": "a@b.co", "tenant": "acme"}

    def test_payload_shape(self, issuer: TokenIssuer) -> None:
        payload = jwt.get_unverified_claims(issuer.issue(3, "user"))
        assert payload["user_id"] == 3
        assert payload["role"] == "user"
        assert payload["exp"] - payload["iat"] == 3600
        assert payload["claims"] == {}


class TestVerifyFailures:
    def test_expired(self, issuer: TokenIssuer) -> None:
        token = issuer.issue(1, "user", ttl_seconds=-10)
        with pytest.raises(TokenExpired):
            issuer.verify(token)

    def test_wrong_secret(self, issuer: TokenIssuer) -> None:
        other = TokenIssuer("another-secret-0123456789abcdef-xyz")
        with pytest.raises(TokenInvalidSignature):
            issuer.verify(other.issue(1, "user"))

    def test_garbage(self, issuer: TokenIssuer) -> None:
        with pytest.raises(TokenMalformed):
            issuer.verify("not.a.jwt")
        with pytest.raises(TokenMalformed):
            issuer.verify("")

    def test_missing_required_claims(self, issuer: TokenIssuer) -> None:
        token = jwt.encode({"role": "user"}, SECRET, algorithm="HS256")
        with pytest.raises(TokenMalformed):
            issuer.verify(token)

    def test_claims_must_be_object(self, issuer: TokenIssuer) -> None:
        token = jwt.encode({"user_id": 1, "role": "user", "claims": ["x"]}, SECRET, algorithm="HS256")
        with pytest.raises(TokenMalformed):
            issuer.verify(token)
