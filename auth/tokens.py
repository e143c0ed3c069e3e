"""
auth/tokens.py -- Stateless bearer tokens (JWT).

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, role, iat, exp, and a "claims" object holding the rest of the
       login payload (email plus any on_login extension claims).

  Verification distinguishes three failures so logs can tell them apart:
       TokenMalformed         -- not a decodable JWT, or required claims missing
       TokenExpired           -- signature fine, exp in the past
       TokenInvalidSignature  -- anything else (bad signature, wrong alg)
       The access guard collapses all three into a single 401 for clients.

  Extension claims are trusted as issued for the token's lifetime. The
       repository is not consulted again; rotate SECRET_KEY or shorten
       TOKEN_EXPIRE_SECONDS if claims must change faster.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError

from auth.errors import TokenExpired, TokenInvalidSignature, TokenMalformed
from auth.models import Principal

logger = logging.getLogger("lightauth.auth")

_ALGORITHM = "HS256"


class TokenIssuer:
    """Issue and verify signed identity assertions.

    Usage:
        tokens = TokenIssuer(settings.secret_key, settings.token_expire_seconds)
        token = tokens.issue(42, "user", claims={"email": "a@b.com"})
        principal = tokens.verify(token)
    """

    def __init__(self, secret_key: str, ttl_seconds: int = 3600, algorithm: str = _ALGORITHM) -> None:
        self._secret_key = secret_key
        self.ttl_seconds = ttl_seconds
        self._algorithm = algorithm

    def issue(
        self,
        identity_id: int,
        role: str,
        ttl_seconds: int | None = None,
        claims: dict[str, Any] | None = None,
    ) -> str:
        """Encode a signed JWT for the identity.

        Args:
            identity_id: Repository-assigned identity ID.
            role:        Role at issue time.
            ttl_seconds: Lifetime; None uses the issuer default. A negative
                         value produces an already-expired token (tests).
            claims:      Extra payload merged into Principal.claims on verify.
        """
        duration = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        now = datetime.now(timezone.utc)
        payload = {
            "user_id": identity_id,
            "role": role,
            "iat": now,
            "exp": now + timedelta(seconds=duration),
            "claims": dict(claims or {}),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def verify(self, token: str | None) -> Principal:
        """Verify signature and expiry; return the resolved principal.

        Raises TokenMalformed, TokenExpired, or TokenInvalidSignature.
        """
        if not token:
            raise TokenMalformed("Token not provided.")
        try:
            jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise TokenMalformed("Token could not be decoded.") from exc

        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise TokenExpired("Token expired.") from exc
        except JWTClaimsError as exc:
            raise TokenMalformed("Token claims are invalid.") from exc
        except JWTError as exc:
            raise TokenInvalidSignature("Token signature is invalid.") from exc

        user_id = payload.get("user_id")
        role = payload.get("role")
        claims = payload.get("claims") or {}
        if user_id is None or not role or not isinstance(claims, dict):
            raise TokenMalformed("Token payload incomplete.")
        return Principal(id=user_id, role=role, claims=claims)
