"""
auth/passwords.py -- Password hashing and verification (bcrypt).

Security design decisions:
  bcrypt directly, no passlib wrapper. passlib's wrap-bug detection builds a
  password longer than 72 bytes, which bcrypt 4.x and later reject. The work
  factor is configurable (Settings.bcrypt_rounds, minimum 10) and embedded in every
  digest, so raising it later only affects new hashes.

  bcrypt.checkpw compares digests in constant time; verify_password() never
  raises, so a corrupted or foreign digest simply fails verification.

  dummy_verify() exists for timing equalization [C1]: login runs a full bcrypt
  check even when the email is unknown, so response time does not reveal
  whether an account exists.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

from functools import lru_cache

import bcrypt

DEFAULT_ROUNDS = 12


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a salted bcrypt digest of the plaintext password.

    bcrypt refuses input over 72 bytes; check_password() rejects such
    passwords before they get here.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt digest."""
    if not plain or not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except Exception:
        return False


@lru_cache(maxsize=8)
def _dummy_hash(rounds: int) -> str:
    # One digest per work factor, computed on first use and cached, so the
    # dummy check costs the same as a real one.
    return hash_password("lightauth_timing_dummy", rounds)


def dummy_verify(plain: str, rounds: int = DEFAULT_ROUNDS) -> None:
    """Burn one bcrypt verification against a throwaway digest [C1]."""
    verify_password(plain or "x", _dummy_hash(rounds))
