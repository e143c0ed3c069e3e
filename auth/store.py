"""
auth/store.py -- SQLAlchemy Core persistence layer for identities.

Pattern: Repository + Data Mapper.
IdentityRepository is the contract the workflow engine depends on;
IdentityStore is the default implementation; _row_to_identity is the mapper.
Workflow and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  One-time codes are redeemed with a conditional UPDATE
  (... WHERE id = :id AND email_code = :code). The row only changes if the
  stored code is still the one that was validated, so two concurrent
  redemptions of the same code cannot both succeed.

  The UNIQUE constraint on users.email is the final word on duplicates.
  create_identity() turns the IntegrityError into Conflict so callers racing
  past the existence check still get a 409.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import Conflict
from auth.models import Identity

_DEFAULT_DB_URL = "sqlite:///lightauth.db"

# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class IdentityRepository(Protocol):
    def get_by_email(self, email: str) -> Identity | None: ...

    def get_by_id(self, identity_id: int) -> Identity | None: ...

    def create_identity(self, identity: Identity) -> int: ...

    def set_email_code(self, identity_id: int, code: str, expires: str) -> None: ...

    def consume_email_code(self, identity_id: int, code: str) -> bool: ...

    def set_reset_code(self, identity_id: int, code: str, expires: str) -> None: ...

    def consume_reset_code(self, identity_id: int, code: str, password_hash: str) -> bool: ...

    def update_last_login(self, identity_id: int) -> None: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("verified", Integer, nullable=False, server_default="0"),
    Column("email_code", String(64)),
    Column("email_code_expires", String(40)),
    Column("reset_code", String(64)),
    Column("reset_code_expires", String(40)),
    Column("created_at", String(40), nullable=False),
    Column("last_login", String(40)),
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def build_engine(db_url: str) -> Engine:
    """Create an engine with the SQLite tweaks every store here needs."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for Identity entities.

    Usage:
        store = IdentityStore("sqlite:///lightauth.db")
        new_id = store.create_identity(Identity(email="a@b.com", role="user", password_hash=digest))
        identity = store.get_by_email("a@b.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = build_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_email(self, email: str) -> Identity | None:
        """Look up an identity by normalized email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_by_id(self, identity_id: int) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == identity_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def create_identity(self, identity: Identity) -> int:
        """Insert a new identity and return its assigned ID.

        Raises Conflict if the email already exists.
        """
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=identity.email,
                        password_hash=identity.password_hash,
                        role=identity.role,
                        verified=1 if identity.verified else 0,
                        created_at=_now_iso(),
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise Conflict("User already exists.") from exc

    # ------------------------------------------------------------------
    # Email verification codes
    # ------------------------------------------------------------------

    def set_email_code(self, identity_id: int, code: str, expires: str) -> None:
        """Store a fresh verification code. Replaces any outstanding one."""
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == identity_id)
                .values(email_code=code, email_code_expires=expires)
            )
            conn.commit()

    def consume_email_code(self, identity_id: int, code: str) -> bool:
        """Mark verified and clear the code pair, only if `code` is still stored.

        Returns False if another request already redeemed or replaced it.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == identity_id) & (_users.c.email_code == code))
                .values(verified=1, email_code=None, email_code_expires=None)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Password reset codes
    # ------------------------------------------------------------------

    def set_reset_code(self, identity_id: int, code: str, expires: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == identity_id)
                .values(reset_code=code, reset_code_expires=expires)
            )
            conn.commit()

    def consume_reset_code(self, identity_id: int, code: str, password_hash: str) -> bool:
        """Swap in the new password hash and clear the reset pair in one UPDATE."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == identity_id) & (_users.c.reset_code == code))
                .values(password_hash=password_hash, reset_code=None, reset_code_expires=None)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def update_last_login(self, identity_id: int) -> None:
        """Stamp the current UTC time as last_login after a successful login."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == identity_id).values(last_login=_now_iso()))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=row.role,
        verified=bool(row.verified),
        email_code=row.email_code,
        email_code_expires=row.email_code_expires,
        reset_code=row.reset_code,
        reset_code_expires=row.reset_code_expires,
        created_at=row.created_at,
        last_login=row.last_login,
    )
