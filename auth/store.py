"""
auth/store.py -- SQLAlchemy Core persistence layer for users.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. The session manager never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  update_fields() only accepts columns from _MUTABLE_FIELDS, so a caller can
  never rewrite email, public_id, or created_at through it.

Session model:
  users.refresh_token is the single live refresh token for the user.
  swap_refresh_token() is a compare-and-swap: the UPDATE only matches when the
  stored value still equals the token the caller verified. Two concurrent
  refreshes of the same token cannot both rotate it.

Errors:
  SQLAlchemy failures are translated to auth.errors.StorageUnavailable by
  storage_errors(). A UNIQUE(email) violation on insert is a Conflict.

Soft delete:
  Rows with deleted_at set are invisible to every lookup. Deleting is an
  administrative concern outside this module; it never hard-deletes.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import Conflict, StorageUnavailable
from auth.models import User

logger = logging.getLogger("sessionkeeper.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("public_id", String(36), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("refresh_token", Text),  # NULL = no live session
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

_MUTABLE_FIELDS = frozenset({"first_name", "last_name", "hashed_password", "refresh_token"})


# ---------------------------------------------------------------------------
# Engine helpers (shared with auth/code_store.py)
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases ignore it.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str, timeout_seconds: float = 5.0) -> Engine:
    """Create an Engine with the SQLite adjustments every store needs."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout_seconds
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate driver failures into StorageUnavailable.

    IntegrityError passes through untouched: it is a constraint decision, not
    an outage, and the caller knows what it means.
    """
    try:
        yield
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        logger.error("Storage failure during %s: %s", operation, exc.__class__.__name__)
        raise StorageUnavailable() from exc


def iso_utc(moment: datetime | None = None) -> str:
    """Fixed-width UTC timestamp (microseconds, trailing Z).

    Fixed width keeps lexical order equal to chronological order, which the
    stores rely on for expiry comparisons in SQL.
    """
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user = store.create(User(email="a@example.com", first_name="A", last_name="B", hashed_password=h))
        store.find_by_email("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str, timeout_seconds: float = 5.0) -> None:
        self.engine: Engine = make_engine(db_url, timeout_seconds)
        with storage_errors("schema setup"):
            _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> User | None:
        """Look up a live user by exact email (case-sensitive). Returns None if not found."""
        return self._find_one((_users.c.email == email) & _users.c.deleted_at.is_(None), "find_by_email")

    def find_by_id(self, user_id: str) -> User | None:
        """Look up a live user by public id. Returns None if not found."""
        return self._find_one((_users.c.public_id == user_id) & _users.c.deleted_at.is_(None), "find_by_id")

    def find_by_id_and_refresh_token(self, user_id: str, token: str) -> User | None:
        """Return the user only if token is exactly their stored refresh token."""
        return self._find_one(
            (_users.c.public_id == user_id) & (_users.c.refresh_token == token) & _users.c.deleted_at.is_(None),
            "find_by_id_and_refresh_token",
        )

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        try:
            with self.engine.connect() as conn:
                conn.execute(_users.select().limit(1)).fetchall()
        except SQLAlchemyError:
            return False
        return True

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, user: User) -> User:
        """Insert a new user and return the stored record.

        Raises Conflict if the email is already taken, including when a
        concurrent registration wins the UNIQUE(email) race.
        """
        now = iso_utc()
        public_id = user.public_id or str(uuid.uuid4())
        try:
            with storage_errors("create"), self.engine.connect() as conn:
                conn.execute(
                    _users.insert().values(
                        public_id=public_id,
                        email=user.email,
                        first_name=user.first_name,
                        last_name=user.last_name,
                        hashed_password=user.hashed_password,
                        refresh_token=user.refresh_token,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise Conflict() from exc
        created = self.find_by_id(public_id)
        if created is None:
            raise StorageUnavailable("User vanished after insert.")
        return created

    def update_fields(self, user_id: str, **fields) -> bool:
        """Update mutable fields on a live user.

        Accepted fields: first_name, last_name, hashed_password, refresh_token.
        Unknown keys raise ValueError rather than being silently dropped.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if not fields:
            return False
        with storage_errors("update_fields"), self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.public_id == user_id) & _users.c.deleted_at.is_(None))
                .values(updated_at=iso_utc(), **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def swap_refresh_token(self, user_id: str, expected: str, new: str | None) -> bool:
        """Replace the stored refresh token only if it still equals expected.

        Returns False when another request rotated or cleared it first.
        """
        with storage_errors("swap_refresh_token"), self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.public_id == user_id)
                    & (_users.c.refresh_token == expected)
                    & _users.c.deleted_at.is_(None)
                )
                .values(refresh_token=new, updated_at=iso_utc())
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_one(self, clause, operation: str) -> User | None:
        with storage_errors(operation), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(clause)).fetchone()
        return _row_to_user(row) if row is not None else None


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        public_id=row.public_id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        hashed_password=row.hashed_password,
        refresh_token=row.refresh_token,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )
