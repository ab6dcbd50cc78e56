"""
auth/code_store.py -- SQLAlchemy Core persistence for one-time codes.

Pattern: Repository + Data Mapper (same as auth/store.py).

Invariant: for a given (email, purpose) at most one unconsumed code is ever
live. The session manager calls invalidate_outstanding() before create(), so
issuing a new code supersedes every earlier one.

Expiry is lazy. Expired rows are never purged here; find_valid() simply
refuses them by comparing expires_at against the caller's `now`. Both sides
are fixed-width UTC strings from auth.store.iso_utc(), so the comparison is
done in SQL.

Brute force: register_failed_attempt() counts wrong guesses against the
outstanding code(s) for (email, purpose) and burns them once the limit is
reached. This holds even when no HTTP rate limiter sits in front.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Column, Index, Integer, MetaData, String, Table
from sqlalchemy.engine import Engine

from auth.models import OneTimeCode
from auth.store import iso_utc, make_engine, storage_errors

_metadata = MetaData()

_codes = Table(
    "one_time_codes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False),
    Column("code_hash", String(64), nullable=False),  # HMAC-SHA256 hex
    Column("purpose", String(30), nullable=False),
    Column("consumed", Boolean, nullable=False, default=False),
    Column("failed_attempts", Integer, nullable=False, default=0),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Index("ix_one_time_codes_email_purpose", "email", "purpose"),
)


class CodeStore:
    """Repository for OneTimeCode records."""

    def __init__(self, db_url: str, timeout_seconds: float = 5.0) -> None:
        self.engine: Engine = make_engine(db_url, timeout_seconds)
        with storage_errors("schema setup"):
            _metadata.create_all(self.engine)

    def invalidate_outstanding(self, email: str, purpose: str) -> int:
        """Mark every unconsumed code for (email, purpose) consumed. Returns rows touched."""
        with storage_errors("invalidate_outstanding"), self.engine.connect() as conn:
            result = conn.execute(
                _codes.update()
                .where((_codes.c.email == email) & (_codes.c.purpose == purpose) & ~_codes.c.consumed)
                .values(consumed=True)
            )
            conn.commit()
        return result.rowcount

    def create(self, record: OneTimeCode) -> OneTimeCode:
        """Insert a new code and return it with id and created_at filled in."""
        created_at = record.created_at or iso_utc()
        with storage_errors("create_code"), self.engine.connect() as conn:
            result = conn.execute(
                _codes.insert().values(
                    email=record.email,
                    code_hash=record.code_hash,
                    purpose=record.purpose,
                    consumed=record.consumed,
                    failed_attempts=record.failed_attempts,
                    expires_at=record.expires_at,
                    created_at=created_at,
                )
            )
            conn.commit()
        return OneTimeCode(
            id=result.inserted_primary_key[0],
            email=record.email,
            code_hash=record.code_hash,
            purpose=record.purpose,
            consumed=record.consumed,
            failed_attempts=record.failed_attempts,
            expires_at=record.expires_at,
            created_at=created_at,
        )

    def find_valid(self, email: str, code_hash: str, purpose: str, now: str) -> OneTimeCode | None:
        """Return the unconsumed, unexpired code matching all four keys, or None."""
        with storage_errors("find_valid"), self.engine.connect() as conn:
            row = conn.execute(
                _codes.select()
                .where(
                    (_codes.c.email == email)
                    & (_codes.c.code_hash == code_hash)
                    & (_codes.c.purpose == purpose)
                    & ~_codes.c.consumed
                    & (_codes.c.expires_at > now)
                )
                .order_by(_codes.c.id.desc())
            ).fetchone()
        return _row_to_code(row) if row is not None else None

    def mark_consumed(self, code_id: int) -> bool:
        """Consume a code. Returns False if it was already consumed or never existed."""
        with storage_errors("mark_consumed"), self.engine.connect() as conn:
            result = conn.execute(
                _codes.update().where((_codes.c.id == code_id) & ~_codes.c.consumed).values(consumed=True)
            )
            conn.commit()
        return result.rowcount > 0

    def register_failed_attempt(self, email: str, purpose: str, max_attempts: int) -> None:
        """Count a wrong guess against outstanding codes; burn them at max_attempts."""
        outstanding = (_codes.c.email == email) & (_codes.c.purpose == purpose) & ~_codes.c.consumed
        with storage_errors("register_failed_attempt"), self.engine.connect() as conn:
            conn.execute(_codes.update().where(outstanding).values(failed_attempts=_codes.c.failed_attempts + 1))
            conn.execute(
                _codes.update().where(outstanding & (_codes.c.failed_attempts >= max_attempts)).values(consumed=True)
            )
            conn.commit()

    def get(self, code_id: int) -> OneTimeCode | None:
        """Fetch a code by id regardless of state. Diagnostics and tests only."""
        with storage_errors("get_code"), self.engine.connect() as conn:
            row = conn.execute(_codes.select().where(_codes.c.id == code_id)).fetchone()
        return _row_to_code(row) if row is not None else None

    def close(self) -> None:
        self.engine.dispose()


def _row_to_code(row) -> OneTimeCode:
    return OneTimeCode(
        id=row.id,
        email=row.email,
        code_hash=row.code_hash,
        purpose=row.purpose,
        consumed=bool(row.consumed),
        failed_attempts=row.failed_attempts,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
