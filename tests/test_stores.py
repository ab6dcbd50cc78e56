"""Unit tests for auth/store.py and auth/code_store.py.

Covers:
- UserStore lookups, Conflict on duplicate email, update_fields whitelist
- swap_refresh_token() compare-and-swap semantics
- soft-deleted users are invisible
- driver failures surface as StorageUnavailable
- CodeStore supersede / find_valid / expiry / consume / failed-attempt burn
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from auth.errors import Conflict, StorageUnavailable
from auth.models import PASSWORD_RESET, OneTimeCode, User
from auth.store import iso_utc


def _user(email: str = "alice@example.com") -> User:
    return User(email=email, first_name="Alice", last_name="Liddell", hashed_password="$2b$04$notreal")


# ---------------------------------------------------------------------------
# UserStore
# ---------------------------------------------------------------------------


class TestUserStore:
    def test_create_assigns_public_id_and_timestamps(self, user_store) -> None:
        created = user_store.create(_user())
        assert created.id is not None
        assert len(created.public_id) == 36
        assert created.created_at and created.updated_at
        assert created.refresh_token is None

    def test_find_by_email_is_case_sensitive(self, user_store) -> None:
        user_store.create(_user("alice@example.com"))
        assert user_store.find_by_email("alice@example.com") is not None
        assert user_store.find_by_email("Alice@example.com") is None

    def test_find_by_id_uses_public_id(self, user_store) -> None:
        created = user_store.create(_user())
        assert user_store.find_by_id(created.public_id).email == "alice@example.com"
        assert user_store.find_by_id(str(created.id)) is None

    def test_duplicate_email_is_conflict(self, user_store) -> None:
        user_store.create(_user())
        with pytest.raises(Conflict):
            user_store.create(_user())

    def test_update_fields_rejects_unknown_columns(self, user_store) -> None:
        created = user_store.create(_user())
        with pytest.raises(ValueError):
            user_store.update_fields(created.public_id, email="evil@example.com")

    def test_update_fields_reports_missing_user(self, user_store) -> None:
        assert user_store.update_fields("no-such-id", refresh_token=None) is False

    def test_find_by_id_and_refresh_token(self, user_store) -> None:
        created = user_store.create(_user())
        user_store.update_fields(created.public_id, refresh_token="tok-1")
        assert user_store.find_by_id_and_refresh_token(created.public_id, "tok-1") is not None
        assert user_store.find_by_id_and_refresh_token(created.public_id, "tok-2") is None

    def test_swap_refresh_token_is_compare_and_swap(self, user_store) -> None:
        created = user_store.create(_user())
        user_store.update_fields(created.public_id, refresh_token="tok-1")

        assert user_store.swap_refresh_token(created.public_id, "tok-1", "tok-2") is True
        # Second swap from the stale value loses.
        assert user_store.swap_refresh_token(created.public_id, "tok-1", "tok-3") is False
        assert user_store.find_by_id(created.public_id).refresh_token == "tok-2"

    def test_soft_deleted_user_is_invisible(self, user_store) -> None:
        created = user_store.create(_user())
        with user_store.engine.connect() as conn:
            conn.execute(
                text("UPDATE users SET deleted_at = :ts WHERE public_id = :pid"),
                {"ts": iso_utc(), "pid": created.public_id},
            )
            conn.commit()
        assert user_store.find_by_email("alice@example.com") is None
        assert user_store.find_by_id(created.public_id) is None
        assert user_store.update_fields(created.public_id, refresh_token="x") is False

    def test_storage_failure_is_storage_unavailable(self, user_store) -> None:
        with user_store.engine.connect() as conn:
            conn.execute(text("DROP TABLE users"))
            conn.commit()
        with pytest.raises(StorageUnavailable) as excinfo:
            user_store.find_by_email("alice@example.com")
        assert excinfo.value.retryable is True
        assert user_store.ping() is False

    def test_ping(self, user_store) -> None:
        assert user_store.ping() is True


# ---------------------------------------------------------------------------
# CodeStore
# ---------------------------------------------------------------------------


def _code(code_hash: str, expires_in: timedelta = timedelta(minutes=15), email: str = "alice@example.com"):
    return OneTimeCode(
        email=email,
        code_hash=code_hash,
        purpose=PASSWORD_RESET,
        expires_at=iso_utc(datetime.now(timezone.utc) + expires_in),
    )


class TestCodeStore:
    def test_find_valid_matches_all_keys(self, code_store) -> None:
        code_store.create(_code("h1"))
        now = iso_utc()
        assert code_store.find_valid("alice@example.com", "h1", PASSWORD_RESET, now) is not None
        assert code_store.find_valid("alice@example.com", "h2", PASSWORD_RESET, now) is None
        assert code_store.find_valid("bob@example.com", "h1", PASSWORD_RESET, now) is None
        assert code_store.find_valid("alice@example.com", "h1", "email_verification", now) is None

    def test_expired_code_not_valid(self, code_store) -> None:
        code_store.create(_code("h1", expires_in=timedelta(seconds=-1)))
        assert code_store.find_valid("alice@example.com", "h1", PASSWORD_RESET, iso_utc()) is None

    def test_expiry_compares_against_supplied_now(self, code_store) -> None:
        code_store.create(_code("h1", expires_in=timedelta(minutes=15)))
        later = iso_utc(datetime.now(timezone.utc) + timedelta(minutes=16))
        assert code_store.find_valid("alice@example.com", "h1", PASSWORD_RESET, later) is None

    def test_invalidate_outstanding_supersedes(self, code_store) -> None:
        code_store.create(_code("h1"))
        code_store.create(_code("other", email="bob@example.com"))
        assert code_store.invalidate_outstanding("alice@example.com", PASSWORD_RESET) == 1
        assert code_store.find_valid("alice@example.com", "h1", PASSWORD_RESET, iso_utc()) is None
        assert code_store.find_valid("bob@example.com", "other", PASSWORD_RESET, iso_utc()) is not None

    def test_mark_consumed_once(self, code_store) -> None:
        record = code_store.create(_code("h1"))
        assert code_store.mark_consumed(record.id) is True
        assert code_store.mark_consumed(record.id) is False
        assert code_store.get(record.id).consumed is True

    def test_failed_attempts_burn_code_at_limit(self, code_store) -> None:
        record = code_store.create(_code("h1"))
        for _ in range(2):
            code_store.register_failed_attempt("alice@example.com", PASSWORD_RESET, max_attempts=3)
        assert code_store.get(record.id).failed_attempts == 2
        assert code_store.get(record.id).consumed is False

        code_store.register_failed_attempt("alice@example.com", PASSWORD_RESET, max_attempts=3)
        assert code_store.get(record.id).consumed is True
        assert code_store.find_valid("alice@example.com", "h1", PASSWORD_RESET, iso_utc()) is None
