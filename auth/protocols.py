"""Collaborator interfaces consumed by the session manager.

UserStore, CodeStore and the notify sinks satisfy these structurally; tests
may substitute anything with the same methods.
"""

from __future__ import annotations

from typing import Protocol

from auth.models import OneTimeCode, User


class CredentialStore(Protocol):
    """Persists users. Absence is None, never an exception."""

    def find_by_email(self, email: str) -> User | None: ...

    def find_by_id(self, user_id: str) -> User | None: ...

    def find_by_id_and_refresh_token(self, user_id: str, token: str) -> User | None: ...

    def create(self, user: User) -> User: ...

    def update_fields(self, user_id: str, **fields) -> bool: ...

    def swap_refresh_token(self, user_id: str, expected: str, new: str | None) -> bool: ...


class CodeStore(Protocol):
    """Persists one-time codes with expiry and consumption state."""

    def invalidate_outstanding(self, email: str, purpose: str) -> int: ...

    def create(self, record: OneTimeCode) -> OneTimeCode: ...

    def find_valid(self, email: str, code_hash: str, purpose: str, now: str) -> OneTimeCode | None: ...

    def mark_consumed(self, code_id: int) -> bool: ...

    def register_failed_attempt(self, email: str, purpose: str, max_attempts: int) -> None: ...


class NotificationSink(Protocol):
    """Out-of-band delivery of one-time codes. May raise; callers contain it."""

    def send_one_time_code(self, email: str, code: str) -> None: ...
