"""
tests/conftest.py -- Shared test fixtures for sessionkeeper.

This module provides:
  - user_store / code_store: isolated in-memory stores for unit tests
  - sink: a NotificationSink that records what it was asked to send
  - clock: a controllable clock for one-time-code expiry tests
  - manager: a SessionManager wired to all of the above
  - api_client: TestClient over the real app with a patched lifespan

Design: API tests use named shared-memory SQLite URIs (not plain :memory:)
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

Environment variables must be set before any core/auth import so
get_settings() builds a dev-mode Settings: random SECRET_KEY, cheap bcrypt
cost, rate limiting off.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.code_store import CodeStore
from auth.session import SessionManager
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import get_settings

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingSink:
    """NotificationSink that keeps every (email, code) it was handed."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail_with: Exception | None = None

    def send_one_time_code(self, email: str, code: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((email, code))

    def last_code_for(self, email: str) -> str:
        return [code for addr, code in self.sent if addr == email][-1]


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def code_store() -> Generator[CodeStore, None, None]:
    store = CodeStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec.from_settings(get_settings())


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def manager(user_store, code_store, codec, sink, clock) -> SessionManager:
    return SessionManager(user_store, code_store, codec, sink, clock=clock)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, code_store: CodeStore, sink: RecordingSink):
    """Return an async context manager that replaces the real lifespan.

    Wires isolated test stores and a recording sink into app.state so routes
    never touch the real database or a mail server.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.code_store = code_store
        app.state.sessions = SessionManager.from_settings(get_settings(), user_store, code_store, sink)
        yield

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[tuple[TestClient, RecordingSink], None, None]:
    """Yield (client, sink) over the real app with fresh in-memory stores.

    Function-scoped: every test starts with an empty user table.
    """
    db_url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(db_url)
    code_store = CodeStore(db_url)
    sink = RecordingSink()

    app.router.lifespan_context = _patch_lifespan(user_store, code_store, sink)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, sink

    user_store.close()
    code_store.close()
