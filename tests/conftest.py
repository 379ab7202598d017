"""
tests/conftest.py -- Shared test fixtures for the stockdash auth tests.

This module provides:
  - RecordingNotifier: captures verification codes instead of sending mail
  - FakeClock: controllable "now" for expiry tests
  - store / service: in-memory UserStore and an AuthService around it
  - api_client: TestClient over the real app with an isolated store

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

Environment variables must be set before any auth/core import so
get_settings() auto-generates SECRET_KEY in dev mode and the rate limits do
not trip during a test run.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("RESEND_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.notifier import NotificationError
from auth.service import AuthService
from auth.store import UserStore
from core.config import get_settings

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingNotifier:
    """Notifier that remembers every code it was asked to deliver.

    Set fail=True to make the next deliveries raise NotificationError.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    def send_verification_code(self, email: str, name: str, code: str) -> None:
        if self.fail:
            raise NotificationError(f"delivery to {email} refused")
        self.sent.append((email, name, code))

    def last_code(self, email: str) -> str:
        for sent_email, _name, code in reversed(self.sent):
            if sent_email == email:
                return code
        raise AssertionError(f"no code sent to {email}")


class FakeClock:
    """Callable clock whose time only moves when advance() is called."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(store: UserStore, notifier: RecordingNotifier, clock: FakeClock) -> AuthService:
    return AuthService(store, notifier, get_settings(), clock=clock)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, notifier: RecordingNotifier):
    """Return a lifespan that wires the test store and notifier into app.state.

    The purge_task is a long-sleeping coroutine so shutdown can cancel a real
    asyncio.Task, as the production lifespan does.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.auth_service = AuthService(user_store, notifier, get_settings())
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[tuple[TestClient, RecordingNotifier, UserStore], None, None]:
    """Yield (client, notifier, store) backed by a fresh shared-memory database."""
    db_url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(db_url)
    notifier = RecordingNotifier()

    app.router.lifespan_context = _patch_lifespan(user_store, notifier)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, notifier, user_store

    user_store.close()
