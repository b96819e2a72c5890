"""
tests/conftest.py -- Shared test fixtures for forum API tests.

This module provides:
  - _make_test_stores(): isolated in-memory stores for one test module
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient over the real app with patched lifespan
  - db_url / user_store / kv: file-backed stores for unit tests
  - settings_env: set env vars for one test and rebuild get_settings()

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

DEBUG is set before any app import so config validation does not warn
about the relying party being derived from requests.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.store import UserStore
from cache.store import EphemeralStore
from core.config import get_settings
from messages.store import MessageStore

# Rate limits are exercised in production config only; every test module
# runs many ceremonies from the same client address.
limiter.enabled = False


class FakeClock:
    """Injectable clock for EphemeralStore. advance() moves time forward."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, EphemeralStore, MessageStore]:
    """Create named shared-memory SQLite stores for one test module.

    All three stores share one database so message foreign keys resolve.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'auth', 'admin').
    """
    url = f"sqlite:///file:test_forum_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=url), EphemeralStore(db_url=url), MessageStore(db_url=url)


def _patch_lifespan(user_store: UserStore, kv: EphemeralStore, message_store: MessageStore, objects=None):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.kv = kv
        app.state.message_store = message_store
        app.state.objects = objects
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def make_client(db_suffix: str, objects=None) -> Generator[TestClient, None, None]:
    user_store, kv, message_store = _make_test_stores(db_suffix)
    app.router.lifespan_context = _patch_lifespan(user_store, kv, message_store, objects)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
    message_store.close()
    kv.close()
    user_store.close()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[TestClient, None, None]:
    """TestClient over the real app, isolated per test module.

    Base URL is http://testserver, so the relying party resolves to
    rp_id="testserver", origin="http://testserver".
    """
    yield from make_client(request.module.__name__.rsplit(".", 1)[-1])


@pytest.fixture
def settings_env(monkeypatch):
    """Return a setter that applies env vars and rebuilds the settings singleton.

    The cache is cleared again on teardown so later tests see defaults.
    """

    def apply(**values):
        for key, value in values.items():
            monkeypatch.setenv(key.upper(), str(value))
        get_settings.cache_clear()
        return get_settings()

    yield apply
    get_settings.cache_clear()


@pytest.fixture
def db_url(tmp_path) -> str:
    """A fresh file-backed SQLite database per test (safe across threads)."""
    return f"sqlite:///{tmp_path / 'forum.db'}"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def user_store(db_url) -> Generator[UserStore, None, None]:
    store = UserStore(db_url=db_url)
    yield store
    store.close()


@pytest.fixture
def kv(db_url, clock) -> Generator[EphemeralStore, None, None]:
    store = EphemeralStore(db_url=db_url, clock=clock)
    yield store
    store.close()
