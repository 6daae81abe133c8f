"""
tests/conftest.py -- Shared test fixtures for Lockbox unit and integration tests.

This module provides:
  - FlakyStore: wraps any store and raises StoreError on a chosen call
  - FakeClock: injectable clock for share-expiry tests
  - metadata_store / ciphertext_store: raw in-memory stores
  - lockbox: managers wired to flaky-wrapped in-memory stores and a FakeClock
  - api_client: TestClient with a registered user and a Bearer token

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit fixtures run on one thread and use plain :memory:.

The DEBUG env var must be set before any core/auth import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections import Counter
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

# CRITICAL: Set DEBUG before any core/auth import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_state
from auth.accounts import UserManager
from ciphertext.store import SQLiteCiphertextStore
from core.config import get_settings
from core.errors import StoreError
from core.lifecycle import SecretManager
from core.models import Identity, User
from metadata.store import SQLMetadataStore

TEST_PASSWORD = "correct-horse-battery"


# ---------------------------------------------------------------------------
# Failure injection and time
# ---------------------------------------------------------------------------


class FlakyStore:
    """Transparent store wrapper that can be told to fail a specific call.

    fail_on("set", nth=2) makes the second `set` call from now raise
    StoreError. Calls made by rollback inverses count too, so tests can also
    make an inverse fail.
    """

    def __init__(self, inner: Any) -> None:
        self._inner = inner
        self._faults: dict[str, list[int]] = {}
        self.calls: Counter = Counter()

    def fail_on(self, name: str, nth: int = 1) -> None:
        self._faults.setdefault(name, []).append(self.calls[name] + nth)

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._inner, name)
        if not callable(attr):
            return attr

        def call(*args, **kwargs):
            self.calls[name] += 1
            if self.calls[name] in self._faults.get(name, []):
                raise StoreError(f"injected failure in {name}")
            return attr(*args, **kwargs)

        return call


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@dataclass
class Lockbox:
    meta: FlakyStore
    cipher: FlakyStore
    secrets: SecretManager
    accounts: UserManager
    clock: FakeClock

    def register(self, handle: str, display_name: str | None = None) -> User:
        return self.accounts.register(handle, display_name or handle.title(), TEST_PASSWORD)


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def metadata_store() -> Generator[SQLMetadataStore, None, None]:
    store = SQLMetadataStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def ciphertext_store() -> Generator[SQLiteCiphertextStore, None, None]:
    store = SQLiteCiphertextStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def lockbox(metadata_store, ciphertext_store, clock) -> Lockbox:
    """Managers over flaky-wrapped in-memory stores with a frozen clock."""
    meta = FlakyStore(metadata_store)
    cipher = FlakyStore(ciphertext_store)
    secrets = SecretManager(meta, cipher, clock=clock)
    accounts = UserManager(meta, cipher, secrets)
    return Lockbox(meta=meta, cipher=cipher, secrets=secrets, accounts=accounts, clock=clock)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[SQLMetadataStore, SQLiteCiphertextStore]:
    """Create isolated stores for one test module.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'health').
    """
    meta_url = f"sqlite:///file:test_meta_{db_suffix}?mode=memory&cache=shared&uri=true"
    return SQLMetadataStore(db_url=meta_url), SQLiteCiphertextStore(":memory:")


def _patch_lifespan(metadata_store: SQLMetadataStore, ciphertext_store: SQLiteCiphertextStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the test stores through the same build_state() the real lifespan
    uses, so routes see isolated in-memory databases.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_state(app, get_settings(), metadata_store, ciphertext_store)
        yield

    return test_lifespan


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    limiter.reset()


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The user "apiuser" (password TEST_PASSWORD) is registered through the
    real UserManager once the client has started, so it has a CipherKey like
    any other account.
    """
    metadata_store, ciphertext_store = _make_test_stores(request.module.__name__.rsplit(".", 1)[-1])
    app.router.lifespan_context = _patch_lifespan(metadata_store, ciphertext_store)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=False) as client:
        user = app.state.accounts.register("apiuser", "API User", TEST_PASSWORD)
        token = app.state.tokens.issue(Identity(user_id=user.id, handle=user.handle)).token
        yield client, token, user.id

    ciphertext_store.close()
    metadata_store.close()


def register_via_api(client: TestClient, handle: str) -> str:
    """Register a user over HTTP and return their Bearer token."""
    resp = client.post(
        "/api/v1/auth/register",
        json={"handle": handle, "display_name": handle.title(), "password": TEST_PASSWORD},
    )
    assert resp.status_code == 201, resp.text
    client.cookies.clear()
    return resp.json()["access_token"]


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
