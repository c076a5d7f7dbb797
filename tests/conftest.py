"""
tests/conftest.py -- Shared test fixtures for Stockroom.

This module provides:
  - _make_test_stores(): isolated in-memory DBs for auth + catalog
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - client: TestClient against the real app with a patched lifespan
  - register: factory that registers a user over HTTP and returns its tokens
  - service / issuer / catalog: direct handles for unit-level tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
Each fixture instance gets a uuid-suffixed name so tests never share rows.

DEBUG, BCRYPT_ROUNDS and RATE_LIMIT_ENABLED must be set before any project
import: get_settings() is cached on first use and api.limiter reads it at
import time.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_services
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import SessionStore, UserStore
from auth.tokens import ACCESS_COOKIE, REFRESH_COOKIE, TokenIssuer
from catalog.store import CatalogStore
from core.config import get_settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-chars"
DEFAULT_PASSWORD = "secret123"


def _memory_url(name: str) -> str:
    return f"sqlite:///file:{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def _make_test_stores() -> tuple[UserStore, SessionStore, CatalogStore]:
    """Create isolated named shared-memory SQLite stores.

    UserStore and SessionStore share one database, like in production.
    """
    auth_url = _memory_url("test_auth")
    return UserStore(db_url=auth_url), SessionStore(db_url=auth_url), CatalogStore(db_url=_memory_url("test_catalog"))


def _patch_lifespan(user_store: UserStore, session_store: SessionStore, catalog: CatalogStore):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, get_settings(), user_store, session_store, catalog)
        yield

    return test_lifespan


class ShiftableClock:
    """Callable clock for TokenIssuer that tests can move forward or back."""

    def __init__(self) -> None:
        self.offset = timedelta(0)

    def __call__(self) -> datetime:
        return datetime.now(timezone.utc) + self.offset

    def shift(self, **kwargs: Any) -> None:
        self.offset += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Store and service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[tuple[UserStore, SessionStore, CatalogStore], None, None]:
    user_store, session_store, catalog = _make_test_stores()
    yield user_store, session_store, catalog
    session_store.close()
    user_store.close()
    catalog.close()


@pytest.fixture
def catalog(stores) -> CatalogStore:
    return stores[2]


@pytest.fixture
def secret_key() -> str:
    return TEST_SECRET


@pytest.fixture
def clock() -> ShiftableClock:
    return ShiftableClock()


@pytest.fixture
def issuer(clock: ShiftableClock, secret_key: str) -> TokenIssuer:
    return TokenIssuer(secret_key=secret_key, clock=clock)


@pytest.fixture
def service(stores, issuer: TokenIssuer) -> AuthService:
    user_store, session_store, _catalog = stores
    return AuthService(
        users=user_store,
        sessions=session_store,
        hasher=PasswordHasher(rounds=4),
        issuer=issuer,
    )


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def client(stores) -> Generator[TestClient, None, None]:
    """TestClient on the real app; route handlers see this test's stores."""
    app.router.lifespan_context = _patch_lifespan(*stores)
    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client


@pytest.fixture
def register(client: TestClient) -> Callable[..., dict[str, Any]]:
    """Register a user over HTTP and return {"id", "access", "refresh", "headers"}.

    The client's cookie jar is cleared afterwards so tests that juggle several
    users always authenticate explicitly through the returned headers.
    """

    def _register(username: str, group: str = "user", password: str = DEFAULT_PASSWORD) -> dict[str, Any]:
        resp = client.post(
            "/api/v1/auth/register",
            json={"username": username, "email": f"{username}@example.com", "password": password, "group": group},
        )
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        access = resp.cookies.get(ACCESS_COOKIE)
        refresh = resp.cookies.get(REFRESH_COOKIE)
        client.cookies.clear()
        return {
            "id": resp.json()["id"],
            "access": access,
            "refresh": refresh,
            "headers": {"Authorization": f"Bearer {access}"},
        }

    return _register
