"""
tests/conftest.py -- Shared test fixtures for Stocks Hunter auth tests.

This module provides:
  - engine / clock / store / sessions / audit / service: unit-level fixtures
  - _patch_lifespan(): wires a test engine into app.state, bypassing real startup
  - api_client: module-scoped TestClient over a seeded database
  - admin_token: a fresh admin session per test

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The environment must be set before any api/auth/core import: get_settings()
is cached on first use, and api.main reads ALLOWED_HOSTS and LOGIN_RATE_LIMIT
at import time.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("AUTH_BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["app.example", "testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app, init_auth_state
from auth.audit import AuditLogger
from auth.seed import seed_auth
from auth.service import AdminService
from auth.sessions import SessionStore
from auth.store import AuthStore
from tests.helpers import ADMIN_EMAIL, ADMIN_PASSWORD, BASE_URL, FakeClock, login, make_engine

# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = make_engine()
    yield eng
    eng.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(engine: Engine) -> AuthStore:
    return AuthStore(engine)


@pytest.fixture
def sessions(engine: Engine, clock: FakeClock) -> SessionStore:
    return SessionStore(engine, ttl_hours=24, pepper="test-pepper", clock=clock)


@pytest.fixture
def audit(engine: Engine) -> AuditLogger:
    return AuditLogger(engine)


@pytest.fixture
def service(store: AuthStore, sessions: SessionStore, audit: AuditLogger) -> AdminService:
    return AdminService(store, sessions, audit)


# ---------------------------------------------------------------------------
# Application fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(engine: Engine):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test engine into app.state so TestClient routes see
    an isolated test DB rather than the configured DATABASE_URL.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_auth_state(app, engine)
        yield

    return test_lifespan


@dataclass
class ApiContext:
    client: TestClient
    engine: Engine
    admin_id: str


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for HTTP integration tests.

    The database is seeded with the default catalog and an ADMIN user
    (ADMIN_EMAIL / ADMIN_PASSWORD) before the client starts. One client per
    test module; the login throttle lives on app.state and is rebuilt with it.
    """
    eng = make_engine("api")
    result = seed_auth(eng, admin_email=ADMIN_EMAIL, admin_password=ADMIN_PASSWORD, bcrypt_rounds=4)

    app.router.lifespan_context = _patch_lifespan(eng)

    with TestClient(app, base_url=BASE_URL, raise_server_exceptions=True) as client:
        yield ApiContext(client=client, engine=eng, admin_id=result.admin_user_id)

    eng.dispose()


@pytest.fixture
def admin_token(api_client: ApiContext) -> str:
    """A fresh admin session token for one test."""
    resp, token = login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD)
    assert resp.status_code == 200, resp.text
    return token
