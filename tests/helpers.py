"""
tests/helpers.py -- Plain helpers shared by the test modules.

Imported by conftest.py after the test environment variables are set.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from auth.models import User
from auth.schema import create_auth_engine
from auth.store import AuthStore
from auth.tokens import hash_password
from core.config import get_settings

BASE_URL = "https://app.example"
ORIGIN = {"Origin": BASE_URL}

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Adm1n!password"


def make_engine(prefix: str = "unit") -> Engine:
    """Create an isolated named shared-memory SQLite engine with the auth schema."""
    name = f"{prefix}_{uuid.uuid4().hex}"
    return create_auth_engine(f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")


class FakeClock:
    """Settable UTC clock for session expiry tests."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def add_user(store: AuthStore, email: str, password: str = "Passw0rd!x", is_active: bool = True) -> str:
    """Insert a user directly (no audit) and return its id."""
    return store.create_user(
        User(email=email, password_hash=hash_password(password, 4), full_name=email.split("@")[0], is_active=is_active)
    )


def cookie_header(token: str) -> dict[str, str]:
    """Explicit Cookie header carrying a raw session token."""
    return {"Cookie": f"{get_settings().auth_session_cookie_name}={token}"}


def login(
    client: TestClient,
    email: str,
    password: str,
    headers: Optional[dict[str, str]] = None,
):
    """POST /auth/login and return (response, raw session token or None).

    The client's cookie jar is cleared afterwards so every later request
    states its session explicitly through cookie_header().
    """
    resp = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
        headers={**ORIGIN, **(headers or {})},
    )
    token = resp.cookies.get(get_settings().auth_session_cookie_name)
    client.cookies.clear()
    return resp, token
