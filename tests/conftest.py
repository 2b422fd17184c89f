"""
tests/conftest.py -- Shared test fixtures for CourseHub auth tests.

This module provides:
  - store / service: a fresh in-memory UserStore + AuthService per test
  - register_user(): helper that registers an account through the service
  - api_client: TestClient wired to an isolated shared-memory DB, plus an
    admin account and its bearer token

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

Environment must be set before any auth/core import:
  DEBUG=true            -- get_settings() auto-generates SECRET_KEY
  BCRYPT_ROUNDS=4       -- minimum bcrypt cost keeps the suite fast
  LOGIN_RATE_LIMIT      -- high enough that the login tests never hit 429
  ALLOWED_HOSTS         -- TestClient sends Host: testserver
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set env before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

from api.main import app
from auth.models import AuthResult
from auth.roles import Role
from auth.service import AuthService
from auth.store import UserStore, to_iso

ADMIN_EMAIL = "admin@coursehub.test"
ADMIN_PASSWORD = "Admin!pass1"


# ---------------------------------------------------------------------------
# Service-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def service(store: UserStore) -> AuthService:
    return AuthService(store)


def register_user(
    service: AuthService,
    email: str = "alice@x.com",
    password: str = "Secret!1",
    name: str = "Alice",
    role: Role | str = Role.student,
    **profile,
) -> AuthResult:
    return service.register(name, email, password, role, **profile)


def expire_all_sessions(store: UserStore, user_id: int | None = None) -> None:
    """Backdate session rows so their stored expiry is in the past."""
    past = to_iso(datetime.now(timezone.utc) - timedelta(minutes=5))
    sql = "UPDATE user_sessions SET expires_at = :past"
    params: dict = {"past": past}
    if user_id is not None:
        sql += " WHERE user_id = :uid"
        params["uid"] = user_id
    with store.engine.begin() as conn:
        conn.execute(text(sql), params)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return a lifespan that installs a pre-built AuthService on app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, AuthService, str], None, None]:
    """Yield (client, service, admin_token) backed by a per-module database.

    The admin account is created before the client starts; its token is a
    real session token issued by AuthService.login().
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    s = UserStore(f"sqlite:///file:test_auth_{suffix}?mode=memory&cache=shared&uri=true")
    service = AuthService(s)
    service.create_account("Site Admin", ADMIN_EMAIL, ADMIN_PASSWORD, Role.admin)
    admin_token = service.login(ADMIN_EMAIL, ADMIN_PASSWORD).token

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service, admin_token

    s.close()


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
