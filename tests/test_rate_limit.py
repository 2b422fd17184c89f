"""
tests/test_rate_limit.py -- [H2] per-IP limits on the password endpoints.

The limit is read from Settings on every request, so each test lowers it on
the cached Settings instance and resets the shared in-memory counters.
"""

from __future__ import annotations

import pytest

from api.limiter import limiter
from core.config import get_settings


@pytest.fixture
def login_limit(api_client, monkeypatch: pytest.MonkeyPatch):
    """Return a setter that installs a fresh login limit for one test."""
    client, _service, _token = api_client
    client.cookies.clear()

    def _set(value: str) -> None:
        monkeypatch.setattr(get_settings(), "login_rate_limit", value)
        limiter.reset()

    yield _set
    limiter.reset()


def _attempts(client, path: str, n: int) -> list:
    return [client.post(path, json={"email": "nobody@x.com", "password": "wrong"}) for _ in range(n)]


def test_login_limited_after_threshold(api_client, login_limit) -> None:
    client, _service, _ = api_client
    login_limit("3/minute")
    responses = _attempts(client, "/api/v1/auth/login", 5)
    assert [r.status_code for r in responses] == [401, 401, 401, 429, 429]
    blocked = responses[-1]
    assert blocked.json()["error"]["code"] == "rate_limited"
    assert blocked.headers["Retry-After"] == "60"


def test_retry_after_follows_window(api_client, login_limit) -> None:
    client, _service, _ = api_client
    login_limit("1/hour")
    responses = _attempts(client, "/api/v1/auth/login", 2)
    assert responses[1].status_code == 429
    assert responses[1].headers["Retry-After"] == "3600"


def test_admin_login_limited(api_client, login_limit) -> None:
    client, _service, _ = api_client
    login_limit("2/minute")
    codes = [r.status_code for r in _attempts(client, "/api/v1/auth/admin-login", 3)]
    assert codes == [401, 401, 429]


def test_register_not_limited(api_client, login_limit) -> None:
    client, _service, _ = api_client
    login_limit("1/minute")
    for i in range(3):
        resp = client.post(
            "/api/v1/auth/register",
            json={"name": "Rate Test", "email": f"rate{i}@x.com", "password": "Secret!1"},
        )
        assert resp.status_code == 201
