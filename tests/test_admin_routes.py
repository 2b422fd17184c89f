"""
tests/test_admin_routes.py -- Integration tests for /api/v1/admin routes.

Covers:
- role gate: 401 without a token, 403 for non-admins
- paginated, searchable user listing
- role changes and deactivation (which revokes the target's sessions)
- [M4] lockout guards: self-demotion and removing the last active admin
- single and bulk deletion, with admin accounts protected
- JSON and CSV export, with spreadsheet formulas neutralized
"""

from __future__ import annotations

import csv
import io
import itertools

import pytest
from conftest import bearer

from api.export import EXPORT_COLUMNS
from auth.roles import Role

_ids = itertools.count()


@pytest.fixture(autouse=True)
def _clear_cookies(api_client) -> None:
    client, _service, _token = api_client
    client.cookies.clear()


def _student(service, prefix: str = "member", role: Role = Role.student):
    n = next(_ids)
    return service.register(f"{prefix.title()} {n}", f"{prefix}{n}@x.com", "Secret!1", role)


class TestAccessControl:
    def test_requires_auth(self, api_client) -> None:
        client, _service, _ = api_client
        assert client.get("/api/v1/admin/users").status_code == 401

    def test_non_admin_forbidden(self, api_client) -> None:
        client, service, _ = api_client
        result = _student(service)
        resp = client.get("/api/v1/admin/users", headers=bearer(result.token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_non_admin_cannot_patch(self, api_client) -> None:
        client, service, _ = api_client
        result = _student(service)
        resp = client.patch(
            f"/api/v1/admin/users/{result.user.id}",
            json={"role": "admin"},
            headers=bearer(result.token),
        )
        assert resp.status_code == 403
        assert service.get_profile(result.user.id).role == "student"


class TestListUsers:
    def test_pagination(self, api_client) -> None:
        client, service, admin_token = api_client
        for _ in range(5):
            _student(service, prefix="paged")
        resp = client.get(
            "/api/v1/admin/users",
            params={"page": 2, "limit": 2, "search": "paged"},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["pagination"] == {"page": 2, "limit": 2, "total": 5, "total_pages": 3}
        assert len(data["users"]) == 2
        assert all("hashed_password" not in u for u in data["users"])

    def test_search_is_case_insensitive(self, api_client) -> None:
        client, service, admin_token = api_client
        target = _student(service, prefix="findme")
        resp = client.get(
            "/api/v1/admin/users",
            params={"search": "FINDME"},
            headers=bearer(admin_token),
        )
        assert [u["id"] for u in resp.json()["users"]] == [target.user.id]

    def test_limit_capped(self, api_client) -> None:
        client, _service, admin_token = api_client
        resp = client.get("/api/v1/admin/users", params={"limit": 1000}, headers=bearer(admin_token))
        assert resp.status_code == 422


class TestUpdateUser:
    def test_change_role(self, api_client) -> None:
        client, service, admin_token = api_client
        result = _student(service)
        resp = client.patch(
            f"/api/v1/admin/users/{result.user.id}",
            json={"role": "instructor"},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["role"] == "instructor"
        assert service.verify(result.token).role == "instructor"

    def test_deactivate_revokes_sessions(self, api_client) -> None:
        client, service, admin_token = api_client
        result = _student(service)
        resp = client.patch(
            f"/api/v1/admin/users/{result.user.id}",
            json={"is_active": False},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False
        assert service.store.count_sessions(result.user.id) == 0
        assert client.get("/api/v1/auth/me", headers=bearer(result.token)).status_code == 401

    def test_unknown_role_422(self, api_client) -> None:
        client, service, admin_token = api_client
        result = _student(service)
        resp = client.patch(
            f"/api/v1/admin/users/{result.user.id}",
            json={"role": "superuser"},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 422

    def test_missing_user_404(self, api_client) -> None:
        client, _service, admin_token = api_client
        resp = client.patch("/api/v1/admin/users/999999", json={"is_active": False}, headers=bearer(admin_token))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "user_not_found"

    def test_self_lockout_blocked(self, api_client) -> None:
        client, service, admin_token = api_client
        admin_id = service.verify(admin_token).id
        resp = client.patch(
            f"/api/v1/admin/users/{admin_id}",
            json={"is_active": False},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "self_lockout"
        assert service.get_profile(admin_id).is_active is True

    def test_admin_can_demote_another_admin(self, api_client) -> None:
        client, service, admin_token = api_client
        other = _student(service, prefix="deputy")
        service.admin_update_user(other.user.id, role=Role.admin)
        resp = client.patch(
            f"/api/v1/admin/users/{other.user.id}",
            json={"role": "instructor"},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["role"] == "instructor"

    def test_last_admin_guard(self, api_client, monkeypatch: pytest.MonkeyPatch) -> None:
        client, service, admin_token = api_client
        other = _student(service, prefix="solo")
        service.admin_update_user(other.user.id, role=Role.admin)
        # Simulate the other admins having been removed concurrently.
        monkeypatch.setattr(service.store, "count_active_admins", lambda: 1)
        resp = client.patch(
            f"/api/v1/admin/users/{other.user.id}",
            json={"is_active": False},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "last_admin"
        assert service.get_profile(other.user.id).is_active is True


class TestDeleteUsers:
    def test_delete_user_revokes_access(self, api_client) -> None:
        client, service, admin_token = api_client
        result = _student(service, prefix="leaver")
        resp = client.delete(f"/api/v1/admin/users/{result.user.id}", headers=bearer(admin_token))
        assert resp.status_code == 200
        assert resp.json()["message"] == "User deleted successfully"
        assert client.get("/api/v1/auth/me", headers=bearer(result.token)).status_code == 401

    def test_admin_protected(self, api_client) -> None:
        client, service, admin_token = api_client
        admin_id = service.verify(admin_token).id
        resp = client.delete(f"/api/v1/admin/users/{admin_id}", headers=bearer(admin_token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "admin_protected"

    def test_unknown_user_404(self, api_client) -> None:
        client, _service, admin_token = api_client
        resp = client.delete("/api/v1/admin/users/999999", headers=bearer(admin_token))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "user_not_found"

    def test_non_admin_cannot_delete(self, api_client) -> None:
        client, service, _ = api_client
        actor = _student(service)
        victim = _student(service)
        resp = client.delete(f"/api/v1/admin/users/{victim.user.id}", headers=bearer(actor.token))
        assert resp.status_code == 403
        assert service.get_profile(victim.user.id).id == victim.user.id

    def test_bulk_delete(self, api_client) -> None:
        client, service, admin_token = api_client
        ids = [_student(service, prefix="bulk").user.id for _ in range(3)]
        resp = client.post(
            "/api/v1/admin/users/bulk-delete",
            json={"userIds": ids + [999999]},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["deleted_count"] == 3
        assert data["message"] == "3 user(s) deleted successfully."
        assert service.list_users(search="bulk").total == 0

    def test_bulk_delete_with_admin_deletes_nothing(self, api_client) -> None:
        client, service, admin_token = api_client
        student = _student(service, prefix="spared")
        admin_id = service.verify(admin_token).id
        resp = client.post(
            "/api/v1/admin/users/bulk-delete",
            json={"userIds": [student.user.id, admin_id]},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "admin_protected"
        assert service.get_profile(student.user.id).id == student.user.id

    @pytest.mark.parametrize("body", [{"userIds": []}, {"userIds": [0]}, {}])
    def test_bulk_delete_validation(self, api_client, body: dict) -> None:
        client, _service, admin_token = api_client
        resp = client.post("/api/v1/admin/users/bulk-delete", json=body, headers=bearer(admin_token))
        assert resp.status_code == 422


class TestExportUsers:
    def test_export_json(self, api_client) -> None:
        client, service, admin_token = api_client
        target = _student(service, prefix="exported")
        resp = client.get("/api/v1/admin/users/export", headers=bearer(admin_token))
        assert resp.status_code == 200
        users = resp.json()
        assert target.user.email in [u["email"] for u in users]
        assert all("hashed_password" not in u for u in users)

    def test_export_csv_neutralizes_formulas(self, api_client) -> None:
        client, service, admin_token = api_client
        n = next(_ids)
        service.register('=HYPERLINK("http://evil")', f"formula{n}@x.com", "Secret!1")
        resp = client.get("/api/v1/admin/users/export", params={"format": "csv"}, headers=bearer(admin_token))
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert "attachment" in resp.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(resp.text)))
        assert rows[0] == EXPORT_COLUMNS
        row = next(r for r in rows[1:] if r[2] == f"formula{n}@x.com")
        assert row[1] == '\t=HYPERLINK("http://evil")'

    def test_unknown_format_422(self, api_client) -> None:
        client, _service, admin_token = api_client
        resp = client.get("/api/v1/admin/users/export", params={"format": "xml"}, headers=bearer(admin_token))
        assert resp.status_code == 422

    def test_non_admin_forbidden(self, api_client) -> None:
        client, service, _ = api_client
        result = _student(service)
        assert client.get("/api/v1/admin/users/export", headers=bearer(result.token)).status_code == 403
