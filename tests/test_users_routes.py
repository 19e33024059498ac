"""
tests/test_users_routes.py -- Integration tests for /settings/users.

The router sits behind authenticate + require_permission(access_settings),
so these tests double as the end-to-end check of the permission gate:
managers and curators get 403, anonymous callers 401, the admin gets through.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import ADMIN_EMAIL, AuthEnv, login


def _admin_headers(client: TestClient) -> dict[str, str]:
    token = login(client).json()["token"]
    client.cookies.clear()
    return {"Authorization": f"Bearer {token}"}


def _new_user(auth_env: AuthEnv, **overrides) -> dict:
    body = {
        "full_name": "Jane Doe",
        "email": "jane@school.test",
        "telephone": "+1 555 0100",
        "password": "pw123",
        "role_id": auth_env.seeded_roles["curator"].id,
    }
    body.update(overrides)
    return body


class TestGate:
    def test_anonymous_is_401(self, client: TestClient) -> None:
        assert client.get("/settings/users").status_code == 401

    @pytest.mark.parametrize("role", ["manager", "curator"])
    def test_without_settings_capability_is_403(self, client: TestClient, auth_env: AuthEnv, role: str) -> None:
        auth_env.make_user(f"{role}@school.test", "pw123", role=role)
        token = login(client, f"{role}@school.test", "pw123").json()["token"]

        resp = client.get("/settings/users", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_session_cookie_passes_gate(self, client: TestClient) -> None:
        login(client)
        assert client.get("/settings/users").status_code == 200


class TestCrud:
    def test_create_and_get(self, client: TestClient, auth_env: AuthEnv) -> None:
        headers = _admin_headers(client)

        resp = client.post("/settings/users", json=_new_user(auth_env, email="Jane@School.test"), headers=headers)
        assert resp.status_code == 201
        created = resp.json()
        assert created["email"] == "jane@school.test"
        assert "password" not in created
        assert "password_hash" not in created

        fetched = client.get(f"/settings/users/{created['id']}", headers=headers)
        assert fetched.status_code == 200
        assert fetched.json() == created

    def test_new_user_can_log_in(self, client: TestClient, auth_env: AuthEnv) -> None:
        headers = _admin_headers(client)
        client.post("/settings/users", json=_new_user(auth_env), headers=headers)
        resp = login(client, "jane@school.test", "pw123")
        assert resp.status_code == 200
        assert resp.json()["role"] == "curator"

    def test_duplicate_email_is_409(self, client: TestClient, auth_env: AuthEnv) -> None:
        headers = _admin_headers(client)
        client.post("/settings/users", json=_new_user(auth_env), headers=headers)
        resp = client.post("/settings/users", json=_new_user(auth_env, email="JANE@school.test"), headers=headers)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_unknown_role_is_400(self, client: TestClient, auth_env: AuthEnv) -> None:
        headers = _admin_headers(client)
        resp = client.post("/settings/users", json=_new_user(auth_env, role_id=999), headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "unknown_role"

    def test_invalid_body_is_400(self, client: TestClient, auth_env: AuthEnv) -> None:
        headers = _admin_headers(client)
        resp = client.post("/settings/users", json=_new_user(auth_env, email="nope"), headers=headers)
        assert resp.status_code == 400

    def test_multibyte_password_over_72_bytes_is_400(self, client: TestClient, auth_env: AuthEnv) -> None:
        headers = _admin_headers(client)
        # 40 characters, 80 bytes.
        resp = client.post("/settings/users", json=_new_user(auth_env, password="é" * 40), headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_request"
        assert auth_env.users.get_by_email("jane@school.test") is None

    def test_password_whitespace_is_kept(self, client: TestClient, auth_env: AuthEnv) -> None:
        headers = _admin_headers(client)
        body = _new_user(auth_env, email="  jane@school.test ", password=" pw123 ")
        assert client.post("/settings/users", json=body, headers=headers).status_code == 201

        assert login(client, "jane@school.test", " pw123 ").status_code == 200
        assert login(client, "jane@school.test", "pw123").status_code == 401

    def test_list_and_filter(self, client: TestClient, auth_env: AuthEnv) -> None:
        headers = _admin_headers(client)
        auth_env.make_user("m@school.test", role="manager")
        auth_env.make_user("c@school.test", role="curator")

        everyone = client.get("/settings/users", headers=headers).json()
        assert {u["email"] for u in everyone} == {ADMIN_EMAIL, "m@school.test", "c@school.test"}

        manager_id = auth_env.seeded_roles["manager"].id
        filtered = client.get(f"/settings/users?role={manager_id}", headers=headers).json()
        assert [u["email"] for u in filtered] == ["m@school.test"]

        managers = client.get("/settings/users/managers", headers=headers).json()
        curators = client.get("/settings/users/curators", headers=headers).json()
        assert [u["email"] for u in managers] == ["m@school.test"]
        assert [u["email"] for u in curators] == ["c@school.test"]

    def test_update(self, client: TestClient, auth_env: AuthEnv) -> None:
        headers = _admin_headers(client)
        uid = auth_env.make_user("c@school.test", role="curator", full_name="Old")

        resp = client.put(f"/settings/users/{uid}", json={"full_name": "New", "email": "C2@school.test"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["full_name"] == "New"
        assert resp.json()["email"] == "c2@school.test"
        assert resp.json()["telephone"] == ""

    def test_update_email_conflict(self, client: TestClient, auth_env: AuthEnv) -> None:
        headers = _admin_headers(client)
        uid = auth_env.make_user("c@school.test", role="curator")
        resp = client.put(f"/settings/users/{uid}", json={"email": ADMIN_EMAIL}, headers=headers)
        assert resp.status_code == 409

    def test_missing_user_is_404(self, client: TestClient) -> None:
        headers = _admin_headers(client)
        assert client.get("/settings/users/999", headers=headers).status_code == 404
        assert client.put("/settings/users/999", json={"full_name": "X"}, headers=headers).status_code == 404
        assert client.delete("/settings/users/999", headers=headers).status_code == 404

    def test_delete_ends_their_session(self, client: TestClient, auth_env: AuthEnv) -> None:
        uid = auth_env.make_user("c@school.test", role="curator")
        login(client, "c@school.test", "pw123")
        assert auth_env.sessions.get_by_user(uid) is not None

        headers = _admin_headers(client)
        resp = client.delete(f"/settings/users/{uid}", headers=headers)
        assert resp.status_code == 204
        assert auth_env.users.get_by_id(uid) is None
        assert auth_env.sessions.get_by_user(uid) is None

    def test_cannot_delete_self(self, client: TestClient, auth_env: AuthEnv) -> None:
        headers = _admin_headers(client)
        admin = auth_env.users.get_by_email(ADMIN_EMAIL)
        resp = client.delete(f"/settings/users/{admin.id}", headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "self_deletion"
