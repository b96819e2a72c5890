"""
tests/test_admin_routes.py -- Integration tests for /api/v1/admin/* routes.

Coverage:
  - Admin login: admin gets a session, non-admin gets 403 and no session
  - Admin surfaces: 401 without a session, 403 for a user session
  - User list pagination, detail, 404
  - Level/role updates, last-admin demotion guard
  - Delete cascades passkeys and invalidates sessions; self-delete refused
  - Bootstrap admin account creation

Fixtures used (from conftest.py):
  - api_client: TestClient against http://testserver
  - admin: (token, user_id) for the single admin account created for this module
"""

from __future__ import annotations

import pytest
from authenticator import bearer, login, register
from fastapi import HTTPException
from fastapi.testclient import TestClient

from api.routes.v1.auth import _account_for_registration
from auth.models import ROLE_ADMIN, User
from auth.store import UserStore


def _user_id(client: TestClient, token: str) -> str:
    return client.get("/api/v1/users/me", headers=bearer(token)).json()["id"]


@pytest.fixture(scope="module")
def admin(api_client: TestClient) -> tuple[str, str]:
    """Register "root", promote it in the store, and log in through the admin endpoint."""
    token, authn = register(api_client, "root")
    root_id = _user_id(api_client, token)
    api_client.app.state.user_store.update_user(root_id, role=ROLE_ADMIN)
    resp = login(api_client, authn, prefix="/api/v1/admin")
    assert resp.status_code == 200, resp.text
    return resp.json()["token"], root_id


class TestAdminLogin:
    def test_scenario_d_non_admin_is_forbidden(self, api_client: TestClient) -> None:
        _token, authn = register(api_client, "plainuser")
        resp = login(api_client, authn, prefix="/api/v1/admin")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"
        assert "token" not in resp.json()

    def test_non_admin_login_still_advances_counter(self, api_client: TestClient) -> None:
        _token, authn = register(api_client, "counted")
        assert login(api_client, authn, prefix="/api/v1/admin").status_code == 403
        credential = api_client.app.state.user_store.get_credential(authn.credential_id_b64)
        assert credential.sign_count == 1

    def test_admin_session_works(self, api_client: TestClient, admin) -> None:
        token, _ = admin
        assert api_client.get("/api/v1/admin/users", headers=bearer(token)).status_code == 200


class TestAdminAccess:
    def test_no_session_is_401(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/admin/users")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_user_session_is_403(self, api_client: TestClient) -> None:
        token, _ = register(api_client, "nosy")
        resp = api_client.get("/api/v1/admin/users", headers=bearer(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_user_named_admin_is_not_admin(self, api_client: TestClient) -> None:
        token, _ = register(api_client, "admin")
        assert api_client.get("/api/v1/admin/users", headers=bearer(token)).status_code == 403


class TestUserManagement:
    def test_list_paginates(self, api_client: TestClient, admin) -> None:
        token, _ = admin
        for name in ("page1", "page2", "page3"):
            register(api_client, name)
        resp = api_client.get("/api/v1/admin/users?page=1&page_size=2", headers=bearer(token))
        assert resp.status_code == 200
        body = resp.json()
        assert len(body["data"]) == 2
        assert body["pagination"]["page_size"] == 2
        assert body["pagination"]["total"] >= 4
        assert body["pagination"]["total_pages"] == -(-body["pagination"]["total"] // 2)

    def test_page_size_bounds(self, api_client: TestClient, admin) -> None:
        token, _ = admin
        assert api_client.get("/api/v1/admin/users?page_size=101", headers=bearer(token)).status_code == 422
        assert api_client.get("/api/v1/admin/users?page=0", headers=bearer(token)).status_code == 422

    def test_detail_and_404(self, api_client: TestClient, admin) -> None:
        token, root_id = admin
        resp = api_client.get(f"/api/v1/admin/users/{root_id}", headers=bearer(token))
        assert resp.status_code == 200
        assert resp.json()["username"] == "root"
        assert api_client.get("/api/v1/admin/users/missing", headers=bearer(token)).status_code == 404

    def test_update_level(self, api_client: TestClient, admin) -> None:
        token, _ = admin
        user_token, _ = register(api_client, "levelup")
        uid = _user_id(api_client, user_token)
        resp = api_client.put(f"/api/v1/admin/users/{uid}", json={"level": 7}, headers=bearer(token))
        assert resp.status_code == 200
        assert resp.json()["level"] == 7

    def test_empty_update_is_400(self, api_client: TestClient, admin) -> None:
        token, root_id = admin
        resp = api_client.put(f"/api/v1/admin/users/{root_id}", json={}, headers=bearer(token))
        assert resp.status_code == 400

    def test_promote_then_demote(self, api_client: TestClient, admin) -> None:
        token, _ = admin
        user_token, _ = register(api_client, "deputy")
        uid = _user_id(api_client, user_token)
        promote = api_client.put(f"/api/v1/admin/users/{uid}", json={"role": "admin"}, headers=bearer(token))
        assert promote.json()["role"] == "admin"
        assert api_client.get("/api/v1/admin/users", headers=bearer(user_token)).status_code == 200

        demote = api_client.put(f"/api/v1/admin/users/{uid}", json={"role": "user"}, headers=bearer(token))
        assert demote.json()["role"] == "user"
        assert api_client.get("/api/v1/admin/users", headers=bearer(user_token)).status_code == 403

    def test_cannot_demote_last_admin(self, api_client: TestClient, admin) -> None:
        token, root_id = admin
        resp = api_client.put(f"/api/v1/admin/users/{root_id}", json={"role": "user"}, headers=bearer(token))
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "last_admin"

    def test_cannot_delete_self(self, api_client: TestClient, admin) -> None:
        token, root_id = admin
        resp = api_client.delete(f"/api/v1/admin/users/{root_id}", headers=bearer(token))
        assert resp.status_code == 400

    def test_delete_cascades_and_ends_sessions(self, api_client: TestClient, admin) -> None:
        token, _ = admin
        user_token, authn = register(api_client, "leaving")
        uid = _user_id(api_client, user_token)

        resp = api_client.delete(f"/api/v1/admin/users/{uid}", headers=bearer(token))
        assert resp.status_code == 204
        assert api_client.app.state.user_store.get_credential(authn.credential_id_b64) is None
        assert api_client.get("/api/v1/auth/session", headers=bearer(user_token)).json()["valid"] is False
        assert login(api_client, authn).status_code == 404


class TestBootstrapAdmin:
    """_account_for_registration() grants admin only to the configured name, only once."""

    def test_bootstrap_when_no_admin(self, db_url, settings_env) -> None:
        settings_env(bootstrap_admin_username="owner")
        store = UserStore(db_url=db_url)
        try:
            owner = _account_for_registration(store, "owner", "owner@example.com")
            assert owner.role == ROLE_ADMIN
            other = _account_for_registration(store, "someone", "someone@example.com")
            assert other.role == "user"
        finally:
            store.close()

    def test_no_bootstrap_once_admin_exists(self, db_url, settings_env) -> None:
        settings_env(bootstrap_admin_username="owner")
        store = UserStore(db_url=db_url)
        try:
            store.create_user(User(username="existing", email="existing@example.com", role=ROLE_ADMIN))
            owner = _account_for_registration(store, "owner", "owner@example.com")
            assert owner.role == "user"
        finally:
            store.close()

    def test_mismatched_pair_conflicts(self, db_url) -> None:
        store = UserStore(db_url=db_url)
        try:
            _account_for_registration(store, "zed", "zed@example.com")
            with pytest.raises(HTTPException) as exc_info:
                _account_for_registration(store, "zed", "other@example.com")
            assert exc_info.value.status_code == 409
        finally:
            store.close()
