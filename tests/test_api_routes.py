"""
tests/test_api_routes.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> security context
dependency -> AuthService -> SQLite stores -> response model serialization ->
error envelope. Unit testing individual route functions would miss
middleware, dependency injection, and response model validation.

Fixtures used (from conftest.py):
  - api_client: ApiHarness with "admin" (ADMIN role) and "alice" (USER role),
    both registered with conftest.PASSWORD.
"""

from __future__ import annotations

from conftest import PASSWORD, ApiHarness


def _assert_envelope(resp, status: int, code: int) -> dict:
    assert resp.status_code == status, resp.text
    body = resp.json()
    assert body["status"] == status
    assert body["code"] == code
    assert body["path"] == resp.request.url.path
    assert "timestamp" in body
    return body


class TestRegister:
    def test_register_created(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={"username": "Bob_1", "email": "Bob@Example.com", "password": PASSWORD, "firstName": "Bob"},
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["username"] == "bob_1"
        assert body["email"] == "bob@example.com"
        assert body["firstName"] == "Bob"
        assert body["message"] == "User registered successfully"
        assert "password" not in body
        assert "passwordHash" not in body

    def test_register_conflict(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={"username": "ALICE", "email": "new@example.com", "password": PASSWORD},
        )
        body = _assert_envelope(resp, 409, 2101)
        assert body["message"] == "Username already exists"

    def test_register_field_errors(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/register",
            json={"username": "x", "email": "nope", "password": "short", "lastName": ""},
        )
        body = _assert_envelope(resp, 400, 1001)
        assert set(body["fieldErrors"]) == {"username", "email", "password", "lastName"}

    def test_register_missing_body_fields(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post("/api/v1/auth/register", json={"username": "carol"})
        body = _assert_envelope(resp, 400, 1001)
        assert {"email", "password"} <= set(body["fieldErrors"])


class TestLogin:
    def test_login_returns_pair(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/login", json={"loginIdentifier": "alice@example.com", "password": PASSWORD}
        )
        assert resp.status_code == 200, resp.text
        assert resp.headers["cache-control"] == "no-store"
        body = resp.json()
        assert body["userId"] == api_client.user.id
        assert body["accessToken"] and body["refreshToken"]
        assert body["accessTokenExpiresIn"] == 900
        assert body["refreshTokenExpiresIn"] == 7 * 24 * 3600
        assert body["message"] == "Login successful"

    def test_login_remember_me(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post(
            "/api/v1/auth/login",
            json={"loginIdentifier": "alice", "password": PASSWORD, "rememberMe": True},
        )
        assert resp.json()["refreshTokenExpiresIn"] == 30 * 24 * 3600

    def test_wrong_password_and_unknown_user_look_alike(self, api_client: ApiHarness) -> None:
        wrong = api_client.client.post(
            "/api/v1/auth/login", json={"loginIdentifier": "alice", "password": "Wr0ngPassword!"}
        )
        unknown = api_client.client.post(
            "/api/v1/auth/login", json={"loginIdentifier": "ghost", "password": PASSWORD}
        )
        first = _assert_envelope(wrong, 401, 2200)
        second = _assert_envelope(unknown, 401, 2200)
        assert first["message"] == second["message"] == "Invalid username or password"


class TestRefreshAndLogout:
    def test_refresh_rotates(self, api_client: ApiHarness) -> None:
        pair = api_client.login("alice")
        resp = api_client.client.post("/api/v1/auth/refresh", json={"refreshToken": pair["refreshToken"]})
        assert resp.status_code == 200, resp.text
        assert resp.headers["cache-control"] == "no-store"
        assert resp.json()["message"] == "Token refreshed successfully"
        assert resp.json()["refreshToken"] != pair["refreshToken"]

        replay = api_client.client.post("/api/v1/auth/refresh", json={"refreshToken": pair["refreshToken"]})
        body = _assert_envelope(replay, 401, 2202)
        assert body["message"] == "Invalid authentication token"

    def test_refresh_with_access_token(self, api_client: ApiHarness) -> None:
        pair = api_client.login("alice")
        resp = api_client.client.post("/api/v1/auth/refresh", json={"refreshToken": pair["accessToken"]})
        _assert_envelope(resp, 401, 2202)

    def test_logout_revokes_both_tokens(self, api_client: ApiHarness) -> None:
        pair = api_client.login("alice")
        headers = {"Authorization": f"Bearer {pair['accessToken']}"}
        resp = api_client.client.post(
            "/api/v1/auth/logout", json={"refreshToken": pair["refreshToken"]}, headers=headers
        )
        assert resp.status_code == 200
        assert resp.json()["message"] == "Logged out successfully"

        assert api_client.client.get("/api/v1/auth/me", headers=headers).status_code == 401
        refresh = api_client.client.post("/api/v1/auth/refresh", json={"refreshToken": pair["refreshToken"]})
        _assert_envelope(refresh, 401, 2202)

    def test_logout_without_anything_still_succeeds(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post("/api/v1/auth/logout")
        assert resp.status_code == 200


class TestMe:
    def test_me(self, api_client: ApiHarness) -> None:
        resp = api_client.client.get("/api/v1/auth/me", headers=api_client.bearer("alice"))
        assert resp.status_code == 200
        body = resp.json()
        assert body["userId"] == api_client.user.id
        assert body["username"] == "alice"
        assert "CREATE_LINK" in body["permissions"]
        assert "MANAGE_USERS" not in body["permissions"]

    def test_me_unauthenticated(self, api_client: ApiHarness) -> None:
        resp = api_client.client.get("/api/v1/auth/me")
        body = _assert_envelope(resp, 401, 2204)
        assert body["message"] == "Unauthorized access"

    def test_me_with_garbage_token(self, api_client: ApiHarness) -> None:
        resp = api_client.client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
        _assert_envelope(resp, 401, 2204)


class TestAdministration:
    def test_list_tokens_requires_view_users(self, api_client: ApiHarness) -> None:
        path = f"/api/v1/auth/users/{api_client.admin.id}/tokens"
        _assert_envelope(api_client.client.get(path), 401, 2204)
        _assert_envelope(api_client.client.get(path, headers=api_client.bearer("alice")), 403, 2205)

    def test_list_tokens_hides_token_values(self, api_client: ApiHarness) -> None:
        api_client.login("alice")
        resp = api_client.client.get(
            f"/api/v1/auth/users/{api_client.user.id}/tokens", headers=api_client.bearer("admin")
        )
        assert resp.status_code == 200, resp.text
        rows = resp.json()
        assert rows
        assert {"ACCESS", "REFRESH"} <= {r["tokenType"] for r in rows}
        assert all("tokenValue" not in r for r in rows)

    def test_list_tokens_unknown_user(self, api_client: ApiHarness) -> None:
        resp = api_client.client.get("/api/v1/auth/users/missing/tokens", headers=api_client.bearer("admin"))
        _assert_envelope(resp, 404, 2100)

    def test_revoke_tokens(self, api_client: ApiHarness) -> None:
        pair = api_client.login("alice")
        resp = api_client.client.post(
            f"/api/v1/auth/users/{api_client.user.id}/revoke-tokens", headers=api_client.bearer("admin")
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["revoked"] >= 2

        refresh = api_client.client.post("/api/v1/auth/refresh", json={"refreshToken": pair["refreshToken"]})
        _assert_envelope(refresh, 401, 2202)

    def test_role_assignment(self, api_client: ApiHarness) -> None:
        admin = api_client.bearer("admin")
        path = f"/api/v1/auth/users/{api_client.user.id}/roles/role-moderator"

        assert api_client.client.post(path, headers=admin).json()["message"] == "Role assigned successfully"
        assert api_client.client.post(path, headers=admin).json()["message"] == "Role already assigned"
        me = api_client.client.get("/api/v1/auth/me", headers=api_client.bearer("alice")).json()
        assert "VIEW_USERS" in me["permissions"]

        assert api_client.client.delete(path, headers=admin).json()["message"] == "Role removed successfully"
        assert api_client.client.delete(path, headers=admin).json()["message"] == "Role was not assigned"

    def test_unknown_role(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post(
            f"/api/v1/auth/users/{api_client.user.id}/roles/role-nope", headers=api_client.bearer("admin")
        )
        _assert_envelope(resp, 404, 2106)

    def test_role_changes_require_manage_roles(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post(
            f"/api/v1/auth/users/{api_client.user.id}/roles/role-admin", headers=api_client.bearer("alice")
        )
        _assert_envelope(resp, 403, 2205)


class TestFrameworkErrors:
    def test_unknown_route_uses_envelope(self, api_client: ApiHarness) -> None:
        _assert_envelope(api_client.client.get("/api/v1/nope"), 404, 1002)

    def test_wrong_method_uses_envelope(self, api_client: ApiHarness) -> None:
        _assert_envelope(api_client.client.get("/api/v1/auth/login"), 405, 1001)

    def test_untrusted_host_rejected(self, api_client: ApiHarness) -> None:
        resp = api_client.client.get("/api/v1/health", headers={"Host": "evil.example.com"})
        assert resp.status_code == 400
