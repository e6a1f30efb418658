"""Integration tests for the HTTP surface.

Runs the FastAPI app against the in-memory runtime:
- Registration and the refresh cookie
- Login and login secrecy
- Refresh rotation (cookie and body)
- Logout
- Email verification
- Profile routes and admin guards
- Health check
"""

import pytest
from fastapi.testclient import TestClient

from reelscore import app as app_module
from reelscore.service.runtime import get_runtime
from reelscore.storage.models import Role

PASSWORD = "s3cret-pass"


@pytest.fixture
def client():
    """Create a test client for the API."""
    return TestClient(app_module.app)


def _register(client, username="alice", email="alice@example.com", password=PASSWORD):
    return client.post(
        "/auth/register",
        json={"username": username, "email": email, "password": password},
    )


def _login(client, username="alice", password=PASSWORD):
    return client.post("/auth/login", json={"username": username, "password": password})


def _bearer(response):
    data = response.json()["data"]
    # Registration nests the pair under "tokens"; login and refresh do not.
    tokens = data.get("tokens", data)
    return {"Authorization": f"Bearer {tokens['access_token']}"}


def _latest_verification_token():
    jobs = get_runtime().mail_queue.pending()
    assert jobs, "registration should queue a confirmation job"
    return jobs[-1][1]["token"]


class TestRegistration:
    def test_register_returns_tokens_and_cookie(self, client):
        response = _register(client)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "ok"
        assert body["data"]["tokens"]["access_token"]
        assert body["data"]["tokens"]["token_type"] == "bearer"
        assert "verify your email" in body["data"]["message"]
        assert response.cookies.get("refreshToken")

        set_cookie = response.headers["set-cookie"].lower()
        assert "httponly" in set_cookie
        assert "samesite=strict" in set_cookie
        assert f"max-age={30 * 24 * 60 * 60}" in set_cookie

    def test_register_queues_confirmation(self, client):
        _register(client)
        name, payload = get_runtime().mail_queue.pending()[-1]
        assert name == "confirmation"
        assert payload["email"] == "alice@example.com"
        assert payload["name"] == "alice"

    def test_duplicate_username_is_conflict(self, client):
        _register(client)
        response = _register(client, email="other@example.com")

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "conflict"
        assert error["message"] == "Username already exists"
        assert error["details"] == {"fields": ["username"]}

    def test_invalid_payload_lists_fields(self, client):
        response = client.post(
            "/auth/register",
            json={"username": "alice", "email": "not-an-email", "password": "short"},
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert {item["field"] for item in error["details"]["errors"]} == {"email", "password"}

    def test_malformed_json_is_validation_error(self, client):
        response = client.post(
            "/auth/register",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"


class TestLogin:
    def test_login_sets_cookie(self, client):
        _register(client)
        client.cookies.clear()

        response = _login(client)
        assert response.status_code == 200
        assert response.json()["data"]["access_token"]
        assert response.cookies.get("refreshToken")

    def test_wrong_password_and_unknown_user_match(self, client):
        _register(client)
        wrong = _login(client, password="wrong-pass")
        unknown = _login(client, username="mallory")

        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json()["error"]["message"] == unknown.json()["error"]["message"]
        assert wrong.json()["error"]["message"] == "Wrong username or password"


class TestRefresh:
    def test_refresh_with_cookie_rotates(self, client):
        registered = _register(client)
        original = registered.cookies.get("refreshToken")

        response = client.post("/auth/refresh")
        assert response.status_code == 200
        rotated = response.cookies.get("refreshToken")
        assert rotated and rotated != original

        client.cookies.clear()
        replay = client.post("/auth/refresh", json={"refresh_token": original})
        assert replay.status_code == 401
        assert replay.json()["error"]["message"] == "Invalid or expired token"

    def test_refresh_with_body(self, client):
        token = _register(client).cookies.get("refreshToken")
        client.cookies.clear()

        response = client.post("/auth/refresh", json={"refresh_token": token})
        assert response.status_code == 200
        assert response.json()["data"]["access_token"]

    def test_refresh_without_token(self, client):
        response = client.post("/auth/refresh")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"


class TestLogout:
    def test_logout_clears_cookie_and_revokes(self, client):
        token = _register(client).cookies.get("refreshToken")

        response = client.post("/auth/logout")
        assert response.status_code == 204
        assert "refreshToken=" in response.headers["set-cookie"]

        client.cookies.clear()
        again = client.post("/auth/logout", json={"refresh_token": token})
        assert again.status_code == 401
        assert again.json()["error"]["message"] == "Invalid refresh token"

        refresh = client.post("/auth/refresh", json={"refresh_token": token})
        assert refresh.status_code == 401


class TestVerification:
    def test_verify_marks_account_and_is_single_use(self, client):
        _register(client)
        token = _latest_verification_token()

        response = client.post("/auth/verify", params={"token": token})
        assert response.status_code == 200
        assert response.json()["data"] == {"message": "Email verified successfully"}

        profile = client.get("/users/alice").json()["data"]
        assert profile["verified"] is True

        replay = client.post("/auth/verify", params={"token": token})
        assert replay.status_code == 404
        assert replay.json()["error"]["message"] == "Invalid token"

    def test_missing_token_parameter(self, client):
        response = client.post("/auth/verify")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"


class TestUsers:
    def test_public_profile_hides_hash(self, client):
        _register(client)
        response = client.get("/users/alice")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["username"] == "alice"
        assert data["role"] == "USER"
        assert "password_hash" not in data

    def test_unknown_profile(self, client):
        response = client.get("/users/ghost")
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "User not found"

    def test_update_own_profile(self, client):
        headers = _bearer(_register(client))
        response = client.patch(
            "/users/me", json={"email": "new@example.com"}, headers=headers
        )
        assert response.status_code == 200
        assert response.json()["data"]["email"] == "new@example.com"

    def test_password_change_allows_new_login(self, client):
        headers = _bearer(_register(client))
        client.patch("/users/me", json={"password": "brand-new-pass"}, headers=headers)

        assert _login(client, password=PASSWORD).status_code == 401
        assert _login(client, password="brand-new-pass").status_code == 200

    def test_me_requires_bearer_token(self, client):
        response = client.patch("/users/me", json={"email": "x@example.com"})
        assert response.status_code == 401

        response = client.delete(
            "/users/me", headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 401

    def test_delete_own_account_revokes_sessions(self, client):
        registered = _register(client)
        token = registered.cookies.get("refreshToken")
        response = client.delete("/users/me", headers=_bearer(registered))

        assert response.status_code == 200
        assert client.get("/users/alice").status_code == 404
        client.cookies.clear()
        assert client.post("/auth/refresh", json={"refresh_token": token}).status_code == 401


class TestAdminRoutes:
    def _admin_headers(self, client):
        _register(client, username="root", email="root@example.com")
        user = next(u for u in get_runtime().store.user_rows.values() if u.username == "root")
        user.role = Role.ADMIN
        return _bearer(_login(client, username="root"))

    def test_admin_can_update_and_delete_other_users(self, client):
        _register(client, username="bob", email="bob@example.com")
        headers = self._admin_headers(client)

        response = client.patch("/users/bob", json={"username": "robert"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["username"] == "robert"

        response = client.delete("/users/robert", headers=headers)
        assert response.status_code == 200
        assert response.json()["data"] == {"message": "User deleted successfully"}

    def test_regular_user_is_forbidden(self, client):
        _register(client, username="bob", email="bob@example.com")
        headers = _bearer(_register(client))

        response = client.delete("/users/bob", headers=headers)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "forbidden"


class TestHealth:
    def test_healthz_reports_memory_backends(self, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"] == {"status": "ok", "backend": "memory"}
        assert body["checks"]["redis"] == {"status": "disabled"}

    def test_request_id_is_echoed(self, client):
        response = client.get("/healthz", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
