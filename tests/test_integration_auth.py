"""Integration tests for the HTTP authentication flow.

Tests the complete flow including:
- Registration
- Login with the refresh-token cookie
- Refresh-token rotation and replay rejection
- Bearer-authenticated endpoints
"""

import pytest
from fastapi.testclient import TestClient

from jwtauth import app as app_module
from jwtauth.service.runtime import get_runtime

PASSWORD = "Secret123!"


@pytest.fixture
def client():
    """Create a test client for the API."""
    return TestClient(app_module.app)


def _register(client, username="alice", password=PASSWORD, **extra):
    return client.post(
        "/v1/auth/register", json={"username": username, "password": password, **extra}
    )


def _login(client, username="alice", password=PASSWORD):
    return client.post("/v1/auth/login", json={"username": username, "password": password})


def _bearer(response):
    return {"Authorization": f"Bearer {response.json()['data']['access_token']}"}


class TestRegisterFlow:
    def test_register_creates_user(self, client):
        response = _register(client, first_name="Alice", email="Alice@Example.com")

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "ok"
        assert body["data"]["username"] == "alice"
        assert body["data"]["role"] == "Basic User"
        assert body["data"]["email"] == "alice@example.com"
        assert "password_hash" not in body["data"]
        assert "set-cookie" not in response.headers

    def test_register_rejects_duplicate_username(self, client):
        _register(client)

        response = _register(client)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflict"

    def test_register_rejects_weak_password(self, client):
        response = _register(client, password="longenough")

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert "digit" in error["details"]["violations"]

    def test_register_rejects_malformed_body(self, client):
        response = client.post("/v1/auth/register", json={"username": "alice"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"


class TestLoginFlow:
    def test_login_returns_token_and_cookie(self, client):
        _register(client)

        response = _login(client)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["token_type"] == "bearer"
        assert data["access_token"].count(".") == 2
        assert data["user"]["username"] == "alice"
        assert response.cookies.get("refreshToken")

    def test_cookie_attributes(self, client):
        _register(client)

        cookie = _login(client).headers["set-cookie"].lower()

        assert cookie.startswith("refreshtoken=")
        assert "httponly" in cookie
        assert "path=/" in cookie
        assert "samesite=lax" in cookie
        assert "expires=" in cookie

    def test_login_keeps_one_refresh_row(self, client):
        _register(client)
        _login(client)
        _login(client)

        assert len(get_runtime().store.refresh_tokens) == 1

    def test_unknown_user_and_wrong_password_look_the_same(self, client):
        _register(client)

        unknown = _login(client, username="mallory")
        mismatch = _login(client, password="Wrong123!")

        assert unknown.status_code == mismatch.status_code == 401
        assert unknown.json()["error"] == mismatch.json()["error"]
        assert unknown.json()["error"]["message"] == "invalid credentials"
        assert "set-cookie" not in unknown.headers


class TestRefreshFlow:
    def test_refresh_rotates_cookie(self, client):
        _register(client)
        login = _login(client)
        old_value = login.cookies.get("refreshToken")

        response = client.post("/v1/auth/refresh")

        assert response.status_code == 200
        new_value = response.cookies.get("refreshToken")
        assert new_value and new_value != old_value
        assert response.json()["data"]["user"]["username"] == "alice"

    def test_replayed_cookie_is_rejected(self, client):
        _register(client)
        old_value = _login(client).cookies.get("refreshToken")
        client.post("/v1/auth/refresh")
        client.cookies.clear()
        client.cookies.set("refreshToken", old_value)

        response = client.post("/v1/auth/refresh")

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "invalid refresh token"

    def test_missing_cookie_is_rejected(self, client):
        response = client.post("/v1/auth/refresh")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"


class TestAuthenticatedEndpoints:
    def test_me_resolves_bearer_token(self, client):
        _register(client)
        login = _login(client)

        response = client.get("/v1/auth/me", headers=_bearer(login))

        assert response.status_code == 200
        assert response.json()["data"]["id"] == login.json()["data"]["user"]["id"]

    def test_me_without_token(self, client):
        response = client.get("/v1/auth/me")

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "not authenticated"

    @pytest.mark.parametrize(
        "header", ["Bearer not-a-jwt", "Basic YWxpY2U6cHc=", "Bearer "]
    )
    def test_me_with_unusable_token(self, client, header):
        response = client.get("/v1/auth/me", headers={"Authorization": header})

        assert response.status_code == 401

    @pytest.mark.parametrize("path", ["/v1/auth/me", "/v1/users"])
    def test_non_ascii_signature_is_unauthorized(self, client, path):
        _register(client)
        token = _login(client).json()["data"]["access_token"]
        header, payload, _ = token.split(".")
        # raw latin-1 bytes so the server decodes them as non-ASCII text
        forged = f"Bearer {header}.{payload}.ééé".encode("latin-1")

        response = client.get(path, headers={"Authorization": forged})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_list_users(self, client):
        _register(client)
        _register(client, username="bob")
        login = _login(client)

        response = client.get("/v1/users", headers=_bearer(login))

        assert response.status_code == 200
        names = [u["username"] for u in response.json()["data"]["items"]]
        assert names == ["alice", "bob"]

    def test_list_users_requires_auth(self, client):
        assert client.get("/v1/users").status_code == 401


class TestPlatformEndpoints:
    def test_healthz(self, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["type"] == "memory"

    def test_request_id_is_echoed_into_errors(self, client):
        response = client.get("/v1/auth/me", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert response.json()["request_id"] == "req-123"

    def test_security_headers(self, client):
        response = client.get("/healthz")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "no-store" in response.headers["Cache-Control"]
