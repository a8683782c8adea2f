"""Integration tests for the HTTP authentication flow.

Covers:
- Registration validation and conflicts
- Login cookie attributes
- Lockout and unlock through the API
- Refresh without rotation, and invalidation by a later login or logout
- Bearer-protected routes and the admin guard
- Login rate limiting
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from devhub import app as app_module
from devhub.service.errors import AuthError, AuthErrorKind
from devhub.service.runtime import get_runtime, reset_runtime_for_tests
from devhub.service.session import SessionController

PASSWORD = "Valid@Pass123"
EMAIL = "u1@example.com"


@pytest.fixture
def client():
    return TestClient(app_module.app)


def _register(client, email=EMAIL, **overrides):
    body = {
        "name": "User One",
        "email": email,
        "password": PASSWORD,
        "password_confirmation": PASSWORD,
    }
    body.update(overrides)
    return client.post("/v1/auth/register", json=body)


def _login(client, email=EMAIL, password=PASSWORD):
    return client.post("/v1/auth/login", json={"email": email, "password": password})


def _refresh_with(token):
    # Fresh client so only the explicit cookie is sent
    return TestClient(app_module.app).post(
        "/v1/auth/refresh", headers={"Cookie": f"refresh_token={token}"}
    )


def _refresh_cookie_header(response):
    return next(
        value
        for value in response.headers.get_list("set-cookie")
        if value.startswith("refresh_token=")
    )


class TestRegister:
    def test_register_returns_public_user(self, client):
        response = _register(client, phone="12345678")
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "ok"
        assert body["data"]["email"] == EMAIL
        assert body["data"]["role"] == "user"
        assert "password_hash" not in body["data"]
        assert len(body["data"]["access_code"]) == 8
        assert "refresh_token" not in body["data"]

    def test_duplicate_email_conflicts(self, client):
        _register(client)
        response = _register(client, email="U1@EXAMPLE.COM")
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflict"

    @pytest.mark.parametrize(
        "password", ["Sh0rt!a", "alllowercase1!", "NoSpecial123", "NoDigits!!Aa"]
    )
    def test_weak_password_rejected(self, client, password):
        response = _register(client, password=password, password_confirmation=password)
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation_error"

    def test_special_characters_outside_allowed_set_rejected(self, client):
        response = _register(
            client, password="Valid#Pass123", password_confirmation="Valid#Pass123"
        )
        assert response.status_code == 422

    def test_shared_test_password_is_accepted(self, client):
        assert _register(client).status_code == 201

    def test_confirmation_must_match(self, client):
        response = _register(client, password_confirmation="Other@Pass123")
        assert response.status_code == 422

    def test_phone_must_be_eight_digits(self, client):
        assert _register(client, phone="1234").status_code == 422

    def test_admin_role_rejected(self, client):
        response = _register(client, role="admin")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"


class TestLogin:
    def test_login_sets_scoped_refresh_cookie(self, client):
        _register(client)
        response = _login(client)
        assert response.status_code == 200
        body = response.json()
        assert body["data"]["token_type"] == "bearer"
        assert body["data"]["access_token"]
        assert "refresh_token" not in body["data"]

        cookie = _refresh_cookie_header(response).lower()
        assert "max-age=604800" in cookie
        assert "path=/v1/auth/refresh" in cookie
        assert "httponly" in cookie
        assert "samesite=lax" in cookie

    def test_wrong_password_is_unauthorized(self, client):
        _register(client)
        response = _login(client, password="Wrong@Pass123")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_missing_fields_are_unauthorized(self, client):
        response = client.post("/v1/auth/login", json={})
        assert response.status_code == 401

    def test_lockout_then_unlock_scenario(self, client, clock):
        runtime = get_runtime()
        clock.now = datetime.now(timezone.utc)
        runtime.sessions = SessionController(
            runtime.store, runtime.settings, issuer=runtime.issuer, clock=clock
        )
        _register(client)
        for _ in range(5):
            assert _login(client, password="Wrong@Pass123").status_code == 401

        locked = _login(client)
        assert locked.status_code == 403
        error = locked.json()["error"]
        assert error["code"] == "account_locked"
        unlock_time = datetime.fromisoformat(error["details"]["unlock_time"])
        assert unlock_time > clock.now

        clock.advance(timedelta(minutes=31))
        response = _login(client)
        assert response.status_code == 200
        assert response.json()["data"]["access_token"]
        assert "max-age=604800" in _refresh_cookie_header(response).lower()
        creds = runtime.store.get_credentials_by_email(EMAIL)
        assert creds.login_attempts == 0


class TestRefresh:
    def test_refresh_uses_cookie_and_does_not_rotate(self, client):
        _register(client)
        login = _login(client)
        r1 = client.cookies.get("refresh_token")
        assert r1

        response = client.post("/v1/auth/refresh")
        assert response.status_code == 200
        assert response.json()["data"]["access_token"]
        assert "refresh_token" not in response.headers.get("set-cookie", "")
        stored = get_runtime().store.get_credentials_by_email(EMAIL)
        assert stored.refresh_token == r1
        assert login.json()["data"]["access_token"]

    def test_new_login_invalidates_previous_refresh_token(self, client):
        _register(client)
        _login(client)
        r1 = client.cookies.get("refresh_token")
        assert _refresh_with(r1).status_code == 200

        _login(client)
        response = _refresh_with(r1)
        assert response.status_code == 401
        error = response.json()["error"]
        assert error["code"] == "invalid_token"
        assert error["details"] == {"reason": "mismatch"}

    def test_missing_cookie(self, client):
        response = client.post("/v1/auth/refresh")
        assert response.status_code == 401
        assert response.json()["error"]["details"] == {"reason": "missing"}

    def test_access_token_rejected_as_refresh_token(self, client):
        _register(client)
        access = _login(client).json()["data"]["access_token"]
        response = _refresh_with(access)
        assert response.status_code == 401
        assert response.json()["error"]["details"] == {"reason": "invalid"}


class TestLogout:
    def test_logout_clears_cookies_and_server_token(self, client):
        _register(client)
        access = _login(client).json()["data"]["access_token"]
        r1 = client.cookies.get("refresh_token")

        response = client.post(
            "/v1/auth/logout", headers={"Authorization": f"Bearer {access}"}
        )
        assert response.status_code == 200
        cleared = " ".join(response.headers.get_list("set-cookie")).lower()
        assert "refresh_token=" in cleared
        assert "access_token=" in cleared
        assert "max-age=0" in cleared
        assert get_runtime().store.get_credentials_by_email(EMAIL).refresh_token is None

        stale = _refresh_with(r1)
        assert stale.status_code == 401
        assert stale.json()["error"]["details"] == {"reason": "mismatch"}

    def test_logout_requires_bearer(self, client):
        response = client.post("/v1/auth/logout")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "invalid_token"


class TestProtectedRoutes:
    def test_me_returns_current_user(self, client):
        _register(client)
        access = _login(client).json()["data"]["access_token"]
        response = client.get("/v1/auth/me", headers={"Authorization": f"Bearer {access}"})
        assert response.status_code == 200
        assert response.json()["data"]["email"] == EMAIL

    def test_admin_route_forbidden_for_user(self, client):
        user_id = _register(client).json()["data"]["id"]
        access = _login(client).json()["data"]["access_token"]
        response = client.get(
            f"/v1/admin/users/{user_id}", headers={"Authorization": f"Bearer {access}"}
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "forbidden"

    def test_admin_route_allows_admin(self, client):
        user_id = _register(client).json()["data"]["id"]
        get_runtime().store.update_user_role(user_id, "admin")
        access = _login(client).json()["data"]["access_token"]
        response = client.get(
            f"/v1/admin/users/{user_id}", headers={"Authorization": f"Bearer {access}"}
        )
        assert response.status_code == 200
        assert response.json()["data"]["role"] == "admin"


class TestRateLimit:
    def test_login_rate_limited_per_client(self, client):
        runtime = get_runtime()
        runtime.settings = runtime.settings.model_copy(
            update={"login_rate_limit_per_minute": 2}
        )
        assert _login(client, password="Wrong@Pass123").status_code == 401
        assert _login(client, password="Wrong@Pass123").status_code == 401
        response = _login(client, password="Wrong@Pass123")
        assert response.status_code == 429
        assert response.json()["error"]["code"] == "rate_limited"
        assert int(response.headers["Retry-After"]) >= 1


class TestStartup:
    def test_runtime_refuses_shared_secrets(self, monkeypatch):
        monkeypatch.setenv("JWT_REFRESH_SECRET", "test-access-secret-for-testing-only-do-not-use")
        monkeypatch.setenv("JWT_SECRET", "test-access-secret-for-testing-only-do-not-use")
        with pytest.raises(AuthError) as excinfo:
            reset_runtime_for_tests()
        assert excinfo.value.kind is AuthErrorKind.TOKEN_GENERATION


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json()["checks"]["database"]["status"] == "healthy"
    assert response.headers["X-Request-ID"]
    assert response.headers["X-Content-Type-Options"] == "nosniff"
