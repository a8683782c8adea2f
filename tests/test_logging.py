import uuid

from fastapi.testclient import TestClient

from devhub import app as app_module
from devhub.logging import _redact, log_security_event, set_request_id


def test_secrets_are_dropped_entirely():
    event = _redact(
        None,
        "info",
        {
            "event": "login_failed",
            "password": "Valid@Pass123",
            "refresh_token": "abc.def.ghi",
            "password_hash": "$argon2id$v=19$...",
            "token_version": 3,
        },
    )
    assert event["password"] == "[redacted]"
    assert event["refresh_token"] == "[redacted]"
    assert event["password_hash"] == "[redacted]"
    assert event["token_version"] == 3
    assert event["event"] == "login_failed"


def test_contact_details_are_masked():
    event = _redact(None, "info", {"email": "alice@example.com", "phone": "12345678"})
    assert event["email"] == "a***@example.com"
    assert event["phone"] == "***78"


def test_jwt_in_unrelated_field_is_redacted():
    jwt_like = "eyJhbGciOiJIUzI1NiJ9." + "a" * 30 + "." + "b" * 20
    event = _redact(None, "info", {"error": jwt_like, "path": "/v1/auth/me"})
    assert event["error"] == "[redacted-jwt]"
    assert event["path"] == "/v1/auth/me"


def test_request_id_reuses_well_formed_values():
    assert set_request_id("req-123_abc") == "req-123_abc"


def test_request_id_replaces_suspicious_values():
    rid = set_request_id("bad id\nwith newline")
    assert uuid.UUID(rid)
    assert uuid.UUID(set_request_id(None))


def test_security_events_are_flagged(monkeypatch):
    calls = []

    class Recorder:
        def warning(self, event, **fields):
            calls.append((event, fields))

    monkeypatch.setattr("devhub.logging._security_logger", Recorder())
    log_security_event("refresh_token_mismatch", user_id="u1")
    assert calls == [("refresh_token_mismatch", {"security_event": True, "user_id": "u1"})]


def test_error_envelope_echoes_request_id():
    client = TestClient(app_module.app)
    response = client.post("/v1/auth/refresh", headers={"X-Request-ID": "trace-42"})
    assert response.status_code == 401
    assert response.headers["X-Request-ID"] == "trace-42"
    assert response.json()["request_id"] == "trace-42"
