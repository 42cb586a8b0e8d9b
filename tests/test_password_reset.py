from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException

from crx import auth, password_reset
from conftest import PASSWORD


@pytest.fixture
def smtp(monkeypatch):
    monkeypatch.setattr(password_reset, "SMTP_HOST", "smtp.example.com")
    monkeypatch.setattr(password_reset, "SMTP_USER", "mailer@example.com")
    monkeypatch.setattr(password_reset, "SMTP_PASS", "app-password")
    server = MagicMock()
    factory = MagicMock()
    factory.return_value.__enter__.return_value = server
    monkeypatch.setattr(password_reset.smtplib, "SMTP", factory)
    server.factory = factory
    return server


def test_smtp_connection_has_timeout(db, dealer, smtp):
    password_reset.request_reset(db, "dealer1@example.com")
    smtp.factory.assert_called_once_with("smtp.example.com", password_reset.SMTP_PORT,
                                         timeout=password_reset.SMTP_TIMEOUT_SECONDS)


def test_request_route_sends_off_the_event_loop(client, dealer, smtp, monkeypatch):
    calls = []

    async def fake_to_thread(func, *args):
        calls.append(func)
        return func(*args)

    monkeypatch.setattr("crx.server.asyncio.to_thread", fake_to_thread)
    r = client.post("/api/password-reset/request", json={"email": "dealer1@example.com"})
    assert r.status_code == 200
    assert calls == [password_reset.request_reset]


def test_request_sends_link_and_stores_token(db, dealer, smtp):
    result = password_reset.request_reset(db, "DEALER1@example.com")
    assert result == {"message": password_reset.GENERIC_MESSAGE}
    reset = db["password_resets"][0]
    assert reset["email"] == "dealer1@example.com" and reset["used"] is False
    smtp.starttls.assert_called_once()
    smtp.login.assert_called_once_with("mailer@example.com", "app-password")
    msg = smtp.send_message.call_args[0][0]
    assert msg["To"] == "dealer1@example.com"
    assert f"token={reset['token']}" in msg.as_string()


def test_unknown_email_gets_same_answer(db, smtp):
    result = password_reset.request_reset(db, "ghost@example.com")
    assert result == {"message": password_reset.GENERIC_MESSAGE}
    assert db["password_resets"] == []
    smtp.send_message.assert_not_called()


def test_unconfigured_smtp_fails_without_storing_token(db, dealer):
    with pytest.raises(password_reset.EmailDeliveryError):
        password_reset.request_reset(db, "dealer1@example.com")
    assert db["password_resets"] == []


def test_reset_is_single_use(db, dealer, smtp):
    password_reset.request_reset(db, "dealer1@example.com")
    token = db["password_resets"][0]["token"]
    auth.login(db, "dealer1", PASSWORD)
    password_reset.reset_password(db, token, "fresh-password")
    assert auth.verify_password("fresh-password", dealer["password"])
    assert dealer["refreshTokens"] == []
    with pytest.raises(HTTPException) as e:
        password_reset.reset_password(db, token, "another-password")
    assert e.value.status_code == 400


def test_expired_token_rejected_and_purged(db, dealer):
    past = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
    db["password_resets"].append({"email": "dealer1@example.com", "token": "stale", "expiresAt": past,
                                  "used": False, "createdAt": past})
    with pytest.raises(HTTPException) as e:
        password_reset.reset_password(db, "stale", "fresh-password")
    assert e.value.status_code == 400
    assert password_reset.purge_expired(db) == 1
    assert db["password_resets"] == []


def test_reset_routes(client, db, dealer, smtp):
    r = client.post("/api/password-reset/request", json={"email": "dealer1@example.com"})
    assert r.status_code == 200
    token = db["password_resets"][0]["token"]
    r = client.post("/api/password-reset/reset", json={"token": token, "newPassword": "fresh-password"})
    assert r.status_code == 200
    r = client.post("/api/auth/login", json={"username": "dealer1", "password": "fresh-password"})
    assert r.status_code == 200


def test_request_route_without_smtp(client, dealer):
    r = client.post("/api/password-reset/request", json={"email": "dealer1@example.com"})
    assert r.status_code == 503


def test_request_route_validates_email(client):
    assert client.post("/api/password-reset/request", json={"email": "not-an-email"}).status_code == 422
