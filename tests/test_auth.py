from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from crx import auth
from conftest import PASSWORD


def test_login_returns_token_profile_and_cookie(client, dealer):
    r = client.post("/api/auth/login", json={"username": "dealer1", "password": PASSWORD})
    assert r.status_code == 200
    body = r.json()
    assert body["access_token"]
    assert body["user"]["username"] == "dealer1"
    assert body["user"]["totalBalance"] == 5000
    assert "password" not in body["user"]
    assert "refresh_token" in r.cookies
    assert len(dealer["refreshTokens"]) == 1


@pytest.mark.parametrize("username,password", [("dealer1", "wrong-pass"), ("nobody", PASSWORD)])
def test_login_rejects_bad_credentials(client, dealer, username, password):
    r = client.post("/api/auth/login", json={"username": username, "password": password})
    assert r.status_code == 401


def test_login_rejects_inactive_user(client, make_user):
    make_user("sleeper", isActive=False)
    r = client.post("/api/auth/login", json={"username": "sleeper", "password": PASSWORD})
    assert r.status_code == 401


def test_profile_requires_valid_token(client, dealer_headers):
    assert client.get("/api/auth/profile").status_code == 401
    assert client.get("/api/auth/profile", headers={"Authorization": "Bearer junk"}).status_code == 401
    r = client.get("/api/auth/profile", headers=dealer_headers)
    assert r.status_code == 200
    assert r.json() == {"userID": 1, "username": "dealer1", "role": "dealer", "level": "A"}


def test_refresh_rotates_cookie(client, dealer, login):
    login("dealer1")
    old = dealer["refreshTokens"][0]["token"]
    r = client.post("/api/auth/refresh")
    assert r.status_code == 200
    assert r.json()["access_token"]
    tokens = [t["token"] for t in dealer["refreshTokens"]]
    assert old not in tokens and len(tokens) == 1


def test_refresh_token_is_single_use(db, dealer):
    _, refresh, _ = auth.login(db, "dealer1", PASSWORD)
    auth.refresh_session(db, refresh)
    with pytest.raises(HTTPException) as e:
        auth.refresh_session(db, refresh)
    assert e.value.status_code == 401


def test_access_token_cannot_refresh(db, dealer):
    access, _, _ = auth.login(db, "dealer1", PASSWORD)
    with pytest.raises(HTTPException) as e:
        auth.refresh_session(db, access)
    assert e.value.status_code == 401


def test_refresh_without_cookie(client):
    assert client.post("/api/auth/refresh").status_code == 401


def test_logout_revokes_tokens(client, dealer, dealer_headers):
    r = client.post("/api/auth/logout", headers=dealer_headers)
    assert r.status_code == 200
    assert dealer["refreshTokens"] == []
    r = client.get("/api/auth/profile", headers=dealer_headers)
    assert r.status_code == 401
    assert r.json()["detail"] == "Token has been revoked"


def test_change_password(client, dealer_headers):
    r = client.post("/api/auth/change-password", headers=dealer_headers,
                    json={"currentPassword": "nope-nope", "newPassword": "brand-new-pw"})
    assert r.status_code == 400
    r = client.post("/api/auth/change-password", headers=dealer_headers,
                    json={"currentPassword": PASSWORD, "newPassword": "brand-new-pw"})
    assert r.status_code == 200
    r = client.post("/api/auth/login", json={"username": "dealer1", "password": "brand-new-pw"})
    assert r.status_code == 200


def test_change_password_enforces_length(client, dealer_headers):
    r = client.post("/api/auth/change-password", headers=dealer_headers,
                    json={"currentPassword": PASSWORD, "newPassword": "123"})
    assert r.status_code == 422


def test_register_is_admin_only(client, admin_headers, dealer_headers):
    payload = {"username": "newdealer", "firstname": "New", "lastname": "Dealer",
               "password": "longenough", "email": "new@example.com"}
    assert client.post("/api/auth/register", json=payload, headers=dealer_headers).status_code == 403
    r = client.post("/api/auth/register", json=payload, headers=admin_headers)
    assert r.status_code == 201
    assert r.json()["role"] == "dealer"
    assert "password" not in r.json()


def test_cleanup_expired_tokens(db, dealer):
    past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    future = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
    dealer["refreshTokens"] = [{"token": "old", "expiresAt": past}, {"token": "new", "expiresAt": future}]
    db["token_blacklist"] = [{"token": "gone", "expiresAt": past}]
    assert auth.cleanup_expired_tokens(db) == 2
    assert [t["token"] for t in dealer["refreshTokens"]] == ["new"]
    assert db["token_blacklist"] == []


def test_deactivated_user_loses_access_immediately(client, dealer, dealer_headers):
    assert client.get("/api/auth/profile", headers=dealer_headers).status_code == 200
    dealer["isActive"] = False
    assert client.get("/api/auth/profile", headers=dealer_headers).status_code == 401


def test_role_change_applies_to_live_tokens(client, dealer, dealer_headers):
    assert client.get("/api/users", headers=dealer_headers).status_code == 403
    dealer["role"] = "admin"
    assert client.get("/api/users", headers=dealer_headers).status_code == 200
