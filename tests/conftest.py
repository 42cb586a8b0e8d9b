import os
import tempfile

_DATA_DIR = tempfile.mkdtemp(prefix="crx-test-")
os.environ["CRX_DATA_DIR"] = _DATA_DIR
os.environ["PERSIST_DATA"] = "false"
os.environ["JWT_SECRET"] = "test-secret-key-for-crx-suite-0123456789"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.pop("DATABASE_URL", None)

import pytest
from fastapi.testclient import TestClient

from crx import users
from crx.db import reset_db
from crx.server import app

PASSWORD = "secret123"


@pytest.fixture(autouse=True)
def db():
    """Fresh in-memory store for every test."""
    return reset_db()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(db):
    def _make(username, role="dealer", **extra):
        data = {"username": username, "firstname": username.title(), "lastname": "Test",
                "password": PASSWORD, "email": f"{username}@example.com", "role": role}
        data.update(extra)
        return users.create(db, data)
    return _make


def actor(user: dict) -> dict:
    return {"userID": user["userID"], "username": user["username"],
            "role": user["role"], "level": user.get("level")}


@pytest.fixture
def login(client):
    def _login(username, password=PASSWORD):
        r = client.post("/api/auth/login", json={"username": username, "password": password})
        assert r.status_code == 200, r.text
        return {"Authorization": f"Bearer {r.json()['access_token']}"}
    return _login


@pytest.fixture
def admin(make_user):
    return make_user("admin", role="admin")


@pytest.fixture
def dealer(make_user):
    return make_user("dealer1", totalBalance=5000)


@pytest.fixture
def admin_headers(admin, login):
    return login("admin")


@pytest.fixture
def dealer_headers(dealer, login):
    return login("dealer1")
