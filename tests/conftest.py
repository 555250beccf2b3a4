"""
Shared fixtures.

Every test gets its own SQLite file under tmp_path, so the state store starts empty and
nothing leaks between tests. The app is built from an explicit Settings object instead of
the environment.
"""
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from latch_gateway.config import Settings
from latch_gateway.main import create_app
from latch_gateway.store import init_store

CLIENT_ID = "test-client"
CLIENT_SECRET = "test-secret"
REDIRECT_URI = "https://c2c-us.smartthings.com/oauth/callback"
DEVICE_ID = "latch-test"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'store.db'}",
        oauth_client_id=CLIENT_ID,
        oauth_client_secret=CLIENT_SECRET,
        default_user_id="user-1",
        device_external_id=DEVICE_ID,
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def app_store(client):
    return client.app.state.store


@pytest.fixture
def store(tmp_path):
    s = init_store(f"sqlite:///{tmp_path / 'unit.db'}")
    yield s
    s.dispose()


# ── OAuth helpers ─────────────────────────────────────────────────────────────

def authorize(client, state="xyz", redirect_uri=REDIRECT_URI, **overrides):
    params = {
        "response_type": "code",
        "client_id": CLIENT_ID,
        "redirect_uri": redirect_uri,
        "state": state,
    }
    params.update(overrides)
    params = {k: v for k, v in params.items() if v is not None}
    return client.get("/smartthings/oauth/authorize", params=params, follow_redirects=False)


def get_code(client, **kwargs):
    location = authorize(client, **kwargs).headers["location"]
    return parse_qs(urlparse(location).query)["code"][0]


def exchange(client, code, **overrides):
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "client_id": CLIENT_ID,
        "client_secret": CLIENT_SECRET,
        "redirect_uri": REDIRECT_URI,
    }
    data.update(overrides)
    data = {k: v for k, v in data.items() if v is not None}
    return client.post("/smartthings/oauth/token", data=data)


@pytest.fixture
def access_token(client):
    resp = exchange(client, get_code(client))
    assert resp.status_code == 200
    return resp.json()["access_token"]


@pytest.fixture
def auth_headers(access_token):
    return {"Authorization": f"Bearer {access_token}"}
