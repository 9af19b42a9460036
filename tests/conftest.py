from datetime import datetime, timezone

import pytest

from broadcastgw import create_app
from broadcastgw.connection import ProtocolClient
from broadcastgw.db import CredentialStore, Storage


class FakeClient(ProtocolClient):
    """Protocol client that records sends and lets tests push events."""

    def __init__(self, credentials):
        self.credentials = credentials
        self.sent = []
        self.failures = {}
        self.closed = False
        self.on_update = None
        self.on_credentials = None

    def open(self, on_update, on_credentials):
        self.on_update = on_update
        self.on_credentials = on_credentials

    def send_text(self, address, text):
        if address in self.failures:
            raise self.failures[address]
        self.sent.append((address, text))

    def close(self):
        self.closed = True


class FakeClientFactory:
    def __init__(self):
        self.clients = []

    def __call__(self, credentials):
        client = FakeClient(credentials)
        self.clients.append(client)
        return client

    @property
    def latest(self) -> FakeClient:
        return self.clients[-1]


class FakeTimer:
    def __init__(self, delay, function, args=()):
        self.delay = delay
        self.function = function
        self.args = args
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args)


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def storage(tmp_path):
    return Storage(str(tmp_path / "data"))


@pytest.fixture
def credential_store(tmp_path, storage):
    return CredentialStore(str(tmp_path / "auth"), session_name="test", storage=storage)


@pytest.fixture
def factory():
    return FakeClientFactory()


@pytest.fixture
def app(tmp_path, factory):
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "SESSION_SECRET": "",
            "DATA_DIR": str(tmp_path / "data"),
            "AUTH_DIR": str(tmp_path / "auth"),
            "MONGO_URL": None,
            "CORS_ORIGINS": ["http://localhost:3000"],
            "ADDRESS_DOMAIN": "phone",
            "RECONNECT_BASE_DELAY": 0,
        },
        client_factory=factory,
    )
    yield app
    app.extensions["broadcastgw"].connection.shutdown()


@pytest.fixture
def gateway(app):
    return app.extensions["broadcastgw"]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def logged_in(client):
    client.post("/register", json={"email": "ann@example.com", "phone": "15550001", "password": "s3cret"})
    resp = client.post("/login", json={"email": "ann@example.com", "password": "s3cret"})
    assert resp.status_code == 200
    return client
