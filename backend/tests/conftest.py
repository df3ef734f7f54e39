"""Shared test fixtures and configuration for backend tests.

Every test gets its own in-memory DuckDB database and a fresh set of chat
services. Unit tests drive the components with ``FakeWebSocket`` objects;
endpoint tests go through ``TestClient``.
"""
import asyncio
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from forum_realtime.chat.services import ChatServices
from forum_realtime.config import AppSettings, ChatSettings, JWTSecrets, Secrets
from forum_realtime.database import Database, utcnow
from forum_realtime.main import create_app

TEST_SECRET = "test-secret-key"


class FakeWebSocket:
    """Records outbound frames; optionally fails every send."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    def events(self, name=None):
        return [m for m in self.sent if name is None or m["event"] == name]

    def data(self, name):
        return [m["data"] for m in self.events(name)]


def run(coro):
    """Run a coroutine from a synchronous fixture.

    Uses a private loop so the loop pytest-asyncio installs is left alone.
    """
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def settings():
    return AppSettings(
        chat=ChatSettings(default_page_size=20, max_page_size=50),
        secrets=Secrets(jwt=JWTSecrets(secret_key=TEST_SECRET)),
    )


@pytest.fixture
def database():
    db = Database(":memory:")
    yield db
    db.close()


@pytest.fixture
def services(settings, database):
    svc = ChatServices.build(settings, database)
    yield svc
    svc.connections.clear()


@pytest.fixture
def seeded_users(services):
    """alice, bob and eve are active; mallory is banned; trudy's ban expired."""
    users = services.users
    run(users.upsert_user("alice", "alice", display_name="Alice A."))
    run(users.upsert_user("bob", "bob", display_name="Bob B."))
    run(users.upsert_user("eve", "eve"))
    run(users.upsert_user("mallory", "mallory", is_banned=True))
    run(users.upsert_user(
        "trudy", "trudy", is_banned=True, banned_until=utcnow() - timedelta(days=1)
    ))
    return services


@pytest.fixture
def token(services):
    """Factory for signed tokens."""
    def _token(user_id, **claims):
        return services.authenticator.issue_token(user_id, **claims)
    return _token


@pytest.fixture
def open_connection(services):
    """Open a fake socket, optionally authenticated, and run presence connect."""
    async def _open(user_id=None, fail=False):
        websocket = FakeWebSocket(fail=fail)
        connection = services.connections.add(websocket, user_id)
        await services.presence.connect(connection)
        return connection, websocket
    return _open


@pytest.fixture
def api_client(services, seeded_users):
    """TestClient bound to the per-test services and seeded users."""
    with TestClient(create_app(services)) as client:
        yield client
