"""Pytest configuration and fixtures."""

import os

# Set test environment before any chathub module reads its configuration
os.environ["APP_ENV"] = "test"
os.environ.setdefault("DEBUG", "false")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "chathub-test-secret-0123456789abcdef"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["NOTIFICATION_BACKEND"] = "memory"

import jwt
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chathub.adapters.push_client import MulticastResult
from chathub.infra.circuit_breaker import CircuitBreaker
from chathub.infra.errors import UpstreamUnavailable
from chathub.infra.rate_limiter import InMemoryRateLimiter
from chathub.models.tables import metadata, users
from chathub.services.identity import UserDirectory
from chathub.services.lifecycle import MessageLifecycleEngine
from chathub.services.message_store import MessageStore
from chathub.services.notification_dispatcher import NotificationDispatcher

TEST_JWT_SECRET = "chathub-test-secret-0123456789abcdef"

TEST_USERS = [
    {"id": "user-a", "name": "A", "role": "Member", "push_token": "token-a"},
    {"id": "user-b", "name": "B", "role": "Member", "push_token": "token-b"},
    {"id": "user-c", "name": "Carol", "role": "Member", "push_token": None},
    {"id": "user-admin", "name": "Moderator", "role": "Admin", "push_token": "token-admin"},
]


def make_token(user_id: str) -> str:
    """Bearer token as issued by the identity service."""
    return jwt.encode({"id": user_id}, TEST_JWT_SECRET, algorithm="HS256")


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePushClient:
    """Records multicast calls instead of contacting a provider."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []
        self.closed = False

    async def send_multicast(self, title, body, tokens, data=None):
        self.calls.append({"title": title, "body": body, "tokens": list(tokens), "data": data})
        if self.fail:
            raise UpstreamUnavailable("Push provider error: boom")
        return MulticastResult(success_count=len(tokens), failure_count=0)

    async def close(self):
        self.closed = True


@pytest.fixture
def db_engine():
    """In-memory SQLite database shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata.create_all(engine)
    with engine.begin() as conn:
        for user in TEST_USERS:
            conn.execute(users.insert().values(**user))
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def store(session_factory):
    return MessageStore(session_factory)


@pytest.fixture
def directory(session_factory):
    return UserDirectory(session_factory)


@pytest.fixture
def limiter_clock():
    return FakeClock()


@pytest.fixture
def rate_limiter(limiter_clock):
    return InMemoryRateLimiter(capacity=30, window_seconds=60, clock=limiter_clock)


@pytest.fixture
def push_client():
    return FakePushClient()


@pytest.fixture
def dispatcher(push_client, directory):
    breaker = CircuitBreaker(service="push-test", failure_threshold=3, recovery_timeout=60)
    return NotificationDispatcher(
        push_client,
        recipient_tokens=directory.push_tokens_except,
        breaker=breaker,
        batch_size=2,
        queue_size=10,
    )


@pytest.fixture
def engine(store, directory, rate_limiter, dispatcher):
    return MessageLifecycleEngine(store, directory, rate_limiter, dispatcher)


@pytest.fixture
def app(session_factory, store, directory, rate_limiter, dispatcher, engine):
    """Application wired to the test database and fakes."""
    from chathub.api.dependencies import (
        get_connection_manager,
        get_lifecycle_engine,
        get_message_store,
        get_notification_dispatcher,
        get_rate_limiter,
        get_user_directory,
    )
    from chathub.infra.database import get_db
    from chathub.main import app as fastapi_app
    from chathub.realtime.gateway import ConnectionManager

    manager = ConnectionManager()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides.update({
        get_db: override_get_db,
        get_message_store: lambda: store,
        get_user_directory: lambda: directory,
        get_rate_limiter: lambda: rate_limiter,
        get_notification_dispatcher: lambda: dispatcher,
        get_lifecycle_engine: lambda: engine,
        get_connection_manager: lambda: manager,
    })
    fastapi_app.state.test_manager = manager
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    def _headers(user_id: str = "user-a"):
        return {"Authorization": f"Bearer {make_token(user_id)}"}
    return _headers


@pytest.fixture
def token_for():
    return make_token


@pytest.fixture
def failing_push_client():
    return FakePushClient(fail=True)
