import os
from datetime import datetime, timedelta, timezone

# Configure the app for tests before any carecoord module reads settings
os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite://"
os.environ["REMINDER_SCHEDULER_ENABLED"] = "false"
os.environ["REMINDER_METRICS_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["DEFAULT_TIMEZONE"] = "Australia/Melbourne"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from carecoord.api.deps import get_db, get_dispatcher, get_clock
from carecoord.core.security import create_access_token
from carecoord.db.base import Base
from carecoord.main import create_application
from carecoord.reminders.dispatcher import ReminderDispatcher
from carecoord.reminders.service import Actor, ReminderService
from carecoord.reminders.schemas import ReminderCreate


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return now


class RecordingTransport:
    """Collects sends; raises ``error`` (if set) after recording the call"""

    def __init__(self, channel: str, error: Exception = None):
        self.channel = channel
        self.error = error
        self.sent = []

    def send(self, target_actor_id, title, body, channel, meta=None):
        self.sent.append(
            {"target": target_actor_id, "title": title, "body": body, "channel": channel, "meta": meta}
        )
        if self.error is not None:
            raise self.error


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    # Monday 2024-01-01, 07:00 UTC
    return FakeClock(datetime(2024, 1, 1, 7, 0, tzinfo=timezone.utc))


@pytest.fixture
def transports():
    return {ch: RecordingTransport(ch) for ch in ("in_app", "email", "sms", "push")}


@pytest.fixture
def dispatcher(transports):
    return ReminderDispatcher(transports)


@pytest.fixture
def service(db, dispatcher, clock):
    return ReminderService(db, dispatcher=dispatcher, clock=clock)


@pytest.fixture
def nurse():
    return Actor(id="nurse-1", role="nurse")


@pytest.fixture
def make_reminder(service, nurse):
    def _make(schedule=None, actor=None, **fields):
        data = ReminderCreate(
            medication_name=fields.pop("medication_name", "Metformin"),
            schedule=schedule or {"type": "recurring", "timesOfDay": ["08:00"], "timezone": "UTC"},
            **fields,
        )
        return service.create_reminder(data, actor or nurse)

    return _make


@pytest.fixture
def client(session_factory, dispatcher, clock):
    app = create_application()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_clock] = lambda: clock
    return TestClient(app)


@pytest.fixture
def auth_headers():
    def _headers(actor_id: str, role: str = None) -> dict:
        token = create_access_token(actor_id, role=role)
        return {"Authorization": f"Bearer {token}"}

    return _headers
