"""
Shared fixtures. Environment is pinned before any teletabib import so cached settings
point at SQLite and no real mail provider.
"""
import os

os.environ["APP_ENV"] = "test"
os.environ["DEBUG"] = "true"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-the-teletabib-suite-0123456789"
os.environ["OTP_LENGTH"] = "6"
os.environ["OTP_EXPIRE_MINUTES"] = "3"
os.environ["DOCTOR_OTP_EXPIRE_MINUTES"] = "10"
os.environ["OTP_MAX_ATTEMPTS"] = "5"
os.environ["STAGING_BACKEND"] = "memory"
os.environ["STAGING_GRACE_SECONDS"] = "60"
os.environ["MAILGUN_API_KEY"] = ""
os.environ["MAILGUN_DOMAIN"] = ""
os.environ["SENDGRID_API_KEY"] = ""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from teletabib.database import Base, get_db
from teletabib.dependencies import get_clock, get_notifier
from teletabib.main import app
from teletabib.services.registration import RegistrationGate
from teletabib.services.staging import InMemoryStagingStore, get_staging_store


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeNotifier:
    """Records codes instead of emailing them."""

    def __init__(self):
        self.codes: dict[str, str] = {}
        self.sent: list[tuple[str, str]] = []
        self.welcomed: list[str] = []
        self.fail = False

    def send_otp(self, email, code, name=None):
        if self.fail:
            return False
        self.sent.append((email, code))
        self.codes[email] = code
        return True

    def send_welcome(self, email, name=None):
        self.welcomed.append(email)
        return True


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryStagingStore(clock=clock)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def gate(db_session, store, notifier, clock):
    return RegistrationGate(db_session, store, notifier=notifier, clock=clock)


@pytest.fixture
def client(session_factory, store, notifier, clock):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_staging_store] = lambda: store
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()
