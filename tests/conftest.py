"""Shared fixtures: in-memory database, recorded Google HTTP session, API client."""
import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from config import GoogleConfig
from db import Base, get_db
from google_calendar import GoogleCalendarClient
from models import GOOGLE_CALENDAR_PROVIDER, TaskDB, UserIntegrationDB


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class StubSession:
    """Stands in for ``requests.Session``: records calls, replays queued responses in order."""

    def __init__(self):
        self.calls = []
        self.responses = []
        self.closed = False

    def queue(self, status_code=200, payload=None, text=""):
        self.responses.append(FakeResponse(status_code, payload, text))
        return self

    def fail(self, exc):
        self.responses.append(exc)
        return self

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"Unexpected request {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def google_config():
    return GoogleConfig(
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="http://localhost:8000/api/google/oauth/callback",
    )


@pytest.fixture
def http():
    return StubSession()


@pytest.fixture
def client(google_config, http):
    return GoogleCalendarClient(google_config, session=http)


@pytest.fixture
def connect_user(db):
    """Stores a connected credential; ``expires_in=None`` means no recorded expiry."""

    def _connect(
        user_id="user-1",
        expires_in=datetime.timedelta(hours=1),
        refresh_token="refresh-1",
        calendar_id=None,
    ):
        record = UserIntegrationDB(
            user_id=user_id,
            provider=GOOGLE_CALENDAR_PROVIDER,
            access_token="access-1",
            refresh_token=refresh_token,
            token_expires_at=(datetime.datetime.utcnow() + expires_in) if expires_in is not None else None,
            connected=True,
            calendar_id=calendar_id,
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    return _connect


@pytest.fixture
def make_task(db):
    def _make(user_id="user-1", title="Pay rent", due_date=datetime.date(2024, 3, 1), **fields):
        task = TaskDB(user_id=user_id, title=title, due_date=due_date, **fields)
        db.add(task)
        db.commit()
        db.refresh(task)
        return task

    return _make


@pytest.fixture
def api(session_factory, google_config, http):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def override_get_google_client():
        yield GoogleCalendarClient(google_config, session=http)

    main.app.dependency_overrides[get_db] = override_get_db
    main.app.dependency_overrides[main.get_google_config] = lambda: google_config
    main.app.dependency_overrides[main.get_google_client] = override_get_google_client
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()
