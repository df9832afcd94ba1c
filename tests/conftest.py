# tests/conftest.py

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from rsvp_engine.api.routes.routes import get_db, get_dispatcher
from rsvp_engine.domain.actor import Actor, Role
from rsvp_engine.infrastructure.db.models import Base, Event
from rsvp_engine.infrastructure.db.session import build_engine
from rsvp_engine.main import app


class RecordingDispatcher:
    """Stands in for the notification collaborator."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.ticket_ids: list[str] = []
        self.fail = False

    def dispatch_confirmation(self, rsvp_id: str, trigger: str, ticket_id: str) -> None:
        if self.fail:
            raise RuntimeError("notification service unavailable")
        self.sent.append((rsvp_id, trigger))
        self.ticket_ids.append(ticket_id)


@pytest.fixture
def engine(tmp_path):
    # File-backed so worker threads get their own connections.
    engine = build_engine(f"sqlite:///{tmp_path / 'rsvp.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def make_event(db):
    def _make_event(
        capacity: int = 2,
        rsvp_deadline: datetime | None = None,
        status: str = "published",
        organizer_id: str = "organizer-1",
        name: str = "Launch Party",
    ) -> Event:
        event = Event(
            name=name,
            organizer_id=organizer_id,
            capacity=capacity,
            rsvp_deadline=rsvp_deadline,
            status=status,
        )
        db.add(event)
        db.commit()
        return event

    return _make_event


@pytest.fixture
def attendee():
    def _attendee(user_id: str) -> Actor:
        return Actor(user_id=user_id, role=Role.ATTENDEE)

    return _attendee


@pytest.fixture
def admin():
    return Actor(user_id="admin-1", role=Role.ADMIN)


@pytest.fixture
def client(session_factory, dispatcher):
    def override_get_db():
        db = session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    yield TestClient(app)
    app.dependency_overrides.clear()
