# tests/unit/test_startup.py

import pytest
from sqlalchemy.exc import OperationalError

from rsvp_engine.infrastructure.db.models import Base
from rsvp_engine.main import prepare_database


def _refused():
    return OperationalError("CREATE TABLE events", {}, Exception("connection refused"))


def test_schema_is_created_once_database_comes_up(monkeypatch):
    calls = []

    def flaky_create_all(bind):
        calls.append(bind)
        if len(calls) < 3:
            raise _refused()

    monkeypatch.setattr(Base.metadata, "create_all", flaky_create_all)
    delays = []

    attempt = prepare_database(bind="db", attempts=5, backoff=0.5, sleep=delays.append)

    assert attempt == 3
    assert calls == ["db", "db", "db"]
    assert delays == [0.5, 1.0]


def test_startup_gives_up_after_last_attempt(monkeypatch):
    def refusing_create_all(bind):
        raise _refused()

    monkeypatch.setattr(Base.metadata, "create_all", refusing_create_all)
    delays = []

    with pytest.raises(OperationalError):
        prepare_database(bind="db", attempts=3, backoff=1.0, sleep=delays.append)

    # No wait after the final failure.
    assert delays == [1.0, 2.0]


def test_attempts_and_backoff_come_from_environment(monkeypatch):
    monkeypatch.setenv("STARTUP_DB_ATTEMPTS", "2")
    monkeypatch.setenv("STARTUP_DB_BACKOFF", "0.25")

    def refusing_create_all(bind):
        raise _refused()

    monkeypatch.setattr(Base.metadata, "create_all", refusing_create_all)
    delays = []

    with pytest.raises(OperationalError):
        prepare_database(bind="db", sleep=delays.append)

    assert delays == [0.25]
