# rsvp_engine/infrastructure/locks.py

import logging
import threading
from contextlib import contextmanager

from sqlalchemy.orm import Session

from rsvp_engine.infrastructure.db.models import Event
from rsvp_engine.infrastructure.repositories.event_repository import EventRepository

logger = logging.getLogger(__name__)

_registry_lock = threading.Lock()
# event_id -> [lock, number of threads holding or waiting for it]
_event_locks: dict[str, list] = {}


@contextmanager
def _event_lock(event_id: str):
    with _registry_lock:
        slot = _event_locks.setdefault(event_id, [threading.Lock(), 0])
        slot[1] += 1

    try:
        with slot[0]:
            yield
    finally:
        with _registry_lock:
            slot[1] -= 1
            if slot[1] == 0:
                # Nobody holds or waits on it.
                del _event_locks[event_id]


@contextmanager
def event_critical_section(db: Session, event_id: str):
    """
    Serialize seat-changing work for one event.

    The in-process lock covers threads of this worker; the
    SELECT ... FOR UPDATE on the event row covers other workers.
    The transaction commits before either lock is released, so the
    next holder always reads the committed seat count.

    Yields the locked Event row.
    """

    # End any read-only transaction so the section starts from a fresh
    # snapshot and holds no stale read locks while it waits.
    db.commit()

    with _event_lock(event_id):
        try:
            event: Event = EventRepository(db).lock_event(event_id)
            yield event
            db.commit()
        except Exception:
            logger.debug("Rolling back critical section for event %s", event_id)
            db.rollback()
            raise
