# rsvp_engine/infrastructure/repositories/event_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from rsvp_engine.infrastructure.db.models import Event
from rsvp_engine.domain.exceptions import NotFoundError


class EventRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, event_id: str) -> Event:
        stmt = select(Event).where(Event.id == event_id)
        event = self.db.execute(stmt).scalar_one_or_none()

        if not event:
            raise NotFoundError("Event", event_id)

        return event

    def lock_event(self, event_id: str) -> Event:
        """
        SELECT ... FOR UPDATE
        Serialization point for all seat-changing work on the event.
        """

        stmt = (
            select(Event)
            .where(Event.id == event_id)
            .with_for_update()
        )

        event = self.db.execute(stmt).scalar_one_or_none()

        if not event:
            raise NotFoundError("Event", event_id)

        return event
