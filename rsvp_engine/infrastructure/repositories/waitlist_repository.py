# rsvp_engine/infrastructure/repositories/waitlist_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select, func

from rsvp_engine.infrastructure.db.models import Rsvp, WaitlistEntry
from rsvp_engine.domain.state_machine import WaitlistStatus


class WaitlistRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_rsvp_id(self, rsvp_id: str) -> WaitlistEntry | None:
        stmt = select(WaitlistEntry).where(WaitlistEntry.rsvp_id == rsvp_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def max_waiting_position(self, event_id: str) -> int:
        stmt = (
            select(func.coalesce(func.max(WaitlistEntry.position), 0))
            .where(WaitlistEntry.event_id == event_id)
            .where(WaitlistEntry.status == WaitlistStatus.WAITING)
        )
        return int(self.db.execute(stmt).scalar_one())

    def create(
        self,
        event_id: str,
        rsvp_id: str,
        user_id: str,
        position: int,
    ) -> WaitlistEntry:

        entry = WaitlistEntry(
            event_id=event_id,
            rsvp_id=rsvp_id,
            user_id=user_id,
            status=WaitlistStatus.WAITING,
            position=position,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def head(self, event_id: str) -> WaitlistEntry | None:
        """
        Lowest-position waiting entry, row-locked so no two promotions
        can claim it.
        """

        stmt = (
            select(WaitlistEntry)
            .where(WaitlistEntry.event_id == event_id)
            .where(WaitlistEntry.status == WaitlistStatus.WAITING)
            .order_by(WaitlistEntry.position)
            .limit(1)
            .with_for_update()
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_waiting(self, event_id: str) -> list[WaitlistEntry]:
        stmt = (
            select(WaitlistEntry)
            .where(WaitlistEntry.event_id == event_id)
            .where(WaitlistEntry.status == WaitlistStatus.WAITING)
            .order_by(WaitlistEntry.position)
        )
        return list(self.db.execute(stmt).scalars().all())

    def count_waiting(self, event_id: str) -> int:
        stmt = (
            select(func.count(WaitlistEntry.id))
            .where(WaitlistEntry.event_id == event_id)
            .where(WaitlistEntry.status == WaitlistStatus.WAITING)
        )
        return int(self.db.execute(stmt).scalar_one())

    def compact_after(self, event_id: str, position: int) -> None:
        """
        Close the gap left at ``position``. Entries keep their relative
        order; owning RSVPs mirror the new position.
        """

        stmt = (
            select(WaitlistEntry, Rsvp)
            .join(Rsvp, Rsvp.id == WaitlistEntry.rsvp_id)
            .where(WaitlistEntry.event_id == event_id)
            .where(WaitlistEntry.status == WaitlistStatus.WAITING)
            .where(WaitlistEntry.position > position)
            .order_by(WaitlistEntry.position)
        )
        for entry, rsvp in self.db.execute(stmt).all():
            entry.position -= 1
            rsvp.waitlist_position = entry.position

        self.db.flush()

    def update_status(
        self,
        entry: WaitlistEntry,
        new_status: WaitlistStatus,
    ) -> None:

        entry.status = new_status

    def delete(self, entry: WaitlistEntry) -> None:
        self.db.delete(entry)
        self.db.flush()
