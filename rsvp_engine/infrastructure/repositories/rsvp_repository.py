# rsvp_engine/infrastructure/repositories/rsvp_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select, func

from rsvp_engine.infrastructure.db.models import Rsvp
from rsvp_engine.domain.exceptions import NotFoundError
from rsvp_engine.domain.state_machine import (
    ApprovalStatus,
    CheckInStatus,
    RsvpStatus,
)


class RsvpRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, rsvp_id: str) -> Rsvp:
        stmt = select(Rsvp).where(Rsvp.id == rsvp_id)
        rsvp = self.db.execute(stmt).scalar_one_or_none()

        if not rsvp:
            raise NotFoundError("RSVP", rsvp_id)

        return rsvp

    def get_by_event_and_user(
        self,
        event_id: str,
        user_id: str,
    ) -> Rsvp | None:

        stmt = (
            select(Rsvp)
            .where(Rsvp.event_id == event_id)
            .where(Rsvp.user_id == user_id)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_user(
        self,
        user_id: str,
        event_id: str | None = None,
    ) -> list[Rsvp]:

        stmt = select(Rsvp).where(Rsvp.user_id == user_id)
        if event_id:
            stmt = stmt.where(Rsvp.event_id == event_id)
        stmt = stmt.order_by(Rsvp.created_at.desc())
        return list(self.db.execute(stmt).scalars().all())

    def create(
        self,
        event_id: str,
        user_id: str,
        status: RsvpStatus,
        plus_one_count: int,
        dietary_preferences: str | None,
        rsvp_deadline_met: bool,
        is_waitlisted: bool = False,
        waitlist_position: int | None = None,
    ) -> Rsvp:

        rsvp = Rsvp(
            event_id=event_id,
            user_id=user_id,
            status=status,
            plus_one_count=plus_one_count,
            dietary_preferences=dietary_preferences,
            approval_status=ApprovalStatus.PENDING,
            is_waitlisted=is_waitlisted,
            waitlist_position=waitlist_position,
            rsvp_deadline_met=rsvp_deadline_met,
            check_in_status=CheckInStatus.NOT_CHECKED_IN,
        )

        self.db.add(rsvp)
        self.db.flush()
        return rsvp

    def delete(self, rsvp: Rsvp) -> None:
        self.db.delete(rsvp)
        self.db.flush()

    def confirmed_seats(
        self,
        event_id: str,
        exclude_rsvp_id: str | None = None,
    ) -> int:
        """
        SUM(1 + plus_one_count) over going, confirmed, non-rejected RSVPs.
        """

        stmt = (
            select(func.coalesce(func.sum(1 + Rsvp.plus_one_count), 0))
            .where(Rsvp.event_id == event_id)
            .where(Rsvp.status == RsvpStatus.GOING)
            .where(Rsvp.is_waitlisted.is_(False))
            .where(Rsvp.approval_status != ApprovalStatus.REJECTED)
        )
        if exclude_rsvp_id:
            stmt = stmt.where(Rsvp.id != exclude_rsvp_id)

        return int(self.db.execute(stmt).scalar_one())

    def status_breakdown(self, event_id: str) -> dict[RsvpStatus, int]:
        stmt = (
            select(Rsvp.status, func.count(Rsvp.id))
            .where(Rsvp.event_id == event_id)
            .group_by(Rsvp.status)
        )
        counts = {status: 0 for status in RsvpStatus}
        for status, count in self.db.execute(stmt).all():
            counts[RsvpStatus(status)] = count
        return counts

    def count_checked_in(self, event_id: str) -> int:
        stmt = (
            select(func.count(Rsvp.id))
            .where(Rsvp.event_id == event_id)
            .where(Rsvp.check_in_status == CheckInStatus.CHECKED_IN)
        )
        return int(self.db.execute(stmt).scalar_one())
