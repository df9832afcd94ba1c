# rsvp_engine/infrastructure/repositories/ticket_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import select, update, delete, func

from rsvp_engine.infrastructure.db.models import Rsvp, Ticket
from rsvp_engine.domain.exceptions import NotFoundError
from rsvp_engine.domain.state_machine import CheckInStatus


class TicketRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, ticket_id: str) -> Ticket:
        stmt = select(Ticket).where(Ticket.id == ticket_id)
        ticket = self.db.execute(stmt).scalar_one_or_none()

        if not ticket:
            raise NotFoundError("Ticket", ticket_id)

        return ticket

    def get_by_rsvp_id(self, rsvp_id: str) -> Ticket | None:
        stmt = select(Ticket).where(Ticket.rsvp_id == rsvp_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_rsvp_and_event(
        self,
        rsvp_id: str,
        event_id: str,
    ) -> Ticket | None:

        stmt = (
            select(Ticket)
            .where(Ticket.rsvp_id == rsvp_id)
            .where(Ticket.event_id == event_id)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def create(
        self,
        rsvp_id: str,
        user_id: str,
        event_id: str,
        qr_code: str,
    ) -> Ticket:

        ticket = Ticket(
            rsvp_id=rsvp_id,
            user_id=user_id,
            event_id=event_id,
            qr_code=qr_code,
            check_in_status=CheckInStatus.NOT_CHECKED_IN,
        )
        self.db.add(ticket)
        self.db.flush()
        return ticket

    def delete_by_rsvp_id(self, rsvp_id: str) -> int:
        result = self.db.execute(
            delete(Ticket).where(Ticket.rsvp_id == rsvp_id)
        )
        return result.rowcount

    def list_for_user(self, user_id: str) -> list[Ticket]:
        stmt = (
            select(Ticket)
            .where(Ticket.user_id == user_id)
            .order_by(Ticket.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def mark_checked_in(self, ticket_id: str, checked_in_at: datetime) -> bool:
        """
        Compare-and-swap on check_in_status.
        Returns False when another scan already won.
        """

        result = self.db.execute(
            update(Ticket)
            .where(Ticket.id == ticket_id)
            .where(Ticket.check_in_status == CheckInStatus.NOT_CHECKED_IN)
            .values(
                check_in_status=CheckInStatus.CHECKED_IN,
                check_in_time=checked_in_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def mirror_check_in_to_rsvp(
        self,
        rsvp_id: str,
        status: CheckInStatus,
        checked_in_at: datetime | None,
    ) -> None:

        self.db.execute(
            update(Rsvp)
            .where(Rsvp.id == rsvp_id)
            .values(check_in_status=status, check_in_time=checked_in_at)
            .execution_options(synchronize_session=False)
        )

    def check_in_counts(self, event_id: str) -> tuple[int, int]:
        """Returns (total tickets, checked-in tickets) for the event."""

        stmt = (
            select(Ticket.check_in_status, func.count(Ticket.id))
            .where(Ticket.event_id == event_id)
            .group_by(Ticket.check_in_status)
        )
        total = 0
        checked_in = 0
        for status, count in self.db.execute(stmt).all():
            total += count
            if CheckInStatus(status) == CheckInStatus.CHECKED_IN:
                checked_in += count
        return total, checked_in
