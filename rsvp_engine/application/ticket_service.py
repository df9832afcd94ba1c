import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rsvp_engine.domain.exceptions import ConflictError
from rsvp_engine.domain.qr_payload import QrCodec
from rsvp_engine.domain.seating import utc_now
from rsvp_engine.domain.state_machine import RsvpStatus
from rsvp_engine.infrastructure.db.models import Ticket
from rsvp_engine.infrastructure.repositories.rsvp_repository import RsvpRepository
from rsvp_engine.infrastructure.repositories.ticket_repository import TicketRepository

logger = logging.getLogger(__name__)


class TicketIssuer:
    """Issues at most one ticket per confirmed RSVP."""

    def __init__(
        self,
        db: Session,
        codec: QrCodec | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.codec = codec or QrCodec.from_env()
        self.clock = clock
        self.rsvp_repository = RsvpRepository(db)
        self.ticket_repository = TicketRepository(db)

    def issue(self, rsvp_id: str) -> Ticket:
        """
        Idempotent: an existing ticket for the RSVP is returned unchanged.
        Raises NotFoundError for an unknown RSVP; storage errors propagate.
        """
        rsvp = self.rsvp_repository.get_by_id(rsvp_id)

        existing = self.ticket_repository.get_by_rsvp_id(rsvp_id)
        if existing:
            return existing

        if rsvp.status != RsvpStatus.GOING or rsvp.is_waitlisted:
            raise ConflictError("Tickets are only issued for confirmed RSVPs")

        payload = self.codec.build(
            rsvp_id=rsvp.id,
            user_id=rsvp.user_id,
            event_id=rsvp.event_id,
            issued_at=self.clock(),
        )

        try:
            with self.db.begin_nested():
                ticket = self.ticket_repository.create(
                    rsvp_id=rsvp.id,
                    user_id=rsvp.user_id,
                    event_id=rsvp.event_id,
                    qr_code=self.codec.encode(payload),
                )
        except IntegrityError:
            # Lost a race with a concurrent issue for the same RSVP.
            existing = self.ticket_repository.get_by_rsvp_id(rsvp_id)
            if existing is None:
                raise
            return existing

        logger.info(
            "Issued ticket. ticket_id=%s rsvp_id=%s event_id=%s",
            ticket.id,
            rsvp.id,
            rsvp.event_id,
        )
        return ticket

    def revoke(self, rsvp_id: str) -> bool:
        removed = self.ticket_repository.delete_by_rsvp_id(rsvp_id)
        if removed:
            logger.info("Revoked ticket. rsvp_id=%s", rsvp_id)
        return bool(removed)

    def get(self, ticket_id: str) -> Ticket:
        return self.ticket_repository.get_by_id(ticket_id)

    def list_for_user(self, user_id: str) -> list[Ticket]:
        return self.ticket_repository.list_for_user(user_id)

    def qr_data(self, ticket_id: str) -> dict:
        ticket = self.ticket_repository.get_by_id(ticket_id)
        return {
            "ticket_id": ticket.id,
            "event_id": ticket.event_id,
            "user_id": ticket.user_id,
            "rsvp_id": ticket.rsvp_id,
            "check_in_status": ticket.check_in_status.value,
            "qr_code": ticket.qr_code,
            "timestamp": self.clock().isoformat(),
        }
