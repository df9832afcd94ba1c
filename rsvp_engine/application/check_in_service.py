import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from rsvp_engine.domain.exceptions import AlreadyCheckedInError, InvalidPayloadError
from rsvp_engine.domain.qr_payload import QrCodec
from rsvp_engine.domain.seating import ensure_utc, utc_now
from rsvp_engine.domain.state_machine import CheckInStateMachine, CheckInStatus
from rsvp_engine.infrastructure.db.models import Ticket
from rsvp_engine.infrastructure.repositories.event_repository import EventRepository
from rsvp_engine.infrastructure.repositories.ticket_repository import TicketRepository

logger = logging.getLogger(__name__)

INVALID_FORMAT = "invalid format"
TICKET_NOT_FOUND = "ticket not found"
WRONG_EVENT = "wrong event"
ALREADY_CHECKED_IN = "already checked in"


@dataclass
class CheckInResult:
    success: bool
    ticket: Ticket | None = None
    reason: str | None = None
    message: str = ""
    checked_in_at: datetime | None = None

    @classmethod
    def failed(
        cls,
        reason: str,
        message: str,
        checked_in_at: datetime | None = None,
    ) -> "CheckInResult":
        return cls(
            success=False,
            reason=reason,
            message=message,
            checked_in_at=checked_in_at,
        )


@dataclass
class CheckInStats:
    total_tickets: int
    checked_in: int
    not_checked_in: int
    check_in_rate: float


class CheckInService:
    """
    Moves tickets from not_checked_in to checked_in exactly once.

    Authorization is the caller's job; this service assumes the
    organizer or admin has already been verified.
    """

    def __init__(
        self,
        db: Session,
        codec: QrCodec | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.codec = codec or QrCodec.from_env()
        self.clock = clock
        self.event_repository = EventRepository(db)
        self.ticket_repository = TicketRepository(db)

    def check_in_by_id(self, ticket_id: str) -> Ticket:
        """
        Raises NotFoundError for an unknown ticket and AlreadyCheckedInError
        (with the original time) for a repeated check-in.
        """
        ticket = self.ticket_repository.get_by_id(ticket_id)

        if not CheckInStateMachine.can_transition(
            ticket.check_in_status,
            CheckInStatus.CHECKED_IN,
        ):
            raise AlreadyCheckedInError(ticket.id, ensure_utc(ticket.check_in_time))

        checked_in_at = self.clock()
        if not self.ticket_repository.mark_checked_in(ticket.id, checked_in_at):
            # Another scan won between our read and the conditional update.
            self.db.refresh(ticket)
            raise AlreadyCheckedInError(ticket.id, ensure_utc(ticket.check_in_time))

        self.ticket_repository.mirror_check_in_to_rsvp(
            ticket.rsvp_id,
            CheckInStatus.CHECKED_IN,
            checked_in_at,
        )
        self.db.flush()
        self.db.refresh(ticket)

        logger.info(
            "Checked in ticket. ticket_id=%s event_id=%s",
            ticket.id,
            ticket.event_id,
        )
        return ticket

    def check_in_by_qr(
        self,
        payload: str,
        event_id: str | None = None,
    ) -> CheckInResult:
        """
        Reports every bad scan as a failed result instead of raising, so
        an unattended scanner loop can keep going.
        """
        try:
            data = self.codec.decode(payload)
        except InvalidPayloadError as exc:
            logger.warning("Rejected QR scan: %s", exc)
            return CheckInResult.failed(INVALID_FORMAT, str(exc))

        if event_id is not None and data.event_id != event_id:
            return CheckInResult.failed(
                WRONG_EVENT,
                "Ticket does not belong to this event",
            )

        ticket = self.ticket_repository.get_by_rsvp_and_event(
            data.rsvp_id,
            data.event_id,
        )
        if ticket is None:
            return CheckInResult.failed(TICKET_NOT_FOUND, "Invalid or expired ticket")

        try:
            ticket = self.check_in_by_id(ticket.id)
        except AlreadyCheckedInError as exc:
            return CheckInResult.failed(
                ALREADY_CHECKED_IN,
                str(exc),
                checked_in_at=exc.checked_in_at,
            )

        return CheckInResult(
            success=True,
            ticket=ticket,
            message="Successfully checked in",
            checked_in_at=ensure_utc(ticket.check_in_time),
        )

    def event_check_in_stats(self, event_id: str) -> CheckInStats:
        self.event_repository.get_by_id(event_id)
        total, checked_in = self.ticket_repository.check_in_counts(event_id)

        return CheckInStats(
            total_tickets=total,
            checked_in=checked_in,
            not_checked_in=total - checked_in,
            check_in_rate=round(checked_in / total * 100, 1) if total else 0.0,
        )
