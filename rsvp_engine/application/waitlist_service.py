import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from rsvp_engine.application.capacity_ledger import CapacityLedger
from rsvp_engine.application.notifications import NotificationDispatcher, dispatch_safely
from rsvp_engine.application.ticket_service import TicketIssuer
from rsvp_engine.domain.exceptions import PromotionFailedError
from rsvp_engine.domain.state_machine import WaitlistStateMachine, WaitlistStatus
from rsvp_engine.infrastructure.db.models import Event, Rsvp, Ticket, WaitlistEntry
from rsvp_engine.infrastructure.locks import event_critical_section
from rsvp_engine.infrastructure.repositories.rsvp_repository import RsvpRepository
from rsvp_engine.infrastructure.repositories.waitlist_repository import WaitlistRepository

logger = logging.getLogger(__name__)


@dataclass
class PromotionOutcome:
    promoted: list[Ticket] = field(default_factory=list)
    # (rsvp_id, ticket_id) captured before commit so notifying never
    # reloads expired rows.
    promoted_ids: list[tuple[str, str]] = field(default_factory=list)
    failure: PromotionFailedError | None = None

    def raise_for_failure(self) -> None:
        if self.failure is not None:
            raise self.failure


class WaitlistQueue:
    """
    FIFO waitlist per event.

    Promotion is strict first-in-line: when the head entry does not fit
    the free seats, nobody behind it is promoted either.
    """

    def __init__(
        self,
        db: Session,
        issuer: TicketIssuer | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ):
        self.db = db
        self.issuer = issuer or TicketIssuer(db)
        self.dispatcher = dispatcher
        self.ledger = CapacityLedger(db)
        self.rsvp_repository = RsvpRepository(db)
        self.waitlist_repository = WaitlistRepository(db)

    def enqueue(self, event_id: str, rsvp_id: str, user_id: str) -> int:
        """
        Append a waiting entry at max position + 1 and flag the RSVP.
        Must run inside the event's critical section.
        """
        previous = self.waitlist_repository.get_by_rsvp_id(rsvp_id)
        if previous is not None:
            # An RSVP owns at most one entry; drop a resolved one.
            self.remove(rsvp_id)

        position = self.waitlist_repository.max_waiting_position(event_id) + 1
        self.waitlist_repository.create(
            event_id=event_id,
            rsvp_id=rsvp_id,
            user_id=user_id,
            position=position,
        )

        rsvp = self.rsvp_repository.get_by_id(rsvp_id)
        rsvp.is_waitlisted = True
        rsvp.waitlist_position = position
        self.db.flush()

        logger.info(
            "Waitlisted RSVP. rsvp_id=%s event_id=%s position=%s",
            rsvp_id,
            event_id,
            position,
        )
        return position

    def remove(self, rsvp_id: str) -> None:
        entry = self.waitlist_repository.get_by_rsvp_id(rsvp_id)
        if entry is None:
            return

        was_waiting = entry.status == WaitlistStatus.WAITING
        event_id = entry.event_id
        position = entry.position

        self.waitlist_repository.delete(entry)
        if was_waiting:
            self.waitlist_repository.compact_after(event_id, position)

    def list_waiting(self, event_id: str) -> list[WaitlistEntry]:
        return self.waitlist_repository.list_waiting(event_id)

    def promote_next(
        self,
        event_id: str,
        freed_seats: int | None = None,
    ) -> list[Ticket]:
        """
        Promote waiting entries while the head fits.
        Commits the promotions that succeeded, then raises
        PromotionFailedError if one failed.
        """
        with event_critical_section(self.db, event_id) as event:
            logger.debug(
                "Promoting waitlist. event_id=%s freed_seats=%s",
                event_id,
                freed_seats,
            )
            outcome = self.promote_locked(event)

        self.notify_promoted(outcome)
        outcome.raise_for_failure()
        return outcome.promoted

    def promote_locked(self, event: Event) -> PromotionOutcome:
        """
        Promotion loop for callers already holding the critical section.
        Each promotion runs in its own SAVEPOINT so a failed ticket leaves
        the entry waiting at the same position.
        """
        outcome = PromotionOutcome()

        while True:
            entry = self.waitlist_repository.head(event.id)
            if entry is None:
                break

            rsvp = self.rsvp_repository.get_by_id(entry.rsvp_id)
            if not self.ledger.has_capacity(event.id, rsvp.plus_one_count):
                logger.info(
                    "Waitlist head does not fit yet. event_id=%s rsvp_id=%s plus_ones=%s",
                    event.id,
                    rsvp.id,
                    rsvp.plus_one_count,
                )
                break

            rsvp_id = rsvp.id
            try:
                with self.db.begin_nested():
                    ticket = self._promote(entry, rsvp)
            except Exception as exc:
                logger.exception(
                    "Waitlist promotion rolled back. event_id=%s rsvp_id=%s",
                    event.id,
                    rsvp_id,
                )
                outcome.failure = PromotionFailedError(event.id, rsvp_id, exc)
                break

            outcome.promoted.append(ticket)
            outcome.promoted_ids.append((rsvp_id, ticket.id))

        return outcome

    def expire(self, event_id: str) -> int:
        """Expire every waiting entry, e.g. once the event has ended."""
        with event_critical_section(self.db, event_id):
            entries = self.waitlist_repository.list_waiting(event_id)
            for entry in entries:
                WaitlistStateMachine.validate_transition(
                    entry.status,
                    WaitlistStatus.EXPIRED,
                )
                self.waitlist_repository.update_status(entry, WaitlistStatus.EXPIRED)
            self.db.flush()
            expired = len(entries)

        logger.info("Expired waitlist. event_id=%s entries=%s", event_id, expired)
        return expired

    def notify_promoted(self, outcome: PromotionOutcome) -> None:
        for rsvp_id, ticket_id in outcome.promoted_ids:
            dispatch_safely(self.dispatcher, rsvp_id, "promotion", ticket_id)

    def _promote(self, entry: WaitlistEntry, rsvp: Rsvp) -> Ticket:
        WaitlistStateMachine.validate_transition(
            entry.status,
            WaitlistStatus.CONFIRMED,
        )
        position = entry.position

        self.waitlist_repository.update_status(entry, WaitlistStatus.CONFIRMED)
        rsvp.is_waitlisted = False
        rsvp.waitlist_position = None
        self.db.flush()

        ticket = self.issuer.issue(rsvp.id)
        self.waitlist_repository.compact_after(entry.event_id, position)

        logger.info(
            "Promoted from waitlist. rsvp_id=%s event_id=%s position=%s",
            rsvp.id,
            entry.event_id,
            position,
        )
        return ticket
