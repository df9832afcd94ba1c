import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rsvp_engine.application.capacity_ledger import CapacityLedger
from rsvp_engine.application.notifications import NotificationDispatcher, dispatch_safely
from rsvp_engine.application.ticket_service import TicketIssuer
from rsvp_engine.application.waitlist_service import PromotionOutcome, WaitlistQueue
from rsvp_engine.domain.actor import Actor
from rsvp_engine.domain.exceptions import (
    CapacityRaceError,
    ConflictError,
    ForbiddenError,
    InvalidRequestError,
)
from rsvp_engine.domain.qr_payload import QrCodec
from rsvp_engine.domain.seating import deadline_met, seats_held, utc_now
from rsvp_engine.domain.state_machine import ApprovalStatus, RsvpStatus
from rsvp_engine.infrastructure.db.models import Event, Rsvp, Ticket
from rsvp_engine.infrastructure.locks import event_critical_section
from rsvp_engine.infrastructure.repositories.event_repository import EventRepository
from rsvp_engine.infrastructure.repositories.rsvp_repository import RsvpRepository
from rsvp_engine.infrastructure.repositories.ticket_repository import TicketRepository
from rsvp_engine.infrastructure.repositories.waitlist_repository import WaitlistRepository

logger = logging.getLogger(__name__)

CLOSED_EVENT_STATUSES = {"cancelled", "completed"}


@dataclass
class SubmitResult:
    rsvp: Rsvp
    ticket: Ticket | None
    waitlisted: bool


@dataclass
class RsvpChanges:
    status: RsvpStatus | str | None = None
    plus_one_count: int | None = None
    dietary_preferences: str | None = None


class AdmissionController:
    """
    Decides confirm-vs-waitlist for RSVPs and keeps tickets and the
    waitlist in step with every seat-changing edit.

    All seat-changing work runs inside the event's critical section.
    Notifications go out only after that transaction has committed.
    """

    def __init__(
        self,
        db: Session,
        dispatcher: NotificationDispatcher | None = None,
        clock: Callable[[], datetime] = utc_now,
        codec: QrCodec | None = None,
        max_plus_ones: int | None = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.clock = clock
        if max_plus_ones is None:
            max_plus_ones = int(os.getenv("RSVP_MAX_PLUS_ONES", "10"))
        self.max_plus_ones = max_plus_ones

        self.event_repository = EventRepository(db)
        self.rsvp_repository = RsvpRepository(db)
        self.ticket_repository = TicketRepository(db)
        self.waitlist_repository = WaitlistRepository(db)
        self.ledger = CapacityLedger(db)
        self.issuer = TicketIssuer(db, codec=codec, clock=clock)
        self.waitlist = WaitlistQueue(db, issuer=self.issuer, dispatcher=dispatcher)

    # -----------------------------
    # Submit
    # -----------------------------
    def submit(
        self,
        actor: Actor,
        event_id: str,
        status: RsvpStatus | str,
        plus_one_count: int = 0,
        dietary_preferences: str | None = None,
    ) -> SubmitResult:
        status = self._parse_status(status)
        self._validate_plus_ones(plus_one_count)

        with event_critical_section(self.db, event_id) as event:
            result = self._admit_new(
                actor,
                event,
                status,
                plus_one_count,
                dietary_preferences,
            )
            rsvp_id = result.rsvp.id
            ticket_id = result.ticket.id if result.ticket is not None else None

        if ticket_id is not None:
            dispatch_safely(self.dispatcher, rsvp_id, "admission", ticket_id)
        return result

    def _admit_new(
        self,
        actor: Actor,
        event: Event,
        status: RsvpStatus,
        plus_one_count: int,
        dietary_preferences: str | None,
    ) -> SubmitResult:

        existing = self.rsvp_repository.get_by_event_and_user(event.id, actor.user_id)
        if existing:
            raise ConflictError("User already has an RSVP for this event")

        self._ensure_open(event)

        met = deadline_met(self.clock(), event.rsvp_deadline)
        if not met and status == RsvpStatus.GOING:
            raise ConflictError("RSVP deadline has passed")

        admit = (
            status == RsvpStatus.GOING
            and self.ledger.has_capacity(event.id, plus_one_count)
        )

        try:
            rsvp = self.rsvp_repository.create(
                event_id=event.id,
                user_id=actor.user_id,
                status=status,
                plus_one_count=plus_one_count,
                dietary_preferences=dietary_preferences,
                rsvp_deadline_met=met,
            )
        except IntegrityError as exc:
            raise ConflictError("User already has an RSVP for this event") from exc

        if status != RsvpStatus.GOING:
            return SubmitResult(rsvp=rsvp, ticket=None, waitlisted=False)

        if not admit:
            self.waitlist.enqueue(event.id, rsvp.id, actor.user_id)
            return SubmitResult(rsvp=rsvp, ticket=None, waitlisted=True)

        ticket = self.issuer.issue(rsvp.id)
        self._verify_capacity(event)
        logger.info(
            "Confirmed RSVP. rsvp_id=%s event_id=%s seats=%s",
            rsvp.id,
            event.id,
            1 + plus_one_count,
        )
        return SubmitResult(rsvp=rsvp, ticket=ticket, waitlisted=False)

    # -----------------------------
    # Update
    # -----------------------------
    def update(
        self,
        rsvp_id: str,
        actor: Actor,
        changes: RsvpChanges,
    ) -> Rsvp:
        """
        Re-runs admission for every seat-affecting change:
        becoming "going" is admitted or waitlisted, leaving "going" frees
        the seats, and extra plus-ones on a confirmed RSVP must fit or the
        update is refused.
        """
        rsvp = self.rsvp_repository.get_by_id(rsvp_id)
        if not actor.owns(rsvp.user_id):
            raise ForbiddenError("Not authorized to update this RSVP")

        new_status = self._parse_status(changes.status) if changes.status else None
        if changes.plus_one_count is not None:
            self._validate_plus_ones(changes.plus_one_count)

        with event_critical_section(self.db, rsvp.event_id) as event:
            rsvp = self.rsvp_repository.get_by_id(rsvp_id)
            ticket, outcome = self._apply_changes(event, rsvp, new_status, changes)
            ticket_id = ticket.id if ticket is not None else None

        if ticket_id is not None:
            dispatch_safely(self.dispatcher, rsvp_id, "admission", ticket_id)
        self.waitlist.notify_promoted(outcome)
        outcome.raise_for_failure()
        return rsvp

    def _apply_changes(
        self,
        event: Event,
        rsvp: Rsvp,
        new_status: RsvpStatus | None,
        changes: RsvpChanges,
    ) -> tuple[Ticket | None, PromotionOutcome]:

        if rsvp.approval_status == ApprovalStatus.REJECTED:
            raise ConflictError("RSVP was rejected; withdraw it and submit a new one")

        old_status = rsvp.status
        old_plus_ones = rsvp.plus_one_count
        new_status = new_status or old_status
        new_plus_ones = (
            changes.plus_one_count
            if changes.plus_one_count is not None
            else old_plus_ones
        )
        was_confirmed = self._holds_seats(rsvp)

        ticket = None
        outcome = PromotionOutcome()

        if changes.dietary_preferences is not None:
            rsvp.dietary_preferences = changes.dietary_preferences

        if new_status != old_status or new_plus_ones != old_plus_ones:
            # Seat-affecting edits go back through approval.
            rsvp.approval_status = ApprovalStatus.PENDING

        if new_status == RsvpStatus.GOING and old_status != RsvpStatus.GOING:
            self._ensure_open(event)
            if not deadline_met(self.clock(), event.rsvp_deadline):
                raise ConflictError("RSVP deadline has passed")

            fits = self.ledger.has_capacity(
                event.id,
                new_plus_ones,
                exclude_rsvp_id=rsvp.id,
            )
            rsvp.status = new_status
            rsvp.plus_one_count = new_plus_ones
            self.db.flush()

            if fits:
                ticket = self.issuer.issue(rsvp.id)
                self._verify_capacity(event)
            else:
                self.waitlist.enqueue(event.id, rsvp.id, rsvp.user_id)

        elif old_status == RsvpStatus.GOING and new_status != RsvpStatus.GOING:
            if rsvp.is_waitlisted:
                self.waitlist.remove(rsvp.id)
                rsvp.is_waitlisted = False
                rsvp.waitlist_position = None
            else:
                self.issuer.revoke(rsvp.id)

            rsvp.status = new_status
            rsvp.plus_one_count = new_plus_ones
            self.db.flush()

            if was_confirmed:
                outcome = self.waitlist.promote_locked(event)

        elif new_status == RsvpStatus.GOING and was_confirmed:
            if new_plus_ones > old_plus_ones:
                if not self.ledger.has_capacity(
                    event.id,
                    new_plus_ones,
                    exclude_rsvp_id=rsvp.id,
                ):
                    raise ConflictError("Not enough seats for the requested plus-ones")

            rsvp.plus_one_count = new_plus_ones
            self.db.flush()
            self._verify_capacity(event)

            if new_plus_ones < old_plus_ones:
                outcome = self.waitlist.promote_locked(event)

        else:
            rsvp.status = new_status
            rsvp.plus_one_count = new_plus_ones
            self.db.flush()

        return ticket, outcome

    # -----------------------------
    # Delete
    # -----------------------------
    def delete(self, rsvp_id: str, actor: Actor) -> None:
        """
        Withdraw an RSVP together with its ticket and waitlist entry.
        Vacated seats are offered to the waitlist before returning; a
        failed promotion is raised after the withdrawal has committed.
        """
        rsvp = self.rsvp_repository.get_by_id(rsvp_id)
        if not actor.owns(rsvp.user_id):
            raise ForbiddenError("Not authorized to delete this RSVP")

        with event_critical_section(self.db, rsvp.event_id) as event:
            rsvp = self.rsvp_repository.get_by_id(rsvp_id)
            freed_seats = seats_held(
                rsvp.status,
                rsvp.plus_one_count,
                rsvp.is_waitlisted,
                rsvp.approval_status,
            )

            self.issuer.revoke(rsvp.id)
            self.waitlist.remove(rsvp.id)
            self.rsvp_repository.delete(rsvp)
            logger.info(
                "Withdrew RSVP. rsvp_id=%s event_id=%s freed_seats=%s",
                rsvp_id,
                event.id,
                freed_seats,
            )

            outcome = PromotionOutcome()
            if freed_seats:
                outcome = self.waitlist.promote_locked(event)

        self.waitlist.notify_promoted(outcome)
        outcome.raise_for_failure()

    # -----------------------------
    # Admin review
    # -----------------------------
    def review(self, rsvp_id: str, actor: Actor, action: str) -> Rsvp:
        if not actor.is_admin:
            raise ForbiddenError("Only admins can review RSVPs")
        if action not in {"approve", "reject"}:
            raise InvalidRequestError(f"Unknown review action: {action}")

        rsvp = self.rsvp_repository.get_by_id(rsvp_id)

        ticket_id = None
        outcome = PromotionOutcome()
        with event_critical_section(self.db, rsvp.event_id) as event:
            rsvp = self.rsvp_repository.get_by_id(rsvp_id)

            if action == "approve":
                ticket_id = self._approve(event, rsvp)
            else:
                held = self._holds_seats(rsvp)
                rsvp.approval_status = ApprovalStatus.REJECTED
                self.issuer.revoke(rsvp.id)
                if rsvp.is_waitlisted:
                    self.waitlist.remove(rsvp.id)
                    rsvp.is_waitlisted = False
                    rsvp.waitlist_position = None
                self.db.flush()
                if held:
                    outcome = self.waitlist.promote_locked(event)

        logger.info("Reviewed RSVP. rsvp_id=%s action=%s", rsvp_id, action)
        if ticket_id is not None:
            dispatch_safely(self.dispatcher, rsvp_id, "approval", ticket_id)
        self.waitlist.notify_promoted(outcome)
        outcome.raise_for_failure()
        return rsvp

    def _approve(self, event: Event, rsvp: Rsvp) -> str | None:
        """
        A rejected RSVP gave its seats away, so approving it goes back
        through admission: confirmed if it still fits, otherwise queued
        at the tail of the waitlist. Returns the ticket id when confirmed.
        """
        was_rejected = rsvp.approval_status == ApprovalStatus.REJECTED
        rsvp.approval_status = ApprovalStatus.APPROVED
        self.db.flush()

        if rsvp.status != RsvpStatus.GOING or rsvp.is_waitlisted:
            return None

        if was_rejected and not self.ledger.has_capacity(
            event.id,
            rsvp.plus_one_count,
            exclude_rsvp_id=rsvp.id,
        ):
            self.waitlist.enqueue(event.id, rsvp.id, rsvp.user_id)
            return None

        ticket = self.issuer.issue(rsvp.id)
        self._verify_capacity(event)
        return ticket.id

    # -----------------------------
    # Reads
    # -----------------------------
    def get(self, rsvp_id: str, actor: Actor) -> Rsvp:
        rsvp = self.rsvp_repository.get_by_id(rsvp_id)
        if not (actor.owns(rsvp.user_id) or actor.is_admin):
            raise ForbiddenError("Not authorized to view this RSVP")
        return rsvp

    def list_for_user(self, actor: Actor, event_id: str | None = None) -> list[Rsvp]:
        return self.rsvp_repository.list_for_user(actor.user_id, event_id=event_id)

    def rsvp_stats(self, event_id: str) -> dict:
        event = self.event_repository.get_by_id(event_id)
        breakdown = self.rsvp_repository.status_breakdown(event_id)
        total = sum(breakdown.values())
        checked_in = self.rsvp_repository.count_checked_in(event_id)
        occupied = self.ledger.occupied_seats(event_id)

        return {
            "total_rsvps": total,
            "breakdown": {
                "going": breakdown[RsvpStatus.GOING],
                "maybe": breakdown[RsvpStatus.MAYBE],
                "not_going": breakdown[RsvpStatus.NOT_GOING],
            },
            "checked_in": checked_in,
            "check_in_rate": round(checked_in / total * 100, 1) if total else 0.0,
            "total_attendees": occupied,
            "available_seats": max(0, event.capacity - occupied),
            "waitlist_count": self.waitlist_repository.count_waiting(event_id),
            "capacity": event.capacity,
        }

    # -----------------------------
    # Helpers
    # -----------------------------
    def _parse_status(self, status: RsvpStatus | str) -> RsvpStatus:
        try:
            return RsvpStatus(status)
        except ValueError as exc:
            raise InvalidRequestError(f"Unknown RSVP status: {status}") from exc

    def _validate_plus_ones(self, plus_one_count: int) -> None:
        if plus_one_count < 0 or plus_one_count > self.max_plus_ones:
            raise InvalidRequestError(
                f"plus_one_count must be between 0 and {self.max_plus_ones}"
            )

    def _ensure_open(self, event: Event) -> None:
        if event.status in CLOSED_EVENT_STATUSES:
            raise ConflictError(f"Event is {event.status} and not accepting RSVPs")

    def _holds_seats(self, rsvp: Rsvp) -> bool:
        return seats_held(
            rsvp.status,
            rsvp.plus_one_count,
            rsvp.is_waitlisted,
            rsvp.approval_status,
        ) > 0

    def _verify_capacity(self, event: Event) -> None:
        occupied = self.ledger.occupied_seats(event.id)
        if occupied > event.capacity:
            logger.warning(
                "Capacity overshoot detected, rolling back. event_id=%s occupied=%s capacity=%s",
                event.id,
                occupied,
                event.capacity,
            )
            raise CapacityRaceError(event.id, occupied, event.capacity)
