# tests/integration/test_waitlist.py

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from rsvp_engine.application.admission_service import AdmissionController
from rsvp_engine.application.capacity_ledger import CapacityLedger
from rsvp_engine.application.ticket_service import TicketIssuer
from rsvp_engine.application.waitlist_service import WaitlistQueue
from rsvp_engine.domain.exceptions import PromotionFailedError
from rsvp_engine.domain.qr_payload import QrCodec
from rsvp_engine.domain.state_machine import WaitlistStatus
from rsvp_engine.infrastructure.db.models import Rsvp, Ticket, WaitlistEntry

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


class FlakyIssuer(TicketIssuer):
    """Fails the first ``failures`` issue calls."""

    def __init__(self, db, failures: int = 1):
        super().__init__(db, codec=QrCodec(), clock=lambda: NOW)
        self.failures = failures

    def issue(self, rsvp_id):
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("ticket storage unavailable")
        return super().issue(rsvp_id)


@pytest.fixture
def controller(db, dispatcher):
    return AdmissionController(
        db,
        dispatcher=dispatcher,
        clock=lambda: NOW,
        codec=QrCodec(),
    )


def _waiting_rsvp_ids(db, event_id):
    return [
        entry.rsvp_id
        for entry in WaitlistQueue(db).list_waiting(event_id)
    ]


def _has_ticket(db, rsvp_id):
    return db.execute(
        select(Ticket).where(Ticket.rsvp_id == rsvp_id)
    ).scalar_one_or_none() is not None


def test_withdrawal_promotes_waitlist_head(db, controller, dispatcher, make_event, attendee):
    event = make_event(capacity=1)
    a = controller.submit(attendee("a"), event.id, "going")
    b = controller.submit(attendee("b"), event.id, "going")

    controller.delete(a.rsvp.id, attendee("a"))

    db.expire_all()
    promoted = db.get(Rsvp, b.rsvp.id)
    assert promoted.is_waitlisted is False
    assert promoted.waitlist_position is None
    assert _has_ticket(db, b.rsvp.id)
    assert CapacityLedger(db).occupied_seats(event.id) == 1
    assert (b.rsvp.id, "promotion") in dispatcher.sent

    entry = db.execute(
        select(WaitlistEntry).where(WaitlistEntry.rsvp_id == b.rsvp.id)
    ).scalar_one()
    assert entry.status == WaitlistStatus.CONFIRMED


def test_positions_are_assigned_in_arrival_order(db, controller, make_event, attendee):
    event = make_event(capacity=0)
    ids = [
        controller.submit(attendee(user), event.id, "going").rsvp.id
        for user in ("a", "b", "c")
    ]

    entries = WaitlistQueue(db).list_waiting(event.id)

    assert [entry.rsvp_id for entry in entries] == ids
    assert [entry.position for entry in entries] == [1, 2, 3]


def test_promotion_follows_fifo(db, controller, make_event, attendee):
    event = make_event(capacity=1)
    a = controller.submit(attendee("a"), event.id, "going")
    b = controller.submit(attendee("b"), event.id, "going")
    c = controller.submit(attendee("c"), event.id, "going")

    controller.delete(a.rsvp.id, attendee("a"))

    assert _has_ticket(db, b.rsvp.id)
    assert not _has_ticket(db, c.rsvp.id)
    db.expire_all()
    assert db.get(Rsvp, c.rsvp.id).waitlist_position == 1
    assert _waiting_rsvp_ids(db, event.id) == [c.rsvp.id]


def test_head_that_does_not_fit_blocks_the_line(db, controller, make_event, attendee):
    event = make_event(capacity=3)
    a = controller.submit(attendee("a"), event.id, "going", plus_one_count=1)
    controller.submit(attendee("b"), event.id, "going")
    big = controller.submit(attendee("c"), event.id, "going", plus_one_count=2)
    small = controller.submit(attendee("d"), event.id, "going")
    assert big.waitlisted and small.waitlisted

    # Frees two seats: not enough for the head, which needs three.
    controller.delete(a.rsvp.id, attendee("a"))

    assert not _has_ticket(db, big.rsvp.id)
    assert not _has_ticket(db, small.rsvp.id)
    assert _waiting_rsvp_ids(db, event.id) == [big.rsvp.id, small.rsvp.id]


def test_several_heads_promoted_when_seats_allow(db, controller, make_event, attendee):
    event = make_event(capacity=3)
    a = controller.submit(attendee("a"), event.id, "going", plus_one_count=2)
    b = controller.submit(attendee("b"), event.id, "going")
    c = controller.submit(attendee("c"), event.id, "going", plus_one_count=1)

    controller.delete(a.rsvp.id, attendee("a"))

    assert _has_ticket(db, b.rsvp.id)
    assert _has_ticket(db, c.rsvp.id)
    assert CapacityLedger(db).occupied_seats(event.id) == 3
    assert _waiting_rsvp_ids(db, event.id) == []


def test_failed_promotion_keeps_entry_waiting(db, controller, make_event, attendee):
    event = make_event(capacity=1)
    a = controller.submit(attendee("a"), event.id, "going")
    b = controller.submit(attendee("b"), event.id, "going")
    controller.waitlist.issuer = FlakyIssuer(db)

    with pytest.raises(PromotionFailedError) as exc_info:
        controller.delete(a.rsvp.id, attendee("a"))

    assert exc_info.value.rsvp_id == b.rsvp.id

    # The withdrawal itself is committed.
    db.expire_all()
    assert db.get(Rsvp, a.rsvp.id) is None

    rsvp = db.get(Rsvp, b.rsvp.id)
    assert rsvp.is_waitlisted is True
    assert rsvp.waitlist_position == 1
    assert not _has_ticket(db, b.rsvp.id)

    entry = db.execute(
        select(WaitlistEntry).where(WaitlistEntry.rsvp_id == b.rsvp.id)
    ).scalar_one()
    assert entry.status == WaitlistStatus.WAITING
    assert entry.position == 1


def test_failed_promotion_can_be_retried(db, controller, dispatcher, make_event, attendee):
    event = make_event(capacity=1)
    a = controller.submit(attendee("a"), event.id, "going")
    b = controller.submit(attendee("b"), event.id, "going")
    controller.waitlist.issuer = FlakyIssuer(db)

    with pytest.raises(PromotionFailedError):
        controller.delete(a.rsvp.id, attendee("a"))

    promoted = controller.waitlist.promote_next(event.id, freed_seats=1)

    assert [ticket.rsvp_id for ticket in promoted] == [b.rsvp.id]
    assert _has_ticket(db, b.rsvp.id)
    assert (b.rsvp.id, "promotion") in dispatcher.sent


def test_promote_next_without_free_seats_is_a_no_op(db, controller, make_event, attendee):
    event = make_event(capacity=1)
    controller.submit(attendee("a"), event.id, "going")
    b = controller.submit(attendee("b"), event.id, "going")

    assert controller.waitlist.promote_next(event.id) == []
    assert _waiting_rsvp_ids(db, event.id) == [b.rsvp.id]


def test_removing_an_entry_compacts_positions(db, controller, make_event, attendee):
    event = make_event(capacity=0)
    a = controller.submit(attendee("a"), event.id, "going")
    b = controller.submit(attendee("b"), event.id, "going")
    c = controller.submit(attendee("c"), event.id, "going")

    controller.delete(b.rsvp.id, attendee("b"))

    entries = WaitlistQueue(db).list_waiting(event.id)
    assert [entry.rsvp_id for entry in entries] == [a.rsvp.id, c.rsvp.id]
    assert [entry.position for entry in entries] == [1, 2]
    db.expire_all()
    assert db.get(Rsvp, c.rsvp.id).waitlist_position == 2


def test_expire_closes_the_waitlist(db, controller, make_event, attendee):
    event = make_event(capacity=0)
    controller.submit(attendee("a"), event.id, "going")
    controller.submit(attendee("b"), event.id, "going")

    expired = controller.waitlist.expire(event.id)

    assert expired == 2
    assert WaitlistQueue(db).list_waiting(event.id) == []
    statuses = db.execute(select(WaitlistEntry.status)).scalars().all()
    assert statuses == [WaitlistStatus.EXPIRED, WaitlistStatus.EXPIRED]


def test_rejoining_after_promotion_gets_a_fresh_entry(db, controller, make_event, attendee):
    from rsvp_engine.application.admission_service import RsvpChanges

    event = make_event(capacity=1)
    a = controller.submit(attendee("a"), event.id, "going")
    b = controller.submit(attendee("b"), event.id, "going")
    controller.delete(a.rsvp.id, attendee("a"))

    controller.update(b.rsvp.id, attendee("b"), RsvpChanges(status="maybe"))
    controller.submit(attendee("c"), event.id, "going")
    rsvp = controller.update(b.rsvp.id, attendee("b"), RsvpChanges(status="going"))

    assert rsvp.is_waitlisted is True
    assert rsvp.waitlist_position == 1
    entries = db.execute(
        select(WaitlistEntry).where(WaitlistEntry.rsvp_id == b.rsvp.id)
    ).scalars().all()
    assert len(entries) == 1
    assert entries[0].status == WaitlistStatus.WAITING
