# tests/integration/test_ticketing.py

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from rsvp_engine.application.admission_service import AdmissionController
from rsvp_engine.application.ticket_service import TicketIssuer
from rsvp_engine.domain.exceptions import ConflictError, NotFoundError
from rsvp_engine.domain.qr_payload import QrCodec
from rsvp_engine.infrastructure.db.models import Ticket

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def controller(db):
    return AdmissionController(db, clock=lambda: NOW, codec=QrCodec())


@pytest.fixture
def issuer(db):
    return TicketIssuer(db, codec=QrCodec(), clock=lambda: NOW)


def test_issue_is_idempotent(db, controller, issuer, make_event, attendee):
    event = make_event()
    result = controller.submit(attendee("a"), event.id, "going")

    again = issuer.issue(result.rsvp.id)

    assert again.id == result.ticket.id
    assert again.qr_code == result.ticket.qr_code
    assert len(db.execute(select(Ticket)).scalars().all()) == 1


def test_ticket_payload_identifies_the_rsvp(controller, make_event, attendee):
    event = make_event()
    result = controller.submit(attendee("a"), event.id, "going")

    payload = QrCodec().decode(result.ticket.qr_code)

    assert payload.rsvp_id == result.rsvp.id
    assert payload.user_id == "a"
    assert payload.event_id == event.id
    assert payload.issued_at == NOW


def test_issue_for_unknown_rsvp(issuer):
    with pytest.raises(NotFoundError):
        issuer.issue("missing")


def test_no_ticket_for_waitlisted_rsvp(controller, issuer, make_event, attendee):
    event = make_event(capacity=0)
    result = controller.submit(attendee("a"), event.id, "going")

    with pytest.raises(ConflictError):
        issuer.issue(result.rsvp.id)


def test_no_ticket_for_maybe(controller, issuer, make_event, attendee):
    event = make_event()
    result = controller.submit(attendee("a"), event.id, "maybe")

    with pytest.raises(ConflictError):
        issuer.issue(result.rsvp.id)


def test_revoke(db, controller, issuer, make_event, attendee):
    event = make_event()
    result = controller.submit(attendee("a"), event.id, "going")

    assert issuer.revoke(result.rsvp.id) is True
    assert issuer.revoke(result.rsvp.id) is False
    assert db.execute(select(Ticket)).scalars().all() == []


def test_list_for_user(controller, issuer, make_event, attendee):
    first = make_event(name="First")
    second = make_event(name="Second")
    controller.submit(attendee("a"), first.id, "going")
    controller.submit(attendee("a"), second.id, "going")
    controller.submit(attendee("b"), first.id, "going")

    tickets = issuer.list_for_user("a")

    assert {ticket.event_id for ticket in tickets} == {first.id, second.id}


def test_qr_data(controller, issuer, make_event, attendee):
    event = make_event()
    result = controller.submit(attendee("a"), event.id, "going")

    data = issuer.qr_data(result.ticket.id)

    assert data["ticket_id"] == result.ticket.id
    assert data["rsvp_id"] == result.rsvp.id
    assert data["check_in_status"] == "not_checked_in"
    assert data["qr_code"] == result.ticket.qr_code
    assert data["timestamp"] == NOW.isoformat()


def test_get_unknown_ticket(issuer):
    with pytest.raises(NotFoundError):
        issuer.get("missing")
