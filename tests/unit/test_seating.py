# tests/unit/test_seating.py

from datetime import datetime, timedelta, timezone

from rsvp_engine.domain.seating import deadline_met, fits, seats_held
from rsvp_engine.domain.state_machine import ApprovalStatus, RsvpStatus

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_fits_counts_requester_seat():
    assert fits(occupied=1, additional_seats=0, capacity=2)
    assert not fits(occupied=2, additional_seats=0, capacity=2)


def test_fits_with_plus_ones():
    # 1 occupied + 4 plus-ones + requester = 6 > 5
    assert not fits(occupied=1, additional_seats=4, capacity=5)
    assert fits(occupied=0, additional_seats=4, capacity=5)


def test_zero_capacity_admits_nobody():
    assert not fits(occupied=0, additional_seats=0, capacity=0)


def test_only_confirmed_going_rsvps_hold_seats():
    assert seats_held(RsvpStatus.GOING, 2, is_waitlisted=False) == 3
    assert seats_held(RsvpStatus.GOING, 2, is_waitlisted=True) == 0
    assert seats_held(RsvpStatus.MAYBE, 2, is_waitlisted=False) == 0
    assert seats_held(RsvpStatus.NOT_GOING, 0, is_waitlisted=False) == 0


def test_rejected_rsvp_holds_no_seat():
    assert seats_held(
        RsvpStatus.GOING,
        0,
        is_waitlisted=False,
        approval_status=ApprovalStatus.REJECTED,
    ) == 0


def test_deadline_met():
    assert deadline_met(NOW, None)
    assert deadline_met(NOW, NOW)
    assert deadline_met(NOW, NOW + timedelta(minutes=1))
    assert not deadline_met(NOW, NOW - timedelta(seconds=1))


def test_deadline_met_accepts_naive_storage_values():
    naive_deadline = (NOW - timedelta(hours=1)).replace(tzinfo=None)

    assert not deadline_met(NOW, naive_deadline)
