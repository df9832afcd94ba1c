# rsvp_engine/domain/seating.py

from datetime import datetime, timezone

from rsvp_engine.domain.state_machine import ApprovalStatus, RsvpStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def deadline_met(now: datetime, rsvp_deadline: datetime | None) -> bool:
    """True when no deadline is set or ``now`` is not past it."""
    if rsvp_deadline is None:
        return True
    return ensure_utc(now) <= ensure_utc(rsvp_deadline)


def seats_held(
    status: RsvpStatus,
    plus_one_count: int,
    is_waitlisted: bool,
    approval_status: ApprovalStatus = ApprovalStatus.PENDING,
) -> int:
    """
    Seats an RSVP consumes: the attendee plus their guests, but only
    while going, confirmed and not rejected.
    """
    if status != RsvpStatus.GOING or is_waitlisted:
        return 0
    if approval_status == ApprovalStatus.REJECTED:
        return 0
    return 1 + plus_one_count


def fits(occupied: int, additional_seats: int, capacity: int) -> bool:
    # The +1 is the requester's own seat on top of their plus-ones.
    return occupied + additional_seats + 1 <= capacity
