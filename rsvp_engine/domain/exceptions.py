from datetime import datetime


class RsvpEngineError(Exception):
    """
    Base exception for all domain-level errors
    inside the RSVP admission engine.
    """


class NotFoundError(RsvpEngineError):
    """Raised when a referenced event, RSVP or ticket does not exist."""

    def __init__(self, resource: str, identifier: str | None = None):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found")


class ConflictError(RsvpEngineError):
    """Raised for duplicate RSVPs, passed deadlines and closed events."""


class ForbiddenError(RsvpEngineError):
    """Raised when the caller does not own or administer the resource."""


class InvalidRequestError(RsvpEngineError):
    """Raised when request values fall outside accepted bounds."""


class InvalidStateTransitionError(RsvpEngineError):
    """
    Raised when an illegal state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class AlreadyCheckedInError(RsvpEngineError):
    """
    Raised on a repeated check-in. Carries the original check-in time
    so door staff can tell "already in" apart from "scan failed".
    """

    def __init__(self, ticket_id: str, checked_in_at: datetime | None):
        self.ticket_id = ticket_id
        self.checked_in_at = checked_in_at
        when = checked_in_at.isoformat() if checked_in_at else "unknown time"
        super().__init__(f"Ticket already checked in at {when}")


class InvalidPayloadError(RsvpEngineError):
    """Raised when a QR payload cannot be decoded or verified."""


class CapacityRaceError(RsvpEngineError):
    """
    Raised when a write would leave an event over capacity.
    The caller may retry the request.
    """

    def __init__(self, event_id: str, occupied: int, capacity: int):
        self.event_id = event_id
        self.occupied = occupied
        self.capacity = capacity
        super().__init__(
            f"Capacity exceeded for event {event_id}: "
            f"{occupied} seats occupied, capacity {capacity}"
        )


class PromotionFailedError(RsvpEngineError):
    """
    Raised when a waitlisted RSVP could not be promoted.
    The waitlist entry keeps its place.
    """

    def __init__(self, event_id: str, rsvp_id: str, cause: Exception):
        self.event_id = event_id
        self.rsvp_id = rsvp_id
        self.cause = cause
        super().__init__(
            f"Waitlist promotion failed for RSVP {rsvp_id} "
            f"on event {event_id}: {cause}"
        )
