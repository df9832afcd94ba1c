from sqlalchemy.orm import Session

from rsvp_engine.domain.exceptions import InvalidRequestError
from rsvp_engine.domain.seating import fits
from rsvp_engine.infrastructure.repositories.event_repository import EventRepository
from rsvp_engine.infrastructure.repositories.rsvp_repository import RsvpRepository


class CapacityLedger:
    """
    Read-side view of confirmed seat usage per event.
    Owns no data; every answer is recomputed from RSVP rows.
    """

    def __init__(self, db: Session):
        self.db = db
        self.event_repository = EventRepository(db)
        self.rsvp_repository = RsvpRepository(db)

    def occupied_seats(
        self,
        event_id: str,
        exclude_rsvp_id: str | None = None,
    ) -> int:
        return self.rsvp_repository.confirmed_seats(
            event_id,
            exclude_rsvp_id=exclude_rsvp_id,
        )

    def has_capacity(
        self,
        event_id: str,
        additional_seats: int,
        exclude_rsvp_id: str | None = None,
    ) -> bool:
        """
        True iff occupied + additional_seats + 1 <= capacity.
        ``additional_seats`` are the requester's plus-ones; the +1 is the
        requester. ``exclude_rsvp_id`` leaves an RSVP's current seats out
        of the count when re-checking its own change.
        """
        if additional_seats < 0:
            raise InvalidRequestError("additional_seats must not be negative")

        event = self.event_repository.get_by_id(event_id)
        occupied = self.occupied_seats(event_id, exclude_rsvp_id=exclude_rsvp_id)
        return fits(occupied, additional_seats, event.capacity)

    def available_seats(self, event_id: str) -> int:
        event = self.event_repository.get_by_id(event_id)
        return max(0, event.capacity - self.occupied_seats(event_id))
