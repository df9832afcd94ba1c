import logging
from typing import Protocol

from rsvp_engine.infrastructure.db.session import get_db_session
from rsvp_engine.infrastructure.repositories.outbox_repository import OutboxRepository

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    def dispatch_confirmation(self, rsvp_id: str, trigger: str, ticket_id: str) -> None:
        ...


class OutboxNotificationDispatcher:
    """
    Records an RSVP_CONFIRMED outbox event for the delivery worker.
    Uses its own session so the admission transaction never depends on it.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory

    def dispatch_confirmation(self, rsvp_id: str, trigger: str, ticket_id: str) -> None:
        # One row per issued ticket; repeats for the same ticket dedupe.
        with get_db_session(self.session_factory) as db:
            OutboxRepository(db).add(
                aggregate_type="rsvp",
                aggregate_id=rsvp_id,
                event_type="RSVP_CONFIRMED",
                payload={"rsvp_id": rsvp_id, "ticket_id": ticket_id, "trigger": trigger},
                dedupe_key=f"rsvp:{rsvp_id}:confirmed:{trigger}:{ticket_id}",
            )


def dispatch_safely(
    dispatcher: NotificationDispatcher | None,
    rsvp_id: str,
    trigger: str,
    ticket_id: str,
) -> None:
    """Fire-and-forget: failures are logged, never raised."""
    if dispatcher is None:
        return

    try:
        dispatcher.dispatch_confirmation(rsvp_id, trigger, ticket_id)
    except Exception:
        logger.exception(
            "Failed to dispatch confirmation notification. rsvp_id=%s ticket_id=%s trigger=%s",
            rsvp_id,
            ticket_id,
            trigger,
        )
