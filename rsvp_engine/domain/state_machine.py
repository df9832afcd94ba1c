# rsvp_engine/domain/state_machine.py

from enum import Enum
from typing import Dict, Set

from rsvp_engine.domain.exceptions import InvalidStateTransitionError


class RsvpStatus(str, Enum):
    GOING = "going"
    MAYBE = "maybe"
    NOT_GOING = "not_going"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WaitlistStatus(str, Enum):
    WAITING = "waiting"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"


class CheckInStatus(str, Enum):
    NOT_CHECKED_IN = "not_checked_in"
    CHECKED_IN = "checked_in"


class _StateMachine:
    """
    Shared transition-table logic.
    Subclasses declare the status enum and the legal transitions.
    """

    _STATUS_TYPE: type[Enum]
    _ALLOWED_TRANSITIONS: Dict[Enum, Set[Enum]] = {}

    @classmethod
    def can_transition(cls, from_status, to_status) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(cls, from_status, to_status) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status) -> bool:
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def get_allowed_transitions(cls, status) -> Set[Enum]:
        cls._ensure_valid_status(status)
        return cls._ALLOWED_TRANSITIONS.get(status, set())

    @classmethod
    def _ensure_valid_status(cls, status) -> None:
        if not isinstance(status, cls._STATUS_TYPE):
            raise TypeError(
                f"Expected {cls._STATUS_TYPE.__name__}, got {type(status)}"
            )


class CheckInStateMachine(_StateMachine):
    """
    Ticket check-in lifecycle.
    checked_in is terminal: there is no un-check-in.
    """

    _STATUS_TYPE = CheckInStatus
    _ALLOWED_TRANSITIONS: Dict[CheckInStatus, Set[CheckInStatus]] = {
        CheckInStatus.NOT_CHECKED_IN: {
            CheckInStatus.CHECKED_IN,
        },
        CheckInStatus.CHECKED_IN: set(),
    }


class WaitlistStateMachine(_StateMachine):
    """
    Waitlist entry lifecycle.
    Only waiting entries can be promoted or expired.
    """

    _STATUS_TYPE = WaitlistStatus
    _ALLOWED_TRANSITIONS: Dict[WaitlistStatus, Set[WaitlistStatus]] = {
        WaitlistStatus.WAITING: {
            WaitlistStatus.CONFIRMED,
            WaitlistStatus.EXPIRED,
        },
        WaitlistStatus.CONFIRMED: set(),
        WaitlistStatus.EXPIRED: set(),
    }
