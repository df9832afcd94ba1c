# rsvp_engine/domain/actor.py

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    ATTENDEE = "attendee"
    ORGANIZER = "organizer"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    """
    Already-authenticated caller identity.
    Produced by the auth collaborator and passed explicitly into services.
    """

    user_id: str
    role: Role = Role.ATTENDEE

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def owns(self, user_id: str) -> bool:
        return self.user_id == user_id

    def can_manage(self, organizer_id: str) -> bool:
        return self.is_admin or self.user_id == organizer_id
