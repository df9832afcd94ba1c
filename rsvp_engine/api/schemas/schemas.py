from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from rsvp_engine.domain.state_machine import (
    ApprovalStatus,
    CheckInStatus,
    RsvpStatus,
    WaitlistStatus,
)

RsvpStatusLiteral = Literal["going", "maybe", "not_going"]


class RsvpCreateRequest(BaseModel):
    event_id: str
    status: RsvpStatusLiteral = "going"
    plus_one_count: int = Field(default=0, ge=0)
    dietary_preferences: str | None = None


class RsvpUpdateRequest(BaseModel):
    status: RsvpStatusLiteral | None = None
    plus_one_count: int | None = Field(default=None, ge=0)
    dietary_preferences: str | None = None


class RsvpReviewRequest(BaseModel):
    action: Literal["approve", "reject"]


class RsvpResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    user_id: str
    status: RsvpStatus
    plus_one_count: int
    dietary_preferences: str | None = None
    approval_status: ApprovalStatus
    is_waitlisted: bool
    waitlist_position: int | None = None
    rsvp_deadline_met: bool
    check_in_status: CheckInStatus
    check_in_time: datetime | None = None


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    rsvp_id: str
    user_id: str
    event_id: str
    qr_code: str
    check_in_status: CheckInStatus
    check_in_time: datetime | None = None


class SubmitRsvpResponse(BaseModel):
    rsvp: RsvpResponse
    ticket: TicketResponse | None = None
    waitlisted: bool


class WaitlistEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    rsvp_id: str
    user_id: str
    status: WaitlistStatus
    position: int


class PromotionResponse(BaseModel):
    event_id: str
    promoted: list[TicketResponse]


class ExpireWaitlistResponse(BaseModel):
    event_id: str
    expired: int


class RsvpBreakdown(BaseModel):
    going: int
    maybe: int
    not_going: int


class RsvpStatsResponse(BaseModel):
    total_rsvps: int
    breakdown: RsvpBreakdown
    checked_in: int
    check_in_rate: float
    total_attendees: int
    available_seats: int
    waitlist_count: int
    capacity: int


class CheckInStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_tickets: int
    checked_in: int
    not_checked_in: int
    check_in_rate: float


class CheckInResponse(BaseModel):
    ticket: TicketResponse
    stats: CheckInStatsResponse


class QrCheckInRequest(BaseModel):
    qr_code: str
    event_id: str


class QrCheckInResponse(BaseModel):
    success: bool
    ticket: TicketResponse | None = None
    reason: str | None = None
    message: str
    checked_in_at: datetime | None = None
    stats: CheckInStatsResponse | None = None


class QrCodeDataResponse(BaseModel):
    ticket_id: str
    event_id: str
    user_id: str
    rsvp_id: str
    check_in_status: str
    qr_code: str
    timestamp: str


class OutboxEventResponse(BaseModel):
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    status: str
    attempts: int
    created_at: str
