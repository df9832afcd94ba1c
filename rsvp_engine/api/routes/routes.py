import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from rsvp_engine.infrastructure.db.session import SessionLocal
from rsvp_engine.application.admission_service import AdmissionController, RsvpChanges
from rsvp_engine.application.check_in_service import CheckInService
from rsvp_engine.application.notifications import (
    NotificationDispatcher,
    OutboxNotificationDispatcher,
)
from rsvp_engine.application.ticket_service import TicketIssuer
from rsvp_engine.application.waitlist_service import WaitlistQueue
from rsvp_engine.api.schemas.schemas import (
    CheckInResponse,
    CheckInStatsResponse,
    ExpireWaitlistResponse,
    OutboxEventResponse,
    PromotionResponse,
    QrCheckInRequest,
    QrCheckInResponse,
    QrCodeDataResponse,
    RsvpCreateRequest,
    RsvpResponse,
    RsvpReviewRequest,
    RsvpStatsResponse,
    RsvpUpdateRequest,
    SubmitRsvpResponse,
    TicketResponse,
    WaitlistEntryResponse,
)
from rsvp_engine.domain.actor import Actor, Role
from rsvp_engine.domain.exceptions import (
    AlreadyCheckedInError,
    CapacityRaceError,
    ConflictError,
    ForbiddenError,
    InvalidPayloadError,
    InvalidRequestError,
    InvalidStateTransitionError,
    NotFoundError,
    PromotionFailedError,
    RsvpEngineError,
)
from rsvp_engine.domain.qr_payload import QrCodec
from rsvp_engine.infrastructure.db.models import Event
from rsvp_engine.infrastructure.repositories.event_repository import EventRepository
from rsvp_engine.infrastructure.repositories.outbox_repository import OutboxRepository


router = APIRouter()
logger = logging.getLogger(__name__)


# -----------------------------
# Dependencies
# -----------------------------
def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_actor(
    x_user_id: str | None = Header(default=None),
    x_user_role: str = Header(default=Role.ATTENDEE.value),
) -> Actor:
    # Identity is validated upstream by the auth collaborator.
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing caller identity",
        )
    try:
        role = Role(x_user_role)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown role: {x_user_role}",
        ) from exc
    return Actor(user_id=x_user_id, role=role)


def get_dispatcher() -> NotificationDispatcher:
    return OutboxNotificationDispatcher()


def get_codec() -> QrCodec:
    return QrCodec.from_env()


# -----------------------------
# Helpers
# -----------------------------
_STATUS_BY_ERROR: list[tuple[type[RsvpEngineError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (AlreadyCheckedInError, status.HTTP_409_CONFLICT),
    (CapacityRaceError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (InvalidPayloadError, status.HTTP_400_BAD_REQUEST),
    (InvalidRequestError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (PromotionFailedError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def _http_error(exc: RsvpEngineError) -> HTTPException:
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, mapped in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = mapped
            break

    if isinstance(exc, AlreadyCheckedInError):
        return HTTPException(
            status_code=status_code,
            detail={
                "code": "ALREADY_CHECKED_IN",
                "message": str(exc),
                "checked_in_at": exc.checked_in_at.isoformat() if exc.checked_in_at else None,
            },
        )
    if isinstance(exc, CapacityRaceError):
        return HTTPException(
            status_code=status_code,
            detail={"code": "CAPACITY_RACE", "message": str(exc)},
            headers={"Retry-After": "1"},
        )
    if isinstance(exc, PromotionFailedError):
        logger.error("Surfacing failed promotion. rsvp_id=%s", exc.rsvp_id)
        return HTTPException(
            status_code=status_code,
            detail={"code": "PROMOTION_FAILED", "message": str(exc), "rsvp_id": exc.rsvp_id},
        )

    return HTTPException(status_code=status_code, detail=str(exc))


def _require_manager(db: Session, actor: Actor, event_id: str) -> Event:
    event = EventRepository(db).get_by_id(event_id)
    if not actor.can_manage(event.organizer_id):
        raise ForbiddenError("Not authorized to manage attendees for this event")
    return event


@router.get("/health")
def health():
    return {"message": "RSVP admission engine is running"}


# -----------------------------
# RSVPs
# -----------------------------
@router.post(
    "/rsvps",
    response_model=SubmitRsvpResponse,
    status_code=status.HTTP_201_CREATED,
)
def submit_rsvp(
    request: RsvpCreateRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    codec: QrCodec = Depends(get_codec),
):
    controller = AdmissionController(db, dispatcher=dispatcher, codec=codec)

    try:
        result = controller.submit(
            actor=actor,
            event_id=request.event_id,
            status=request.status,
            plus_one_count=request.plus_one_count,
            dietary_preferences=request.dietary_preferences,
        )
    except RsvpEngineError as exc:
        raise _http_error(exc) from exc

    return SubmitRsvpResponse(
        rsvp=RsvpResponse.model_validate(result.rsvp),
        ticket=TicketResponse.model_validate(result.ticket) if result.ticket else None,
        waitlisted=result.waitlisted,
    )


@router.get("/rsvps", response_model=list[RsvpResponse])
def list_my_rsvps(
    event_id: str | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    rsvps = AdmissionController(db).list_for_user(actor, event_id=event_id)
    return [RsvpResponse.model_validate(rsvp) for rsvp in rsvps]


@router.get("/rsvps/{rsvp_id}", response_model=RsvpResponse)
def get_rsvp(
    rsvp_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    try:
        rsvp = AdmissionController(db).get(rsvp_id, actor)
    except RsvpEngineError as exc:
        raise _http_error(exc) from exc
    return RsvpResponse.model_validate(rsvp)


@router.put("/rsvps/{rsvp_id}", response_model=RsvpResponse)
def update_rsvp(
    rsvp_id: str,
    request: RsvpUpdateRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    codec: QrCodec = Depends(get_codec),
):
    controller = AdmissionController(db, dispatcher=dispatcher, codec=codec)

    try:
        rsvp = controller.update(
            rsvp_id,
            actor,
            RsvpChanges(
                status=request.status,
                plus_one_count=request.plus_one_count,
                dietary_preferences=request.dietary_preferences,
            ),
        )
    except RsvpEngineError as exc:
        raise _http_error(exc) from exc

    return RsvpResponse.model_validate(rsvp)


@router.delete("/rsvps/{rsvp_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rsvp(
    rsvp_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    codec: QrCodec = Depends(get_codec),
):
    controller = AdmissionController(db, dispatcher=dispatcher, codec=codec)

    try:
        controller.delete(rsvp_id, actor)
    except RsvpEngineError as exc:
        raise _http_error(exc) from exc


@router.patch("/admin/rsvps/{rsvp_id}", response_model=RsvpResponse)
def review_rsvp(
    rsvp_id: str,
    request: RsvpReviewRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    codec: QrCodec = Depends(get_codec),
):
    controller = AdmissionController(db, dispatcher=dispatcher, codec=codec)

    try:
        rsvp = controller.review(rsvp_id, actor, request.action)
    except RsvpEngineError as exc:
        raise _http_error(exc) from exc

    return RsvpResponse.model_validate(rsvp)


# -----------------------------
# Waitlist
# -----------------------------
@router.get("/events/{event_id}/waitlist", response_model=list[WaitlistEntryResponse])
def list_event_waitlist(
    event_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    try:
        _require_manager(db, actor, event_id)
    except RsvpEngineError as exc:
        raise _http_error(exc) from exc

    entries = WaitlistQueue(db).list_waiting(event_id)
    return [WaitlistEntryResponse.model_validate(entry) for entry in entries]


@router.post("/events/{event_id}/waitlist/promote", response_model=PromotionResponse)
def promote_event_waitlist(
    event_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    codec: QrCodec = Depends(get_codec),
):
    try:
        _require_manager(db, actor, event_id)
        queue = WaitlistQueue(
            db,
            issuer=TicketIssuer(db, codec=codec),
            dispatcher=dispatcher,
        )
        tickets = queue.promote_next(event_id)
    except RsvpEngineError as exc:
        raise _http_error(exc) from exc

    return PromotionResponse(
        event_id=event_id,
        promoted=[TicketResponse.model_validate(ticket) for ticket in tickets],
    )


@router.post("/events/{event_id}/waitlist/expire", response_model=ExpireWaitlistResponse)
def expire_event_waitlist(
    event_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    try:
        _require_manager(db, actor, event_id)
        expired = WaitlistQueue(db).expire(event_id)
    except RsvpEngineError as exc:
        raise _http_error(exc) from exc

    return ExpireWaitlistResponse(event_id=event_id, expired=expired)


@router.get("/events/{event_id}/rsvp-stats", response_model=RsvpStatsResponse)
def get_event_rsvp_stats(
    event_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    try:
        _require_manager(db, actor, event_id)
        stats = AdmissionController(db).rsvp_stats(event_id)
    except RsvpEngineError as exc:
        raise _http_error(exc) from exc

    return RsvpStatsResponse(**stats)


# -----------------------------
# Tickets and check-in
# -----------------------------
@router.get("/tickets", response_model=list[TicketResponse])
def list_my_tickets(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    tickets = TicketIssuer(db).list_for_user(actor.user_id)
    return [TicketResponse.model_validate(ticket) for ticket in tickets]


@router.get("/tickets/{ticket_id}", response_model=TicketResponse)
def get_ticket(
    ticket_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    try:
        ticket = TicketIssuer(db).get(ticket_id)
        if not actor.owns(ticket.user_id):
            _require_manager(db, actor, ticket.event_id)
    except RsvpEngineError as exc:
        raise _http_error(exc) from exc

    return TicketResponse.model_validate(ticket)


@router.get("/tickets/{ticket_id}/qr-code", response_model=QrCodeDataResponse)
def get_ticket_qr_code(
    ticket_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    issuer = TicketIssuer(db)
    try:
        ticket = issuer.get(ticket_id)
        if not actor.owns(ticket.user_id):
            _require_manager(db, actor, ticket.event_id)
        data = issuer.qr_data(ticket_id)
    except RsvpEngineError as exc:
        raise _http_error(exc) from exc

    return QrCodeDataResponse(**data)


@router.put("/tickets/{ticket_id}/check-in", response_model=CheckInResponse)
def check_in_ticket(
    ticket_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    codec: QrCodec = Depends(get_codec),
):
    service = CheckInService(db, codec=codec)

    try:
        ticket = TicketIssuer(db).get(ticket_id)
        _require_manager(db, actor, ticket.event_id)
        ticket = service.check_in_by_id(ticket_id)
        stats = service.event_check_in_stats(ticket.event_id)
    except RsvpEngineError as exc:
        raise _http_error(exc) from exc

    return CheckInResponse(
        ticket=TicketResponse.model_validate(ticket),
        stats=CheckInStatsResponse.model_validate(stats),
    )


@router.post("/tickets/check-in-qr", response_model=QrCheckInResponse)
def check_in_by_qr_code(
    request: QrCheckInRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    codec: QrCodec = Depends(get_codec),
):
    try:
        _require_manager(db, actor, request.event_id)
    except RsvpEngineError as exc:
        raise _http_error(exc) from exc

    service = CheckInService(db, codec=codec)
    result = service.check_in_by_qr(request.qr_code, event_id=request.event_id)

    if not result.success:
        body = QrCheckInResponse(
            success=False,
            reason=result.reason,
            message=result.message,
            checked_in_at=result.checked_in_at,
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=body.model_dump(mode="json"),
        )

    stats = service.event_check_in_stats(request.event_id)
    return QrCheckInResponse(
        success=True,
        ticket=TicketResponse.model_validate(result.ticket),
        message=result.message,
        checked_in_at=result.checked_in_at,
        stats=CheckInStatsResponse.model_validate(stats),
    )


@router.get("/events/{event_id}/check-in/stats", response_model=CheckInStatsResponse)
def get_event_check_in_stats(
    event_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    try:
        _require_manager(db, actor, event_id)
        stats = CheckInService(db).event_check_in_stats(event_id)
    except RsvpEngineError as exc:
        raise _http_error(exc) from exc

    return CheckInStatsResponse.model_validate(stats)


# -----------------------------
# Outbox
# -----------------------------
@router.get("/outbox/events", response_model=list[OutboxEventResponse])
def list_outbox_events(
    status_filter: str = "PENDING",
    limit: int = 50,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    if not actor.is_admin:
        raise _http_error(ForbiddenError("Only admins can read the outbox"))

    safe_limit = max(1, min(limit, 200))
    events = OutboxRepository(db).list_by_status(status_filter, safe_limit)
    return [
        OutboxEventResponse(
            id=item.id,
            aggregate_type=item.aggregate_type,
            aggregate_id=item.aggregate_id,
            event_type=item.event_type,
            status=item.status,
            attempts=item.attempts,
            created_at=item.created_at.isoformat(),
        )
        for item in events
    ]


@router.post("/outbox/events/{outbox_id}/mark-published", response_model=OutboxEventResponse)
def mark_outbox_event_published(
    outbox_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    if not actor.is_admin:
        raise _http_error(ForbiddenError("Only admins can update the outbox"))

    try:
        item = OutboxRepository(db).mark_published(outbox_id)
    except RsvpEngineError as exc:
        raise _http_error(exc) from exc

    return OutboxEventResponse(
        id=item.id,
        aggregate_type=item.aggregate_type,
        aggregate_id=item.aggregate_id,
        event_type=item.event_type,
        status=item.status,
        attempts=item.attempts,
        created_at=item.created_at.isoformat(),
    )
