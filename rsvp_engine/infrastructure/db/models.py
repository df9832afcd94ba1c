# rsvp_engine/infrastructure/db/models.py

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    DateTime,
    Enum,
    Text,
    UniqueConstraint,
    CheckConstraint,
    ForeignKey,
    Index,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from uuid import uuid4

from rsvp_engine.infrastructure.db.session import Base
from rsvp_engine.domain.state_machine import (
    ApprovalStatus,
    CheckInStatus,
    RsvpStatus,
    WaitlistStatus,
)


def _enum(enum_cls, name: str) -> Enum:
    # Persist the lowercase values, not the member names.
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class Event(Base):
    """
    Owned by the event collaborator.
    The admission core only reads it, and row-locks it to serialize
    seat-changing work per event.
    """

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    organizer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    rsvp_deadline: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="published")
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    location: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("capacity >= 0", name="ck_event_capacity_nonnegative"),
    )


class Rsvp(Base):
    __tablename__ = "rsvps"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[RsvpStatus] = mapped_column(
        _enum(RsvpStatus, "rsvp_status"),
        nullable=False,
    )
    plus_one_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    dietary_preferences: Mapped[str | None] = mapped_column(Text, nullable=True)
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        _enum(ApprovalStatus, "rsvp_approval_status"),
        nullable=False,
        default=ApprovalStatus.PENDING,
    )
    is_waitlisted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    waitlist_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rsvp_deadline_met: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    check_in_status: Mapped[CheckInStatus] = mapped_column(
        _enum(CheckInStatus, "rsvp_check_in_status"),
        nullable=False,
        default=CheckInStatus.NOT_CHECKED_IN,
    )
    check_in_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "event_id",
            "user_id",
            name="uq_rsvp_event_user",
        ),
        CheckConstraint(
            "plus_one_count >= 0",
            name="ck_rsvp_plus_one_nonnegative",
        ),
        CheckConstraint(
            "(is_waitlisted AND waitlist_position > 0) "
            "OR (NOT is_waitlisted AND waitlist_position IS NULL)",
            name="ck_rsvp_waitlist_position_iff_waitlisted",
        ),
    )


class WaitlistEntry(Base):
    __tablename__ = "waitlist"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
    )
    rsvp_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("rsvps.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[WaitlistStatus] = mapped_column(
        _enum(WaitlistStatus, "waitlist_status"),
        nullable=False,
        default=WaitlistStatus.WAITING,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("rsvp_id", name="uq_waitlist_rsvp"),
        CheckConstraint("position > 0", name="ck_waitlist_position_positive"),
        Index("ix_waitlist_event_status_position", "event_id", "status", "position"),
    )


class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    rsvp_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("rsvps.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
    )
    qr_code: Mapped[str] = mapped_column(Text, nullable=False)
    check_in_status: Mapped[CheckInStatus] = mapped_column(
        _enum(CheckInStatus, "ticket_check_in_status"),
        nullable=False,
        default=CheckInStatus.NOT_CHECKED_IN,
    )
    check_in_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("rsvp_id", name="uq_ticket_rsvp"),
        CheckConstraint(
            "(check_in_status = 'checked_in' AND check_in_time IS NOT NULL) "
            "OR (check_in_status = 'not_checked_in' AND check_in_time IS NULL)",
            name="ck_ticket_check_in_time_iff_checked_in",
        ),
    )


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    aggregate_type: Mapped[str] = mapped_column(String(64), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(36), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    dedupe_key: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_outbox_dedupe_key"),
    )
