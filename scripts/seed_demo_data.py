from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from rsvp_engine.infrastructure.db.models import Base, Event
from rsvp_engine.infrastructure.db.session import SessionLocal, engine


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    now_utc = datetime.now(timezone.utc)
    target = now_utc + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


def seed_events(db) -> None:
    event_defs = [
        {
            "name": "Community Tech Meetup",
            "organizer_id": "organizer-1",
            "capacity": 40,
            "rsvp_deadline": _dt(days_from_now=6, hour=18, minute=0),
            "start_date": _dt(days_from_now=7, hour=18, minute=30),
            "location": "Main Hall, Civic Centre",
        },
        {
            "name": "Founders Breakfast",
            "organizer_id": "organizer-1",
            "capacity": 2,
            "rsvp_deadline": None,
            "start_date": _dt(days_from_now=3, hour=8, minute=0),
            "location": "Rooftop Cafe",
        },
        {
            "name": "Open Source Sprint",
            "organizer_id": "organizer-2",
            "capacity": 12,
            "rsvp_deadline": _dt(days_from_now=-1, hour=12, minute=0),
            "start_date": _dt(days_from_now=1, hour=9, minute=0),
            "location": "Library Lab 3",
        },
    ]

    for item in event_defs:
        existing = db.execute(
            select(Event).where(Event.name == item["name"])
        ).scalar_one_or_none()
        if existing:
            existing.organizer_id = item["organizer_id"]
            existing.capacity = item["capacity"]
            existing.rsvp_deadline = item["rsvp_deadline"]
            existing.start_date = item["start_date"]
            existing.location = item["location"]
            existing.status = "published"
            continue

        db.add(
            Event(
                name=item["name"],
                organizer_id=item["organizer_id"],
                capacity=item["capacity"],
                rsvp_deadline=item["rsvp_deadline"],
                start_date=item["start_date"],
                location=item["location"],
                status="published",
            )
        )


def main() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_events(db)
        db.commit()
        print("Seeded demo events.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
