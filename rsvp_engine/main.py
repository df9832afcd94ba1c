import logging
import os
import time

from fastapi import FastAPI
from sqlalchemy.exc import OperationalError

from rsvp_engine.api.routes.routes import router
from rsvp_engine.infrastructure.db.models import Base
from rsvp_engine.infrastructure.db.session import engine

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def prepare_database(bind=engine, attempts=None, backoff=None, sleep=time.sleep) -> int:
    """
    Create the RSVP tables once the database accepts connections.

    Admission cannot take a single RSVP without the events, tickets and
    waitlist tables, so schema creation doubles as the readiness check.
    Waits grow linearly (`backoff`, `2 * backoff`, ...). Returns the attempt
    that succeeded; re-raises the last OperationalError when out of attempts.
    """
    if attempts is None:
        attempts = int(os.getenv("STARTUP_DB_ATTEMPTS", "20"))
    if backoff is None:
        backoff = float(os.getenv("STARTUP_DB_BACKOFF", "0.5"))

    for attempt in range(1, attempts + 1):
        try:
            Base.metadata.create_all(bind=bind)
        except OperationalError as exc:
            if attempt == attempts:
                logger.error(
                    "RSVP schema could not be created after %s attempts; not accepting RSVPs.",
                    attempts,
                )
                raise
            delay = backoff * attempt
            logger.warning(
                "RSVP schema setup failed (attempt %s of %s): %s. Next try in %.1fs.",
                attempt,
                attempts,
                exc.orig,
                delay,
            )
            sleep(delay)
        else:
            logger.info("RSVP schema ready on attempt %s.", attempt)
            return attempt
    raise ValueError("attempts must be at least 1")


_configure_logging()

app = FastAPI(title="RSVP Admission Engine")
app.include_router(router)


@app.on_event("startup")
def on_startup() -> None:
    prepare_database()
