"""FastAPI entrypoint for the beauty marketplace booking backend.

Feature modules live in the `beauty_booking` package:
- `routes/` for bookings, notifications and the Stripe webhook
- `services/` for the booking lifecycle and record store
- `realtime/` for the change feed and live booking lists
- `db/` for SQLAlchemy models and session management
- `scheduler/` for APScheduler reminder jobs
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from beauty_booking.core.config import settings
from beauty_booking.core.domain_exceptions import DomainException
from beauty_booking.core.exceptions import (
    domain_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from beauty_booking.core.middleware import RequestContextMiddleware
from beauty_booking.db.init_db import init_db
from beauty_booking.realtime.change_feed import change_feed
from beauty_booking.routes import bookings, notifications, stripe_webhook
from beauty_booking.scheduler.reminder_scheduler import start_scheduler

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Initialize app resources before serving traffic."""
    init_db()
    logger.info("Database tables initialized.")

    await change_feed.connect()

    scheduler = None
    if settings.reminders_enabled:
        try:
            scheduler = start_scheduler()
        except Exception:
            logger.exception("Failed to start scheduler.")

    yield

    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Reminder scheduler shut down.")

    await change_feed.disconnect()


app = FastAPI(
    title="Beauty Booking API",
    version="0.1.0",
    description="Booking lifecycle and realtime booking lists for a beauty services marketplace.",
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)

app.add_exception_handler(DomainException, domain_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(bookings.router)
app.include_router(notifications.router)
app.include_router(stripe_webhook.router)


@app.get("/", tags=["health"])
def root() -> dict[str, str]:
    """Simple status endpoint for uptime checks."""
    return {"status": "Beauty Booking Running"}
