"""Daily reminder scheduler for confirmed appointments.

Uses APScheduler BackgroundScheduler to run a daily job that fetches today's
confirmed bookings and texts each customer through Twilio.
"""

import logging
from datetime import date, datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import select
from sqlalchemy.orm import joinedload, sessionmaker

from beauty_booking.core.config import settings
from beauty_booking.db.models import Booking, ProviderService
from beauty_booking.db.session import SessionLocal
from beauty_booking.services.sms_client import send_sms_message

logger = logging.getLogger(__name__)


def _reminder_text(booking: Booking) -> str:
    service = booking.provider_service.service if booking.provider_service else None
    service_name = service.name if service else "appointment"
    return (
        f"Reminder: your {service_name} with {booking.provider.business_name} "
        f"is today at {booking.scheduled_time.strftime('%I:%M %p')}."
    )


def send_daily_reminders(
    session_factory: sessionmaker = SessionLocal,
    today: date | None = None,
) -> tuple[int, int]:
    """Text today's confirmed, not-yet-reminded customers. Returns (sent, failed)."""
    today = today or date.today()
    logger.info("Running daily reminder job for %s", today)

    sent, failed = 0, 0
    with session_factory() as db:
        bookings = db.scalars(
            select(Booking)
            .options(
                joinedload(Booking.customer),
                joinedload(Booking.provider),
                joinedload(Booking.provider_service).joinedload(ProviderService.service),
            )
            .where(Booking.scheduled_date == today)
            .where(Booking.status == "confirmed")
            .where(Booking.reminder_sent.is_(False))
        ).unique().all()

        for booking in bookings:
            phone = booking.customer.phone if booking.customer else None
            if not phone:
                logger.warning("Booking %s has no customer phone. Skipping.", booking.id)
                failed += 1
                continue

            try:
                send_sms_message(to=phone, body=_reminder_text(booking))
                booking.reminder_sent = True
                booking.reminder_sent_at = datetime.now(timezone.utc)
                db.commit()
                sent += 1
            except Exception:
                db.rollback()
                logger.exception("Failed to send reminder for booking %s", booking.id)
                failed += 1

    logger.info(
        "Reminder job complete: %d sent, %d failed out of %d bookings.",
        sent,
        failed,
        len(bookings),
    )
    return sent, failed


def start_scheduler(hour: int | None = None) -> BackgroundScheduler:
    """Create, configure, and start the background reminder scheduler."""
    hour = settings.reminder_hour if hour is None else hour
    scheduler = BackgroundScheduler(daemon=True)

    scheduler.add_job(
        send_daily_reminders,
        trigger="cron",
        hour=hour,
        minute=0,
        id="daily_booking_reminder",
        name="Send daily SMS booking reminders",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Reminder scheduler started (daily job at %02d:00).", hour)
    return scheduler
