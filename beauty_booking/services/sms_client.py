"""Twilio client configuration for SMS messaging."""

import logging
from functools import lru_cache

from twilio.rest import Client

from beauty_booking.core.config import settings

logger = logging.getLogger(__name__)


@lru_cache
def get_client() -> Client | None:
    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        logger.warning("Twilio credentials not set. SMS messaging will fail at runtime.")
        return None
    return Client(settings.twilio_account_sid, settings.twilio_auth_token)


def send_sms_message(to: str, body: str) -> str:
    """Send an SMS via Twilio and return the message SID."""
    client = get_client()
    if client is None or not settings.twilio_from_number:
        raise RuntimeError("Twilio client is not configured.")

    if not to.startswith("+"):
        raise ValueError("Phone number must be in E.164 format.")

    message = client.messages.create(
        from_=settings.twilio_from_number,
        to=to,
        body=body,
    )

    logger.info("SMS sent to %s (SID: %s)", to, message.sid)
    return message.sid
