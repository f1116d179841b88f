"""Stripe webhook handling.

Payment outcomes reach bookings only through the lifecycle manager: a
successful payment is the customer's transition to `confirmed`.
"""

import json
import logging
from typing import Any

import stripe

from beauty_booking.core.domain_exceptions import DomainException, InvalidTransition
from beauty_booking.services.booking_service import BookingLifecycleManager

logger = logging.getLogger(__name__)


class WebhookSignatureError(Exception):
    pass


def verify_event(payload: bytes, signature: str | None, secret: str | None) -> dict[str, Any]:
    """Check the Stripe signature header and return the decoded event."""
    if not signature or not secret:
        raise WebhookSignatureError("Missing signature")

    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise WebhookSignatureError("Invalid payload") from exc

    try:
        stripe.WebhookSignature.verify_header(body, signature, secret)
    except stripe.SignatureVerificationError as exc:
        raise WebhookSignatureError("Invalid signature") from exc

    try:
        event = json.loads(body)
    except ValueError as exc:
        raise WebhookSignatureError("Invalid payload") from exc
    if not isinstance(event, dict):
        raise WebhookSignatureError("Invalid payload")
    return event


async def _handle_payment_succeeded(
    manager: BookingLifecycleManager,
    payment_intent: dict[str, Any],
) -> str:
    metadata = payment_intent.get("metadata") or {}
    booking_id = metadata.get("bookingId")
    if not booking_id:
        return "ignored"

    try:
        await manager.request_transition(
            booking_id=booking_id,
            party_id=metadata.get("customerId"),
            target_status="confirmed",
            payment_intent_id=payment_intent.get("id"),
        )
    except InvalidTransition as exc:
        # Redelivered event, or the booking moved on already.
        logger.info(
            "Payment for booking %s not applied: %s",
            booking_id,
            exc.message,
        )
        return "skipped"
    return "confirmed"


async def _handle_payment_failed(
    manager: BookingLifecycleManager,
    payment_intent: dict[str, Any],
) -> str:
    booking_id = (payment_intent.get("metadata") or {}).get("bookingId")
    if not booking_id:
        return "ignored"
    await manager.record_payment_failure(booking_id)
    return "payment_failed"


async def handle_event(manager: BookingLifecycleManager, event: dict[str, Any]) -> str:
    """Apply a verified event; returns a short outcome label for logging."""
    event_type = event.get("type")
    payment_intent = (event.get("data") or {}).get("object") or {}

    try:
        if event_type == "payment_intent.succeeded":
            outcome = await _handle_payment_succeeded(manager, payment_intent)
        elif event_type == "payment_intent.payment_failed":
            outcome = await _handle_payment_failed(manager, payment_intent)
        else:
            logger.info("Unhandled event type: %s", event_type)
            outcome = "unhandled"
    except DomainException as exc:
        logger.error(
            "Webhook processing failed for %s: %s",
            event_type,
            exc.message,
            extra={"event_id": event.get("id"), "code": exc.code},
        )
        raise

    logger.info(
        "Webhook processed",
        extra={"event_id": event.get("id"), "event_type": event_type, "outcome": outcome},
    )
    return outcome
