"""Stripe webhook endpoint.

Transport layer only. Event handling delegated to the payment service.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from beauty_booking.core.config import settings
from beauty_booking.core.dependencies import get_lifecycle_manager
from beauty_booking.services.booking_service import BookingLifecycleManager
from beauty_booking.services.payment_service import (
    WebhookSignatureError,
    handle_event,
    verify_event,
)

router = APIRouter(prefix="/stripe", tags=["payments"])
logger = logging.getLogger(__name__)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    manager: BookingLifecycleManager = Depends(get_lifecycle_manager),
) -> dict[str, object]:
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = verify_event(payload, signature, settings.stripe_webhook_secret)
    except WebhookSignatureError as exc:
        logger.warning("Webhook rejected: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc))

    outcome = await handle_event(manager, event)
    return {"received": True, "outcome": outcome}
