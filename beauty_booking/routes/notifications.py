import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse

from beauty_booking.core.config import settings
from beauty_booking.core.dependencies import get_booking_store, get_change_feed
from beauty_booking.core.security import get_current_party_id
from beauty_booking.db.session import get_db
from beauty_booking.realtime.change_feed import ChangeFeed, Subscription, notification_channel
from beauty_booking.schemas.common import APIResponse
from beauty_booking.schemas.notification import (
    MarkReadRequest,
    MarkReadResponse,
    NotificationListResponse,
    NotificationRecord,
)
from beauty_booking.services.booking_store import BookingStore
from beauty_booking.services.notification_service import (
    DEFAULT_LIMIT,
    list_notifications,
    mark_read,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])
logger = logging.getLogger(__name__)


@router.get("", response_model=APIResponse[NotificationListResponse])
def get_notifications(
    unread_only: bool = Query(default=False, alias="unreadOnly"),
    limit: int = Query(default=DEFAULT_LIMIT, ge=1),
    party_id: str = Depends(get_current_party_id),
    db: Session = Depends(get_db),
):
    notifications, unread_count = list_notifications(
        db=db,
        user_id=party_id,
        unread_only=unread_only,
        limit=limit,
    )
    return APIResponse(
        success=True,
        data=NotificationListResponse(
            notifications=[NotificationRecord.model_validate(item) for item in notifications],
            unread_count=unread_count,
        ),
    )


@router.patch("", response_model=APIResponse[MarkReadResponse])
def mark_notifications_read(
    payload: MarkReadRequest,
    party_id: str = Depends(get_current_party_id),
    db: Session = Depends(get_db),
):
    updated = mark_read(
        db=db,
        user_id=party_id,
        notification_ids=payload.notification_ids,
        mark_all=payload.mark_all_read,
    )
    return APIResponse(success=True, data=MarkReadResponse(updated=updated))


async def notification_stream_events(
    subscription: Subscription,
    store: BookingStore,
) -> AsyncIterator[dict[str, str]]:
    async with subscription:
        async for event in subscription:
            notification = await store.get_notification(event.record_id)
            if notification is None:
                continue
            yield {
                "event": "notification",
                "id": notification.id,
                "data": json.dumps(notification.model_dump(mode="json")),
            }


@router.get("/stream")
async def stream_notifications(
    party_id: str = Depends(get_current_party_id),
    store: BookingStore = Depends(get_booking_store),
    feed: ChangeFeed = Depends(get_change_feed),
) -> EventSourceResponse:
    """New notifications for the caller over Server-Sent Events."""
    subscription = await feed.subscribe(
        notification_channel(party_id),
        lambda event: event.table == "notifications"
        and event.kind == "insert"
        and event.record.get("user_id") == party_id,
    ).open()
    logger.info("[SSE] Notification stream opened", extra={"party_id": party_id})

    return EventSourceResponse(
        notification_stream_events(subscription, store),
        ping=settings.sse_ping_seconds,
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
