import json
import logging
from collections.abc import AsyncIterator
from typing import List

from fastapi import APIRouter, Depends, Query, Request
from sse_starlette.sse import EventSourceResponse

from beauty_booking.core.config import settings
from beauty_booking.core.dependencies import (
    get_booking_store,
    get_change_feed,
    get_lifecycle_manager,
)
from beauty_booking.core.domain_exceptions import Forbidden
from beauty_booking.core.security import PartySession, get_current_party_id
from beauty_booking.realtime.change_feed import ChangeFeed
from beauty_booking.realtime.synchronizer import BookingListSynchronizer
from beauty_booking.schemas.booking import (
    BookingDetail,
    BookingRecord,
    CreateBookingRequest,
    PartyRole,
    TransitionRequest,
)
from beauty_booking.schemas.common import APIResponse
from beauty_booking.services.booking_service import BookingLifecycleManager
from beauty_booking.services.booking_store import BookingStore

router = APIRouter(prefix="/bookings", tags=["bookings"])
logger = logging.getLogger(__name__)


async def _resolve_party_session(
    store: BookingStore,
    party_id: str,
    role: PartyRole,
) -> PartySession:
    if role == "provider":
        provider_profile_id = await store.provider_profile_id_for(party_id)
        if provider_profile_id is None:
            raise Forbidden("No provider profile for this account")
        return PartySession(party_id=party_id, role=role, provider_profile_id=provider_profile_id)
    return PartySession(party_id=party_id, role=role)


async def _list_for(store: BookingStore, party: PartySession) -> list[BookingDetail]:
    if party.role == "provider":
        return await store.list_for_provider(party.provider_profile_id)
    return await store.list_for_customer(party.party_id)


@router.post("", response_model=APIResponse[BookingRecord], status_code=201)
async def create_booking(
    payload: CreateBookingRequest,
    party_id: str = Depends(get_current_party_id),
    manager: BookingLifecycleManager = Depends(get_lifecycle_manager),
):
    result = await manager.create_booking(party_id, payload)
    return APIResponse(success=True, data=result.booking)


@router.get("", response_model=APIResponse[List[BookingDetail]])
async def list_bookings(
    role: PartyRole = Query(default="customer"),
    party_id: str = Depends(get_current_party_id),
    store: BookingStore = Depends(get_booking_store),
):
    party = await _resolve_party_session(store, party_id, role)
    return APIResponse(success=True, data=await _list_for(store, party))


async def booking_stream_events(
    synchronizer: BookingListSynchronizer,
    request: Request | None = None,
) -> AsyncIterator[dict[str, str]]:
    """SSE frames: the current list, then one frame per applied change."""
    yield {
        "event": "snapshot",
        "data": json.dumps(
            [booking.model_dump(mode="json") for booking in synchronizer.bookings]
        ),
    }
    try:
        async for change in synchronizer.changes():
            if request is not None and await request.is_disconnected():
                break
            yield {"event": change.kind, "data": change.model_dump_json()}
    finally:
        await synchronizer.close()


@router.get("/stream")
async def stream_bookings(
    request: Request,
    role: PartyRole = Query(default="customer"),
    party_id: str = Depends(get_current_party_id),
    store: BookingStore = Depends(get_booking_store),
    feed: ChangeFeed = Depends(get_change_feed),
) -> EventSourceResponse:
    """Live view of the caller's bookings over Server-Sent Events."""
    party = await _resolve_party_session(store, party_id, role)

    synchronizer = BookingListSynchronizer(
        party=party,
        feed=feed,
        fetch_booking=store.find_detail,
        notification_ttl=settings.notification_ttl_seconds,
    )
    # Subscribe before taking the snapshot so no commit falls between the two.
    await synchronizer.open()
    try:
        synchronizer.bookings = await _list_for(store, party)
    except Exception:
        await synchronizer.close()
        raise

    logger.info(
        "[SSE] Booking stream opened",
        extra={"party_id": party_id, "role": role, "count": len(synchronizer.bookings)},
    )

    return EventSourceResponse(
        booking_stream_events(synchronizer, request),
        ping=settings.sse_ping_seconds,
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/{booking_id}", response_model=APIResponse[BookingDetail])
async def get_booking(
    booking_id: str,
    party_id: str = Depends(get_current_party_id),
    manager: BookingLifecycleManager = Depends(get_lifecycle_manager),
):
    booking = await manager.get_booking(booking_id, party_id)
    return APIResponse(success=True, data=booking)


@router.patch("/{booking_id}", response_model=APIResponse[BookingRecord])
async def update_booking(
    booking_id: str,
    payload: TransitionRequest,
    party_id: str = Depends(get_current_party_id),
    manager: BookingLifecycleManager = Depends(get_lifecycle_manager),
):
    result = await manager.request_transition(
        booking_id=booking_id,
        party_id=party_id,
        target_status=payload.status,
        payment_intent_id=payload.payment_intent_id,
    )
    return APIResponse(success=True, data=result.booking)
