"""Per-connection booking list kept in step with the change feed.

A `BookingListSynchronizer` is seeded with a snapshot of the party's bookings,
subscribes to booking changes scoped to that party and applies each event in
arrival order. Every applied event yields a `ListChange` describing what
happened to the list, for the transport layer to forward to the client.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import date
from typing import Literal

from pydantic import BaseModel

from beauty_booking.core.security import PartySession
from beauty_booking.realtime.change_feed import (
    ChangeEvent,
    ChangeFeed,
    Subscription,
    booking_channel,
)
from beauty_booking.schemas.booking import BookingDetail
from beauty_booking.services.booking_service import (
    ACTIVE_STATUSES,
    STATUS_NOTIFICATIONS,
    TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)

DEFAULT_NOTIFICATION_TTL = 5.0

STATUS_LABELS = {
    "pending": "Pending",
    "confirmed": "Confirmed",
    "in_progress": "In Progress",
    "completed": "Completed",
    "cancelled": "Cancelled",
}

FetchBooking = Callable[[str], Awaitable[BookingDetail | None]]


class TransientNotification(BaseModel):
    title: str
    message: str
    tone: Literal["success", "info"] = "info"
    booking_id: str | None = None


class ListChange(BaseModel):
    kind: Literal["inserted", "updated", "removed"]
    booking_id: str
    index: int
    booking: BookingDetail | None = None
    notification: TransientNotification | None = None


def partition_bookings(
    bookings: list[BookingDetail],
    today: date | None = None,
) -> tuple[list[BookingDetail], list[BookingDetail]]:
    """Split into (upcoming, past) without reordering."""
    today = today or date.today()
    upcoming = [
        booking
        for booking in bookings
        if booking.status in ACTIVE_STATUSES and booking.scheduled_date >= today
    ]
    past = [
        booking
        for booking in bookings
        if booking.status in TERMINAL_STATUSES or booking.scheduled_date < today
    ]
    return upcoming, past


class BookingListSynchronizer:
    def __init__(
        self,
        party: PartySession,
        feed: ChangeFeed,
        fetch_booking: FetchBooking,
        snapshot: list[BookingDetail] | None = None,
        notification_ttl: float = DEFAULT_NOTIFICATION_TTL,
    ):
        self.party = party
        self.bookings: list[BookingDetail] = list(snapshot or [])
        self.notification: TransientNotification | None = None
        self.notification_ttl = notification_ttl

        self._feed = feed
        self._fetch_booking = fetch_booking
        self._subscription: Subscription | None = None
        self._dismiss_handle: asyncio.TimerHandle | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Subscription lifecycle
    # ------------------------------------------------------------------

    @property
    def channel(self) -> str:
        if self.party.role == "provider":
            return booking_channel("provider", self.party.provider_profile_id)
        return booking_channel("customer", self.party.party_id)

    def _accepts(self, event: ChangeEvent) -> bool:
        return event.table == "bookings" and self.party.in_scope(event.record)

    async def open(self) -> Subscription:
        if self._closed:
            raise RuntimeError("Synchronizer has been closed.")
        if self._subscription is None:
            self._subscription = await self._feed.subscribe(self.channel, self._accepts).open()
            logger.info(
                "Booking list subscription opened",
                extra={"party_id": self.party.party_id, "role": self.party.role},
            )
        return self._subscription

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._cancel_dismiss_timer()
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None
        logger.info(
            "Booking list subscription closed",
            extra={"party_id": self.party.party_id, "role": self.party.role},
        )

    async def changes(self) -> AsyncIterator[ListChange]:
        """Apply feed events as they arrive, yielding each resulting list change."""
        subscription = await self.open()
        try:
            async for event in subscription:
                change = await self.apply(event)
                if change is not None:
                    yield change
        finally:
            await self.close()

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def index_of(self, booking_id: str) -> int | None:
        for index, booking in enumerate(self.bookings):
            if booking.id == booking_id:
                return index
        return None

    async def _fetch_owned(self, booking_id: str) -> BookingDetail | None:
        booking = await self._fetch_booking(booking_id)
        if booking is None:
            return None
        if not self.party.is_party_to(booking):
            logger.warning(
                "Dropping change for booking outside party scope",
                extra={"booking_id": booking_id, "party_id": self.party.party_id},
            )
            return None
        return booking

    async def apply(self, event: ChangeEvent) -> ListChange | None:
        if self._closed:
            return None

        if event.kind == "insert":
            return await self._apply_insert(event.record_id)
        if event.kind == "update":
            return await self._apply_update(event.record_id)
        if event.kind == "delete":
            return self._apply_delete(event.record_id)

        logger.warning("Unknown change kind %r", event.kind)
        return None

    async def _apply_insert(self, booking_id: str) -> ListChange | None:
        if self.index_of(booking_id) is not None:
            return None

        booking = await self._fetch_owned(booking_id)
        # Re-check: teardown or a duplicate event may have landed while fetching.
        if booking is None or self._closed or self.index_of(booking_id) is not None:
            return None

        self.bookings.insert(0, booking)
        notification = self.show_notification(
            TransientNotification(
                title="New booking",
                message="New booking received!",
                tone="success",
                booking_id=booking_id,
            )
        )
        return ListChange(
            kind="inserted",
            booking_id=booking_id,
            index=0,
            booking=booking,
            notification=notification,
        )

    async def _apply_update(self, booking_id: str) -> ListChange | None:
        booking = await self._fetch_owned(booking_id)
        if booking is None or self._closed:
            return None

        index = self.index_of(booking_id)
        if index is None:
            return None

        self.bookings[index] = booking

        notification = None
        if booking.status in STATUS_NOTIFICATIONS:
            title, _ = STATUS_NOTIFICATIONS[booking.status]
            notification = self.show_notification(
                TransientNotification(
                    title=title,
                    message=f'Booking status updated to "{STATUS_LABELS[booking.status]}"',
                    tone="success" if booking.status == "confirmed" else "info",
                    booking_id=booking_id,
                )
            )
        return ListChange(
            kind="updated",
            booking_id=booking_id,
            index=index,
            booking=booking,
            notification=notification,
        )

    def _apply_delete(self, booking_id: str) -> ListChange | None:
        index = self.index_of(booking_id)
        if index is None:
            return None
        del self.bookings[index]
        return ListChange(kind="removed", booking_id=booking_id, index=index)

    # ------------------------------------------------------------------
    # Transient notification
    # ------------------------------------------------------------------

    def _cancel_dismiss_timer(self) -> None:
        if self._dismiss_handle is not None:
            self._dismiss_handle.cancel()
            self._dismiss_handle = None

    def _expire(self, notification: TransientNotification) -> None:
        if self.notification is notification:
            self.notification = None
        self._dismiss_handle = None

    def show_notification(self, notification: TransientNotification) -> TransientNotification:
        """Show `notification`, replacing any current one, and schedule its dismissal."""
        self._cancel_dismiss_timer()
        self.notification = notification
        loop = asyncio.get_running_loop()
        self._dismiss_handle = loop.call_later(self.notification_ttl, self._expire, notification)
        return notification

    def dismiss_notification(self) -> None:
        self._cancel_dismiss_timer()
        self.notification = None

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def upcoming(self, today: date | None = None) -> list[BookingDetail]:
        return partition_bookings(self.bookings, today)[0]

    def past(self, today: date | None = None) -> list[BookingDetail]:
        return partition_bookings(self.bookings, today)[1]
