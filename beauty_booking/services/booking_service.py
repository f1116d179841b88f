"""Booking lifecycle: creation, status transitions and their notifications."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from beauty_booking.core.domain_exceptions import (
    Forbidden,
    InvalidTransition,
    NotFound,
    StoreError,
    Unauthenticated,
)
from beauty_booking.core.error_codes import ErrorCode
from beauty_booking.schemas.booking import (
    BookingDetail,
    BookingRecord,
    BookingStatus,
    CreateBookingRequest,
)
from beauty_booking.schemas.notification import NotificationCreate, NotificationRecord
from beauty_booking.services.booking_store import BookingStore

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("pending", "confirmed", "in_progress")
TERMINAL_STATUSES = ("completed", "cancelled")
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"in_progress", "cancelled"}),
    "in_progress": frozenset({"completed"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

# (title, message) per target status. Statuses not listed produce no notification.
STATUS_NOTIFICATIONS: dict[str, tuple[str, str]] = {
    "confirmed": ("Booking Confirmed", "Your booking has been confirmed!"),
    "cancelled": ("Booking Cancelled", "Your booking has been cancelled."),
    "in_progress": ("Service Started", "Your service has started!"),
    "completed": ("Service Completed", "Your service has been completed!"),
}


def can_transition(current_status: str, target_status: str) -> bool:
    return target_status in ALLOWED_TRANSITIONS.get(current_status, frozenset())


def compute_end_time(start_time: time, duration_minutes: int) -> time:
    """Start time plus duration, wrapping past midnight."""
    start = datetime.combine(date.min, start_time)
    return (start + timedelta(minutes=duration_minutes)).time()


@dataclass(frozen=True)
class NotificationOutcome:
    """Result of the best-effort notification write that follows a booking write."""

    delivered: bool
    notification: NotificationRecord | None = None
    error: str | None = None


@dataclass(frozen=True)
class TransitionResult:
    booking: BookingRecord
    # None when no notification applies to the outcome.
    notification: NotificationOutcome | None = None


class BookingLifecycleManager:
    def __init__(self, store: BookingStore):
        self.store = store

    async def _notify(self, notification: NotificationCreate) -> NotificationOutcome:
        try:
            created = await self.store.create_notification(notification)
        except StoreError as exc:
            logger.warning(
                "Notification write failed",
                extra={
                    "user_id": notification.user_id,
                    "type": notification.type,
                    "booking_id": (notification.data or {}).get("bookingId"),
                },
            )
            return NotificationOutcome(delivered=False, error=exc.message)
        return NotificationOutcome(delivered=True, notification=created)

    async def get_booking(self, booking_id: str, party_id: str | None) -> BookingDetail:
        """Return the denormalized booking if the caller is one of its parties."""
        if not party_id:
            raise Unauthenticated()

        booking = await self.store.get_detail(booking_id)
        if not booking.is_party(party_id):
            raise Forbidden()
        return booking

    async def request_transition(
        self,
        booking_id: str,
        party_id: str | None,
        target_status: BookingStatus | None,
        payment_intent_id: str | None = None,
    ) -> TransitionResult:
        """Validate and apply a status change requested by one of the booking's parties.

        Checks run in order: caller resolved, booking exists, caller is a party,
        target reachable. Nothing is written unless all of them pass. The status
        and payment fields are written in a single statement guarded by the
        version that was read; the counter-party notification is written
        afterwards and its failure does not undo the status change.
        """
        if not party_id:
            raise Unauthenticated()

        booking = await self.store.get(booking_id)

        is_provider = party_id == booking.provider_user_id
        if not is_provider and party_id != booking.customer_id:
            raise Forbidden()

        if target_status is not None and not can_transition(booking.status, target_status):
            raise InvalidTransition(booking.status, target_status)

        fields: dict[str, str] = {}
        if target_status is not None:
            fields["status"] = target_status
        if payment_intent_id:
            fields["payment_intent_id"] = payment_intent_id
            fields["payment_status"] = "paid"

        if not fields:
            return TransitionResult(booking=booking)

        updated = await self.store.update(booking_id, fields, expected_version=booking.version)

        logger.info(
            "Booking transitioned",
            extra={
                "booking_id": booking_id,
                "from_status": booking.status,
                "to_status": updated.status,
                "party_id": party_id,
            },
        )

        if target_status is None or target_status not in STATUS_NOTIFICATIONS:
            return TransitionResult(booking=updated)

        title, message = STATUS_NOTIFICATIONS[target_status]
        recipient = booking.customer_id if is_provider else booking.provider_user_id
        outcome = await self._notify(
            NotificationCreate(
                user_id=recipient,
                type=f"booking_{target_status}",
                title=title,
                message=message,
                data={"bookingId": booking_id},
            )
        )
        return TransitionResult(booking=updated, notification=outcome)

    async def record_payment_failure(self, booking_id: str) -> BookingRecord:
        """Mark the booking's payment as failed; status is left unchanged."""
        booking = await self.store.get(booking_id)
        return await self.store.update(
            booking_id,
            {"payment_status": "failed"},
            expected_version=booking.version,
        )

    async def create_booking(
        self,
        party_id: str | None,
        payload: CreateBookingRequest,
    ) -> TransitionResult:
        """Create a pending booking for the caller and tell the provider about it."""
        if not party_id:
            raise Unauthenticated()

        provider_service = await self.store.get_provider_service(payload.provider_service_id)
        if provider_service["provider_id"] != payload.provider_id:
            raise NotFound("Service not found", code=ErrorCode.SERVICE_NOT_FOUND)

        booking = await self.store.create_booking(
            {
                "customer_id": party_id,
                "provider_id": payload.provider_id,
                "provider_service_id": payload.provider_service_id,
                "scheduled_date": payload.booking_date,
                "scheduled_time": payload.start_time,
                "end_time": compute_end_time(
                    payload.start_time,
                    provider_service["duration_minutes"],
                ),
                "address": payload.customer_address,
                "notes": payload.notes,
                "total_price": payload.total_price,
                "travel_fee": payload.travel_fee,
                "status": "pending",
                "payment_status": "pending",
            }
        )

        logger.info(
            "Booking created",
            extra={
                "booking_id": booking.id,
                "customer_id": party_id,
                "provider_id": payload.provider_id,
            },
        )

        outcome = await self._notify(
            NotificationCreate(
                user_id=provider_service["provider_user_id"],
                type="new_booking",
                title="New Booking Request",
                message=f"You have a new booking request for {payload.booking_date.isoformat()}",
                data={"bookingId": booking.id},
            )
        )
        return TransitionResult(booking=booking, notification=outcome)
