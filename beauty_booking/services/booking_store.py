"""Async record store for bookings and notifications.

SQLAlchemy sessions are synchronous; each call runs in a worker thread with
its own session and is awaited by the caller. After a successful commit the
store publishes a `ChangeEvent` so realtime subscribers learn of the change.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, sessionmaker

from beauty_booking.core.domain_exceptions import Conflict, NotFound, StoreError
from beauty_booking.core.error_codes import ErrorCode
from beauty_booking.db.models import (
    Booking,
    Notification,
    ProviderProfile,
    ProviderService,
)
from beauty_booking.realtime.change_feed import ChangeEvent, ChangeFeed
from beauty_booking.schemas.booking import BookingDetail, BookingRecord
from beauty_booking.schemas.notification import NotificationCreate, NotificationRecord

logger = logging.getLogger(__name__)

# Only these fields may be written through `update`.
MUTABLE_BOOKING_FIELDS = frozenset({"status", "payment_intent_id", "payment_status"})


def _booking_options():
    return (
        joinedload(Booking.provider),
        joinedload(Booking.customer),
        joinedload(Booking.provider_service).joinedload(ProviderService.service),
    )


def _to_record(booking: Booking) -> BookingRecord:
    return BookingRecord(
        id=booking.id,
        customer_id=booking.customer_id,
        provider_id=booking.provider_id,
        provider_user_id=booking.provider.user_id,
        provider_service_id=booking.provider_service_id,
        scheduled_date=booking.scheduled_date,
        scheduled_time=booking.scheduled_time,
        end_time=booking.end_time,
        address=booking.address,
        notes=booking.notes,
        total_price=booking.total_price,
        travel_fee=booking.travel_fee,
        status=booking.status,
        payment_intent_id=booking.payment_intent_id,
        payment_status=booking.payment_status,
        version=booking.version,
        created_at=booking.created_at,
        updated_at=booking.updated_at,
    )


def _to_detail(booking: Booking) -> BookingDetail:
    record = _to_record(booking)
    provider_service = booking.provider_service
    service = provider_service.service if provider_service else None
    customer = booking.customer
    customer_name = None
    if customer is not None:
        customer_name = " ".join(
            part for part in (customer.first_name, customer.last_name) if part
        ) or None

    return BookingDetail(
        **record.model_dump(),
        service_name=service.name if service else None,
        service_category=service.category if service else None,
        duration_minutes=provider_service.duration_minutes if provider_service else None,
        provider_business_name=booking.provider.business_name,
        customer_name=customer_name,
        customer_phone=customer.phone if customer else None,
    )


def _change_record(booking: BookingRecord) -> dict[str, Any]:
    return {
        "customer_id": booking.customer_id,
        "provider_id": booking.provider_id,
        "status": booking.status,
    }


class BookingStore:
    def __init__(self, session_factory: sessionmaker, feed: ChangeFeed):
        self._session_factory = session_factory
        self._feed = feed

    async def _publish(self, event: ChangeEvent) -> None:
        # The write is committed; subscribers that miss it reseed on reconnect.
        try:
            await self._feed.publish(event)
        except Exception:
            logger.exception(
                "Change event publish failed",
                extra={"table": event.table, "record_id": event.record_id},
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _load(self, db: Session, booking_id: str) -> Booking | None:
        return db.scalar(
            select(Booking).options(*_booking_options()).where(Booking.id == booking_id)
        )

    def _get_sync(self, booking_id: str, detailed: bool) -> BookingRecord | None:
        with self._session_factory() as db:
            booking = self._load(db, booking_id)
            if booking is None:
                return None
            return _to_detail(booking) if detailed else _to_record(booking)

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except SQLAlchemyError as exc:
            logger.exception("Store operation %s failed", func.__name__)
            raise StoreError() from exc

    async def get(self, booking_id: str) -> BookingRecord:
        booking = await self._run(self._get_sync, booking_id, False)
        if booking is None:
            raise NotFound()
        return booking

    async def find_detail(self, booking_id: str) -> BookingDetail | None:
        return await self._run(self._get_sync, booking_id, True)

    async def get_detail(self, booking_id: str) -> BookingDetail:
        booking = await self.find_detail(booking_id)
        if booking is None:
            raise NotFound()
        return booking

    def _list_sync(self, customer_id: str | None, provider_id: str | None) -> list[BookingDetail]:
        query = select(Booking).options(*_booking_options())
        if provider_id is not None:
            query = query.where(Booking.provider_id == provider_id)
        else:
            query = query.where(Booking.customer_id == customer_id)
        query = query.order_by(Booking.scheduled_date.desc(), Booking.scheduled_time.desc())

        with self._session_factory() as db:
            return [_to_detail(booking) for booking in db.scalars(query).unique().all()]

    async def list_for_customer(self, customer_id: str) -> list[BookingDetail]:
        return await self._run(self._list_sync, customer_id, None)

    async def list_for_provider(self, provider_id: str) -> list[BookingDetail]:
        return await self._run(self._list_sync, None, provider_id)

    def _provider_profile_id_sync(self, user_id: str) -> str | None:
        with self._session_factory() as db:
            return db.scalar(select(ProviderProfile.id).where(ProviderProfile.user_id == user_id))

    async def provider_profile_id_for(self, user_id: str) -> str | None:
        return await self._run(self._provider_profile_id_sync, user_id)

    def _provider_service_sync(self, provider_service_id: str) -> dict[str, Any] | None:
        with self._session_factory() as db:
            provider_service = db.scalar(
                select(ProviderService)
                .options(joinedload(ProviderService.provider))
                .where(ProviderService.id == provider_service_id)
            )
            if provider_service is None:
                return None
            return {
                "provider_id": provider_service.provider_id,
                "provider_user_id": provider_service.provider.user_id,
                "duration_minutes": provider_service.duration_minutes,
            }

    def _notification_sync(self, notification_id: str) -> NotificationRecord | None:
        with self._session_factory() as db:
            row = db.get(Notification, notification_id)
            return NotificationRecord.model_validate(row) if row is not None else None

    async def get_notification(self, notification_id: str) -> NotificationRecord | None:
        return await self._run(self._notification_sync, notification_id)

    async def get_provider_service(self, provider_service_id: str) -> dict[str, Any]:
        provider_service = await self._run(self._provider_service_sync, provider_service_id)
        if provider_service is None:
            raise NotFound("Service not found", code=ErrorCode.SERVICE_NOT_FOUND)
        return provider_service

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _create_booking_sync(self, values: dict[str, Any]) -> BookingRecord:
        with self._session_factory() as db:
            try:
                booking = Booking(**values)
                db.add(booking)
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise
            return _to_record(self._load(db, booking.id))

    async def create_booking(self, values: dict[str, Any]) -> BookingRecord:
        booking = await self._run(self._create_booking_sync, values)
        await self._publish(
            ChangeEvent(
                kind="insert",
                table="bookings",
                record_id=booking.id,
                record=_change_record(booking),
            )
        )
        return booking

    def _update_sync(
        self,
        booking_id: str,
        fields: dict[str, Any],
        expected_version: int | None,
    ) -> BookingRecord:
        statement = (
            update(Booking)
            .where(Booking.id == booking_id)
            .execution_options(synchronize_session=False)
        )
        if expected_version is not None:
            statement = statement.where(Booking.version == expected_version)
        values = {
            **fields,
            "version": Booking.version + 1,
            "updated_at": datetime.now(timezone.utc),
        }

        with self._session_factory() as db:
            try:
                result = db.execute(statement.values(**values))
                if result.rowcount == 0:
                    db.rollback()
                    if db.scalar(select(Booking.id).where(Booking.id == booking_id)) is None:
                        raise NotFound()
                    raise Conflict()
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise
            return _to_record(self._load(db, booking_id))

    async def update(
        self,
        booking_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> BookingRecord:
        """Write `fields` in one statement; all of them land or none do."""
        unknown = set(fields) - MUTABLE_BOOKING_FIELDS
        if unknown:
            raise ValueError(f"Fields not writable: {sorted(unknown)}")

        booking = await self._run(self._update_sync, booking_id, fields, expected_version)
        await self._publish(
            ChangeEvent(
                kind="update",
                table="bookings",
                record_id=booking.id,
                record=_change_record(booking),
            )
        )
        return booking

    def _create_notification_sync(self, notification: NotificationCreate) -> NotificationRecord:
        with self._session_factory() as db:
            try:
                row = Notification(**notification.model_dump())
                db.add(row)
                db.commit()
                db.refresh(row)
            except SQLAlchemyError:
                db.rollback()
                raise
            return NotificationRecord.model_validate(row)

    async def create_notification(self, notification: NotificationCreate) -> NotificationRecord:
        created = await self._run(self._create_notification_sync, notification)
        await self._publish(
            ChangeEvent(
                kind="insert",
                table="notifications",
                record_id=created.id,
                record={"user_id": created.user_id, "type": created.type},
            )
        )
        return created
