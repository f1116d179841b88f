"""
Tests for BookingListSynchronizer.

Coverage:
1) Insert / update / delete reconciliation and list positions
2) Party scoping of incoming events
3) Transient notification lifetime
4) Upcoming / past partitioning
5) End-to-end stream driven by the lifecycle manager
"""

import asyncio
from datetime import date, timedelta

import pytest

from beauty_booking.core.security import PartySession
from beauty_booking.realtime.change_feed import ChangeEvent
from beauty_booking.realtime.synchronizer import (
    DEFAULT_NOTIFICATION_TTL,
    BookingListSynchronizer,
    TransientNotification,
    partition_bookings,
)
from beauty_booking.schemas.booking import CreateBookingRequest

from tests.conftest import (
    CUSTOMER_ID,
    OTHER_CUSTOMER_ID,
    PROVIDER_ID,
    PROVIDER_USER_ID,
)

CUSTOMER = PartySession(party_id=CUSTOMER_ID, role="customer")
PROVIDER = PartySession(
    party_id=PROVIDER_USER_ID, role="provider", provider_profile_id=PROVIDER_ID
)


def _event(kind: str, booking_id: str, customer_id: str = CUSTOMER_ID) -> ChangeEvent:
    return ChangeEvent(
        kind=kind,
        table="bookings",
        record_id=booking_id,
        record={"customer_id": customer_id, "provider_id": PROVIDER_ID},
    )


async def _synchronizer(store, feed, party=CUSTOMER, **kwargs) -> BookingListSynchronizer:
    if party.role == "provider":
        snapshot = await store.list_for_provider(party.provider_profile_id)
    else:
        snapshot = await store.list_for_customer(party.party_id)
    return BookingListSynchronizer(
        party, feed, store.find_detail, snapshot=snapshot, **kwargs
    )


class TestInsert:
    @pytest.mark.asyncio
    async def test_insert_prepends_exactly_one_entry(self, store, feed, make_booking):
        make_booking(id="bk-a")
        sync = await _synchronizer(store, feed)
        make_booking(id="bk-new")

        change = await sync.apply(_event("insert", "bk-new"))

        assert change.kind == "inserted"
        assert change.index == 0
        assert [b.id for b in sync.bookings] == ["bk-new", "bk-a"]
        assert sync.notification.message == "New booking received!"
        assert sync.notification.tone == "success"
        await sync.close()

    @pytest.mark.asyncio
    async def test_duplicate_insert_is_ignored(self, store, feed, make_booking):
        make_booking(id="bk-a")
        sync = await _synchronizer(store, feed)

        assert await sync.apply(_event("insert", "bk-a")) is None
        assert [b.id for b in sync.bookings] == ["bk-a"]
        assert sync.notification is None

    @pytest.mark.asyncio
    async def test_booking_of_another_customer_is_dropped(self, store, feed, make_booking):
        sync = await _synchronizer(store, feed)
        make_booking(id="bk-other", customer_id=OTHER_CUSTOMER_ID)

        # Event mislabelled as in scope; the fetched row decides.
        assert await sync.apply(_event("insert", "bk-other")) is None
        assert sync.bookings == []

    @pytest.mark.asyncio
    async def test_insert_for_vanished_row_is_ignored(self, store, feed, marketplace):
        sync = await _synchronizer(store, feed)

        assert await sync.apply(_event("insert", "missing")) is None
        assert sync.bookings == []


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_replaces_in_place(self, manager, store, feed, make_booking):
        make_booking(id="bk-a", status="confirmed", scheduled_date=date.today() + timedelta(days=5))
        make_booking(id="bk-b", status="pending", scheduled_date=date.today() + timedelta(days=2))
        sync = await _synchronizer(store, feed)
        assert [b.id for b in sync.bookings] == ["bk-a", "bk-b"]

        await manager.request_transition("bk-b", PROVIDER_USER_ID, "confirmed")
        change = await sync.apply(_event("update", "bk-b"))

        assert change.kind == "updated"
        assert change.index == 1
        assert [b.id for b in sync.bookings] == ["bk-a", "bk-b"]
        assert [b.status for b in sync.bookings] == ["confirmed", "confirmed"]
        assert sync.notification.title == "Booking Confirmed"
        assert sync.notification.message == 'Booking status updated to "Confirmed"'
        await sync.close()

    @pytest.mark.asyncio
    async def test_update_for_unknown_booking_is_noop(self, store, feed, make_booking):
        sync = await _synchronizer(store, feed)
        make_booking(id="bk-late")

        assert await sync.apply(_event("update", "bk-late")) is None
        assert sync.bookings == []
        assert sync.notification is None

    @pytest.mark.asyncio
    async def test_update_to_pending_shows_no_toast(self, store, feed, make_booking):
        make_booking(id="bk-a", status="pending")
        sync = await _synchronizer(store, feed)

        change = await sync.apply(_event("update", "bk-a"))

        assert change.notification is None
        assert sync.notification is None


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_only_that_entry(self, store, feed, make_booking):
        for booking_id, days in (("bk-a", 9), ("bk-b", 6), ("bk-c", 3)):
            make_booking(id=booking_id, scheduled_date=date.today() + timedelta(days=days))
        sync = await _synchronizer(store, feed)

        change = await sync.apply(_event("delete", "bk-b"))

        assert change.kind == "removed"
        assert change.index == 1
        assert [b.id for b in sync.bookings] == ["bk-a", "bk-c"]
        assert sync.notification is None

    @pytest.mark.asyncio
    async def test_delete_of_absent_entry_is_noop(self, store, feed, make_booking):
        make_booking(id="bk-a")
        sync = await _synchronizer(store, feed)

        assert await sync.apply(_event("delete", "bk-z")) is None
        assert len(sync.bookings) == 1


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_events_after_close_are_ignored(self, store, feed, make_booking):
        sync = await _synchronizer(store, feed)
        await sync.open()
        assert feed.subscriber_count == 1

        await sync.close()
        make_booking(id="bk-new")

        assert feed.subscriber_count == 0
        assert await sync.apply(_event("insert", "bk-new")) is None
        assert sync.bookings == []

    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_reopen_fails(self, store, feed, marketplace):
        sync = await _synchronizer(store, feed)
        await sync.close()
        await sync.close()

        assert sync.closed
        with pytest.raises(RuntimeError):
            await sync.open()

    @pytest.mark.asyncio
    async def test_subscription_only_accepts_own_bookings(self, store, feed, marketplace):
        provider_sync = await _synchronizer(store, feed, party=PROVIDER)
        subscription = await provider_sync.open()
        assert subscription.channel == "bookings:provider:prov-1"

        foreign = ChangeEvent(
            kind="insert",
            table="bookings",
            record_id="bk-x",
            record={"customer_id": CUSTOMER_ID, "provider_id": "prov-2"},
        )
        own = _event("insert", "bk-y")

        assert subscription.matches(own)
        assert not subscription.matches(foreign)
        assert not subscription.matches(
            ChangeEvent(kind="insert", table="notifications", record_id="n-1", record={})
        )
        await provider_sync.close()


class TestTransientNotification:
    @pytest.mark.asyncio
    async def test_default_lifetime_is_five_seconds(self, store, feed, marketplace):
        sync = await _synchronizer(store, feed)
        assert DEFAULT_NOTIFICATION_TTL == 5.0
        assert sync.notification_ttl == 5.0

    @pytest.mark.asyncio
    async def test_notification_expires(self, store, feed, marketplace):
        sync = await _synchronizer(store, feed, notification_ttl=0.01)

        sync.show_notification(TransientNotification(title="t", message="m"))
        assert sync.notification is not None

        await asyncio.sleep(0.05)
        assert sync.notification is None

    @pytest.mark.asyncio
    async def test_newer_notification_replaces_and_keeps_its_own_timer(
        self, store, feed, marketplace
    ):
        sync = await _synchronizer(store, feed, notification_ttl=0.05)

        sync.show_notification(TransientNotification(title="first", message="m"))
        await asyncio.sleep(0.03)
        second = sync.show_notification(TransientNotification(title="second", message="m"))
        await asyncio.sleep(0.03)

        # The first timer would have fired by now had it not been cancelled.
        assert sync.notification is second
        await asyncio.sleep(0.05)
        assert sync.notification is None

    @pytest.mark.asyncio
    async def test_manual_dismiss(self, store, feed, marketplace):
        sync = await _synchronizer(store, feed)
        sync.show_notification(TransientNotification(title="t", message="m"))

        sync.dismiss_notification()

        assert sync.notification is None


class TestPartition:
    @pytest.mark.asyncio
    async def test_upcoming_and_past(self, store, feed, make_booking):
        today = date.today()
        make_booking(id="future-pending", status="pending", scheduled_date=today + timedelta(days=1))
        make_booking(id="today-confirmed", status="confirmed", scheduled_date=today)
        make_booking(id="future-done", status="completed", scheduled_date=today + timedelta(days=2))
        make_booking(id="old-pending", status="pending", scheduled_date=today - timedelta(days=1))
        sync = await _synchronizer(store, feed)

        upcoming = {b.id for b in sync.upcoming(today)}
        past = {b.id for b in sync.past(today)}

        assert upcoming == {"future-pending", "today-confirmed"}
        assert past == {"future-done", "old-pending"}

    @pytest.mark.asyncio
    async def test_partition_keeps_input_order_and_leaves_input_untouched(
        self, store, make_booking
    ):
        today = date.today()
        make_booking(id="up-1", status="confirmed", scheduled_date=today + timedelta(days=1))
        make_booking(id="past-1", status="cancelled", scheduled_date=today + timedelta(days=4))
        make_booking(id="up-2", status="in_progress", scheduled_date=today)
        make_booking(id="past-2", status="pending", scheduled_date=today - timedelta(days=2))
        make_booking(id="up-3", status="pending", scheduled_date=today + timedelta(days=9))
        make_booking(id="past-3", status="completed", scheduled_date=today - timedelta(days=1))
        details = {b.id: b for b in await store.list_for_customer(CUSTOMER_ID)}
        order = ["past-3", "up-2", "past-1", "up-3", "past-2", "up-1"]
        bookings = [details[booking_id] for booking_id in order]
        original = list(bookings)

        upcoming, past = partition_bookings(bookings, today)

        assert [b.id for b in upcoming] == ["up-2", "up-3", "up-1"]
        assert [b.id for b in past] == ["past-3", "past-1", "past-2"]
        assert bookings == original
        assert [b.id for b in bookings] == order

    def test_empty_list(self):
        assert partition_bookings([], date.today()) == ([], [])


class TestChangeStream:
    @pytest.mark.asyncio
    async def test_stream_follows_lifecycle_writes(self, manager, store, feed, make_booking):
        make_booking(id="bk-a", status="pending")
        sync = await _synchronizer(store, feed, party=PROVIDER)
        await sync.open()
        stream = sync.changes()

        await manager.request_transition("bk-a", CUSTOMER_ID, "cancelled")
        change = await asyncio.wait_for(stream.__anext__(), timeout=1)

        assert change.kind == "updated"
        assert change.booking.status == "cancelled"
        assert sync.bookings[0].status == "cancelled"

        await stream.aclose()
        assert sync.closed
        assert feed.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_stream_sees_new_booking_from_other_session(
        self, manager, store, feed, marketplace
    ):
        sync = await _synchronizer(store, feed, party=PROVIDER)
        await sync.open()
        stream = sync.changes()

        result = await manager.create_booking(
            CUSTOMER_ID,
            CreateBookingRequest(
                provider_id=PROVIDER_ID,
                provider_service_id="ps-1",
                booking_date=date.today() + timedelta(days=1),
                start_time="09:00",
                customer_address="1 Main St",
                total_price=4500,
            ),
        )
        change = await asyncio.wait_for(stream.__anext__(), timeout=1)

        assert change.kind == "inserted"
        assert change.booking_id == result.booking.id
        assert [b.id for b in sync.bookings] == [result.booking.id]
        await stream.aclose()
