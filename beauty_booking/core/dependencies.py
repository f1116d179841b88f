from fastapi import Depends

from beauty_booking.db.session import SessionLocal
from beauty_booking.realtime.change_feed import ChangeFeed, change_feed
from beauty_booking.services.booking_service import BookingLifecycleManager
from beauty_booking.services.booking_store import BookingStore


def get_change_feed() -> ChangeFeed:
    return change_feed


def get_booking_store(feed: ChangeFeed = Depends(get_change_feed)) -> BookingStore:
    return BookingStore(SessionLocal, feed)


def get_lifecycle_manager(
    store: BookingStore = Depends(get_booking_store),
) -> BookingLifecycleManager:
    return BookingLifecycleManager(store)
