"""
Shared fixtures.

Environment is configured before any application import so that settings,
the default engine and the auth layer pick up test values.
"""

import os

TEST_JWT_SECRET = "test-secret-key-for-hs256-signing-32b"

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["BROADCAST_URL"] = "memory://"
os.environ["JWT_SECRET"] = TEST_JWT_SECRET
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ.pop("JWT_AUDIENCE", None)
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["REMINDERS_ENABLED"] = "false"

from datetime import date, time, timedelta
from types import SimpleNamespace

import jwt
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from beauty_booking.core.dependencies import get_booking_store
from beauty_booking.db.init_db import init_db
from beauty_booking.db.models import (
    Booking,
    Profile,
    ProviderProfile,
    ProviderService,
    Service,
)
from beauty_booking.db.session import get_db
from beauty_booking.realtime.change_feed import ChangeFeed, change_feed
from beauty_booking.services.booking_service import BookingLifecycleManager
from beauty_booking.services.booking_store import BookingStore
from main import app

CUSTOMER_ID = "cust-1"
PROVIDER_USER_ID = "prov-user-1"
PROVIDER_ID = "prov-1"
OTHER_CUSTOMER_ID = "cust-2"
OTHER_PROVIDER_USER_ID = "prov-user-2"
OTHER_PROVIDER_ID = "prov-2"
OUTSIDER_ID = "outsider-1"


def make_token(party_id: str) -> str:
    return jwt.encode({"sub": party_id}, TEST_JWT_SECRET, algorithm="HS256")


def auth_headers(party_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(party_id)}"}


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest_asyncio.fixture
async def feed():
    feed = ChangeFeed("memory://")
    await feed.connect()
    yield feed
    await feed.disconnect()


@pytest.fixture
def store(session_factory, feed):
    return BookingStore(session_factory, feed)


@pytest.fixture
def manager(store):
    return BookingLifecycleManager(store)


@pytest.fixture
def marketplace(session_factory):
    """Two customers, two providers, one service each."""
    with session_factory() as session:
        session.add_all(
            [
                Profile(id=CUSTOMER_ID, first_name="Ada", last_name="Lovelace", phone="+15550000001"),
                Profile(id=OTHER_CUSTOMER_ID, first_name="Grace", last_name="Hopper"),
                Profile(id=PROVIDER_USER_ID, first_name="Pat", last_name="Stylist"),
                Profile(id=OTHER_PROVIDER_USER_ID, first_name="Sam", last_name="Nails"),
                Profile(id=OUTSIDER_ID, first_name="Olive"),
                Service(id="svc-hair", name="Haircut", category="hair"),
                Service(id="svc-nails", name="Manicure", category="nails"),
            ]
        )
        session.flush()
        session.add_all(
            [
                ProviderProfile(id=PROVIDER_ID, user_id=PROVIDER_USER_ID, business_name="Pat's Studio"),
                ProviderProfile(
                    id=OTHER_PROVIDER_ID,
                    user_id=OTHER_PROVIDER_USER_ID,
                    business_name="Sam's Nails",
                ),
            ]
        )
        session.flush()
        session.add_all(
            [
                ProviderService(
                    id="ps-1",
                    provider_id=PROVIDER_ID,
                    service_id="svc-hair",
                    base_price=4500,
                    duration_minutes=90,
                ),
                ProviderService(
                    id="ps-2",
                    provider_id=OTHER_PROVIDER_ID,
                    service_id="svc-nails",
                    base_price=3000,
                    duration_minutes=45,
                ),
            ]
        )
        session.commit()

    return SimpleNamespace(
        customer_id=CUSTOMER_ID,
        provider_user_id=PROVIDER_USER_ID,
        provider_id=PROVIDER_ID,
        other_customer_id=OTHER_CUSTOMER_ID,
        other_provider_user_id=OTHER_PROVIDER_USER_ID,
        other_provider_id=OTHER_PROVIDER_ID,
        outsider_id=OUTSIDER_ID,
    )


@pytest.fixture
def make_booking(session_factory, marketplace):
    """Insert a booking row directly, bypassing the store and the feed."""
    counter = {"n": 0}

    def _make(
        status: str = "pending",
        customer_id: str = CUSTOMER_ID,
        provider_id: str = PROVIDER_ID,
        provider_service_id: str = "ps-1",
        scheduled_date: date | None = None,
        **fields,
    ) -> str:
        counter["n"] += 1
        booking_id = fields.pop("id", f"bk-{counter['n']}")
        with session_factory() as session:
            session.add(
                Booking(
                    id=booking_id,
                    customer_id=customer_id,
                    provider_id=provider_id,
                    provider_service_id=provider_service_id,
                    scheduled_date=scheduled_date or date.today() + timedelta(days=3),
                    scheduled_time=fields.pop("scheduled_time", time(10, 0)),
                    total_price=fields.pop("total_price", 4500),
                    status=status,
                    **fields,
                )
            )
            session.commit()
        return booking_id

    return _make


@pytest.fixture
def api_store(session_factory):
    """Store used by the HTTP app; its feed is connected by the app lifespan."""
    return BookingStore(session_factory, change_feed)


@pytest.fixture
def client(api_store, session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_booking_store] = lambda: api_store
    app.dependency_overrides[get_db] = _get_db
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
