from datetime import date, datetime, time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

BookingStatus = Literal["pending", "confirmed", "in_progress", "completed", "cancelled"]
PaymentStatus = Literal["pending", "paid", "refunded", "failed"]
PartyRole = Literal["customer", "provider"]


class CamelModel(BaseModel):
    """Accepts both camelCase (web client) and snake_case field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookingRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_id: str
    provider_id: str
    # Owning user of the provider profile: the provider's party identity.
    provider_user_id: str
    provider_service_id: str
    scheduled_date: date
    scheduled_time: time
    end_time: time | None = None
    address: str | None = None
    notes: str | None = None
    total_price: int
    travel_fee: int = 0
    status: BookingStatus
    payment_intent_id: str | None = None
    payment_status: PaymentStatus = "pending"
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_party(self, party_id: str | None) -> bool:
        return party_id is not None and party_id in (self.customer_id, self.provider_user_id)


class BookingDetail(BookingRecord):
    """Booking joined with display fields for list and detail views."""

    service_name: str | None = None
    service_category: str | None = None
    duration_minutes: int | None = None
    provider_business_name: str | None = None
    customer_name: str | None = None
    customer_phone: str | None = None


class TransitionRequest(CamelModel):
    status: BookingStatus | None = None
    payment_intent_id: str | None = None


class CreateBookingRequest(CamelModel):
    provider_id: str
    provider_service_id: str
    booking_date: date
    start_time: time
    customer_address: str = Field(min_length=1)
    notes: str | None = None
    total_price: int = Field(ge=0)
    travel_fee: int = Field(default=0, ge=0)
