"""Caller identity resolution from bearer tokens."""

import logging
from dataclasses import dataclass

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from beauty_booking.core.config import settings
from beauty_booking.core.domain_exceptions import Unauthenticated
from beauty_booking.schemas.booking import BookingRecord, PartyRole

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class PartySession:
    """Who a realtime connection belongs to and which bookings it may see."""

    party_id: str
    role: PartyRole
    provider_profile_id: str | None = None

    def in_scope(self, record: dict) -> bool:
        if self.role == "provider":
            return record.get("provider_id") == self.provider_profile_id
        return record.get("customer_id") == self.party_id

    def is_party_to(self, booking: BookingRecord) -> bool:
        return booking.is_party(self.party_id)


def decode_party_id(token: str) -> str:
    if not settings.jwt_secret:
        logger.error("JWT_SECRET is not configured; rejecting bearer token.")
        raise Unauthenticated()

    options = {"require": ["sub"]}
    kwargs = {}
    if settings.jwt_audience:
        kwargs["audience"] = settings.jwt_audience
    else:
        options["verify_aud"] = False

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options=options,
            **kwargs,
        )
    except jwt.PyJWTError:
        raise Unauthenticated("Invalid or expired token")

    party_id = payload.get("sub")
    if not party_id:
        raise Unauthenticated()
    return str(party_id)


def get_current_party_id(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    if creds is None or creds.scheme.lower() != "bearer" or not creds.credentials:
        raise Unauthenticated()
    return decode_party_id(creds.credentials)
