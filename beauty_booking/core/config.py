"""Runtime configuration loaded from the environment."""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

# Load environment variables from .env (for local development)
load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: str
    broadcast_url: str
    jwt_secret: str | None
    jwt_algorithm: str
    jwt_audience: str | None
    stripe_webhook_secret: str | None
    twilio_account_sid: str | None
    twilio_auth_token: str | None
    twilio_from_number: str | None
    reminders_enabled: bool
    reminder_hour: int
    notification_ttl_seconds: float
    sse_ping_seconds: int
    log_level: str


@lru_cache
def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./beauty_booking.db"),
        broadcast_url=os.getenv("BROADCAST_URL", "memory://"),
        jwt_secret=os.getenv("JWT_SECRET"),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        jwt_audience=os.getenv("JWT_AUDIENCE") or None,
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET"),
        twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID"),
        twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
        twilio_from_number=os.getenv("TWILIO_FROM_NUMBER"),
        reminders_enabled=_env_flag("REMINDERS_ENABLED", True),
        reminder_hour=int(os.getenv("REMINDER_HOUR", "9")),
        notification_ttl_seconds=float(os.getenv("NOTIFICATION_TTL_SECONDS", "5")),
        sse_ping_seconds=int(os.getenv("SSE_PING_SECONDS", "15")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


settings = get_settings()
