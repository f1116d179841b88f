"""Change feed for committed record changes, fanned out through Broadcaster.

The booking store publishes one `ChangeEvent` per committed insert or update
to the channel of every party it concerns:

- ``bookings:customer:<customer_id>``
- ``bookings:provider:<provider_profile_id>``
- ``notifications:<user_id>``

With a Redis or Postgres ``BROADCAST_URL`` every worker process shares the
same channels; ``memory://`` keeps them inside one process. Consumers open a
`Subscription` on one channel and iterate it with ``async for``; events arrive
in publish order and nothing is delivered once the subscription is closed.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Literal

from broadcaster import Broadcast

from beauty_booking.core.config import settings

logger = logging.getLogger(__name__)

ChangeKind = Literal["insert", "update", "delete"]
EventFilter = Callable[["ChangeEvent"], bool]


@dataclass(frozen=True)
class ChangeEvent:
    kind: ChangeKind
    table: str
    record_id: str
    # Column values of the new row (old row for deletes), used for routing and filtering.
    record: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_message(cls, message: str) -> "ChangeEvent":
        return cls(**json.loads(message))


def booking_channel(role: str, party_key: str) -> str:
    return f"bookings:{role}:{party_key}"


def notification_channel(user_id: str) -> str:
    return f"notifications:{user_id}"


def channels_for(event: ChangeEvent) -> list[str]:
    """Channels of the parties an event concerns."""
    if event.table == "bookings":
        channels = []
        if event.record.get("customer_id"):
            channels.append(booking_channel("customer", event.record["customer_id"]))
        if event.record.get("provider_id"):
            channels.append(booking_channel("provider", event.record["provider_id"]))
        return channels
    if event.table == "notifications" and event.record.get("user_id"):
        return [notification_channel(event.record["user_id"])]
    return []


class Subscription:
    def __init__(self, feed: "ChangeFeed", channel: str, predicate: EventFilter | None = None):
        self.channel = channel
        self.closed = False
        self._feed = feed
        self._predicate = predicate
        self._context = None
        self._messages = None

    def matches(self, event: ChangeEvent) -> bool:
        return self._predicate is None or self._predicate(event)

    async def open(self) -> "Subscription":
        """Start listening on the channel. Idempotent until closed."""
        if self.closed:
            raise RuntimeError("Subscription has been closed.")
        if self._context is None:
            self._context = self._feed.broadcast.subscribe(channel=self.channel)
            subscriber = await self._context.__aenter__()
            self._messages = subscriber.__aiter__()
            self._feed._subscriptions.add(self)
        return self

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed._subscriptions.discard(self)
        context, self._context = self._context, None
        if context is not None:
            # Leaving the Broadcaster context wakes a consumer blocked in __anext__.
            await context.__aexit__(None, None, None)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        while True:
            if self.closed or self._messages is None:
                raise StopAsyncIteration
            message = await self._messages.__anext__()
            if self.closed:
                raise StopAsyncIteration

            try:
                event = ChangeEvent.from_message(message.message)
            except (TypeError, ValueError):
                logger.warning("Dropping malformed message on %s", self.channel)
                continue

            try:
                matched = self.matches(event)
            except Exception:
                logger.exception(
                    "Subscription filter failed",
                    extra={"table": event.table, "record_id": event.record_id},
                )
                continue
            if matched:
                return event

    async def __aenter__(self) -> "Subscription":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class ChangeFeed:
    def __init__(self, url: str = "memory://"):
        self.url = url
        self._broadcast: Broadcast | None = None
        self._subscriptions: set[Subscription] = set()

    @property
    def connected(self) -> bool:
        return self._broadcast is not None

    @property
    def broadcast(self) -> Broadcast:
        if self._broadcast is None:
            raise RuntimeError("Change feed not connected. Call connect() during startup.")
        return self._broadcast

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def connect(self) -> None:
        if self._broadcast is not None:
            return
        broadcast = Broadcast(self.url)
        await broadcast.connect()
        self._broadcast = broadcast
        logger.info("[BROADCAST] Change feed connected: %s", self.url)

    async def disconnect(self) -> None:
        if self._broadcast is None:
            return
        for subscription in list(self._subscriptions):
            await subscription.close()
        broadcast, self._broadcast = self._broadcast, None
        await broadcast.disconnect()
        logger.info("[BROADCAST] Change feed disconnected")

    def subscribe(self, channel: str, predicate: EventFilter | None = None) -> Subscription:
        """A subscription on `channel`; call `open()` (or ``async with``) to start it."""
        return Subscription(self, channel, predicate)

    async def publish(self, event: ChangeEvent) -> int:
        """Send an event to every channel it concerns; returns the channel count."""
        if self._broadcast is None:
            logger.warning(
                "Change feed not connected; dropping %s on %s",
                event.kind,
                event.table,
            )
            return 0

        channels = channels_for(event)
        message = event.to_message()
        for channel in channels:
            await self._broadcast.publish(channel=channel, message=message)
        return len(channels)


change_feed = ChangeFeed(settings.broadcast_url)
