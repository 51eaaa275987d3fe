"""Event dispatchers.

Dispatch is fire-and-forget: a failing dispatcher is logged and never
affects the result of the operation that produced the events.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Iterable, Optional

import redis.asyncio as redis

from .models import DomainEvent

logger = logging.getLogger(__name__)


class EventDispatcher(ABC):
    """Abstract base class for event dispatchers."""

    @abstractmethod
    async def publish(self, event: DomainEvent) -> None:
        """Deliver one event."""
        pass

    async def close(self) -> None:
        """Release any resources held by the dispatcher."""
        return None


class CollectingDispatcher(EventDispatcher):
    """Keeps published events in memory, in order."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [event.name.value for event in self.events]


class LoggingDispatcher(EventDispatcher):
    """Writes events to the log."""

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    async def publish(self, event: DomainEvent) -> None:
        logger.log(self.level, f"{event.name.value} {event.payload}")


class RedisDispatcher(EventDispatcher):
    """Publishes events as JSON on a Redis pub/sub channel."""

    def __init__(self, redis_url: str, channel: str = "ooh_booking:events"):
        """Initialize the Redis dispatcher.

        Args:
            redis_url: Redis connection URL (e.g., redis://localhost:6379/0)
            channel: Pub/sub channel events are published on
        """
        self.redis_url = redis_url
        self.channel = channel
        self._client: Optional[redis.Redis] = None

    async def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    async def publish(self, event: DomainEvent) -> None:
        client = await self._get_client()
        await client.publish(self.channel, json.dumps(event.to_message()))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


async def dispatch_events(
    dispatcher: Optional[EventDispatcher],
    events: Iterable[DomainEvent],
) -> int:
    """Hand events to a dispatcher without letting failures escape.

    Returns:
        Number of events delivered
    """
    if dispatcher is None:
        return 0

    delivered = 0
    for event in events:
        try:
            await dispatcher.publish(event)
            delivered += 1
        except Exception as e:
            logger.warning(f"Failed to dispatch {event.name.value}: {e}")
    return delivered


def get_dispatcher(redis_url: Optional[str] = None, channel: Optional[str] = None) -> EventDispatcher:
    """Create the dispatcher configured in settings.

    Uses Redis when a URL is configured, otherwise logs events.
    """
    from ..config.settings import get_settings

    settings = get_settings()
    redis_url = redis_url or settings.redis_url
    if redis_url:
        return RedisDispatcher(redis_url, channel or settings.event_channel)
    return LoggingDispatcher()
