"""Domain events and dispatchers."""

from .dispatcher import (
    CollectingDispatcher,
    EventDispatcher,
    LoggingDispatcher,
    RedisDispatcher,
    dispatch_events,
    get_dispatcher,
)
from .models import DomainEvent, EventName

__all__ = [
    "CollectingDispatcher",
    "DomainEvent",
    "EventDispatcher",
    "EventName",
    "LoggingDispatcher",
    "RedisDispatcher",
    "dispatch_events",
    "get_dispatcher",
]
