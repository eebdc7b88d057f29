"""EventBus for simulation lifecycle and per-frame notifications."""

import logging
from collections import defaultdict
from enum import Enum, auto
from typing import Any, Callable

logger = logging.getLogger(__name__)


class EventType(Enum):
    # Lifecycle
    SIMULATION_INITIALIZED = auto()   # data: vertex_count (int), strand_count (int)
    SIMULATION_DISABLED = auto()      # data: reason (str)
    SIMULATION_DESTROYED = auto()

    # Frame events
    FRAME_SIMULATED = auto()          # data: frame (int), computation_time (float, ms)


class EventBus:
    """Publish/subscribe hub; handlers run synchronously in subscription order."""

    def __init__(self):
        self._handlers: dict[EventType, list[Callable]] = defaultdict(list)

    def subscribe(self, event_type: EventType, handler: Callable) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: EventType, handler: Callable) -> None:
        handlers = self._handlers[event_type]
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event_type: EventType, **data: Any) -> int:
        """Deliver an event; returns the number of handlers called."""
        handlers = list(self._handlers.get(event_type, ()))
        if handlers:
            logger.debug("%s -> %d handler(s)", event_type.name, len(handlers))
        for handler in handlers:
            handler(**data)
        return len(handlers)

    def clear(self) -> None:
        self._handlers.clear()
