"""In-process publish/subscribe channel for ledger and detector events."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from papertrade.domain.events import EVENT_TYPES, CoreEvent

EventHandler = Callable[[CoreEvent], None]

logger = logging.getLogger("papertrade.bus")


class EventBus:
    """Synchronous observer registry; the core publishes without knowing its consumers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._wildcard: list[EventHandler] = []

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        """Register a handler for one event type and return its unsubscribe callable."""
        with self._lock:
            self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def subscribe_all(self, handler: EventHandler) -> Callable[[], None]:
        """Register a handler that receives every event."""
        with self._lock:
            self._wildcard.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._wildcard:
                    self._wildcard.remove(handler)

        return unsubscribe

    def publish(self, event_type: str, payload: dict[str, Any] | None = None) -> CoreEvent:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        event = CoreEvent(event_type=event_type, payload=dict(payload or {}))
        with self._lock:
            handlers = [*self._handlers.get(event_type, []), *self._wildcard]
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("event handler failed for %s", event_type)
        return event
