"""In-memory event bus and event construction helpers."""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from botservice.logger import Logger

EventHandler = Callable[["Event"], Any]


@dataclass
class Event:
    id: str
    type: str
    source: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: str = ""


def generate_event_id() -> str:
    return f"evt_{time.time_ns()}"


class InMemoryEventBus:
    """Dispatches each published event to its subscribers on background threads."""

    def __init__(self, logger: Logger | None = None) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._logger = logger or Logger()

    def publish(self, event: Event) -> None:
        handlers = list(self._handlers.get(event.type, ()))
        if not handlers:
            self._logger.debug("No handlers for event type", "event_type", event.type)
            return
        self._logger.info("Publishing event", "event_id", event.id, "event_type", event.type)
        for handler in handlers:
            threading.Thread(target=self._run, args=(handler, event), daemon=True).start()

    def _run(self, handler: EventHandler, event: Event) -> None:
        try:
            handler(event)
        except Exception as exc:  # handler failures must not affect other handlers
            self._logger.error("Event handler failed", "event_id", event.id, "error", str(exc))

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)
        self._logger.info("Subscribed to event type", "event_type", event_type)

    def close(self) -> None:
        self._handlers = defaultdict(list)


class EventFactory:
    """Builds events stamped with a fixed source."""

    def __init__(self, source: str) -> None:
        self.source = source

    def create_user_event(self, event_type: str, user_id: str, data: dict[str, Any]) -> Event:
        return Event(
            id=generate_event_id(),
            type=event_type,
            source=self.source,
            data=data,
            timestamp=datetime.now(timezone.utc),
            user_id=user_id,
        )

    def create_system_event(self, event_type: str, data: dict[str, Any]) -> Event:
        return Event(
            id=generate_event_id(),
            type=event_type,
            source=self.source,
            data=data,
            timestamp=datetime.now(timezone.utc),
        )