from __future__ import annotations

import logging
import threading
from typing import Any, Literal, Protocol

from pydantic import BaseModel

logger = logging.getLogger(__name__)

EventType = Literal["created", "updated", "confirmed", "deleted"]


class ChangeEvent(BaseModel):
    type: EventType
    data: dict[str, Any]


class EventSink(Protocol):
    def publish(self, event: ChangeEvent) -> None: ...


class LoggingSink:
    def publish(self, event: ChangeEvent) -> None:
        logger.info("spot %s: %s", event.type, event.data.get("id"))


class CollectingSink:
    """Keeps every published event in memory."""

    def __init__(self):
        self.events: list[ChangeEvent] = []
        self._lock = threading.Lock()

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            self.events.append(event)

    def types(self) -> list[str]:
        return [e.type for e in self.events]


def emit(sink: EventSink | None, event_type: EventType, data: dict[str, Any]) -> None:
    """Publish without letting a sink failure reach the caller."""
    if sink is None:
        return
    try:
        sink.publish(ChangeEvent(type=event_type, data=data))
    except Exception:
        logger.exception("Failed to publish %s event", event_type)
