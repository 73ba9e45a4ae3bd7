"""
Event Sink.

Fire-and-forget publication of workflow and call events to downstream
systems. Callers log publication failures; they never fail a run.
"""

from typing import Any, Dict, List, Optional, Protocol, Tuple
from datetime import datetime
from dataclasses import dataclass, field
import asyncio
import logging


logger = logging.getLogger(__name__)


class EventSink(Protocol):
    """Anything that can publish an event."""

    async def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        ...


@dataclass
class PublishedEvent:
    """An event recorded by the in-memory sink."""
    event_type: str
    payload: Dict[str, Any]
    published_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "payload": self.payload,
            "published_at": self.published_at.isoformat(),
        }


class InMemoryEventSink:
    """Records published events in process, for tests and the demo workflow."""

    def __init__(self, max_events: Optional[int] = 1000):
        self._events: List[PublishedEvent] = []
        self._max_events = max_events
        self._lock = asyncio.Lock()

    async def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        async with self._lock:
            self._events.append(PublishedEvent(event_type=event_type, payload=dict(payload)))
            if self._max_events is not None and len(self._events) > self._max_events:
                del self._events[: len(self._events) - self._max_events]

    def events(self, event_type: Optional[str] = None) -> List[PublishedEvent]:
        """Events published so far, optionally filtered by type."""
        if event_type is None:
            return list(self._events)
        return [event for event in self._events if event.event_type == event_type]

    def types(self) -> List[str]:
        return [event.event_type for event in self._events]

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)


class LoggingEventSink:
    """Writes events to the log instead of an external bus."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    async def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        logger.log(self.level, f"Event {event_type}: {payload}")


class FanOutEventSink:
    """Publishes every event to several sinks; one failing sink does not stop the others."""

    def __init__(self, *sinks: EventSink):
        self.sinks: Tuple[EventSink, ...] = sinks

    async def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        for sink in self.sinks:
            try:
                await sink.publish(event_type, payload)
            except Exception as e:
                logger.warning(f"Event sink {type(sink).__name__} failed for {event_type}: {e}")


def create_event_sink(recorder: InMemoryEventSink, log_events: bool = False) -> EventSink:
    """The sink runs publish to: the recorder, plus the log when log_events is set."""
    if not log_events:
        return recorder
    return FanOutEventSink(recorder, LoggingEventSink())


# Global event sink used by the API and the built-in capabilities
event_sink = InMemoryEventSink()
