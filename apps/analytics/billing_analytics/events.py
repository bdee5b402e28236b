"""In-process notification of account and analytics changes.

Envelopes are plain dicts routed by their ``event_type`` key. Publishing stamps
the current correlation id when the envelope has none and records the envelope
in ``published_events`` before any handler runs. Handler errors propagate to
the publisher.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from billing_analytics.context import get_correlation_id


@dataclass(frozen=True, slots=True)
class AnalyticsEvent:
    name: str
    payload: dict[str, Any]


EventHandler = Callable[[AnalyticsEvent], None]


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self.published: list[dict[str, Any]] = []

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._handlers[event_type]
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def publish(self, envelope: dict[str, Any]) -> AnalyticsEvent:
        event_type = envelope.get("event_type")
        if not isinstance(event_type, str) or not event_type:
            raise ValueError("event envelope needs a non-empty event_type")
        if envelope.get("correlation_id") is None:
            envelope["correlation_id"] = get_correlation_id()

        self.published.append(envelope)
        event = AnalyticsEvent(name=event_type, payload=envelope)
        # Handlers may subscribe or unsubscribe while we iterate
        for handler in tuple(self._handlers.get(event_type, ())):
            handler(event)
        return event


event_bus = EventBus()
published_events = event_bus.published


def publish(envelope: dict[str, Any]) -> AnalyticsEvent:
    return event_bus.publish(envelope)
