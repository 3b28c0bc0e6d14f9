"""Event emitters for the phase engine."""

import logging
from abc import ABC, abstractmethod
from typing import Iterable

from fleet_engine.core.events_model import FleetEvent

logger = logging.getLogger(__name__)


ALLOWED_EVENTS = {
    "node.run_started",
    "node.state_changed",
    "node.blocked",
    "node.completed",
    "phase.started",
    "phase.succeeded",
    "phase.failed",
    "phase.retrying",
    "phase.skipped",
}


def _check(event: FleetEvent) -> None:
    if event.event_type not in ALLOWED_EVENTS:
        raise ValueError(f"Invalid event type: {event.event_type}")
    if not event.node_id:
        raise ValueError("Event must have node_id")


class EventEmitter(ABC):
    """Abstract event emitter."""

    @abstractmethod
    def emit(self, events: Iterable[FleetEvent]) -> None:
        """Emit one or more events."""
        pass


class LogEventEmitter(EventEmitter):
    """Writes events to the log."""

    def emit(self, events: Iterable[FleetEvent]) -> None:
        for event in events:
            _check(event)
            level = logging.WARNING if event.event_type in (
                "node.blocked", "phase.failed", "phase.retrying"
            ) else logging.INFO
            logger.log(level, f"[event] {event.describe()}")


class RecordingEventEmitter(EventEmitter):
    """Keeps events in memory (tests, CLI summaries)."""

    def __init__(self):
        self.events = []

    def emit(self, events: Iterable[FleetEvent]) -> None:
        for event in events:
            _check(event)
            self.events.append(event)

    def types(self):
        return [event.event_type for event in self.events]


class MultiEventEmitter(EventEmitter):
    """Fan-out to multiple emitters."""

    def __init__(self, emitters: Iterable[EventEmitter]):
        self._emitters = list(emitters)

    def emit(self, events: Iterable[FleetEvent]) -> None:
        events = list(events)
        for emitter in self._emitters:
            emitter.emit(events)


class NullEventEmitter(EventEmitter):
    """No-op emitter (used when events are not needed)."""

    def emit(self, events: Iterable[FleetEvent]) -> None:
        pass
