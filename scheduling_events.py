"""Typed domain events and the publish/subscribe bus that carries them."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable

from session_store import Location, Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionPlaced:
    session: Session
    from_location_id: int | None
    to_location_id: int | None


@dataclass(frozen=True)
class SessionUnscheduled:
    session: Session
    from_location_id: int | None


@dataclass(frozen=True)
class SessionChanged:
    session: Session


@dataclass(frozen=True)
class LocationsRecounted:
    counts: dict[int, int]

    @property
    def location_ids(self) -> list[int]:
        return list(self.counts)


@dataclass(frozen=True)
class PlacementConflict:
    session_id: int
    message: str
    action_label: str = "Try Again"


@dataclass(frozen=True)
class LocationAdded:
    location: Location
    grid_height: int


@dataclass(frozen=True)
class SyncSucceeded:
    session_id: int
    message: str = "Changes have been saved."
    action_label: str = "Dismiss"
    dismiss_after: float | None = 1.0


@dataclass(frozen=True)
class SyncFailed:
    session_id: int
    retry: Callable[[], Any]
    message: str = "An error occurred while saving the changes."
    action_label: str = "Try Again"


@dataclass(frozen=True)
class LocationCreated:
    location: Location
    message: str = "Microlocation has been created successfully."


@dataclass(frozen=True)
class LocationCreateFailed:
    retry: Callable[[], Any]
    message: str = "An error occurred while creating microlocation."
    action_label: str = "Try Again"


Handler = Callable[[Any], None]


class EventBus:
    """Synchronous publish/subscribe keyed by event class.

    Handlers registered for a base class also receive subclasses; handlers
    registered for ``object`` receive everything.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: type, handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: object) -> None:
        logger.debug("publish %s", type(event).__name__)
        for event_type in type(event).__mro__:
            for handler in list(self._handlers.get(event_type, [])):
                handler(event)


class EventLog:
    """Collects every published event until drained."""

    def __init__(self, bus: EventBus | None = None) -> None:
        self.events: list[object] = []
        if bus is not None:
            bus.subscribe(object, self.record)

    def record(self, event: object) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_type)]

    def drain(self) -> list[object]:
        events, self.events = self.events, []
        return events
