"""Optimistic sync of local session edits to the remote service.

Local commits always happen first. Each change is turned into an update
request and queued; the queue is drained by the host between interaction
events, so a slow or failing request never blocks further edits. A failed
request leaves local state alone and offers a retry of the identical payload.
"""

from __future__ import annotations

import copy
import functools
import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Callable

from grid_time import format_wire_time
from remote_api import RemoteService
from scheduling_errors import RemoteError
from scheduling_events import (
    EventBus,
    LocationCreated,
    LocationCreateFailed,
    SessionChanged,
    SyncFailed,
    SyncSucceeded,
)
from session_store import Location, Session

logger = logging.getLogger(__name__)


class TaskQueue:
    def __init__(self) -> None:
        self._tasks: deque[tuple[Callable[..., Any], tuple]] = deque()

    def __len__(self) -> int:
        return len(self._tasks)

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        self._tasks.append((callback, args))

    def run_pending(self) -> int:
        """Run the tasks queued so far; tasks they queue wait for the next call."""
        count = len(self._tasks)
        for _ in range(count):
            callback, args = self._tasks.popleft()
            callback(*args)
        return count


@dataclass(frozen=True)
class SyncRequest:
    session_id: int
    payload: dict
    attempt: int = 1


def build_payload(session: Session) -> dict:
    return {
        "start_time": format_wire_time(session.start_time) if session.start_time else None,
        "end_time": format_wire_time(session.end_time) if session.end_time else None,
        "microlocation_id": session.location_id,
        "track_id": session.track_id,
        "speaker_ids": [speaker.id for speaker in session.speakers],
    }


class SyncCoordinator:
    def __init__(
        self,
        remote: RemoteService,
        event_id: int,
        bus: EventBus,
        queue: TaskQueue,
        read_only: bool = False,
    ) -> None:
        self.remote = remote
        self.event_id = event_id
        self.bus = bus
        self.queue = queue
        self.read_only = read_only
        self.sent: list[SyncRequest] = []

    def attach(self) -> None:
        self.bus.subscribe(SessionChanged, self._on_session_changed)

    def _on_session_changed(self, event: SessionChanged) -> None:
        self.sync(event.session)

    def sync(self, session: Session) -> SyncRequest | None:
        if self.read_only:
            return None
        return self.submit(SyncRequest(session_id=session.id, payload=build_payload(session)))

    def submit(self, request: SyncRequest) -> SyncRequest:
        self.queue.call_soon(self._send, request)
        return request

    def retry(self, request: SyncRequest) -> SyncRequest:
        again = replace(
            request, payload=copy.deepcopy(request.payload), attempt=request.attempt + 1
        )
        return self.submit(again)

    def _send(self, request: SyncRequest) -> None:
        self.sent.append(request)
        try:
            self.remote.update_session(
                self.event_id, request.session_id, copy.deepcopy(request.payload)
            )
        except RemoteError as error:
            logger.warning(
                "saving session %s failed (attempt %s): %s",
                request.session_id,
                request.attempt,
                error,
            )
            self.bus.publish(
                SyncFailed(
                    session_id=request.session_id,
                    retry=functools.partial(self.retry, request),
                )
            )
            return
        logger.debug("saved session %s", request.session_id)
        self.bus.publish(SyncSucceeded(session_id=request.session_id))

    def create_location(
        self, payload: dict, on_created: Callable[[Location], Any]
    ) -> None:
        if self.read_only:
            return
        self.queue.call_soon(self._create_location, dict(payload), on_created)

    def _create_location(self, payload: dict, on_created: Callable[[Location], Any]) -> None:
        try:
            location = self.remote.create_location(self.event_id, dict(payload))
        except RemoteError as error:
            logger.warning("creating location %r failed: %s", payload.get("name"), error)
            self.bus.publish(
                LocationCreateFailed(
                    retry=functools.partial(self.create_location, payload, on_created)
                )
            )
            return
        on_created(location)
        self.bus.publish(LocationCreated(location=location))
