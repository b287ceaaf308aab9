from __future__ import annotations

import datetime as dt

import pytest

from grid_time import TimeGrid
from placement import Scheduler, SchedulerOptions
from scheduling_errors import RemoteError
from scheduling_events import EventBus, EventLog
from session_store import Location, MainEvent, Session, SessionStore, Speaker, Track


def make_event(
    start: str = "2013-05-01 08:00", end: str = "2013-05-03 18:00", event_id: int = 1
) -> MainEvent:
    return MainEvent(
        id=event_id,
        start_time=dt.datetime.strptime(start, "%Y-%m-%d %H:%M"),
        end_time=dt.datetime.strptime(end, "%Y-%m-%d %H:%M"),
    )


def make_session(
    session_id: int,
    start: str | None = None,
    end: str | None = None,
    location_id: int | None = None,
    title: str | None = None,
    track_id: int | None = None,
) -> Session:
    session = Session(
        id=session_id,
        title=title if title is not None else f"Session {session_id}",
        location_id=location_id,
        track_id=track_id,
        speakers=[Speaker(id=session_id * 10, name=f"Speaker {session_id}")],
    )
    if start and end:
        session.set_times(
            dt.datetime.strptime(start, "%Y-%m-%d %H:%M"),
            dt.datetime.strptime(end, "%Y-%m-%d %H:%M"),
        )
    return session


def make_locations() -> list[Location]:
    return [Location(id=1, name="Hall A"), Location(id=2, name="Hall B")]


class FakeRemote:
    """In-memory stand-in for the remote event API."""

    def __init__(
        self,
        event: MainEvent | None = None,
        locations: list[Location] | None = None,
        sessions: list[Session] | None = None,
        tracks: list[Track] | None = None,
    ) -> None:
        self.event = event or make_event()
        self.locations = locations if locations is not None else make_locations()
        self.sessions = sessions or []
        self.tracks = tracks or []
        self.fail = False
        self.calls: list[tuple] = []
        self.next_location_id = 100

    def get_event(self, event_id: int) -> MainEvent:
        self.calls.append(("get_event", event_id))
        return self.event

    def list_locations(self, event_id: int) -> list[Location]:
        return list(self.locations)

    def list_tracks(self, event_id: int) -> list[Track]:
        return list(self.tracks)

    def list_sessions(self, event_id: int) -> list[Session]:
        return list(self.sessions)

    def create_location(self, event_id: int, payload: dict) -> Location:
        self.calls.append(("create_location", event_id, payload))
        if self.fail:
            raise RemoteError("service unavailable", status_code=503)
        self.next_location_id += 1
        return Location(id=self.next_location_id, name=payload["name"], room=payload.get("room"))

    def update_session(self, event_id: int, session_id: int, payload: dict) -> None:
        self.calls.append(("update_session", event_id, session_id, payload))
        if self.fail:
            raise RemoteError("service unavailable", status_code=503)

    def updates(self) -> list[tuple]:
        return [call for call in self.calls if call[0] == "update_session"]


@pytest.fixture
def event() -> MainEvent:
    return make_event()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def log(bus: EventBus) -> EventLog:
    return EventLog(bus)


@pytest.fixture
def store(event: MainEvent) -> SessionStore:
    return SessionStore(event)


@pytest.fixture
def scheduler(store: SessionStore, bus: EventBus) -> Scheduler:
    scheduler = Scheduler(store, bus, TimeGrid(), SchedulerOptions())
    scheduler.load(make_locations(), [])
    return scheduler
