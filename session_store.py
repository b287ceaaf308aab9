"""In-memory, day-indexed store of sessions, locations and tracks."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Iterator

from grid_time import day_label
from scheduling_errors import DataInconsistencyError

logger = logging.getLogger(__name__)

DEFAULT_SESSION_MINUTES = 30
UNKNOWN_LABEL = "Unknown"


@dataclass
class Speaker:
    id: int
    name: str = ""


@dataclass
class Location:
    id: int
    name: str
    room: str | None = None
    floor: int | None = None
    latitude: float | None = None
    longitude: float | None = None


@dataclass
class Track:
    id: int
    name: str
    color: str | None = None


@dataclass
class MainEvent:
    id: int
    start_time: dt.datetime
    end_time: dt.datetime

    def dates(self) -> list[dt.date]:
        days = []
        current = self.start_time.date()
        while current <= self.end_time.date():
            days.append(current)
            current += dt.timedelta(days=1)
        return days


@dataclass(frozen=True)
class DayBucket:
    day: dt.date

    @property
    def label(self) -> str:
        return day_label(self.day)


@dataclass
class Session:
    id: int
    title: str
    start_time: dt.datetime | None = None
    end_time: dt.datetime | None = None
    duration_minutes: int = 0
    location_id: int | None = None
    track_id: int | None = None
    grid_offset: int | None = None
    is_reset: bool = False
    speakers: list[Speaker] = field(default_factory=list)
    state: str = "accepted"

    @property
    def is_scheduled(self) -> bool:
        return (
            self.location_id is not None
            and self.grid_offset is not None
            and self.start_time is not None
            and self.end_time is not None
            and not self.is_reset
        )

    @property
    def day(self) -> dt.date | None:
        if self.start_time is None:
            return None
        return self.start_time.date()

    def set_times(self, start_time: dt.datetime, end_time: dt.datetime) -> None:
        self.start_time = start_time
        self.end_time = end_time
        self.duration_minutes = abs(round((end_time - start_time).total_seconds() / 60))
        self.is_reset = False


def fuzzy_match(text: str, pattern: str) -> bool:
    """True when every character of ``pattern`` appears in ``text`` in order."""
    text = text.lower()
    position = 0
    for char in pattern.lower():
        if char.isspace():
            continue
        position = text.find(char, position)
        if position < 0:
            return False
        position += 1
    return True


class SessionStore:
    """Sessions indexed by day-bucket, plus the flat unscheduled index.

    Every loaded session id lives in exactly one place: the bucket of its
    start date when scheduled, otherwise the unscheduled index.
    """

    def __init__(self, main_event: MainEvent) -> None:
        self.main_event = main_event
        self._sessions: dict[int, Session] = {}
        self._membership: dict[int, dt.date | None] = {}
        self._buckets: dict[dt.date, list[int]] = {}
        self._unscheduled: list[int] = []
        self._referenced_days: set[dt.date] = set()
        self._locations: dict[int, Location] = {}
        self._tracks: dict[int, Track] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def get(self, session_id: int) -> Session:
        return self._sessions[session_id]

    def find(self, session_id: int) -> Session | None:
        return self._sessions.get(session_id)

    def membership(self, session_id: int) -> dt.date | None:
        return self._membership[session_id]

    def reference_day(self, day: dt.date) -> None:
        self._referenced_days.add(day)

    def _detach(self, session_id: int) -> None:
        if session_id not in self._membership:
            return
        old_day = self._membership.pop(session_id)
        if old_day is None:
            self._unscheduled = [item for item in self._unscheduled if item != session_id]
            return
        bucket = self._buckets.get(old_day, [])
        if session_id in bucket:
            bucket.remove(session_id)
        if not bucket:
            self._buckets.pop(old_day, None)

    def upsert(self, session: Session) -> Session:
        self._detach(session.id)
        self._sessions[session.id] = session
        if session.is_scheduled:
            day = session.start_time.date()
            self._buckets.setdefault(day, []).append(session.id)
            self._membership[session.id] = day
            self._referenced_days.add(day)
        else:
            self._unscheduled.append(session.id)
            self._membership[session.id] = None
        return session

    def unschedule(
        self, session: Session, default_duration: int = DEFAULT_SESSION_MINUTES
    ) -> Session:
        session.location_id = None
        session.grid_offset = None
        if session.start_time is not None:
            session.start_time = session.start_time.replace(
                hour=0, minute=0, second=0, microsecond=0
            )
        if session.end_time is not None:
            session.end_time = session.end_time.replace(
                hour=0, minute=0, second=0, microsecond=0
            )
        session.is_reset = True
        session.duration_minutes = default_duration
        return self.upsert(session)

    def sessions_for_day(self, day: dt.date) -> list[Session]:
        sessions = [self._sessions[session_id] for session_id in self._buckets.get(day, [])]
        sessions = [session for session in sessions if session.is_scheduled]
        return sorted(sessions, key=lambda s: s.start_time)

    def unscheduled_for_day(self, day: dt.date) -> list[Session]:
        # Unscheduled sessions are listed under every day.
        return [
            self._sessions[session_id]
            for session_id in self._unscheduled
            if not self._sessions[session_id].is_scheduled
        ]

    def scheduled_sessions(self) -> list[Session]:
        return [
            session
            for day in sorted(self._buckets)
            for session in self.sessions_for_day(day)
        ]

    def search_unscheduled(self, query: str) -> list[Session]:
        candidates = [self._sessions[session_id] for session_id in self._unscheduled]
        if query and query.strip():
            candidates = [
                session for session in candidates if fuzzy_match(session.title, query)
            ]
        seen: set[int] = set()
        results: list[Session] = []
        for session in sorted(candidates, key=lambda s: s.title):
            if session.id in seen:
                continue
            seen.add(session.id)
            results.append(session)
        return results

    def day_buckets(self) -> list[DayBucket]:
        days = set(self.main_event.dates())
        days.update(self._referenced_days)
        days.update(self._buckets)
        return [DayBucket(day) for day in sorted(days)]

    def add_location(self, location: Location) -> Location:
        self._locations[location.id] = location
        return location

    def location(self, location_id: int | None) -> Location | None:
        if location_id is None:
            return None
        return self._locations.get(location_id)

    def locations(self) -> list[Location]:
        return sorted(self._locations.values(), key=lambda loc: (loc.name, loc.id))

    def add_track(self, track: Track) -> Track:
        self._tracks.setdefault(track.id, track)
        return self._tracks[track.id]

    def track(self, track_id: int | None) -> Track | None:
        if track_id is None:
            return None
        return self._tracks.get(track_id)

    def tracks(self) -> list[Track]:
        return list(self._tracks.values())

    def count_for_location(self, location_id: int, day: dt.date) -> int:
        return sum(
            1 for session in self.sessions_for_day(day) if session.location_id == location_id
        )

    def location_name(self, session: Session) -> str | None:
        if session.location_id is None:
            return None
        location = self.location(session.location_id)
        if location is None:
            error = DataInconsistencyError(
                f"session {session.id} references unknown location {session.location_id}"
            )
            logger.warning("%s", error)
            return UNKNOWN_LABEL
        return location.name

    def track_name(self, session: Session) -> str | None:
        if session.track_id is None:
            return None
        track = self.track(session.track_id)
        if track is None:
            error = DataInconsistencyError(
                f"session {session.id} references unknown track {session.track_id}"
            )
            logger.warning("%s", error)
            return UNKNOWN_LABEL
        return track.name

    def describe(self, session: Session) -> str:
        lines = []
        speakers = [speaker.name for speaker in session.speakers if speaker.name]
        if speakers:
            lines.append("By " + ", ".join(speakers))
        track_name = self.track_name(session)
        if track_name:
            lines.append(f"Track: {track_name}")
        room = self.location_name(session)
        if room:
            lines.append(f"Room: {room}")
        return "\n".join(lines)
