"""Placement state machine: drag, drop, resize and removal of sessions.

The interaction surface reports gestures here. Geometry is snapped and
validated against the selected day's grid and the location's other sessions
before anything is written to the store; a rejected gesture leaves the
session exactly as it was and publishes a ``PlacementConflict``.
"""

from __future__ import annotations

import datetime as dt
import enum
import logging
from dataclasses import dataclass, field
from typing import Iterable

from collision import Placement, find_all_overlaps, find_overlap
from grid_time import (
    DEFAULT_DAY_END,
    DEFAULT_DAY_START,
    GridExtent,
    TimeGrid,
    grid_extent_for_day,
    time_range_label,
)
from scheduling_errors import CollisionError, ValidationError
from scheduling_events import (
    EventBus,
    LocationAdded,
    LocationsRecounted,
    PlacementConflict,
    SessionChanged,
    SessionPlaced,
    SessionUnscheduled,
)
from session_store import (
    DEFAULT_SESSION_MINUTES,
    DayBucket,
    Location,
    Session,
    SessionStore,
    Track,
)
from track_colors import track_color

logger = logging.getLogger(__name__)

OUTSIDE_GRID_MESSAGE = "Session cannot be dropped outside the timeline."
COLLISION_MESSAGE = "Session cannot be dropped onto another session."
READ_ONLY_MESSAGE = "The scheduler is read-only."


class PlacementState(enum.Enum):
    UNSCHEDULED = "unscheduled"
    SCHEDULED = "scheduled"
    PENDING_PLACEMENT = "pending"
    REVERTING = "reverting"


@dataclass
class SchedulerOptions:
    read_only: bool = False
    default_duration_minutes: int = DEFAULT_SESSION_MINUTES
    day_start: dt.time = DEFAULT_DAY_START
    day_end: dt.time = DEFAULT_DAY_END


@dataclass
class PlacementResult:
    session: Session
    state: PlacementState
    accepted: bool
    message: str = ""


@dataclass
class Preview:
    session_id: int
    grid_offset: int
    height: float
    start_time: dt.datetime
    end_time: dt.datetime
    inside_grid: bool

    @property
    def label(self) -> str:
        if not self.inside_grid:
            return ""
        return time_range_label(self.start_time, self.end_time)


@dataclass
class PendingGesture:
    session_id: int
    kind: str
    origin_offset: float
    delta_x: float = 0.0
    delta_y: float = 0.0
    height: int | None = None

    @property
    def raw_offset(self) -> float:
        return self.origin_offset + self.delta_y


@dataclass
class SessionView:
    session: Session
    top: int
    height: float
    color: str
    time_label: str
    info: str


@dataclass
class DayView:
    bucket: DayBucket
    extent: GridExtent
    locations: list[Location]
    scheduled: list[SessionView]
    unscheduled: list[Session]
    counts: dict[int, int] = field(default_factory=dict)

    def for_location(self, location_id: int) -> list[SessionView]:
        return [view for view in self.scheduled if view.session.location_id == location_id]

    @property
    def by_track(self) -> dict[int | None, list[SessionView]]:
        grouped: dict[int | None, list[SessionView]] = {}
        for view in self.scheduled:
            grouped.setdefault(view.session.track_id, []).append(view)
        return grouped


class Scheduler:
    def __init__(
        self,
        store: SessionStore,
        bus: EventBus,
        grid: TimeGrid | None = None,
        options: SchedulerOptions | None = None,
    ) -> None:
        self.store = store
        self.bus = bus
        self.grid = grid or TimeGrid()
        self.options = options or SchedulerOptions()
        self.selected_day = store.day_buckets()[0].day
        self._pending: dict[int, PendingGesture] = {}
        self._states: dict[int, PlacementState] = {}

    @property
    def read_only(self) -> bool:
        return self.options.read_only

    @property
    def extent(self) -> GridExtent:
        return self.extent_for(self.selected_day)

    def extent_for(self, day: dt.date) -> GridExtent:
        event = self.store.main_event
        return grid_extent_for_day(
            day,
            event.start_time,
            event.end_time,
            self.grid,
            self.options.day_start,
            self.options.day_end,
        )

    def state_of(self, session_id: int) -> PlacementState:
        if session_id in self._pending:
            return PlacementState.PENDING_PLACEMENT
        if self._states.get(session_id) is PlacementState.REVERTING:
            return PlacementState.REVERTING
        if self.store.get(session_id).is_scheduled:
            return PlacementState.SCHEDULED
        return PlacementState.UNSCHEDULED

    def height_of(self, session: Session) -> float:
        minutes = session.duration_minutes
        if session.is_reset or minutes <= 0:
            minutes = self.options.default_duration_minutes
        return self.grid.height_for(minutes)

    def placement_of(self, session: Session) -> Placement:
        return Placement(
            session_id=session.id,
            location_id=session.location_id,
            grid_offset=session.grid_offset,
            height=self.height_of(session),
        )

    def placements_for_day(self, day: dt.date) -> list[Placement]:
        return [self.placement_of(session) for session in self.store.sessions_for_day(day)]

    def load(
        self,
        locations: Iterable[Location],
        sessions: Iterable[Session],
        tracks: Iterable[Track] = (),
    ) -> None:
        """Fill the store from remote data without publishing anything."""
        for location in locations:
            self.store.add_location(location)
        for track in tracks:
            self.store.add_track(track)
        for session in sessions:
            if session.state != "accepted":
                continue
            if session.day is not None:
                self.store.reference_day(session.day)
            self._load_session(session)
        self.selected_day = self.store.day_buckets()[0].day
        self._pending.clear()

    def _load_session(self, session: Session) -> None:
        if session.location_id is None or session.start_time is None or session.end_time is None:
            self.store.unschedule(session, self.options.default_duration_minutes)
            return
        session.set_times(session.start_time, session.end_time)
        extent = self.extent_for(session.start_time.date())
        offset = self.grid.snap_to_grid(extent.offset_for(session.start_time))
        if session.start_time < extent.start_of_day or not extent.contains(
            offset, self.height_of(session)
        ):
            logger.warning(
                "session %s (%s - %s) lies outside its day grid; listing it as unscheduled",
                session.id,
                session.start_time,
                session.end_time,
            )
            self.store.unschedule(session, self.options.default_duration_minutes)
            return
        session.grid_offset = offset
        self.store.upsert(session)

    def _validate(self, candidate: Placement, extent: GridExtent) -> None:
        if self.store.location(candidate.location_id) is None:
            raise ValidationError(OUTSIDE_GRID_MESSAGE)
        if not extent.contains(candidate.grid_offset, candidate.height):
            raise ValidationError(OUTSIDE_GRID_MESSAGE)
        blocking = find_overlap(
            candidate,
            self.placements_for_day(extent.day),
            exclude_id=candidate.session_id,
        )
        if blocking is not None:
            raise CollisionError(COLLISION_MESSAGE, blocking.session_id)

    def _reject(
        self, session: Session, prior: PlacementState, error: Exception
    ) -> PlacementResult:
        self._states[session.id] = PlacementState.REVERTING
        logger.warning("rejected placement of session %s: %s", session.id, error)
        self.bus.publish(PlacementConflict(session_id=session.id, message=str(error)))
        self._states[session.id] = prior
        return PlacementResult(session, prior, False, str(error))

    def _refuse_read_only(self, session: Session) -> PlacementResult:
        logger.debug("ignored change to session %s in read-only mode", session.id)
        return PlacementResult(session, self.state_of(session.id), False, READ_ONLY_MESSAGE)

    def _recount(self, location_ids: Iterable[int | None]) -> None:
        counts = {
            location_id: self.store.count_for_location(location_id, self.selected_day)
            for location_id in location_ids
            if location_id is not None
        }
        if counts:
            self.bus.publish(LocationsRecounted(counts=counts))

    def _current_state(self, session: Session) -> PlacementState:
        if session.is_scheduled:
            return PlacementState.SCHEDULED
        return PlacementState.UNSCHEDULED

    def preview(self, session: Session, offset: int, height: float) -> Preview:
        extent = self.extent
        return Preview(
            session_id=session.id,
            grid_offset=offset,
            height=height,
            start_time=extent.time_at(offset),
            end_time=extent.time_at(offset + height),
            inside_grid=extent.contains(offset, height),
        )

    def drag_move(
        self,
        session_id: int,
        delta_x: float,
        delta_y: float,
        origin_offset: float | None = None,
    ) -> Preview | None:
        session = self.store.get(session_id)
        if self.read_only:
            return None
        gesture = self._pending.get(session_id)
        if gesture is None or gesture.kind != "drag":
            if origin_offset is None:
                on_grid = session.is_scheduled and session.day == self.selected_day
                origin_offset = session.grid_offset if on_grid else 0
            gesture = PendingGesture(session_id, "drag", origin_offset)
            self._pending[session_id] = gesture
        gesture.delta_x += delta_x
        gesture.delta_y += delta_y
        offset = self.grid.snap_to_grid(gesture.raw_offset)
        return self.preview(session, offset, self.height_of(session))

    def drop_cancelled(self, session_id: int) -> PlacementState:
        self._pending.pop(session_id, None)
        return self.state_of(session_id)

    def place(
        self,
        session_id: int,
        location_id: int,
        raw_offset: float | None = None,
        silent: bool = False,
    ) -> PlacementResult:
        session = self.store.get(session_id)
        if self.read_only:
            return self._refuse_read_only(session)
        prior = self._current_state(session)
        gesture = self._pending.pop(session_id, None)
        if raw_offset is None:
            if gesture is None:
                return self._reject(session, prior, ValidationError(OUTSIDE_GRID_MESSAGE))
            raw_offset = gesture.raw_offset

        self._states[session_id] = PlacementState.PENDING_PLACEMENT
        extent = self.extent
        candidate = Placement(
            session_id=session_id,
            location_id=location_id,
            grid_offset=self.grid.snap_to_grid(raw_offset),
            height=self.height_of(session),
        )
        try:
            self._validate(candidate, extent)
        except (ValidationError, CollisionError) as error:
            return self._reject(session, prior, error)

        from_location_id = session.location_id
        session.location_id = location_id
        session.grid_offset = candidate.grid_offset
        session.set_times(extent.time_at(candidate.grid_offset), extent.time_at(candidate.end))
        self.store.upsert(session)
        self._states[session_id] = PlacementState.SCHEDULED
        logger.debug(
            "placed session %s in location %s at %s",
            session_id,
            location_id,
            session.start_time,
        )

        self.bus.publish(
            SessionPlaced(
                session=session,
                from_location_id=from_location_id,
                to_location_id=location_id,
            )
        )
        self._recount([from_location_id, location_id])
        if not silent:
            self.bus.publish(SessionChanged(session=session))
        return PlacementResult(session, PlacementState.SCHEDULED, True)

    drop = place

    def resize_move(self, session_id: int, raw_height: float) -> Preview | None:
        session = self.store.get(session_id)
        if self.read_only or not session.is_scheduled:
            return None
        height = max(self.grid.unit_size, self.grid.snap_to_grid(raw_height))
        gesture = self._pending.get(session_id)
        if gesture is None or gesture.kind != "resize":
            gesture = PendingGesture(session_id, "resize", session.grid_offset)
            self._pending[session_id] = gesture
        gesture.height = height
        return self.preview(session, session.grid_offset, height)

    def resize_end(self, session_id: int) -> PlacementResult:
        session = self.store.get(session_id)
        if self.read_only:
            return self._refuse_read_only(session)
        gesture = self._pending.pop(session_id, None)
        if gesture is None or gesture.kind != "resize" or not session.is_scheduled:
            return PlacementResult(
                session, self._current_state(session), False, "No resize in progress."
            )

        self._states[session_id] = PlacementState.PENDING_PLACEMENT
        extent = self.extent_for(session.day)
        candidate = Placement(
            session_id=session_id,
            location_id=session.location_id,
            grid_offset=session.grid_offset,
            height=gesture.height,
        )
        try:
            self._validate(candidate, extent)
        except (ValidationError, CollisionError) as error:
            return self._reject(session, PlacementState.SCHEDULED, error)

        session.set_times(extent.time_at(candidate.grid_offset), extent.time_at(candidate.end))
        self.store.upsert(session)
        self._states[session_id] = PlacementState.SCHEDULED
        logger.debug("resized session %s to %s minutes", session_id, session.duration_minutes)
        self.bus.publish(SessionChanged(session=session))
        return PlacementResult(session, PlacementState.SCHEDULED, True)

    def resize(self, session_id: int, raw_height: float) -> PlacementResult:
        session = self.store.get(session_id)
        if self.read_only:
            return self._refuse_read_only(session)
        if self.resize_move(session_id, raw_height) is None:
            return PlacementResult(
                session,
                self._current_state(session),
                False,
                "Only scheduled sessions can be resized.",
            )
        return self.resize_end(session_id)

    def remove(self, session_id: int, broadcast: bool = True) -> PlacementResult:
        session = self.store.get(session_id)
        if self.read_only:
            return self._refuse_read_only(session)
        self._pending.pop(session_id, None)
        from_location_id = session.location_id
        self.store.unschedule(session, self.options.default_duration_minutes)
        self._states[session_id] = PlacementState.UNSCHEDULED
        logger.debug("unscheduled session %s", session_id)
        self._recount([from_location_id])
        if broadcast:
            self.bus.publish(
                SessionUnscheduled(session=session, from_location_id=from_location_id)
            )
            self.bus.publish(SessionChanged(session=session))
        return PlacementResult(session, PlacementState.UNSCHEDULED, True)

    def clear_overlaps(self) -> list[PlacementResult]:
        if self.read_only:
            return []
        colliding = find_all_overlaps(self.placements_for_day(self.selected_day))
        return [self.remove(placement.session_id) for placement in colliding]

    def search_unscheduled(self, query: str) -> list[Session]:
        self._pending.clear()
        if self.read_only:
            return []
        return self.store.search_unscheduled(query)

    def add_location(self, location: Location) -> Location | None:
        if self.read_only:
            logger.debug("ignored new location %s in read-only mode", location.name)
            return None
        self.store.add_location(location)
        self.bus.publish(LocationAdded(location=location, grid_height=self.extent.height))
        return location

    def session_view(self, session: Session) -> SessionView:
        track = self.store.track(session.track_id)
        if track is not None:
            color = track_color(track.id, track.name, track.color)
        else:
            color = track_color(None, None)
        return SessionView(
            session=session,
            # one extra unit for the header row
            top=session.grid_offset + self.grid.unit_size,
            height=self.height_of(session),
            color=color,
            time_label=time_range_label(session.start_time, session.end_time),
            info=self.store.describe(session),
        )

    def select_day(self, day: dt.date) -> DayView:
        known = {bucket.day for bucket in self.store.day_buckets()}
        if day not in known:
            raise ValidationError(f"{day.isoformat()} is not a day of this event")
        self.selected_day = day
        self._pending.clear()
        return self.day_view()

    def day_view(self) -> DayView:
        day = self.selected_day
        locations = self.store.locations()
        scheduled = [
            self.session_view(session)
            for session in self.store.sessions_for_day(day)
            if session.is_scheduled
        ]
        unscheduled = [] if self.read_only else self.store.unscheduled_for_day(day)
        counts = {
            location.id: self.store.count_for_location(location.id, day)
            for location in locations
        }
        return DayView(
            bucket=DayBucket(day),
            extent=self.extent_for(day),
            locations=locations,
            scheduled=scheduled,
            unscheduled=unscheduled,
            counts=counts,
        )
