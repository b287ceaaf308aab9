import datetime as dt

import pytest

from conftest import make_event, make_locations, make_session
from grid_time import TimeGrid
from placement import (
    COLLISION_MESSAGE,
    OUTSIDE_GRID_MESSAGE,
    READ_ONLY_MESSAGE,
    PlacementState,
    Scheduler,
    SchedulerOptions,
)
from scheduling_errors import ValidationError
from scheduling_events import (
    EventBus,
    EventLog,
    LocationAdded,
    LocationsRecounted,
    PlacementConflict,
    SessionChanged,
    SessionPlaced,
    SessionUnscheduled,
)
from session_store import Location, SessionStore

FIRST_DAY = dt.date(2013, 5, 1)
SECOND_DAY = dt.date(2013, 5, 2)


def make_scheduler(sessions=(), read_only: bool = False) -> tuple[Scheduler, EventLog]:
    bus = EventBus()
    log = EventLog(bus)
    scheduler = Scheduler(
        SessionStore(make_event()), bus, TimeGrid(), SchedulerOptions(read_only=read_only)
    )
    scheduler.load(make_locations(), list(sessions))
    return scheduler, log


def test_place_at_nine_on_first_day() -> None:
    scheduler, log = make_scheduler([make_session(1)])
    session = scheduler.store.get(1)
    session.duration_minutes = 60
    session.is_reset = False

    result = scheduler.place(1, 1, raw_offset=190)

    assert result.accepted
    assert result.state is PlacementState.SCHEDULED
    assert session.grid_offset == 192
    assert scheduler.height_of(session) == 4 * 48
    assert session.start_time == dt.datetime(2013, 5, 1, 9, 0)
    assert session.end_time == dt.datetime(2013, 5, 1, 10, 0)
    assert scheduler.store.membership(1) == FIRST_DAY

    placed = log.of_type(SessionPlaced)
    assert len(placed) == 1
    assert placed[0].from_location_id is None
    assert placed[0].to_location_id == 1
    assert log.of_type(LocationsRecounted)[0].counts == {1: 1}
    assert [event.session.id for event in log.of_type(SessionChanged)] == [1]
    view = scheduler.session_view(session)
    assert view.top == 192 + 48
    assert view.time_label == "9:00 AM to 10:00 AM"


def test_reset_session_uses_default_duration() -> None:
    scheduler, _ = make_scheduler([make_session(1)])
    scheduler.place(1, 2, raw_offset=0)
    session = scheduler.store.get(1)
    assert session.start_time == dt.datetime(2013, 5, 1, 8, 0)
    assert session.end_time == dt.datetime(2013, 5, 1, 8, 30)
    assert not session.is_reset


def test_silent_place_does_not_request_sync() -> None:
    scheduler, log = make_scheduler([make_session(1)])
    scheduler.place(1, 1, raw_offset=0, silent=True)
    assert log.of_type(SessionPlaced)
    assert log.of_type(SessionChanged) == []


def test_adjacent_sessions_are_accepted() -> None:
    sessions = [make_session(1, "2013-05-01 09:00", "2013-05-01 10:00", location_id=1)]
    scheduler, _ = make_scheduler(sessions + [make_session(2)])
    assert scheduler.place(2, 1, raw_offset=scheduler.extent.offset_for(
        dt.datetime(2013, 5, 1, 10, 0)
    )).accepted
    assert scheduler.store.get(2).start_time == dt.datetime(2013, 5, 1, 10, 0)


def test_collision_with_unscheduled_session_reverts() -> None:
    sessions = [make_session(1, "2013-05-01 09:00", "2013-05-01 10:00", location_id=1)]
    scheduler, log = make_scheduler(sessions + [make_session(2)])
    session = scheduler.store.get(2)
    before = (session.start_time, session.end_time, session.location_id, session.grid_offset)

    result = scheduler.place(2, 1, raw_offset=240)

    assert not result.accepted
    assert result.state is PlacementState.UNSCHEDULED
    assert result.message == COLLISION_MESSAGE
    assert (session.start_time, session.end_time, session.location_id, session.grid_offset) == before
    assert scheduler.store.membership(2) is None
    conflicts = log.of_type(PlacementConflict)
    assert [(c.session_id, c.message) for c in conflicts] == [(2, COLLISION_MESSAGE)]
    assert log.of_type(SessionChanged) == []
    assert scheduler.state_of(2) is PlacementState.UNSCHEDULED


def test_collision_when_moving_scheduled_session_keeps_old_slot() -> None:
    sessions = [
        make_session(1, "2013-05-01 09:00", "2013-05-01 10:00", location_id=1),
        make_session(2, "2013-05-01 09:00", "2013-05-01 10:00", location_id=2),
    ]
    scheduler, log = make_scheduler(sessions)

    result = scheduler.place(2, 1, raw_offset=192 + 48)

    assert not result.accepted
    assert result.state is PlacementState.SCHEDULED
    moved = scheduler.store.get(2)
    assert moved.location_id == 2
    assert moved.start_time == dt.datetime(2013, 5, 1, 9, 0)
    assert log.of_type(SessionPlaced) == []


def test_drop_outside_grid_is_rejected() -> None:
    scheduler, log = make_scheduler([make_session(1)])
    result = scheduler.place(1, 1, raw_offset=scheduler.extent.body_size)
    assert not result.accepted
    assert result.message == OUTSIDE_GRID_MESSAGE
    assert scheduler.place(1, 99, raw_offset=0).message == OUTSIDE_GRID_MESSAGE
    assert len(log.of_type(PlacementConflict)) == 2


def test_no_overlap_after_any_sequence_of_commits() -> None:
    scheduler, _ = make_scheduler([make_session(n) for n in range(1, 9)])
    offsets = [0, 48, 96, 24, 200, 230, 0, 400]
    for session_id, offset in zip(range(1, 9), offsets):
        scheduler.place(session_id, 1, raw_offset=offset)
    placements = scheduler.placements_for_day(FIRST_DAY)
    for index, left in enumerate(placements):
        for right in placements[index + 1:]:
            assert left.end <= right.grid_offset or right.end <= left.grid_offset


def test_drag_preview_accumulates_without_touching_store() -> None:
    scheduler, log = make_scheduler([make_session(1)])
    scheduler.drag_move(1, 10, 100)
    preview = scheduler.drag_move(1, 5, 95)
    assert preview.grid_offset == 192
    assert preview.inside_grid
    assert preview.label == "9:00 AM to 9:30 AM"
    assert scheduler.state_of(1) is PlacementState.PENDING_PLACEMENT
    assert scheduler.store.get(1).location_id is None
    assert log.events == []

    result = scheduler.drop(1, 2)
    assert result.accepted
    assert scheduler.store.get(1).start_time == dt.datetime(2013, 5, 1, 9, 0)


def test_drop_cancelled_restores_prior_state() -> None:
    scheduler, _ = make_scheduler([make_session(1)])
    scheduler.drag_move(1, 0, 96)
    assert scheduler.drop_cancelled(1) is PlacementState.UNSCHEDULED
    result = scheduler.drop(1, 1)
    assert not result.accepted


def test_resize_changes_end_time() -> None:
    sessions = [make_session(1, "2013-05-01 09:00", "2013-05-01 10:00", location_id=1)]
    scheduler, log = make_scheduler(sessions)
    result = scheduler.resize(1, 300)
    session = scheduler.store.get(1)
    assert result.accepted
    assert session.grid_offset == 192
    assert session.end_time == dt.datetime(2013, 5, 1, 10, 30)
    assert session.duration_minutes == 90
    assert len(log.of_type(SessionChanged)) == 1


def test_resize_is_clamped_to_one_unit() -> None:
    sessions = [make_session(1, "2013-05-01 09:00", "2013-05-01 10:00", location_id=1)]
    scheduler, _ = make_scheduler(sessions)
    assert scheduler.resize(1, 5).accepted
    assert scheduler.store.get(1).end_time == dt.datetime(2013, 5, 1, 9, 15)


def test_resize_into_neighbour_is_rejected() -> None:
    sessions = [
        make_session(1, "2013-05-01 09:00", "2013-05-01 10:00", location_id=1),
        make_session(2, "2013-05-01 10:00", "2013-05-01 11:00", location_id=1),
    ]
    scheduler, log = make_scheduler(sessions)
    result = scheduler.resize(1, 288)
    assert not result.accepted
    assert result.state is PlacementState.SCHEDULED
    assert scheduler.store.get(1).end_time == dt.datetime(2013, 5, 1, 10, 0)
    assert scheduler.height_of(scheduler.store.get(1)) == 192
    assert len(log.of_type(PlacementConflict)) == 1


def test_resize_requires_scheduled_session() -> None:
    scheduler, _ = make_scheduler([make_session(1)])
    assert not scheduler.resize(1, 96).accepted


def test_remove_unschedules_and_broadcasts() -> None:
    sessions = [make_session(1, "2013-05-01 09:00", "2013-05-01 10:00", location_id=1)]
    scheduler, log = make_scheduler(sessions)
    result = scheduler.remove(1)
    assert result.accepted
    assert result.state is PlacementState.UNSCHEDULED
    assert scheduler.store.membership(1) is None
    assert log.of_type(LocationsRecounted)[0].counts == {1: 0}
    assert log.of_type(SessionUnscheduled)[0].from_location_id == 1
    assert len(log.of_type(SessionChanged)) == 1


def test_remove_without_broadcast_only_recounts() -> None:
    sessions = [make_session(1, "2013-05-01 09:00", "2013-05-01 10:00", location_id=1)]
    scheduler, log = make_scheduler(sessions)
    scheduler.remove(1, broadcast=False)
    assert [type(event) for event in log.events] == [LocationsRecounted]


def test_day_switch_shows_only_that_day() -> None:
    sessions = [
        make_session(1, "2013-05-01 09:00", "2013-05-01 10:00", location_id=1),
        make_session(2, "2013-05-02 09:00", "2013-05-02 10:00", location_id=1),
        make_session(3),
    ]
    scheduler, _ = make_scheduler(sessions)
    scheduler.drag_move(3, 0, 48)

    view = scheduler.select_day(SECOND_DAY)

    assert [item.session.id for item in view.scheduled] == [2]
    assert [session.id for session in view.unscheduled] == [3]
    assert view.extent.start_of_day == dt.datetime(2013, 5, 2, 0, 0)
    assert view.scheduled[0].top == 36 * 48 + 48
    assert view.counts == {1: 1, 2: 0}
    assert scheduler.state_of(3) is PlacementState.UNSCHEDULED


def test_select_unknown_day_is_rejected() -> None:
    scheduler, _ = make_scheduler()
    with pytest.raises(ValidationError):
        scheduler.select_day(dt.date(2014, 1, 1))


def test_load_unschedules_sessions_outside_grid() -> None:
    sessions = [
        make_session(1, "2013-05-01 06:00", "2013-05-01 07:00", location_id=1),
        make_session(2, "2013-05-01 09:00", "2013-05-01 10:00"),
        make_session(3, "2013-05-01 09:00", "2013-05-01 10:00", location_id=1),
    ]
    rejected = make_session(4, "2013-05-01 11:00", "2013-05-01 12:00", location_id=1)
    rejected.state = "pending"
    scheduler, log = make_scheduler(sessions + [rejected])
    assert scheduler.store.membership(1) is None
    assert scheduler.store.membership(2) is None
    assert scheduler.store.membership(3) == FIRST_DAY
    assert 4 not in scheduler.store
    assert log.events == []


def test_clear_overlaps_unschedules_colliding_sessions() -> None:
    sessions = [
        make_session(1, "2013-05-01 09:00", "2013-05-01 10:00", location_id=1),
        make_session(2, "2013-05-01 09:30", "2013-05-01 10:30", location_id=1),
        make_session(3, "2013-05-01 11:00", "2013-05-01 12:00", location_id=1),
    ]
    scheduler, log = make_scheduler(sessions)
    results = scheduler.clear_overlaps()
    assert sorted(result.session.id for result in results) == [1, 2]
    assert [s.id for s in scheduler.store.sessions_for_day(FIRST_DAY)] == [3]
    assert len(log.of_type(SessionUnscheduled)) == 2


def test_add_location_publishes_grid_height() -> None:
    scheduler, log = make_scheduler()
    scheduler.add_location(Location(id=3, name="Foyer"))
    added = log.of_type(LocationAdded)
    assert added[0].location.name == "Foyer"
    assert added[0].grid_height == scheduler.extent.height
    assert [location.id for location in scheduler.day_view().locations] == [3, 1, 2]


def test_read_only_mode_rejects_every_change() -> None:
    sessions = [
        make_session(1, "2013-05-01 09:00", "2013-05-01 10:00", location_id=1),
        make_session(2),
    ]
    scheduler, log = make_scheduler(sessions, read_only=True)
    assert scheduler.place(2, 1, raw_offset=0).message == READ_ONLY_MESSAGE
    assert not scheduler.resize(1, 96).accepted
    assert not scheduler.remove(1).accepted
    assert scheduler.clear_overlaps() == []
    assert scheduler.drag_move(2, 0, 48) is None
    assert scheduler.add_location(Location(id=3, name="Foyer")) is None
    assert log.events == []
    view = scheduler.select_day(FIRST_DAY)
    assert view.unscheduled == []
    assert [item.session.id for item in view.scheduled] == [1]


def test_move_keeps_durations_off_the_grid_unit() -> None:
    sessions = [
        make_session(1, "2013-05-01 09:00", "2013-05-01 09:20", location_id=1),
        make_session(2, "2013-05-01 10:00", "2013-05-01 10:50", location_id=1),
    ]
    scheduler, log = make_scheduler(sessions)
    for session_id in (1, 2):
        session = scheduler.store.get(session_id)
        assert scheduler.place(session_id, 2, raw_offset=session.grid_offset).accepted

    short, long = scheduler.store.get(1), scheduler.store.get(2)
    assert short.location_id == long.location_id == 2
    assert short.duration_minutes == 20
    assert short.end_time == dt.datetime(2013, 5, 1, 9, 20)
    assert long.duration_minutes == 50
    assert long.end_time == dt.datetime(2013, 5, 1, 10, 50)
    payload_ends = [event.session.end_time for event in log.of_type(SessionChanged)]
    assert payload_ends == [dt.datetime(2013, 5, 1, 9, 20), dt.datetime(2013, 5, 1, 10, 50)]


def test_partial_unit_overlap_is_a_collision() -> None:
    sessions = [
        make_session(1, "2013-05-01 09:00", "2013-05-01 09:20", location_id=1),
        make_session(2),
    ]
    scheduler, _ = make_scheduler(sessions)
    nine_fifteen = scheduler.extent.offset_for(dt.datetime(2013, 5, 1, 9, 15))
    result = scheduler.place(2, 1, raw_offset=nine_fifteen)
    assert not result.accepted
    assert result.message == COLLISION_MESSAGE


def test_clear_overlaps_finds_partial_unit_overlap() -> None:
    sessions = [
        make_session(1, "2013-05-01 09:00", "2013-05-01 09:20", location_id=1),
        make_session(2, "2013-05-01 09:15", "2013-05-01 09:45", location_id=1),
    ]
    scheduler, _ = make_scheduler(sessions)
    assert sorted(result.session.id for result in scheduler.clear_overlaps()) == [1, 2]
