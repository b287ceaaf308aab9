#!/usr/bin/env python3
"""Load an event's sessions from the remote API and edit the schedule grid."""

from __future__ import annotations

import argparse
import datetime as dt
import logging
from dataclasses import dataclass
from pathlib import Path

from grid_time import day_label, parse_day
from placement import DayView, PlacementResult, Scheduler
from remote_api import HttpRemoteService, RemoteService, location_payload
from scheduler_config import load_config, normalize_config, scheduler_options, time_grid
from scheduling_errors import RemoteError, ValidationError
from scheduling_events import (
    EventBus,
    EventLog,
    LocationCreated,
    LocationCreateFailed,
    PlacementConflict,
    SyncFailed,
    SyncSucceeded,
)
from session_store import MainEvent, Session, SessionStore
from sync_coordinator import SyncCoordinator, TaskQueue

NOTICE_TYPES = (
    PlacementConflict,
    SyncSucceeded,
    SyncFailed,
    LocationCreated,
    LocationCreateFailed,
)


@dataclass
class ScheduleContext:
    event: MainEvent
    store: SessionStore
    bus: EventBus
    scheduler: Scheduler
    queue: TaskQueue
    sync: SyncCoordinator
    notices: EventLog

    def flush(self) -> int:
        return self.queue.run_pending()


def load_schedule(
    remote: RemoteService, event_id: int, config: dict | None = None
) -> ScheduleContext:
    config = config or normalize_config(None)
    event = remote.get_event(event_id)
    locations = remote.list_locations(event_id)
    tracks = remote.list_tracks(event_id)
    sessions = remote.list_sessions(event_id)

    store = SessionStore(event)
    bus = EventBus()
    notices = EventLog(bus)
    options = scheduler_options(config)
    scheduler = Scheduler(store, bus, time_grid(config), options)
    scheduler.load(locations, sessions, tracks)

    queue = TaskQueue()
    sync = SyncCoordinator(remote, event_id, bus, queue, read_only=options.read_only)
    sync.attach()
    return ScheduleContext(
        event=event,
        store=store,
        bus=bus,
        scheduler=scheduler,
        queue=queue,
        sync=sync,
        notices=notices,
    )


def notice_lines(events: list[object]) -> list[str]:
    lines = []
    for event in events:
        if not isinstance(event, NOTICE_TYPES):
            continue
        failed = isinstance(event, (PlacementConflict, SyncFailed, LocationCreateFailed))
        lines.append(f"{'!' if failed else '-'} {event.message}")
    return lines


def format_session(session: Session) -> str:
    return f"#{session.id} {session.title or '(Untitled)'}"


def format_day(view: DayView) -> list[str]:
    extent = view.extent
    lines = [
        f"{view.bucket.label} "
        f"({extent.start_of_day:%H:%M} - {extent.end_of_day:%H:%M}, {extent.unit_count} units)"
    ]
    for location in view.locations:
        lines.append(f"{location.name} [{view.counts.get(location.id, 0)}]")
        for item in view.for_location(location.id):
            lines.append(f"  {item.time_label:<22} {format_session(item.session)}")
    orphans = [
        item
        for item in view.scheduled
        if item.session.location_id not in {location.id for location in view.locations}
    ]
    for item in orphans:
        lines.append(f"  {item.time_label:<22} {format_session(item.session)} (unknown room)")
    if view.unscheduled:
        lines.append("Unscheduled:")
        for session in view.unscheduled:
            lines.append(f"  {format_session(session)}")
    return lines


def resolve_day(scheduler: Scheduler, text: str | None) -> dt.date:
    if not text:
        return scheduler.selected_day
    try:
        day = parse_day(text)
    except ValueError:
        raise SystemExit(f"Unrecognised day: {text}")
    known = [bucket.day for bucket in scheduler.store.day_buckets()]
    if day not in known:
        labels = ", ".join(day_label(item) for item in known)
        raise SystemExit(f"{day_label(day)} is not an event day (choose from {labels})")
    return day


def resolve_session(store: SessionStore, session_id: int) -> Session:
    session = store.find(session_id)
    if session is None:
        raise SystemExit(f"Unknown session: {session_id}")
    return session


def parse_clock_arg(value: str) -> dt.time:
    try:
        return dt.datetime.strptime(value, "%H:%M").time()
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected HH:MM, got {value!r}")


def report(context: ScheduleContext, results: list[PlacementResult]) -> int:
    context.flush()
    for result in results:
        status = "ok" if result.accepted else "rejected"
        line = f"{status}: {format_session(result.session)} is {result.state.value}"
        if result.message:
            line += f" ({result.message})"
        print(line)
    for line in notice_lines(context.notices.drain()):
        print(line)
    return 0 if all(result.accepted for result in results) else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Inspect and edit an event's session grid through the remote API."
    )
    parser.add_argument("--config", type=Path, default=Path("scheduler.json"))
    parser.add_argument("--event-id", type=int, help="Event to load (overrides config)")
    parser.add_argument("--base-url", help="Remote API base URL (overrides config)")
    parser.add_argument("--verbose", "-v", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("days", help="List the event's days")

    show_parser = subparsers.add_parser("show", help="Show the grid for a day")
    show_parser.add_argument("--day", help='Day, e.g. "2nd May 2013" or 2013-05-02')

    unscheduled_parser = subparsers.add_parser("unscheduled", help="List unscheduled sessions")
    unscheduled_parser.add_argument("--search", default="", help="Fuzzy title filter")

    place_parser = subparsers.add_parser("place", help="Place a session on the grid")
    place_parser.add_argument("session_id", type=int)
    place_parser.add_argument("--location", type=int, required=True, help="Location id")
    place_parser.add_argument("--at", type=parse_clock_arg, required=True, help="Start, HH:MM")
    place_parser.add_argument("--day")

    resize_parser = subparsers.add_parser("resize", help="Change a session's length")
    resize_parser.add_argument("session_id", type=int)
    resize_parser.add_argument("--minutes", type=int, required=True)

    remove_parser = subparsers.add_parser("remove", help="Move a session to unscheduled")
    remove_parser.add_argument("session_id", type=int)

    overlaps_parser = subparsers.add_parser(
        "clear-overlaps", help="Unschedule every overlapping session on a day"
    )
    overlaps_parser.add_argument("--day")

    location_parser = subparsers.add_parser("add-location", help="Create a location")
    location_parser.add_argument("--name", required=True)
    location_parser.add_argument("--room")
    location_parser.add_argument("--floor", type=int)
    location_parser.add_argument("--latitude", type=float)
    location_parser.add_argument("--longitude", type=float)
    return parser


def run_command(args: argparse.Namespace, context: ScheduleContext) -> int:
    scheduler = context.scheduler
    store = context.store

    if args.command == "days":
        for bucket in store.day_buckets():
            print(f"{bucket.day.isoformat()}  {bucket.label}")
        return 0

    if args.command == "show":
        view = scheduler.select_day(resolve_day(scheduler, args.day))
        print("\n".join(format_day(view)))
        return 0

    if args.command == "unscheduled":
        sessions = scheduler.search_unscheduled(args.search)
        if not sessions:
            print("No unscheduled sessions.")
        for session in sessions:
            print(format_session(session))
        return 0

    if args.command == "place":
        session = resolve_session(store, args.session_id)
        day = resolve_day(scheduler, args.day)
        scheduler.select_day(day)
        raw_offset = scheduler.extent.offset_for(dt.datetime.combine(day, args.at))
        return report(context, [scheduler.place(session.id, args.location, raw_offset)])

    if args.command == "resize":
        session = resolve_session(store, args.session_id)
        if session.is_scheduled:
            scheduler.select_day(session.day)
        raw_height = scheduler.grid.to_grid_units(args.minutes)
        return report(context, [scheduler.resize(session.id, raw_height)])

    if args.command == "remove":
        session = resolve_session(store, args.session_id)
        return report(context, [scheduler.remove(session.id)])

    if args.command == "clear-overlaps":
        scheduler.select_day(resolve_day(scheduler, args.day))
        results = scheduler.clear_overlaps()
        if not results:
            print("No overlapping sessions.")
        return report(context, results)

    if args.command == "add-location":
        payload = location_payload(
            args.name,
            room=args.room,
            floor=args.floor,
            latitude=args.latitude,
            longitude=args.longitude,
        )
        context.sync.create_location(payload, scheduler.add_location)
        return report(context, [])

    raise SystemExit(f"Unknown command: {args.command}")


def main() -> None:
    args = build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config)
    if args.event_id is not None:
        config["event_id"] = args.event_id
    if args.base_url:
        config["remote"]["base_url"] = args.base_url
    if config["event_id"] is None:
        raise SystemExit("No event id given (use --event-id or set event_id in the config)")

    remote = HttpRemoteService(
        config["remote"]["base_url"],
        token=config["remote"]["token"],
        timeout=config["remote"]["timeout"],
    )
    try:
        context = load_schedule(remote, config["event_id"], config)
    except RemoteError as exc:
        raise SystemExit(f"Could not load event {config['event_id']}: {exc}")

    try:
        status = run_command(args, context)
    except ValidationError as exc:
        raise SystemExit(str(exc))
    raise SystemExit(status)


if __name__ == "__main__":
    main()
