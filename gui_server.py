#!/usr/bin/env python3
"""Local server that lets a browser grid drive the scheduling engine."""

from __future__ import annotations

import argparse
import itertools
import json
import logging
from http.server import HTTPServer, SimpleHTTPRequestHandler
from pathlib import Path
from typing import Any, Callable
from urllib.parse import parse_qs, urlparse

from grid_time import format_wire_time, parse_day
from placement import DayView, PlacementResult, Preview, SessionView
from remote_api import HttpRemoteService, location_payload
from scheduler_config import load_config
from scheduler_tool import NOTICE_TYPES, ScheduleContext, load_schedule
from scheduling_errors import RemoteError, ValidationError
from session_store import Session

logger = logging.getLogger(__name__)


def session_to_dict(session: Session) -> dict:
    return {
        "id": session.id,
        "title": session.title,
        "start_time": format_wire_time(session.start_time) if session.start_time else None,
        "end_time": format_wire_time(session.end_time) if session.end_time else None,
        "duration": session.duration_minutes,
        "microlocation_id": session.location_id,
        "track_id": session.track_id,
        "scheduled": session.is_scheduled,
    }


def session_view_to_dict(view: SessionView) -> dict:
    data = session_to_dict(view.session)
    data.update(
        {
            "top": view.top,
            "height": view.height,
            "color": view.color,
            "time_label": view.time_label,
            "info": view.info,
        }
    )
    return data


def day_view_to_dict(view: DayView) -> dict:
    extent = view.extent
    return {
        "day": view.bucket.day.isoformat(),
        "label": view.bucket.label,
        "grid": {
            "start": extent.start_of_day.strftime("%H:%M"),
            "end": extent.end_of_day.strftime("%H:%M"),
            "unit_minutes": extent.unit_minutes,
            "unit_size": extent.unit_size,
            "unit_count": extent.unit_count,
            "height": extent.height,
            "time_labels": extent.time_labels(),
        },
        "microlocations": [
            {"id": location.id, "name": location.name, "count": view.counts.get(location.id, 0)}
            for location in view.locations
        ],
        "scheduled": [session_view_to_dict(item) for item in view.scheduled],
        "unscheduled": [session_to_dict(session) for session in view.unscheduled],
    }


def result_to_dict(result: PlacementResult) -> dict:
    return {
        "accepted": result.accepted,
        "state": result.state.value,
        "message": result.message,
        "session": session_to_dict(result.session),
    }


def preview_to_dict(preview: Preview | None) -> dict:
    if preview is None:
        return {"preview": None}
    return {
        "preview": {
            "top": preview.grid_offset,
            "height": preview.height,
            "inside_grid": preview.inside_grid,
            "label": preview.label,
        }
    }


def _optional(payload: dict, key: str, convert: Callable[[Any], Any]) -> Any:
    value = payload.get(key)
    if value is None or value == "":
        return None
    return convert(value)


class NoticeBoard:
    """Serializes user-facing notices and keeps their retry actions."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._retries: dict[int, Callable[[], Any]] = {}

    def collect(self, events: list[object]) -> list[dict]:
        notices = []
        for event in events:
            if not isinstance(event, NOTICE_TYPES):
                continue
            notice_id = next(self._ids)
            retry = getattr(event, "retry", None)
            if retry is not None:
                self._retries[notice_id] = retry
            notices.append(
                {
                    "id": notice_id,
                    "type": type(event).__name__,
                    "message": event.message,
                    "action": getattr(event, "action_label", None),
                    "dismiss_after": getattr(event, "dismiss_after", None),
                    "retryable": retry is not None,
                }
            )
        return notices

    def retry(self, notice_id: int) -> bool:
        action = self._retries.pop(notice_id, None)
        if action is None:
            return False
        action()
        return True


class ScheduleHandler(SimpleHTTPRequestHandler):
    def __init__(
        self,
        *args,
        directory: Path,
        context: ScheduleContext,
        board: NoticeBoard,
        **kwargs,
    ):
        self.context = context
        self.board = board
        super().__init__(*args, directory=str(directory), **kwargs)

    def log_message(self, format: str, *args) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)

    def send_json(self, status: int, payload: dict | list) -> None:
        body = json.dumps(payload, indent=2).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def read_json(self) -> dict | None:
        length = int(self.headers.get("Content-Length", "0"))
        raw = self.rfile.read(length).decode("utf-8") if length else ""
        try:
            payload = json.loads(raw) if raw else {}
        except json.JSONDecodeError:
            return None
        return payload if isinstance(payload, dict) else None

    def do_GET(self) -> None:
        parsed = urlparse(self.path)
        params = parse_qs(parsed.query)
        if parsed.path == "/api/days":
            self.handle_days()
            return
        if parsed.path == "/api/day":
            self.handle_day(params.get("day", [""])[0])
            return
        if parsed.path == "/api/unscheduled":
            self.handle_unscheduled(params.get("q", [""])[0])
            return
        if parsed.path == "/api/notices":
            self.send_json(200, {"notices": self.board.collect(self.context.notices.drain())})
            return
        super().do_GET()

    def do_POST(self) -> None:
        parsed = urlparse(self.path)
        routes = {
            "/api/drag": self.handle_drag,
            "/api/drop": self.handle_drop,
            "/api/drop-cancelled": self.handle_drop_cancelled,
            "/api/resize": self.handle_resize,
            "/api/remove": self.handle_remove,
            "/api/clear-overlaps": self.handle_clear_overlaps,
            "/api/locations": self.handle_create_location,
            "/api/retry": self.handle_retry,
        }
        handler = routes.get(parsed.path)
        if handler is None:
            self.send_error(404, "Unknown endpoint")
            return
        payload = self.read_json()
        if payload is None:
            self.send_json(400, {"error": "Invalid JSON"})
            return
        try:
            status, body = handler(payload)
        except KeyError as exc:
            self.send_json(404, {"error": f"Unknown or missing value: {exc.args[0]}"})
            return
        except (TypeError, ValueError, ValidationError) as exc:
            self.send_json(400, {"error": str(exc)})
            return
        self.context.flush()
        self.send_json(status, body)

    def handle_days(self) -> None:
        days = [
            {"day": bucket.day.isoformat(), "label": bucket.label}
            for bucket in self.context.store.day_buckets()
        ]
        self.send_json(
            200, {"days": days, "selected": self.context.scheduler.selected_day.isoformat()}
        )

    def handle_day(self, day_text: str) -> None:
        scheduler = self.context.scheduler
        try:
            view = scheduler.select_day(parse_day(day_text)) if day_text else scheduler.day_view()
        except (ValueError, ValidationError) as exc:
            self.send_json(400, {"error": str(exc)})
            return
        self.send_json(200, day_view_to_dict(view))

    def handle_unscheduled(self, query: str) -> None:
        sessions = self.context.scheduler.search_unscheduled(query)
        self.send_json(200, {"sessions": [session_to_dict(session) for session in sessions]})

    def handle_drag(self, payload: dict) -> tuple[int, dict]:
        origin = payload.get("origin")
        preview = self.context.scheduler.drag_move(
            int(payload["session_id"]),
            float(payload.get("dx", 0)),
            float(payload.get("dy", 0)),
            origin_offset=float(origin) if origin is not None else None,
        )
        return 200, preview_to_dict(preview)

    def handle_drop(self, payload: dict) -> tuple[int, dict]:
        offset = payload.get("offset")
        result = self.context.scheduler.drop(
            int(payload["session_id"]),
            int(payload["microlocation_id"]),
            float(offset) if offset is not None else None,
        )
        return 200, result_to_dict(result)

    def handle_drop_cancelled(self, payload: dict) -> tuple[int, dict]:
        state = self.context.scheduler.drop_cancelled(int(payload["session_id"]))
        return 200, {"state": state.value}

    def handle_resize(self, payload: dict) -> tuple[int, dict]:
        result = self.context.scheduler.resize(
            int(payload["session_id"]), float(payload["height"])
        )
        return 200, result_to_dict(result)

    def handle_remove(self, payload: dict) -> tuple[int, dict]:
        result = self.context.scheduler.remove(int(payload["session_id"]))
        return 200, result_to_dict(result)

    def handle_clear_overlaps(self, payload: dict) -> tuple[int, dict]:
        results = self.context.scheduler.clear_overlaps()
        return 200, {"removed": [result_to_dict(result) for result in results]}

    def handle_create_location(self, payload: dict) -> tuple[int, dict]:
        name = str(payload.get("name") or "").strip()
        if not name:
            return 400, {"error": "A name is required"}
        body = location_payload(
            name,
            room=payload.get("room"),
            floor=_optional(payload, "floor", int),
            latitude=_optional(payload, "latitude", float),
            longitude=_optional(payload, "longitude", float),
        )
        self.context.sync.create_location(body, self.context.scheduler.add_location)
        return 202, {"queued": True}

    def handle_retry(self, payload: dict) -> tuple[int, dict]:
        if not self.board.retry(int(payload["notice_id"])):
            return 404, {"error": "Nothing to retry"}
        return 202, {"queued": True}


def make_server(
    host: str, port: int, context: ScheduleContext, ui_dir: Path
) -> HTTPServer:
    board = NoticeBoard()
    handler = lambda *args, **kwargs: ScheduleHandler(
        *args,
        directory=ui_dir,
        context=context,
        board=board,
        **kwargs,
    )
    # One request at a time keeps every engine mutation on a single thread.
    return HTTPServer((host, port), handler)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the schedule grid GUI server.")
    parser.add_argument("--config", type=Path, default=Path("scheduler.json"))
    parser.add_argument("--event-id", type=int)
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8787)
    parser.add_argument("--ui-dir", type=Path, default=Path("ui"))
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.ui_dir.exists():
        raise SystemExit(f"UI directory not found: {args.ui_dir}")

    config = load_config(args.config)
    event_id = args.event_id if args.event_id is not None else config["event_id"]
    if event_id is None:
        raise SystemExit("No event id given (use --event-id or set event_id in the config)")

    remote = HttpRemoteService(
        config["remote"]["base_url"],
        token=config["remote"]["token"],
        timeout=config["remote"]["timeout"],
    )
    try:
        context = load_schedule(remote, event_id, config)
    except RemoteError as exc:
        raise SystemExit(f"Could not load event {event_id}: {exc}")

    server = make_server(args.host, args.port, context, args.ui_dir)
    print(f"GUI running at http://{args.host}:{args.port}")
    server.serve_forever()


if __name__ == "__main__":
    main()
