"""Client for the remote event API that owns sessions and locations."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import requests

from grid_time import parse_remote_time
from scheduling_errors import RemoteError
from session_store import Location, MainEvent, Session, Speaker, Track

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
LOCATION_PAYLOAD_KEYS = ("room", "latitude", "name", "longitude", "floor")


class RemoteService(Protocol):
    def get_event(self, event_id: int) -> MainEvent: ...

    def list_locations(self, event_id: int) -> list[Location]: ...

    def list_tracks(self, event_id: int) -> list[Track]: ...

    def list_sessions(self, event_id: int) -> list[Session]: ...

    def create_location(self, event_id: int, payload: dict) -> Location: ...

    def update_session(self, event_id: int, session_id: int, payload: dict) -> None: ...


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _nested_id(raw: dict, nested_key: str, flat_key: str) -> int | None:
    nested = raw.get(nested_key)
    if isinstance(nested, dict):
        return _optional_int(nested.get("id"))
    return _optional_int(raw.get(flat_key))


def parse_event(raw: dict) -> MainEvent:
    start_time = parse_remote_time(raw.get("start_time"))
    end_time = parse_remote_time(raw.get("end_time"))
    if start_time is None or end_time is None:
        raise RemoteError(f"event {raw.get('id')} has no start or end time")
    return MainEvent(id=int(raw["id"]), start_time=start_time, end_time=end_time)


def parse_location(raw: dict) -> Location:
    return Location(
        id=int(raw["id"]),
        name=str(raw.get("name") or ""),
        room=raw.get("room"),
        floor=_optional_int(raw.get("floor")),
        latitude=_optional_float(raw.get("latitude")),
        longitude=_optional_float(raw.get("longitude")),
    )


def parse_track(raw: dict | None) -> Track | None:
    if not isinstance(raw, dict) or raw.get("id") is None:
        return None
    return Track(id=int(raw["id"]), name=str(raw.get("name") or ""), color=raw.get("color"))


def parse_session(raw: dict) -> Session:
    speakers = [
        Speaker(id=int(item["id"]), name=str(item.get("name") or ""))
        for item in raw.get("speakers") or []
        if isinstance(item, dict) and item.get("id") is not None
    ]
    session = Session(
        id=int(raw["id"]),
        title=str(raw.get("title") or ""),
        location_id=_nested_id(raw, "microlocation", "microlocation_id"),
        track_id=_nested_id(raw, "track", "track_id"),
        speakers=speakers,
        state=str(raw.get("state") or ""),
    )
    start_time = parse_remote_time(raw.get("start_time"))
    end_time = parse_remote_time(raw.get("end_time"))
    if start_time is not None and end_time is not None:
        session.set_times(start_time, end_time)
    else:
        session.start_time = start_time
        session.end_time = end_time
    return session


def location_payload(
    name: str,
    room: str | None = None,
    floor: int | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
) -> dict:
    return {
        "room": room,
        "latitude": latitude,
        "name": name,
        "longitude": longitude,
        "floor": floor,
    }


class HttpRemoteService:
    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        http: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = http or requests.Session()
        self.headers = {"Accept": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.http.request(
                method, url, headers=self.headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise RemoteError(f"{method} {url} failed: {exc}") from exc
        if response.status_code >= 400:
            raise RemoteError(
                f"{method} {url} returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteError(f"{method} {url} returned invalid JSON") from exc

    def _list(self, path: str) -> list[dict]:
        data = self._request("GET", path)
        if not isinstance(data, list):
            raise RemoteError(f"GET {path} did not return a list")
        return [item for item in data if isinstance(item, dict)]

    def get_event(self, event_id: int) -> MainEvent:
        data = self._request("GET", f"events/{event_id}")
        if not isinstance(data, dict):
            raise RemoteError(f"event {event_id} not found")
        return parse_event(data)

    def list_locations(self, event_id: int) -> list[Location]:
        return [parse_location(item) for item in self._list(f"events/{event_id}/microlocations")]

    def list_tracks(self, event_id: int) -> list[Track]:
        tracks = [parse_track(item) for item in self._list(f"events/{event_id}/tracks")]
        return [track for track in tracks if track is not None]

    def list_sessions(self, event_id: int) -> list[Session]:
        sessions = []
        for item in self._list(f"events/{event_id}/sessions"):
            try:
                sessions.append(parse_session(item))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("skipping malformed session %r: %s", item.get("id"), exc)
        return sessions

    def create_location(self, event_id: int, payload: dict) -> Location:
        body = {key: payload.get(key) for key in LOCATION_PAYLOAD_KEYS}
        data = self._request("POST", f"events/{event_id}/microlocations", json=body)
        if not isinstance(data, dict):
            raise RemoteError("location creation returned no location")
        return parse_location(data)

    def update_session(self, event_id: int, session_id: int, payload: dict) -> None:
        self._request("PUT", f"events/{event_id}/sessions/{session_id}", json=payload)
