"""Helpers for reading the scheduler's JSON configuration file."""

from __future__ import annotations

import copy
import datetime as dt
import json
import os
from pathlib import Path

from grid_time import TimeGrid
from placement import SchedulerOptions

TOKEN_ENV_VAR = "SCHEDULER_API_TOKEN"

DEFAULT_GRID_OPTIONS = {
    "unit_minutes": 15,
    "unit_size": 48,
    "day_start": "00:00",
    "day_end": "23:59",
    "default_duration_minutes": 30,
    "read_only": False,
}

DEFAULT_REMOTE_OPTIONS = {
    "base_url": "http://localhost:5000/api/v1",
    "token": None,
    "timeout": 10.0,
}

DEFAULT_CONFIG = {
    "event_id": None,
    "grid": DEFAULT_GRID_OPTIONS,
    "remote": DEFAULT_REMOTE_OPTIONS,
}

POSITIVE_INT_KEYS = ("unit_minutes", "unit_size", "default_duration_minutes")


def parse_clock(value: str) -> dt.time:
    return dt.datetime.strptime(value.strip(), "%H:%M").time()


def normalize_config(data: dict | None) -> dict:
    config = copy.deepcopy(DEFAULT_CONFIG)
    if not isinstance(data, dict):
        return config

    try:
        if data.get("event_id") is not None:
            config["event_id"] = int(data["event_id"])
    except (TypeError, ValueError):
        pass

    grid = data.get("grid")
    if isinstance(grid, dict):
        for key in POSITIVE_INT_KEYS:
            try:
                value = int(grid.get(key))
            except (TypeError, ValueError):
                continue
            if value > 0:
                config["grid"][key] = value
        for key in ("day_start", "day_end"):
            value = grid.get(key)
            if not isinstance(value, str):
                continue
            try:
                parse_clock(value)
            except ValueError:
                continue
            config["grid"][key] = value.strip()
        if parse_clock(config["grid"]["day_end"]) <= parse_clock(config["grid"]["day_start"]):
            config["grid"]["day_start"] = DEFAULT_GRID_OPTIONS["day_start"]
            config["grid"]["day_end"] = DEFAULT_GRID_OPTIONS["day_end"]
        if isinstance(grid.get("read_only"), bool):
            config["grid"]["read_only"] = grid["read_only"]

    remote = data.get("remote")
    if isinstance(remote, dict):
        if isinstance(remote.get("base_url"), str) and remote["base_url"].strip():
            config["remote"]["base_url"] = remote["base_url"].strip()
        if isinstance(remote.get("token"), str) and remote["token"]:
            config["remote"]["token"] = remote["token"]
        try:
            timeout = float(remote.get("timeout"))
        except (TypeError, ValueError):
            timeout = None
        if timeout and timeout > 0:
            config["remote"]["timeout"] = timeout

    return config


def load_config(path: Path | None) -> dict:
    if path is None or not path.exists():
        config = copy.deepcopy(DEFAULT_CONFIG)
    else:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            data = None
        config = normalize_config(data)
    token = os.environ.get(TOKEN_ENV_VAR)
    if token:
        config["remote"]["token"] = token
    return config


def save_config(path: Path, config: dict) -> None:
    normalized = normalize_config(config)
    path.write_text(json.dumps(normalized, indent=2), encoding="utf-8")


def time_grid(config: dict) -> TimeGrid:
    grid = config.get("grid", DEFAULT_GRID_OPTIONS)
    return TimeGrid(unit_minutes=grid["unit_minutes"], unit_size=grid["unit_size"])


def scheduler_options(config: dict) -> SchedulerOptions:
    grid = config.get("grid", DEFAULT_GRID_OPTIONS)
    return SchedulerOptions(
        read_only=grid["read_only"],
        default_duration_minutes=grid["default_duration_minutes"],
        day_start=parse_clock(grid["day_start"]),
        day_end=parse_clock(grid["day_end"]),
    )
