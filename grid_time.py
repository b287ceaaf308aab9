"""Conversions between wall-clock time and positions on the scheduling grid.

One grid unit is the smallest schedulable slice of time (15 minutes by
default) and is drawn ``unit_size`` size-units tall (48 by default). The first
row of every grid is a header, so positions measured from the top of the
whole grid carry one extra unit; ``compensate_header`` handles that row.

All times are naive datetimes in UTC.
"""

from __future__ import annotations

import datetime as dt
import math
import re
from dataclasses import dataclass

WIRE_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_DAY_START = dt.time(0, 0)
DEFAULT_DAY_END = dt.time(23, 59)
ORDINAL_RE = re.compile(r"^(\d{1,2})(st|nd|rd|th)\b", re.IGNORECASE)


@dataclass(frozen=True)
class TimeGrid:
    unit_minutes: int = 15
    unit_size: int = 48

    def to_grid_units(self, minutes: float, compensate_header: bool = False) -> float:
        minutes = abs(minutes)
        units = (minutes / self.unit_minutes) * self.unit_size
        if compensate_header:
            units += self.unit_size
        return units

    def to_minutes(self, units: float, compensate_header: bool = False) -> float:
        units = abs(units)
        if compensate_header:
            units -= self.unit_size
        return (units / self.unit_size) * self.unit_minutes

    def snap_to_grid(self, raw_units: float) -> int:
        return int(math.floor(raw_units / self.unit_size + 0.5)) * self.unit_size

    def height_for(self, duration_minutes: float) -> float:
        # Not snapped; only drag offsets and resized heights are.
        return self.to_grid_units(duration_minutes)


@dataclass(frozen=True)
class GridExtent:
    day: dt.date
    start_of_day: dt.datetime
    end_of_day: dt.datetime
    grid: TimeGrid

    @property
    def unit_minutes(self) -> int:
        return self.grid.unit_minutes

    @property
    def unit_size(self) -> int:
        return self.grid.unit_size

    @property
    def unit_count(self) -> int:
        span = (self.end_of_day - self.start_of_day).total_seconds() / 60
        return math.ceil(span / self.unit_minutes) + 1

    @property
    def body_size(self) -> int:
        return (self.unit_count - 1) * self.unit_size

    @property
    def height(self) -> int:
        return self.unit_count * self.unit_size

    def contains(self, offset: int, height: float) -> bool:
        return offset >= 0 and height > 0 and offset + height <= self.body_size

    def time_at(self, offset: float) -> dt.datetime:
        minutes = round(self.grid.to_minutes(offset))
        return self.start_of_day + dt.timedelta(minutes=minutes)

    def offset_for(self, moment: dt.datetime) -> float:
        minutes = (moment - self.start_of_day).total_seconds() / 60
        units = self.grid.to_grid_units(minutes)
        return units if minutes >= 0 else -units

    def time_labels(self) -> list[str]:
        labels = []
        current = self.start_of_day
        step = dt.timedelta(minutes=self.unit_minutes)
        while current <= self.end_of_day:
            labels.append(current.strftime("%H:%M"))
            current += step
        return labels


def grid_extent_for_day(
    day: dt.date,
    event_start: dt.datetime,
    event_end: dt.datetime,
    grid: TimeGrid,
    day_start: dt.time = DEFAULT_DAY_START,
    day_end: dt.time = DEFAULT_DAY_END,
) -> GridExtent:
    start_clock = day_start
    end_clock = day_end
    if day == event_start.date():
        start_clock = event_start.time().replace(second=0, microsecond=0)
    if day == event_end.date():
        end_clock = event_end.time().replace(second=0, microsecond=0)
    if end_clock <= start_clock:
        start_clock, end_clock = day_start, day_end
    return GridExtent(
        day=day,
        start_of_day=dt.datetime.combine(day, start_clock),
        end_of_day=dt.datetime.combine(day, end_clock),
        grid=grid,
    )


def format_wire_time(moment: dt.datetime) -> str:
    return moment.strftime(WIRE_TIME_FORMAT)


def parse_remote_time(value: str | dt.datetime | None) -> dt.datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        moment = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        moment = dt.datetime.fromisoformat(text)
    if moment.tzinfo is not None:
        moment = moment.astimezone(dt.timezone.utc).replace(tzinfo=None)
    return moment


def ordinal(number: int) -> str:
    if 10 <= number % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(number % 10, "th")
    return f"{number}{suffix}"


def day_label(day: dt.date) -> str:
    return f"{ordinal(day.day)} {day.strftime('%B %Y')}"


def parse_day(text: str) -> dt.date:
    value = " ".join(text.split())
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        pass
    value = ORDINAL_RE.sub(r"\1", value)
    return dt.datetime.strptime(value, "%d %B %Y").date()


def clock_label(moment: dt.datetime | dt.time) -> str:
    return moment.strftime("%I:%M %p").lstrip("0")


def time_range_label(start: dt.datetime, end: dt.datetime) -> str:
    return f"{clock_label(start)} to {clock_label(end)}"
