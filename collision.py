"""Overlap checks between placements that share a location column."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class Placement:
    session_id: int | None
    location_id: int
    grid_offset: int
    height: float

    @property
    def end(self) -> int:
        return self.grid_offset + self.height


def intervals_overlap(left: Placement, right: Placement) -> bool:
    return left.grid_offset < right.end and right.grid_offset < left.end


def find_overlap(
    candidate: Placement,
    existing: Iterable[Placement],
    exclude_id: int | None = None,
) -> Placement | None:
    for other in existing:
        if other.location_id != candidate.location_id:
            continue
        if exclude_id is not None and other.session_id == exclude_id:
            continue
        if intervals_overlap(candidate, other):
            return other
    return None


def overlaps(
    candidate: Placement,
    existing: Iterable[Placement],
    exclude_id: int | None = None,
) -> bool:
    return find_overlap(candidate, existing, exclude_id) is not None


def find_all_overlaps(placements: Iterable[Placement]) -> list[Placement]:
    by_location: dict[int, list[Placement]] = defaultdict(list)
    for placement in placements:
        by_location[placement.location_id].append(placement)

    colliding: list[Placement] = []
    for location_placements in by_location.values():
        active: list[tuple[int, Placement]] = []
        marked: set[int] = set()
        ordered = sorted(location_placements, key=lambda p: (p.grid_offset, p.end))
        for index, placement in enumerate(ordered):
            active = [(i, other) for i, other in active if other.end > placement.grid_offset]
            if active:
                marked.add(index)
                marked.update(i for i, _ in active)
            active.append((index, placement))
        colliding.extend(ordered[index] for index in sorted(marked))
    return colliding
