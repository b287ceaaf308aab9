"""Deterministic background colours for tracks."""

from __future__ import annotations

import hashlib

# Material design, shade 800.
PALETTE_800 = [
    "#c62828",
    "#ad1457",
    "#6a1b9a",
    "#4527a0",
    "#283593",
    "#1565c0",
    "#0277bd",
    "#00838f",
    "#00695c",
    "#2e7d32",
    "#558b2f",
    "#9e9d24",
    "#f9a825",
    "#ff8f00",
    "#ef6c00",
    "#d84315",
    "#4e342e",
    "#424242",
    "#37474f",
]


def palette_color(seed: str, palette: list[str] | None = None) -> str:
    palette = palette or PALETTE_800
    digest = hashlib.sha1(seed.encode("utf-8")).hexdigest()
    return palette[int(digest, 16) % len(palette)]


def track_color(track_id: int | None, track_name: str | None, color: str | None = None) -> str:
    if color and color.strip():
        return color.strip()
    if track_id is None and not track_name:
        return palette_color("null")
    return palette_color(f"{track_name or ''}{track_id if track_id is not None else ''}")
