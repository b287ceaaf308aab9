"""Error types raised and handled by the scheduling grid engine."""

from __future__ import annotations


class SchedulingError(Exception):
    pass


class ValidationError(SchedulingError):
    """Geometry or time that does not fit the grid; never sent upstream."""


class CollisionError(SchedulingError):
    def __init__(self, message: str, blocking_session_id: int | None = None) -> None:
        super().__init__(message)
        self.blocking_session_id = blocking_session_id


class RemoteError(SchedulingError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DataInconsistencyError(SchedulingError):
    """A session references a location or track that is not loaded."""
