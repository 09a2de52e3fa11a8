"""Type definitions for database operations."""

from typing import Any, TypeAlias, TypedDict

SQLParams: TypeAlias = tuple[Any, ...] | dict[str, Any]
"""SQL parameter types: positional tuple or named dict for query binding."""


class LatestReadingRow(TypedDict):
    """Most recent value of one sensor, as read from the database."""

    sensor_type: str
    value: float
    recording_time: str


class ReadingRow(TypedDict):
    """One recorded sensor value, as read from the database."""

    device_id: str
    sensor_type: str
    value: float
    recording_time: str
