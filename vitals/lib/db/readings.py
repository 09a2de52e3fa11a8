"""Reading time-series persistence."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import cast

from vitals.lib.config import SensorType
from vitals.lib.db.connection import get_db, load_template
from vitals.lib.db.types import LatestReadingRow, ReadingRow
from vitals.lib.models import ReadingPoint
from vitals.lib.reading import SensorReading


async def persist_reading(reading: SensorReading) -> None:
    """Write one row per sensor value carried by the reading."""
    if not reading.values:
        return
    recorded = reading.observed_at.astimezone(UTC).isoformat()
    async with get_db() as db:
        await db.executemany(
            "INSERT INTO reading (device_id, sensor_type, value, recording_time) "
            "VALUES (:device_id, :sensor_type, :value, :recording_time)",
            [
                {
                    "device_id": reading.device_id,
                    "sensor_type": sensor_type.value,
                    "value": value,
                    "recording_time": recorded,
                }
                for sensor_type, value in reading.values.items()
            ],
        )


async def get_latest_values(
    device_id: str,
) -> dict[SensorType, tuple[float, datetime]]:
    """Return the most recent value of each sensor for a device."""
    async with get_db() as db:
        rows = cast(
            list[LatestReadingRow],
            await db.fetchall(
                load_template("latest_reading.sql"), {"device_id": device_id}
            ),
        )
    latest: dict[SensorType, tuple[float, datetime]] = {}
    for row in rows:
        sensor_type = SensorType(row["sensor_type"])
        # Rows are newest-id first; keep the first one per sensor
        latest.setdefault(
            sensor_type,
            (row["value"], datetime.fromisoformat(row["recording_time"])),
        )
    return latest


async def get_readings(
    device_id: str, sensor_type: SensorType, start: datetime, end: datetime
) -> list[ReadingPoint]:
    """Return a sensor's values recorded within [start, end], oldest first."""
    async with get_db() as db:
        rows = cast(
            list[ReadingRow],
            await db.fetchall(
                load_template("select_readings.sql"),
                {
                    "device_id": device_id,
                    "sensor_type": sensor_type.value,
                    # Stored times are UTC ISO text, so bounds must be too
                    "start": start.astimezone(UTC).isoformat(),
                    "end": end.astimezone(UTC).isoformat(),
                },
            ),
        )
    return [ReadingPoint.from_row(dict(row)) for row in rows]
