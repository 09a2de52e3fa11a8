"""Alert persistence.

Alerts are append-only: rows are inserted by the alert manager and the only
update ever applied is marking one resolved.
"""

from __future__ import annotations

from datetime import UTC, datetime

from vitals.lib.config import SensorType
from vitals.lib.db.connection import get_db, load_template
from vitals.lib.exceptions import AlertNotFoundError
from vitals.lib.models import Alert, AlertInsert


async def create_alert(alert: AlertInsert) -> Alert:
    """Append a new, unresolved alert."""
    created_at = datetime.now(UTC)
    async with get_db() as db:
        id = await db.insert(
            """INSERT INTO alert (
                   device_id, sensor_type, level, message, value, threshold,
                   resolved, created_at
               )
               VALUES (?, ?, ?, ?, ?, ?, 0, ?)""",
            (
                alert.device_id,
                alert.sensor_type.value,
                alert.level.value,
                alert.message,
                alert.value,
                alert.threshold,
                created_at.isoformat(),
            ),
        )
    return Alert(
        id=id,
        device_id=alert.device_id,
        sensor_type=alert.sensor_type,
        level=alert.level,
        message=alert.message,
        value=alert.value,
        threshold=alert.threshold,
        created_at=created_at,
    )


async def resolve_alert(id: int) -> Alert:
    """Mark an alert resolved, stamping the resolution time.

    Resolving an already-resolved alert re-stamps ``resolved_at``.

    Raises:
        AlertNotFoundError: If no alert has this id.
    """
    async with get_db() as db:
        count = await db.execute(
            "UPDATE alert SET resolved = 1, resolved_at = ? WHERE id = ?",
            (datetime.now(UTC).isoformat(), id),
        )
        if count == 0:
            raise AlertNotFoundError(id)
        row = await db.fetchone("SELECT * FROM alert WHERE id = ?", (id,))
    assert row is not None
    return Alert.from_row(row)


async def get_alerts(
    resolved: bool | None = None, device_id: int | None = None
) -> list[Alert]:
    """Return alerts, newest first, optionally filtered."""
    async with get_db() as db:
        rows = await db.fetchall(
            load_template("select_alerts.sql"),
            {
                "resolved": None if resolved is None else int(resolved),
                "device_id": device_id,
            },
        )
    return [Alert.from_row(row) for row in rows]


async def has_open_alert(device_id: int, sensor_type: SensorType) -> bool:
    async with get_db() as db:
        row = await db.fetchone(
            """SELECT 1 FROM alert
               WHERE device_id = ? AND sensor_type = ? AND resolved = 0
               LIMIT 1""",
            (device_id, sensor_type.value),
        )
    return row is not None
