"""Device and threshold setting persistence."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import aiosqlite

from vitals.lib.config import DEFAULT_THRESHOLDS, SensorType
from vitals.lib.db.connection import Database, get_db
from vitals.lib.exceptions import (
    DeviceNotFoundError,
    DuplicateDeviceError,
    SettingNotFoundError,
)
from vitals.lib.models import (
    DEVICE_UPDATABLE_FIELDS,
    SETTING_UPDATABLE_FIELDS,
    Device,
    DeviceInsert,
    ThresholdSetting,
)
from vitals.logging import get_logger

_logger = get_logger("lib.db.registry")

_SENSOR_ORDER = "CASE sensor_type " + " ".join(
    f"WHEN '{sensor_type}' THEN {i}" for i, sensor_type in enumerate(SensorType)
) + " END"

_DEFAULTS_UPSERT = """
    INSERT INTO sensor_setting (
        device_id, sensor_type, min_threshold, max_threshold, unit,
        alarm_enabled, created_at, updated_at
    )
    VALUES (
        :device_id, :sensor_type, :min_threshold, :max_threshold, :unit,
        :alarm_enabled, :now, :now
    )
    ON CONFLICT(device_id, sensor_type) DO UPDATE SET
        min_threshold = excluded.min_threshold,
        max_threshold = excluded.max_threshold,
        unit = excluded.unit,
        alarm_enabled = excluded.alarm_enabled,
        updated_at = excluded.updated_at
"""


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _default_rows(device_id: int, now: str) -> list[dict[str, Any]]:
    return [
        {
            "device_id": device_id,
            "sensor_type": sensor_type.value,
            "min_threshold": default.min_threshold,
            "max_threshold": default.max_threshold,
            "unit": default.unit.value,
            "alarm_enabled": int(default.alarm_enabled),
            "now": now,
        }
        for sensor_type, default in DEFAULT_THRESHOLDS.items()
    ]


def _assignments(fields: dict[str, Any], allowed: frozenset[str]) -> str:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Cannot update fields: {sorted(unknown)}")
    # Column names come from the allow-list above, never from user input
    return ", ".join(f"{name} = :{name}" for name in fields)


async def _fetch_device(db: Database, id: int) -> Device | None:
    row = await db.fetchone("SELECT * FROM device WHERE id = ?", (id,))
    return Device.from_row(row) if row else None


async def get_devices() -> list[Device]:
    async with get_db() as db:
        rows = await db.fetchall("SELECT * FROM device ORDER BY id")
    return [Device.from_row(row) for row in rows]


async def get_device(id: int) -> Device | None:
    async with get_db() as db:
        return await _fetch_device(db, id)


async def get_device_by_external_id(device_id: str) -> Device | None:
    async with get_db() as db:
        row = await db.fetchone(
            "SELECT * FROM device WHERE device_id = ?", (device_id,)
        )
    return Device.from_row(row) if row else None


async def create_device(device: DeviceInsert) -> Device:
    """Register a device together with its default sensor settings.

    The device row and all default settings are committed in one
    transaction, and the settings are written by a single statement batch,
    so no reader ever observes a partial set.

    Raises:
        DuplicateDeviceError: If the external device id is already taken.
    """
    now = _now()
    try:
        async with get_db() as db, db.transaction():
            id = await db.insert(
                """INSERT INTO device (
                       device_id, name, status, patient, room, topic,
                       created_at, updated_at
                   )
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    device.device_id,
                    device.name,
                    device.status.value,
                    device.patient,
                    device.room,
                    device.resolved_topic,
                    now,
                    now,
                ),
            )
            await db.executemany(_DEFAULTS_UPSERT, _default_rows(id, now))
            created = await _fetch_device(db, id)
    except aiosqlite.IntegrityError:
        raise DuplicateDeviceError(device.device_id) from None

    assert created is not None
    _logger.info(
        "Registered device %s (id=%d) with default thresholds",
        created.device_id,
        created.id,
    )
    return created


async def update_device(id: int, fields: dict[str, Any]) -> Device:
    """Apply a partial update to a device.

    Raises:
        DeviceNotFoundError: If no device has this id.
    """
    assignments = _assignments(fields, DEVICE_UPDATABLE_FIELDS)
    params = {k: str(v) if k == "status" else v for k, v in fields.items()}
    async with get_db() as db:
        sql = "UPDATE device SET "
        sql += f"{assignments}, " if assignments else ""
        sql += "updated_at = :updated_at WHERE id = :id"
        count = await db.execute(sql, {**params, "updated_at": _now(), "id": id})
        if count == 0:
            raise DeviceNotFoundError(id)
        updated = await _fetch_device(db, id)
    assert updated is not None
    return updated


async def delete_device(id: int) -> None:
    """Remove a device and its sensor settings. Alerts are kept.

    Raises:
        DeviceNotFoundError: If no device has this id.
    """
    async with get_db() as db, db.transaction():
        count = await db.execute("DELETE FROM device WHERE id = ?", (id,))
        if count == 0:
            raise DeviceNotFoundError(id)
        await db.execute("DELETE FROM sensor_setting WHERE device_id = ?", (id,))
    _logger.info("Deleted device id=%d", id)


async def get_settings(device_id: int) -> list[ThresholdSetting]:
    async with get_db() as db:
        rows = await db.fetchall(
            f"SELECT * FROM sensor_setting WHERE device_id = ? ORDER BY {_SENSOR_ORDER}",
            (device_id,),
        )
    return [ThresholdSetting.from_row(row) for row in rows]


async def get_setting(
    device_id: int, sensor_type: SensorType
) -> ThresholdSetting | None:
    async with get_db() as db:
        row = await db.fetchone(
            "SELECT * FROM sensor_setting WHERE device_id = ? AND sensor_type = ?",
            (device_id, sensor_type.value),
        )
    return ThresholdSetting.from_row(row) if row else None


async def get_setting_by_id(id: int) -> ThresholdSetting | None:
    async with get_db() as db:
        row = await db.fetchone("SELECT * FROM sensor_setting WHERE id = ?", (id,))
    return ThresholdSetting.from_row(row) if row else None


async def upsert_default_settings(device_id: int) -> list[ThresholdSetting]:
    """Write (or reset to) the default thresholds for every sensor type.

    Raises:
        DeviceNotFoundError: If no device has this id.
    """
    async with get_db() as db, db.transaction():
        if await _fetch_device(db, device_id) is None:
            raise DeviceNotFoundError(device_id)
        await db.executemany(_DEFAULTS_UPSERT, _default_rows(device_id, _now()))
    return await get_settings(device_id)


async def update_setting(id: int, fields: dict[str, Any]) -> ThresholdSetting:
    """Apply a partial update to a sensor setting.

    The (device, sensor type) identity of a setting cannot change.

    Raises:
        SettingNotFoundError: If no setting has this id.
    """
    assignments = _assignments(fields, SETTING_UPDATABLE_FIELDS)
    params = {
        k: int(v) if k == "alarm_enabled" else v for k, v in fields.items()
    }
    async with get_db() as db:
        sql = "UPDATE sensor_setting SET "
        sql += f"{assignments}, " if assignments else ""
        sql += "updated_at = :updated_at WHERE id = :id"
        count = await db.execute(sql, {**params, "updated_at": _now(), "id": id})
        if count == 0:
            raise SettingNotFoundError(id)
        row = await db.fetchone("SELECT * FROM sensor_setting WHERE id = ?", (id,))
    assert row is not None
    return ThresholdSetting.from_row(row)
