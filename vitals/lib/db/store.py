"""SQLite-backed registry, alert and reading store."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from vitals.lib.config import SensorType
from vitals.lib.db import alerts, readings, registry
from vitals.lib.models import (
    Alert,
    AlertInsert,
    Device,
    DeviceInsert,
    ReadingPoint,
    ThresholdSetting,
)
from vitals.lib.reading import SensorReading


class SqliteStore:
    """Implements the storage contracts on top of get_db() connections."""

    async def get_devices(self) -> list[Device]:
        return await registry.get_devices()

    async def get_device(self, id: int) -> Device | None:
        return await registry.get_device(id)

    async def get_device_by_external_id(self, device_id: str) -> Device | None:
        return await registry.get_device_by_external_id(device_id)

    async def create_device(self, device: DeviceInsert) -> Device:
        return await registry.create_device(device)

    async def update_device(self, id: int, fields: dict[str, Any]) -> Device:
        return await registry.update_device(id, fields)

    async def delete_device(self, id: int) -> None:
        await registry.delete_device(id)

    async def get_settings(self, device_id: int) -> list[ThresholdSetting]:
        return await registry.get_settings(device_id)

    async def get_setting(
        self, device_id: int, sensor_type: SensorType
    ) -> ThresholdSetting | None:
        return await registry.get_setting(device_id, sensor_type)

    async def get_setting_by_id(self, id: int) -> ThresholdSetting | None:
        return await registry.get_setting_by_id(id)

    async def upsert_default_settings(
        self, device_id: int
    ) -> list[ThresholdSetting]:
        return await registry.upsert_default_settings(device_id)

    async def update_setting(
        self, id: int, fields: dict[str, Any]
    ) -> ThresholdSetting:
        return await registry.update_setting(id, fields)

    async def create_alert(self, alert: AlertInsert) -> Alert:
        return await alerts.create_alert(alert)

    async def resolve_alert(self, id: int) -> Alert:
        return await alerts.resolve_alert(id)

    async def get_alerts(
        self, resolved: bool | None = None, device_id: int | None = None
    ) -> list[Alert]:
        return await alerts.get_alerts(resolved=resolved, device_id=device_id)

    async def has_open_alert(
        self, device_id: int, sensor_type: SensorType
    ) -> bool:
        return await alerts.has_open_alert(device_id, sensor_type)

    async def persist_reading(self, reading: SensorReading) -> None:
        await readings.persist_reading(reading)

    async def get_latest_values(
        self, device_id: str
    ) -> dict[SensorType, tuple[float, datetime]]:
        return await readings.get_latest_values(device_id)

    async def get_readings(
        self,
        device_id: str,
        sensor_type: SensorType,
        start: datetime,
        end: datetime,
    ) -> list[ReadingPoint]:
        return await readings.get_readings(device_id, sensor_type, start, end)
