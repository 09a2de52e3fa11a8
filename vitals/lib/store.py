"""Storage contracts for the alerting core, and an in-memory backend.

The alert manager only talks to a ThresholdRegistry and an AlertStore. The
SQLite implementation lives in vitals.lib.db; MemoryStore here backs tests
and MOCK_STORE=1 development runs.
"""

import asyncio
import itertools
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any, Protocol

from vitals.lib.config import DEFAULT_THRESHOLDS, SensorType
from vitals.lib.exceptions import (
    AlertNotFoundError,
    DeviceNotFoundError,
    DuplicateDeviceError,
    SettingNotFoundError,
)
from vitals.lib.models import (
    DEVICE_UPDATABLE_FIELDS,
    SETTING_UPDATABLE_FIELDS,
    Alert,
    AlertInsert,
    Device,
    DeviceInsert,
    ReadingPoint,
    ThresholdSetting,
)
from vitals.lib.reading import SensorReading

_SENSOR_ORDER = {sensor_type: i for i, sensor_type in enumerate(SensorType)}


class ThresholdRegistry(Protocol):
    """Source of truth for devices and their per-sensor thresholds."""

    async def get_devices(self) -> list[Device]: ...

    async def get_device(self, id: int) -> Device | None: ...

    async def get_device_by_external_id(self, device_id: str) -> Device | None: ...

    async def create_device(self, device: DeviceInsert) -> Device: ...

    async def update_device(self, id: int, fields: dict[str, Any]) -> Device: ...

    async def delete_device(self, id: int) -> None: ...

    async def get_settings(self, device_id: int) -> list[ThresholdSetting]: ...

    async def get_setting(
        self, device_id: int, sensor_type: SensorType
    ) -> ThresholdSetting | None: ...

    async def get_setting_by_id(self, id: int) -> ThresholdSetting | None: ...

    async def upsert_default_settings(
        self, device_id: int
    ) -> list[ThresholdSetting]: ...

    async def update_setting(
        self, id: int, fields: dict[str, Any]
    ) -> ThresholdSetting: ...


class AlertStore(Protocol):
    """Append-only collection of alerts, newest first on read."""

    async def create_alert(self, alert: AlertInsert) -> Alert: ...

    async def resolve_alert(self, id: int) -> Alert: ...

    async def get_alerts(
        self, resolved: bool | None = None, device_id: int | None = None
    ) -> list[Alert]: ...

    async def has_open_alert(
        self, device_id: int, sensor_type: SensorType
    ) -> bool: ...


class ReadingStore(Protocol):
    """Time-series sink for raw readings."""

    async def persist_reading(self, reading: SensorReading) -> None: ...

    async def get_latest_values(
        self, device_id: str
    ) -> dict[SensorType, tuple[float, datetime]]: ...

    async def get_readings(
        self,
        device_id: str,
        sensor_type: SensorType,
        start: datetime,
        end: datetime,
    ) -> list[ReadingPoint]: ...


def _now() -> datetime:
    return datetime.now(UTC)


def _check_fields(fields: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Cannot update fields: {sorted(unknown)}")


class MemoryStore:
    """In-memory registry, alert and reading store.

    Writes are serialized by a lock so ids are unique and a device's
    default settings appear together with the device.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._devices: dict[int, Device] = {}
        self._settings: dict[int, ThresholdSetting] = {}
        self._alerts: dict[int, Alert] = {}
        self._readings: dict[str, dict[SensorType, tuple[float, datetime]]] = {}
        self._history: list[ReadingPoint] = []
        self._device_ids = itertools.count(1)
        self._setting_ids = itertools.count(1)
        self._alert_ids = itertools.count(1)

    # Devices

    async def get_devices(self) -> list[Device]:
        return sorted(self._devices.values(), key=lambda d: d.id)

    async def get_device(self, id: int) -> Device | None:
        return self._devices.get(id)

    async def get_device_by_external_id(self, device_id: str) -> Device | None:
        return next(
            (d for d in self._devices.values() if d.device_id == device_id),
            None,
        )

    async def create_device(self, device: DeviceInsert) -> Device:
        async with self._lock:
            if await self.get_device_by_external_id(device.device_id):
                raise DuplicateDeviceError(device.device_id)
            now = _now()
            created = Device(
                id=next(self._device_ids),
                device_id=device.device_id,
                name=device.name,
                status=device.status,
                patient=device.patient,
                room=device.room,
                topic=device.resolved_topic,
                created_at=now,
                updated_at=now,
            )
            defaults = self._build_defaults(created.id, now)
            # Publish the device and its settings in one step
            self._devices[created.id] = created
            self._settings.update({s.id: s for s in defaults})
            return created

    async def update_device(self, id: int, fields: dict[str, Any]) -> Device:
        _check_fields(fields, DEVICE_UPDATABLE_FIELDS)
        async with self._lock:
            device = self._devices.get(id)
            if device is None:
                raise DeviceNotFoundError(id)
            updated = replace(device, **fields, updated_at=_now())
            self._devices[id] = updated
            return updated

    async def delete_device(self, id: int) -> None:
        async with self._lock:
            if self._devices.pop(id, None) is None:
                raise DeviceNotFoundError(id)
            self._settings = {
                k: s for k, s in self._settings.items() if s.device_id != id
            }

    # Threshold settings

    def _build_defaults(
        self, device_id: int, now: datetime
    ) -> list[ThresholdSetting]:
        return [
            ThresholdSetting(
                id=next(self._setting_ids),
                device_id=device_id,
                sensor_type=sensor_type,
                min_threshold=default.min_threshold,
                max_threshold=default.max_threshold,
                unit=default.unit.value,
                alarm_enabled=default.alarm_enabled,
                created_at=now,
                updated_at=now,
            )
            for sensor_type, default in DEFAULT_THRESHOLDS.items()
        ]

    async def get_settings(self, device_id: int) -> list[ThresholdSetting]:
        return sorted(
            (s for s in self._settings.values() if s.device_id == device_id),
            key=lambda s: _SENSOR_ORDER[s.sensor_type],
        )

    async def get_setting(
        self, device_id: int, sensor_type: SensorType
    ) -> ThresholdSetting | None:
        return next(
            (
                s
                for s in self._settings.values()
                if s.device_id == device_id and s.sensor_type == sensor_type
            ),
            None,
        )

    async def get_setting_by_id(self, id: int) -> ThresholdSetting | None:
        return self._settings.get(id)

    async def upsert_default_settings(
        self, device_id: int
    ) -> list[ThresholdSetting]:
        async with self._lock:
            if device_id not in self._devices:
                raise DeviceNotFoundError(device_id)
            now = _now()
            existing = {
                s.sensor_type: s
                for s in self._settings.values()
                if s.device_id == device_id
            }
            staged: dict[int, ThresholdSetting] = {}
            for sensor_type, default in DEFAULT_THRESHOLDS.items():
                current = existing.get(sensor_type)
                staged_setting = ThresholdSetting(
                    id=current.id if current else next(self._setting_ids),
                    device_id=device_id,
                    sensor_type=sensor_type,
                    min_threshold=default.min_threshold,
                    max_threshold=default.max_threshold,
                    unit=default.unit.value,
                    alarm_enabled=default.alarm_enabled,
                    created_at=current.created_at if current else now,
                    updated_at=now,
                )
                staged[staged_setting.id] = staged_setting
            self._settings.update(staged)
        return await self.get_settings(device_id)

    async def update_setting(
        self, id: int, fields: dict[str, Any]
    ) -> ThresholdSetting:
        _check_fields(fields, SETTING_UPDATABLE_FIELDS)
        async with self._lock:
            setting = self._settings.get(id)
            if setting is None:
                raise SettingNotFoundError(id)
            updated = replace(setting, **fields, updated_at=_now())
            self._settings[id] = updated
            return updated

    # Alerts

    async def create_alert(self, alert: AlertInsert) -> Alert:
        async with self._lock:
            created = Alert(
                id=next(self._alert_ids),
                device_id=alert.device_id,
                sensor_type=alert.sensor_type,
                level=alert.level,
                message=alert.message,
                value=alert.value,
                threshold=alert.threshold,
                created_at=_now(),
            )
            self._alerts[created.id] = created
            return created

    async def resolve_alert(self, id: int) -> Alert:
        async with self._lock:
            alert = self._alerts.get(id)
            if alert is None:
                raise AlertNotFoundError(id)
            resolved = replace(alert, resolved=True, resolved_at=_now())
            self._alerts[id] = resolved
            return resolved

    async def get_alerts(
        self, resolved: bool | None = None, device_id: int | None = None
    ) -> list[Alert]:
        alerts = [
            a
            for a in self._alerts.values()
            if (resolved is None or a.resolved == resolved)
            and (device_id is None or a.device_id == device_id)
        ]
        return sorted(alerts, key=lambda a: (a.created_at, a.id), reverse=True)

    async def has_open_alert(
        self, device_id: int, sensor_type: SensorType
    ) -> bool:
        return any(
            not a.resolved
            and a.device_id == device_id
            and a.sensor_type == sensor_type
            for a in self._alerts.values()
        )

    # Readings

    async def persist_reading(self, reading: SensorReading) -> None:
        latest = self._readings.setdefault(reading.device_id, {})
        for sensor_type, value in reading.values.items():
            self._history.append(
                ReadingPoint(reading.device_id, sensor_type, value, reading.observed_at)
            )
            previous = latest.get(sensor_type)
            # Out-of-order delivery must not overwrite a newer value
            if previous is None or previous[1] <= reading.observed_at:
                latest[sensor_type] = (value, reading.observed_at)

    async def get_latest_values(
        self, device_id: str
    ) -> dict[SensorType, tuple[float, datetime]]:
        return dict(self._readings.get(device_id, {}))

    async def get_readings(
        self,
        device_id: str,
        sensor_type: SensorType,
        start: datetime,
        end: datetime,
    ) -> list[ReadingPoint]:
        points = [
            p
            for p in self._history
            if p.device_id == device_id
            and p.sensor_type == sensor_type
            and start <= p.recorded_at <= end
        ]
        # Stable sort keeps arrival order for equal timestamps
        return sorted(points, key=lambda p: p.recorded_at)


class Store(ThresholdRegistry, AlertStore, ReadingStore, Protocol):
    """Everything the services need from one backend."""


def create_store() -> Store:
    """Create the store selected by configuration."""
    from vitals.lib.config import get_settings

    if get_settings().mock_store:
        return MemoryStore()
    from vitals.lib.db import SqliteStore

    return SqliteStore()
