"""Domain records owned by the threshold registry and the alert store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from vitals.lib.config import (
    AlertLevel,
    DeviceStatus,
    SensorType,
    get_settings,
)

# Fields an operator may change after creation
DEVICE_UPDATABLE_FIELDS = frozenset({"name", "status", "patient", "room", "topic"})
SETTING_UPDATABLE_FIELDS = frozenset(
    {"min_threshold", "max_threshold", "unit", "alarm_enabled"}
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass(frozen=True, slots=True)
class DeviceInsert:
    """Fields supplied when registering a device."""

    device_id: str
    name: str
    status: DeviceStatus = DeviceStatus.INACTIVE
    patient: str | None = None
    room: str | None = None
    topic: str | None = None

    @property
    def resolved_topic(self) -> str:
        template = get_settings().ingest.topic_template
        return self.topic or template.format(device_id=self.device_id)


@dataclass(slots=True)
class Device:
    """A registered bedside unit."""

    id: int
    device_id: str
    name: str
    status: DeviceStatus
    patient: str | None
    room: str | None
    topic: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Device:
        return cls(
            id=row["id"],
            device_id=row["device_id"],
            name=row["name"],
            status=DeviceStatus(row["status"]),
            patient=row["patient"],
            room=row["room"],
            topic=row["topic"],
            created_at=_parse_dt(row["created_at"]),  # type: ignore[arg-type]
            updated_at=_parse_dt(row["updated_at"]),  # type: ignore[arg-type]
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "deviceId": self.device_id,
            "name": self.name,
            "status": self.status.value,
            "patient": self.patient,
            "room": self.room,
            "topic": self.topic,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass(slots=True)
class ThresholdSetting:
    """Alarm band for one sensor type on one device."""

    id: int
    device_id: int
    sensor_type: SensorType
    min_threshold: float | None
    max_threshold: float | None
    unit: str
    alarm_enabled: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ThresholdSetting:
        return cls(
            id=row["id"],
            device_id=row["device_id"],
            sensor_type=SensorType(row["sensor_type"]),
            min_threshold=row["min_threshold"],
            max_threshold=row["max_threshold"],
            unit=row["unit"] or "",
            alarm_enabled=bool(row["alarm_enabled"]),
            created_at=_parse_dt(row["created_at"]),  # type: ignore[arg-type]
            updated_at=_parse_dt(row["updated_at"]),  # type: ignore[arg-type]
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "deviceId": self.device_id,
            "sensorType": self.sensor_type.value,
            "minThreshold": self.min_threshold,
            "maxThreshold": self.max_threshold,
            "unit": self.unit,
            "alarmEnabled": self.alarm_enabled,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass(frozen=True, slots=True)
class AlertInsert:
    """Fields supplied by the alert manager when a breach is detected."""

    device_id: int
    sensor_type: SensorType
    level: AlertLevel
    message: str
    value: float
    threshold: float


@dataclass(slots=True)
class Alert:
    """A persisted threshold breach."""

    id: int
    device_id: int
    sensor_type: SensorType
    level: AlertLevel
    message: str
    value: float
    threshold: float
    created_at: datetime
    resolved: bool = False
    resolved_at: datetime | None = field(default=None)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Alert:
        return cls(
            id=row["id"],
            device_id=row["device_id"],
            sensor_type=SensorType(row["sensor_type"]),
            level=AlertLevel(row["level"]),
            message=row["message"],
            value=row["value"],
            threshold=row["threshold"],
            created_at=_parse_dt(row["created_at"]),  # type: ignore[arg-type]
            resolved=bool(row["resolved"]),
            resolved_at=_parse_dt(row["resolved_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "deviceId": self.device_id,
            "sensorType": self.sensor_type.value,
            "level": self.level.value,
            "message": self.message,
            "value": self.value,
            "threshold": self.threshold,
            "resolved": self.resolved,
            "createdAt": _iso(self.created_at),
            "resolvedAt": _iso(self.resolved_at),
        }


@dataclass(frozen=True, slots=True)
class ReadingPoint:
    """One recorded value of one sensor."""

    device_id: str
    sensor_type: SensorType
    value: float
    recorded_at: datetime

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ReadingPoint:
        return cls(
            device_id=row["device_id"],
            sensor_type=SensorType(row["sensor_type"]),
            value=row["value"],
            recorded_at=_parse_dt(row["recording_time"]),  # type: ignore[arg-type]
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "time": self.recorded_at.isoformat(),
            "deviceId": self.device_id,
            "sensorType": self.sensor_type.value,
            "value": self.value,
        }
