"""Enumerations for the vitals monitor."""

from enum import StrEnum


class SensorType(StrEnum):
    """Vital-sign channels reported by a bedside device."""

    TEMPERATURE = "temperature"
    PULSE = "pulse"
    CREATININE = "creatinine"


class Unit(StrEnum):
    """Measurement units for sensor readings."""

    CELSIUS = "°C"
    BPM = "BPM"
    MG_PER_DL = "mg/dL"


class ThresholdType(StrEnum):
    """Side of the band a value was checked against."""

    MIN = "min"  # Breach when value < threshold
    MAX = "max"  # Breach when value > threshold


class AlertLevel(StrEnum):
    WARNING = "warning"
    DANGER = "danger"


class SensorStatus(StrEnum):
    """Classification of a single sensor value."""

    UNKNOWN = "unknown"
    NORMAL = "normal"
    WARNING = "warning"
    DANGER = "danger"

    @property
    def severity(self) -> int:
        """Rank used to pick the worst of several statuses."""
        return _SEVERITY[self]


class DeviceStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


_SEVERITY: dict[SensorStatus, int] = {
    SensorStatus.UNKNOWN: 0,
    SensorStatus.NORMAL: 1,
    SensorStatus.WARNING: 2,
    SensorStatus.DANGER: 3,
}
