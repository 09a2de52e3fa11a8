"""Centralized configuration for the vitals monitor.

This package provides:
- Enums for sensor types, units, alert levels and statuses
- Default thresholds and severity margins
- Pydantic settings models for configuration
"""

from .constants import (
    DANGER_MAX_FACTOR,
    DANGER_MIN_FACTOR,
    DEFAULT_THRESHOLDS,
    UNKNOWN_DEVICE_ID,
    DefaultThreshold,
)
from .enums import (
    AlertLevel,
    DeviceStatus,
    SensorStatus,
    SensorType,
    ThresholdType,
    Unit,
)
from .settings import (
    AlertSettings,
    EventBusSettings,
    IngestSettings,
    ServerSettings,
    Settings,
    get_settings,
)

__all__ = [
    # Enums
    "AlertLevel",
    "DeviceStatus",
    "SensorStatus",
    "SensorType",
    "ThresholdType",
    "Unit",
    # Constants
    "DANGER_MAX_FACTOR",
    "DANGER_MIN_FACTOR",
    "DEFAULT_THRESHOLDS",
    "UNKNOWN_DEVICE_ID",
    "DefaultThreshold",
    # Settings models
    "AlertSettings",
    "EventBusSettings",
    "IngestSettings",
    "ServerSettings",
    "Settings",
    "get_settings",
]
