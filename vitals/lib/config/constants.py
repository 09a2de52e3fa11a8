"""Shared constants for the configuration module.

Kept apart from settings.py so the evaluator and stores can import them
without pulling in pydantic-settings.
"""

from dataclasses import dataclass

from vitals.lib.config.enums import SensorType, Unit

# Breaching a floor by more than 20% (value < min * 0.8) or a ceiling by
# more than 20% (value > max * 1.2) escalates a warning to danger.
DANGER_MIN_FACTOR = 0.8
DANGER_MAX_FACTOR = 1.2


@dataclass(frozen=True, slots=True)
class DefaultThreshold:
    min_threshold: float
    max_threshold: float
    unit: Unit
    alarm_enabled: bool = True


# Seeded for every new device, one per sensor type
DEFAULT_THRESHOLDS: dict[SensorType, DefaultThreshold] = {
    SensorType.TEMPERATURE: DefaultThreshold(35.0, 38.5, Unit.CELSIUS),
    SensorType.PULSE: DefaultThreshold(50.0, 120.0, Unit.BPM),
    SensorType.CREATININE: DefaultThreshold(0.5, 1.5, Unit.MG_PER_DL),
}

UNKNOWN_DEVICE_ID = "unknown-device"
