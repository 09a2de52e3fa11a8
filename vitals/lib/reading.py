"""Vital-sign readings decoded from transport payloads."""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from vitals.lib.config import UNKNOWN_DEVICE_ID, SensorType, get_settings
from vitals.lib.exceptions import ReadingValidationError
from vitals.logging import get_logger

logger = get_logger("lib.reading")

@lru_cache(maxsize=8)
def topic_regex(pattern: str) -> re.Pattern[str]:
    """Compile a subscription pattern into a regex capturing the device id.

    The first ``*`` in the pattern is the device id; any further wildcard
    matches a single path segment.
    """
    head, _, tail = pattern.partition("*")
    tail = re.escape(tail).replace(r"\*", "[^/]+")
    return re.compile(f"{re.escape(head)}([^/]+){tail}")


@dataclass(frozen=True, slots=True)
class SensorReading:
    """A validated reading from one device.

    Only the sensor fields that carried a usable number are present in
    ``values``; a reading may legitimately hold none.
    """

    device_id: str
    values: Mapping[SensorType, float] = field(default_factory=dict)
    observed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __bool__(self) -> bool:
        return bool(self.values)

    def __str__(self) -> str:
        parts = ", ".join(f"{k}={v}" for k, v in self.values.items())
        return f"{self.device_id}: {parts or 'no values'}"


def _validate_value(sensor_type: SensorType, raw: Any) -> float:
    if isinstance(raw, bool) or not isinstance(raw, int | float):
        raise ReadingValidationError(
            f"{sensor_type} must be a number, got {type(raw).__name__}"
        )
    if not math.isfinite(raw):
        raise ReadingValidationError(f"{sensor_type} must be finite, got {raw}")
    return float(raw)


def _parse_timestamp(raw: Any) -> datetime | None:
    if not isinstance(raw, str):
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def parse_reading(
    device_id: str,
    payload: Any,
    observed_at: datetime | None = None,
) -> SensorReading:
    """Build a reading from a decoded JSON object.

    Malformed sensor fields are dropped with a warning rather than failing
    the whole reading.

    Raises:
        ReadingValidationError: If the payload is not a JSON object.
    """
    if not isinstance(payload, Mapping):
        raise ReadingValidationError(
            f"Expected JSON object, got {type(payload).__name__}"
        )

    values: dict[SensorType, float] = {}
    for sensor_type in SensorType:
        if sensor_type not in payload:
            continue
        try:
            values[sensor_type] = _validate_value(
                sensor_type, payload[sensor_type]
            )
        except ReadingValidationError as e:
            logger.warning("Dropping field from %s: %s", device_id, e)

    when = observed_at or _parse_timestamp(payload.get("timestamp"))
    return SensorReading(
        device_id=device_id,
        values=values,
        observed_at=when.astimezone(UTC) if when else datetime.now(UTC),
    )


def device_id_from_topic(
    topic: str,
    known_topics: Mapping[str, str] | None = None,
    pattern: str | None = None,
) -> str:
    """Resolve the external device id a message was published for.

    Explicit device-to-topic registrations win over the configured
    reading topic pattern (``patient/*/data`` by default).
    """
    for device_id, device_topic in (known_topics or {}).items():
        if device_topic == topic:
            return device_id
    regex = topic_regex(pattern or get_settings().ingest.topic_pattern)
    match = regex.fullmatch(topic)
    if match:
        return match.group(1)
    return UNKNOWN_DEVICE_ID
