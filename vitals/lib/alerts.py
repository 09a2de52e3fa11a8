"""Alert lifecycle: turning breaching readings into persisted alerts.

For every sensor value in a reading, the AlertManager looks up the device's
threshold setting, classifies the value and appends an alert when it breaches
the band. By default every breaching reading mints its own alert; with
deduplication on, a breach is dropped while an unresolved alert for the same
device and sensor is still open.

A failure while handling one sensor is logged and never stops the others.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeAlias

import aiosqlite

from vitals.lib.config import (
    AlertLevel,
    SensorStatus,
    SensorType,
    ThresholdType,
    get_settings,
)
from vitals.lib.evaluator import Verdict, classify
from vitals.lib.exceptions import DatabaseError, ReadingValidationError
from vitals.lib.models import Alert, AlertInsert, Device, ThresholdSetting
from vitals.lib.reading import SensorReading, parse_reading
from vitals.lib.store import AlertStore, ThresholdRegistry
from vitals.logging import get_logger

logger = get_logger("lib.alerts")

STORAGE_ERRORS = (DatabaseError, aiosqlite.Error, OSError)

AlertCallback: TypeAlias = Callable[[Alert], Awaitable[None] | None]

_LEVELS = {
    SensorStatus.WARNING: AlertLevel.WARNING,
    SensorStatus.DANGER: AlertLevel.DANGER,
}


def format_message(
    sensor_type: SensorType, value: float, setting: ThresholdSetting, verdict: Verdict
) -> str:
    """Human-readable description of a breach."""
    direction = "too low" if verdict.threshold_type == ThresholdType.MIN else "too high"
    unit = f" {setting.unit}" if setting.unit else ""
    return (
        f"{sensor_type.capitalize()} {direction}: {value:g}{unit} "
        f"(threshold {verdict.threshold:g}{unit})"
    )


def build_alert(
    device: Device, setting: ThresholdSetting, value: float, verdict: Verdict
) -> AlertInsert:
    """Build the alert for a breaching verdict.

    The attached threshold is the one on the side that was breached.

    Raises:
        ValueError: If the verdict is not a breach.
    """
    if not verdict.is_breach or verdict.threshold is None:
        raise ValueError(f"Cannot build an alert for a {verdict.status} verdict")
    return AlertInsert(
        device_id=device.id,
        sensor_type=setting.sensor_type,
        level=_LEVELS[verdict.status],
        message=format_message(setting.sensor_type, value, setting, verdict),
        value=value,
        threshold=verdict.threshold,
    )


class AlertManager:
    """Decides, per reading, which alerts to create; resolves alerts.

    The registry and store are injected, so the same manager runs against
    the SQLite store in production and the in-memory store in tests.
    """

    def __init__(
        self,
        registry: ThresholdRegistry,
        store: AlertStore,
        *,
        deduplicate: bool | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._deduplicate = (
            get_settings().alerts.deduplicate if deduplicate is None else deduplicate
        )
        self._callbacks: list[AlertCallback] = []
        self._episode_locks: dict[tuple[int, SensorType], asyncio.Lock] = {}

    @property
    def deduplicate(self) -> bool:
        return self._deduplicate

    def register_callback(self, callback: AlertCallback) -> None:
        """Register a function called with every newly created alert."""
        self._callbacks.append(callback)
        logger.debug(
            "Registered alert callback %s", getattr(callback, "__name__", callback)
        )

    async def on_reading(
        self, device_external_id: str, payload: Mapping[str, Any]
    ) -> list[Alert]:
        """Evaluate a decoded transport payload for one device."""
        try:
            reading = parse_reading(device_external_id, payload)
        except ReadingValidationError as e:
            logger.warning("Ignoring reading from %s: %s", device_external_id, e)
            return []
        return await self.evaluate_reading(reading)

    async def evaluate_reading(self, reading: SensorReading) -> list[Alert]:
        """Create alerts for every breaching value in a reading."""
        if not reading:
            logger.debug("Reading from %s has no usable values", reading.device_id)
            return []

        try:
            device = await self._registry.get_device_by_external_id(reading.device_id)
        except STORAGE_ERRORS:
            logger.exception("Failed to look up device %s", reading.device_id)
            return []
        if device is None:
            logger.debug("Reading from unregistered device %s", reading.device_id)
            return []

        created: list[Alert] = []
        for sensor_type, value in reading.values.items():
            try:
                alert = await self._check_sensor(device, sensor_type, value)
            except STORAGE_ERRORS:
                logger.exception(
                    "Failed to evaluate %s for device %s", sensor_type, device.device_id
                )
                continue
            if alert is not None:
                created.append(alert)
                await self._notify(alert)
        return created

    async def _check_sensor(
        self, device: Device, sensor_type: SensorType, value: float
    ) -> Alert | None:
        setting = await self._registry.get_setting(device.id, sensor_type)
        if setting is None or not setting.alarm_enabled:
            logger.debug("No active alarm for %s on %s", sensor_type, device.device_id)
            return None

        verdict = classify(value, setting.min_threshold, setting.max_threshold)
        if not verdict.is_breach:
            return None

        insert = build_alert(device, setting, value, verdict)
        if not self._deduplicate:
            return await self._create(device, insert)

        lock = self._episode_locks.setdefault((device.id, sensor_type), asyncio.Lock())
        async with lock:
            if await self._store.has_open_alert(device.id, sensor_type):
                logger.debug(
                    "Open %s alert already exists for %s, skipping",
                    sensor_type,
                    device.device_id,
                )
                return None
            return await self._create(device, insert)

    async def _create(self, device: Device, insert: AlertInsert) -> Alert:
        alert = await self._store.create_alert(insert)
        logger.info(
            "[%s] %s alert #%d: %s",
            device.device_id,
            alert.level,
            alert.id,
            alert.message,
        )
        return alert

    async def _notify(self, alert: Alert) -> None:
        for callback in self._callbacks:
            try:
                result = callback(alert)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Alert callback failed for alert #%d", alert.id)

    async def resolve_alert(self, id: int) -> Alert:
        """Mark an alert resolved.

        Raises:
            AlertNotFoundError: If no alert has this id.
        """
        alert = await self._store.resolve_alert(id)
        logger.info("Alert #%d resolved", id)
        return alert

    async def get_alerts(
        self, resolved: bool | None = None, device_id: int | None = None
    ) -> list[Alert]:
        """List alerts newest first, optionally filtered."""
        return await self._store.get_alerts(resolved=resolved, device_id=device_id)
