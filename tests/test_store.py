"""Tests for the registry, alert and reading stores.

Every test runs against both the in-memory and the SQLite implementation.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from vitals.lib.config import AlertLevel, DeviceStatus, SensorType
from vitals.lib.exceptions import (
    AlertNotFoundError,
    DeviceNotFoundError,
    DuplicateDeviceError,
    SettingNotFoundError,
)
from vitals.lib.models import AlertInsert, DeviceInsert
from vitals.lib.reading import SensorReading, parse_reading


def _alert(device_id, sensor_type=SensorType.TEMPERATURE, value=39.5):
    return AlertInsert(
        device_id=device_id,
        sensor_type=sensor_type,
        level=AlertLevel.WARNING,
        message=f"{sensor_type} too high",
        value=value,
        threshold=38.5,
    )


class TestDevices:
    """Tests for device registration and updates."""

    async def test_create_device_defaults(self, store, bed_12):
        device = await store.create_device(bed_12)

        assert device.id > 0
        assert device.device_id == "bed-12"
        assert device.status is DeviceStatus.INACTIVE
        assert device.topic == "patient/bed-12/data"
        assert device.patient == "J. Doe"

    async def test_create_device_seeds_three_default_settings(self, store, bed_12):
        device = await store.create_device(bed_12)

        settings = await store.get_settings(device.id)

        assert [s.sensor_type for s in settings] == [
            SensorType.TEMPERATURE,
            SensorType.PULSE,
            SensorType.CREATININE,
        ]
        bands = {s.sensor_type: (s.min_threshold, s.max_threshold, s.unit) for s in settings}
        assert bands == {
            SensorType.TEMPERATURE: (35.0, 38.5, "°C"),
            SensorType.PULSE: (50.0, 120.0, "BPM"),
            SensorType.CREATININE: (0.5, 1.5, "mg/dL"),
        }
        assert all(s.alarm_enabled for s in settings)
        assert all(s.device_id == device.id for s in settings)

    async def test_custom_topic(self, store):
        device = await store.create_device(
            DeviceInsert(device_id="bed-7", name="Bed 7", topic="ward/3/bed-7")
        )

        assert device.topic == "ward/3/bed-7"

    async def test_duplicate_external_id(self, store, bed_12):
        await store.create_device(bed_12)

        with pytest.raises(DuplicateDeviceError):
            await store.create_device(bed_12)

        assert len(await store.get_devices()) == 1

    async def test_settings_never_partially_visible(self, store):
        """Concurrent readers see zero or three settings for a new device."""
        observed: list[int] = []
        done = asyncio.Event()

        async def watch():
            while not done.is_set():
                device = await store.get_device_by_external_id("bed-1")
                if device is not None:
                    observed.append(len(await store.get_settings(device.id)))
                await asyncio.sleep(0)

        watcher = asyncio.create_task(watch())
        await store.create_device(DeviceInsert(device_id="bed-1", name="Bed 1"))
        await asyncio.sleep(0)
        done.set()
        await watcher

        assert all(count == 3 for count in observed)

    async def test_lookup_by_ids(self, store, bed_12):
        device = await store.create_device(bed_12)

        assert (await store.get_device(device.id)).device_id == "bed-12"
        assert (await store.get_device_by_external_id("bed-12")).id == device.id
        assert await store.get_device(device.id + 100) is None
        assert await store.get_device_by_external_id("bed-99") is None

    async def test_update_device(self, store, bed_12):
        device = await store.create_device(bed_12)

        updated = await store.update_device(
            device.id, {"status": DeviceStatus.ACTIVE, "room": None}
        )

        assert updated.status is DeviceStatus.ACTIVE
        assert updated.room is None
        assert updated.name == "Bed 12 mattress"
        assert updated.updated_at >= device.updated_at

    async def test_update_missing_device(self, store):
        with pytest.raises(DeviceNotFoundError):
            await store.update_device(42, {"name": "x"})

    async def test_update_rejects_identity_fields(self, store, bed_12):
        device = await store.create_device(bed_12)

        with pytest.raises(ValueError, match="Cannot update fields"):
            await store.update_device(device.id, {"device_id": "bed-13"})

    async def test_delete_device_removes_settings_keeps_alerts(self, store, bed_12):
        device = await store.create_device(bed_12)
        await store.create_alert(_alert(device.id))

        await store.delete_device(device.id)

        assert await store.get_device(device.id) is None
        assert await store.get_settings(device.id) == []
        assert len(await store.get_alerts(device_id=device.id)) == 1

    async def test_delete_missing_device(self, store):
        with pytest.raises(DeviceNotFoundError):
            await store.delete_device(42)


class TestSettings:
    """Tests for per-sensor threshold settings."""

    async def test_update_setting(self, store, bed_12):
        device = await store.create_device(bed_12)
        setting = await store.get_setting(device.id, SensorType.PULSE)

        updated = await store.update_setting(
            setting.id, {"max_threshold": 110.0, "alarm_enabled": False}
        )

        assert updated.id == setting.id
        assert updated.sensor_type is SensorType.PULSE
        assert updated.max_threshold == 110.0
        assert updated.min_threshold == 50.0
        assert updated.alarm_enabled is False
        reread = await store.get_setting(device.id, SensorType.PULSE)
        assert reread.max_threshold == 110.0

    async def test_clear_threshold(self, store, bed_12):
        device = await store.create_device(bed_12)
        setting = await store.get_setting(device.id, SensorType.CREATININE)

        updated = await store.update_setting(setting.id, {"min_threshold": None})

        assert updated.min_threshold is None

    async def test_update_missing_setting(self, store):
        with pytest.raises(SettingNotFoundError):
            await store.update_setting(999, {"unit": "x"})

    async def test_setting_identity_is_immutable(self, store, bed_12):
        device = await store.create_device(bed_12)
        setting = await store.get_setting(device.id, SensorType.PULSE)

        with pytest.raises(ValueError):
            await store.update_setting(setting.id, {"sensor_type": "temperature"})

    async def test_get_setting_by_id(self, store, bed_12):
        device = await store.create_device(bed_12)
        setting = await store.get_setting(device.id, SensorType.TEMPERATURE)

        assert (await store.get_setting_by_id(setting.id)).sensor_type is SensorType.TEMPERATURE
        assert await store.get_setting_by_id(setting.id + 100) is None

    async def test_upsert_default_settings_resets(self, store, bed_12):
        device = await store.create_device(bed_12)
        setting = await store.get_setting(device.id, SensorType.TEMPERATURE)
        await store.update_setting(setting.id, {"max_threshold": 40.0})

        settings = await store.upsert_default_settings(device.id)

        assert len(settings) == 3
        temperature = next(s for s in settings if s.sensor_type is SensorType.TEMPERATURE)
        assert temperature.id == setting.id
        assert temperature.max_threshold == 38.5

    async def test_upsert_default_settings_missing_device(self, store):
        with pytest.raises(DeviceNotFoundError):
            await store.upsert_default_settings(42)


class TestAlerts:
    """Tests for the append-only alert store."""

    async def test_create_alert(self, store, bed_12):
        device = await store.create_device(bed_12)

        alert = await store.create_alert(_alert(device.id))

        assert alert.id > 0
        assert alert.resolved is False
        assert alert.resolved_at is None
        assert alert.level is AlertLevel.WARNING
        assert alert.threshold == 38.5

    async def test_alerts_newest_first(self, store, bed_12):
        device = await store.create_device(bed_12)
        first = await store.create_alert(_alert(device.id, value=39.0))
        second = await store.create_alert(_alert(device.id, value=39.5))
        third = await store.create_alert(_alert(device.id, value=40.0))

        alerts = await store.get_alerts()

        assert [a.id for a in alerts] == [third.id, second.id, first.id]

    async def test_filters(self, store, bed_12):
        device = await store.create_device(bed_12)
        other = await store.create_device(DeviceInsert(device_id="bed-13", name="Bed 13"))
        a1 = await store.create_alert(_alert(device.id))
        a2 = await store.create_alert(_alert(other.id))
        await store.resolve_alert(a1.id)

        assert [a.id for a in await store.get_alerts(resolved=True)] == [a1.id]
        assert [a.id for a in await store.get_alerts(resolved=False)] == [a2.id]
        assert [a.id for a in await store.get_alerts(device_id=other.id)] == [a2.id]
        assert await store.get_alerts(resolved=False, device_id=device.id) == []

    async def test_resolve_alert(self, store, bed_12):
        device = await store.create_device(bed_12)
        alert = await store.create_alert(_alert(device.id))

        resolved = await store.resolve_alert(alert.id)

        assert resolved.resolved is True
        assert resolved.resolved_at is not None
        assert resolved.value == alert.value

    async def test_resolve_twice_restamps(self, store, bed_12):
        device = await store.create_device(bed_12)
        alert = await store.create_alert(_alert(device.id))

        first = await store.resolve_alert(alert.id)
        second = await store.resolve_alert(alert.id)

        assert second.resolved is True
        assert second.resolved_at >= first.resolved_at

    async def test_resolve_missing_alert(self, store):
        with pytest.raises(AlertNotFoundError):
            await store.resolve_alert(999)

    async def test_has_open_alert(self, store, bed_12):
        device = await store.create_device(bed_12)
        alert = await store.create_alert(_alert(device.id))

        assert await store.has_open_alert(device.id, SensorType.TEMPERATURE)
        assert not await store.has_open_alert(device.id, SensorType.PULSE)

        await store.resolve_alert(alert.id)

        assert not await store.has_open_alert(device.id, SensorType.TEMPERATURE)


class TestReadings:
    """Tests for reading history."""

    async def test_latest_values(self, store, frozen_time):
        await store.persist_reading(
            SensorReading(
                "bed-12",
                {SensorType.TEMPERATURE: 37.0, SensorType.PULSE: 80.0},
                frozen_time,
            )
        )
        later = frozen_time + timedelta(minutes=1)
        await store.persist_reading(
            SensorReading("bed-12", {SensorType.PULSE: 95.0}, later)
        )

        latest = await store.get_latest_values("bed-12")

        assert latest[SensorType.TEMPERATURE] == (37.0, frozen_time)
        assert latest[SensorType.PULSE] == (95.0, later)
        assert SensorType.CREATININE not in latest

    async def test_out_of_order_reading_does_not_win(self, store, frozen_time):
        await store.persist_reading(
            SensorReading("bed-12", {SensorType.PULSE: 95.0}, frozen_time)
        )
        await store.persist_reading(
            SensorReading(
                "bed-12",
                {SensorType.PULSE: 60.0},
                frozen_time - timedelta(minutes=5),
            )
        )

        latest = await store.get_latest_values("bed-12")

        assert latest[SensorType.PULSE][0] == 95.0

    async def test_unknown_device_has_no_values(self, store):
        assert await store.get_latest_values("bed-404") == {}

    async def test_latest_across_utc_offsets(self, store):
        # 12:30+02:00 is 10:30Z, older than 11:00Z
        await store.persist_reading(
            parse_reading(
                "bed-12", {"pulse": 95, "timestamp": "2024-06-15T11:00:00+00:00"}
            )
        )
        await store.persist_reading(
            parse_reading(
                "bed-12", {"pulse": 60, "timestamp": "2024-06-15T12:30:00+02:00"}
            )
        )

        latest = await store.get_latest_values("bed-12")

        assert latest[SensorType.PULSE][0] == 95.0

    async def test_get_readings_in_range(self, store, frozen_time):
        for minutes, pulse in ((-10, 60.0), (0, 70.0), (5, 80.0), (10, 90.0)):
            await store.persist_reading(
                SensorReading(
                    "bed-12",
                    {SensorType.PULSE: pulse, SensorType.TEMPERATURE: 37.0},
                    frozen_time + timedelta(minutes=minutes),
                )
            )
        await store.persist_reading(
            SensorReading("bed-13", {SensorType.PULSE: 100.0}, frozen_time)
        )

        points = await store.get_readings(
            "bed-12",
            SensorType.PULSE,
            frozen_time,
            frozen_time + timedelta(minutes=5),
        )

        # Bounds are inclusive; other sensors and devices are excluded
        assert [p.value for p in points] == [70.0, 80.0]
        assert points[0].recorded_at == frozen_time
        assert {p.device_id for p in points} == {"bed-12"}
        assert {p.sensor_type for p in points} == {SensorType.PULSE}

    async def test_get_readings_ordered_oldest_first(self, store, frozen_time):
        await store.persist_reading(
            SensorReading(
                "bed-12",
                {SensorType.PULSE: 80.0},
                frozen_time + timedelta(minutes=1),
            )
        )
        await store.persist_reading(
            SensorReading("bed-12", {SensorType.PULSE: 70.0}, frozen_time)
        )

        points = await store.get_readings(
            "bed-12",
            SensorType.PULSE,
            frozen_time - timedelta(hours=1),
            frozen_time + timedelta(hours=1),
        )

        assert [p.value for p in points] == [70.0, 80.0]

    async def test_get_readings_with_offset_bounds(self, store, frozen_time):
        await store.persist_reading(
            SensorReading("bed-12", {SensorType.PULSE: 70.0}, frozen_time)
        )
        plus_two = timezone(timedelta(hours=2))

        # 13:00+02:00 to 15:00+02:00 spans 11:00Z to 13:00Z
        points = await store.get_readings(
            "bed-12",
            SensorType.PULSE,
            datetime(2024, 6, 15, 13, 0, tzinfo=plus_two),
            datetime(2024, 6, 15, 15, 0, tzinfo=plus_two),
        )

        assert [p.value for p in points] == [70.0]
