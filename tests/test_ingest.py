"""Tests for the ingest dispatcher and service."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from vitals.ingest.dispatcher import ReadingDispatcher
from vitals.ingest.service import IngestService
from vitals.lib.alerts import AlertManager
from vitals.lib.config import SensorType, Settings
from vitals.lib.config.testing import set_settings
from vitals.lib.eventbus import ReadingSubscriber
from vitals.lib.exceptions import DatabaseError
from vitals.lib.models import DeviceInsert
from vitals.lib.reading import SensorReading


def _reading(device_id, pulse):
    return SensorReading(device_id, {SensorType.PULSE: float(pulse)})


class TestReadingDispatcher:
    """Tests for per-device queues."""

    async def test_preserves_order_per_device(self):
        seen: list[tuple[str, float]] = []

        async def handler(reading):
            await asyncio.sleep(0)
            seen.append((reading.device_id, reading.values[SensorType.PULSE]))

        dispatcher = ReadingDispatcher(handler, queue_size=10)
        for i in range(5):
            assert dispatcher.submit(_reading("bed-1", i))
            assert dispatcher.submit(_reading("bed-2", i))
        await dispatcher.close()

        assert [v for d, v in seen if d == "bed-1"] == [0, 1, 2, 3, 4]
        assert [v for d, v in seen if d == "bed-2"] == [0, 1, 2, 3, 4]

    async def test_devices_run_concurrently(self):
        release = asyncio.Event()
        handled: list[str] = []

        async def handler(reading):
            if reading.device_id == "bed-1":
                await release.wait()
            handled.append(reading.device_id)

        dispatcher = ReadingDispatcher(handler, queue_size=10)
        dispatcher.submit(_reading("bed-1", 70))
        dispatcher.submit(_reading("bed-2", 70))
        for _ in range(5):
            await asyncio.sleep(0)

        assert handled == ["bed-2"]

        release.set()
        await dispatcher.close()
        assert handled == ["bed-2", "bed-1"]

    async def test_full_queue_drops_reading(self, caplog):
        release = asyncio.Event()
        handled = []

        async def handler(reading):
            await release.wait()
            handled.append(reading)

        dispatcher = ReadingDispatcher(handler, queue_size=1)
        assert dispatcher.submit(_reading("bed-1", 1))
        # Let the worker take the first reading off the queue
        await asyncio.sleep(0)
        assert dispatcher.submit(_reading("bed-1", 2))
        assert not dispatcher.submit(_reading("bed-1", 3))
        assert "Queue full for bed-1" in caplog.text

        release.set()
        await dispatcher.close()
        assert [r.values[SensorType.PULSE] for r in handled] == [1, 2]

    async def test_handler_failure_does_not_stop_worker(self, caplog):
        handled = []

        async def handler(reading):
            if reading.values[SensorType.PULSE] == 1:
                raise RuntimeError("boom")
            handled.append(reading)

        dispatcher = ReadingDispatcher(handler, queue_size=10)
        dispatcher.submit(_reading("bed-1", 1))
        dispatcher.submit(_reading("bed-1", 2))
        await dispatcher.close()

        assert len(handled) == 1
        assert "Failed to handle reading from bed-1" in caplog.text

    async def test_closed_dispatcher_rejects(self):
        dispatcher = ReadingDispatcher(AsyncMock(), queue_size=10)
        await dispatcher.close()

        assert not dispatcher.submit(_reading("bed-1", 70))

    async def test_idle_workers_are_retired(self):
        dispatcher = ReadingDispatcher(AsyncMock(), queue_size=10)
        for i in range(50):
            dispatcher.submit(_reading(f"bed-{i}", 70))
        assert len(dispatcher.devices) == 50

        await dispatcher.join()
        await asyncio.sleep(0)

        assert dispatcher.devices == []
        assert dispatcher._workers == {}

    async def test_device_gets_new_worker_after_retiring(self):
        handled = []

        async def handler(reading):
            handled.append(reading.values[SensorType.PULSE])

        dispatcher = ReadingDispatcher(handler, queue_size=10)
        dispatcher.submit(_reading("bed-1", 1))
        await dispatcher.join()
        await asyncio.sleep(0)
        assert dispatcher.devices == []

        dispatcher.submit(_reading("bed-1", 2))
        await dispatcher.close()

        assert handled == [1, 2]

    async def test_queue_size_from_settings(self):
        dispatcher = ReadingDispatcher(AsyncMock())

        assert dispatcher._queue_size == 100


@pytest.fixture
async def service(memory_store, bed_12):
    await memory_store.create_device(bed_12)
    manager = AlertManager(memory_store, memory_store)
    service = IngestService(memory_store, manager, queue_size=10)
    await service.refresh_topics()
    yield service
    await service.close()


class TestIngestService:
    """Tests for message handling."""

    async def test_breaching_message_creates_alert(self, service, memory_store):
        queued = await service.handle_message(
            "patient/bed-12/data", json.dumps({"temperature": 39.5, "pulse": 80})
        )
        await service.dispatcher.join()

        assert queued
        alerts = await memory_store.get_alerts()
        assert [(a.sensor_type, a.value) for a in alerts] == [
            (SensorType.TEMPERATURE, 39.5)
        ]

    async def test_reading_is_persisted(self, service, memory_store):
        await service.handle_message("patient/bed-12/data", b'{"pulse": 72}')
        await service.dispatcher.join()

        latest = await memory_store.get_latest_values("bed-12")
        assert latest[SensorType.PULSE][0] == 72.0

    async def test_bad_json_is_dropped(self, service, memory_store, caplog):
        queued = await service.handle_message("patient/bed-12/data", b"{not json")

        assert not queued
        assert "Invalid JSON on patient/bed-12/data" in caplog.text
        assert service.dispatcher.devices == []

    async def test_non_object_is_dropped(self, service, caplog):
        assert not await service.handle_message("patient/bed-12/data", b"[1, 2]")
        assert "Ignoring message on patient/bed-12/data" in caplog.text

    async def test_message_without_values_is_dropped(self, service):
        assert not await service.handle_message("patient/bed-12/data", b'{"spo2": 97}')

    async def test_custom_topic_resolves_device(self, memory_store):
        await memory_store.create_device(
            DeviceInsert(device_id="bed-7", name="Bed 7", topic="ward/3/bed-7")
        )
        manager = AlertManager(memory_store, memory_store)
        service = IngestService(memory_store, manager, queue_size=10)

        # Topic map is loaded lazily when the default layout does not match
        await service.handle_message("ward/3/bed-7", b'{"pulse": 200}')
        await service.close()

        alerts = await memory_store.get_alerts()
        assert len(alerts) == 1

    async def test_persist_failure_still_evaluates(self, memory_store, bed_12, caplog):
        await memory_store.create_device(bed_12)
        store = MagicMock(wraps=memory_store)
        store.persist_reading = AsyncMock(side_effect=DatabaseError("locked"))
        manager = AlertManager(memory_store, memory_store)
        service = IngestService(store, manager, queue_size=10)

        await service.handle_message("patient/bed-12/data", b'{"temperature": 47}')
        await service.close()

        assert len(await memory_store.get_alerts()) == 1
        assert "Failed to persist reading from bed-12" in caplog.text

    async def test_consume(self, service, memory_store):
        async def receive():
            yield "patient/bed-12/data", b'{"pulse": 200}'
            yield "patient/bed-12/data", b'{"pulse": 210}'

        subscriber = MagicMock()
        subscriber.receive = receive
        subscriber.subscribe_topics = AsyncMock()

        await service.consume(subscriber)
        await service.dispatcher.join()

        assert len(await memory_store.get_alerts()) == 2
        subscriber.subscribe_topics.assert_awaited_once()

    async def test_unregistered_devices_are_dropped(self, service, memory_store):
        get_devices = AsyncMock(wraps=memory_store.get_devices)
        memory_store.get_devices = get_devices
        service._refreshed_at = None

        for i in range(100):
            queued = await service.handle_message(
                f"patient/spoof-{i}/data", b'{"pulse": 250}'
            )
            assert not queued

        assert service.dispatcher.devices == []
        assert await memory_store.get_alerts() == []
        # Reloads of the registry are rate limited
        assert get_devices.await_count == 1

    async def test_device_registered_after_load_is_picked_up(
        self, service, memory_store
    ):
        service._refreshed_at = None
        await memory_store.create_device(
            DeviceInsert(device_id="bed-13", name="Bed 13")
        )

        assert await service.handle_message("patient/bed-13/data", b'{"pulse": 72}')

    async def test_configured_topic_pattern(self, memory_store):
        set_settings(Settings(reading_topic_pattern="ward/*/vitals"))
        device = await memory_store.create_device(
            DeviceInsert(device_id="bed-3", name="Bed 3")
        )
        manager = AlertManager(memory_store, memory_store)
        service = IngestService(memory_store, manager, queue_size=10)

        assert device.topic == "ward/bed-3/vitals"
        assert await service.handle_message("ward/bed-3/vitals", b'{"pulse": 200}')
        await service.close()

        assert len(await memory_store.get_alerts()) == 1

    @patch("vitals.lib.eventbus.aioredis")
    async def test_custom_topic_received_through_subscriber(
        self, mock_aioredis, service, memory_store
    ):
        await memory_store.create_device(
            DeviceInsert(device_id="bed-7", name="Bed 7", topic="ward/3/bed-7")
        )
        await service.refresh_topics()

        async def mock_listen():
            yield {"type": "subscribe", "channel": b"ward/3/bed-7", "data": 2}
            yield {
                "type": "message",
                "pattern": None,
                "channel": b"ward/3/bed-7",
                "data": b'{"pulse": 200}',
            }

        mock_pubsub = MagicMock()
        mock_pubsub.psubscribe = AsyncMock()
        mock_pubsub.subscribe = AsyncMock()
        mock_pubsub.listen.return_value = mock_listen()
        mock_aioredis.from_url.return_value.pubsub.return_value = mock_pubsub

        subscriber = ReadingSubscriber()
        await subscriber.connect()
        await service.consume(subscriber)
        await service.dispatcher.join()

        mock_pubsub.subscribe.assert_awaited_once_with("ward/3/bed-7")
        alerts = await memory_store.get_alerts()
        assert [a.value for a in alerts] == [200.0]

    async def test_topic_change_resubscribes(self, service, memory_store):
        subscriber = MagicMock()
        subscriber.subscribe_topics = AsyncMock()
        service._subscriber = subscriber
        device = await memory_store.get_device_by_external_id("bed-12")

        await memory_store.update_device(device.id, {"topic": "ward/3/bed-12"})
        await service.refresh_topics()

        topics = subscriber.subscribe_topics.await_args.args[0]
        assert list(topics) == ["ward/3/bed-12"]
        assert await service.handle_message("ward/3/bed-12", b'{"pulse": 72}')
