"""Ingest service: device messages in, persisted readings and alerts out.

Subscribes to the per-device reading channels, decodes each message,
records the values as time-series points and hands the reading to the
alert manager through the per-device dispatcher. Messages for devices
missing from the registry are dropped before they reach the dispatcher.
"""

import asyncio
import json
import time

from vitals.ingest.dispatcher import ReadingDispatcher
from vitals.lib.alerts import STORAGE_ERRORS, AlertManager
from vitals.lib.config import get_settings
from vitals.lib.db import close_db, init_db
from vitals.lib.eventbus import (
    EventPublisher,
    ReadingSubscriber,
    create_alert_publisher,
)
from vitals.lib.exceptions import ReadingValidationError
from vitals.lib.reading import SensorReading, device_id_from_topic, parse_reading
from vitals.lib.store import Store, create_store
from vitals.logging import get_logger

logger = get_logger("ingest.service")

# Unknown topics reload the registry at most this often
MIN_REFRESH_INTERVAL_SEC = 1.0


class IngestService:
    """Turns raw transport messages into evaluated readings."""

    def __init__(
        self,
        store: Store,
        manager: AlertManager,
        *,
        queue_size: int | None = None,
    ) -> None:
        self._store = store
        self._manager = manager
        self._dispatcher = ReadingDispatcher(self._process, queue_size=queue_size)
        self._topics: dict[str, str] = {}
        self._refreshed_at: float | None = None
        self._subscriber: ReadingSubscriber | None = None

    @property
    def dispatcher(self) -> ReadingDispatcher:
        return self._dispatcher

    @property
    def topics(self) -> dict[str, str]:
        """Registered device ids mapped to their topics."""
        return dict(self._topics)

    async def refresh_topics(self) -> None:
        """Reload the device id to topic map from the registry.

        When a subscriber is attached its channel subscriptions follow the
        new map.
        """
        self._refreshed_at = time.monotonic()
        try:
            devices = await self._store.get_devices()
        except STORAGE_ERRORS:
            logger.exception("Failed to load device topics")
            return
        self._topics = {d.device_id: d.topic for d in devices}
        logger.debug("Loaded %d device topics", len(self._topics))
        if self._subscriber is not None:
            await self._subscriber.subscribe_topics(self._topics.values())

    async def _refresh_if_stale(self) -> None:
        if (
            self._refreshed_at is None
            or time.monotonic() - self._refreshed_at >= MIN_REFRESH_INTERVAL_SEC
        ):
            await self.refresh_topics()

    async def handle_message(self, topic: str, raw: bytes | str) -> bool:
        """Decode one message and queue it for evaluation.

        Returns True when the reading was queued.
        """
        device_id = device_id_from_topic(topic, self._topics)
        if device_id not in self._topics:
            # The device may have been registered since the last load
            await self._refresh_if_stale()
            device_id = device_id_from_topic(topic, self._topics)
            if device_id not in self._topics:
                logger.debug("No registered device for %s, dropping message", topic)
                return False

        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Invalid JSON on %s: %s", topic, e)
            return False

        try:
            reading = parse_reading(device_id, payload)
        except ReadingValidationError as e:
            logger.warning("Ignoring message on %s: %s", topic, e)
            return False

        if not reading:
            logger.debug("No usable values on %s", topic)
            return False

        logger.debug("Received %s", reading)
        return self._dispatcher.submit(reading)

    async def _process(self, reading: SensorReading) -> None:
        try:
            await self._store.persist_reading(reading)
        except STORAGE_ERRORS:
            logger.exception("Failed to persist reading from %s", reading.device_id)
        await self._manager.evaluate_reading(reading)

    async def consume(self, subscriber: ReadingSubscriber) -> None:
        """Feed every message from the subscriber through handle_message.

        The subscriber is kept subscribed to the topics of registered
        devices from then on.
        """
        self._subscriber = subscriber
        await subscriber.subscribe_topics(self._topics.values())
        async for topic, raw in subscriber.receive():
            await self.handle_message(topic, raw)

    async def watch_topics(self, interval: float | None = None) -> None:
        """Reload the device topics periodically until cancelled."""
        interval = interval or get_settings().ingest.topic_refresh_sec
        while True:
            await asyncio.sleep(interval)
            await self.refresh_topics()

    async def close(self) -> None:
        await self._dispatcher.close()


async def run() -> None:
    """Run the ingest service until cancelled."""
    settings = get_settings()
    store = create_store()
    if not settings.mock_store:
        await init_db()

    publisher = EventPublisher()
    publisher.connect()

    manager = AlertManager(store, store)
    manager.register_callback(create_alert_publisher(publisher))
    service = IngestService(store, manager)
    logger.info(
        "Ingest service starting (deduplicate=%s)", manager.deduplicate
    )

    watcher = asyncio.create_task(service.watch_topics(), name="ingest-topics")
    try:
        await service.refresh_topics()
        async with ReadingSubscriber() as subscriber:
            await service.consume(subscriber)
    finally:
        watcher.cancel()
        await asyncio.gather(watcher, return_exceptions=True)
        await service.close()
        publisher.close()
        await close_db()
        logger.info("Ingest service stopped")
