"""Redis-based event bus.

Devices publish readings on per-device channels (``patient/<id>/data``);
the ingest service consumes them with a pattern subscription, plus explicit
subscriptions for devices registered on other topics, and publishes
an event on the ALERT topic for every alert it creates.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from fnmatch import fnmatchcase
from typing import Any, Literal, Self

import redis
import redis.asyncio as aioredis

from vitals.lib.alerts import AlertCallback
from vitals.lib.config import get_settings
from vitals.lib.models import Alert
from vitals.logging import get_logger

logger = get_logger("lib.eventbus")


class Topic(StrEnum):
    """Event bus topics."""

    ALERT = "alert"


@dataclass(frozen=True, slots=True)
class Event(ABC):
    """Base class for all event bus payloads."""

    @property
    @abstractmethod
    def event_type(self) -> str:
        """Discriminator field for event type identification."""

    @abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary for JSON serialization."""


@dataclass(frozen=True, slots=True)
class AlertEventPayload(Event):
    """Alert event for a newly created or resolved alert."""

    alert_id: int
    device_id: int
    sensor_type: str
    level: str
    message: str
    value: float
    threshold: float
    created_at: datetime
    is_resolved: bool = False

    @classmethod
    def from_alert(cls, alert: Alert) -> Self:
        return cls(
            alert_id=alert.id,
            device_id=alert.device_id,
            sensor_type=alert.sensor_type.value,
            level=alert.level.value,
            message=alert.message,
            value=alert.value,
            threshold=alert.threshold,
            created_at=alert.created_at,
            is_resolved=alert.resolved,
        )

    @property
    def event_type(self) -> Literal["alert"]:
        return "alert"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.event_type,
            "alert_id": self.alert_id,
            "device_id": self.device_id,
            "sensor_type": self.sensor_type,
            "level": self.level,
            "message": self.message,
            "value": self.value,
            "threshold": self.threshold,
            "created_at": self.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            "epoch": int(self.created_at.timestamp() * 1000),
            "is_resolved": self.is_resolved,
        }


class EventPublisher:
    """Publishes events to the event bus."""

    def __init__(self) -> None:
        self._redis_url = get_settings().eventbus.redis_url
        self._client: redis.Redis | None = None

    def connect(self) -> None:
        """Connect to Redis."""
        self._client = redis.from_url(self._redis_url)
        logger.info("Event publisher connected to Redis")

    def publish(self, topic: Topic, data: Event) -> None:
        """Publish a message to the event bus.

        Args:
            topic: The topic to publish to (e.g., Topic.ALERT).
            data: Event to publish.
        """
        if self._client is None:
            return

        message = json.dumps(data.to_dict())
        self._client.publish(topic, message)
        logger.debug("Published to %s: %s", topic, message)

    def close(self) -> None:
        """Close the publisher connection."""
        if self._client is not None:
            self._client.close()
            self._client = None
        logger.info("Event publisher closed")


def create_alert_publisher(publisher: EventPublisher) -> AlertCallback:
    """Create an alert callback that publishes to the event bus.

    Args:
        publisher: The EventPublisher to use for publishing alerts.

    Returns:
        A callback that can be registered with AlertManager.
    """

    def publish_alert(alert: Alert) -> None:
        publisher.publish(Topic.ALERT, AlertEventPayload.from_alert(alert))

    return publish_alert


class ReadingSubscriber:
    """Receives raw device messages from per-device reading channels.

    Uses a pattern subscription so devices following the default topic
    layout are picked up without resubscribing. Devices registered with a
    topic outside the pattern get an explicit channel subscription through
    subscribe_topics().
    """

    def __init__(self, pattern: str | None = None) -> None:
        settings = get_settings()
        self._redis_url = settings.eventbus.redis_url
        self._pattern = pattern or settings.ingest.topic_pattern
        self._topics: set[str] = set()
        self._client: aioredis.Redis | None = None
        self._pubsub: aioredis.client.PubSub | None = None

    @property
    def topics(self) -> set[str]:
        """Channels subscribed on top of the pattern."""
        return set(self._topics)

    async def connect(self) -> None:
        """Connect to Redis and subscribe to the reading pattern."""
        self._client = aioredis.from_url(self._redis_url)
        self._pubsub = self._client.pubsub()
        await self._pubsub.psubscribe(self._pattern)
        if self._topics:
            await self._pubsub.subscribe(*self._topics)
        logger.info(
            "Reading subscriber connected to Redis, pattern: %s", self._pattern
        )

    async def subscribe_topics(self, topics: Iterable[str]) -> None:
        """Make the explicit subscriptions match the given device topics.

        Topics already covered by the pattern are skipped so a message is
        never delivered twice.
        """
        wanted = {t for t in topics if not fnmatchcase(t, self._pattern)}
        added = wanted - self._topics
        removed = self._topics - wanted
        if self._pubsub is not None:
            if added:
                await self._pubsub.subscribe(*added)
            if removed:
                await self._pubsub.unsubscribe(*removed)
        self._topics = wanted
        if added or removed:
            logger.info(
                "Device topics subscribed: %s, unsubscribed: %s",
                sorted(added),
                sorted(removed),
            )

    async def receive(self) -> AsyncIterator[tuple[str, bytes]]:
        """Async iterator that yields (channel, raw payload) tuples."""
        if self._pubsub is None:
            return

        async for message in self._pubsub.listen():
            if message["type"] not in ("message", "pmessage"):
                continue
            channel = message["channel"]
            if isinstance(channel, bytes):
                channel = channel.decode()
            yield channel, message["data"]

    async def close(self) -> None:
        """Close the subscriber connection."""
        if self._pubsub is not None:
            if self._topics:
                await self._pubsub.unsubscribe()
            await self._pubsub.punsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("Reading subscriber closed")

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()
