"""Per-device work queues between the subscriber and alert evaluation.

Readings from one device are handled strictly in arrival order by a single
worker task; different devices are handled concurrently. Queues are bounded
so a slow device can never make the subscriber block.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeAlias

from vitals.lib.config import get_settings
from vitals.lib.reading import SensorReading
from vitals.logging import get_logger

logger = get_logger("ingest.dispatcher")

ReadingHandler: TypeAlias = Callable[[SensorReading], Awaitable[object]]


class ReadingDispatcher:
    """Fans readings out to one bounded queue and worker per device.

    A worker exits once its queue drains, so only devices with pending
    readings hold a queue and a task.
    """

    def __init__(
        self, handler: ReadingHandler, *, queue_size: int | None = None
    ) -> None:
        self._handler = handler
        self._queue_size = queue_size or get_settings().ingest.queue_size
        self._queues: dict[str, asyncio.Queue[SensorReading]] = {}
        self._workers: dict[str, asyncio.Task[None]] = {}
        self._closed = False

    @property
    def devices(self) -> list[str]:
        return list(self._queues)

    def submit(self, reading: SensorReading) -> bool:
        """Queue a reading for its device.

        Must be called from a running event loop. Returns False when the
        reading was dropped because the device's queue is full or the
        dispatcher is closed.
        """
        if self._closed:
            logger.warning("Dispatcher closed, dropping reading %s", reading)
            return False

        queue = self._queues.get(reading.device_id)
        if queue is None:
            queue = asyncio.Queue(maxsize=self._queue_size)
            self._queues[reading.device_id] = queue
            self._workers[reading.device_id] = asyncio.create_task(
                self._work(reading.device_id, queue),
                name=f"ingest-{reading.device_id}",
            )

        try:
            queue.put_nowait(reading)
        except asyncio.QueueFull:
            logger.warning(
                "Queue full for %s (%d pending), dropping reading",
                reading.device_id,
                queue.qsize(),
            )
            return False
        return True

    async def _work(
        self, device_id: str, queue: asyncio.Queue[SensorReading]
    ) -> None:
        while True:
            reading = await queue.get()
            try:
                await self._handler(reading)
            except Exception:
                logger.exception("Failed to handle reading from %s", device_id)
            finally:
                queue.task_done()
            if queue.empty():
                # Idle devices hold no task; submit() starts a new worker
                del self._queues[device_id]
                del self._workers[device_id]
                return

    async def join(self) -> None:
        """Wait until every queued reading has been handled."""
        await asyncio.gather(*(q.join() for q in self._queues.values()))

    async def close(self) -> None:
        """Stop accepting readings, drain the queues and stop the workers."""
        self._closed = True
        await self.join()
        for task in self._workers.values():
            task.cancel()
        await asyncio.gather(*self._workers.values(), return_exceptions=True)
        self._workers.clear()
        self._queues.clear()
        logger.info("Reading dispatcher closed")
