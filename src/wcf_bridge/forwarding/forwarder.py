"""Forwarding layer.

Fans each normalized event out to every configured sink.

Each sink gets its own worker task and bounded queue:
- events reach a given sink in the order they were received
- a slow or failing sink only delays itself, never other sinks and
  never the event drain loop (forward() does not block)
- when a sink's queue is full the event is dropped for that sink
  (at-most-once delivery, no durable backlog)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from ..errors import SinkDeliveryError
from ..protocol.events import NormalizedEvent
from .sinks import Sink

logger = logging.getLogger(__name__)


@dataclass
class SinkStats:
    delivered: int = 0
    failed: int = 0
    dropped: int = 0


class SinkWorker:
    """Delivers queued events to one sink, one at a time."""

    def __init__(self, sink: Sink):
        self.sink = sink
        self.stats = SinkStats()
        self._queue: asyncio.Queue[NormalizedEvent] = asyncio.Queue(
            maxsize=max(sink.max_backlog, 1)
        )
        self._task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def offer(self, event: NormalizedEvent) -> bool:
        """Enqueue without blocking. Returns False if the event was dropped."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.stats.dropped += 1
            logger.warning(f"{self.sink.name}: backlog full, dropping event {event.id}")
            return False
        return True

    async def start(self) -> None:
        await self.sink.open()
        self._task = asyncio.create_task(self._run(), name=f"sink:{self.sink.name}")

    async def stop(self) -> None:
        """Stop without waiting for queued events or outstanding retries."""
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        await self.sink.close()

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.sink.deliver(event)
                self.stats.delivered += 1
            except SinkDeliveryError as e:
                self.stats.failed += 1
                logger.error(f"Dropping event {event.id}: {e.message}")
            except Exception:
                self.stats.failed += 1
                logger.exception(f"{self.sink.name}: unexpected error delivering event {event.id}")
            finally:
                self._queue.task_done()


class Forwarder:
    """Fan-out of normalized events to sinks.

    Usage:
        forwarder = Forwarder([WebhookSink(url), BusSink(bus)])
        await forwarder.start()
        forwarder.forward(event)
        await forwarder.stop()
    """

    def __init__(self, sinks: Sequence[Sink]):
        self._workers = [SinkWorker(sink) for sink in sinks]
        self._started = False

    @property
    def sinks(self) -> list[Sink]:
        return [worker.sink for worker in self._workers]

    async def start(self) -> None:
        if self._started:
            return
        for worker in self._workers:
            await worker.start()
        self._started = True
        logger.info(f"Forwarding to {len(self._workers)} sink(s): {[s.name for s in self.sinks]}")

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        for worker in self._workers:
            await worker.stop()

    def forward(self, event: NormalizedEvent) -> int:
        """Offer the event to every sink. Returns how many sinks accepted it."""
        return sum(1 for worker in self._workers if worker.offer(event))

    async def drain(self) -> None:
        """Wait until every sink has handled its queued events (for tests/shutdown)."""
        await asyncio.gather(*(worker.drain() for worker in self._workers))

    def stats(self) -> dict[str, dict[str, Any]]:
        return {
            worker.sink.name: {
                "mode": worker.sink.mode.value,
                "pending": worker.pending,
                "delivered": worker.stats.delivered,
                "failed": worker.stats.failed,
                "dropped": worker.stats.dropped,
            }
            for worker in self._workers
        }
