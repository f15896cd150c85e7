"""Event listener.

A long-lived task that drains the SDK event channel:

    subscribe_events() -> decode_event() -> normalize() -> Forwarder.forward()

- Frames that cannot be decoded are logged and skipped
- Any other error while handling one frame is logged and that frame
  dropped; the drain loop keeps running
- Markup failures never drop the event; normalize() flags them
- forward() never blocks, so sink health cannot stall the SDK side
- When the subscription ends (socket closed), the listener waits for the
  transport to reconnect and subscribes again
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from .errors import DecodeError
from .forwarding.forwarder import Forwarder
from .normalizer import normalize
from .protocol.events import NormalizedEvent, decode_event
from .transport.base import SdkTransport

logger = logging.getLogger(__name__)

SubscribeHook = Callable[[], Awaitable[None]]


class EventListener:
    """Drains the SDK event channel into the forwarder."""

    def __init__(
        self,
        transport: SdkTransport,
        forwarder: Forwarder,
        *,
        on_subscribe: SubscribeHook | None = None,
    ):
        self._transport = transport
        self._forwarder = forwarder
        self._on_subscribe = on_subscribe
        self._task: asyncio.Task[None] | None = None
        self.received = 0
        self.dropped = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self.run(), name="event-listener")

    async def stop(self) -> None:
        """Stop draining; events in flight are dropped."""
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def run(self) -> None:
        """Drain events until cancelled."""
        while True:
            await self._transport.wait_connected()

            if self._on_subscribe is not None:
                try:
                    await self._on_subscribe()
                except Exception:
                    logger.exception("Subscribe hook failed; draining events anyway")

            logger.info("Event subscription started")
            async for frame in self._transport.subscribe_events():
                try:
                    self.handle_frame(frame)
                except Exception:
                    self.dropped += 1
                    logger.exception(f"Dropping event frame ({len(frame)} bytes) after error")
            logger.info("Event subscription ended; waiting for the SDK session")

            # Let the transport register the failure before waiting again
            await asyncio.sleep(0)

    def handle_frame(self, frame: bytes) -> NormalizedEvent | None:
        """Decode, normalize and forward one frame."""
        try:
            event = decode_event(frame)
        except DecodeError as e:
            self.dropped += 1
            logger.warning(f"Skipping undecodable event frame ({len(frame)} bytes): {e.message}")
            return None

        self.received += 1
        normalized = normalize(event)
        self._forwarder.forward(normalized)
        return normalized
