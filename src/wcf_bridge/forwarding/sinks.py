"""Event sinks.

A sink delivers one normalized event to one external target:
- WebhookSink: HTTP POST with retry and bounded exponential backoff
- PushChannelSink: named message over a persistent WebSocket, best-effort
- BusSink: in-process bus feeding the local SSE/WebSocket endpoints

Sinks raise SinkDeliveryError when they give up on an event; the
forwarder logs it and moves on.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Protocol, runtime_checkable

import httpx
import websockets
from websockets.exceptions import WebSocketException

from ..bus import EventBus
from ..errors import SinkDeliveryError
from ..protocol.events import NormalizedEvent
from ..retry import RetryPolicy

logger = logging.getLogger(__name__)


class DeliveryMode(str, Enum):
    RETRY = "retry"
    FIRE_AND_FORGET = "fire_and_forget"


@runtime_checkable
class Sink(Protocol):
    """Protocol for event sinks."""

    name: str
    mode: DeliveryMode
    max_backlog: int

    async def open(self) -> None:
        """Acquire connections/clients. Must not raise for unreachable targets."""
        ...

    async def close(self) -> None:
        ...

    async def deliver(self, event: NormalizedEvent) -> None:
        """Deliver one event.

        Raises:
            SinkDeliveryError: When the sink gives up on the event
        """
        ...


class WebhookSink:
    """POST each event as JSON to a URL, retrying transient failures.

    A delivery succeeds on any 2xx status. Network errors and other
    statuses are retried up to ``policy.max_attempts`` attempts in total.
    """

    mode = DeliveryMode.RETRY

    def __init__(
        self,
        url: str,
        *,
        policy: RetryPolicy | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        name: str | None = None,
        max_backlog: int = 1000,
    ):
        self.url = url
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self.name = name or f"webhook:{url}"
        self.max_backlog = max_backlog
        self.attempts = 0
        self._client = client
        self._owns_client = client is None
        self._sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def deliver(self, event: NormalizedEvent) -> None:
        if self._client is None:
            await self.open()
        assert self._client is not None

        body = event.to_payload()
        delays = self.policy.delays()
        error = "no attempt made"

        for attempt in range(1, self.policy.max_attempts + 1):
            self.attempts += 1
            try:
                response = await self._client.post(self.url, json=body)
                if response.is_success:
                    if attempt > 1:
                        logger.info(f"{self.name}: event {event.id} delivered on attempt {attempt}")
                    return
                error = f"HTTP {response.status_code}"
            except httpx.HTTPError as e:
                error = f"{type(e).__name__}: {e}"

            if attempt < self.policy.max_attempts:
                delay = next(delays)
                logger.warning(
                    f"{self.name}: attempt {attempt} for event {event.id} failed ({error}); "
                    f"retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        raise SinkDeliveryError(
            self.name,
            f"gave up on event {event.id} after {self.policy.max_attempts} attempts: {error}",
            attempts=self.policy.max_attempts,
        )


class PushChannelSink:
    """Emit events as named messages over a persistent WebSocket.

    Wire format (one JSON text message per event):
        {"event": "wechat.message", "data": {...normalized event...}}

    Best-effort: a failed emit is not retried. The connection is
    re-established lazily on the next emit.
    """

    mode = DeliveryMode.FIRE_AND_FORGET

    def __init__(
        self,
        url: str,
        *,
        connect: Callable[..., Awaitable[Any]] | None = None,
        open_timeout: float = 5.0,
        name: str | None = None,
        max_backlog: int = 16,
    ):
        self.url = url
        self.open_timeout = open_timeout
        self.name = name or f"push:{url}"
        self.max_backlog = max_backlog
        self._connect = connect or websockets.connect
        self._websocket: Any = None

    @property
    def is_connected(self) -> bool:
        return self._websocket is not None

    async def open(self) -> None:
        try:
            await self._ensure_connected()
        except SinkDeliveryError as e:
            logger.warning(f"{e.message}; will retry on next event")

    async def close(self) -> None:
        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            try:
                await websocket.close()
            except (WebSocketException, OSError) as e:
                logger.debug(f"{self.name}: error while closing: {e}")

    async def _ensure_connected(self) -> Any:
        if self._websocket is None:
            try:
                self._websocket = await self._connect(
                    self.url,
                    open_timeout=self.open_timeout,
                    ping_interval=30,
                    ping_timeout=10,
                )
            except (WebSocketException, OSError, TimeoutError) as e:
                raise SinkDeliveryError(self.name, f"cannot connect: {e}") from e
            logger.info(f"{self.name}: connected")
        return self._websocket

    async def deliver(self, event: NormalizedEvent) -> None:
        websocket = await self._ensure_connected()
        message = json.dumps({"event": event.name, "data": event.to_payload()}, ensure_ascii=False)
        try:
            await websocket.send(message)
        except (WebSocketException, OSError) as e:
            self._websocket = None
            raise SinkDeliveryError(self.name, f"emit failed: {e}") from e


class BusSink:
    """Publish events on the in-process bus for local SSE/WebSocket clients."""

    mode = DeliveryMode.FIRE_AND_FORGET

    def __init__(self, bus: EventBus, *, name: str = "bus", max_backlog: int = 100):
        self.bus = bus
        self.name = name
        self.max_backlog = max_backlog

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def deliver(self, event: NormalizedEvent) -> None:
        await self.bus.publish(event.name, event.to_payload())
