"""Event Bus - in-process pub/sub for locally connected push clients.

The bus sink publishes every normalized event here; the SSE endpoint and
the WebSocket endpoint each subscribe and stream to their clients.

Subscribers that fall behind lose events rather than building a backlog:
live updates are best-effort.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Coroutine
from typing import Any

logger = logging.getLogger(__name__)

# Type for event callbacks
EventCallback = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]

DEFAULT_STREAM_BUFFER = 100


class EventBus:
    """Simple event bus with wildcard subscription support.

    Usage:
        bus = EventBus()
        unsubscribe = await bus.subscribe("wechat.message", on_message)
        await bus.publish("wechat.message", {"sender": "wxid_abc"})
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[EventCallback]] = {}
        self._lock = asyncio.Lock()

    @property
    def subscriber_count(self) -> int:
        return sum(len(callbacks) for callbacks in self._subscriptions.values())

    async def publish(self, event_type: str, properties: dict[str, Any]) -> None:
        """Publish event to all subscribers.

        Args:
            event_type: Dot-separated event name (e.g., "wechat.message")
            properties: JSON-ready event body
        """
        payload = {"type": event_type, "properties": properties}

        async with self._lock:
            # Copies avoid mutation during iteration
            specific_subs = list(self._subscriptions.get(event_type, []))
            wildcard_subs = list(self._subscriptions.get("*", []))

        for callback in specific_subs:
            try:
                await callback(payload)
            except Exception:
                logger.exception(f"Error in subscriber for {event_type}")

        for callback in wildcard_subs:
            try:
                await callback(payload)
            except Exception:
                logger.exception(f"Error in wildcard subscriber for {event_type}")

    async def subscribe(self, event_type: str, callback: EventCallback) -> Callable[[], None]:
        """Subscribe to a specific event type. Returns an unsubscribe function."""
        return await self._subscribe(event_type, callback)

    async def subscribe_all(self, callback: EventCallback) -> Callable[[], None]:
        """Subscribe to ALL events (used by SSE and WebSocket endpoints)."""
        return await self._subscribe("*", callback)

    async def _subscribe(self, key: str, callback: EventCallback) -> Callable[[], None]:
        async with self._lock:
            self._subscriptions.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            # Synchronous unsubscribe (safe because we're just removing)
            if key in self._subscriptions and callback in self._subscriptions[key]:
                self._subscriptions[key].remove(callback)

        return unsubscribe

    async def stream(self, buffer: int = DEFAULT_STREAM_BUFFER) -> AsyncIterator[dict[str, Any]]:
        """Yield every published event.

        Usage:
            async for event in bus.stream():
                yield f"data: {json.dumps(event)}\\n\\n"
        """
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=buffer)

        async def on_event(payload: dict[str, Any]) -> None:
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                logger.warning(f"Stream subscriber is behind; dropping {payload['type']}")

        unsubscribe = await self.subscribe_all(on_event)

        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()
