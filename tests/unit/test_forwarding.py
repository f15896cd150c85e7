"""Tests for sinks and the forwarder."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from wcf_bridge.bus import EventBus
from wcf_bridge.errors import SinkDeliveryError
from wcf_bridge.forwarding import BusSink, DeliveryMode, Forwarder, PushChannelSink, WebhookSink
from wcf_bridge.protocol.events import NormalizedEvent
from wcf_bridge.retry import RetryPolicy


def _client(statuses: list[int], received: list[dict[str, Any]]) -> httpx.AsyncClient:
    """Client whose responses follow ``statuses`` (the last one repeats)."""
    remaining = list(statuses)

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        status = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return httpx.Response(status)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _webhook(client: httpx.AsyncClient, **kwargs: Any) -> tuple[WebhookSink, list[float]]:
    sink = WebhookSink("http://hooks.test/wechat", client=client, **kwargs)
    slept: list[float] = []

    async def record(delay: float) -> None:
        slept.append(delay)

    sink._sleep = record
    return sink, slept


class RecordingSink:
    """Sink double that records deliveries."""

    mode = DeliveryMode.FIRE_AND_FORGET

    def __init__(self, name: str = "recording", max_backlog: int = 100, delay: float = 0.0):
        self.name = name
        self.max_backlog = max_backlog
        self.delay = delay
        self.delivered: list[int] = []

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def deliver(self, event: NormalizedEvent) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.delivered.append(event.id)


# =============================================================================
# WebhookSink
# =============================================================================


class TestWebhookSink:
    @pytest.mark.asyncio
    async def test_delivers_json(self, make_normalized) -> None:
        received: list[dict[str, Any]] = []
        sink, slept = _webhook(_client([200], received))

        await sink.deliver(make_normalized(id=7, content="hello"))

        assert sink.attempts == 1
        assert slept == []
        assert received[0]["id"] == 7
        assert received[0]["content"] == "hello"
        assert received[0]["kind"] == "message"

    @pytest.mark.asyncio
    async def test_fail_fail_succeed_delivers_once(self, make_normalized) -> None:
        received: list[dict[str, Any]] = []
        sink, slept = _webhook(_client([500, 503, 204], received))

        await sink.deliver(make_normalized())

        assert sink.attempts == 3
        assert len(received) == 3
        assert slept == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, make_normalized) -> None:
        received: list[dict[str, Any]] = []
        sink, slept = _webhook(
            _client([500], received),
            policy=RetryPolicy(max_attempts=4, initial_delay=1.0, max_delay=3.0),
        )

        with pytest.raises(SinkDeliveryError) as exc_info:
            await sink.deliver(make_normalized())

        assert sink.attempts == 4
        assert exc_info.value.attempts == 4
        assert "HTTP 500" in exc_info.value.message
        assert slept == [1.0, 2.0, 3.0]

    @pytest.mark.asyncio
    async def test_network_error_retried(self, make_normalized) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sink, _ = _webhook(client)

        await sink.deliver(make_normalized())

        assert calls == 2


# =============================================================================
# PushChannelSink
# =============================================================================


class TestPushChannelSink:
    @pytest.mark.asyncio
    async def test_emits_named_message(self, make_normalized) -> None:
        websocket = AsyncMock()
        connect = AsyncMock(return_value=websocket)
        sink = PushChannelSink("ws://push.test/events", connect=connect)

        await sink.deliver(make_normalized(msg_type=37, content="<msg/>"))

        message = json.loads(websocket.send.await_args.args[0])
        assert message["event"] == "wechat.friend_request"
        assert message["data"]["msg_type"] == 37
        connect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unreachable_open_does_not_raise(self) -> None:
        connect = AsyncMock(side_effect=OSError("connection refused"))
        sink = PushChannelSink("ws://push.test/events", connect=connect)

        await sink.open()

        assert not sink.is_connected

    @pytest.mark.asyncio
    async def test_failed_emit_reconnects_lazily(self, make_normalized) -> None:
        broken = AsyncMock()
        broken.send.side_effect = OSError("reset")
        healthy = AsyncMock()
        connect = AsyncMock(side_effect=[broken, healthy])
        sink = PushChannelSink("ws://push.test/events", connect=connect)

        with pytest.raises(SinkDeliveryError):
            await sink.deliver(make_normalized(id=1))
        assert not sink.is_connected

        await sink.deliver(make_normalized(id=2))

        assert connect.await_count == 2
        assert json.loads(healthy.send.await_args.args[0])["data"]["id"] == 2


# =============================================================================
# Forwarder
# =============================================================================


class TestForwarder:
    @pytest.mark.asyncio
    async def test_per_sink_order(self, make_normalized) -> None:
        sink = RecordingSink(delay=0.001)
        forwarder = Forwarder([sink])
        await forwarder.start()
        try:
            for i in range(20):
                forwarder.forward(make_normalized(id=i))
            await forwarder.drain()
        finally:
            await forwarder.stop()

        assert sink.delivered == list(range(20))

    @pytest.mark.asyncio
    async def test_failing_webhook_does_not_block_other_sinks(self, make_normalized) -> None:
        received: list[dict[str, Any]] = []
        webhook, _ = _webhook(_client([500], received))
        other = RecordingSink()
        forwarder = Forwarder([webhook, other])
        await forwarder.start()
        try:
            forwarder.forward(make_normalized(id=1))
            forwarder.forward(make_normalized(id=2))
            await forwarder.drain()
        finally:
            await forwarder.stop()

        assert other.delivered == [1, 2]
        # Exactly max_attempts per event, then dropped
        assert webhook.attempts == 6
        stats = forwarder.stats()
        assert stats[webhook.name]["failed"] == 2
        assert stats["recording"]["delivered"] == 2

    @pytest.mark.asyncio
    async def test_full_backlog_drops_for_that_sink_only(self, make_normalized) -> None:
        slow = RecordingSink(name="slow", max_backlog=1, delay=0.05)
        fast = RecordingSink(name="fast")
        forwarder = Forwarder([slow, fast])
        await forwarder.start()
        try:
            accepted = [forwarder.forward(make_normalized(id=i)) for i in range(5)]
            await forwarder.drain()
        finally:
            await forwarder.stop()

        assert accepted[0] == 2
        assert fast.delivered == [0, 1, 2, 3, 4]
        assert forwarder.stats()["slow"]["dropped"] >= 3

    @pytest.mark.asyncio
    async def test_bus_sink_publishes(self, make_normalized) -> None:
        bus = EventBus()
        seen: list[dict[str, Any]] = []

        async def on_event(payload: dict[str, Any]) -> None:
            seen.append(payload)

        await bus.subscribe("wechat.message", on_event)
        await BusSink(bus).deliver(make_normalized(id=5))

        assert seen[0]["type"] == "wechat.message"
        assert seen[0]["properties"]["id"] == 5
