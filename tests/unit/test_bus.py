"""Tests for the in-process event bus."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from wcf_bridge.bus import EventBus


class TestEventBus:
    @pytest.mark.asyncio
    async def test_specific_and_wildcard_subscribers(self) -> None:
        bus = EventBus()
        specific: list[str] = []
        everything: list[str] = []

        async def on_message(payload: dict[str, Any]) -> None:
            specific.append(payload["type"])

        async def on_any(payload: dict[str, Any]) -> None:
            everything.append(payload["type"])

        await bus.subscribe("wechat.message", on_message)
        await bus.subscribe_all(on_any)

        await bus.publish("wechat.message", {})
        await bus.publish("wechat.system", {})

        assert specific == ["wechat.message"]
        assert everything == ["wechat.message", "wechat.system"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self) -> None:
        bus = EventBus()
        seen: list[dict[str, Any]] = []

        async def on_any(payload: dict[str, Any]) -> None:
            seen.append(payload)

        unsubscribe = await bus.subscribe_all(on_any)
        unsubscribe()
        await bus.publish("wechat.message", {})

        assert seen == []
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_failing_subscriber_isolated(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        async def broken(payload: dict[str, Any]) -> None:
            raise RuntimeError("boom")

        async def healthy(payload: dict[str, Any]) -> None:
            seen.append(payload["type"])

        await bus.subscribe_all(broken)
        await bus.subscribe_all(healthy)
        await bus.publish("wechat.message", {})

        assert seen == ["wechat.message"]

    @pytest.mark.asyncio
    async def test_stream(self) -> None:
        bus = EventBus()
        stream = bus.stream()
        first = asyncio.ensure_future(stream.__anext__())
        while bus.subscriber_count == 0:
            await asyncio.sleep(0)

        await bus.publish("wechat.message", {"id": 1})

        assert await asyncio.wait_for(first, 1.0) == {
            "type": "wechat.message",
            "properties": {"id": 1},
        }
        await stream.aclose()
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_slow_stream_drops(self) -> None:
        bus = EventBus()
        stream = bus.stream(buffer=1)
        first = asyncio.ensure_future(stream.__anext__())
        while bus.subscriber_count == 0:
            await asyncio.sleep(0)

        for i in range(3):
            await bus.publish("wechat.message", {"id": i})

        assert (await first)["properties"]["id"] == 0
        # 1 and 2 arrived while the buffer was full
        await bus.publish("wechat.message", {"id": 3})
        assert (await stream.__anext__())["properties"]["id"] == 3
        await stream.aclose()
