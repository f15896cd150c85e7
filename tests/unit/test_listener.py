"""Tests for the event listener."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest

from wcf_bridge.listener import EventListener
from wcf_bridge.protocol.frames import MSG_EVENT, MSG_RESPONSE, encode_frame


def _frame(record: object, msg_type: int = MSG_EVENT) -> bytes:
    return encode_frame(msg_type, record)[4:]


def _listener(frames: list[bytes] | None = None) -> tuple[EventListener, MagicMock, MagicMock]:
    transport = MagicMock()
    transport.wait_connected = AsyncMock()

    async def subscribe() -> AsyncIterator[bytes]:
        for frame in frames or []:
            yield frame
        # Keep the subscription open like a live socket
        await asyncio.Event().wait()

    transport.subscribe_events = subscribe
    forwarder = MagicMock()
    forwarder.forward = MagicMock(return_value=1)
    return EventListener(transport, forwarder), transport, forwarder


class TestHandleFrame:
    def test_forwards_normalized_event(self, card_xml: str) -> None:
        listener, _, forwarder = _listener()

        event = listener.handle_frame(
            _frame({"id": 5, "type": 49, "sender": "wxid_abc", "content": card_xml})
        )

        assert event is not None
        forwarder.forward.assert_called_once_with(event)
        assert event.content["title"] == "Weekly report"
        assert listener.received == 1

    def test_undecodable_frame_skipped(self) -> None:
        listener, _, forwarder = _listener()

        assert listener.handle_frame(bytes([MSG_EVENT]) + b"\xc1") is None
        assert listener.handle_frame(_frame({"id": 1}, MSG_RESPONSE)) is None

        forwarder.forward.assert_not_called()
        assert listener.dropped == 2

    def test_malformed_markup_forwarded(self) -> None:
        listener, _, forwarder = _listener()

        event = listener.handle_frame(_frame({"id": 6, "type": 49, "content": "<msg><broken>"}))

        assert event is not None
        assert event.parse_failed
        forwarder.forward.assert_called_once()


class TestRun:
    @pytest.mark.asyncio
    async def test_drains_in_order_and_skips_bad_frames(self) -> None:
        frames = [
            _frame({"id": 1, "type": 1, "content": "a"}),
            b"\x03\xc1",
            _frame({"id": 2, "type": 1, "content": "b"}),
        ]
        listener, _, forwarder = _listener(frames)
        hook = AsyncMock()
        listener._on_subscribe = hook

        listener.start()
        try:
            for _ in range(100):
                if forwarder.forward.call_count == 2:
                    break
                await asyncio.sleep(0.01)
        finally:
            await listener.stop()

        forwarded = [call.args[0].id for call in forwarder.forward.call_args_list]
        assert forwarded == [1, 2]
        assert listener.dropped == 1
        hook.assert_awaited_once()
        assert not listener.is_running

    @pytest.mark.asyncio
    async def test_failing_subscribe_hook_does_not_stop_draining(self) -> None:
        listener, _, forwarder = _listener([_frame({"id": 1, "type": 1})])
        listener._on_subscribe = AsyncMock(side_effect=RuntimeError("boom"))

        listener.start()
        try:
            for _ in range(100):
                if forwarder.forward.called:
                    break
                await asyncio.sleep(0.01)
        finally:
            await listener.stop()

        forwarder.forward.assert_called_once()

    @pytest.mark.asyncio
    async def test_deeply_nested_markup_does_not_stop_draining(self) -> None:
        deep = "<msg>" * 3000 + "x" + "</msg>" * 3000
        frames = [
            _frame({"id": 1, "type": 49, "content": deep}),
            _frame({"id": 2, "type": 1, "content": "after"}),
        ]
        listener, _, forwarder = _listener(frames)

        listener.start()
        try:
            for _ in range(100):
                if forwarder.forward.call_count == 2:
                    break
                await asyncio.sleep(0.01)
            assert listener.is_running
        finally:
            await listener.stop()

        first, second = (call.args[0] for call in forwarder.forward.call_args_list)
        assert first.id == 1
        assert first.parse_failed is False
        assert second.content == "after"

    @pytest.mark.asyncio
    async def test_error_on_one_frame_drops_only_that_frame(self) -> None:
        frames = [
            _frame({"id": 1, "type": 1, "content": "a"}),
            _frame({"id": 2, "type": 1, "content": "b"}),
        ]
        listener, _, forwarder = _listener(frames)
        forwarder.forward = MagicMock(side_effect=[RuntimeError("boom"), 1])

        listener.start()
        try:
            for _ in range(100):
                if forwarder.forward.call_count == 2:
                    break
                await asyncio.sleep(0.01)
            assert listener.is_running
        finally:
            await listener.stop()

        assert [call.args[0].id for call in forwarder.forward.call_args_list] == [1, 2]
        assert listener.dropped == 1
        assert listener.received == 2
