"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from wcf_bridge.normalizer import normalize
from wcf_bridge.protocol.events import Event, EventKind, NormalizedEvent, classify

CARD_XML = (
    "<msg>"
    '<appmsg appid="" sdkver="0">'
    "<title>Weekly report</title>"
    "<des>Numbers for week 42</des>"
    "<type>5</type>"
    "<url>https://example.com/report</url>"
    "</appmsg>"
    "<fromusername>wxid_abc</fromusername>"
    "</msg>"
)


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def make_event() -> Callable[..., Event]:
    """Factory for SDK events with sensible defaults."""

    def factory(**overrides: Any) -> Event:
        values: dict[str, Any] = {
            "id": 1,
            "msg_type": 1,
            "sender": "wxid_abc",
            "room_id": "",
            "content": "hello",
        }
        values.update(overrides)
        values.setdefault("kind", classify(values["msg_type"]))
        return Event(**values)

    return factory


@pytest.fixture
def make_normalized(make_event: Callable[..., Event]) -> Callable[..., NormalizedEvent]:
    """Factory for normalized events."""

    def factory(**overrides: Any) -> NormalizedEvent:
        return normalize(make_event(**overrides))

    return factory


@pytest.fixture
def card_event(make_event: Callable[..., Event]) -> Event:
    return make_event(id=42, msg_type=49, kind=EventKind.MESSAGE, content=CARD_XML)


@pytest.fixture
def card_xml() -> str:
    return CARD_XML
