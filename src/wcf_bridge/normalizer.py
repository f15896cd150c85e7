"""Event normalization.

Card messages, friend requests and many system notices carry their real
content as XML. Normalization flattens that XML into a single-level
key/value mapping so sinks can consume every event the same way.

Flattening rules for ``<msg><appmsg appid="x"><title>T</title></appmsg></msg>``:
- element paths are joined with "." relative to the root: ``appmsg.title``
- attributes use "@": ``appmsg@appid`` (root attributes: ``msg@attr``)
- repeated siblings are indexed from 1: ``item[1].name``, ``item[2].name``
- a leaf whose tag occurs once in the document is also exposed under the
  bare tag (``title``), unless that key is already taken
- ``_root`` holds the root tag name
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections import Counter
from typing import Any

from .errors import MarkupParseError
from .protocol.events import (
    MSG_TYPE_APP,
    MSG_TYPE_CONTACT_CARD,
    MSG_TYPE_EMOJI,
    MSG_TYPE_FRIEND_REQUEST,
    MSG_TYPE_LOCATION,
    MSG_TYPE_SYSTEM_XML,
    MSG_TYPE_VOIP,
    Event,
    NormalizedEvent,
)

logger = logging.getLogger(__name__)

# Types whose content is XML even when it does not look like it
MARKUP_MSG_TYPES = frozenset(
    {
        MSG_TYPE_FRIEND_REQUEST,
        MSG_TYPE_CONTACT_CARD,
        MSG_TYPE_EMOJI,
        MSG_TYPE_LOCATION,
        MSG_TYPE_APP,
        MSG_TYPE_VOIP,
        MSG_TYPE_SYSTEM_XML,
    }
)


def has_markup(event: Event) -> bool:
    """Whether the event content should be parsed as XML.

    Other types only count when the whole content looks like an element,
    so chat lines such as "<3 see you" stay plain text.
    """
    if event.msg_type in MARKUP_MSG_TYPES:
        return True
    text = event.content.strip()
    return text.startswith("<") and text.endswith(">")


def flatten_markup(text: str) -> dict[str, Any]:
    """Parse an XML document and flatten it.

    Raises:
        MarkupParseError: If the text is empty or not well-formed XML
    """
    source = text.strip()
    if not source:
        raise MarkupParseError("Empty markup")
    try:
        root = ET.fromstring(source)
    except ET.ParseError as e:
        raise MarkupParseError(f"Invalid markup: {e}") from e
    return flatten_element(root)


def flatten_element(root: ET.Element) -> dict[str, Any]:
    """Flatten an element tree into a single-level dict."""
    flat: dict[str, Any] = {"_root": root.tag}
    leaf_counts: Counter[str] = Counter()
    leaf_values: dict[str, str] = {}

    # Explicit stack: nesting depth is sender-controlled
    stack: list[tuple[ET.Element, str]] = [(root, "")]
    while stack:
        element, path = stack.pop()
        for name, value in element.attrib.items():
            flat[f"{path or element.tag}@{name}"] = value

        children = list(element)
        text = (element.text or "").strip()
        if not children:
            flat[path or element.tag] = text
            leaf_counts[element.tag] += 1
            leaf_values[element.tag] = text
            continue

        if text:
            flat[path or element.tag] = text

        totals = Counter(child.tag for child in children)
        seen: Counter[str] = Counter()
        pending = []
        for child in children:
            seen[child.tag] += 1
            name = child.tag if totals[child.tag] == 1 else f"{child.tag}[{seen[child.tag]}]"
            pending.append((child, f"{path}.{name}" if path else name))
        # Reversed so children are visited in document order
        stack.extend(reversed(pending))

    for tag, count in leaf_counts.items():
        if count == 1 and tag not in flat:
            flat[tag] = leaf_values[tag]

    return flat


def normalize(event: Event) -> NormalizedEvent:
    """Build the sink-facing form of an event.

    Parsed markup replaces ``content``; ``raw_content`` keeps the original.
    Never raises for markup problems: a parse failure is recorded on the
    result and the raw content is kept.
    """
    markup: dict[str, Any] | None = None
    parse_error: str | None = None

    if has_markup(event):
        try:
            markup = flatten_markup(event.content)
        except MarkupParseError as e:
            parse_error = e.message
            logger.info(f"Event {event.id} (type {event.msg_type}) markup not parsed: {e.message}")

    return NormalizedEvent(
        kind=event.kind,
        id=event.id,
        msg_type=event.msg_type,
        sender=event.sender,
        room_id=event.room_id,
        origin=event.origin,
        is_self=event.is_self,
        is_group=event.is_group,
        content=markup if markup is not None else event.content,
        raw_content=event.content,
        parse_failed=parse_error is not None,
        parse_error=parse_error,
        extra=event.extra,
        thumb=event.thumb,
        xml=event.xml,
        sdk_timestamp=event.sdk_timestamp,
        received_at=event.received_at,
    )
