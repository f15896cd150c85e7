"""Event definitions for the SDK event channel.

Events are pushed by the SDK on the event socket, one per frame. The
frame payload is a message record:

    {
        "id": 1234567890,
        "type": 49,
        "sender": "wxid_abc",
        "roomid": "",
        "is_self": false,
        "is_group": false,
        "content": "<msg><appmsg>...</appmsg></msg>",
        "xml": "<msgsource>...</msgsource>",
        "extra": "",
        "thumb": "",
        "sign": "",
        "ts": 1700000000
    }

An optional ``kind`` key lets the SDK classify non-message events
(e.g. ``"login_status"``); otherwise the kind is inferred from ``type``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import DecodeError
from .frames import MSG_EVENT, decode_frame


class EventKind(str, Enum):
    """Normalized event categories."""

    MESSAGE = "message"
    FRIEND_REQUEST = "friend_request"
    SYSTEM = "system"
    LOGIN_STATUS = "login_status"
    UNKNOWN = "unknown"


# SDK message types that matter for classification and markup handling
MSG_TYPE_TEXT = 1
MSG_TYPE_IMAGE = 3
MSG_TYPE_VOICE = 34
MSG_TYPE_FRIEND_REQUEST = 37
MSG_TYPE_CONTACT_CARD = 42
MSG_TYPE_VIDEO = 43
MSG_TYPE_EMOJI = 47
MSG_TYPE_LOCATION = 48
MSG_TYPE_APP = 49
MSG_TYPE_VOIP = 50
MSG_TYPE_SYSTEM = 10000
MSG_TYPE_SYSTEM_XML = 10002

SYSTEM_MSG_TYPES = frozenset({MSG_TYPE_SYSTEM, MSG_TYPE_SYSTEM_XML})


def classify(msg_type: int, declared: str | None = None) -> EventKind:
    """Infer the event kind from the SDK message type."""
    if declared:
        try:
            return EventKind(declared)
        except ValueError:
            return EventKind.UNKNOWN
    if msg_type == MSG_TYPE_FRIEND_REQUEST:
        return EventKind.FRIEND_REQUEST
    if msg_type in SYSTEM_MSG_TYPES:
        return EventKind.SYSTEM
    return EventKind.MESSAGE


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


class Event(BaseModel):
    """An asynchronous notification from the SDK. Immutable."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    id: int = 0
    msg_type: int = 0
    sender: str = ""
    room_id: str = ""
    is_self: bool = False
    is_group: bool = False
    content: str = ""
    xml: str = ""
    extra: str = ""
    thumb: str = ""
    sign: str = ""
    sdk_timestamp: int = 0
    received_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("sender", "room_id", "content", "xml", "extra", "thumb", "sign", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _text(value)

    @property
    def origin(self) -> str:
        """Conversation the event belongs to (room for groups, else sender)."""
        return self.room_id if self.is_group and self.room_id else self.sender


class NormalizedEvent(BaseModel):
    """An Event with embedded markup flattened into key/value form.

    When the content carried markup that parsed, ``content`` is the
    flattened mapping; otherwise it is the original text. ``raw_content``
    always holds the original payload, parsed or not.
    """

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    id: int
    msg_type: int
    sender: str
    room_id: str
    origin: str
    is_self: bool
    is_group: bool
    content: str | dict[str, Any]
    raw_content: str
    parse_failed: bool = False
    parse_error: str | None = None
    extra: str = ""
    thumb: str = ""
    xml: str = ""
    sdk_timestamp: int = 0
    received_at: datetime

    @property
    def markup(self) -> dict[str, Any] | None:
        """The flattened markup, when the content was parsed."""
        return self.content if isinstance(self.content, dict) else None

    @property
    def name(self) -> str:
        """Message name used by push channels, e.g. ``wechat.message``."""
        return f"wechat.{self.kind.value}"

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready representation handed to sinks."""
        return self.model_dump(mode="json")


def decode_event(frame: bytes) -> Event:
    """Decode an event frame body (type byte + msgpack payload).

    Raises:
        DecodeError: If the frame is not an event or the record is malformed
    """
    msg_type, payload = decode_frame(frame)
    if msg_type != MSG_EVENT:
        raise DecodeError(f"Unexpected frame type on event channel: {msg_type:#04x}")
    if not isinstance(payload, dict):
        raise DecodeError(f"Event payload must be a map, got {type(payload).__name__}")

    try:
        sdk_type = int(payload.get("type", 0))
        return Event(
            kind=classify(sdk_type, payload.get("kind")),
            id=payload.get("id", 0),
            msg_type=sdk_type,
            sender=payload.get("sender"),
            room_id=payload.get("roomid"),
            is_self=bool(payload.get("is_self", False)),
            is_group=bool(payload.get("is_group", False)),
            content=payload.get("content"),
            xml=payload.get("xml"),
            extra=payload.get("extra"),
            thumb=payload.get("thumb"),
            sign=payload.get("sign"),
            sdk_timestamp=payload.get("ts", 0),
        )
    except (TypeError, ValueError, ValidationError) as e:
        raise DecodeError(f"Malformed event record: {e}") from e
