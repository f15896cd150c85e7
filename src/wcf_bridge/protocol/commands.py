"""Command definitions for the SDK command channel.

Commands are requests that expect exactly one response. Each command
kind has a pydantic payload model (validated before dispatch) and a
result decoder that turns the SDK's response ``data`` into the value
returned to callers.

Example request body on the wire (see ``frames``):
    {"seq": 7, "func": "send_text", "args": {"msg": "hello", "receiver": "wxid_abc", "aters": ""}}

Example response body:
    {"seq": 7, "status": 0, "data": null}
"""

from __future__ import annotations

import base64
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..errors import DecodeError, SdkError


class CommandKind(str, Enum):
    """All commands understood by the SDK."""

    # Account / login
    IS_LOGIN = "is_login"
    GET_SELF_WXID = "get_self_wxid"
    GET_USER_INFO = "get_user_info"
    REFRESH_QRCODE = "refresh_qrcode"

    # Contacts and rooms
    GET_CONTACTS = "get_contacts"
    QUERY_ROOM_MEMBERS = "query_room_members"
    ADD_CHATROOM_MEMBERS = "add_chatroom_members"
    INVITE_CHATROOM_MEMBERS = "invite_chatroom_members"
    DELETE_CHATROOM_MEMBERS = "delete_chatroom_members"
    ACCEPT_NEW_FRIEND = "accept_new_friend"

    # Databases
    GET_DB_NAMES = "get_db_names"
    GET_DB_TABLES = "get_db_tables"
    QUERY_SQL = "query_sql"
    GET_MSG_TYPES = "get_msg_types"

    # Sending
    SEND_TEXT = "send_text"
    SEND_IMAGE = "send_image"
    SEND_FILE = "send_file"
    SEND_RICH_TEXT = "send_rich_text"
    SEND_PAT = "send_pat"
    FORWARD_MSG = "forward_msg"
    REVOKE_MSG = "revoke_msg"

    # Attachments
    SAVE_AUDIO = "save_audio"
    DOWNLOAD_ATTACH = "download_attach"
    DECRYPT_IMAGE = "decrypt_image"

    # Misc
    RECEIVE_TRANSFER = "receive_transfer"
    REFRESH_PYQ = "refresh_pyq"
    ENABLE_RECEIVING = "enable_receiving"
    DISABLE_RECEIVING = "disable_receiving"


# =============================================================================
# Payload Models
# =============================================================================


class Payload(BaseModel):
    """Base for command payloads; unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")


class EmptyPayload(Payload):
    pass


class TextMsg(Payload):
    """Text message. ``aters`` is a comma separated list of wxids to @."""

    msg: str = Field(min_length=1)
    receiver: str = Field(min_length=1)
    aters: str = ""


class PathMsg(Payload):
    """Image or file message.

    For images, ``path`` may also be an http(s) URL, or ``base64`` may carry
    the image bytes; the facade materializes either into a local file first.
    """

    path: str = ""
    receiver: str = Field(min_length=1)
    base64: str = ""


class RichText(Payload):
    """Card (rich text) message."""

    name: str = ""
    account: str = ""
    title: str
    digest: str = ""
    url: str
    thumburl: str = ""
    receiver: str = Field(min_length=1)


class PatMsg(Payload):
    roomid: str = Field(min_length=1)
    wxid: str = Field(min_length=1)


class ForwardMsg(Payload):
    id: int
    receiver: str = Field(min_length=1)


class MessageId(Payload):
    id: int = Field(ge=0)


class AudioMsg(Payload):
    id: int
    dir: str


class AttachMsg(Payload):
    id: int
    thumb: str = ""
    extra: str = ""


class DecPath(Payload):
    src: str
    dst: str


class Transfer(Payload):
    wxid: str
    tfid: str
    taid: str


class DbQuery(Payload):
    db: str = Field(min_length=1)
    sql: str = Field(min_length=1)


class DbName(Payload):
    db: str = Field(min_length=1)


class Verification(Payload):
    v3: str
    v4: str
    scene: int = 30


class MemberMgmt(Payload):
    """Room membership change; ``wxids`` is comma separated."""

    roomid: str = Field(min_length=1)
    wxids: str = Field(min_length=1)


class RoomId(Payload):
    roomid: str = Field(min_length=1)


class ReceivingFlags(Payload):
    pyq: bool = False


# =============================================================================
# Result Decoders
# =============================================================================

# SQL field types as reported by the SDK
FIELD_INT = 1
FIELD_FLOAT = 2
FIELD_UTF8 = 3
FIELD_BLOB = 4


def _as_bool(data: Any) -> bool:
    # Commands without a return value answer with null
    if data is None:
        return True
    if isinstance(data, bool):
        return data
    if isinstance(data, int):
        return data != 0
    raise DecodeError(f"Expected bool, got {type(data).__name__}")


def _as_str(data: Any) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    if isinstance(data, str):
        return data
    raise DecodeError(f"Expected string, got {type(data).__name__}")


def _as_records(*keys: str) -> Callable[[Any], list[dict[str, Any]]]:
    def decode(data: Any) -> list[dict[str, Any]]:
        if data is None:
            return []
        if not isinstance(data, list):
            raise DecodeError(f"Expected list, got {type(data).__name__}")
        records = []
        for item in data:
            if not isinstance(item, dict):
                raise DecodeError(f"Expected record, got {type(item).__name__}")
            records.append({key: item.get(key) for key in keys})
        return records

    return decode


def _as_str_list(data: Any) -> list[str]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise DecodeError(f"Expected list, got {type(data).__name__}")
    return [_as_str(item) for item in data]


def _as_user_info(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise DecodeError(f"Expected record, got {type(data).__name__}")
    return {key: _as_str(data.get(key)) for key in ("wxid", "name", "mobile", "home")}


def _as_msg_types(data: Any) -> dict[str, str]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise DecodeError(f"Expected mapping, got {type(data).__name__}")
    # JSON object keys are strings; the SDK keys types by number
    return {str(key): _as_str(value) for key, value in data.items()}


def convert_field(field_type: int, content: Any) -> Any:
    """Convert one SQL result field according to its SDK type tag."""
    raw = content if isinstance(content, bytes) else _as_str(content).encode("utf-8")
    if field_type == FIELD_BLOB:
        return base64.b64encode(raw).decode("ascii")

    text = raw.decode("utf-8", errors="replace")
    if field_type == FIELD_INT:
        try:
            return int(text)
        except ValueError:
            return None
    if field_type == FIELD_FLOAT:
        try:
            return float(text)
        except ValueError:
            return None
    if field_type == FIELD_UTF8:
        return text
    return None


def _as_rows(data: Any) -> list[dict[str, Any]]:
    """Decode SQL rows of ``{"fields": [{"column", "type", "content"}]}``."""
    if data is None:
        return []
    if not isinstance(data, list):
        raise DecodeError(f"Expected list of rows, got {type(data).__name__}")
    rows = []
    for row in data:
        fields = row.get("fields", []) if isinstance(row, dict) else None
        if not isinstance(fields, list):
            raise DecodeError("Row without fields")
        rows.append(
            {
                _as_str(f.get("column")): convert_field(f.get("type", 0), f.get("content"))
                for f in fields
                if isinstance(f, dict)
            }
        )
    return rows


# =============================================================================
# Command Registry
# =============================================================================


@dataclass(frozen=True)
class CommandSpec:
    """Static description of a command kind."""

    kind: CommandKind
    payload_model: type[Payload]
    decode: Callable[[Any], Any]
    description: str


_CONTACT_KEYS = ("wxid", "code", "remark", "name", "country", "province", "city", "gender")

COMMAND_SPECS: dict[CommandKind, CommandSpec] = {
    spec.kind: spec
    for spec in (
        CommandSpec(CommandKind.IS_LOGIN, EmptyPayload, _as_bool, "Query login status"),
        CommandSpec(CommandKind.GET_SELF_WXID, EmptyPayload, _as_str, "Get the logged-in wxid"),
        CommandSpec(CommandKind.GET_USER_INFO, EmptyPayload, _as_user_info, "Get account info"),
        CommandSpec(CommandKind.REFRESH_QRCODE, EmptyPayload, _as_str, "Get a login QR code"),
        CommandSpec(
            CommandKind.GET_CONTACTS,
            EmptyPayload,
            _as_records(*_CONTACT_KEYS),
            "List all contacts, including official accounts and rooms",
        ),
        CommandSpec(
            CommandKind.QUERY_ROOM_MEMBERS,
            RoomId,
            _as_records("wxid", "name", "state"),
            "List members of a chatroom",
        ),
        CommandSpec(CommandKind.ADD_CHATROOM_MEMBERS, MemberMgmt, _as_bool, "Add chatroom members"),
        CommandSpec(
            CommandKind.INVITE_CHATROOM_MEMBERS, MemberMgmt, _as_bool, "Invite chatroom members"
        ),
        CommandSpec(
            CommandKind.DELETE_CHATROOM_MEMBERS, MemberMgmt, _as_bool, "Remove chatroom members"
        ),
        CommandSpec(
            CommandKind.ACCEPT_NEW_FRIEND, Verification, _as_bool, "Accept a friend request"
        ),
        CommandSpec(CommandKind.GET_DB_NAMES, EmptyPayload, _as_str_list, "List databases"),
        CommandSpec(
            CommandKind.GET_DB_TABLES,
            DbName,
            _as_records("name", "sql"),
            "List tables of a database",
        ),
        CommandSpec(CommandKind.QUERY_SQL, DbQuery, _as_rows, "Run a SQL query"),
        CommandSpec(CommandKind.GET_MSG_TYPES, EmptyPayload, _as_msg_types, "List message types"),
        CommandSpec(CommandKind.SEND_TEXT, TextMsg, _as_bool, "Send a text message"),
        CommandSpec(CommandKind.SEND_IMAGE, PathMsg, _as_bool, "Send an image"),
        CommandSpec(CommandKind.SEND_FILE, PathMsg, _as_bool, "Send a file"),
        CommandSpec(CommandKind.SEND_RICH_TEXT, RichText, _as_bool, "Send a card message"),
        CommandSpec(CommandKind.SEND_PAT, PatMsg, _as_bool, "Pat a room member"),
        CommandSpec(CommandKind.FORWARD_MSG, ForwardMsg, _as_bool, "Forward a message"),
        CommandSpec(CommandKind.REVOKE_MSG, MessageId, _as_bool, "Revoke a sent message"),
        CommandSpec(CommandKind.SAVE_AUDIO, AudioMsg, _as_str, "Save a voice message"),
        CommandSpec(
            CommandKind.DOWNLOAD_ATTACH, AttachMsg, _as_bool, "Download a message attachment"
        ),
        CommandSpec(CommandKind.DECRYPT_IMAGE, DecPath, _as_str, "Decrypt a downloaded image"),
        CommandSpec(CommandKind.RECEIVE_TRANSFER, Transfer, _as_bool, "Accept a money transfer"),
        CommandSpec(CommandKind.REFRESH_PYQ, MessageId, _as_bool, "Refresh moments"),
        CommandSpec(
            CommandKind.ENABLE_RECEIVING, ReceivingFlags, _as_bool, "Start pushing events"
        ),
        CommandSpec(CommandKind.DISABLE_RECEIVING, EmptyPayload, _as_bool, "Stop pushing events"),
    )
}


def get_spec(kind: CommandKind | str) -> CommandSpec:
    """Look up the CommandSpec for a command kind.

    Raises:
        ValueError: If the kind is unknown
    """
    return COMMAND_SPECS[CommandKind(kind)]


# =============================================================================
# Command / Result
# =============================================================================


def new_correlation_id() -> str:
    return f"cmd_{uuid.uuid4().hex[:12]}"


class Command(BaseModel):
    """A validated command ready for the transport.

    ``correlation_id`` is local bookkeeping only; the SDK never sees it.
    """

    kind: CommandKind
    payload: dict[str, Any] = Field(default_factory=dict)
    correlation_id: str = Field(default_factory=new_correlation_id)

    @classmethod
    def create(cls, kind: CommandKind | str, payload: dict[str, Any] | None = None) -> Command:
        """Validate ``payload`` against the kind's model and build a command.

        Raises:
            pydantic.ValidationError: If the payload does not match
        """
        spec = get_spec(kind)
        model = spec.payload_model.model_validate(payload or {})
        return cls(kind=spec.kind, payload=model.model_dump())

    def to_request(self) -> dict[str, Any]:
        """Wire body for the request frame (the transport adds ``seq``)."""
        return {"func": self.kind.value, "args": self.payload}


class ErrorInfo(BaseModel):
    code: str
    message: str


class CommandResult(BaseModel):
    """Outcome of one dispatched command. Never raised, always returned."""

    kind: CommandKind
    correlation_id: str
    ok: bool
    data: Any = None
    error: ErrorInfo | None = None

    @classmethod
    def success(cls, command: Command, data: Any) -> CommandResult:
        return cls(kind=command.kind, correlation_id=command.correlation_id, ok=True, data=data)

    @classmethod
    def failure(
        cls, kind: CommandKind, correlation_id: str, code: str, message: str
    ) -> CommandResult:
        return cls(
            kind=kind,
            correlation_id=correlation_id,
            ok=False,
            error=ErrorInfo(code=code, message=message),
        )


def decode_response(command: Command, response: dict[str, Any]) -> Any:
    """Turn an SDK response body into the kind-specific result value.

    Raises:
        SdkError: If the SDK reported a non-zero status
        DecodeError: If the response data has an unexpected shape
    """
    status = response.get("status", 0)
    if not isinstance(status, int):
        raise DecodeError(f"Invalid status: {status!r}")
    if status != 0:
        message = response.get("data")
        detail = _as_str(message) if isinstance(message, (str, bytes)) else f"status {status}"
        raise SdkError(f"{command.kind.value} failed: {detail}", status=status)
    return get_spec(command.kind).decode(response.get("data"))
