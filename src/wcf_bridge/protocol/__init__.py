"""SDK wire protocol.

- frames: length-prefixed msgpack framing shared by both sockets
- commands: command kinds, payload models, result decoding
- events: event records pushed by the SDK and their normalized form
"""

from .commands import (
    COMMAND_SPECS,
    Command,
    CommandKind,
    CommandResult,
    CommandSpec,
    ErrorInfo,
    decode_response,
    get_spec,
)
from .events import Event, EventKind, NormalizedEvent, decode_event
from .frames import MSG_ERROR, MSG_EVENT, MSG_REQUEST, MSG_RESPONSE, decode_frame, encode_frame

__all__ = [
    "COMMAND_SPECS",
    "Command",
    "CommandKind",
    "CommandResult",
    "CommandSpec",
    "ErrorInfo",
    "decode_response",
    "get_spec",
    "Event",
    "EventKind",
    "NormalizedEvent",
    "decode_event",
    "MSG_ERROR",
    "MSG_EVENT",
    "MSG_REQUEST",
    "MSG_RESPONSE",
    "decode_frame",
    "encode_frame",
]
