"""Wire framing for the SDK sockets.

Frame format:
    ┌──────────┬──────────┬────────────────────────┐
    │ len (4B) │ type(1B) │   msgpack payload      │
    │ u32 BE   │ u8       │                        │
    └──────────┴──────────┴────────────────────────┘

Length is the size of (type byte + payload), NOT including the 4-byte
length prefix. The same framing is used on the command socket
(request/response) and on the event socket (inbound events only).
"""

from __future__ import annotations

import asyncio
import struct
from typing import Any

import msgpack

from ..errors import DecodeError, TransportError

# Message type constants
MSG_REQUEST: int = 0x01
MSG_RESPONSE: int = 0x02
MSG_EVENT: int = 0x03
MSG_ERROR: int = 0xFF

# Header sizes
LENGTH_PREFIX_SIZE: int = 4
TYPE_BYTE_SIZE: int = 1

# Max frame size (16MB); contact lists and SQL results stay well below this
MAX_FRAME_SIZE: int = 16 * 1024 * 1024


def encode_frame(msg_type: int, payload: Any) -> bytes:
    """Encode a complete frame (length prefix + type byte + msgpack payload)."""
    body = msgpack.packb(payload, use_bin_type=True)
    frame_len = TYPE_BYTE_SIZE + len(body)
    if frame_len > MAX_FRAME_SIZE:
        raise ValueError(f"Frame too large: {frame_len} bytes")
    return struct.pack(">IB", frame_len, msg_type) + body


def decode_frame(data: bytes) -> tuple[int, Any]:
    """Decode a frame body (type byte + payload, no length prefix).

    Raises:
        DecodeError: If the body is empty or the payload is not valid msgpack
    """
    if len(data) < TYPE_BYTE_SIZE:
        raise DecodeError("Frame too short")
    msg_type = data[0]
    try:
        payload = msgpack.unpackb(data[TYPE_BYTE_SIZE:], raw=False, strict_map_key=False)
    except (ValueError, TypeError) as e:
        raise DecodeError(f"Invalid msgpack payload: {e}") from e
    return msg_type, payload


async def read_frame(reader: asyncio.StreamReader) -> bytes:
    """Read one frame body from a stream.

    Returns the type byte + payload (length prefix stripped).

    Raises:
        TransportError: On EOF, I/O failure, or an impossible length prefix.
            The stream cannot be resynchronised after any of these.
    """
    try:
        header = await reader.readexactly(LENGTH_PREFIX_SIZE)
        (frame_len,) = struct.unpack(">I", header)
        if frame_len < TYPE_BYTE_SIZE or frame_len > MAX_FRAME_SIZE:
            raise TransportError(f"Invalid frame length: {frame_len}")
        return await reader.readexactly(frame_len)
    except asyncio.IncompleteReadError as e:
        raise TransportError("Connection closed by peer") from e
    except (ConnectionError, OSError) as e:
        raise TransportError(f"Read failed: {e}") from e
