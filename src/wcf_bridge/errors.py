"""Error taxonomy for the bridge.

Every failure carries a stable ``code`` so the HTTP facade and the
command results can report it without inspecting exception types:

- ConnectError: the SDK session cannot be (re)established
- TransportError: I/O failure on an established channel
- CommandTimeout: no response within the command bound
- SdkError: the SDK answered with a non-zero status
- DecodeError: a frame or response body could not be decoded
- MarkupParseError: embedded XML in an event could not be parsed
- SinkDeliveryError: a sink gave up on an event
- MediaError: an image source could not be materialized locally
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all bridge failures."""

    code = "bridge_error"

    def __init__(self, message: str, *, code: str | None = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(f"[{self.code}] {message}")


class ConnectError(BridgeError):
    code = "connect_error"


class TransportError(BridgeError):
    code = "transport_error"


class CommandTimeout(BridgeError):
    code = "timeout"


class SdkError(BridgeError):
    """The SDK processed the command and reported a failure."""

    code = "sdk_error"

    def __init__(self, message: str, *, status: int = 1):
        self.status = status
        super().__init__(message)


class DecodeError(BridgeError):
    code = "decode_error"


class MarkupParseError(BridgeError):
    code = "markup_parse_error"


class SinkDeliveryError(BridgeError):
    code = "sink_delivery_error"

    def __init__(self, sink: str, message: str, *, attempts: int = 1):
        self.sink = sink
        self.attempts = attempts
        super().__init__(f"{sink}: {message}")


class MediaError(BridgeError):
    code = "media_error"
