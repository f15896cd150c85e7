"""SDK transport layer.

The command/event socket pair to the SDK lives behind the SdkTransport
protocol so the dispatcher and listener never touch sockets directly.
"""

from .base import SdkTransport, Session, SessionState, TransportConfig
from .mock import MockSdk, MockSdkFailure
from .socket import TcpSdkTransport

__all__ = [
    "SdkTransport",
    "Session",
    "SessionState",
    "TransportConfig",
    "TcpSdkTransport",
    "MockSdk",
    "MockSdkFailure",
]
