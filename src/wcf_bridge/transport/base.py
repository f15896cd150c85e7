"""SDK transport abstraction.

The SDK exposes two logically separate channels:
- command channel: strict request/response, one outstanding request
- event channel: inbound only, read continuously by the event listener

Architecture:
- SdkTransport is the PROTOCOL (interface) the dispatcher and listener use
- TcpSdkTransport (transport/socket.py) is the single production binding
- MockSdk (transport/mock.py) simulates the SDK side for tests and local runs
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from ..config import BridgeConfig
from ..protocol.commands import Command


class SessionState(str, Enum):
    """Connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"


@dataclass
class Session:
    """One live command/event connection pair to the SDK.

    Owned by the transport. A new Session is created on every successful
    (re)connect; the previous one is left in its final state.
    """

    command_endpoint: tuple[str, int]
    event_endpoint: tuple[str, int]
    state: SessionState = SessionState.DISCONNECTED
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)

    def touch(self) -> None:
        self.last_activity = time.time()

    def to_dict(self) -> dict[str, Any]:
        return {
            "command_endpoint": f"{self.command_endpoint[0]}:{self.command_endpoint[1]}",
            "event_endpoint": f"{self.event_endpoint[0]}:{self.event_endpoint[1]}",
            "state": self.state.value,
            "created_at": self.created_at,
            "last_activity": self.last_activity,
        }


@dataclass
class TransportConfig:
    """Configuration for the SDK transport."""

    host: str = "127.0.0.1"
    command_port: int = 10086
    event_port: int = 10087
    connect_timeout: float = 3.0

    # Reconnection
    auto_reconnect: bool = True
    reconnect_delay: float = 0.5
    max_reconnect_delay: float = 5.0
    reconnect_backoff: float = 2.0
    max_reconnect_attempts: int | None = None  # None = until stopped

    @classmethod
    def from_bridge(cls, config: BridgeConfig) -> TransportConfig:
        return cls(
            host=config.sdk_host,
            command_port=config.sdk_port,
            event_port=config.resolved_event_port,
            connect_timeout=config.connect_timeout,
            reconnect_delay=config.reconnect_initial_delay,
            max_reconnect_delay=config.reconnect_max_delay,
            reconnect_backoff=config.reconnect_backoff,
        )


@runtime_checkable
class SdkTransport(Protocol):
    """Protocol for SDK transports.

    The transport does NOT multiplex: callers must not issue a second
    command before the first resolves. The dispatcher enforces this.
    """

    @property
    def session(self) -> Session:
        """The current (or last) session."""
        ...

    @property
    def state(self) -> SessionState:
        ...

    @property
    def is_connected(self) -> bool:
        ...

    async def connect(self) -> Session:
        """Open both channels.

        Raises:
            ConnectError: If either channel cannot be opened
        """
        ...

    async def disconnect(self) -> None:
        """Close both channels and stop reconnecting."""
        ...

    async def send_command(self, command: Command, timeout: float) -> dict[str, Any]:
        """Send one command and return the raw response body.

        Raises:
            ConnectError: If the session is not connected
            TransportError: On I/O failure (the session turns degraded)
            CommandTimeout: If no response arrives within ``timeout``
        """
        ...

    def subscribe_events(self) -> AsyncIterator[bytes]:
        """Yield raw event frame bodies until the event socket closes.

        Not restartable: once exhausted, call again after reconnecting.
        """
        ...

    async def wait_connected(self) -> None:
        """Suspend until the session is connected."""
        ...

    def schedule_reconnect(self) -> None:
        """Start background reconnection if it is not already running."""
        ...
