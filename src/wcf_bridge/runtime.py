"""Bridge runtime.

Owns and wires every long-lived component for one process:

    transport ─┬─ dispatcher  (command path, used by the HTTP routes)
               └─ listener ── forwarder ── sinks  (event path)

There is no module-level SDK handle: the app factory creates one runtime
and hands it to the routes through ``app.state``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from .bus import EventBus
from .config import BridgeConfig
from .dispatcher import CommandDispatcher
from .errors import ConnectError
from .forwarding.forwarder import Forwarder
from .forwarding.sinks import BusSink, PushChannelSink, Sink, WebhookSink
from .listener import EventListener
from .protocol.commands import CommandKind
from .retry import RetryPolicy
from .transport.base import SdkTransport, TransportConfig
from .transport.socket import TcpSdkTransport

logger = logging.getLogger(__name__)


def build_sinks(config: BridgeConfig, bus: EventBus) -> list[Sink]:
    """Create the sinks named by the configuration (plus the local bus)."""
    policy = RetryPolicy(
        max_attempts=config.webhook_max_attempts,
        initial_delay=config.webhook_initial_delay,
        max_delay=config.webhook_max_delay,
    )
    sinks: list[Sink] = [BusSink(bus)]
    for url in config.webhook_urls:
        sinks.append(
            WebhookSink(
                url,
                policy=policy,
                timeout=config.webhook_timeout,
                max_backlog=config.sink_backlog,
            )
        )
    if config.push_url:
        sinks.append(PushChannelSink(config.push_url, max_backlog=config.push_backlog))
    return sinks


class BridgeRuntime:
    """All long-lived bridge components for one process."""

    def __init__(
        self,
        config: BridgeConfig | None = None,
        *,
        transport: SdkTransport | None = None,
        sinks: Sequence[Sink] | None = None,
    ):
        self.config = config or BridgeConfig()
        self.bus = EventBus()
        self.transport: SdkTransport = transport or TcpSdkTransport(
            TransportConfig.from_bridge(self.config)
        )
        self.dispatcher = CommandDispatcher(
            self.transport, default_timeout=self.config.command_timeout
        )
        self.forwarder = Forwarder(sinks if sinks is not None else build_sinks(self.config, self.bus))
        self.listener = EventListener(
            self.transport, self.forwarder, on_subscribe=self._enable_receiving
        )
        self.http_client: httpx.AsyncClient | None = None
        self._started = False

    async def start(self, *, require_sdk: bool | None = None) -> None:
        """Start forwarding, connect to the SDK and begin draining events.

        Args:
            require_sdk: Raise if the SDK is unreachable instead of
                reconnecting in the background (default: from config)

        Raises:
            ConnectError: If ``require_sdk`` and the SDK cannot be reached
        """
        if self._started:
            return
        if require_sdk is None:
            require_sdk = self.config.require_sdk

        await self.forwarder.start()
        self.http_client = httpx.AsyncClient(timeout=30.0)

        try:
            await self.transport.connect()
        except ConnectError as e:
            if require_sdk:
                await self.forwarder.stop()
                await self.http_client.aclose()
                self.http_client = None
                raise
            logger.warning(f"SDK not reachable at startup ({e.message}); retrying in background")
            self.transport.schedule_reconnect()

        self.listener.start()
        self._started = True
        logger.info("Bridge runtime started")

    async def stop(self) -> None:
        """Stop everything; in-flight events and retries are abandoned."""
        if not self._started:
            return
        self._started = False

        await self.listener.stop()
        await self.transport.disconnect()
        await self.forwarder.stop()
        if self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None
        logger.info("Bridge runtime stopped")

    async def _enable_receiving(self) -> None:
        """Ask the SDK to push events on the event channel."""
        result = await self.dispatcher.dispatch(
            CommandKind.ENABLE_RECEIVING, {"pyq": self.config.receive_pyq}
        )
        if not result.ok and result.error is not None:
            logger.warning(f"Could not enable event receiving: {result.error.message}")

    def status(self) -> dict[str, Any]:
        """Snapshot for the health endpoint."""
        return {
            "session": self.transport.session.to_dict(),
            "listener": {
                "running": self.listener.is_running,
                "received": self.listener.received,
                "dropped": self.listener.dropped,
            },
            "commands_in_flight": len(self.dispatcher.in_flight),
            "sinks": self.forwarder.stats(),
        }
