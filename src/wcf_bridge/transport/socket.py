"""TCP transport to the SDK.

Opens two sockets (command + event) with length-prefixed msgpack framing.

Command channel:
- A background reader task decodes response frames into a queue
- send_command writes one request (tagged with a sequence number) and
  waits for the response carrying the same ``seq``
- Responses with any other ``seq`` are late replies to timed-out commands
  and are discarded (this is how the channel resynchronises)

Failure handling:
- Any I/O failure marks the session DEGRADED, fails the in-flight command
  with TransportError and starts a background reconnect loop with bounded
  exponential backoff
- Commands issued while not connected fail fast with ConnectError
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from ..errors import CommandTimeout, ConnectError, DecodeError, TransportError
from ..protocol.commands import Command
from ..protocol.frames import (
    MSG_ERROR,
    MSG_REQUEST,
    MSG_RESPONSE,
    decode_frame,
    encode_frame,
    read_frame,
)
from ..retry import backoff_delays
from .base import Session, SessionState, TransportConfig

logger = logging.getLogger(__name__)

# Items on the response queue: a decoded response body, or the failure
# that ended the connection
_ResponseItem = dict[str, Any] | TransportError


class TcpSdkTransport:
    """SDK transport over two local TCP sockets.

    Usage:
        transport = TcpSdkTransport(TransportConfig(command_port=10086, event_port=10087))
        await transport.connect()
        response = await transport.send_command(command, timeout=5.0)
        await transport.disconnect()
    """

    def __init__(self, config: TransportConfig | None = None):
        self.config = config or TransportConfig()
        self._session = Session(
            command_endpoint=(self.config.host, self.config.command_port),
            event_endpoint=(self.config.host, self.config.event_port),
        )
        self._cmd_reader: asyncio.StreamReader | None = None
        self._cmd_writer: asyncio.StreamWriter | None = None
        self._evt_reader: asyncio.StreamReader | None = None
        self._evt_writer: asyncio.StreamWriter | None = None
        self._responses: asyncio.Queue[_ResponseItem] = asyncio.Queue()
        self._reader_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._connected = asyncio.Event()
        self._lock = asyncio.Lock()
        self._seq = itertools.count(1)
        # Bumped on every successful connect so stale readers can tell
        # their connection has been replaced
        self._generation = 0
        self._closed = False
        # Replaceable for tests that record backoff delays
        self._sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    @property
    def session(self) -> Session:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def is_connected(self) -> bool:
        return self._session.state == SessionState.CONNECTED

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> Session:
        """Open both channels.

        Raises:
            ConnectError: If either channel cannot be opened
        """
        async with self._lock:
            if self.is_connected:
                return self._session
            self._closed = False
            self._session.state = SessionState.CONNECTING
            try:
                await self._open()
            except ConnectError:
                self._session.state = SessionState.DISCONNECTED
                raise
            return self._session

    async def disconnect(self) -> None:
        """Close both channels and stop reconnecting."""
        self._closed = True

        if self._reconnect_task:
            self._reconnect_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reconnect_task
            self._reconnect_task = None

        async with self._lock:
            reader_task = self._reader_task
            self._teardown()
            if reader_task is not None:
                with contextlib.suppress(asyncio.CancelledError):
                    await reader_task
            for writer in (self._cmd_writer, self._evt_writer):
                if writer is not None:
                    with contextlib.suppress(ConnectionError, OSError):
                        await writer.wait_closed()
            self._cmd_writer = self._evt_writer = None
            self._session.state = SessionState.DISCONNECTED
            logger.info("SDK transport disconnected")

    async def wait_connected(self) -> None:
        await self._connected.wait()

    async def _open(self) -> None:
        """Open both sockets and start the response reader. Caller holds the lock."""
        host = self.config.host
        timeout = self.config.connect_timeout
        try:
            cmd_reader, cmd_writer = await asyncio.wait_for(
                asyncio.open_connection(host, self.config.command_port), timeout=timeout
            )
        except (OSError, TimeoutError) as e:
            raise ConnectError(
                f"Cannot open command channel {host}:{self.config.command_port}: {e}"
            ) from e

        try:
            evt_reader, evt_writer = await asyncio.wait_for(
                asyncio.open_connection(host, self.config.event_port), timeout=timeout
            )
        except (OSError, TimeoutError) as e:
            cmd_writer.close()
            raise ConnectError(
                f"Cannot open event channel {host}:{self.config.event_port}: {e}"
            ) from e

        self._cmd_reader, self._cmd_writer = cmd_reader, cmd_writer
        self._evt_reader, self._evt_writer = evt_reader, evt_writer
        self._generation += 1
        self._responses = asyncio.Queue()
        self._reader_task = asyncio.create_task(self._read_responses(self._generation))

        self._session = Session(
            command_endpoint=(host, self.config.command_port),
            event_endpoint=(host, self.config.event_port),
            state=SessionState.CONNECTED,
        )
        self._connected.set()
        logger.info(
            f"Connected to SDK (commands {host}:{self.config.command_port}, "
            f"events {host}:{self.config.event_port})"
        )

    def _teardown(self) -> None:
        """Close sockets, stop the reader and fail the in-flight command."""
        self._connected.clear()

        task = self._reader_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self._reader_task = None

        for writer in (self._cmd_writer, self._evt_writer):
            if writer is not None:
                writer.close()

        self._responses.put_nowait(TransportError("SDK session closed"))

    # =========================================================================
    # Failure / Reconnection
    # =========================================================================

    def _mark_degraded(self, reason: str) -> None:
        """Transition CONNECTED -> DEGRADED and start reconnecting."""
        if self._closed or self._session.state != SessionState.CONNECTED:
            return

        logger.warning(f"SDK session degraded: {reason}")
        self._session.state = SessionState.DEGRADED
        self._teardown()
        self.schedule_reconnect()

    def schedule_reconnect(self) -> None:
        """Start the background reconnect loop if it is not already running."""
        if self._closed or not self.config.auto_reconnect:
            return
        if self._reconnect_task and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        delays = backoff_delays(
            self.config.reconnect_delay,
            self.config.max_reconnect_delay,
            self.config.reconnect_backoff,
        )
        attempt = 0

        while not self._closed:
            attempt += 1
            limit = self.config.max_reconnect_attempts
            if limit is not None and attempt > limit:
                logger.error(f"Giving up on SDK reconnection after {limit} attempts")
                self._session.state = SessionState.DISCONNECTED
                return

            delay = next(delays)
            logger.info(f"Reconnecting to SDK in {delay:.2f}s (attempt {attempt})")
            await self._sleep(delay)
            if self._closed:
                return

            async with self._lock:
                try:
                    await self._open()
                except ConnectError as e:
                    logger.warning(f"Reconnect attempt {attempt} failed: {e.message}")
                    continue

            logger.info(f"SDK session restored after {attempt} attempt(s)")
            return

    # =========================================================================
    # Command Channel
    # =========================================================================

    async def send_command(self, command: Command, timeout: float) -> dict[str, Any]:
        """Send one command and wait for its response body."""
        if not self.is_connected or self._cmd_writer is None:
            raise ConnectError(f"SDK session is {self._session.state.value}")

        session = self._session
        responses = self._responses
        writer = self._cmd_writer
        seq = next(self._seq)
        frame = encode_frame(MSG_REQUEST, {"seq": seq, **command.to_request()})

        try:
            writer.write(frame)
            await asyncio.wait_for(writer.drain(), timeout=timeout)
        except TimeoutError:
            raise CommandTimeout(
                f"{command.kind.value} could not be written within {timeout}s"
            ) from None
        except (ConnectionError, OSError) as e:
            self._mark_degraded(f"write failed: {e}")
            raise TransportError(f"Write failed: {e}") from e
        session.touch()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise CommandTimeout(f"{command.kind.value} timed out after {timeout}s")
            try:
                item = await asyncio.wait_for(responses.get(), timeout=remaining)
            except TimeoutError:
                raise CommandTimeout(f"{command.kind.value} timed out after {timeout}s") from None

            if isinstance(item, TransportError):
                raise item
            if item.get("seq") != seq:
                logger.debug(f"Discarding stale response seq={item.get('seq')} (waiting for {seq})")
                continue

            session.touch()
            return item

    async def _read_responses(self, generation: int) -> None:
        """Background task: decode command-channel frames into the response queue."""
        reader = self._cmd_reader
        responses = self._responses
        if reader is None:
            return

        try:
            while True:
                frame = await read_frame(reader)
                try:
                    msg_type, body = decode_frame(frame)
                except DecodeError as e:
                    logger.warning(f"Discarding undecodable response frame: {e.message}")
                    continue

                if not isinstance(body, dict):
                    logger.warning(f"Discarding response with {type(body).__name__} body")
                    continue
                if msg_type == MSG_ERROR:
                    body = {
                        "seq": body.get("seq"),
                        "status": body.get("status") or -1,
                        "data": body.get("data") or "SDK error",
                    }
                elif msg_type != MSG_RESPONSE:
                    logger.warning(f"Unexpected frame type on command channel: {msg_type:#04x}")
                    continue

                await responses.put(body)
        except TransportError as e:
            if generation == self._generation:
                self._mark_degraded(f"command channel: {e.message}")

    # =========================================================================
    # Event Channel
    # =========================================================================

    async def subscribe_events(self) -> AsyncIterator[bytes]:
        """Yield raw event frames until the event socket closes.

        There must be a single subscriber per session.
        """
        if not self.is_connected or self._evt_reader is None:
            return

        reader = self._evt_reader
        session = self._session
        generation = self._generation

        while True:
            try:
                frame = await read_frame(reader)
            except TransportError as e:
                if generation == self._generation:
                    self._mark_degraded(f"event channel: {e.message}")
                return
            session.touch()
            yield frame
