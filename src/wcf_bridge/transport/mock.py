"""In-process SDK double.

MockSdk listens on two local TCP ports and speaks the same frame protocol
as the real SDK, so the production TcpSdkTransport can be exercised end to
end without WeChat. Used by the tests and by ``wcf-bridge mock-sdk``.

Usage:
    sdk = MockSdk()
    await sdk.start()
    sdk.respond("send_text", True)
    await sdk.emit({"type": 1, "sender": "wxid_abc", "content": "hi"})
    await sdk.drop_connections()   # simulate an I/O failure
    await sdk.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from ..errors import DecodeError, TransportError
from ..protocol.frames import (
    MSG_EVENT,
    MSG_REQUEST,
    MSG_RESPONSE,
    decode_frame,
    encode_frame,
    read_frame,
)

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Any | Awaitable[Any]]

MOCK_WXID = "wxid_mock"


class MockSdkFailure(Exception):
    """Raise from a handler to answer with a non-zero status."""

    def __init__(self, message: str, status: int = 1):
        self.message = message
        self.status = status
        super().__init__(message)


def default_handlers() -> dict[str, Handler]:
    """Canned answers for a logged-in account."""
    contacts = [
        {
            "wxid": "wxid_abc",
            "code": "abc",
            "remark": "",
            "name": "Alice",
            "country": "CN",
            "province": "Guangdong",
            "city": "Shenzhen",
            "gender": 2,
        },
        {
            "wxid": "12345@chatroom",
            "code": "",
            "remark": "",
            "name": "Team",
            "country": "",
            "province": "",
            "city": "",
            "gender": 0,
        },
    ]
    members = [
        {"wxid": "wxid_abc", "name": "Alice", "state": 0},
        {"wxid": MOCK_WXID, "name": "Mock", "state": 0},
    ]
    return {
        "is_login": lambda args: True,
        "get_self_wxid": lambda args: MOCK_WXID,
        "get_user_info": lambda args: {"wxid": MOCK_WXID, "name": "Mock", "mobile": "", "home": ""},
        "refresh_qrcode": lambda args: "",
        "get_contacts": lambda args: contacts,
        "query_room_members": lambda args: members,
        "get_db_names": lambda args: ["MicroMsg.db", "MSG0.db"],
        "get_db_tables": lambda args: [{"name": "Contact", "sql": "CREATE TABLE Contact(...)"}],
        "get_msg_types": lambda args: {1: "文字", 3: "图片", 49: "分享"},
        "query_sql": lambda args: [],
        "save_audio": lambda args: f"{args.get('dir', '')}/audio.mp3",
        "decrypt_image": lambda args: f"{args.get('dst', '')}/image.jpg",
    }


class MockSdk:
    """Fake SDK process with a command port and an event port."""

    def __init__(self, host: str = "127.0.0.1", command_port: int = 0, event_port: int = 0):
        self.host = host
        self._command_port = command_port
        self._event_port = event_port
        self.handlers: dict[str, Handler] = default_handlers()
        self.delays: dict[str, float] = {}
        self.requests: list[dict[str, Any]] = []
        self._cmd_server: asyncio.Server | None = None
        self._evt_server: asyncio.Server | None = None
        self._cmd_writers: set[asyncio.StreamWriter] = set()
        self._evt_writers: set[asyncio.StreamWriter] = set()
        self._subscribed = asyncio.Event()

    @property
    def command_port(self) -> int:
        return self._command_port

    @property
    def event_port(self) -> int:
        return self._event_port

    @property
    def is_running(self) -> bool:
        return self._cmd_server is not None

    async def start(self) -> None:
        """Start listening. Ports chosen on first start are reused on restart."""
        self._cmd_server = await asyncio.start_server(
            self._serve_commands, self.host, self._command_port
        )
        self._evt_server = await asyncio.start_server(
            self._serve_events, self.host, self._event_port
        )
        self._command_port = self._cmd_server.sockets[0].getsockname()[1]
        self._event_port = self._evt_server.sockets[0].getsockname()[1]
        logger.info(f"Mock SDK listening on {self.host}:{self._command_port}/{self._event_port}")

    async def stop(self) -> None:
        """Stop listening and drop every client connection."""
        for server in (self._cmd_server, self._evt_server):
            if server is not None:
                server.close()
        await self.drop_connections()
        for server in (self._cmd_server, self._evt_server):
            if server is not None:
                with contextlib.suppress(Exception):
                    await server.wait_closed()
        self._cmd_server = self._evt_server = None

    async def __aenter__(self) -> MockSdk:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()

    # =========================================================================
    # Scripting
    # =========================================================================

    def respond(self, func: str, data: Any = None, *, status: int = 0, delay: float = 0.0) -> None:
        """Answer ``func`` with a fixed value (or a failure when status != 0)."""

        def handler(args: dict[str, Any]) -> Any:
            if status != 0:
                raise MockSdkFailure(str(data) if data is not None else "failed", status)
            return data

        self.handlers[func] = handler
        if delay:
            self.delays[func] = delay

    def on(self, func: str, handler: Handler) -> None:
        self.handlers[func] = handler

    def calls(self, func: str) -> list[dict[str, Any]]:
        """Arguments of every received request for ``func``."""
        return [r.get("args", {}) for r in self.requests if r.get("func") == func]

    async def emit(self, record: dict[str, Any]) -> int:
        """Push an event record to every subscriber. Returns the subscriber count."""
        record = {"ts": int(time.time()), **record}
        return await self.emit_raw(encode_frame(MSG_EVENT, record))

    async def emit_raw(self, data: bytes) -> int:
        """Push already-framed bytes (for malformed-frame scenarios)."""
        count = 0
        for writer in list(self._evt_writers):
            try:
                writer.write(data)
                await writer.drain()
                count += 1
            except (ConnectionError, OSError):
                self._evt_writers.discard(writer)
        return count

    async def wait_for_subscriber(self, timeout: float = 5.0) -> None:
        await asyncio.wait_for(self._subscribed.wait(), timeout=timeout)

    async def drop_connections(self) -> None:
        """Close every client socket, as a crashing SDK would."""
        writers = list(self._cmd_writers) + list(self._evt_writers)
        self._cmd_writers.clear()
        self._evt_writers.clear()
        self._subscribed.clear()
        for writer in writers:
            writer.close()
            with contextlib.suppress(ConnectionError, OSError):
                await writer.wait_closed()

    # =========================================================================
    # Connection Handlers
    # =========================================================================

    async def _serve_commands(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self._cmd_writers.add(writer)
        try:
            while True:
                frame = await read_frame(reader)
                try:
                    msg_type, body = decode_frame(frame)
                except DecodeError as e:
                    logger.warning(f"Mock SDK received undecodable frame: {e.message}")
                    continue
                if msg_type != MSG_REQUEST or not isinstance(body, dict):
                    continue

                self.requests.append(body)
                response = await self._handle(body)
                writer.write(encode_frame(MSG_RESPONSE, response))
                await writer.drain()
        except (TransportError, ConnectionError, OSError):
            pass
        finally:
            self._cmd_writers.discard(writer)
            writer.close()

    async def _handle(self, body: dict[str, Any]) -> dict[str, Any]:
        func = body.get("func", "")
        seq = body.get("seq")

        delay = self.delays.get(func, 0.0)
        if delay:
            await asyncio.sleep(delay)

        handler = self.handlers.get(func)
        if handler is None:
            # Commands without a canned answer succeed with no data
            return {"seq": seq, "status": 0, "data": None}

        try:
            data = handler(body.get("args") or {})
            if inspect.isawaitable(data):
                data = await data
        except MockSdkFailure as e:
            return {"seq": seq, "status": e.status, "data": e.message}
        return {"seq": seq, "status": 0, "data": data}

    async def _serve_events(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self._evt_writers.add(writer)
        self._subscribed.set()
        try:
            # Inbound traffic is not expected; wait for the client to leave
            await reader.read()
        except (ConnectionError, OSError):
            pass
        finally:
            self._evt_writers.discard(writer)
            writer.close()
