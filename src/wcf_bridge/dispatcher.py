"""Command dispatcher.

Serializes concurrent callers onto the SDK's single request/response
command channel.

- One asyncio.Lock is the "in-flight command" slot; asyncio locks wake
  waiters in arrival order, so callers are served FIFO
- The slot is held for the full request/response cycle, timeout included
- Every call gets a fresh correlation id for local bookkeeping
- Failures come back as CommandResult values tagged with an error code;
  dispatch() does not raise for command-local problems
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from .errors import BridgeError, ConnectError
from .protocol.commands import (
    Command,
    CommandKind,
    CommandResult,
    decode_response,
    new_correlation_id,
)
from .transport.base import SdkTransport

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


class CommandDispatcher:
    """Typed command API over an SdkTransport.

    Usage:
        dispatcher = CommandDispatcher(transport)
        result = await dispatcher.dispatch(CommandKind.SEND_TEXT, {"msg": "hi", "receiver": "wxid_abc"})
        if result.ok:
            ...
    """

    def __init__(self, transport: SdkTransport, *, default_timeout: float = DEFAULT_TIMEOUT):
        self._transport = transport
        self._default_timeout = default_timeout
        self._slot = asyncio.Lock()
        self._in_flight: dict[str, Command] = {}

    @property
    def transport(self) -> SdkTransport:
        return self._transport

    @property
    def default_timeout(self) -> float:
        return self._default_timeout

    @property
    def in_flight(self) -> dict[str, Command]:
        """Commands dispatched but not yet resolved, by correlation id."""
        return dict(self._in_flight)

    async def dispatch(
        self,
        kind: CommandKind | str,
        payload: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run one command and return its result.

        Args:
            kind: Command kind
            payload: Arguments, validated against the kind's payload model
            timeout: Response bound in seconds (default: dispatcher default)

        Returns:
            CommandResult with ok=True and decoded data, or ok=False and an
            error code: invalid_payload, connect_error, transport_error,
            timeout, sdk_error, decode_error

        Raises:
            ValueError: If ``kind`` is not a known command kind
        """
        kind = CommandKind(kind)
        try:
            command = Command.create(kind, payload)
        except ValidationError as e:
            return CommandResult.failure(
                kind, new_correlation_id(), "invalid_payload", _format_validation(e)
            )

        while command.correlation_id in self._in_flight:
            command = command.model_copy(update={"correlation_id": new_correlation_id()})

        # Fail fast rather than queueing behind a dead session
        if not self._transport.is_connected:
            return _failure(command, ConnectError(self._not_connected_message()))

        timeout = self._default_timeout if timeout is None else timeout
        self._in_flight[command.correlation_id] = command
        try:
            async with self._slot:
                if not self._transport.is_connected:
                    return _failure(command, ConnectError(self._not_connected_message()))
                response = await self._transport.send_command(command, timeout)
            data = decode_response(command, response)
        except BridgeError as e:
            logger.warning(f"Command {kind.value} ({command.correlation_id}) failed: {e.message}")
            return _failure(command, e)
        finally:
            self._in_flight.pop(command.correlation_id, None)

        logger.debug(f"Command {kind.value} ({command.correlation_id}) succeeded")
        return CommandResult.success(command, data)

    def _not_connected_message(self) -> str:
        return f"SDK session is {self._transport.state.value}"


def _failure(command: Command, error: BridgeError) -> CommandResult:
    return CommandResult.failure(command.kind, command.correlation_id, error.code, error.message)


def _format_validation(error: ValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail.get("loc", ())) or "payload"
        parts.append(f"{location}: {detail.get('msg', 'invalid')}")
    return "; ".join(parts)
