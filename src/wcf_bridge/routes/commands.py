"""Command routes - one HTTP endpoint per SDK command.

Every JSON endpoint answers with the same envelope:

    {"status": 0 | 1, "error": str | null, "data": any}

HTTP status follows the failure code: 422 invalid payload, 503 SDK not
connected, 504 timeout, 502 transport failure. SDK-reported failures are
still HTTP 200 with ``status: 1``.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError
from starlette.requests import Request
from starlette.responses import FileResponse, JSONResponse, Response
from starlette.routing import Route

from .. import media
from ..errors import BridgeError
from ..protocol.commands import (
    AttachMsg,
    CommandKind,
    CommandResult,
    PathMsg,
    Payload,
    get_spec,
)

if TYPE_CHECKING:
    from ..runtime import BridgeRuntime

logger = logging.getLogger(__name__)

Endpoint = Callable[[Request], Awaitable[Response]]

HTTP_STATUS_BY_CODE = {
    "invalid_payload": 422,
    "connect_error": 503,
    "transport_error": 502,
    "timeout": 504,
}

# Where an endpoint reads its arguments from
SOURCE_NONE = "none"
SOURCE_QUERY = "query"
SOURCE_PATH = "path"
SOURCE_JSON = "json"


# =============================================================================
# Request models for composite endpoints
# =============================================================================


class SaveImage(BaseModel):
    """Download and decrypt an image message into ``dir``."""

    id: int
    extra: str = Field(min_length=1)
    dir: str = Field(min_length=1)
    timeout: int = Field(default=30, ge=0)


class DownloadFile(BaseModel):
    id: int
    extra: str = Field(min_length=1)
    thumb: str = ""


class RoomMembersQuery(BaseModel):
    """``wxids`` optionally narrows the result (comma separated)."""

    roomid: str = Field(min_length=1)
    wxids: str = ""


# =============================================================================
# Helpers
# =============================================================================


def get_runtime(request: Request) -> BridgeRuntime:
    return request.app.state.runtime


def envelope(
    data: Any = None, error: str | None = None, *, status_code: int = 200
) -> JSONResponse:
    return JSONResponse(
        {"status": 0 if error is None else 1, "error": error, "data": data},
        status_code=status_code,
    )


def status_for(code: str, default: int = 200) -> int:
    return HTTP_STATUS_BY_CODE.get(code, default)


def result_response(result: CommandResult) -> JSONResponse:
    if result.ok:
        return envelope(result.data)
    assert result.error is not None
    return envelope(error=result.error.message, status_code=status_for(result.error.code))


def error_response(error: BridgeError, default_status: int = 200) -> JSONResponse:
    return envelope(error=error.message, status_code=status_for(error.code, default_status))


def invalid(message: str) -> JSONResponse:
    return envelope(error=message, status_code=422)


def format_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in detail['loc']) or 'body'}: {detail['msg']}"
        for detail in error.errors()
    )


async def read_arguments(request: Request, source: str) -> dict[str, Any]:
    """Collect raw endpoint arguments.

    Raises:
        ValueError: If a JSON body is malformed or not an object
    """
    if source == SOURCE_QUERY:
        return dict(request.query_params)
    if source == SOURCE_PATH:
        return dict(request.path_params)
    if source == SOURCE_NONE:
        return {}

    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except ValueError as e:
        raise ValueError(f"Malformed JSON body: {e}") from e
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body


async def parse_model(request: Request, source: str, model: type[BaseModel]) -> BaseModel:
    """Read and validate arguments (ValueError or ValidationError on failure)."""
    return model.model_validate(await read_arguments(request, source))


# =============================================================================
# Endpoints
# =============================================================================


def command_endpoint(kind: CommandKind, source: str) -> Endpoint:
    """Build an endpoint that forwards its arguments to one command."""

    async def endpoint(request: Request) -> Response:
        try:
            arguments = await read_arguments(request, source)
        except ValueError as e:
            return invalid(str(e))
        result = await get_runtime(request).dispatcher.dispatch(kind, arguments)
        return result_response(result)

    endpoint.__name__ = kind.value
    return endpoint


async def get_chatrooms(request: Request) -> Response:
    """Contacts whose wxid marks them as a chatroom."""
    result = await get_runtime(request).dispatcher.dispatch(CommandKind.GET_CONTACTS)
    if not result.ok:
        return result_response(result)
    rooms = [c for c in result.data if str(c.get("wxid", "")).endswith("@chatroom")]
    return envelope(rooms)


async def query_room_members(request: Request) -> Response:
    try:
        query = await parse_model(request, SOURCE_QUERY, RoomMembersQuery)
    except ValidationError as e:
        return invalid(format_validation_error(e))

    result = await get_runtime(request).dispatcher.dispatch(
        CommandKind.QUERY_ROOM_MEMBERS, {"roomid": query.roomid}
    )
    if not result.ok:
        return result_response(result)

    wanted = {w.strip() for w in query.wxids.split(",") if w.strip()}
    members = [m for m in result.data if not wanted or m.get("wxid") in wanted]
    return envelope(members)


async def send_image(request: Request) -> Response:
    """Send an image from a local path, an http(s) URL or base64 data."""
    runtime = get_runtime(request)
    try:
        msg = await parse_model(request, SOURCE_JSON, PathMsg)
    except ValidationError as e:
        return invalid(format_validation_error(e))
    except ValueError as e:
        return invalid(str(e))

    try:
        local_path = await media.resolve_image_source(
            msg.path, msg.base64, runtime.config.image_dir, runtime.http_client
        )
    except BridgeError as e:
        logger.warning(f"Image not sent: {e.message}")
        return error_response(e)

    result = await runtime.dispatcher.dispatch(
        CommandKind.SEND_IMAGE, {"path": local_path, "receiver": msg.receiver}
    )
    return result_response(result)


async def save_image(request: Request) -> Response:
    try:
        msg = await parse_model(request, SOURCE_JSON, SaveImage)
    except ValidationError as e:
        return invalid(format_validation_error(e))
    except ValueError as e:
        return invalid(str(e))

    try:
        path = await media.fetch_image(
            get_runtime(request).dispatcher, msg.id, msg.extra, msg.dir, msg.timeout
        )
    except BridgeError as e:
        return error_response(e)
    return envelope(path)


async def save_file(request: Request) -> Response:
    """Download an attachment without decrypting it."""
    try:
        msg = await parse_model(request, SOURCE_JSON, AttachMsg)
    except ValidationError as e:
        return invalid(format_validation_error(e))
    except ValueError as e:
        return invalid(str(e))

    try:
        await media.download_attachment(
            get_runtime(request).dispatcher, msg.id, msg.extra, msg.thumb
        )
    except BridgeError as e:
        return error_response(e)
    return envelope("ok")


def _file_response(path: str) -> Response:
    if not os.path.isfile(path):
        return envelope(error=f"Cannot read file: {path}", status_code=500)
    return FileResponse(path, media_type=media.guess_content_type(path))


async def download_image(request: Request) -> Response:
    """Same as save-image, but streams the decrypted file back."""
    try:
        query = await parse_model(request, SOURCE_QUERY, SaveImage)
    except ValidationError as e:
        return invalid(format_validation_error(e))

    try:
        path = await media.fetch_image(
            get_runtime(request).dispatcher, query.id, query.extra, query.dir, query.timeout
        )
    except BridgeError as e:
        return error_response(e, default_status=500)
    return _file_response(path)


async def download_file(request: Request) -> Response:
    try:
        query = await parse_model(request, SOURCE_QUERY, DownloadFile)
    except ValidationError as e:
        return invalid(format_validation_error(e))

    try:
        await media.download_attachment(
            get_runtime(request).dispatcher, query.id, query.extra, query.thumb
        )
    except BridgeError as e:
        return error_response(e, default_status=500)
    return _file_response(query.extra)


# =============================================================================
# Route table
# =============================================================================


@dataclass(frozen=True)
class RouteSpec:
    """One HTTP endpoint, with what the API document needs to describe it."""

    method: str
    path: str
    endpoint: Endpoint
    summary: str
    source: str = SOURCE_NONE
    request_model: type[BaseModel] | None = None
    kind: CommandKind | None = None
    binary: bool = False


def command_route(method: str, path: str, kind: CommandKind, source: str) -> RouteSpec:
    spec = get_spec(kind)
    model: type[Payload] | None = spec.payload_model
    if source == SOURCE_NONE:
        model = None
    return RouteSpec(
        method=method,
        path=path,
        endpoint=command_endpoint(kind, source),
        summary=spec.description,
        source=source,
        request_model=model,
        kind=kind,
    )


ROUTE_SPECS: list[RouteSpec] = [
    command_route("GET", "/qrcode", CommandKind.REFRESH_QRCODE, SOURCE_NONE),
    command_route("GET", "/islogin", CommandKind.IS_LOGIN, SOURCE_NONE),
    command_route("GET", "/selfwxid", CommandKind.GET_SELF_WXID, SOURCE_NONE),
    command_route("GET", "/userinfo", CommandKind.GET_USER_INFO, SOURCE_NONE),
    command_route("GET", "/contacts", CommandKind.GET_CONTACTS, SOURCE_NONE),
    command_route("GET", "/dbs", CommandKind.GET_DB_NAMES, SOURCE_NONE),
    command_route("GET", "/{db}/tables", CommandKind.GET_DB_TABLES, SOURCE_PATH),
    command_route("GET", "/msg-types", CommandKind.GET_MSG_TYPES, SOURCE_NONE),
    command_route("GET", "/pyq", CommandKind.REFRESH_PYQ, SOURCE_QUERY),
    command_route("POST", "/text", CommandKind.SEND_TEXT, SOURCE_JSON),
    RouteSpec(
        "POST",
        "/image",
        send_image,
        "Send an image from a local path, URL or base64 data",
        SOURCE_JSON,
        PathMsg,
        CommandKind.SEND_IMAGE,
    ),
    command_route("POST", "/file", CommandKind.SEND_FILE, SOURCE_JSON),
    command_route("POST", "/rich-text", CommandKind.SEND_RICH_TEXT, SOURCE_JSON),
    command_route("POST", "/pat", CommandKind.SEND_PAT, SOURCE_JSON),
    command_route("POST", "/forward-msg", CommandKind.FORWARD_MSG, SOURCE_JSON),
    command_route("POST", "/audio", CommandKind.SAVE_AUDIO, SOURCE_JSON),
    RouteSpec(
        "POST",
        "/save-image",
        save_image,
        "Download and decrypt an image message",
        SOURCE_JSON,
        SaveImage,
    ),
    RouteSpec(
        "POST",
        "/save-file",
        save_file,
        "Download an attachment (not decrypted)",
        SOURCE_JSON,
        AttachMsg,
        CommandKind.DOWNLOAD_ATTACH,
    ),
    command_route("POST", "/receive-transfer", CommandKind.RECEIVE_TRANSFER, SOURCE_JSON),
    command_route("POST", "/sql", CommandKind.QUERY_SQL, SOURCE_JSON),
    command_route("POST", "/accept-new-friend", CommandKind.ACCEPT_NEW_FRIEND, SOURCE_JSON),
    command_route("POST", "/add-chatroom-member", CommandKind.ADD_CHATROOM_MEMBERS, SOURCE_JSON),
    command_route(
        "POST", "/invite-chatroom-member", CommandKind.INVITE_CHATROOM_MEMBERS, SOURCE_JSON
    ),
    command_route(
        "POST", "/delete-chatroom-member", CommandKind.DELETE_CHATROOM_MEMBERS, SOURCE_JSON
    ),
    command_route("POST", "/revoke-msg", CommandKind.REVOKE_MSG, SOURCE_QUERY),
    RouteSpec(
        "GET",
        "/query-room-member",
        query_room_members,
        "List chatroom members, optionally only the given wxids",
        SOURCE_QUERY,
        RoomMembersQuery,
        CommandKind.QUERY_ROOM_MEMBERS,
    ),
    RouteSpec("GET", "/chatrooms", get_chatrooms, "List chatrooms", kind=CommandKind.GET_CONTACTS),
    RouteSpec(
        "GET",
        "/download-image",
        download_image,
        "Download, decrypt and return an image file",
        SOURCE_QUERY,
        SaveImage,
        binary=True,
    ),
    RouteSpec(
        "GET",
        "/download-file",
        download_file,
        "Download and return an attachment file",
        SOURCE_QUERY,
        DownloadFile,
        CommandKind.DOWNLOAD_ATTACH,
        binary=True,
    ),
]


command_routes = [Route(s.path, s.endpoint, methods=[s.method]) for s in ROUTE_SPECS]
