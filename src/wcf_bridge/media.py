"""Local materialization of images and attachments.

The SDK only sends files that exist on the local disk. Image requests may
instead carry base64 data or an http(s) URL; these are written to the
configured image directory first and the local path is sent.

Received attachments go the other way: the SDK downloads them on request,
and images additionally need decrypting, which only succeeds once the
download has finished. ``fetch_image`` polls for that.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import mimetypes
import uuid
from pathlib import Path

import httpx

from .dispatcher import CommandDispatcher
from .errors import BridgeError, MediaError
from .protocol.commands import CommandKind, CommandResult

logger = logging.getLogger(__name__)

# Seconds between decrypt attempts while an image download completes
DECRYPT_POLL_INTERVAL = 1.0

_CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


def _extension_from_path(path: str) -> str:
    lowered = path.lower()
    if lowered.endswith((".jpg", ".jpeg")):
        return "jpg"
    return "png"


def _unique_path(directory: Path, extension: str) -> Path:
    return directory / f"{uuid.uuid4()}.{extension}"


def _write(directory: Path, extension: str, data: bytes) -> str:
    try:
        directory.mkdir(parents=True, exist_ok=True)
        target = _unique_path(directory, extension)
        target.write_bytes(data)
    except OSError as e:
        raise MediaError(f"Cannot store image in {directory}: {e}") from e
    logger.debug(f"Stored image at {target}")
    return str(target)


def save_base64_image(data: str, path_hint: str, directory: Path) -> str:
    """Decode base64 image data into ``directory``; returns the local path."""
    try:
        raw = base64.b64decode(data, validate=False)
    except (binascii.Error, ValueError) as e:
        raise MediaError(f"Invalid base64 image data: {e}") from e
    if not raw:
        raise MediaError("Empty base64 image data")
    return _write(directory, _extension_from_path(path_hint), raw)


async def download_image(url: str, directory: Path, client: httpx.AsyncClient) -> str:
    """Download an image into ``directory``; returns the local path."""
    try:
        response = await client.get(url, follow_redirects=True)
    except httpx.HTTPError as e:
        raise MediaError(f"Image download failed: {e}") from e

    if not response.is_success:
        raise MediaError(f"Image download failed with HTTP {response.status_code}")

    content_type = response.headers.get("content-type", "image/png").split(";")[0].strip()
    extension = _CONTENT_TYPE_EXTENSIONS.get(content_type, "png")
    return _write(directory, extension, response.content)


async def resolve_image_source(
    path: str,
    data: str,
    directory: str | Path,
    client: httpx.AsyncClient | None = None,
) -> str:
    """Return a local file path for an image request.

    Base64 data wins over ``path``; an http(s) ``path`` is downloaded;
    anything else is assumed to already be local.

    Raises:
        MediaError: If the image cannot be decoded, downloaded or stored
    """
    target_dir = Path(directory)
    if data:
        return save_base64_image(data, path, target_dir)

    if path.startswith(("http://", "https://")):
        if client is not None:
            return await download_image(path, target_dir, client)
        async with httpx.AsyncClient(timeout=30.0) as owned:
            return await download_image(path, target_dir, owned)

    if not path:
        raise MediaError("Either path or base64 is required")
    return path


def guess_content_type(path: str) -> str:
    """Content type for serving a downloaded attachment."""
    content_type, _ = mimetypes.guess_type(path)
    return content_type or "application/octet-stream"


def _raise_for(result: CommandResult) -> None:
    if not result.ok and result.error is not None:
        raise BridgeError(result.error.message, code=result.error.code)


async def download_attachment(
    dispatcher: CommandDispatcher, msg_id: int, extra: str, thumb: str = ""
) -> None:
    """Have the SDK download a message attachment to its ``extra`` path.

    Raises:
        BridgeError: If the command failed or the SDK refused the download
    """
    result = await dispatcher.dispatch(
        CommandKind.DOWNLOAD_ATTACH, {"id": msg_id, "thumb": thumb, "extra": extra}
    )
    _raise_for(result)
    if not result.data:
        raise MediaError("download failed")


async def fetch_image(
    dispatcher: CommandDispatcher, msg_id: int, extra: str, directory: str, timeout: int
) -> str:
    """Download and decrypt an image message; returns the decrypted path.

    Decryption is retried once per ``DECRYPT_POLL_INTERVAL`` for up to
    ``timeout`` attempts while the SDK finishes the download.

    Raises:
        BridgeError: If a command failed, the download was refused, or no
            decrypted file appeared in time
    """
    await download_attachment(dispatcher, msg_id, extra)

    for _ in range(timeout):
        result = await dispatcher.dispatch(
            CommandKind.DECRYPT_IMAGE, {"src": extra, "dst": directory}
        )
        _raise_for(result)
        if result.data:
            return result.data
        await asyncio.sleep(DECRYPT_POLL_INTERVAL)

    raise MediaError("download timed out")
