"""
Download, stream, and player endpoints.
Relay stored files to clients with range support.
"""

import html
import logging
from string import Template
from typing import Optional

from fastapi import APIRouter, Header, Query, Request, status
from fastapi.responses import HTMLResponse

from file_relay.core.dependencies import Proxy, Store
from file_relay.core.errors import NotFoundError, RelayError, TransferError
from file_relay.storage.base import FileHandle
from file_relay.transfer.proxy import RangeProxy, RelayResponse
from file_relay.utils.links import LinkBuilder, LinkOperation
from file_relay.utils.media import DEFAULT_CONTENT_TYPE, MediaKind, classify, stream_content_type
from file_relay.utils.naming import safe_file_name

logger = logging.getLogger(__name__)

router = APIRouter(tags=["media"])

STREAM_CACHE_CONTROL = "public, max-age=31536000"

PLAYER_PAGE = Template("""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>$title - Player</title>
</head>
<body>
    <h1>$title</h1>
    <p><a href="$download_url">Download File</a></p>
    $element
</body>
</html>
""")

VIDEO_ELEMENT = Template(
    '<video id="player" playsinline controls crossorigin="anonymous" style="max-width: 100%">'
    '<source src="$src" type="$type">Your browser doesn\'t support video playback.</video>'
)
AUDIO_ELEMENT = Template(
    '<audio id="player" controls crossorigin="anonymous">'
    '<source src="$src" type="$type">Your browser doesn\'t support audio playback.</audio>'
)


async def _open_relay(proxy: RangeProxy, file_id: str, range_header: Optional[str], unavailable: str):
    """Fetch upstream, hiding every failure except not-found behind a generic message."""
    try:
        handle = FileHandle.from_token(file_id)
        return await proxy.fetch(handle, range_header)
    except NotFoundError:
        raise
    except RelayError as e:
        logger.error(f"[RELAY] {unavailable}: {type(e).__name__}")
        raise TransferError(unavailable) from e


@router.get("/download/{file_id}")
async def download_file(
    file_id: str,
    proxy: Proxy,
    filename: str = Query(default="file"),
    range_header: Optional[str] = Header(default=None, alias="range"),
):
    """
    Download a stored file as an attachment.

    Honors the Range header when the backing store does; otherwise the whole
    file is returned with status 200.
    """
    name = safe_file_name(filename)
    logger.info(f"[DOWNLOAD] Request: {name} (range: {range_header or 'none'})")

    proxied = await _open_relay(proxy, file_id, range_header, "Download not available")

    headers = dict(proxied.headers)
    headers["Content-Disposition"] = f'attachment; filename="{name}"'
    headers["Accept-Ranges"] = "bytes"

    return RelayResponse(
        proxied.session,
        status_code=proxied.status_code,
        headers=headers,
        media_type=DEFAULT_CONTENT_TYPE,
    )


@router.get("/stream/{file_id}")
async def stream_file(
    file_id: str,
    proxy: Proxy,
    filename: str = Query(default="file"),
    range_header: Optional[str] = Header(default=None, alias="range"),
):
    """Stream a stored file inline with a media Content-Type."""
    name = safe_file_name(filename)
    logger.info(f"[STREAM] Request: {name} (range: {range_header or 'none'})")

    proxied = await _open_relay(proxy, file_id, range_header, "Stream not available")

    headers = dict(proxied.headers)
    headers["Accept-Ranges"] = "bytes"
    headers["Cache-Control"] = STREAM_CACHE_CONTROL

    return RelayResponse(
        proxied.session,
        status_code=proxied.status_code,
        headers=headers,
        media_type=stream_content_type(name),
    )


@router.get("/player/{file_id}", response_class=HTMLResponse)
async def player_page(
    file_id: str,
    request: Request,
    store: Store,
    filename: str = Query(default="file"),
):
    """Media player page pointed at the stream URL. Only video and audio are accepted."""
    name = safe_file_name(filename)
    kind = classify(name)
    if not kind.is_media:
        return HTMLResponse(
            "<h1>File type not supported for streaming</h1>",
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    try:
        handle = FileHandle.from_token(file_id)
        await store.resolve(handle.primary)
    except NotFoundError:
        return HTMLResponse(
            "<h1>File not found</h1><p>The requested media file could not be found.</p>",
            status_code=status.HTTP_404_NOT_FOUND,
        )
    except RelayError as e:
        logger.error(f"[PLAYER] Lookup failed for {name}: {type(e).__name__}")
        return HTMLResponse(
            "<h1>Player not available</h1>",
            status_code=status.HTTP_502_BAD_GATEWAY,
        )

    links = LinkBuilder.from_request(request).links(handle.token, name)
    element = VIDEO_ELEMENT if kind is MediaKind.VIDEO else AUDIO_ELEMENT
    page = PLAYER_PAGE.substitute(
        title=html.escape(name),
        download_url=html.escape(links[LinkOperation.DOWNLOAD]),
        element=element.substitute(
            src=html.escape(links[LinkOperation.STREAM]),
            type=html.escape(stream_content_type(name)),
        ),
    )
    return HTMLResponse(page)
