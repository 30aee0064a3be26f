"""
Upload endpoint.
Accepts a multipart file or a source URL, stages it, and relays it into the backing store.
"""

import logging
import time
from datetime import datetime, timezone
from pathlib import Path

import httpx
from fastapi import APIRouter, Request
from pydantic import ValidationError

from shared_schemas.file_relay import UploadResponse, UrlUploadRequest
from file_relay.core.config import settings
from file_relay.core.dependencies import Coordinator, HTTPClient
from file_relay.core.errors import SUPPORTED_UPLOAD_METHODS, InputError
from file_relay.storage.base import BotResult
from file_relay.transfer.coordinator import ChunkedUploadCoordinator
from file_relay.transfer.multipart import receive_multipart
from file_relay.transfer.staging import name_from_url, stage_remote_url, staged_file
from file_relay.utils.links import LinkBuilder, LinkOperation
from file_relay.utils.media import classify
from file_relay.utils.naming import format_file_size, safe_file_name

logger = logging.getLogger(__name__)

router = APIRouter(tags=["upload"])


def _missing_input() -> InputError:
    return InputError(
        "No file provided. Please provide a file via form upload or file_url parameter",
        supported_methods=SUPPORTED_UPLOAD_METHODS,
    )


async def _relay_staged(
    request: Request,
    coordinator: ChunkedUploadCoordinator,
    path: Path,
    size: int,
    original_name: str,
) -> UploadResponse:
    """Write a staged file and describe the result."""
    start_time = time.time()
    display_name = safe_file_name(original_name)

    logger.info(f"[UPLOAD] Relaying {display_name} ({format_file_size(size)})")
    handle = await coordinator.upload(path, size, settings.TELEGRAM_CHANNEL_ID, display_name)

    links = LinkBuilder.from_request(request).links(handle.token, original_name)
    kind = classify(original_name)
    primary = handle.primary

    logger.info(
        f"[UPLOAD] Completed: {display_name} in {len(handle.parts)} part(s) "
        f"({time.time() - start_time:.2f}s)"
    )

    return UploadResponse(
        file_name=original_name,
        file_size=size,
        file_size_formatted=format_file_size(size),
        file_id=handle.token,
        download_url=links[LinkOperation.DOWNLOAD],
        hotlink=links[LinkOperation.DOWNLOAD],
        stream_url=links[LinkOperation.STREAM] if kind.is_media else None,
        player_url=links[LinkOperation.PLAYER] if kind.is_media else None,
        supports_streaming=kind.is_media,
        file_type=kind.value if kind.is_media else "document",
        chunk_count=len(handle.parts),
        telegram_message_id=primary.message_id if isinstance(primary, BotResult) else None,
        upload_time=datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        max_size_supported=format_file_size(settings.MAX_FILE_SIZE),
    )


async def _relay_from_url(
    request: Request,
    coordinator: ChunkedUploadCoordinator,
    http: httpx.AsyncClient,
    file_url: str,
) -> UploadResponse:
    original_name = name_from_url(file_url)
    async with staged_file(Path(settings.STAGING_DIR), original_name) as path:
        size = await stage_remote_url(
            http,
            file_url,
            path,
            max_size=settings.MAX_FILE_SIZE,
            timeout=settings.INGEST_TIMEOUT,
        )
        return await _relay_staged(request, coordinator, path, size, original_name)


@router.post("/upload", response_model=UploadResponse)
async def upload_file(request: Request, coordinator: Coordinator, http: HTTPClient):
    """
    Upload a file via multipart form data or a source URL.

    Examples:
        curl -F "file=@movie.mp4" http://server/upload

        curl -X POST http://server/upload \\
          -H "Content-Type: application/json" \\
          -d '{"file_url": "https://example.com/movie.mp4"}'

    Files above the single-upload limit are split into ordered chunks;
    the returned file_id references all of them.
    """
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("multipart/form-data"):
        # File bytes go straight from the socket into the staging directory
        async with receive_multipart(
            request.stream(),
            content_type,
            Path(settings.STAGING_DIR),
            settings.MAX_FILE_SIZE,
        ) as received:
            if received.path is not None:
                return await _relay_staged(request, coordinator, received.path, received.size, received.file_name or "file")
            file_url = received.fields.get("file_url", "").strip()
            if file_url:
                return await _relay_from_url(request, coordinator, http, file_url)
        raise _missing_input()

    if content_type.startswith("application/x-www-form-urlencoded"):
        form = await request.form()
        try:
            file_url = form.get("file_url")
            if isinstance(file_url, str) and file_url.strip():
                return await _relay_from_url(request, coordinator, http, file_url.strip())
        finally:
            await form.close()
        raise _missing_input()

    if content_type.startswith("application/json"):
        try:
            body = UrlUploadRequest.model_validate(await request.json())
        except (ValueError, ValidationError) as e:
            logger.warning(f"[UPLOAD] Invalid JSON body: {e}")
            raise _missing_input() from e
        return await _relay_from_url(request, coordinator, http, body.file_url.strip())

    raise _missing_input()
