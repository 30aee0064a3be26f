"""
Local staging of uploaded and fetched files.

Every staged file lives under the staging directory with a unique name and
is removed when its scope ends, whether the transfer succeeded or not.
"""

import asyncio
import logging
import os
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator
from urllib.parse import unquote, urlparse

import httpx

from file_relay.core.errors import InputError, PayloadTooLargeError, SourceUnavailableError
from file_relay.storage.config import COPY_BUFFER_SIZE
from file_relay.utils.naming import format_file_size, safe_file_name

logger = logging.getLogger(__name__)


def new_staging_path(staging_dir: Path, name: str) -> Path:
    """Unique staging path; concurrent uploads of the same name never collide."""
    return Path(staging_dir) / f"{uuid.uuid4().hex}_{safe_file_name(name)}"


def remove_quietly(path: Path) -> None:
    """Delete a temporary file, logging (not raising) on failure."""
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to remove temporary file {path.name}: {e}")


@asynccontextmanager
async def staged_file(staging_dir: Path, name: str) -> AsyncIterator[Path]:
    """Reserve a unique staging path and delete it on every exit path."""
    staging_dir = Path(staging_dir)
    staging_dir.mkdir(parents=True, exist_ok=True)
    path = new_staging_path(staging_dir, name)
    try:
        yield path
    finally:
        remove_quietly(path)


def too_large_error(max_size: int) -> PayloadTooLargeError:
    return PayloadTooLargeError(f"File too large. Maximum size: {format_file_size(max_size)}")


def copy_range(source: Path, destination: Path, start: int, length: int) -> int:
    """
    Copy length bytes starting at start from source into destination.

    Raises:
        IOError: If source ends before the range is complete
    """
    remaining = length
    with open(source, "rb") as src, open(destination, "wb") as out:
        src.seek(start)
        while remaining > 0:
            buffer = src.read(min(COPY_BUFFER_SIZE, remaining))
            if not buffer:
                raise IOError(f"Unexpected end of {source.name} at offset {start + length - remaining}")
            out.write(buffer)
            remaining -= len(buffer)
    return length


def name_from_url(url: str) -> str:
    """Filename from the last URL path segment, 'file' when absent."""
    path = urlparse(url.strip()).path
    return os.path.basename(unquote(path).rstrip("/")).strip() or "file"


async def stage_remote_url(
    http: httpx.AsyncClient,
    url: str,
    destination: Path,
    max_size: int,
    timeout: float,
) -> int:
    """
    Stream a remote URL into a staged file.

    Args:
        http: Shared HTTP client
        url: Source URL (http or https)
        destination: Staged file path
        max_size: Size ceiling enforced while streaming
        timeout: Connect and per-read timeout in seconds

    Returns:
        Number of bytes written

    Raises:
        InputError: If the URL is not http(s)
        PayloadTooLargeError: If the source exceeds max_size
        SourceUnavailableError: If the source cannot be fetched
    """
    if urlparse(url).scheme not in ("http", "https"):
        raise InputError(
            "Invalid file_url. Only http and https URLs are supported",
            supported_methods=["JSON with file_url field"],
        )

    loop = asyncio.get_event_loop()
    written = 0
    logger.info(f"[INGEST] Downloading from URL: {urlparse(url).netloc}")
    try:
        async with http.stream("GET", url, timeout=httpx.Timeout(timeout), follow_redirects=True) as response:
            response.raise_for_status()

            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > max_size:
                raise too_large_error(max_size)

            with open(destination, "wb") as out:
                async for chunk in response.aiter_bytes(COPY_BUFFER_SIZE):
                    written += len(chunk)
                    if written > max_size:
                        raise too_large_error(max_size)
                    await loop.run_in_executor(None, out.write, chunk)
    except httpx.HTTPError as e:
        logger.error(f"[INGEST] Source fetch failed: {type(e).__name__}: {e}")
        raise SourceUnavailableError() from e

    logger.info(f"[INGEST] Staged {destination.name} ({format_file_size(written)})")
    return written
