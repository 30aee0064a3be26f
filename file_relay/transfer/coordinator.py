"""
Chunked upload coordinator.

Chooses the upload path by size and channel availability:

1. size <= single-upload limit: one direct write through the preferred
   channel (richer when available), falling back once to the bot channel.
2. size > limit with the richer channel available: one native multipart
   transfer, falling through to manual chunking on failure.
3. Manual chunking: sequential chunk objects through the bot channel.
"""

import asyncio
import logging
import math
from pathlib import Path
from typing import List, NamedTuple, Optional

from file_relay.core.errors import ChannelUnavailableError, RelayError
from file_relay.storage.backend import BackingStore
from file_relay.storage.base import FileHandle, StorageChannel, StoredObject
from file_relay.transfer.staging import copy_range, remove_quietly
from file_relay.utils.naming import format_file_size

logger = logging.getLogger(__name__)


class ChunkRange(NamedTuple):
    """Byte range [start, end) of one chunk."""
    index: int
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


def plan_chunks(size: int, chunk_size: int) -> List[ChunkRange]:
    """
    Partition size bytes into ceil(size / chunk_size) contiguous ranges.

    Raises:
        ValueError: If chunk_size is not positive or size is negative
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if size < 0:
        raise ValueError(f"size must not be negative, got {size}")

    count = math.ceil(size / chunk_size)
    return [
        ChunkRange(index=i, start=i * chunk_size, end=min((i + 1) * chunk_size, size))
        for i in range(count)
    ]


def part_caption(name: str, index: int, count: int, size: int) -> str:
    """Caption of chunk index (0-based) out of count."""
    return f"{name} (Part {index + 1}/{count})\nChunk Size: {format_file_size(size)}"


def file_caption(name: str, size: int) -> str:
    return f"{name}\nSize: {format_file_size(size)}"


class ChunkedUploadCoordinator:
    """Relays one staged file into the backing store."""

    def __init__(
        self,
        store: BackingStore,
        single_upload_limit: int,
        chunk_size: int,
    ):
        if chunk_size > single_upload_limit:
            logger.warning("CHUNK_SIZE exceeds SINGLE_UPLOAD_LIMIT; chunks may be rejected")
        self.store = store
        self.single_upload_limit = single_upload_limit
        self.chunk_size = chunk_size

    async def upload(self, path: Path, size: int, destination: str, name: str) -> FileHandle:
        """
        Write a staged file and return its handle.

        Args:
            path: Staged file (owned and removed by the caller)
            size: Measured size of the staged file
            destination: Destination chat/channel id
            name: Sanitized display name used in captions

        Returns:
            FileHandle listing every written object in order

        Raises:
            TransferError: If no channel accepts the payload
        """
        richer = self.store.richer if self.store.richer_available else None

        if size <= self.single_upload_limit:
            return FileHandle(parts=(await self._single_write(path, size, destination, name, richer),))

        if richer is not None and size <= richer.capabilities.max_object_size:
            try:
                logger.info(f"[UPLOAD] Using {richer.name} channel for {name} ({format_file_size(size)})")
                obj = await richer.put(path, destination, file_caption(name, size))
                return FileHandle(parts=(obj,))
            except RelayError as e:
                logger.warning(f"[UPLOAD] {richer.name} channel failed for {name}, chunking instead: {e}")

        return FileHandle(parts=tuple(await self._chunked_write(path, size, destination, name)))

    async def _single_write(
        self,
        path: Path,
        size: int,
        destination: str,
        name: str,
        richer: Optional[StorageChannel],
    ) -> StoredObject:
        standard = self.store.standard
        caption = file_caption(name, size)

        if richer is not None:
            try:
                return await richer.put(path, destination, caption)
            except RelayError as e:
                logger.warning(f"[UPLOAD] {richer.name} channel failed for {name}, retrying via {standard.name}: {e}")

        if not standard.capabilities.available:
            raise ChannelUnavailableError()
        return await standard.put(path, destination, caption)

    async def _chunked_write(self, path: Path, size: int, destination: str, name: str) -> List[StoredObject]:
        """Write chunks strictly in order. A failed chunk aborts the plan."""
        standard = self.store.standard
        if not standard.capabilities.available:
            raise ChannelUnavailableError()

        plan = plan_chunks(size, self.chunk_size)
        loop = asyncio.get_event_loop()
        written: List[StoredObject] = []

        logger.info(f"[CHUNK] Splitting {name} into {len(plan)} parts of up to {format_file_size(self.chunk_size)}")
        for chunk in plan:
            chunk_path = path.with_name(f"{path.name}.chunk{chunk.index}")
            try:
                await loop.run_in_executor(None, copy_range, path, chunk_path, chunk.start, chunk.length)
                obj = await standard.put(
                    chunk_path,
                    destination,
                    part_caption(name, chunk.index, len(plan), chunk.length),
                )
            except Exception:
                # Earlier chunks stay stored; there is no compensation step
                logger.error(
                    f"[CHUNK] Part {chunk.index + 1}/{len(plan)} of {name} failed, "
                    f"{len(written)} part(s) left orphaned"
                )
                raise
            finally:
                remove_quietly(chunk_path)
            written.append(obj)
            logger.info(f"[CHUNK] Stored part {chunk.index + 1}/{len(plan)} of {name}")

        return written
