"""
Streaming multipart/form-data intake.

The request body is parsed as it arrives: the file field is written straight
into a staged file and the size ceiling is enforced before each write, so an
oversized upload is rejected without being buffered anywhere else.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Dict, List, Optional, Tuple

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from file_relay.core.errors import InputError
from file_relay.transfer.staging import new_staging_path, remove_quietly, too_large_error
from file_relay.utils.naming import format_file_size

logger = logging.getLogger(__name__)

FILE_FIELD = "file"
MAX_FIELD_SIZE = 64 * 1024  # Plain form fields (file_url) stay small


@dataclass
class ReceivedForm:
    """Parsed form: plain fields plus the staged file, if one was sent."""
    fields: Dict[str, str] = field(default_factory=dict)
    path: Optional[Path] = None
    file_name: Optional[str] = None
    size: int = 0


def multipart_boundary(content_type: str) -> bytes:
    """
    Boundary parameter of a multipart Content-Type header.

    Raises:
        InputError: If the header carries no boundary
    """
    _, params = parse_options_header(content_type)
    boundary = params.get(b"boundary")
    if not boundary:
        raise InputError("Malformed multipart body: missing boundary")
    return boundary


class MultipartReceiver:
    """
    Feeds body chunks to the multipart parser and acts on its events.

    Parser callbacks only queue events; they are drained after every write so
    disk I/O and size checks happen outside the parser.
    """

    def __init__(self, boundary: bytes, staging_dir: Path, max_size: int):
        self.staging_dir = Path(staging_dir)
        self.max_size = max_size
        self.form = ReceivedForm()

        self._events: List[Tuple[str, bytes]] = []
        self._headers: Dict[bytes, bytes] = {}
        self._header_field = b""
        self._header_value = b""

        self._file: Optional[BinaryIO] = None
        self._file_complete = False
        self._field_name: Optional[str] = None
        self._field_value = bytearray()

        self.parser = MultipartParser(
            boundary,
            {
                "on_part_begin": self._on_part_begin,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
            },
        )

    # Parser callbacks

    def _on_part_begin(self) -> None:
        self._headers = {}

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        self._events.append(("data", data[start:end]))

    def _on_part_end(self) -> None:
        self._events.append(("end", b""))

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers[self._header_field.lower()] = self._header_value
        self._header_field = b""
        self._header_value = b""

    def _on_headers_finished(self) -> None:
        self._events.append(("begin", self._headers.get(b"content-disposition", b"")))

    # Event handling

    async def feed(self, chunk: bytes) -> None:
        try:
            self.parser.write(chunk)
        except MultipartParseError as e:
            raise InputError("Malformed multipart body") from e

        events, self._events = self._events, []
        for kind, payload in events:
            if kind == "begin":
                self._begin_part(payload)
            elif kind == "data":
                await self._part_data(payload)
            else:
                self._end_part()

    def finish(self) -> ReceivedForm:
        """Validate the end of the body and return the parsed form."""
        self.parser.finalize()
        if self.form.path is not None and not self._file_complete:
            raise InputError("Upload incomplete")
        return self.form

    def _begin_part(self, disposition: bytes) -> None:
        _, options = parse_options_header(disposition)
        name = options.get(b"name", b"").decode("utf-8", "replace")
        filename = options.get(b"filename")

        self._field_name = None
        self._field_value = bytearray()

        if filename is None:
            self._field_name = name
            return
        if name != FILE_FIELD or not filename or self.form.path is not None:
            # Empty file inputs and extra files are discarded
            return

        self.staging_dir.mkdir(parents=True, exist_ok=True)
        self.form.file_name = filename.decode("utf-8", "replace")
        self.form.path = new_staging_path(self.staging_dir, self.form.file_name)
        self._file = open(self.form.path, "wb")

    async def _part_data(self, data: bytes) -> None:
        if self._file is not None:
            self.form.size += len(data)
            if self.form.size > self.max_size:
                raise too_large_error(self.max_size)
            await asyncio.get_event_loop().run_in_executor(None, self._file.write, data)
        elif self._field_name is not None:
            self._field_value += data
            if len(self._field_value) > MAX_FIELD_SIZE:
                raise InputError(f"Form field '{self._field_name}' too large")

    def _end_part(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            self._file_complete = True
        elif self._field_name is not None:
            self.form.fields[self._field_name] = self._field_value.decode("utf-8", "replace")
        self._field_name = None

    def close(self) -> None:
        """Close and delete the staged file."""
        if self._file is not None:
            self._file.close()
            self._file = None
        if self.form.path is not None:
            remove_quietly(self.form.path)


@asynccontextmanager
async def receive_multipart(
    chunks: AsyncIterator[bytes],
    content_type: str,
    staging_dir: Path,
    max_size: int,
) -> AsyncIterator[ReceivedForm]:
    """
    Parse a streamed multipart body, staging its file field.

    The staged file is deleted when the context exits, whatever happened.

    Raises:
        InputError: If the body is malformed
        PayloadTooLargeError: As soon as the file exceeds max_size
    """
    receiver = MultipartReceiver(multipart_boundary(content_type), staging_dir, max_size)
    try:
        async for chunk in chunks:
            await receiver.feed(chunk)
        form = receiver.finish()
        if form.path is not None:
            logger.info(f"[UPLOAD] Received {form.path.name} ({format_file_size(form.size)})")
        yield form
    finally:
        receiver.close()
