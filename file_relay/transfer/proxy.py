"""
Range-aware relay from the backing store to HTTP clients.

Bodies are forwarded in bounded segments and never buffered whole. When the
backing store rejects a range fetch the proxy falls back to a full fetch and
answers 200 with the complete object (a valid reply to a Range request)
instead of a 206 it cannot honor.
"""

import logging
import re
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional, Tuple

import httpx
from starlette.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from file_relay.core.errors import NotFoundError, TransferError
from file_relay.storage.backend import BackingStore
from file_relay.storage.base import FileHandle, Locator

logger = logging.getLogger(__name__)

_RANGE_RE = re.compile(r"^\s*bytes\s*=\s*(\d*)\s*-\s*(\d*)\s*$", re.IGNORECASE)


def parse_byte_range(header: Optional[str], total: int) -> Optional[Tuple[int, int]]:
    """
    Parse a single-range Range header into an inclusive (start, end) pair.

    Returns None for absent, multi-range, malformed or unsatisfiable ranges.

    Examples:
        >>> parse_byte_range("bytes=100-199", 1000)
        (100, 199)

        >>> parse_byte_range("bytes=-100", 1000)
        (900, 999)
    """
    if not header or total <= 0:
        return None
    match = _RANGE_RE.match(header)
    if not match:
        return None

    first, last = match.groups()
    if not first:
        if not last or int(last) == 0:
            return None
        return max(total - int(last), 0), total - 1

    start = int(first)
    end = min(int(last), total - 1) if last else total - 1
    if start >= total or start > end:
        return None
    return start, end


def single_range_header(header: Optional[str], total: Optional[int]) -> Optional[str]:
    """
    Normalized single-range header to send upstream, or None to fetch in full.

    Multi-range requests are never forwarded; a multipart/byteranges reply
    cannot be relayed under the file's own Content-Type.
    """
    if not header:
        return None
    if total is None:
        match = _RANGE_RE.match(header)
        if not match or not any(match.groups()):
            return None
        first, last = match.groups()
        return f"bytes={first}-{last}"
    byte_range = parse_byte_range(header, total)
    if byte_range is None:
        return None
    return f"bytes={byte_range[0]}-{byte_range[1]}"


@dataclass
class UpstreamSlice:
    """One upstream object (or a byte range of it) contributing to a body."""
    locator: Locator
    byte_range: Optional[Tuple[int, int]] = None
    use_range_get: bool = True
    response: Optional[httpx.Response] = None


@dataclass
class ProxiedResponse:
    """Status, upstream-derived headers, and the session producing the body."""
    status_code: int
    headers: Dict[str, str]
    session: "StreamSession"


class StreamSession:
    """
    Pairs one client exchange with the upstream fetches serving it.

    Upstream responses are tracked and closed by aclose(), which the relay
    response calls when the exchange ends for any reason, client disconnect
    included.
    """

    def __init__(self, proxy: "RangeProxy", slices: List[UpstreamSlice]):
        self.proxy = proxy
        self.slices = slices
        self._responses: List[httpx.Response] = [s.response for s in slices if s.response is not None]
        self.closed = False

    async def body(self) -> AsyncIterator[bytes]:
        try:
            for upstream in self.slices:
                skip, limit = 0, None
                response = upstream.response
                if response is None:
                    response = await self.proxy.open_slice(upstream)
                    self._responses.append(response)
                    if upstream.byte_range is not None and response.status_code == 200:
                        # Range ignored upstream: cut the slice out locally
                        start, end = upstream.byte_range
                        skip, limit = start, end - start + 1

                async for chunk in self.proxy.relay(response, skip=skip, limit=limit):
                    yield chunk
                await response.aclose()
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        for response in self._responses:
            await response.aclose()


class RelayResponse(StreamingResponse):
    """StreamingResponse that always releases its upstream session."""

    def __init__(self, session: StreamSession, **kwargs):
        super().__init__(session.body(), **kwargs)
        self.session = session

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            if not self.session.closed:
                logger.info("[RELAY] Exchange ended early, closing upstream")
            await self.session.aclose()


class RangeProxy:
    """Resolves file handles and relays their bytes with range support."""

    def __init__(
        self,
        store: BackingStore,
        http: httpx.AsyncClient,
        segment_size: int = 256 * 1024,
        connect_timeout: float = 30.0,
        read_timeout: Optional[float] = None,
    ):
        self.store = store
        self.http = http
        self.segment_size = segment_size
        self.timeout = httpx.Timeout(read_timeout, connect=connect_timeout)

    async def _open(self, url: str, range_header: Optional[str] = None) -> httpx.Response:
        # Bodies are relayed raw, so upstream must not compress them
        headers = {"Accept-Encoding": "identity"}
        if range_header:
            headers["Range"] = range_header
        request = self.http.build_request("GET", url, headers=headers, timeout=self.timeout)
        return await self.http.send(request, stream=True)

    async def _open_full(self, locator: Locator) -> httpx.Response:
        """Non-ranged fetch; 404 maps to NotFoundError, other failures to TransferError."""
        try:
            response = await self._open(locator.url)
        except httpx.HTTPError as e:
            logger.error(f"[RELAY] Upstream fetch failed: {type(e).__name__}")
            raise TransferError() from e

        if response.status_code != 200:
            await response.aclose()
            logger.error(f"[RELAY] Upstream answered {response.status_code}")
            if response.status_code == 404:
                raise NotFoundError()
            raise TransferError()
        return response

    async def _open_range(self, locator: Locator, range_header: str) -> Optional[httpx.Response]:
        """Ranged fetch; None when upstream rejects the range request."""
        try:
            response = await self._open(locator.url, range_header)
        except httpx.HTTPError as e:
            logger.warning(f"[RELAY] Range request failed ({type(e).__name__}), falling back to full fetch")
            return None

        if response.status_code in (200, 206):
            return response
        await response.aclose()
        logger.warning(f"[RELAY] Range request rejected ({response.status_code}), falling back to full fetch")
        return None

    async def open_slice(self, upstream: UpstreamSlice) -> httpx.Response:
        """Open one part of a composite body, ranged when possible."""
        if upstream.byte_range is not None and upstream.use_range_get:
            start, end = upstream.byte_range
            response = await self._open_range(upstream.locator, f"bytes={start}-{end}")
            if response is not None:
                return response
        return await self._open_full(upstream.locator)

    async def relay(
        self,
        response: httpx.Response,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> AsyncIterator[bytes]:
        """Forward a body in bounded segments, optionally dropping a prefix and capping length."""
        if limit is not None and limit <= 0:
            return
        async for chunk in response.aiter_raw(self.segment_size):
            if skip:
                if len(chunk) <= skip:
                    skip -= len(chunk)
                    continue
                chunk = chunk[skip:]
                skip = 0
            if limit is not None:
                if len(chunk) >= limit:
                    yield chunk[:limit]
                    return
                limit -= len(chunk)
            yield chunk

    async def fetch(self, handle: FileHandle, range_header: Optional[str] = None) -> ProxiedResponse:
        """
        Open the upstream body for a file handle.

        Args:
            handle: File handle from the request path
            range_header: Inbound Range header, if any

        Returns:
            ProxiedResponse with 200 or 206 status

        Raises:
            NotFoundError: If any part cannot be resolved
            TransferError: If the backing store fails before the body starts
        """
        locators = [await self.store.resolve(part) for part in handle.parts]
        if handle.is_composite:
            return self._fetch_composite(handle, locators, range_header)

        locator = locators[0]
        channel = self.store.channel_for(handle.primary)

        upstream_range = single_range_header(range_header, locator.size)
        if upstream_range and channel.capabilities.supports_range_get:
            response = await self._open_range(locator, upstream_range)
            if response is not None:
                headers = {}
                if response.status_code == 206:
                    for name in ("content-range", "content-length"):
                        if name in response.headers:
                            headers[name.title()] = response.headers[name]
                elif "content-length" in response.headers:
                    headers["Content-Length"] = response.headers["content-length"]
                session = StreamSession(self, [UpstreamSlice(locator, response=response)])
                return ProxiedResponse(response.status_code, headers, session)

        response = await self._open_full(locator)
        headers = {}
        if "content-length" in response.headers:
            headers["Content-Length"] = response.headers["content-length"]
        session = StreamSession(self, [UpstreamSlice(locator, response=response)])
        return ProxiedResponse(200, headers, session)

    def _fetch_composite(
        self,
        handle: FileHandle,
        locators: List[Locator],
        range_header: Optional[str],
    ) -> ProxiedResponse:
        """Concatenate chunk objects in order, mapping a range across part boundaries."""
        sizes = [locator.size for locator in locators]
        total = sum(sizes) if all(size is not None for size in sizes) else None
        use_range_get = [self.store.channel_for(part).capabilities.supports_range_get for part in handle.parts]

        byte_range = parse_byte_range(range_header, total) if total is not None else None
        if byte_range is None:
            headers = {"Content-Length": str(total)} if total is not None else {}
            slices = [UpstreamSlice(locator) for locator in locators]
            return ProxiedResponse(200, headers, StreamSession(self, slices))

        start, end = byte_range
        slices = []
        offset = 0
        for locator, size, ranged in zip(locators, sizes, use_range_get):
            part_start, part_end = offset, offset + size - 1
            offset += size
            if size == 0 or part_end < start or part_start > end:
                continue
            local = (max(start, part_start) - part_start, min(end, part_end) - part_start)
            slices.append(UpstreamSlice(locator, byte_range=local, use_range_get=ranged))

        headers = {
            "Content-Range": f"bytes {start}-{end}/{total}",
            "Content-Length": str(end - start + 1),
        }
        return ProxiedResponse(206, headers, StreamSession(self, slices))
