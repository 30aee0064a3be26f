"""Shared fixtures for file relay tests."""

import os

# Dummy env so boto3/moto never reach real credentials
os.environ.setdefault("AWS_ACCESS_KEY_ID", "test")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import httpx
import pytest

from file_relay.core.errors import ChannelUnavailableError, NotFoundError
from file_relay.storage.backend import BackingStore
from file_relay.storage.base import (
    BotResult,
    ChannelCapabilities,
    ClientResult,
    Locator,
    StorageChannel,
)

UPSTREAM_HOST = "upstream.test"


class FakeChannel(StorageChannel):
    """In-memory storage channel backed by a dict of object bytes."""

    def __init__(
        self,
        name: str = "bot",
        objects: Optional[Dict[str, bytes]] = None,
        available: bool = True,
        supports_range_get: bool = True,
        max_object_size: int = 1024,
        fail_on_put: Optional[int] = None,
        result_type=BotResult,
    ):
        self.name = name
        self.objects = objects if objects is not None else {}
        self.available = available
        self.supports_range_get = supports_range_get
        self.max_object_size = max_object_size
        self.fail_on_put = fail_on_put  # 1-based put number that fails
        self.result_type = result_type
        self.puts: List[Tuple[str, str, bytes]] = []  # (destination, caption, content)
        self.put_paths: List[Path] = []

    @property
    def capabilities(self) -> ChannelCapabilities:
        return ChannelCapabilities(
            available=self.available,
            supports_range_get=self.supports_range_get,
            max_object_size=self.max_object_size,
        )

    async def put(self, path, destination, caption):
        self.put_paths.append(path)
        if self.fail_on_put is not None and len(self.put_paths) == self.fail_on_put:
            raise ChannelUnavailableError()
        content = path.read_bytes()
        self.puts.append((destination, caption, content))
        if self.result_type is ClientResult:
            object_id = f"{len(self.objects):032x}"
            self.objects[object_id] = content
            return ClientResult(id=object_id, size=len(content))
        object_id = f"{self.name}{len(self.objects)}"
        self.objects[object_id] = content
        return BotResult(id=object_id, size=len(content), message_id=100 + len(self.objects))

    async def resolve(self, obj):
        if obj.id not in self.objects:
            raise NotFoundError()
        return Locator(url=f"https://{UPSTREAM_HOST}/{obj.id}", size=len(self.objects[obj.id]))


class UpstreamTransport(httpx.MockTransport):
    """
    MockTransport that hands responses over unread, as a real transport does.

    httpx reads a Response built with content= on construction, which would
    make aiter_raw() raise StreamConsumed in the relay.
    """

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        response = await super().handle_async_request(request)
        return httpx.Response(
            response.status_code,
            headers=response.headers,
            stream=httpx.ByteStream(response.content),
        )


class Upstream:
    """httpx MockTransport handler serving FakeChannel objects."""

    def __init__(self, objects: Dict[str, bytes]):
        self.objects = objects
        self.honor_ranges = True
        self.range_status: Optional[int] = None  # Force a status for ranged requests
        self.fail_status: Optional[int] = None   # Force a status for every request
        self.sources: Dict[str, bytes] = {}      # URL ingestion sources, by path
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "source.test":
            content = self.sources.get(request.url.path)
            if content is None:
                return httpx.Response(404)
            return httpx.Response(200, content=content)

        if self.fail_status is not None:
            return httpx.Response(self.fail_status)

        data = self.objects.get(request.url.path.lstrip("/"))
        if data is None:
            return httpx.Response(404)

        range_header = request.headers.get("range")
        if range_header and self.range_status is not None:
            return httpx.Response(self.range_status)
        if range_header and self.honor_ranges:
            match = re.match(r"bytes=(\d+)-(\d*)", range_header)
            start = int(match.group(1))
            end = int(match.group(2)) if match.group(2) else len(data) - 1
            end = min(end, len(data) - 1)
            return httpx.Response(
                206,
                content=data[start:end + 1],
                headers={"Content-Range": f"bytes {start}-{end}/{len(data)}"},
            )
        return httpx.Response(200, content=data)


@pytest.fixture
def anyio_backend():
    # Only asyncio, no Trio needed
    return "asyncio"


@pytest.fixture
def bot_channel():
    return FakeChannel(name="bot")


@pytest.fixture
def store(bot_channel):
    return BackingStore(standard=bot_channel)


@pytest.fixture
def upstream(bot_channel):
    return Upstream(bot_channel.objects)


@pytest.fixture
async def http_client(upstream):
    async with httpx.AsyncClient(transport=UpstreamTransport(upstream)) as client:
        yield client


@pytest.fixture
def sync_http_client(upstream):
    """AsyncClient for TestClient-driven tests (closed without awaiting)."""
    return httpx.AsyncClient(transport=UpstreamTransport(upstream))
