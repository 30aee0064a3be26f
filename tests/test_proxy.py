"""Tests for the range proxy."""

import asyncio
import gzip

import httpx
import pytest

from file_relay.core.errors import NotFoundError, TransferError
from file_relay.storage.backend import BackingStore
from file_relay.storage.base import BotResult, ClientResult, FileHandle
from file_relay.transfer.proxy import RangeProxy, RelayResponse, parse_byte_range, single_range_header

from tests.conftest import FakeChannel, Upstream, UpstreamTransport

PAYLOAD = bytes(i % 251 for i in range(1000))


async def _read(proxied) -> bytes:
    return b"".join([chunk async for chunk in proxied.session.body()])


@pytest.fixture
def proxy(store, http_client):
    return RangeProxy(store=store, http=http_client, segment_size=64)


@pytest.fixture
def single(bot_channel):
    bot_channel.objects["doc0"] = PAYLOAD
    return FileHandle(parts=(BotResult(id="doc0"),))


@pytest.fixture
def composite(bot_channel):
    bot_channel.objects["part0"] = PAYLOAD[:400]
    bot_channel.objects["part1"] = PAYLOAD[400:800]
    bot_channel.objects["part2"] = PAYLOAD[800:]
    return FileHandle(parts=tuple(BotResult(id=f"part{i}") for i in range(3)))


@pytest.mark.parametrize("header,expected", [
    ("bytes=100-199", (100, 199)),
    ("bytes=900-", (900, 999)),
    ("bytes=-100", (900, 999)),
    ("bytes=0-5000", (0, 999)),
    ("bytes=1000-1001", None),
    ("bytes=200-100", None),
    ("bytes=0-1,5-6", None),
    ("items=0-1", None),
    (None, None),
])
def test_parse_byte_range(header, expected):
    assert parse_byte_range(header, 1000) == expected


@pytest.mark.parametrize("header,total,expected", [
    ("bytes=100-199", 1000, "bytes=100-199"),
    ("bytes=-100", 1000, "bytes=900-999"),
    ("bytes=0-1,5-6", 1000, None),
    ("bytes=0-1,5-6", None, None),
    ("bytes=5-", None, "bytes=5-"),
    ("bytes=-", None, None),
    (None, 1000, None),
])
def test_single_range_header(header, total, expected):
    assert single_range_header(header, total) == expected


@pytest.mark.anyio
class TestSingleObject:

    async def test_range_is_forwarded(self, proxy, single, upstream):
        proxied = await proxy.fetch(single, "bytes=100-199")

        assert proxied.status_code == 206
        assert proxied.headers["Content-Range"] == "bytes 100-199/1000"
        assert proxied.headers["Content-Length"] == "100"
        assert await _read(proxied) == PAYLOAD[100:200]
        assert upstream.requests[-1].headers["range"] == "bytes=100-199"

    async def test_rejected_range_falls_back_to_full_body(self, proxy, single, upstream):
        upstream.range_status = 416

        proxied = await proxy.fetch(single, "bytes=100-199")

        assert proxied.status_code == 200
        assert "Content-Range" not in proxied.headers
        assert await _read(proxied) == PAYLOAD
        assert "range" not in upstream.requests[-1].headers

    async def test_range_transport_error_falls_back(self, store, single, upstream):
        def handler(request):
            if "range" in request.headers:
                raise httpx.ConnectError("range refused", request=request)
            return upstream(request)

        async with httpx.AsyncClient(transport=UpstreamTransport(handler)) as http:
            proxied = await RangeProxy(store=store, http=http).fetch(single, "bytes=100-199")
            assert proxied.status_code == 200
            assert await _read(proxied) == PAYLOAD

    async def test_ignored_range_is_full_200(self, proxy, single, upstream):
        upstream.honor_ranges = False

        proxied = await proxy.fetch(single, "bytes=100-199")

        assert proxied.status_code == 200
        assert proxied.headers["Content-Length"] == "1000"
        assert await _read(proxied) == PAYLOAD

    async def test_no_range(self, proxy, single):
        proxied = await proxy.fetch(single)

        assert proxied.status_code == 200
        assert proxied.headers["Content-Length"] == "1000"
        assert await _read(proxied) == PAYLOAD

    async def test_channel_without_range_support_fetches_full(self, bot_channel, proxy, single, upstream):
        bot_channel.supports_range_get = False

        proxied = await proxy.fetch(single, "bytes=0-9")

        assert proxied.status_code == 200
        assert all("range" not in r.headers for r in upstream.requests)

    async def test_body_is_relayed_in_bounded_segments(self, proxy, single):
        proxied = await proxy.fetch(single)
        chunks = [chunk async for chunk in proxied.session.body()]

        assert len(chunks) > 1
        assert all(len(chunk) <= 64 for chunk in chunks)

    async def test_unknown_object(self, proxy):
        with pytest.raises(NotFoundError):
            await proxy.fetch(FileHandle(parts=(BotResult(id="missing"),)))

    async def test_upstream_404_is_not_found(self, proxy, single, upstream):
        upstream.fail_status = 404
        with pytest.raises(NotFoundError):
            await proxy.fetch(single)

    async def test_upstream_failure_is_transfer_error(self, proxy, single, upstream):
        upstream.fail_status = 500
        with pytest.raises(TransferError):
            await proxy.fetch(single, "bytes=0-9")

    async def test_session_close_releases_upstream(self, proxy, single):
        proxied = await proxy.fetch(single, "bytes=0-9")
        response = proxied.session.slices[0].response

        await proxied.session.aclose()
        await proxied.session.aclose()

        assert proxied.session.closed
        assert response.is_closed

    async def test_upstream_is_asked_not_to_compress(self, store, single, upstream):
        def handler(request):
            if "gzip" in request.headers.get("accept-encoding", ""):
                return httpx.Response(200, content=gzip.compress(PAYLOAD), headers={"Content-Encoding": "gzip"})
            return upstream(request)

        async with httpx.AsyncClient(transport=UpstreamTransport(handler)) as http:
            proxied = await RangeProxy(store=store, http=http).fetch(single)
            body = await _read(proxied)

        assert body == PAYLOAD
        assert proxied.headers["Content-Length"] == "1000"
        assert upstream.requests[-1].headers["accept-encoding"] == "identity"

    async def test_multi_range_is_not_forwarded(self, proxy, single, upstream):
        proxied = await proxy.fetch(single, "bytes=0-1,5-6")

        assert proxied.status_code == 200
        assert "Content-Range" not in proxied.headers
        assert await _read(proxied) == PAYLOAD
        assert "range" not in upstream.requests[-1].headers

    async def test_suffix_range_is_normalized(self, proxy, single, upstream):
        proxied = await proxy.fetch(single, "bytes=-100")

        assert proxied.status_code == 206
        assert await _read(proxied) == PAYLOAD[900:]
        assert upstream.requests[-1].headers["range"] == "bytes=900-999"


@pytest.mark.anyio
class TestComposite:

    async def test_full_body_is_concatenated(self, proxy, composite):
        proxied = await proxy.fetch(composite)

        assert proxied.status_code == 200
        assert proxied.headers["Content-Length"] == "1000"
        assert await _read(proxied) == PAYLOAD

    async def test_range_spanning_parts(self, proxy, composite, upstream):
        proxied = await proxy.fetch(composite, "bytes=350-850")

        assert proxied.status_code == 206
        assert proxied.headers["Content-Range"] == "bytes 350-850/1000"
        assert proxied.headers["Content-Length"] == "501"
        assert await _read(proxied) == PAYLOAD[350:851]
        assert [r.headers["range"] for r in upstream.requests] == [
            "bytes=350-399",
            "bytes=0-399",
            "bytes=0-50",
        ]

    async def test_range_within_one_part(self, proxy, composite, upstream):
        proxied = await proxy.fetch(composite, "bytes=420-429")

        assert await _read(proxied) == PAYLOAD[420:430]
        assert [r.url.path for r in upstream.requests] == ["/part1"]

    async def test_range_cut_locally_when_upstream_ignores_it(self, proxy, composite, upstream):
        upstream.honor_ranges = False

        proxied = await proxy.fetch(composite, "bytes=390-409")

        assert proxied.status_code == 206
        assert await _read(proxied) == PAYLOAD[390:410]

    async def test_invalid_range_returns_whole_file(self, proxy, composite):
        proxied = await proxy.fetch(composite, "bytes=5000-6000")

        assert proxied.status_code == 200
        assert await _read(proxied) == PAYLOAD

    async def test_missing_part_is_not_found(self, bot_channel, proxy, composite):
        del bot_channel.objects["part2"]
        with pytest.raises(NotFoundError):
            await proxy.fetch(composite)


@pytest.mark.anyio
async def test_relay_response_closes_upstream_on_disconnect(proxy, single):
    proxied = await proxy.fetch(single)
    upstream_response = proxied.session.slices[0].response
    response = RelayResponse(proxied.session, status_code=200, headers=proxied.headers)

    never = asyncio.Event()

    async def receive():
        await never.wait()

    async def send(message):
        if message["type"] == "http.response.body" and message.get("body"):
            raise OSError("client went away")

    scope = {"type": "http", "asgi": {"version": "3.0", "spec_version": "2.4"}, "method": "GET"}
    with pytest.raises(Exception):
        await response(scope, receive, send)

    assert proxied.session.closed
    assert upstream_response.is_closed


def test_upstream_handler_serves_objects():
    upstream = Upstream({"a": b"hello"})
    response = upstream(httpx.Request("GET", "https://upstream.test/a", headers={"Range": "bytes=1-2"}))
    assert response.status_code == 206
    assert response.content == b"el"


def test_client_part_without_richer_channel_is_not_found():
    store = BackingStore(standard=FakeChannel())
    with pytest.raises(NotFoundError):
        store.channel_for(ClientResult(id="0" * 32))
