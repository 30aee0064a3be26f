"""Tests for the S3 richer channel using moto."""

import boto3
import pytest
from moto import mock_aws

from file_relay.core.errors import ChannelUnavailableError, NotFoundError, SizeExceededError
from file_relay.storage.base import ClientResult
from file_relay.storage.s3 import S3Channel

pytestmark = pytest.mark.anyio

BUCKET = "file-relay-test"


@pytest.fixture
def s3_client():
    with mock_aws():
        yield boto3.client("s3", region_name="us-east-1")


@pytest.fixture
async def channel(s3_client):
    channel = S3Channel(
        endpoint="https://s3.amazonaws.com",
        access_key="test",
        secret_key="test",
        bucket=BUCKET,
        max_object_size=1024,
        client=s3_client,
    )
    await channel.start()
    yield channel
    await channel.close()


@pytest.fixture
def payload(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"0123456789")
    return path


async def test_start_creates_bucket(channel, s3_client):
    assert channel.capabilities.available is True
    s3_client.head_bucket(Bucket=BUCKET)


async def test_put_stores_object_under_generated_key(channel, s3_client, payload):
    result = await channel.put(payload, "-1001", "clip.mp4\nSize: 10 Bytes")

    assert isinstance(result, ClientResult)
    assert len(result.id) == 32
    assert result.size == 10
    stored = s3_client.get_object(Bucket=BUCKET, Key=result.id)
    assert stored["Body"].read() == b"0123456789"
    assert stored["Metadata"]["destination"] == "-1001"


async def test_put_over_ceiling(channel, tmp_path):
    path = tmp_path / "big.bin"
    path.write_bytes(b"x" * 2048)

    with pytest.raises(SizeExceededError):
        await channel.put(path, "-1001", "caption")


async def test_resolve_presigns_url(channel, payload):
    result = await channel.put(payload, "-1001", "caption")

    locator = await channel.resolve(result)

    assert locator.size == 10
    assert BUCKET in locator.url and result.id in locator.url
    assert "Signature" in locator.url


async def test_resolve_missing_key(channel):
    with pytest.raises(NotFoundError):
        await channel.resolve(ClientResult(id="0" * 32))


async def test_unstarted_channel_is_unavailable(s3_client, payload):
    channel = S3Channel(
        endpoint="s3.amazonaws.com",
        access_key="test",
        secret_key="test",
        bucket=BUCKET,
        client=s3_client,
    )

    assert channel.endpoint_url == "http://s3.amazonaws.com"
    assert channel.capabilities.available is False
    with pytest.raises(ChannelUnavailableError):
        await channel.put(payload, "-1001", "caption")
    await channel.close()
