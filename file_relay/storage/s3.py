"""
S3-compatible richer channel.
Native multipart uploads through boto3 TransferConfig, presigned URLs for reads.
"""

import asyncio
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from file_relay.core.errors import ChannelUnavailableError, NotFoundError, SizeExceededError
from file_relay.storage.base import (
    ChannelCapabilities,
    ClientResult,
    Locator,
    StorageChannel,
    StoredObject,
)
from file_relay.storage.config import MAX_CONCURRENCY, MULTIPART_CHUNKSIZE, MULTIPART_THRESHOLD

logger = logging.getLogger(__name__)


class S3Channel(StorageChannel):
    """Wrapper for S3/MinIO object operations."""

    name = "client"

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        bucket: str,
        secure: bool = False,
        region: str = "us-east-1",
        max_object_size: int = 5 * 1024 ** 4,
        presign_expiration: int = 3600,
        client=None,
    ):
        # Parse endpoint to extract protocol and host
        endpoint_url = endpoint
        if not endpoint_url.startswith(("http://", "https://")):
            protocol = "https" if secure else "http"
            endpoint_url = f"{protocol}://{endpoint_url}"

        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=Config(signature_version="s3v4"),
            region_name=region,
        )

        self.endpoint_url = endpoint_url
        self.bucket = bucket
        self.max_object_size = max_object_size
        self.presign_expiration = presign_expiration
        self._ready = False

        # Single-worker executor for large uploads (prevents thread explosion)
        self.upload_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="s3-upload")

        self.transfer_config = TransferConfig(
            multipart_threshold=MULTIPART_THRESHOLD,
            multipart_chunksize=MULTIPART_CHUNKSIZE,
            max_concurrency=MAX_CONCURRENCY,
            use_threads=False,  # We're running in executor already
        )

        logger.info(f"S3 channel configured with endpoint: {endpoint_url}")

    @property
    def capabilities(self) -> ChannelCapabilities:
        return ChannelCapabilities(
            available=self._ready,
            supports_range_get=True,
            max_object_size=self.max_object_size,
        )

    async def start(self) -> None:
        """Ensure the bucket exists; the channel stays unavailable on failure."""
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(None, self.ensure_bucket_exists, self.bucket)
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"S3 channel initialization failed, using bot only: {e}")
            self._ready = False
            return
        self._ready = True
        logger.info(f"S3 channel ready: {self.bucket}")

    async def close(self) -> None:
        self.upload_executor.shutdown(wait=False)

    def ensure_bucket_exists(self, bucket: str) -> None:
        """
        Ensure bucket exists, create if it doesn't.

        Raises:
            ClientError: If bucket creation fails
        """
        try:
            self.client.head_bucket(Bucket=bucket)
            logger.info(f"Bucket exists: {bucket}")
        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            if error_code in ("404", "NoSuchBucket"):
                self.client.create_bucket(Bucket=bucket)
                logger.info(f"Created bucket: {bucket}")
            else:
                logger.error(f"Error checking bucket {bucket}: {e}")
                raise

    async def put(self, path: Path, destination: str, caption: str) -> ClientResult:
        """
        Upload a local file as one object using boto3's multipart transfer.

        boto3 splits and aborts multipart uploads internally, so the object
        either appears whole or not at all.

        Args:
            path: Local file to upload
            destination: Logical destination, recorded as object metadata
            caption: Object description, recorded as object metadata

        Returns:
            ClientResult with the generated object key and size

        Raises:
            ChannelUnavailableError: If the channel is not ready or the upload fails
            SizeExceededError: If the file exceeds the channel ceiling
        """
        if not self._ready:
            raise ChannelUnavailableError()

        size = path.stat().st_size
        if size > self.max_object_size:
            raise SizeExceededError()

        key = uuid.uuid4().hex
        extra_args = {
            "ContentType": "application/octet-stream",
            # S3 metadata must be ASCII
            "Metadata": {
                "destination": quote(destination, safe=""),
                "caption": quote(caption, safe=" ()/"),
            },
        }

        def _upload():
            self.client.upload_file(
                str(path),
                self.bucket,
                key,
                ExtraArgs=extra_args,
                Config=self.transfer_config,
            )

        logger.info(f"[S3 UPLOAD] Starting: {self.bucket}/{key} ({size} bytes)")
        try:
            await asyncio.get_event_loop().run_in_executor(self.upload_executor, _upload)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"[S3 UPLOAD] Failed: {self.bucket}/{key} :: {e}")
            raise ChannelUnavailableError() from e

        logger.info(f"[S3 UPLOAD] Completed: {self.bucket}/{key}")
        return ClientResult(id=key, size=size)

    def _head_size(self, key: str) -> Optional[int]:
        try:
            response = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response["Error"]["Code"] in ("404", "NoSuchKey", "NotFound"):
                raise NotFoundError() from e
            raise
        return response.get("ContentLength")

    async def resolve(self, obj: StoredObject) -> Locator:
        """
        Resolve an object key to a presigned GET URL.

        Raises:
            NotFoundError: If the object does not exist
            ChannelUnavailableError: If the store cannot be reached
        """
        if not self._ready:
            raise ChannelUnavailableError()

        def _resolve() -> Locator:
            size = self._head_size(obj.id)
            url = self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": obj.id},
                ExpiresIn=self.presign_expiration,
            )
            return Locator(url=url, size=size)

        try:
            return await asyncio.get_event_loop().run_in_executor(None, _resolve)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"[S3 RESOLVE] Failed: {self.bucket}/{obj.id} :: {e}")
            raise ChannelUnavailableError() from e
