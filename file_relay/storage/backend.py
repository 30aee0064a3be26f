"""
Backing store facade.
Owns the bot channel and the optional richer channel, routes objects to their channel.
"""

import logging
from typing import Optional

import httpx

from file_relay.core.config import Settings
from file_relay.core.errors import NotFoundError
from file_relay.storage.base import ClientResult, Locator, StorageChannel, StoredObject
from file_relay.storage.s3 import S3Channel
from file_relay.storage.telegram import TelegramBotChannel

logger = logging.getLogger(__name__)


class BackingStore:
    """Explicitly constructed pair of storage channels."""

    def __init__(self, standard: StorageChannel, richer: Optional[StorageChannel] = None):
        self.standard = standard
        self.richer = richer

    @property
    def richer_available(self) -> bool:
        return self.richer is not None and self.richer.capabilities.available

    def channel_for(self, obj: StoredObject) -> StorageChannel:
        """Return the channel that owns a stored object."""
        if isinstance(obj, ClientResult):
            if self.richer is None:
                raise NotFoundError()
            return self.richer
        return self.standard

    async def resolve(self, obj: StoredObject) -> Locator:
        return await self.channel_for(obj).resolve(obj)

    async def start(self) -> None:
        await self.standard.start()
        if self.richer is not None:
            await self.richer.start()

    async def close(self) -> None:
        await self.standard.close()
        if self.richer is not None:
            await self.richer.close()


def build_backing_store(settings: Settings, http: httpx.AsyncClient) -> BackingStore:
    """Construct the backing store from settings."""
    standard = TelegramBotChannel(
        http=http,
        token=settings.TELEGRAM_BOT_TOKEN,
        api_url=settings.TELEGRAM_API_URL,
        max_object_size=settings.TELEGRAM_MAX_UPLOAD_SIZE,
        connect_timeout=settings.RELAY_CONNECT_TIMEOUT,
    )
    if not settings.TELEGRAM_BOT_TOKEN:
        logger.warning("TELEGRAM_BOT_TOKEN not set, bot channel unavailable")

    richer = None
    if settings.S3_ENDPOINT:
        richer = S3Channel(
            endpoint=settings.S3_ENDPOINT,
            access_key=settings.S3_ACCESS_KEY,
            secret_key=settings.S3_SECRET_KEY,
            bucket=settings.S3_BUCKET,
            secure=settings.S3_SECURE,
            region=settings.S3_REGION,
            max_object_size=settings.S3_MAX_OBJECT_SIZE,
            presign_expiration=settings.SIGNED_URL_EXPIRATION,
        )

    return BackingStore(standard=standard, richer=richer)
