"""
Telegram Bot API channel.
Standard backing store: sendDocument writes, getFile resolves, file URLs serve bytes.
"""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import AsyncIterator, Dict, Optional, Tuple

import httpx

from file_relay.core.errors import (
    ChannelUnavailableError,
    NotFoundError,
    SizeExceededError,
    TransferError,
)
from file_relay.storage.base import (
    BotResult,
    ChannelCapabilities,
    Locator,
    StorageChannel,
    StoredObject,
)
from file_relay.storage.config import COPY_BUFFER_SIZE

logger = logging.getLogger(__name__)

# Message attributes that may carry the uploaded file, depending on how
# Telegram decided to present it.
MEDIA_ATTRIBUTES = ("document", "video", "audio", "animation", "voice")


def _form_field(boundary: str, name: str, value: str) -> bytes:
    return (
        f'--{boundary}\r\nContent-Disposition: form-data; name="{name}"\r\n\r\n'
        f"{value}\r\n"
    ).encode("utf-8")


def document_form(
    path: Path,
    fields: Dict[str, str],
    field_name: str = "document",
) -> Tuple[Dict[str, str], AsyncIterator[bytes]]:
    """
    Multipart body that reads the file in executor threads.

    Returns:
        (request headers with Content-Length, async body iterator)
    """
    boundary = uuid.uuid4().hex
    filename = path.name.replace('"', "_")
    head = b"".join(_form_field(boundary, name, value) for name, value in fields.items())
    head += (
        f'--{boundary}\r\nContent-Disposition: form-data; name="{field_name}"; filename="{filename}"\r\n'
        f"Content-Type: application/octet-stream\r\n\r\n"
    ).encode("utf-8")
    tail = f"\r\n--{boundary}--\r\n".encode("ascii")
    length = len(head) + path.stat().st_size + len(tail)

    async def body() -> AsyncIterator[bytes]:
        loop = asyncio.get_event_loop()
        yield head
        with open(path, "rb") as file_obj:
            while True:
                chunk = await loop.run_in_executor(None, file_obj.read, COPY_BUFFER_SIZE)
                if not chunk:
                    break
                yield chunk
        yield tail

    headers = {
        "Content-Type": f"multipart/form-data; boundary={boundary}",
        "Content-Length": str(length),
    }
    return headers, body()


class TelegramBotChannel(StorageChannel):
    """Wrapper for Telegram Bot API storage operations."""

    name = "bot"

    def __init__(
        self,
        http: httpx.AsyncClient,
        token: str,
        api_url: str = "https://api.telegram.org",
        max_object_size: int = 2 * 1024 * 1024 * 1024,
        connect_timeout: float = 30.0,
    ):
        self.http = http
        self._token = token
        self.api_url = api_url.rstrip("/")
        self.max_object_size = max_object_size
        # Uploads of multi-GB documents must not be cut off mid-write
        self._write_timeout = httpx.Timeout(None, connect=connect_timeout)
        self._lookup_timeout = httpx.Timeout(30.0, connect=connect_timeout)

    @property
    def capabilities(self) -> ChannelCapabilities:
        return ChannelCapabilities(
            available=bool(self._token),
            supports_range_get=True,
            max_object_size=self.max_object_size,
        )

    def _method_url(self, method: str) -> str:
        return f"{self.api_url}/bot{self._token}/{method}"

    def _file_url(self, file_path: str) -> str:
        return f"{self.api_url}/file/bot{self._token}/{file_path.lstrip('/')}"

    async def put(self, path: Path, destination: str, caption: str) -> BotResult:
        """
        Send a local file as a document to the destination chat.

        Args:
            path: Local file to upload
            destination: Chat id to post into
            caption: Message caption (object metadata)

        Returns:
            BotResult with file id, size, and message id

        Raises:
            ChannelUnavailableError: If the bot is unconfigured or unreachable
            SizeExceededError: If Telegram rejects the file size
            TransferError: If the response carries no file
        """
        if not self._token:
            raise ChannelUnavailableError()

        size = path.stat().st_size
        if size > self.max_object_size:
            raise SizeExceededError()

        logger.info(f"[BOT UPLOAD] Sending {path.name} ({size} bytes) to {destination}")
        try:
            headers, body = document_form(path, {"chat_id": destination, "caption": caption})
            response = await self.http.post(
                self._method_url("sendDocument"),
                content=body,
                headers=headers,
                timeout=self._write_timeout,
            )
            payload = response.json()
        except httpx.HTTPError as e:
            logger.error(f"[BOT UPLOAD] Request failed for {path.name}: {type(e).__name__}")
            raise ChannelUnavailableError() from e
        except ValueError as e:
            logger.error(f"[BOT UPLOAD] Non-JSON response ({response.status_code}) for {path.name}")
            raise ChannelUnavailableError() from e

        if not payload.get("ok"):
            description = payload.get("description", "")
            logger.error(
                f"[BOT UPLOAD] Rejected {path.name}: "
                f"{payload.get('error_code')} {description}"
            )
            if payload.get("error_code") == 413 or "too large" in description.lower():
                raise SizeExceededError()
            raise ChannelUnavailableError()

        message = payload.get("result") or {}
        result = self._extract_result(message)
        if result is None:
            logger.error(f"[BOT UPLOAD] No file_id returned for {path.name}")
            raise TransferError()

        logger.info(f"[BOT UPLOAD] Stored {path.name} as message {result.message_id}")
        return result

    @staticmethod
    def _extract_result(message: dict) -> Optional[BotResult]:
        """Normalize a sendDocument message into a BotResult."""
        for attribute in MEDIA_ATTRIBUTES:
            media = message.get(attribute)
            if media and media.get("file_id"):
                return BotResult(
                    id=media["file_id"],
                    size=media.get("file_size"),
                    message_id=message.get("message_id"),
                )
        return None

    async def resolve(self, obj: StoredObject) -> Locator:
        """
        Resolve a file id to its download URL via getFile.

        Raises:
            NotFoundError: If Telegram does not know the file
            ChannelUnavailableError: If the API cannot be reached
        """
        if not self._token:
            raise ChannelUnavailableError()

        try:
            response = await self.http.get(
                self._method_url("getFile"),
                params={"file_id": obj.id},
                timeout=self._lookup_timeout,
            )
            payload = response.json()
        except httpx.HTTPError as e:
            logger.error(f"[BOT RESOLVE] Request failed: {type(e).__name__}")
            raise ChannelUnavailableError() from e
        except ValueError as e:
            logger.error(f"[BOT RESOLVE] Non-JSON response ({response.status_code})")
            raise ChannelUnavailableError() from e

        if not payload.get("ok"):
            error_code = payload.get("error_code")
            logger.warning(f"[BOT RESOLVE] getFile failed: {error_code} {payload.get('description', '')}")
            if error_code in (400, 404):
                raise NotFoundError()
            raise ChannelUnavailableError()

        result = payload.get("result") or {}
        file_path = result.get("file_path")
        if not file_path:
            raise NotFoundError()

        return Locator(url=self._file_url(file_path), size=result.get("file_size"))
