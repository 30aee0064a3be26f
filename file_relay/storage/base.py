"""
Backing-store data types and channel interface.

Channels return differently shaped results; they are normalized here into
BotResult / ClientResult before any other component sees them.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

from file_relay.core.errors import NotFoundError

PART_SEPARATOR = "~"
CLIENT_PREFIX = "s3."

_BOT_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_CLIENT_KEY_RE = re.compile(r"^[0-9a-f]{32}$")


@dataclass(frozen=True)
class BotResult:
    """Object written through the Telegram bot channel."""
    id: str
    size: Optional[int] = None
    message_id: Optional[int] = None

    @property
    def token(self) -> str:
        return self.id


@dataclass(frozen=True)
class ClientResult:
    """Object written through the S3 richer channel."""
    id: str
    size: Optional[int] = None

    @property
    def token(self) -> str:
        return f"{CLIENT_PREFIX}{self.id}"


StoredObject = Union[BotResult, ClientResult]


def parse_part(token: str) -> StoredObject:
    """Parse one handle segment back into a stored object."""
    if token.startswith(CLIENT_PREFIX):
        key = token[len(CLIENT_PREFIX):]
        if _CLIENT_KEY_RE.match(key):
            return ClientResult(id=key)
    elif _BOT_ID_RE.match(token):
        return BotResult(id=token)
    raise NotFoundError()


@dataclass(frozen=True)
class FileHandle:
    """
    Logical file reference: the ordered stored objects holding its bytes.

    Single-object uploads have one part. Manually chunked uploads keep every
    chunk in plan order so downloads can reassemble the full payload.
    """
    parts: Tuple[StoredObject, ...]

    def __post_init__(self):
        if not self.parts:
            raise ValueError("FileHandle requires at least one part")

    @property
    def token(self) -> str:
        """Opaque, URL-safe identifier exposed as file_id."""
        return PART_SEPARATOR.join(part.token for part in self.parts)

    @property
    def primary(self) -> StoredObject:
        return self.parts[0]

    @property
    def is_composite(self) -> bool:
        return len(self.parts) > 1

    @classmethod
    def from_token(cls, token: str) -> "FileHandle":
        """
        Parse a file_id token.

        Raises:
            NotFoundError: If the token is empty or malformed
        """
        if not token:
            raise NotFoundError()
        return cls(parts=tuple(parse_part(part) for part in token.split(PART_SEPARATOR)))


@dataclass(frozen=True)
class Locator:
    """Fetchable upstream location of one stored object. Contains credentials."""
    url: str
    size: Optional[int] = None

    def __repr__(self) -> str:
        return f"Locator(url=<redacted>, size={self.size})"


@dataclass(frozen=True)
class ChannelCapabilities:
    """What a storage channel can do right now."""
    available: bool
    supports_range_get: bool
    max_object_size: int


class StorageChannel:
    """
    Interface of a backing-store write/read channel.

    put() writes one object no larger than capabilities.max_object_size.
    resolve() turns a stored object into a Locator or raises NotFoundError.
    """

    name = "channel"

    @property
    def capabilities(self) -> ChannelCapabilities:
        raise NotImplementedError

    async def put(self, path: Path, destination: str, caption: str) -> StoredObject:
        raise NotImplementedError

    async def resolve(self, obj: StoredObject) -> Locator:
        raise NotImplementedError

    async def start(self) -> None:
        """Initialize connections. Called once from the app lifespan."""

    async def close(self) -> None:
        """Release resources. Called once on shutdown."""
