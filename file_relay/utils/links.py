"""
External link construction for download, stream and player endpoints.
"""

from enum import Enum
from typing import Dict
from urllib.parse import quote

from starlette.requests import Request

from file_relay.utils.naming import safe_file_name


class LinkOperation(str, Enum):
    """Public operations a file link can point at."""
    DOWNLOAD = "download"
    STREAM = "stream"
    PLAYER = "player"


def build_url(base_url: str, operation: LinkOperation, token: str, name: str) -> str:
    """
    Build {base_url}/{operation}/{token}?filename={name}.

    The filename is sanitized before percent-encoding, so the value cannot
    carry header or path-traversal content downstream.
    """
    operation = LinkOperation(operation)
    safe_token = quote(token, safe="~.-_")
    safe_name = quote(safe_file_name(name or "file"), safe="")
    return f"{base_url.rstrip('/')}/{operation.value}/{safe_token}?filename={safe_name}"


class LinkBuilder:
    """Builds absolute links against the externally visible origin."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_request(cls, request: Request) -> "LinkBuilder":
        """Derive scheme and host from forwarding headers, then the request itself."""
        headers = request.headers
        proto = headers.get("x-forwarded-proto", "").split(",")[0].strip()
        scheme = proto or request.url.scheme or "https"
        host = (
            headers.get("x-forwarded-host", "").split(",")[0].strip()
            or headers.get("host")
            or request.url.netloc
        )
        return cls(f"{scheme}://{host}")

    def build(self, operation: LinkOperation, token: str, name: str) -> str:
        return build_url(self.base_url, operation, token, name)

    def links(self, token: str, name: str) -> Dict[LinkOperation, str]:
        """All three links for one file."""
        return {operation: self.build(operation, token, name) for operation in LinkOperation}
