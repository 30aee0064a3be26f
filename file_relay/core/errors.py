"""
Error taxonomy for File Relay Service.

Every error carries the HTTP status it maps to and a public message that is
safe to return to clients. Upstream detail goes to the logs only.
"""

from typing import Any, Dict, Optional


SUPPORTED_UPLOAD_METHODS = [
    "multipart/form-data with file field",
    "JSON with file_url field",
]


class RelayError(Exception):
    """Base class for errors rendered as JSON error responses."""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message
        self.extra: Dict[str, Any] = extra


class InputError(RelayError):
    """Missing or malformed client input."""

    status_code = 400
    public_message = "No file provided"


class PayloadTooLargeError(InputError):
    """Payload exceeds the configured intake ceiling."""

    status_code = 413
    public_message = "File too large"


class TransferError(RelayError):
    """Backing store unreachable or rejected a write/read."""

    status_code = 502
    public_message = "Storage backend unavailable. Please try again later."


class ChannelUnavailableError(TransferError):
    """A storage channel is not configured or cannot be reached."""


class SizeExceededError(TransferError):
    """A storage channel refused an object over its ceiling."""


class SourceUnavailableError(TransferError):
    """Fetching the source URL for ingestion failed."""

    public_message = "Network error. Please check the file URL or try again later."


class NotFoundError(RelayError):
    """File handle is malformed or cannot be resolved."""

    status_code = 404
    public_message = "File not found"
