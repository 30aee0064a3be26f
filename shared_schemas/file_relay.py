"""
File Relay Service API schemas.
Type-safe contracts for upload, info, and health endpoints.
"""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field, model_serializer


__all__ = [
    "UrlUploadRequest",
    "UploadResponse",
    "LimitsInfo",
    "ChannelInfo",
    "ApiInfoResponse",
    "HealthCheckResponse",
]


# ============================================================================
# Upload Endpoints
# ============================================================================

class UrlUploadRequest(BaseModel):
    """JSON body for URL ingestion."""
    file_url: str = Field(min_length=1, description="http(s) URL to fetch and relay")


class UploadResponse(BaseModel):
    """Response from a successful upload."""
    success: bool = True
    file_name: str
    file_size: int
    file_size_formatted: str
    file_id: str
    download_url: str
    hotlink: str  # Legacy alias of download_url
    stream_url: Optional[str] = None  # Media only
    player_url: Optional[str] = None  # Media only
    supports_streaming: bool = False
    file_type: str  # video, audio or document
    chunk_count: int = 1
    telegram_message_id: Optional[int] = None
    upload_time: str
    max_size_supported: str

    @model_serializer(mode="wrap")
    def _omit_absent_links(self, handler):
        # Non-media uploads carry no stream/player links at all
        data = handler(self)
        for key in ("stream_url", "player_url"):
            if data.get(key) is None:
                data.pop(key, None)
        return data


# ============================================================================
# Info Endpoints
# ============================================================================

class LimitsInfo(BaseModel):
    """Upload limits and supported media formats."""
    max_file_size: int
    max_file_size_formatted: str
    single_upload_limit: int
    chunk_size: int
    supported_video_formats: List[str]
    supported_audio_formats: List[str]


class ChannelInfo(BaseModel):
    """Storage channel configuration, without secrets."""
    configured: bool
    available: bool
    max_object_size: int


class ApiInfoResponse(BaseModel):
    """Service description."""
    name: str
    version: str
    features: List[str]
    endpoints: Dict[str, str]
    limits: LimitsInfo
    channels: Dict[str, ChannelInfo]


class HealthCheckResponse(BaseModel):
    """Health check response."""
    status: str
    bot_channel: str
    client_channel: str
    timestamp: str
