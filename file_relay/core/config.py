"""
Configuration management for File Relay Service.
Loads environment variables and defines transfer limits.
"""

from typing import Optional
from pydantic_settings import BaseSettings

GIB = 1024 * 1024 * 1024
MIB = 1024 * 1024


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Telegram bot channel (standard backing store)
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHANNEL_ID: str = ""             # Destination chat, e.g. -1001234567890
    TELEGRAM_API_URL: str = "https://api.telegram.org"  # Or a local Bot API server
    TELEGRAM_MAX_UPLOAD_SIZE: int = 2 * GIB   # Per-write ceiling of the bot channel

    # S3-compatible richer channel (optional, native multipart)
    S3_ENDPOINT: Optional[str] = None         # e.g. 192.168.1.100:9000, unset disables the channel
    S3_ACCESS_KEY: str = ""
    S3_SECRET_KEY: str = ""
    S3_SECURE: bool = False                   # Set to True for HTTPS
    S3_REGION: str = "us-east-1"
    S3_BUCKET: str = "file-relay"
    S3_MAX_OBJECT_SIZE: int = 5 * 1024 * GIB  # 5TB S3 object ceiling
    SIGNED_URL_EXPIRATION: int = 3600         # Presigned GET lifetime in seconds

    # Upload pipeline
    STAGING_DIR: str = "/tmp/uploads"
    MAX_FILE_SIZE: int = 6 * GIB
    SINGLE_UPLOAD_LIMIT: int = 2 * GIB
    CHUNK_SIZE: int = 2000 * MIB

    # Timeouts (seconds). Only URL ingestion is bounded end to end.
    INGEST_TIMEOUT: float = 30.0
    RELAY_CONNECT_TIMEOUT: float = 30.0
    RELAY_READ_TIMEOUT: Optional[float] = None

    # Streaming
    STREAM_SEGMENT_SIZE: int = 256 * 1024

    # Application
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False                       # Include stack traces in error bodies

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
