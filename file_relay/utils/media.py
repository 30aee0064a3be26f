"""
Media classification utilities.
Classify filenames as video/audio/other and pick streaming Content-Types.
"""

import os
from enum import Enum

VIDEO_EXTENSIONS = frozenset({
    ".mp4", ".mkv", ".avi", ".mov", ".wmv", ".flv", ".webm", ".m4v", ".3gp", ".ts", ".m2ts",
})
AUDIO_EXTENSIONS = frozenset({
    ".mp3", ".wav", ".flac", ".aac", ".ogg", ".m4a", ".wma",
})

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class MediaKind(str, Enum):
    """Media classification of a filename."""
    VIDEO = "video"
    AUDIO = "audio"
    OTHER = "other"

    @property
    def is_media(self) -> bool:
        return self is not MediaKind.OTHER


def extension_of(filename: str) -> str:
    """Lowercased extension including the dot, '' when there is none."""
    basename = os.path.basename(filename or "")
    extension = os.path.splitext(basename)[1]
    if not extension and basename.startswith("."):
        # A bare extension such as ".mp4"
        extension = basename
    return extension.lower()


def classify(filename: str) -> MediaKind:
    """
    Classify a filename by extension.

    Examples:
        >>> classify("movie.MP4")
        <MediaKind.VIDEO: 'video'>

        >>> classify("report.pdf")
        <MediaKind.OTHER: 'other'>
    """
    extension = extension_of(filename)
    if extension in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    if extension in AUDIO_EXTENSIONS:
        return MediaKind.AUDIO
    return MediaKind.OTHER


def stream_content_type(filename: str) -> str:
    """
    Content-Type for the stream endpoint: video/<ext>, audio/<ext> or
    application/octet-stream.
    """
    kind = classify(filename)
    if not kind.is_media:
        return DEFAULT_CONTENT_TYPE
    return f"{kind.value}/{extension_of(filename)[1:]}"
