"""
Filename and size formatting helpers.
"""

import os
import re

MAX_STEM_LENGTH = 100
MAX_EXTENSION_LENGTH = 32

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9 _.\-]")
_SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]


def safe_file_name(name: str) -> str:
    """
    Sanitize an untrusted filename for URL segments and header values.

    Directories are dropped, every character outside [A-Za-z0-9 _.-]
    becomes '_', the stem is capped at 100 characters and the extension
    is kept.

    Examples:
        >>> safe_file_name('../../etc/"evil"\\r\\n.mp4')
        '_evil___.mp4'

        >>> safe_file_name("")
        'file'
    """
    if not name:
        return "file"

    # Both separators count regardless of platform
    basename = name.replace("\\", "/").rsplit("/", 1)[-1]
    stem, extension = os.path.splitext(basename)

    extension = _UNSAFE_CHARS.sub("_", extension)[:MAX_EXTENSION_LENGTH]
    stem = _UNSAFE_CHARS.sub("_", stem).strip()[:MAX_STEM_LENGTH]

    return (stem or "file") + extension


def format_file_size(size: int) -> str:
    """
    Human readable size with two decimals at most.

    Examples:
        >>> format_file_size(0)
        '0 Bytes'

        >>> format_file_size(1536)
        '1.5 KB'
    """
    if size <= 0:
        return "0 Bytes"
    index = 0
    while index < len(_SIZE_UNITS) - 1 and size >= 1024 ** (index + 1):
        index += 1
    value = round(size / 1024 ** index, 2)
    return f"{value:g} {_SIZE_UNITS[index]}"
