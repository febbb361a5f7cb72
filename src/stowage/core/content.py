"""Content helpers: keys, checksums, MIME inference and classification.

All functions here are pure (no I/O).
"""

from __future__ import annotations

import hashlib
import mimetypes
from pathlib import PurePosixPath
from uuid import uuid4

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_KB = 1024
_MB = 1024**2
_GB = 1024**3


def generate_key(filename: str | None = None) -> str:
    """Generate a globally unique storage key.

    The key is a random UUID plus the original extension. Nothing else from
    the filename is used, so keys cannot collide or escape a storage root.
    """
    base = uuid4().hex
    return f"{base}{_safe_extension(filename)}"


def _safe_extension(filename: str | None) -> str:
    if not filename:
        return ""
    suffix = PurePosixPath(filename.replace("\\", "/")).suffix.lower()
    # Only plain alphanumeric extensions survive into the key
    if len(suffix) < 2 or not suffix[1:].isalnum():
        return ""
    return suffix


def compute_checksum(content: bytes) -> str:
    """Compute SHA256 hash of content."""
    return hashlib.sha256(content).hexdigest()


def infer_content_type(filename: str | None) -> str:
    """Guess the MIME type from the filename extension."""
    if not filename:
        return DEFAULT_CONTENT_TYPE
    content_type, _ = mimetypes.guess_type(filename, strict=False)
    return content_type or DEFAULT_CONTENT_TYPE


def is_image(content_type: str | None) -> bool:
    return bool(content_type) and content_type.startswith("image/")  # type: ignore[union-attr]


def is_video(content_type: str | None) -> bool:
    return bool(content_type) and content_type.startswith("video/")  # type: ignore[union-attr]


def is_audio(content_type: str | None) -> bool:
    return bool(content_type) and content_type.startswith("audio/")  # type: ignore[union-attr]


def human_size(byte_count: int) -> str:
    """Format a byte count with binary-prefix thresholds.

    >>> human_size(512)
    '512 bytes'
    >>> human_size(1536)
    '1.5 KB'
    """
    if byte_count >= _GB:
        return f"{byte_count / _GB:.1f} GB"
    if byte_count >= _MB:
        return f"{byte_count / _MB:.1f} MB"
    if byte_count >= _KB:
        return f"{byte_count / _KB:.1f} KB"
    return f"{byte_count} bytes"
