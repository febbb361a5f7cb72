"""Blob metadata lifecycle and classification helpers."""

from stowage.blobs.store import BlobStore, PurgeReport
from stowage.core.content import human_size, is_audio, is_image, is_video

__all__ = [
    "BlobStore",
    "PurgeReport",
    "human_size",
    "is_audio",
    "is_image",
    "is_video",
]
