"""Polymorphic attachments of blobs to owning entities."""

from stowage.attachments.accessors import HasManyAttached, HasOneAttached
from stowage.attachments.index import AttachmentIndex

__all__ = [
    "AttachmentIndex",
    "HasManyAttached",
    "HasOneAttached",
]
