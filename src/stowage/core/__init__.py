"""Core domain types for Stowage: records, owners and content helpers."""

from stowage.core.models import Attachment, Blob, VariantRecord
from stowage.core.owners import OwnerRef, OwnerRegistry

__all__ = [
    "Attachment",
    "Blob",
    "OwnerRef",
    "OwnerRegistry",
    "VariantRecord",
]
