"""Stowage: blob metadata, polymorphic attachments and image variants
over pluggable storage backends (local filesystem, S3-compatible)."""

from stowage.attachments import AttachmentIndex, HasManyAttached, HasOneAttached
from stowage.blobs import BlobStore, PurgeReport
from stowage.config import ServiceConfig, Settings, load_settings
from stowage.core import Attachment, Blob, OwnerRef, OwnerRegistry, VariantRecord
from stowage.errors import (
    BackendError,
    CompensationError,
    ConfigurationError,
    ConflictError,
    HttpError,
    NotFoundError,
    StowageError,
    UsageError,
)
from stowage.runtime import Stowage
from stowage.variants import OperationTransformer, Transformation, VariantCache

__version__ = "0.1.0"

__all__ = [
    "Attachment",
    "AttachmentIndex",
    "BackendError",
    "Blob",
    "BlobStore",
    "CompensationError",
    "ConfigurationError",
    "ConflictError",
    "HasManyAttached",
    "HasOneAttached",
    "HttpError",
    "NotFoundError",
    "OperationTransformer",
    "OwnerRef",
    "OwnerRegistry",
    "PurgeReport",
    "ServiceConfig",
    "Settings",
    "Stowage",
    "StowageError",
    "Transformation",
    "UsageError",
    "VariantCache",
    "VariantRecord",
    "load_settings",
]
