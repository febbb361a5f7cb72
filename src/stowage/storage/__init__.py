"""Storage backends for Stowage.

Provides the storage service contract and its adapters:
- Local filesystem storage (default)
- S3-compatible storage (AWS S3, Cloudflare R2, DigitalOcean Spaces, MinIO)

Only bytes live in a backend; blob metadata is kept in the database.
"""

from stowage.storage.base import DEFAULT_SIGNED_URL_TTL, PutOptions, StorageService
from stowage.storage.factory import create_service
from stowage.storage.local import LocalStorageService
from stowage.storage.registry import ServiceRegistry
from stowage.storage.s3 import S3StorageService

__all__ = [
    "DEFAULT_SIGNED_URL_TTL",
    "LocalStorageService",
    "PutOptions",
    "S3StorageService",
    "ServiceRegistry",
    "StorageService",
    "create_service",
]
