"""Storage service factory for Stowage."""

from __future__ import annotations

from stowage.config import ServiceConfig
from stowage.errors import ConfigurationError
from stowage.storage.base import StorageService
from stowage.storage.local import LocalStorageService
from stowage.storage.s3 import S3StorageService


def create_service(service_config: ServiceConfig) -> StorageService:
    """Build a storage service from its configuration entry.

    Raises:
        ConfigurationError: Unknown kind or invalid adapter configuration.
    """
    kind = service_config.kind.lower()
    if kind == "local":
        return LocalStorageService.from_config(service_config.name, service_config.config)
    if kind == "s3":
        return S3StorageService.from_config(service_config.name, service_config.config)
    raise ConfigurationError(
        "kind", f"Unsupported storage kind {service_config.kind!r}. Supported values: local, s3."
    )
