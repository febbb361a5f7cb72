"""Runtime wiring for Stowage.

``Stowage`` is built once at startup from an explicit ``Settings`` object
and handed to whatever needs blob storage. There is no process-wide
instance.

Example:
    settings = load_settings()
    stowage = Stowage.from_settings(settings, transformer=my_transformer)

    blob = await stowage.blobs.create_and_upload(data, "photo.png")
    await stowage.attachments.attach_one(owner, "avatar", blob)

    # Swap storage configuration; the old services stay if the new ones are invalid
    stowage.reload(new_settings)

    await stowage.close()
"""

from __future__ import annotations

import logging

from stowage.attachments.index import AttachmentIndex
from stowage.blobs.store import BlobStore
from stowage.config import Settings
from stowage.core.owners import OwnerRegistry
from stowage.observability.metrics import MetricsRegistry
from stowage.persistence.db import Database
from stowage.storage.registry import ServiceRegistry
from stowage.variants.cache import VariantCache
from stowage.variants.transforms import OperationTransformer, Transformer

logger = logging.getLogger(__name__)


class Stowage:
    """Database, storage services and the three blob components, wired together."""

    def __init__(
        self,
        settings: Settings,
        database: Database,
        services: ServiceRegistry,
        metrics: MetricsRegistry | None = None,
        transformer: Transformer | None = None,
        owners: OwnerRegistry | None = None,
    ):
        self.settings = settings
        self.database = database
        self.services = services
        self.metrics = metrics or MetricsRegistry(enabled=settings.enable_metrics)
        self.owners = owners

        self.blobs = BlobStore(
            database,
            services,
            metrics=self.metrics,
            signed_url_ttl=settings.signed_url_ttl,
        )
        self.attachments = AttachmentIndex(database, self.blobs, owners=owners)
        self.variants = VariantCache(self.blobs, transformer or OperationTransformer())

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transformer: Transformer | None = None,
        owners: OwnerRegistry | None = None,
    ) -> "Stowage":
        """Build every component from settings.

        Raises:
            ConfigurationError: If any storage service is misconfigured
        """
        services = ServiceRegistry.from_configs(settings.services, settings.default_service)
        database = Database.from_settings(settings)
        logger.info(
            f"Stowage started with services {', '.join(services.names)} "
            f"(default: {services.default_name})"
        )
        return cls(settings, database, services, transformer=transformer, owners=owners)

    def reload(self, settings: Settings) -> None:
        """Apply new storage settings.

        All backends are built and validated before anything is swapped;
        on error the current services and settings remain in effect.
        The database connection is not rebuilt.
        """
        self.services.reload(settings.services, settings.default_service)
        self.blobs.signed_url_ttl = settings.signed_url_ttl
        self.settings = settings

    async def close(self) -> None:
        await self.services.close()
        await self.database.close()
