"""Lazily derived, cached variants of image blobs.

``ensure`` computes a deterministic derived key, returns it at once when
the backend already holds that object, and otherwise derives the bytes
and stores them. Concurrent misses for the same variant may both derive
and write; the writes are equivalent overwrites of one key. Callers that
need exactly-once derivation must lock on the derived key themselves.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from sqlalchemy.exc import SQLAlchemyError

from stowage.blobs.store import BlobStore
from stowage.core.models import Blob
from stowage.errors import ConflictError, NotFoundError, StowageError, UsageError
from stowage.persistence.repositories import BlobRepository, VariantRecordRepository
from stowage.storage.base import PutOptions
from stowage.variants.digest import (
    TransformationsLike,
    derived_key,
    normalize,
    variation_digest,
)
from stowage.variants.transforms import Transformer

logger = logging.getLogger(__name__)


class VariantCache:
    """Derives variants through a ``Transformer`` and caches them in the blob's backend."""

    def __init__(self, blob_store: BlobStore, transformer: Transformer):
        self.blob_store = blob_store
        self.transformer = transformer

    async def ensure(self, blob: Blob, transformations: TransformationsLike) -> str:
        """Return the derived key of a variant, deriving it on a cache miss.

        Raises:
            UsageError: If the blob is not an image or the transformations are invalid
            NotFoundError: If the blob or its original bytes are missing
            BackendError: If reading, transforming or writing fails
        """
        if not blob.is_image:
            raise UsageError(f"Variants can only be created for images, got {blob.content_type}")

        steps = normalize(transformations)
        digest = variation_digest(steps)
        key = derived_key(blob, steps)
        service = self.blob_store.services.get(blob.service_name)
        metrics = self.blob_store.metrics

        if await service.exists(key):
            metrics.record_variant_hit()
            await self._record(blob, digest, key)
            return key

        metrics.record_variant_miss()
        data = await self.blob_store.get(blob)
        for step in steps:
            data = await self.transformer.apply(data, step)
        await metrics.track(
            blob.service_name,
            "put",
            service.put(key, data, PutOptions(content_type=blob.content_type)),
        )
        logger.info(f"Derived variant {digest[:12]} of blob {blob.key}")

        await self._record(blob, digest, key)
        return key

    async def _record(self, blob: Blob, digest: str, key: str) -> None:
        """Make sure a marker exists so deleting the blob also deletes the variant.

        A missing marker is written on hits as well as misses. If the blob
        row is gone the derived object is removed instead.

        Raises:
            NotFoundError: If the blob was deleted
        """
        try:
            async with self.blob_store.database.unit_of_work() as session:
                exists = await BlobRepository(session).lock(blob.id) is not None
                if exists:
                    records = VariantRecordRepository(session)
                    if await records.get(blob.id, digest) is None:
                        await records.add(blob.id, digest, key)
        except ConflictError:
            # Either a concurrent ensure recorded it or the blob row vanished
            exists = await self._blob_exists(blob.id)
            if exists:
                logger.debug(f"Variant {digest[:12]} of blob {blob.key} already recorded")
        except SQLAlchemyError as e:
            logger.warning(f"Could not record variant {digest[:12]} of blob {blob.key}: {e}")
            return

        if not exists:
            await self._discard_orphan(blob, digest, key)

    async def _blob_exists(self, blob_id: str) -> bool:
        async with self.blob_store.database.unit_of_work() as session:
            return await BlobRepository(session).get(blob_id) is not None

    async def _discard_orphan(self, blob: Blob, digest: str, key: str) -> None:
        logger.warning(
            f"Blob {blob.key} was deleted while variant {digest[:12]} was in use, removing {key}"
        )
        service = self.blob_store.services.get(blob.service_name)
        try:
            await self.blob_store.metrics.track(blob.service_name, "delete", service.delete(key))
        except StowageError as e:
            logger.warning(f"Could not delete orphaned variant {key}: {e}")
        raise NotFoundError(f"blob {blob.id}")

    async def url(
        self,
        blob: Blob,
        transformations: TransformationsLike,
        signed: bool = False,
        expires_in: int | None = None,
    ) -> str:
        """Ensure a variant exists and return its URL."""
        key = await self.ensure(blob, transformations)
        service = self.blob_store.services.get(blob.service_name)
        if signed:
            ttl = self.blob_store.signed_url_ttl if expires_in is None else expires_in
            return await service.signed_url(key, ttl)
        return service.public_url(key)

    async def process_variants(
        self,
        blob: Blob,
        variants: Mapping[str, TransformationsLike],
    ) -> dict[str, str]:
        """Ensure several named variants; returns name -> derived key."""
        return {name: await self.ensure(blob, steps) for name, steps in variants.items()}
