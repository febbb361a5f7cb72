"""Blob metadata lifecycle.

The BlobStore owns the pairing between a metadata row and the bytes held
by a storage backend:

- Upload inserts the row first, then writes the bytes; if the write fails
  the row is deleted again so no row ever points at missing bytes.
- Deletion removes the row first (committed), then the bytes. A failed
  byte delete is reported but the row stays removed.
- Reference-counted deletion locks the blob row and deletes it with a
  single conditional statement guarded by "no attachment references it".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from stowage.core import analyzer
from stowage.core.content import compute_checksum, generate_key, infer_content_type
from stowage.core.models import Blob
from stowage.errors import CompensationError, NotFoundError, StowageError, UsageError
from stowage.observability.metrics import MetricsRegistry
from stowage.persistence.db import Database
from stowage.persistence.repositories import (
    AttachmentRepository,
    BlobRepository,
    VariantRecordRepository,
)
from stowage.persistence.tables import utc_now
from stowage.storage.base import DEFAULT_SIGNED_URL_TTL, PutOptions
from stowage.storage.registry import ServiceRegistry

logger = logging.getLogger(__name__)


@dataclass
class PurgeReport:
    """Aggregate outcome of a batch deletion.

    ``errors`` maps a blob key to the message of the failure that hit it.
    """

    processed: int = 0
    deleted: int = 0
    failed: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    def record_failure(self, key: str, error: BaseException) -> None:
        self.failed += 1
        self.errors[key] = str(error)


class BlobStore:
    """Creates, reads and deletes blobs across the registered backends."""

    def __init__(
        self,
        database: Database,
        services: ServiceRegistry,
        metrics: MetricsRegistry | None = None,
        signed_url_ttl: int = DEFAULT_SIGNED_URL_TTL,
    ):
        self.database = database
        self.services = services
        self.metrics = metrics or MetricsRegistry(enabled=False)
        self.signed_url_ttl = signed_url_ttl

    async def create_and_upload(
        self,
        content: bytes,
        filename: str,
        content_type: str | None = None,
        service_name: str | None = None,
        metadata: dict[str, Any] | None = None,
        acl: str | None = None,
    ) -> Blob:
        """Record a new blob and write its bytes to a backend.

        Args:
            content: File content (must not be empty)
            filename: Display name; only its extension reaches the key
            content_type: MIME type (inferred from filename if omitted)
            service_name: Registered backend (default service if omitted)
            metadata: Application-defined attributes
            acl: Canned ACL passed to the backend

        Returns:
            The committed Blob

        Raises:
            UsageError: If content is empty
            ConfigurationError: If service_name is not registered
            BackendError: If the write failed (the metadata row is removed)
            CompensationError: If the write failed and removing the row failed too
        """
        if not content:
            raise UsageError("byte_size must be positive; refusing to store empty content")

        content_type = content_type or infer_content_type(filename)
        service_name = self.services.resolve_name(service_name)
        service = self.services.get(service_name)
        metadata = dict(metadata or {})
        key = generate_key(filename)

        async with self.database.unit_of_work() as session:
            blob = await BlobRepository(session).insert(
                key=key,
                filename=filename,
                content_type=content_type,
                service_name=service_name,
                byte_size=len(content),
                checksum=compute_checksum(content),
                metadata=metadata,
            )

        options = PutOptions(content_type=content_type, acl=acl, metadata=metadata)
        try:
            await self.metrics.track(service_name, "put", service.put(key, content, options))
        except Exception as error:
            await self._compensate(blob, error)
            raise

        self.metrics.record_upload(service_name, blob.byte_size)
        logger.info(f"Uploaded blob {blob.key} ({blob.human_size}) to {service_name}")
        return blob

    async def _compensate(self, blob: Blob, error: Exception) -> None:
        """Remove the row of a blob whose bytes never landed."""
        try:
            async with self.database.unit_of_work() as session:
                await BlobRepository(session).delete(blob.id)
        except (SQLAlchemyError, OSError) as cleanup_error:
            logger.error(
                f"Upload of {blob.key} failed and its metadata row could not be removed: "
                f"{cleanup_error}"
            )
            raise CompensationError(error, cleanup_error) from error
        logger.warning(f"Upload of {blob.key} failed, metadata row removed: {error}")

    async def get(self, blob: Blob) -> bytes:
        """Read the bytes of a blob from its backend.

        Raises:
            NotFoundError: If the backend holds no object for the key
            ConfigurationError: If the blob's service is no longer registered
            BackendError: For any other backend failure
        """
        service = self.services.get(blob.service_name)
        return await self.metrics.track(blob.service_name, "get", service.get(blob.key))

    async def find_by_key(self, key: str) -> Blob:
        async with self.database.unit_of_work() as session:
            blob = await BlobRepository(session).get_by_key(key)
        if blob is None:
            raise NotFoundError(f"blob with key {key}")
        return blob

    async def find(self, blob_id: str) -> Blob:
        async with self.database.unit_of_work() as session:
            blob = await BlobRepository(session).get(blob_id)
        if blob is None:
            raise NotFoundError(f"blob {blob_id}")
        return blob

    async def delete(self, blob: Blob) -> None:
        """Force-delete a blob regardless of attachments.

        The row (with its attachments and variant records) is removed and
        committed before the bytes are deleted.

        Raises:
            BackendError: If the bytes could not be deleted; the row stays removed
        """
        async with self.database.unit_of_work() as session:
            detached = await AttachmentRepository(session).delete_for_blob(blob.id)
            variant_keys = await self.delete_row(session, blob.id)
        if detached:
            logger.info(f"Force delete of {blob.key} removed {detached} attachment(s)")
        await self.delete_bytes(blob, variant_keys or [])

    async def delete_row(
        self,
        session: AsyncSession,
        blob_id: str,
        if_unattached: bool = False,
    ) -> list[str] | None:
        """Delete a blob row inside the caller's unit of work.

        With ``if_unattached`` the row is locked first and deleted only when
        no attachment references it, so concurrent purges of the last two
        attachments cannot both keep or both delete the blob.

        Returns:
            Keys of the blob's recorded variants, or None if no row was deleted
        """
        blobs = BlobRepository(session)
        if if_unattached:
            if await blobs.lock(blob_id) is None:
                return None
        records = await VariantRecordRepository(session).list_for_blob(blob_id)
        if if_unattached:
            deleted = await blobs.delete_if_unattached(blob_id)
        else:
            deleted = await blobs.delete(blob_id)
        if not deleted:
            return None
        # Variant records go with the row through ON DELETE CASCADE
        return [record.key for record in records]

    async def delete_bytes(self, blob: Blob, variant_keys: list[str]) -> None:
        """Delete a blob's bytes and its derived objects from the backend.

        Derived objects are removed best-effort; a failure on the blob's own
        key is raised.
        """
        service = self.services.get(blob.service_name)
        for key in variant_keys:
            try:
                await self.metrics.track(blob.service_name, "delete", service.delete(key))
            except StowageError as e:
                logger.warning(f"Could not delete variant {key} of blob {blob.key}: {e}")

        await self.metrics.track(blob.service_name, "delete", service.delete(blob.key))
        self.metrics.record_deletion(blob.service_name)
        logger.info(f"Deleted blob {blob.key} from {blob.service_name}")

    async def purge_unattached(
        self,
        older_than: timedelta,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> PurgeReport:
        """Delete every blob with no attachments created before the cutoff.

        One failing blob does not stop the batch; failures are collected in
        the report. A blob attached again between the scan and its deletion
        is skipped.

        Args:
            older_than: Minimum age of a blob to be purged
            now: Reference time (default: current UTC time)
            limit: Maximum number of blobs to examine
        """
        cutoff = (now or utc_now()) - older_than
        async with self.database.unit_of_work() as session:
            candidates = await BlobRepository(session).find_unattached(cutoff, limit)

        report = PurgeReport()
        for blob in candidates:
            report.processed += 1
            try:
                async with self.database.unit_of_work() as session:
                    variant_keys = await self.delete_row(session, blob.id, if_unattached=True)
                if variant_keys is None:
                    logger.info(f"Skipped purge of {blob.key}: attached or already deleted")
                    continue
                await self.delete_bytes(blob, variant_keys)
                report.deleted += 1
            except (StowageError, SQLAlchemyError) as e:
                logger.error(f"Failed to purge unattached blob {blob.key}: {e}")
                report.record_failure(blob.key, e)

        logger.info(
            f"Purged unattached blobs older than {older_than}: "
            f"{report.deleted} deleted, {report.failed} failed of {report.processed}"
        )
        return report

    async def count_unattached(self, older_than: timedelta, now: datetime | None = None) -> int:
        """Count the blobs ``purge_unattached`` would examine."""
        cutoff = (now or utc_now()) - older_than
        async with self.database.unit_of_work() as session:
            return await BlobRepository(session).count_unattached(cutoff)

    async def url(self, blob: Blob, signed: bool = False, expires_in: int | None = None) -> str:
        """Return the public URL, or a signed URL valid for ``expires_in`` seconds."""
        service = self.services.get(blob.service_name)
        if signed:
            ttl = self.signed_url_ttl if expires_in is None else expires_in
            return await service.signed_url(blob.key, ttl)
        return service.public_url(blob.key)

    async def update(
        self,
        blob: Blob,
        content_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Blob:
        """Update the mutable fields of a blob.

        Attachments referencing the blob are touched in the same unit of work.
        The new content type and metadata are then pushed to the backend
        best-effort.

        Raises:
            NotFoundError: If the blob row no longer exists
        """
        if content_type is None and metadata is None:
            return blob

        async with self.database.unit_of_work() as session:
            updated = await BlobRepository(session).update(blob.id, content_type, metadata)
            if updated is None:
                raise NotFoundError(f"blob {blob.id}")
            await AttachmentRepository(session).touch_for_blob(blob.id)

        service = self.services.get(updated.service_name)
        try:
            await self.metrics.track(
                updated.service_name,
                "update_metadata",
                service.update_metadata(
                    updated.key, updated.metadata, content_type=updated.content_type
                ),
            )
        except StowageError as e:
            logger.warning(f"Backend metadata update failed for {updated.key}: {e}")
        return updated

    async def analyze(self, blob: Blob) -> Blob:
        """Extract header metadata from the blob's bytes and store it."""
        data = await self.get(blob)
        extracted = analyzer.analyze(data, blob.content_type, blob.filename)
        return await self.update(blob, metadata={**blob.metadata, **extracted, "analyzed": True})
