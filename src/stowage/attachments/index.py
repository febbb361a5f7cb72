"""Polymorphic attachment index.

Links owners (``OwnerRef``: kind tag plus opaque id) to blobs under a role
name. Cardinality is a calling convention: ``attach_one`` replaces what
is attached under the name, ``attach_many`` adds to it.

Purging is reference counted. The attachment rows are removed and each
affected blob is deleted in the same unit of work only if nothing else
still references it; bytes are deleted after that commit.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from stowage.blobs.store import BlobStore, PurgeReport
from stowage.core.models import Attachment, Blob
from stowage.core.owners import OwnerRef, OwnerRegistry
from stowage.errors import NotFoundError, StowageError, UsageError
from stowage.persistence.db import Database
from stowage.persistence.repositories import AttachmentRepository, BlobRepository

logger = logging.getLogger(__name__)


class AttachmentIndex:
    """Attach, detach, query and purge blobs by (owner, name)."""

    def __init__(
        self,
        database: Database,
        blob_store: BlobStore,
        owners: OwnerRegistry | None = None,
    ):
        """Initialize the index.

        Args:
            database: Database holding the attachment rows
            blob_store: Used to delete blobs whose last attachment is purged
            owners: When given, only its registered owner kinds are accepted
        """
        self.database = database
        self.blob_store = blob_store
        self.owners = owners

    def _check(self, owner: OwnerRef, name: str) -> None:
        if not name:
            raise UsageError("attachment name must not be empty")
        if self.owners is not None and not self.owners.is_registered(owner.owner_type):
            raise UsageError(f"Unknown owner kind: {owner.owner_type}")

    async def attach_one(self, owner: OwnerRef, name: str, blob: Blob) -> Attachment:
        """Replace whatever is attached under (owner, name) with blob.

        Detaching the previous rows and creating the new one happen in one
        unit of work; the previous blobs are kept.

        Raises:
            NotFoundError: If the blob row does not exist
        """
        self._check(owner, name)
        async with self.database.unit_of_work() as session:
            if await BlobRepository(session).get(blob.id) is None:
                raise NotFoundError(f"blob {blob.id}")
            attachments = AttachmentRepository(session)
            replaced = await attachments.delete_for(owner, name)
            attachment = await attachments.create(owner, name, blob.id)
        if replaced:
            logger.info(f"Replaced {replaced} attachment(s) {name!r} of {owner}")
        return attachment

    async def attach_many(
        self, owner: OwnerRef, name: str, blobs: Iterable[Blob]
    ) -> list[Attachment]:
        """Attach each blob under (owner, name), keeping existing rows.

        Raises:
            NotFoundError: If a blob row does not exist
            ConflictError: If a blob is already attached under (owner, name)
        """
        self._check(owner, name)
        created: list[Attachment] = []
        async with self.database.unit_of_work() as session:
            blob_rows = BlobRepository(session)
            attachments = AttachmentRepository(session)
            for blob in blobs:
                if await blob_rows.get(blob.id) is None:
                    raise NotFoundError(f"blob {blob.id}")
                created.append(await attachments.create(owner, name, blob.id))
        return created

    async def detach(self, owner: OwnerRef, name: str) -> int:
        """Remove every attachment under (owner, name); blobs are kept.

        Returns:
            Number of attachment rows removed
        """
        self._check(owner, name)
        async with self.database.unit_of_work() as session:
            return await AttachmentRepository(session).delete_for(owner, name)

    # Has-one and has-many detach are the same operation on the index
    detach_one = detach
    detach_many = detach

    async def attached(self, owner: OwnerRef, name: str) -> bool:
        self._check(owner, name)
        async with self.database.unit_of_work() as session:
            return await AttachmentRepository(session).exists_for(owner, name)

    async def get_one(self, owner: OwnerRef, name: str) -> Blob | None:
        """Return the earliest attached blob under (owner, name), if any."""
        blobs = await self.get_many(owner, name)
        return blobs[0] if blobs else None

    async def get_many(self, owner: OwnerRef, name: str) -> list[Blob]:
        """Return attached blobs in attachment order."""
        self._check(owner, name)
        async with self.database.unit_of_work() as session:
            return await AttachmentRepository(session).blobs_for(owner, name)

    async def attachments(self, owner: OwnerRef, name: str) -> list[Attachment]:
        self._check(owner, name)
        async with self.database.unit_of_work() as session:
            return await AttachmentRepository(session).list_for(owner, name)

    async def purge_attached(self, owner: OwnerRef, name: str) -> PurgeReport:
        """Remove attachments under (owner, name) and delete orphaned blobs.

        Each blob losing its last reference is locked and deleted with a
        conditional statement in the same unit of work as the attachment
        removal. Bytes are deleted after commit; a failed byte delete is
        recorded in the report and does not stop the others.

        Returns:
            Report where ``processed`` counts removed attachments and
            ``deleted`` counts blobs deleted
        """
        self._check(owner, name)
        orphans: list[tuple[Blob, list[str]]] = []
        report = PurgeReport()

        async with self.database.unit_of_work() as session:
            attachments = AttachmentRepository(session)
            blobs = await attachments.blobs_for(owner, name)
            report.processed = await attachments.delete_for(owner, name)

            # Blobs are always locked in id order
            unique = {blob.id: blob for blob in blobs}
            for blob_id in sorted(unique):
                blob = unique[blob_id]
                variant_keys = await self.blob_store.delete_row(
                    session, blob.id, if_unattached=True
                )
                if variant_keys is not None:
                    orphans.append((blob, variant_keys))

        for blob, variant_keys in orphans:
            try:
                await self.blob_store.delete_bytes(blob, variant_keys)
                report.deleted += 1
            except StowageError as e:
                logger.error(f"Blob {blob.key} metadata removed but bytes were not: {e}")
                report.record_failure(blob.key, e)

        logger.info(
            f"Purged {report.processed} attachment(s) {name!r} of {owner}, "
            f"{report.deleted} blob(s) deleted"
        )
        return report
