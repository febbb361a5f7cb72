"""Repository pattern for blob, attachment and variant persistence.

Repositories are bound to one session and never commit; the caller's
unit of work decides the transaction boundary. Rows are returned as
detached domain records from ``stowage.core.models``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from stowage.core.models import Attachment, Blob, VariantRecord
from stowage.core.owners import OwnerRef
from stowage.errors import ConflictError
from stowage.persistence.tables import (
    AttachmentTable,
    BlobTable,
    VariantRecordTable,
    utc_now,
)


def blob_from_row(row: BlobTable) -> Blob:
    return Blob(
        id=row.id,
        key=row.key,
        filename=row.filename,
        content_type=row.content_type,
        service_name=row.service_name,
        byte_size=row.byte_size,
        checksum=row.checksum,
        metadata=dict(row.metadata_ or {}),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def attachment_from_row(row: AttachmentTable) -> Attachment:
    return Attachment(
        id=row.id,
        name=row.name,
        owner_type=row.owner_type,
        owner_id=row.owner_id,
        blob_id=row.blob_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def variant_from_row(row: VariantRecordTable) -> VariantRecord:
    return VariantRecord(
        id=row.id,
        blob_id=row.blob_id,
        variation_digest=row.variation_digest,
        key=row.key,
    )


class BaseRepository:
    """Base repository bound to one session."""

    def __init__(self, session: AsyncSession):
        self.session = session


class BlobRepository(BaseRepository):
    """Repository for blob metadata rows."""

    async def insert(
        self,
        key: str,
        filename: str,
        content_type: str,
        service_name: str,
        byte_size: int,
        checksum: str,
        metadata: dict[str, Any],
    ) -> Blob:
        """Insert a blob row.

        Raises:
            ConflictError: If the key already exists
        """
        row = BlobTable(
            key=key,
            filename=filename,
            content_type=content_type,
            service_name=service_name,
            byte_size=byte_size,
            checksum=checksum,
            metadata_=metadata,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConflictError(f"Blob key already exists: {key}") from e
        return blob_from_row(row)

    async def get(self, blob_id: str) -> Blob | None:
        row = await self.session.get(BlobTable, blob_id)
        return blob_from_row(row) if row is not None else None

    async def get_by_key(self, key: str) -> Blob | None:
        result = await self.session.execute(select(BlobTable).where(BlobTable.key == key))
        row = result.scalar_one_or_none()
        return blob_from_row(row) if row is not None else None

    async def lock(self, blob_id: str) -> Blob | None:
        """Load a blob row with a row-level lock held until commit.

        SQLite has no row locks; its write lock serializes instead.
        """
        stmt = select(BlobTable).where(BlobTable.id == blob_id).with_for_update()
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return blob_from_row(row) if row is not None else None

    async def update(
        self,
        blob_id: str,
        content_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Blob | None:
        """Update the mutable, non-identity fields of a blob."""
        values: dict[Any, Any] = {BlobTable.updated_at: utc_now()}
        if content_type is not None:
            values[BlobTable.content_type] = content_type
        if metadata is not None:
            values[BlobTable.metadata_] = metadata
        await self.session.execute(update(BlobTable).where(BlobTable.id == blob_id).values(values))
        row = await self.session.get(BlobTable, blob_id, populate_existing=True)
        return blob_from_row(row) if row is not None else None

    async def delete(self, blob_id: str) -> bool:
        result = await self.session.execute(delete(BlobTable).where(BlobTable.id == blob_id))
        return bool(result.rowcount)

    async def delete_if_unattached(self, blob_id: str) -> bool:
        """Delete the blob row only if no attachment references it.

        A single conditional statement, so two concurrent callers cannot
        both delete the row.
        """
        still_attached = exists().where(AttachmentTable.blob_id == blob_id)
        result = await self.session.execute(
            delete(BlobTable).where(BlobTable.id == blob_id, ~still_attached)
        )
        return bool(result.rowcount)

    def _unattached(self, cutoff: datetime) -> Any:
        attached = exists().where(AttachmentTable.blob_id == BlobTable.id)
        return (BlobTable.created_at < cutoff) & ~attached

    async def find_unattached(self, cutoff: datetime, limit: int | None = None) -> list[Blob]:
        stmt = select(BlobTable).where(self._unattached(cutoff)).order_by(BlobTable.created_at)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return [blob_from_row(row) for row in result.scalars()]

    async def count_unattached(self, cutoff: datetime) -> int:
        stmt = select(func.count(BlobTable.id)).where(self._unattached(cutoff))
        return int((await self.session.execute(stmt)).scalar_one())


class AttachmentRepository(BaseRepository):
    """Repository for polymorphic attachment rows."""

    def _for_owner(self, owner: OwnerRef, name: str) -> Any:
        return (
            (AttachmentTable.owner_type == owner.owner_type)
            & (AttachmentTable.owner_id == owner.owner_id)
            & (AttachmentTable.name == name)
        )

    async def create(self, owner: OwnerRef, name: str, blob_id: str) -> Attachment:
        """Insert an attachment row.

        Raises:
            ConflictError: If the blob is already attached under (owner, name)
        """
        row = AttachmentTable(
            name=name,
            owner_type=owner.owner_type,
            owner_id=owner.owner_id,
            blob_id=blob_id,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConflictError(f"Blob {blob_id} is already attached as {name!r} to {owner}") from e
        return attachment_from_row(row)

    async def list_for(self, owner: OwnerRef, name: str) -> list[Attachment]:
        stmt = (
            select(AttachmentTable)
            .where(self._for_owner(owner, name))
            .order_by(AttachmentTable.created_at, AttachmentTable.id)
        )
        result = await self.session.execute(stmt)
        return [attachment_from_row(row) for row in result.scalars()]

    async def blobs_for(self, owner: OwnerRef, name: str) -> list[Blob]:
        stmt = (
            select(BlobTable)
            .join(AttachmentTable, AttachmentTable.blob_id == BlobTable.id)
            .where(self._for_owner(owner, name))
            .order_by(AttachmentTable.created_at, AttachmentTable.id)
        )
        result = await self.session.execute(stmt)
        return [blob_from_row(row) for row in result.scalars()]

    async def exists_for(self, owner: OwnerRef, name: str) -> bool:
        stmt = select(exists().where(self._for_owner(owner, name)))
        return bool((await self.session.execute(stmt)).scalar())

    async def delete_for(self, owner: OwnerRef, name: str) -> int:
        result = await self.session.execute(
            delete(AttachmentTable).where(self._for_owner(owner, name))
        )
        return int(result.rowcount or 0)

    async def delete(self, attachment_id: str) -> bool:
        result = await self.session.execute(
            delete(AttachmentTable).where(AttachmentTable.id == attachment_id)
        )
        return bool(result.rowcount)

    async def count_for_blob(self, blob_id: str) -> int:
        stmt = select(func.count(AttachmentTable.id)).where(AttachmentTable.blob_id == blob_id)
        return int((await self.session.execute(stmt)).scalar_one())

    async def delete_for_blob(self, blob_id: str) -> int:
        result = await self.session.execute(
            delete(AttachmentTable).where(AttachmentTable.blob_id == blob_id)
        )
        return int(result.rowcount or 0)

    async def touch_for_blob(self, blob_id: str) -> int:
        """Bump ``updated_at`` on every attachment of a blob."""
        result = await self.session.execute(
            update(AttachmentTable)
            .where(AttachmentTable.blob_id == blob_id)
            .values(updated_at=utc_now())
        )
        return int(result.rowcount or 0)


class VariantRecordRepository(BaseRepository):
    """Repository for variant cache markers."""

    async def add(self, blob_id: str, variation_digest: str, key: str) -> VariantRecord:
        """Insert a marker.

        Raises:
            ConflictError: If (blob_id, variation_digest) is already recorded
        """
        row = VariantRecordTable(blob_id=blob_id, variation_digest=variation_digest, key=key)
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConflictError(
                f"Variant {variation_digest} of blob {blob_id} is already recorded"
            ) from e
        return variant_from_row(row)

    async def get(self, blob_id: str, variation_digest: str) -> VariantRecord | None:
        stmt = select(VariantRecordTable).where(
            VariantRecordTable.blob_id == blob_id,
            VariantRecordTable.variation_digest == variation_digest,
        )
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        return variant_from_row(row) if row is not None else None

    async def list_for_blob(self, blob_id: str) -> list[VariantRecord]:
        stmt = select(VariantRecordTable).where(VariantRecordTable.blob_id == blob_id)
        result = await self.session.execute(stmt)
        return [variant_from_row(row) for row in result.scalars()]

    async def delete_for_blob(self, blob_id: str) -> int:
        result = await self.session.execute(
            delete(VariantRecordTable).where(VariantRecordTable.blob_id == blob_id)
        )
        return int(result.rowcount or 0)
