"""SQLAlchemy ORM models for blob persistence.

Three relations:
- blobs: one row per uploaded file; bytes live in a storage backend
- attachments: polymorphic join rows (owner_type, owner_id, name) -> blob
- variant_records: markers for cached derived artifacts of image blobs

Column types are portable (PostgreSQL in production, SQLite in tests);
``metadata`` uses JSONB on PostgreSQL.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonDocument = JSON().with_variant(JSONB(), "postgresql")


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class BlobTable(Base):
    """Blob metadata table.

    ``key`` is the backend locator; it is unique and never rewritten.
    """

    __tablename__ = "blobs"

    # Primary key (internal UUID)
    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)

    # Backend-facing locator, generated at upload time
    key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    # Display name supplied by the uploader
    filename: Mapped[str] = mapped_column(String(255), nullable=False)

    content_type: Mapped[str] = mapped_column(String(255), nullable=False)

    # Registered storage service holding the bytes
    service_name: Mapped[str] = mapped_column(String(100), nullable=False)

    byte_size: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # SHA256 of content, computed once at upload time
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)

    # Application-defined and derived attributes ("metadata" is reserved on Base)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JsonDocument, nullable=False, default=dict
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
    )

    __table_args__ = (
        # Supports the unattached-blob sweep
        Index("idx_blobs_created_at", "created_at"),
        Index("idx_blobs_checksum", "checksum"),
        CheckConstraint("byte_size > 0", name="ck_blobs_byte_size_positive"),
    )


class AttachmentTable(Base):
    """Polymorphic attachment table.

    The model does not enforce has-one vs has-many cardinality; it only
    forbids attaching the same blob twice under one (owner, name).
    """

    __tablename__ = "attachments"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)

    # Role name, e.g. "avatar"
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Owner discriminator and opaque id
    owner_type: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)

    blob_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("blobs.id", ondelete="CASCADE"),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
    )

    __table_args__ = (
        UniqueConstraint(
            "owner_type",
            "owner_id",
            "name",
            "blob_id",
            name="uq_attachments_owner_name_blob",
        ),
        Index("idx_attachments_owner_name", "owner_type", "owner_id", "name"),
        # Reference counting looks attachments up by blob
        Index("idx_attachments_blob_id", "blob_id"),
    )


class VariantRecordTable(Base):
    """Cache markers for derived image artifacts."""

    __tablename__ = "variant_records"

    id: Mapped[str] = mapped_column(Uuid(as_uuid=False), primary_key=True, default=new_id)

    blob_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("blobs.id", ondelete="CASCADE"),
        nullable=False,
    )

    # SHA256 of the ordered transformation list
    variation_digest: Mapped[str] = mapped_column(String(64), nullable=False)

    # Derived storage key
    key: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("blob_id", "variation_digest", name="uq_variant_records_blob_digest"),
    )
