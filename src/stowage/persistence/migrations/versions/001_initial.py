"""Initial schema for stowage.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

Creates tables for:
- blobs: metadata for uploaded files
- attachments: polymorphic owner -> blob join rows
- variant_records: markers for cached derived image artifacts
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "blobs",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("content_type", sa.String(255), nullable=False),
        sa.Column("service_name", sa.String(100), nullable=False),
        sa.Column("byte_size", sa.BigInteger(), nullable=False),
        # SHA256 of content, fixed at upload
        sa.Column("checksum", sa.String(64), nullable=False),
        sa.Column(
            "metadata",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("key", name="uq_blobs_key"),
        # Backing bytes exist only for positive sizes
        sa.CheckConstraint("byte_size > 0", name="ck_blobs_byte_size_positive"),
    )
    op.create_index("idx_blobs_created_at", "blobs", ["created_at"])
    op.create_index("idx_blobs_checksum", "blobs", ["checksum"])

    op.create_table(
        "attachments",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("owner_type", sa.String(255), nullable=False),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("blob_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.ForeignKeyConstraint(
            ["blob_id"],
            ["blobs.id"],
            name="fk_attachments_blob",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "owner_type",
            "owner_id",
            "name",
            "blob_id",
            name="uq_attachments_owner_name_blob",
        ),
    )
    op.create_index(
        "idx_attachments_owner_name",
        "attachments",
        ["owner_type", "owner_id", "name"],
    )
    op.create_index("idx_attachments_blob_id", "attachments", ["blob_id"])

    op.create_table(
        "variant_records",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("blob_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("variation_digest", sa.String(64), nullable=False),
        sa.Column("key", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.ForeignKeyConstraint(
            ["blob_id"],
            ["blobs.id"],
            name="fk_variant_records_blob",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "blob_id",
            "variation_digest",
            name="uq_variant_records_blob_digest",
        ),
    )


def downgrade() -> None:
    op.drop_table("variant_records")
    op.drop_index("idx_attachments_blob_id", table_name="attachments")
    op.drop_index("idx_attachments_owner_name", table_name="attachments")
    op.drop_table("attachments")
    op.drop_index("idx_blobs_checksum", table_name="blobs")
    op.drop_index("idx_blobs_created_at", table_name="blobs")
    op.drop_table("blobs")
