"""Tests for persistence table definitions."""

from sqlalchemy import CheckConstraint, UniqueConstraint

from stowage.persistence.tables import (
    AttachmentTable,
    Base,
    BlobTable,
    VariantRecordTable,
    new_id,
)


def constraint_names(table: type[Base], kind: type) -> set[str]:
    return {c.name for c in table.__table__.constraints if isinstance(c, kind) and c.name}


class TestTableDefinitions:
    """Test table schema definitions."""

    def test_all_tables_registered(self) -> None:
        assert set(Base.metadata.tables) == {"blobs", "attachments", "variant_records"}

    def test_blob_table_columns(self) -> None:
        columns = {c.name for c in BlobTable.__table__.columns}
        assert columns == {
            "id",
            "key",
            "filename",
            "content_type",
            "service_name",
            "byte_size",
            "checksum",
            "metadata",
            "created_at",
            "updated_at",
        }

    def test_blob_key_is_unique(self) -> None:
        assert BlobTable.__table__.c.key.unique

    def test_blob_size_must_be_positive(self) -> None:
        assert "ck_blobs_byte_size_positive" in constraint_names(BlobTable, CheckConstraint)

    def test_attachment_tuple_is_unique(self) -> None:
        assert "uq_attachments_owner_name_blob" in constraint_names(
            AttachmentTable, UniqueConstraint
        )

    def test_variant_digest_unique_per_blob(self) -> None:
        assert "uq_variant_records_blob_digest" in constraint_names(
            VariantRecordTable, UniqueConstraint
        )

    def test_children_cascade_with_blob(self) -> None:
        for table in (AttachmentTable, VariantRecordTable):
            (fk,) = table.__table__.c.blob_id.foreign_keys
            assert fk.column.table.name == "blobs"
            assert fk.ondelete == "CASCADE"

    def test_sweep_and_refcount_indexes(self) -> None:
        assert {i.name for i in BlobTable.__table__.indexes} >= {"idx_blobs_created_at"}
        assert {i.name for i in AttachmentTable.__table__.indexes} >= {
            "idx_attachments_owner_name",
            "idx_attachments_blob_id",
        }


class TestNewId:
    """Test primary key generation."""

    def test_dashed_uuid_strings(self) -> None:
        value = new_id()
        assert len(value) == 36
        assert value.count("-") == 4
        assert new_id() != value
