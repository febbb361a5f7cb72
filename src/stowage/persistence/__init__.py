"""Persistence layer for Stowage.

This module provides:
- Async engine and unit-of-work sessions (``Database``)
- SQLAlchemy ORM models for blobs, attachments and variant records
- Session-bound repositories returning detached domain records
- Alembic migrations
"""

from stowage.persistence.db import Database
from stowage.persistence.repositories import (
    AttachmentRepository,
    BlobRepository,
    VariantRecordRepository,
)
from stowage.persistence.tables import AttachmentTable, Base, BlobTable, VariantRecordTable

__all__ = [
    # DB
    "Database",
    # Tables
    "Base",
    "BlobTable",
    "AttachmentTable",
    "VariantRecordTable",
    # Repositories
    "BlobRepository",
    "AttachmentRepository",
    "VariantRecordRepository",
]
