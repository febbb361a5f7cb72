"""Global pytest configuration and fixtures.

Database fixtures run against a file-backed SQLite database (aiosqlite)
under ``tmp_path``; storage fixtures use a local backend rooted there too.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio

from stowage.attachments.index import AttachmentIndex
from stowage.blobs.store import BlobStore
from stowage.core.owners import OwnerRef
from stowage.observability.metrics import MetricsRegistry
from stowage.persistence.db import Database
from stowage.storage.local import LocalStorageService
from stowage.storage.registry import ServiceRegistry

SIGNING_SECRET = "test-signing-secret"


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncIterator[Database]:
    """Create a fresh schema in a temporary SQLite file."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'stowage.db'}")
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    return tmp_path / "files"


@pytest.fixture
def local_service(storage_root: Path) -> LocalStorageService:
    return LocalStorageService(
        root=storage_root,
        base_url="/files",
        signing_secret=SIGNING_SECRET,
        name="local",
    )


@pytest.fixture
def registry(local_service: LocalStorageService) -> ServiceRegistry:
    return ServiceRegistry({"local": local_service}, "local")


@pytest.fixture
def metrics() -> MetricsRegistry:
    return MetricsRegistry(enabled=True)


@pytest.fixture
def blob_store(database: Database, registry: ServiceRegistry, metrics: MetricsRegistry) -> BlobStore:
    return BlobStore(database, registry, metrics=metrics)


@pytest.fixture
def index(database: Database, blob_store: BlobStore) -> AttachmentIndex:
    return AttachmentIndex(database, blob_store)


@pytest.fixture
def user() -> OwnerRef:
    return OwnerRef("user", "1")


@pytest.fixture
def other_user() -> OwnerRef:
    return OwnerRef("user", "2")
