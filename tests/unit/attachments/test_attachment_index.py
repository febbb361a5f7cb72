"""Tests for the polymorphic attachment index and reference-counted purge."""

from __future__ import annotations

import asyncio

import pytest

from stowage.attachments.index import AttachmentIndex
from stowage.blobs.store import BlobStore
from stowage.core.models import Blob
from stowage.core.owners import OwnerRef, OwnerRegistry
from stowage.errors import BackendError, ConflictError, NotFoundError, UsageError
from stowage.persistence.db import Database
from stowage.persistence.repositories import BlobRepository
from stowage.storage.local import LocalStorageService


class TestAttach:
    """Test attaching and querying blobs."""

    @pytest.mark.asyncio
    async def test_attach_one_and_get(
        self, index: AttachmentIndex, blob_store: BlobStore, user: OwnerRef
    ) -> None:
        blob = await blob_store.create_and_upload(b"hello", "a.txt")
        attachment = await index.attach_one(user, "avatar", blob)

        assert attachment.blob_id == blob.id
        assert attachment.owner_type == "user"
        assert attachment.owner_id == "1"
        assert await index.attached(user, "avatar")
        assert (await index.get_one(user, "avatar")).id == blob.id  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_attach_one_replaces_but_keeps_blob(
        self, index: AttachmentIndex, blob_store: BlobStore, user: OwnerRef
    ) -> None:
        old = await blob_store.create_and_upload(b"old", "old.png")
        new = await blob_store.create_and_upload(b"new", "new.png")
        await index.attach_one(user, "avatar", old)
        await index.attach_one(user, "avatar", new)

        assert [b.id for b in await index.get_many(user, "avatar")] == [new.id]
        assert (await blob_store.find(old.id)).id == old.id

    @pytest.mark.asyncio
    async def test_attach_many_accumulates(
        self, index: AttachmentIndex, blob_store: BlobStore, user: OwnerRef
    ) -> None:
        first = await blob_store.create_and_upload(b"1", "1.jpg")
        second = await blob_store.create_and_upload(b"2", "2.jpg")
        third = await blob_store.create_and_upload(b"3", "3.jpg")
        await index.attach_many(user, "photos", [first, second])
        await index.attach_many(user, "photos", [third])

        assert {b.id for b in await index.get_many(user, "photos")} == {
            first.id,
            second.id,
            third.id,
        }
        assert len(await index.attachments(user, "photos")) == 3

    @pytest.mark.asyncio
    async def test_attach_many_duplicate_conflicts_atomically(
        self, index: AttachmentIndex, blob_store: BlobStore, user: OwnerRef
    ) -> None:
        first = await blob_store.create_and_upload(b"1", "1.jpg")
        second = await blob_store.create_and_upload(b"2", "2.jpg")
        await index.attach_many(user, "photos", [first])

        with pytest.raises(ConflictError):
            await index.attach_many(user, "photos", [second, first])
        assert [b.id for b in await index.get_many(user, "photos")] == [first.id]

    @pytest.mark.asyncio
    async def test_attach_deleted_blob(
        self, index: AttachmentIndex, blob_store: BlobStore, user: OwnerRef
    ) -> None:
        blob = await blob_store.create_and_upload(b"x", "a.txt")
        await blob_store.delete(blob)
        with pytest.raises(NotFoundError):
            await index.attach_one(user, "avatar", blob)

    @pytest.mark.asyncio
    async def test_nothing_attached(self, index: AttachmentIndex, user: OwnerRef) -> None:
        assert not await index.attached(user, "avatar")
        assert await index.get_one(user, "avatar") is None
        assert await index.get_many(user, "photos") == []

    @pytest.mark.asyncio
    async def test_empty_name_rejected(self, index: AttachmentIndex, user: OwnerRef) -> None:
        with pytest.raises(UsageError):
            await index.attached(user, "")

    @pytest.mark.asyncio
    async def test_unregistered_owner_kind_rejected(
        self, database: Database, blob_store: BlobStore
    ) -> None:
        async def load_user(owner_id: str) -> dict:
            return {"id": owner_id}

        owners = OwnerRegistry()
        owners.register("user", load_user)
        strict = AttachmentIndex(database, blob_store, owners=owners)
        blob = await blob_store.create_and_upload(b"x", "a.txt")

        await strict.attach_one(OwnerRef("user", "1"), "avatar", blob)
        with pytest.raises(UsageError):
            await strict.attach_one(OwnerRef("invoice", "1"), "scan", blob)


class TestDetach:
    """Detaching removes rows but keeps blobs."""

    @pytest.mark.asyncio
    async def test_detach(
        self, index: AttachmentIndex, blob_store: BlobStore, user: OwnerRef
    ) -> None:
        blob = await blob_store.create_and_upload(b"x", "a.txt")
        await index.attach_one(user, "avatar", blob)

        assert await index.detach(user, "avatar") == 1
        assert not await index.attached(user, "avatar")
        assert (await blob_store.find(blob.id)).id == blob.id
        assert await index.detach_one(user, "avatar") == 0

    @pytest.mark.asyncio
    async def test_detach_only_touches_named_owner(
        self,
        index: AttachmentIndex,
        blob_store: BlobStore,
        user: OwnerRef,
        other_user: OwnerRef,
    ) -> None:
        blob = await blob_store.create_and_upload(b"x", "a.txt")
        await index.attach_one(user, "avatar", blob)
        await index.attach_one(other_user, "avatar", blob)

        await index.detach_many(user, "avatar")
        assert await index.attached(other_user, "avatar")


class TestPurgeAttached:
    """Purging deletes a blob only when nothing references it anymore."""

    @pytest.mark.asyncio
    async def test_shared_blob_survives_first_purge(
        self,
        index: AttachmentIndex,
        blob_store: BlobStore,
        local_service: LocalStorageService,
        user: OwnerRef,
        other_user: OwnerRef,
    ) -> None:
        blob = await blob_store.create_and_upload(b"shared", "shared.png")
        await index.attach_one(user, "avatar", blob)
        await index.attach_one(other_user, "banner", blob)

        first = await index.purge_attached(user, "avatar")
        assert (first.processed, first.deleted, first.failed) == (1, 0, 0)
        assert await blob_store.get(blob) == b"shared"
        assert await index.attached(other_user, "banner")

        second = await index.purge_attached(other_user, "banner")
        assert (second.processed, second.deleted, second.failed) == (1, 1, 0)
        with pytest.raises(NotFoundError):
            await blob_store.get(blob)
        with pytest.raises(NotFoundError):
            await blob_store.find(blob.id)
        assert not await local_service.exists(blob.key)

    @pytest.mark.asyncio
    async def test_purge_many(
        self, index: AttachmentIndex, blob_store: BlobStore, user: OwnerRef
    ) -> None:
        blobs = [await blob_store.create_and_upload(b"x", f"{i}.jpg") for i in range(3)]
        await index.attach_many(user, "photos", blobs)

        report = await index.purge_attached(user, "photos")
        assert (report.processed, report.deleted, report.failed) == (3, 3, 0)
        for blob in blobs:
            with pytest.raises(NotFoundError):
                await blob_store.find(blob.id)

    @pytest.mark.asyncio
    async def test_purge_with_nothing_attached(
        self, index: AttachmentIndex, user: OwnerRef
    ) -> None:
        report = await index.purge_attached(user, "avatar")
        assert (report.processed, report.deleted, report.failed) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_byte_delete_failure_is_reported(
        self,
        index: AttachmentIndex,
        blob_store: BlobStore,
        local_service: LocalStorageService,
        user: OwnerRef,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        blob = await blob_store.create_and_upload(b"x", "a.txt")
        await index.attach_one(user, "doc", blob)

        async def failing_delete(key: str) -> None:
            raise BackendError("permission denied")

        monkeypatch.setattr(local_service, "delete", failing_delete)
        report = await index.purge_attached(user, "doc")

        assert report.failed == 1
        assert report.deleted == 0
        assert "permission denied" in report.errors[blob.key]
        with pytest.raises(NotFoundError):
            await blob_store.find(blob.id)

    @pytest.mark.asyncio
    async def test_upload_attach_purge_scenario(
        self,
        index: AttachmentIndex,
        blob_store: BlobStore,
        local_service: LocalStorageService,
        user: OwnerRef,
    ) -> None:
        blob = await blob_store.create_and_upload(b"hello", "a.txt")
        assert (blob.byte_size, blob.content_type) == (5, "text/plain")
        assert await blob_store.get(blob) == b"hello"

        await index.attach_one(user, "doc", blob)
        await index.purge_attached(user, "doc")

        assert not await local_service.exists(blob.key)
        with pytest.raises(NotFoundError):
            await blob_store.get(blob)


class TestConcurrentPurge:
    """The last reference to a shared blob is released exactly once."""

    @pytest.mark.asyncio
    async def test_concurrent_purges_of_last_references(
        self,
        index: AttachmentIndex,
        blob_store: BlobStore,
        local_service: LocalStorageService,
        user: OwnerRef,
        other_user: OwnerRef,
    ) -> None:
        blob = await blob_store.create_and_upload(b"shared", "shared.txt")
        await index.attach_one(user, "doc", blob)
        await index.attach_one(other_user, "doc", blob)

        reports = await asyncio.gather(
            index.purge_attached(user, "doc"),
            index.purge_attached(other_user, "doc"),
        )

        assert sorted(report.deleted for report in reports) == [0, 1]
        assert all(report.failed == 0 for report in reports)
        with pytest.raises(NotFoundError):
            await blob_store.find_by_key(blob.key)
        with pytest.raises(NotFoundError):
            await local_service.get(blob.key)

    @pytest.mark.asyncio
    async def test_blobs_are_locked_in_id_order(
        self,
        index: AttachmentIndex,
        blob_store: BlobStore,
        user: OwnerRef,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        blobs = [await blob_store.create_and_upload(b"x", f"{i}.jpg") for i in range(6)]
        await index.attach_many(user, "photos", blobs)

        locked: list[str] = []
        original_lock = BlobRepository.lock

        async def recording_lock(self: BlobRepository, blob_id: str) -> Blob | None:
            locked.append(blob_id)
            return await original_lock(self, blob_id)

        monkeypatch.setattr(BlobRepository, "lock", recording_lock)
        await index.purge_attached(user, "photos")

        assert locked == sorted(b.id for b in blobs)
