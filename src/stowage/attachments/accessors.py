"""Named convenience wrappers over ``AttachmentIndex``.

Bind an index, an owner and a role name once, then call short methods:

    avatar = HasOneAttached(index, owners.ref("user", user.id), "avatar")
    await avatar.attach(blob)
    current = await avatar.get()

    photos = HasManyAttached(index, owners.ref("album", album.id), "photos")
    await photos.attach(first, second)
"""

from __future__ import annotations

from stowage.attachments.index import AttachmentIndex
from stowage.blobs.store import PurgeReport
from stowage.core.models import Attachment, Blob
from stowage.core.owners import OwnerRef


class _Attached:
    def __init__(self, index: AttachmentIndex, owner: OwnerRef, name: str):
        self.index = index
        self.owner = owner
        self.name = name

    async def attached(self) -> bool:
        return await self.index.attached(self.owner, self.name)

    async def detach(self) -> int:
        return await self.index.detach(self.owner, self.name)

    async def purge(self) -> PurgeReport:
        return await self.index.purge_attached(self.owner, self.name)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(owner={str(self.owner)!r}, name={self.name!r})"


class HasOneAttached(_Attached):
    """At most one blob under (owner, name)."""

    async def attach(self, blob: Blob) -> Attachment:
        return await self.index.attach_one(self.owner, self.name, blob)

    async def get(self) -> Blob | None:
        return await self.index.get_one(self.owner, self.name)


class HasManyAttached(_Attached):
    """Any number of blobs under (owner, name)."""

    async def attach(self, *blobs: Blob) -> list[Attachment]:
        return await self.index.attach_many(self.owner, self.name, blobs)

    async def all(self) -> list[Blob]:
        return await self.index.get_many(self.owner, self.name)
