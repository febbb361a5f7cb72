"""Domain records for blobs, attachments and variant markers.

These are plain dataclasses detached from the ORM; repositories convert
table rows into them so callers never hold a live session object.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from stowage.core import content


@dataclass(frozen=True)
class Blob:
    """Metadata for one uploaded file.

    ``key``, ``byte_size`` and ``checksum`` are fixed at creation.
    """

    id: str
    key: str
    filename: str
    content_type: str
    service_name: str
    byte_size: int
    checksum: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_image(self) -> bool:
        return content.is_image(self.content_type)

    @property
    def is_video(self) -> bool:
        return content.is_video(self.content_type)

    @property
    def is_audio(self) -> bool:
        return content.is_audio(self.content_type)

    @property
    def human_size(self) -> str:
        return content.human_size(self.byte_size)


@dataclass(frozen=True)
class Attachment:
    """Join row linking an owner to a blob under a role name."""

    id: str
    name: str
    owner_type: str
    owner_id: str
    blob_id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class VariantRecord:
    """Cache marker for a derived artifact of an image blob."""

    id: str
    blob_id: str
    variation_digest: str
    key: str
