"""Base storage service interface.

Defines the capability contract every backend adapter implements.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

DEFAULT_SIGNED_URL_TTL = 3600


@dataclass
class PutOptions:
    """Options accepted by ``StorageService.put``."""

    content_type: str | None = None
    acl: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class StorageService(ABC):
    """Abstract base class for storage backends.

    Keys are opaque backend locators. Writing to an existing key overwrites it.
    """

    kind: str = ""

    def __init__(self, name: str = "") -> None:
        self.name = name or self.kind

    @abstractmethod
    async def put(self, key: str, content: bytes, options: PutOptions | None = None) -> None:
        """Store content under key, overwriting any existing object.

        Raises:
            BackendError: If the backend rejects the write
        """
        ...

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Return the content stored under key.

        Raises:
            NotFoundError: If no object exists at key
            BackendError: For any other backend failure
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete the object at key.

        Deleting a key that does not exist succeeds.
        """
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check whether an object exists at key.

        Never raises; backend failures are reported as False.
        """
        ...

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Return the public URL for key."""
        ...

    @abstractmethod
    async def signed_url(self, key: str, expires_in: int | None = None) -> str:
        """Return a time-limited URL for key.

        Args:
            key: Object key
            expires_in: Lifetime in seconds (default: ``DEFAULT_SIGNED_URL_TTL``)
        """
        ...

    async def update_metadata(
        self,
        key: str,
        metadata: dict[str, Any],
        content_type: str | None = None,
    ) -> None:
        """Replace the custom metadata stored alongside key.

        Best-effort: backends without metadata support accept and ignore it.
        """
        return None

    async def close(self) -> None:
        """Release client resources held by the backend."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
