"""Local filesystem storage service.

Stores each object at ``{root}/{key}``:
- Intermediate directories are created on write
- Writes go to a temp file and are renamed into place
- Content type and custom metadata live in a ``.meta.json`` sidecar
- Keys resolving outside the root are rejected
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import tempfile
import time
from pathlib import Path
from typing import Any, cast
from urllib.parse import urlencode
from uuid import uuid4

import aiofiles  # type: ignore[import-untyped]
import aiofiles.os  # type: ignore[import-untyped]

from stowage.errors import (
    BackendError,
    ConfigurationError,
    NotFoundError,
    StowageError,
    UsageError,
)
from stowage.storage.base import DEFAULT_SIGNED_URL_TTL, PutOptions, StorageService

logger = logging.getLogger(__name__)

META_SUFFIX = ".meta.json"
DEFAULT_ROOT = Path(tempfile.gettempdir()) / "stowage"
DEFAULT_BASE_URL = "/storage"


class LocalStorageService(StorageService):
    """Local filesystem storage backend."""

    kind = "local"

    def __init__(
        self,
        root: str | Path | None = None,
        base_url: str = DEFAULT_BASE_URL,
        signing_secret: str | None = None,
        name: str = "local",
    ):
        """Initialize local storage.

        Args:
            root: Base directory for stored objects (default: system temp dir)
            base_url: Base path joined with the key to form public URLs
            signing_secret: Secret for HMAC-signed URLs (optional)
            name: Registered service name

        Raises:
            ConfigurationError: If a value has the wrong shape
        """
        super().__init__(name)
        if root is None:
            root = DEFAULT_ROOT
        if not isinstance(root, (str, Path)) or not str(root).strip():
            raise ConfigurationError("root", "root must be a non-empty path")
        if not isinstance(base_url, str):
            raise ConfigurationError("base_url", "base_url must be a string")
        if signing_secret is not None and (
            not isinstance(signing_secret, str) or not signing_secret
        ):
            raise ConfigurationError("signing_secret", "signing_secret must be a non-empty string")

        self.root = Path(root).expanduser()
        self.base_url = base_url
        self._signing_secret = signing_secret

    @classmethod
    def from_config(cls, name: str, config: dict[str, Any]) -> "LocalStorageService":
        """Build from a ``ServiceConfig.config`` mapping."""
        return cls(
            root=config.get("root"),
            base_url=config.get("base_url", DEFAULT_BASE_URL),
            signing_secret=config.get("signing_secret"),
            name=name,
        )

    def _path(self, key: str) -> Path:
        """Resolve key under root, rejecting traversal."""
        if not key or key.startswith("/") or "\\" in key:
            raise UsageError(f"Invalid storage key: {key!r}")
        root = self.root.resolve()
        path = (root / key).resolve()
        try:
            path.relative_to(root)
        except ValueError as e:
            raise UsageError(f"Storage key escapes root: {key!r}") from e
        if path == root:
            raise UsageError(f"Invalid storage key: {key!r}")
        return path

    @staticmethod
    def _meta_path(path: Path) -> Path:
        return path.with_name(path.name + META_SUFFIX)

    async def put(self, key: str, content: bytes, options: PutOptions | None = None) -> None:
        """Write content atomically, creating parent directories."""
        path = self._path(key)
        tmp_path = path.with_name(f".{path.name}.{uuid4().hex}.tmp")
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(content)
            await aiofiles.os.replace(tmp_path, path)
            if options is not None and (options.content_type or options.metadata):
                await self._write_sidecar(path, options.content_type, options.metadata)
            else:
                await self._remove_sidecar(path)
        except OSError as e:
            if await aiofiles.os.path.exists(tmp_path):
                await aiofiles.os.remove(tmp_path)
            raise BackendError(f"local write failed for {key}: {e}") from e

        logger.debug(f"Stored {len(content)} bytes at {path}")

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        except FileNotFoundError as e:
            raise NotFoundError(key) from e
        except OSError as e:
            raise BackendError(f"local read failed for {key}: {e}") from e
        return cast(bytes, data)

    async def delete(self, key: str) -> None:
        """Delete the file and its sidecar; missing files are not an error."""
        path = self._path(key)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            logger.debug(f"Delete of missing key {key} treated as success")
        except OSError as e:
            raise BackendError(f"local delete failed for {key}: {e}") from e

        try:
            await self._remove_sidecar(path)
        except OSError as e:
            raise BackendError(f"local delete failed for {key}{META_SUFFIX}: {e}") from e

        await self._prune_empty_parents(path.parent)

    async def _prune_empty_parents(self, directory: Path) -> None:
        root = self.root.resolve()
        while directory != root and root in directory.parents:
            try:
                if await aiofiles.os.listdir(directory):
                    return
                await aiofiles.os.rmdir(directory)
            except OSError as e:
                # Another writer may have created a file in the meantime
                logger.debug(f"Stopped pruning at {directory}: {e}")
                return
            directory = directory.parent

    async def exists(self, key: str) -> bool:
        try:
            return cast(bool, await aiofiles.os.path.isfile(self._path(key)))
        except (OSError, StowageError):
            return False

    def public_url(self, key: str) -> str:
        return f"{self.base_url.rstrip('/')}/{key}"

    async def signed_url(self, key: str, expires_in: int | None = None) -> str:
        """Return an HMAC-signed URL when a signing secret is configured.

        Without a secret the plain public URL is returned, since local files
        have no access control of their own.
        """
        url = self.public_url(key)
        if self._signing_secret is None:
            return url
        ttl = DEFAULT_SIGNED_URL_TTL if expires_in is None else expires_in
        if ttl <= 0:
            raise UsageError("expires_in must be positive")
        expires = int(time.time()) + ttl
        query = urlencode({"expires": expires, "signature": self._sign(key, expires)})
        return f"{url}?{query}"

    def verify_signed_url(
        self,
        key: str,
        expires: int,
        signature: str,
        now: float | None = None,
    ) -> bool:
        """Check a signature produced by ``signed_url``."""
        if self._signing_secret is None:
            return False
        current = time.time() if now is None else now
        if expires < current:
            return False
        return hmac.compare_digest(self._sign(key, expires), signature)

    def _sign(self, key: str, expires: int) -> str:
        assert self._signing_secret is not None
        message = f"{key}:{expires}".encode()
        return hmac.new(self._signing_secret.encode(), message, hashlib.sha256).hexdigest()

    async def update_metadata(
        self,
        key: str,
        metadata: dict[str, Any],
        content_type: str | None = None,
    ) -> None:
        path = self._path(key)
        if not await aiofiles.os.path.isfile(path):
            raise NotFoundError(key)
        if content_type is None:
            content_type = (await self._read_sidecar(path)).get("content_type")
        try:
            await self._write_sidecar(path, content_type, metadata)
        except OSError as e:
            raise BackendError(f"local metadata update failed for {key}: {e}") from e

    async def read_metadata(self, key: str) -> dict[str, Any]:
        """Return the sidecar contents for key (empty if none)."""
        return await self._read_sidecar(self._path(key))

    async def _write_sidecar(
        self,
        path: Path,
        content_type: str | None,
        metadata: dict[str, Any],
    ) -> None:
        payload = {"content_type": content_type, "metadata": metadata}
        async with aiofiles.open(self._meta_path(path), "w") as f:
            await f.write(json.dumps(payload, default=str))

    async def _read_sidecar(self, path: Path) -> dict[str, Any]:
        try:
            async with aiofiles.open(self._meta_path(path), "r") as f:
                raw = await f.read()
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise BackendError(f"local metadata read failed for {path.name}: {e}") from e
        try:
            payload = json.loads(raw)
        except ValueError as e:
            raise BackendError(f"corrupt metadata sidecar for {path.name}: {e}") from e
        return payload if isinstance(payload, dict) else {}

    async def _remove_sidecar(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(self._meta_path(path))
        except FileNotFoundError:
            pass
