"""Error taxonomy for Stowage.

Every error raised across a component boundary is a ``StowageError``
carrying a ``reason`` from a small vocabulary:

- ``config_error``: missing/invalid backend configuration (fails at construction)
- ``not_found``: object or metadata row absent
- ``conflict``: duplicate unique key or attachment tuple
- ``backend_error``: transport failure from a storage backend
- ``http_error``: non-2xx response from a remote object store
- ``usage_error``: caller misuse (variant of a non-image blob, empty upload, ...)
"""

from __future__ import annotations

from typing import Any


class StowageError(Exception):
    """Base exception for all Stowage errors."""

    reason: str = "error"

    def details(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        """Return a boundary representation of the error."""
        return {"reason": self.reason, "message": str(self), **self.details()}


class ConfigurationError(StowageError):
    """Raised when a service or the application is misconfigured."""

    reason = "config_error"

    def __init__(self, field: str, message: str = "") -> None:
        self.field = field
        super().__init__(message or f"Missing or invalid configuration field: {field}")

    def details(self) -> dict[str, Any]:
        return {"field": self.field}


class NotFoundError(StowageError):
    """Raised when an object or metadata row does not exist."""

    reason = "not_found"

    def __init__(self, what: str) -> None:
        self.what = what
        super().__init__(f"Not found: {what}")

    def details(self) -> dict[str, Any]:
        return {"what": self.what}


class ConflictError(StowageError):
    """Raised when a unique key or attachment tuple already exists."""

    reason = "conflict"


class UsageError(StowageError):
    """Raised when an operation is invoked with invalid input."""

    reason = "usage_error"


class BackendError(StowageError):
    """Raised when a storage backend fails (network, transport, 5xx)."""

    reason = "backend_error"

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Backend error: {detail}")

    def details(self) -> dict[str, Any]:
        return {"detail": self.detail}


class HttpError(BackendError):
    """Non-2xx response from a remote object store."""

    reason = "http_error"

    def __init__(self, status: int, body: str = "") -> None:
        self.status = status
        self.body = body
        super().__init__(f"HTTP {status}: {body}" if body else f"HTTP {status}")

    def details(self) -> dict[str, Any]:
        return {"status": self.status, "body": self.body}


class CompensationError(BackendError):
    """Upload failed and removing the orphaned metadata row failed too."""

    def __init__(self, original: BaseException, compensation: BaseException) -> None:
        self.original = original
        self.compensation = compensation
        super().__init__(
            f"upload failed ({original}) and compensating cleanup failed ({compensation})"
        )

    def details(self) -> dict[str, Any]:
        return {
            "detail": self.detail,
            "original": str(self.original),
            "compensation": str(self.compensation),
        }
