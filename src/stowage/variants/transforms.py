"""Transformation capability for variants.

Image codecs are not part of stowage. A ``Transformer`` applies one step
to raw bytes; ``OperationTransformer`` dispatches steps to callables
registered per operation name.

Example:
    transformer = OperationTransformer()
    transformer.register("resize", resize_with_pillow)
    transformer.register("quality", set_jpeg_quality)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from stowage.errors import BackendError, StowageError, UsageError
from stowage.variants.digest import Transformation

logger = logging.getLogger(__name__)

OperationHandler = Callable[[bytes, Any], bytes]

PRESETS: dict[str, list[Transformation]] = {
    "thumbnail": [Transformation("resize", "150x150")],
    "small": [Transformation("resize", "300x300")],
    "medium": [Transformation("resize", "600x600")],
    "large": [Transformation("resize", "1200x1200")],
    "avatar": [Transformation("resize", "100x100")],
    "hero": [Transformation("resize", "1920x1080")],
}


def preset(name: str) -> list[Transformation]:
    """Return the transformations of a named preset."""
    try:
        return list(PRESETS[name])
    except KeyError:
        raise UsageError(f"Unknown variant preset: {name}") from None


@runtime_checkable
class Transformer(Protocol):
    """Applies one transformation step to raw bytes."""

    async def apply(self, data: bytes, transformation: Transformation) -> bytes: ...


class OperationTransformer:
    """Transformer dispatching on the operation name.

    Handlers are plain synchronous callables ``(data, params) -> bytes``;
    they run in a worker thread so codec work does not block the loop.
    """

    def __init__(self, handlers: dict[str, OperationHandler] | None = None) -> None:
        self._handlers: dict[str, OperationHandler] = dict(handlers or {})

    @property
    def operations(self) -> list[str]:
        return sorted(self._handlers)

    def register(self, operation: str, handler: OperationHandler) -> None:
        self._handlers[operation] = handler

    async def apply(self, data: bytes, transformation: Transformation) -> bytes:
        """Run the handler for one step.

        Raises:
            UsageError: If no handler is registered for the operation
            BackendError: If the handler fails
        """
        handler = self._handlers.get(transformation.operation)
        if handler is None:
            raise UsageError(f"Unsupported transformation: {transformation.operation}")
        try:
            return await asyncio.to_thread(handler, data, transformation.params)
        except StowageError:
            raise
        except Exception as e:
            logger.warning(f"Transformation {transformation.operation} failed: {e}")
            raise BackendError(f"transformation {transformation.operation} failed: {e}") from e
