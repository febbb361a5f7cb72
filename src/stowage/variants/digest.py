"""Variation digests and derived keys.

A variation is an ordered list of (operation, params) steps. Order is
significant (resize-then-format differs from format-then-resize) so the
digest hashes the steps exactly as supplied. Only the keys *inside* one
step's params mapping are sorted, since they carry no order.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Union

import orjson

from stowage.core.models import Blob
from stowage.errors import UsageError

ORJSON_OPTIONS = orjson.OPT_NON_STR_KEYS | orjson.OPT_SORT_KEYS

VARIANT_PREFIX = "variants"


@dataclass(frozen=True)
class Transformation:
    """One named step, e.g. ``Transformation("resize", "100x100")``."""

    operation: str
    params: Any = None

    def __post_init__(self) -> None:
        if not isinstance(self.operation, str) or not self.operation:
            raise UsageError("transformation operation must be a non-empty string")


TransformationsLike = Union[
    Mapping[str, Any],
    Iterable[Union[Transformation, tuple[str, Any]]],
]


def normalize(transformations: TransformationsLike) -> list[Transformation]:
    """Coerce supported inputs into an ordered list of steps.

    Accepts a list of ``Transformation`` or ``(operation, params)`` pairs,
    or a mapping whose insertion order is the step order.
    """
    items: Iterable[Any]
    if isinstance(transformations, Mapping):
        items = transformations.items()
    else:
        items = transformations

    steps: list[Transformation] = []
    for item in items:
        if isinstance(item, Transformation):
            steps.append(item)
        elif isinstance(item, (tuple, list)) and len(item) == 2:
            steps.append(Transformation(str(item[0]), item[1]))
        else:
            raise UsageError(f"Invalid transformation: {item!r}")
    if not steps:
        raise UsageError("at least one transformation is required")
    return steps


def canonical_bytes(transformations: TransformationsLike) -> bytes:
    payload = [[step.operation, step.params] for step in normalize(transformations)]
    try:
        return orjson.dumps(payload, option=ORJSON_OPTIONS)
    except TypeError as e:
        raise UsageError(f"Transformation params must be JSON-serializable: {e}") from e


def variation_digest(transformations: TransformationsLike) -> str:
    """Return the SHA256 hex digest of an ordered transformation list."""
    return hashlib.sha256(canonical_bytes(transformations)).hexdigest()


def derived_key(blob: Blob, transformations: TransformationsLike) -> str:
    """Return the storage key of a blob's variant."""
    return f"{VARIANT_PREFIX}/{blob.key}/{variation_digest(transformations)}"
