"""Polymorphic owner references.

An attachment owner is identified by an explicit kind tag plus an opaque id.
Kinds are registered up front with a lookup coroutine that loads the owning
entity; nothing here inspects Python types at runtime.

Example:
    owners = OwnerRegistry()
    owners.register("user", load_user)

    owner = owners.ref("user", user.id)
    entity = await owners.resolve(owner)
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from stowage.errors import NotFoundError, UsageError

OwnerLookup = Callable[[str], Awaitable[Any]]


@dataclass(frozen=True)
class OwnerRef:
    """Reference to an owning entity: kind tag and opaque id."""

    owner_type: str
    owner_id: str

    def __post_init__(self) -> None:
        if not self.owner_type:
            raise UsageError("owner_type must not be empty")
        if not self.owner_id:
            raise UsageError("owner_id must not be empty")

    def __str__(self) -> str:
        return f"{self.owner_type}:{self.owner_id}"


class OwnerRegistry:
    """Maps owner-kind tags to lookup functions."""

    def __init__(self) -> None:
        self._lookups: dict[str, OwnerLookup] = {}

    @property
    def kinds(self) -> list[str]:
        return sorted(self._lookups)

    def register(self, owner_type: str, lookup: OwnerLookup) -> None:
        if owner_type in self._lookups:
            raise UsageError(f"Owner kind already registered: {owner_type}")
        self._lookups[owner_type] = lookup

    def is_registered(self, owner_type: str) -> bool:
        return owner_type in self._lookups

    def ref(self, owner_type: str, owner_id: Any) -> OwnerRef:
        """Build a reference for a registered kind."""
        if owner_type not in self._lookups:
            raise UsageError(f"Unknown owner kind: {owner_type}")
        return OwnerRef(owner_type=owner_type, owner_id=str(owner_id))

    async def resolve(self, owner: OwnerRef) -> Any:
        """Load the entity behind a reference.

        Raises:
            UsageError: kind is not registered
            NotFoundError: lookup returned None
        """
        lookup = self._lookups.get(owner.owner_type)
        if lookup is None:
            raise UsageError(f"Unknown owner kind: {owner.owner_type}")
        entity = await lookup(owner.owner_id)
        if entity is None:
            raise NotFoundError(str(owner))
        return entity
