"""Registry mapping logical service names to storage backends.

Several backends can be configured side by side (e.g. "local" and
"s3-prod"); blobs record the name of the one holding their bytes.

Example:
    registry = ServiceRegistry.from_configs(settings.services, settings.default_service)
    service = registry.get(blob.service_name)

    # Swap in a new configuration; the old one stays if validation fails
    registry.reload(new_settings.services, new_settings.default_service)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from types import MappingProxyType
from typing import Mapping

from stowage.config import ServiceConfig
from stowage.errors import ConfigurationError
from stowage.storage.base import StorageService
from stowage.storage.factory import create_service

logger = logging.getLogger(__name__)


class ServiceRegistry:
    """Named storage backends plus the default service name."""

    def __init__(self, services: Mapping[str, StorageService], default: str):
        self._state = self._validated(services, default)

    @staticmethod
    def _validated(
        services: Mapping[str, StorageService], default: str
    ) -> tuple[Mapping[str, StorageService], str]:
        if not services:
            raise ConfigurationError("services", "at least one storage service is required")
        if default not in services:
            raise ConfigurationError(
                "default_service", f"default service {default!r} is not registered"
            )
        return MappingProxyType(dict(services)), default

    @classmethod
    def from_configs(cls, configs: Iterable[ServiceConfig], default: str) -> "ServiceRegistry":
        return cls(cls._build(configs), default)

    @staticmethod
    def _build(configs: Iterable[ServiceConfig]) -> dict[str, StorageService]:
        services: dict[str, StorageService] = {}
        for config in configs:
            if config.name in services:
                raise ConfigurationError("name", f"duplicate service name {config.name!r}")
            services[config.name] = create_service(config)
        return services

    @property
    def names(self) -> list[str]:
        return sorted(self._state[0])

    @property
    def default_name(self) -> str:
        return self._state[1]

    @property
    def default(self) -> StorageService:
        services, default = self._state
        return services[default]

    def get(self, name: str) -> StorageService:
        """Return the service registered under name.

        Raises:
            ConfigurationError: If no such service is registered
        """
        services = self._state[0]
        try:
            return services[name]
        except KeyError:
            raise ConfigurationError(
                "service_name", f"storage service {name!r} is not registered"
            ) from None

    def __contains__(self, name: object) -> bool:
        return name in self._state[0]

    def resolve_name(self, name: str | None) -> str:
        """Return name if registered, or the default when name is None."""
        if name is None:
            return self.default_name
        self.get(name)
        return name

    def reload(self, configs: Iterable[ServiceConfig], default: str) -> None:
        """Rebuild every backend from configs and swap them in at once.

        Construction errors propagate and leave the current services untouched.
        """
        new_state = self._validated(self._build(configs), default)
        self._state = new_state
        logger.info(f"Storage services reloaded: {', '.join(sorted(new_state[0]))}")

    async def close(self) -> None:
        for service in self._state[0].values():
            await service.close()
