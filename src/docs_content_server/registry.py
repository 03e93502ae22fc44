"""Source registry: the catalog of tenants, versions and storage locations.

A ``SourceRegistry`` is an immutable snapshot built from a validated
descriptor. ``RegistryHolder`` publishes the current snapshot and replaces it
wholesale on hot reload, so readers never observe a half-updated registry.
"""

from collections.abc import Callable, Iterator
from dataclasses import dataclass
import logging
from types import MappingProxyType
from typing import TYPE_CHECKING

from docs_content_server.domain.model import Tenant, Version


if TYPE_CHECKING:
    from docs_content_server.deployment_config import DeploymentConfig


logger = logging.getLogger(__name__)

SwapListener = Callable[["SourceRegistry", "SourceRegistry"], None]


class SourceRegistry:
    """Immutable snapshot of every tenant and version being served.

    Usage:
        registry = SourceRegistry.from_config(DeploymentConfig.from_file(path))
        version = registry.get_version("acme", "v1")
        all_tenants = registry.list_tenants()
    """

    def __init__(self, tenants: list[Tenant] | tuple[Tenant, ...] = ()) -> None:
        by_id: dict[str, Tenant] = {}
        for tenant in tenants:
            if tenant.tenant_id in by_id:
                raise ValueError(f"Duplicate tenant id '{tenant.tenant_id}'")
            version_ids = tenant.version_ids
            if len(version_ids) != len(set(version_ids)):
                raise ValueError(f"Tenant '{tenant.tenant_id}' has duplicate version ids")
            by_id[tenant.tenant_id] = tenant
        self._tenants = MappingProxyType(by_id)

    @classmethod
    def from_config(cls, config: "DeploymentConfig") -> "SourceRegistry":
        tenants = [
            Tenant(
                tenant_id=tenant_config.tenant_id,
                display_name=tenant_config.display_name,
                versions=tuple(
                    Version(
                        version_id=version_config.version_id,
                        display_name=version_config.display_name,
                        storage_location=version_config.storage_location,
                        is_default=version_config.is_default,
                    )
                    for version_config in tenant_config.versions
                ),
            )
            for tenant_config in config.tenants
        ]
        return cls(tenants)

    def list_tenants(self) -> list[Tenant]:
        return list(self._tenants.values())

    def list_tenant_ids(self) -> list[str]:
        return list(self._tenants.keys())

    def get_tenant(self, tenant_id: str) -> Tenant | None:
        return self._tenants.get(tenant_id)

    def get_version(self, tenant_id: str, version_id: str) -> Version | None:
        tenant = self._tenants.get(tenant_id)
        if tenant is None:
            return None
        return tenant.get_version(version_id)

    def list_versions(self, tenant_id: str) -> list[Version] | None:
        tenant = self._tenants.get(tenant_id)
        if tenant is None:
            return None
        return list(tenant.versions)

    def scopes_for_location(self, storage_location: str) -> list[tuple[str, str]]:
        """Return every (tenant, version) pair served from ``storage_location``."""
        return [
            (tenant.tenant_id, version.version_id)
            for tenant in self._tenants.values()
            for version in tenant.versions
            if version.storage_location == storage_location
        ]

    def iter_scopes(self) -> Iterator[tuple[str, str, str]]:
        """Yield ``(tenant_id, version_id, storage_location)`` for every version."""
        for tenant in self._tenants.values():
            for version in tenant.versions:
                yield tenant.tenant_id, version.version_id, version.storage_location

    def version_count(self) -> int:
        return sum(len(tenant.versions) for tenant in self._tenants.values())

    def __len__(self) -> int:
        return len(self._tenants)

    def __contains__(self, tenant_id: object) -> bool:
        return tenant_id in self._tenants


@dataclass(frozen=True)
class RegistryDiff:
    """Scopes that disappeared or moved between two registry snapshots."""

    removed: tuple[tuple[str, str], ...]
    relocated: tuple[tuple[str, str], ...]
    added: tuple[tuple[str, str], ...]

    @property
    def stale(self) -> tuple[tuple[str, str], ...]:
        return self.removed + self.relocated

    @classmethod
    def between(cls, old: SourceRegistry, new: SourceRegistry) -> "RegistryDiff":
        old_scopes = {(t, v): loc for t, v, loc in old.iter_scopes()}
        new_scopes = {(t, v): loc for t, v, loc in new.iter_scopes()}
        removed = tuple(sorted(scope for scope in old_scopes if scope not in new_scopes))
        relocated = tuple(
            sorted(scope for scope, loc in old_scopes.items() if scope in new_scopes and new_scopes[scope] != loc)
        )
        added = tuple(sorted(scope for scope in new_scopes if scope not in old_scopes))
        return cls(removed=removed, relocated=relocated, added=added)


class RegistryHolder:
    """Publishes the current registry snapshot; swaps are a single reference assignment."""

    def __init__(self, registry: SourceRegistry) -> None:
        self._current = registry
        self._listeners: list[SwapListener] = []

    @property
    def current(self) -> SourceRegistry:
        return self._current

    def add_swap_listener(self, listener: SwapListener) -> None:
        self._listeners.append(listener)

    def swap(self, registry: SourceRegistry) -> SourceRegistry:
        """Replace the published registry and notify listeners with ``(old, new)``."""
        previous = self._current
        self._current = registry
        logger.info(
            "Registry swapped: %d tenants / %d versions (was %d / %d)",
            len(registry),
            registry.version_count(),
            len(previous),
            previous.version_count(),
        )
        for listener in list(self._listeners):
            listener(previous, registry)
        return previous
