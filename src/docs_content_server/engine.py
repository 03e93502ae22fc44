"""Content engine: the single entry point the HTTP layer talks to.

Wires registry, resolver, loader, navigation and search together, owns the
change notifier and cache sweeper, and applies registry hot reloads.

Data flow per request:
    registry -> version resolver -> content store -> document loader
    -> {navigation builder, search scoper, renderer}
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
import logging
from pathlib import Path
import time
from typing import Any

from docs_content_server.adapters.content_store import AbstractContentStore, FileSystemContentStore, RetryPolicy
from docs_content_server.deployment_config import DeploymentConfig, normalize_storage_location
from docs_content_server.domain.errors import RegistryConfigError, TenantNotFoundError
from docs_content_server.domain.model import Document, NavigationNode, SearchHit, Version
from docs_content_server.observability.context import bind_scope
from docs_content_server.observability.metrics import REGISTRY_RELOADS
from docs_content_server.observability.tracing import create_span
from docs_content_server.registry import RegistryDiff, RegistryHolder, SourceRegistry
from docs_content_server.rendering import ContentRenderer, PassthroughRenderer
from docs_content_server.services.cache_sweeper import CacheSweeper
from docs_content_server.services.change_notifier import ChangeEvent, LocalChangeNotifier
from docs_content_server.services.document_loader import DocumentLoader
from docs_content_server.services.navigation_builder import NavigationBuilder
from docs_content_server.services.search_scoper import SearchScoper
from docs_content_server.services.version_resolver import VersionResolver


logger = logging.getLogger(__name__)


class ContentEngine:
    """Multi-tenant, versioned content resolution.

    Usage:
        engine = ContentEngine.from_file(Path("deployment.json"))
        version, document = await engine.get_content("acme", "guide/intro")
        version, hits = await engine.search("acme", "install", version="v2")
    """

    def __init__(
        self,
        config: DeploymentConfig,
        *,
        store: AbstractContentStore | None = None,
        descriptor_path: Path | None = None,
        renderer: ContentRenderer | None = None,
        component_registry: Mapping[str, Any] | None = None,
        notifier: LocalChangeNotifier | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.descriptor_path = descriptor_path
        infra = config.infrastructure

        self.registry_holder = RegistryHolder(SourceRegistry.from_config(config))
        self.store = store or FileSystemContentStore(
            infra.storage.extensions, RetryPolicy.from_config(infra.storage)
        )
        self.resolver = VersionResolver(self.registry_holder, infra.version_ordering)
        self.loader = DocumentLoader.from_config(self.registry_holder, self.store, infra.cache, clock=clock)
        self.navigation = NavigationBuilder(
            self.registry_holder,
            self.store,
            self.loader,
            ttl_seconds=infra.cache.navigation_ttl_seconds,
            max_concurrency=infra.storage.max_concurrent_reads,
            clock=clock,
        )
        self.search_scoper = SearchScoper.from_config(
            self.registry_holder,
            self.store,
            self.loader,
            infra.search,
            max_concurrency=infra.storage.max_concurrent_reads,
            ttl_seconds=infra.cache.search_ttl_seconds,
            clock=clock,
        )
        self.renderer = renderer or PassthroughRenderer()
        self.component_registry: Mapping[str, Any] = component_registry or {}

        self.notifier = notifier or LocalChangeNotifier()
        self.loader.subscribe_to(self.notifier)
        self.registry_holder.add_swap_listener(self._evict_orphaned_scopes)

        self.sweeper = CacheSweeper(
            [self.loader.purge_expired, self.navigation.purge_expired, self.search_scoper.purge_expired],
            interval_seconds=infra.cache.sweep_interval_seconds,
        )

    @classmethod
    def from_file(cls, path: Path, **kwargs: Any) -> ContentEngine:
        """Load and validate a descriptor file, then build the engine.

        Raises:
            RegistryConfigError: If the descriptor is missing or invalid
        """
        config = DeploymentConfig.from_file(path)
        return cls(config, descriptor_path=path, **kwargs)

    @property
    def registry(self) -> SourceRegistry:
        return self.registry_holder.current

    # -- lifecycle -------------------------------------------------------------------

    async def start(self) -> None:
        self.sweeper.start()

    async def shutdown(self) -> None:
        await self.sweeper.stop()

    # -- queries ---------------------------------------------------------------------

    def list_tenants(self) -> list[dict[str, Any]]:
        """Summaries of every tenant with its versions and resolved default."""
        summaries = []
        for tenant in self.registry.list_tenants():
            default = self.resolver.resolve(tenant.tenant_id)
            summaries.append(
                {
                    "tenantId": tenant.tenant_id,
                    "displayName": tenant.display_name,
                    "defaultVersion": default.version_id,
                    "versions": [version.as_summary() for version in tenant.versions],
                }
            )
        return summaries

    def list_versions(self, tenant_id: str) -> list[Version]:
        versions = self.registry.list_versions(tenant_id)
        if versions is None:
            raise TenantNotFoundError(tenant_id)
        return versions

    def resolve_version(self, tenant_id: str, version_id: str | None = None) -> Version:
        return self.resolver.resolve(tenant_id, version_id)

    async def get_content(self, tenant_id: str, slug: str, version: str | None = None) -> tuple[Version, Document]:
        with create_span("content.get", attributes={"tenant.id": tenant_id, "document.slug": slug}):
            resolved = self.resolver.resolve(tenant_id, version)
            bind_scope(tenant_id, resolved.version_id)
            document = await self.loader.get_document(tenant_id, resolved.version_id, slug)
            return resolved, document

    async def get_navigation(self, tenant_id: str, version: str | None = None) -> tuple[Version, NavigationNode]:
        with create_span("navigation.get", attributes={"tenant.id": tenant_id}):
            resolved = self.resolver.resolve(tenant_id, version)
            bind_scope(tenant_id, resolved.version_id)
            root = await self.navigation.get_navigation(tenant_id, resolved.version_id)
            return resolved, root

    async def search(
        self,
        tenant_id: str,
        query: str,
        version: str | None = None,
        limit: int = 20,
    ) -> tuple[Version, list[SearchHit]]:
        with create_span("search.query", attributes={"tenant.id": tenant_id}):
            resolved = self.resolver.resolve(tenant_id, version)
            bind_scope(tenant_id, resolved.version_id)
            hits = await self.search_scoper.rank(tenant_id, resolved.version_id, query, limit)
            return resolved, hits

    def render(self, document: Document) -> str:
        return self.renderer.render(document.body, self.component_registry)

    # -- mutations -------------------------------------------------------------------

    def reload_registry(self, path: Path | None = None) -> dict[str, Any]:
        """Re-read the descriptor and swap the registry if it validates.

        On failure the current registry stays live.

        Raises:
            RegistryConfigError: If no descriptor path is known or it is invalid
        """
        descriptor = path or self.descriptor_path
        if descriptor is None:
            raise RegistryConfigError("No registry descriptor path configured for reload")

        try:
            config = DeploymentConfig.from_file(descriptor)
        except RegistryConfigError:
            REGISTRY_RELOADS.labels(status="rejected").inc()
            logger.error("Registry reload from %s rejected; keeping current registry", descriptor)
            raise

        if config.infrastructure != self.config.infrastructure:
            logger.warning("Registry reload ignores infrastructure changes; restart to apply them")

        previous = self.registry_holder.current
        new_registry = SourceRegistry.from_config(config)
        diff = RegistryDiff.between(previous, new_registry)
        self.registry_holder.swap(new_registry)
        self.config = config.model_copy(update={"infrastructure": self.config.infrastructure})
        self.descriptor_path = descriptor
        REGISTRY_RELOADS.labels(status="applied").inc()
        return {
            "tenants": len(new_registry),
            "versions": new_registry.version_count(),
            "added": [f"{t}/{v}" for t, v in diff.added],
            "removed": [f"{t}/{v}" for t, v in diff.removed],
            "relocated": [f"{t}/{v}" for t, v in diff.relocated],
        }

    def _evict_orphaned_scopes(self, old: SourceRegistry, new: SourceRegistry) -> None:
        stale = RegistryDiff.between(old, new).stale
        if not stale:
            return
        # Evict through the loader so navigation and search drop their views too
        self.loader.evict_scopes(stale)
        logger.info("Evicted cached state for %d orphaned scope(s): %s", len(stale), stale)

    def notify_change(self, storage_location: str, slug: str | None = None) -> int:
        """Publish a storage change; returns the number of subscribers notified.

        Raises:
            ValueError: If ``storage_location`` is not a well-formed location
        """
        base_dir = self.descriptor_path.resolve().parent if self.descriptor_path else None
        location = normalize_storage_location(storage_location, base_dir)
        return self.notifier.publish(ChangeEvent(storage_location=location, slug=slug))

    def invalidate(self, tenant_id: str, version_id: str | None = None, slug: str | None = None) -> int:
        if self.registry.get_tenant(tenant_id) is None:
            raise TenantNotFoundError(tenant_id)
        if version_id is not None:
            self.resolver.resolve(tenant_id, version_id)
        return self.loader.invalidate(tenant_id, version_id, slug)

    def purge_expired(self) -> int:
        return self.sweeper.sweep_once()

    # -- status ----------------------------------------------------------------------

    def health(self) -> dict[str, Any]:
        registry = self.registry
        return {
            "status": "healthy",
            "registry": {"tenants": len(registry), "versions": registry.version_count()},
            "caches": {
                "documents": self.loader.stats(),
                "navigationTrees": len(self.navigation.cached_scopes()),
                "searchIndexes": len(self.search_scoper.indexed_scopes()),
            },
            "sweeper": {"running": self.sweeper.running, "sweeps": self.sweeper.sweeps},
        }
