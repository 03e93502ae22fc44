"""Navigation builder: one immutable, ordered tree per (tenant, version).

Ordering comes from typed directory ``meta`` sidecars and document front
matter, never from storage iteration order:

1. Nodes with an explicit order sort first, ascending.
2. Ties and nodes without an order sort by case-insensitive title.
3. Slug breaks any remaining tie.

Trees are built lazily, cached per scope, and replaced wholesale. A scope's
tree is dropped when the document loader reports an invalidation for it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
import logging
import time
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
import yaml

from docs_content_server.domain.errors import TenantNotFoundError, VersionNotFoundError
from docs_content_server.domain.model import Document, NavigationNode
from docs_content_server.observability.metrics import NAVIGATION_BUILDS
from docs_content_server.observability.tracing import create_span
from docs_content_server.utils.single_flight import SingleFlight
from docs_content_server.utils.slugs import humanize, leaf_name, parent_directory


if TYPE_CHECKING:
    from docs_content_server.adapters.content_store import AbstractContentStore
    from docs_content_server.registry import RegistryHolder
    from docs_content_server.services.document_loader import DocumentEvent, DocumentLoader


logger = logging.getLogger(__name__)

Scope = tuple[str, str]


class PageMeta(BaseModel):
    """Per-entry overrides listed under a directory's ``pages``."""

    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    order: int | None = None


class DirectoryMeta(BaseModel):
    """Typed contents of a directory ``meta`` sidecar.

    Example (YAML):
        title: Guides
        order: 2
        pages:
          intro: {title: Introduction, order: 1}
          advanced: Advanced Topics
    """

    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    order: int | None = None
    pages: dict[str, PageMeta] = Field(default_factory=dict)

    @field_validator("pages", mode="before")
    @classmethod
    def _expand_title_shorthand(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        return {name: {"title": entry} if isinstance(entry, str) else entry for name, entry in value.items()}

    def page(self, name: str) -> PageMeta | None:
        return self.pages.get(name)


def parse_directory_meta(raw: bytes, *, source: str = "meta") -> DirectoryMeta | None:
    """Parse a JSON or YAML sidecar; malformed sidecars are logged and ignored."""
    try:
        data = yaml.safe_load(raw.decode("utf-8-sig"))
    except (UnicodeDecodeError, yaml.YAMLError) as exc:
        logger.warning("Ignoring unreadable directory meta %s: %s", source, exc)
        return None
    if data is None:
        return DirectoryMeta()
    if not isinstance(data, dict):
        logger.warning("Ignoring directory meta %s: expected a mapping, got %s", source, type(data).__name__)
        return None
    try:
        return DirectoryMeta.model_validate(data)
    except ValidationError as exc:
        logger.warning("Ignoring invalid directory meta %s: %s", source, exc)
        return None


@dataclass
class _Entry:
    """Mutable scratch record used while assembling one directory level."""

    slug: str
    title: str
    order: int | None
    is_document: bool
    children: tuple[NavigationNode, ...] = ()

    def sort_key(self) -> tuple:
        if self.order is None:
            return (1, 0, self.title.casefold(), self.slug)
        return (0, self.order, self.title.casefold(), self.slug)


def sort_entries(entries: list[_Entry]) -> tuple[NavigationNode, ...]:
    ordered = sorted(entries, key=_Entry.sort_key)
    return tuple(
        NavigationNode(
            slug=entry.slug,
            title=entry.title,
            order=position,
            is_document=entry.is_document,
            children=entry.children,
        )
        for position, entry in enumerate(ordered)
    )


def assemble_tree(
    root_title: str,
    slugs: list[str],
    documents: dict[str, Document | None],
    metas: dict[str, DirectoryMeta],
) -> NavigationNode:
    """Group ``slugs`` by path hierarchy into an ordered tree.

    ``documents`` maps slugs to parsed documents (None when the document could
    not be parsed); ``metas`` maps directory paths (``""`` for the root) to
    their sidecars. Every slug becomes exactly one document node.
    """
    slug_set = set(slugs)
    directories: set[str] = {""}
    for slug in slugs:
        directory = parent_directory(slug)
        while directory and directory not in directories:
            directories.add(directory)
            directory = parent_directory(directory)

    children_of: dict[str, list[str]] = {directory: [] for directory in directories}
    for path in slug_set | (directories - {""}):
        children_of[parent_directory(path)].append(path)

    def build_entry(path: str) -> _Entry:
        name = leaf_name(path)
        parent_meta = metas.get(parent_directory(path))
        page = parent_meta.page(name) if parent_meta else None
        own_meta = metas.get(path) if path in directories else None
        document = documents.get(path)

        title = (page.title if page else None) or (own_meta.title if own_meta else None)
        if not title:
            title = document.title if document is not None else humanize(name)

        order = page.order if page and page.order is not None else None
        if order is None and own_meta is not None:
            order = own_meta.order
        if order is None and document is not None:
            order = document.order_hint

        children: tuple[NavigationNode, ...] = ()
        if path in directories:
            children = sort_entries([build_entry(child) for child in children_of[path]])

        return _Entry(slug=path, title=title, order=order, is_document=path in slug_set, children=children)

    root_meta = metas.get("")
    return NavigationNode(
        slug="",
        title=(root_meta.title if root_meta and root_meta.title else root_title),
        order=0,
        is_document=False,
        children=sort_entries([build_entry(child) for child in children_of[""]]),
    )


@dataclass(frozen=True)
class _CachedTree:
    root: NavigationNode
    expires_at: float


class NavigationBuilder:
    """Builds and caches navigation trees.

    The tree map is never mutated in place: every update publishes a new dict,
    so a reader holding the previous map keeps a consistent view.
    """

    def __init__(
        self,
        registry_holder: RegistryHolder,
        store: AbstractContentStore,
        loader: DocumentLoader,
        *,
        ttl_seconds: float = 300.0,
        max_concurrency: int = 16,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry_holder = registry_holder
        self.store = store
        self.loader = loader
        self.ttl_seconds = ttl_seconds
        self.max_concurrency = max_concurrency
        self._clock = clock
        self._trees: dict[Scope, _CachedTree] = {}
        self._flight: SingleFlight[tuple[Scope, tuple[int, int]], NavigationNode] = SingleFlight("navigation")
        # Per-scope generations; clear() moves the epoch for every scope at once
        self._epoch = 0
        self._generations: dict[Scope, int] = {}
        loader.add_listener(self._on_document_event)

    async def get_navigation(self, tenant_id: str, version_id: str) -> NavigationNode:
        """Return the root navigation node for one (tenant, version).

        Raises:
            TenantNotFoundError, VersionNotFoundError: If the scope is not registered
            StorageUnavailableError: If listing or reading storage keeps failing
        """
        registry = self._registry_holder.current
        tenant = registry.get_tenant(tenant_id)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)
        version = tenant.get_version(version_id)
        if version is None:
            raise VersionNotFoundError(tenant_id, version_id)

        scope = (tenant_id, version_id)
        cached = self._trees.get(scope)
        if cached is not None and cached.expires_at > self._clock():
            return cached.root

        root_title = f"{tenant.display_name} {version.display_name}"
        return await self._flight.do(
            (scope, self._generation_of(scope)),
            lambda: self._build(scope, version.storage_location, root_title),
        )

    def _generation_of(self, scope: Scope) -> tuple[int, int]:
        return (self._epoch, self._generations.get(scope, 0))

    async def _build(self, scope: Scope, storage_location: str, root_title: str) -> NavigationNode:
        tenant_id, version_id = scope
        generation = self._generation_of(scope)
        with create_span("navigation.build", attributes={"tenant.id": tenant_id, "version.id": version_id}):
            slugs = await self.store.list_slugs(storage_location)
            loaded = await self.loader.get_documents(
                tenant_id, version_id, slugs, max_concurrency=self.max_concurrency
            )
            documents: dict[str, Document | None] = {}
            for slug, result in loaded.items():
                if isinstance(result, Document):
                    documents[slug] = result
                else:
                    logger.warning(
                        "Navigation for %s/%s lists %s without metadata: %s", tenant_id, version_id, slug, result
                    )
                    documents[slug] = None

            metas = await self._load_metas(storage_location, slugs)
            root = assemble_tree(root_title, slugs, documents, metas)

        NAVIGATION_BUILDS.labels(tenant=tenant_id).inc()
        still_registered = self._registry_holder.current.get_version(tenant_id, version_id) is not None
        if generation == self._generation_of(scope) and still_registered:
            entry = _CachedTree(root=root, expires_at=self._clock() + self.ttl_seconds)
            self._trees = {**self._trees, scope: entry}
        logger.debug("Built navigation for %s/%s with %d documents", tenant_id, version_id, len(slugs))
        return root

    async def _load_metas(self, storage_location: str, slugs: list[str]) -> dict[str, DirectoryMeta]:
        directories = {""}
        for slug in slugs:
            directory = parent_directory(slug)
            while directory:
                directories.add(directory)
                directory = parent_directory(directory)

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def read_one(directory: str) -> tuple[str, DirectoryMeta | None]:
            async with semaphore:
                raw = await self.store.read_meta(storage_location, directory)
            if raw is None:
                return directory, None
            return directory, parse_directory_meta(raw, source=f"{storage_location}/{directory or '.'}")

        results = await asyncio.gather(*(read_one(directory) for directory in sorted(directories)))
        return {directory: meta for directory, meta in results if meta is not None}

    def _on_document_event(self, event: DocumentEvent) -> None:
        if event.kind == "invalidated":
            self.invalidate(event.tenant_id, event.version_id)

    def invalidate(self, tenant_id: str, version_id: str | None = None) -> int:
        """Drop cached trees for a tenant (or one of its versions)."""
        if version_id is not None:
            versions = {version_id}
        else:
            tenant = self._registry_holder.current.get_tenant(tenant_id)
            versions = set(tenant.version_ids) if tenant else set()
            versions.update(version for owner, version in [*self._trees, *self._generations] if owner == tenant_id)
        for version in versions:
            self._generations[(tenant_id, version)] = self._generations.get((tenant_id, version), 0) + 1

        remaining = {
            scope: tree
            for scope, tree in self._trees.items()
            if not (scope[0] == tenant_id and (version_id is None or scope[1] == version_id))
        }
        dropped = len(self._trees) - len(remaining)
        self._trees = remaining
        return dropped

    def purge_expired(self) -> int:
        now = self._clock()
        remaining = {scope: tree for scope, tree in self._trees.items() if tree.expires_at > now}
        purged = len(self._trees) - len(remaining)
        if purged:
            self._trees = remaining
        return purged

    def clear(self) -> None:
        self._epoch += 1
        self._trees = {}

    def cached_scopes(self) -> list[Scope]:
        return sorted(self._trees)
