"""Document loader: storage bytes to normalized, cached Documents.

Responsibilities:
- Resolve (tenant, version) to a storage location through the registry
- Parse front matter strictly and derive title and ordering hints
- Cache documents (bounded LRU + TTL) and parse failures (short negative TTL)
- Coalesce concurrent misses for one key into one storage read
- Evict on change notifications and tell listeners what was loaded or evicted
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass
import logging
import re
import time
from typing import TYPE_CHECKING, Literal

from docs_content_server.domain.errors import (
    DocumentParseError,
    SlugNotFoundError,
    TenantNotFoundError,
    VersionNotFoundError,
)
from docs_content_server.domain.model import Document, Version
from docs_content_server.observability.metrics import (
    CACHED_DOCUMENTS,
    DOCUMENT_CACHE_EVENTS,
    DOCUMENT_LOAD_LATENCY,
    track_latency,
)
from docs_content_server.observability.tracing import create_span
from docs_content_server.utils.front_matter import FrontMatterError, extract_order_hint, parse_front_matter
from docs_content_server.utils.single_flight import SingleFlight
from docs_content_server.utils.slugs import humanize, leaf_name, normalize_slug
from docs_content_server.utils.ttl_cache import TTLCache


if TYPE_CHECKING:
    from docs_content_server.adapters.content_store import AbstractContentStore
    from docs_content_server.deployment_config import CacheConfig
    from docs_content_server.registry import RegistryHolder
    from docs_content_server.services.change_notifier import ChangeEvent, ChangeNotifier


logger = logging.getLogger(__name__)

DocumentKey = tuple[str, str, str]
Scope = tuple[str, str]
Generation = tuple[int, int]
CachedResult = Document | DocumentParseError

_HEADING = re.compile(r"^\s{0,3}#{1,6}[ \t]+(.+?)[ \t]*#*[ \t]*$", re.MULTILINE)


@dataclass(frozen=True)
class DocumentEvent:
    """Notification sent to loader listeners.

    ``loaded`` carries the freshly parsed document. ``invalidated`` names the
    evicted slug, or the whole (tenant, version) scope when ``slug`` is None.
    """

    kind: Literal["loaded", "invalidated"]
    tenant_id: str
    version_id: str
    slug: str | None = None
    document: Document | None = None

    @property
    def scope(self) -> tuple[str, str]:
        return (self.tenant_id, self.version_id)


DocumentListener = Callable[[DocumentEvent], None]


def derive_title(frontmatter: dict, body: str, slug: str) -> str:
    """Front matter ``title``, else the first Markdown heading, else the humanized slug leaf."""
    title = frontmatter.get("title")
    if title is not None and str(title).strip():
        return str(title).strip()
    heading = _HEADING.search(body)
    if heading:
        return heading.group(1).strip()
    return humanize(leaf_name(slug))


def parse_document(tenant_id: str, version_id: str, slug: str, data: bytes) -> Document:
    """Decode and parse raw document bytes.

    Raises:
        DocumentParseError: On invalid UTF-8, malformed front matter, or a
            non-integer ordering hint
    """
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise DocumentParseError(
            tenant_id, version_id, slug, f"invalid UTF-8 at byte {exc.start}: {exc.reason}"
        ) from exc

    try:
        frontmatter, body = parse_front_matter(text)
        order_hint = extract_order_hint(frontmatter)
    except FrontMatterError as exc:
        raise DocumentParseError(tenant_id, version_id, slug, str(exc)) from exc

    return Document(
        tenant_id=tenant_id,
        version_id=version_id,
        slug=slug,
        title=derive_title(frontmatter, body, slug),
        frontmatter=frontmatter,
        body=body,
        order_hint=order_hint,
    )


class DocumentLoader:
    """Loads documents for a (tenant, version, slug) with caching and coalescing.

    Usage:
        loader = DocumentLoader(registry_holder, store)
        document = await loader.get_document("acme", "v2", "guide/intro")
    """

    def __init__(
        self,
        registry_holder: RegistryHolder,
        store: AbstractContentStore,
        *,
        max_entries: int = 2048,
        ttl_seconds: float = 300.0,
        negative_ttl_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry_holder = registry_holder
        self.store = store
        self.negative_ttl_seconds = negative_ttl_seconds
        self._cache: TTLCache[DocumentKey, CachedResult] = TTLCache(max_entries, ttl_seconds, clock=clock)
        self._flight: SingleFlight[tuple[DocumentKey, Generation], Document] = SingleFlight("document-loader")
        self._listeners: list[DocumentListener] = []
        # A scope's generation moves on every eviction touching it, so an
        # in-flight load never repopulates evicted state; clear() moves the epoch
        self._epoch = 0
        self._generations: dict[Scope, int] = {}
        self._unsubscribe: Callable[[], None] | None = None

    @classmethod
    def from_config(
        cls,
        registry_holder: RegistryHolder,
        store: AbstractContentStore,
        cache_config: CacheConfig,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> DocumentLoader:
        return cls(
            registry_holder,
            store,
            max_entries=cache_config.max_entries,
            ttl_seconds=cache_config.document_ttl_seconds,
            negative_ttl_seconds=cache_config.negative_ttl_seconds,
            clock=clock,
        )

    # -- listeners and notifications -------------------------------------------------

    def add_listener(self, listener: DocumentListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def subscribe_to(self, notifier: ChangeNotifier) -> None:
        """Evict cached state whenever ``notifier`` reports a storage change."""
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._unsubscribe = notifier.subscribe(self._on_change)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_change(self, event: ChangeEvent) -> None:
        self.invalidate_location(event.storage_location, event.slug)

    def _emit(self, event: DocumentEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Document listener failed for %s event on %s", event.kind, event.scope)

    # -- reads -----------------------------------------------------------------------

    def _resolve_scope(self, tenant_id: str, version_id: str) -> Version:
        registry = self._registry_holder.current
        if registry.get_tenant(tenant_id) is None:
            raise TenantNotFoundError(tenant_id)
        version = registry.get_version(tenant_id, version_id)
        if version is None:
            raise VersionNotFoundError(tenant_id, version_id)
        return version

    async def get_document(self, tenant_id: str, version_id: str, slug: str) -> Document:
        """Return the normalized document for ``slug`` in one (tenant, version).

        Raises:
            TenantNotFoundError, VersionNotFoundError: If the scope is not registered
            SlugNotFoundError: If no document exists at ``slug`` (never cached)
            DocumentParseError: If the stored document is malformed (negative-cached)
            StorageUnavailableError: If storage keeps failing (never cached)
        """
        version = self._resolve_scope(tenant_id, version_id)
        try:
            normalized = normalize_slug(slug)
        except ValueError:
            raise SlugNotFoundError(tenant_id, version_id, slug) from None

        key = (tenant_id, version_id, normalized)
        cached = self._cache.get(key)
        if isinstance(cached, DocumentParseError):
            DOCUMENT_CACHE_EVENTS.labels(outcome="negative_hit").inc()
            # Fresh instance per hit; the cached one keeps no traceback or context
            raise DocumentParseError(tenant_id, version_id, normalized, cached.reason) from None
        if cached is not None:
            DOCUMENT_CACHE_EVENTS.labels(outcome="hit").inc()
            return cached

        DOCUMENT_CACHE_EVENTS.labels(outcome="miss").inc()
        generation = self.generation_of(tenant_id, version_id)
        return await self._flight.do((key, generation), lambda: self._load(key, version.storage_location))

    def generation_of(self, tenant_id: str, version_id: str) -> Generation:
        return (self._epoch, self._generations.get((tenant_id, version_id), 0))

    async def _load(self, key: DocumentKey, storage_location: str) -> Document:
        tenant_id, version_id, slug = key
        generation = self.generation_of(tenant_id, version_id)
        with (
            create_span(
                "document.load",
                attributes={"tenant.id": tenant_id, "version.id": version_id, "document.slug": slug},
            ),
            track_latency(DOCUMENT_LOAD_LATENCY, tenant=tenant_id),
        ):
            raw = await self.store.read(storage_location, slug)
            if raw is None:
                raise SlugNotFoundError(tenant_id, version_id, slug)

            try:
                document = parse_document(tenant_id, version_id, slug, raw.data)
            except DocumentParseError as exc:
                logger.warning("Document %s/%s/%s failed to parse: %s", tenant_id, version_id, slug, exc.reason)
                if generation == self.generation_of(tenant_id, version_id):
                    failure = DocumentParseError(tenant_id, version_id, slug, exc.reason)
                    self._cache.set(key, failure, ttl=self.negative_ttl_seconds)
                    self._report_size()
                raise

        if generation == self.generation_of(tenant_id, version_id):
            self._cache.set(key, document)
            self._report_size()
            self._emit(DocumentEvent("loaded", tenant_id, version_id, slug, document))
        else:
            logger.debug("Discarded load of %s/%s/%s invalidated mid-flight", tenant_id, version_id, slug)
        return document

    async def get_documents(
        self,
        tenant_id: str,
        version_id: str,
        slugs: Iterable[str],
        *,
        max_concurrency: int = 16,
    ) -> dict[str, Document | DocumentParseError | SlugNotFoundError]:
        """Load many slugs of one scope with bounded concurrency.

        Parse failures and slugs deleted since listing come back as error
        values; ``StorageUnavailableError`` propagates.
        """
        semaphore = asyncio.Semaphore(max_concurrency)

        async def load_one(slug: str) -> tuple[str, Document | DocumentParseError | SlugNotFoundError]:
            async with semaphore:
                try:
                    return slug, await self.get_document(tenant_id, version_id, slug)
                except (DocumentParseError, SlugNotFoundError) as exc:
                    return slug, exc

        results = await asyncio.gather(*(load_one(slug) for slug in slugs))
        return dict(results)

    # -- eviction --------------------------------------------------------------------

    def invalidate(self, tenant_id: str, version_id: str | None = None, slug: str | None = None) -> int:
        """Evict cached entries for a tenant, one of its versions, or one slug.

        Returns the number of cache entries removed. Listeners are told about
        every affected scope even when nothing was cached, since derived views
        may outlive the documents they were built from.
        """
        if slug is not None:
            try:
                slug = normalize_slug(slug)
            except ValueError:
                logger.warning("Ignoring invalid slug %r in invalidation; evicting the whole scope", slug)
                slug = None

        def matches(key: DocumentKey) -> bool:
            return (
                key[0] == tenant_id
                and (version_id is None or key[1] == version_id)
                and (slug is None or key[2] == slug)
            )

        removed = self._cache.remove_where(matches)
        self._report_size()

        if version_id is not None:
            scopes = {version_id}
        else:
            tenant = self._registry_holder.current.get_tenant(tenant_id)
            scopes = set(tenant.version_ids) if tenant else set()
            scopes.update(key[1] for key in removed)
            scopes.update(version for owner, version in self._generations if owner == tenant_id)

        for scope_version in scopes:
            scope = (tenant_id, scope_version)
            self._generations[scope] = self._generations.get(scope, 0) + 1

        for scope_version in sorted(scopes):
            self._emit(DocumentEvent("invalidated", tenant_id, scope_version, slug))

        if removed:
            logger.debug(
                "Invalidated %d cached document(s) for %s/%s/%s", len(removed), tenant_id, version_id or "*", slug or "*"
            )
        return len(removed)

    def invalidate_location(self, storage_location: str, slug: str | None = None) -> int:
        """Evict everything served from ``storage_location`` (optionally one slug)."""
        scopes = self._registry_holder.current.scopes_for_location(storage_location)
        if not scopes:
            logger.debug("Change for unregistered storage location %s ignored", storage_location)
        return sum(self.invalidate(tenant_id, version_id, slug) for tenant_id, version_id in scopes)

    def evict_scopes(self, scopes: Iterable[tuple[str, str]]) -> int:
        """Evict whole (tenant, version) scopes, e.g. ones a registry reload removed or moved."""
        return sum(self.invalidate(tenant_id, version_id) for tenant_id, version_id in scopes)

    def purge_expired(self) -> int:
        purged = self._cache.purge_expired()
        if purged:
            self._report_size()
        return purged

    def clear(self) -> None:
        self._epoch += 1
        self._cache.clear()
        self._report_size()
        for tenant_id, version_id, _ in self._registry_holder.current.iter_scopes():
            self._emit(DocumentEvent("invalidated", tenant_id, version_id))

    # -- introspection ---------------------------------------------------------------

    def stats(self) -> dict[str, int]:
        return {
            "entries": len(self._cache),
            "max_entries": self._cache.max_entries,
            "in_flight": len(self._flight),
            **self._cache.stats.as_dict(),
        }

    def is_cached(self, tenant_id: str, version_id: str, slug: str) -> bool:
        return (tenant_id, version_id, slug) in self._cache

    def _report_size(self) -> None:
        CACHED_DOCUMENTS.labels(kind="documents").set(len(self._cache))

