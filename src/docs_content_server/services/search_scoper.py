"""Search scoped to exactly one (tenant, version).

Each scope owns a separate immutable ``ScopedIndex``. Indexes are built on
first search, refreshed from document loader events, rebuilt once their TTL
lapses, and swapped in as new objects; no code path reads or writes another
scope's index. An entry whose (tenant, version) differs from the index scope
is rejected outright.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
import logging
import time
from types import MappingProxyType
from typing import TYPE_CHECKING

from docs_content_server.domain.errors import TenantNotFoundError, VersionNotFoundError
from docs_content_server.domain.model import Document, SearchHit, SearchIndexEntry
from docs_content_server.observability.metrics import INDEX_DOC_COUNT, SEARCH_LATENCY, track_latency
from docs_content_server.observability.tracing import create_span
from docs_content_server.search.analyzers import Analyzer, get_analyzer
from docs_content_server.utils.single_flight import SingleFlight


if TYPE_CHECKING:
    from docs_content_server.adapters.content_store import AbstractContentStore
    from docs_content_server.deployment_config import SearchConfig
    from docs_content_server.registry import RegistryHolder
    from docs_content_server.services.document_loader import DocumentEvent, DocumentLoader


logger = logging.getLogger(__name__)

Scope = tuple[str, str]


class ScopeMismatchError(ValueError):
    """An entry was offered to an index serving a different (tenant, version)."""


def _term_frequencies(entry: SearchIndexEntry) -> tuple[Counter, Counter]:
    return Counter(entry.title_terms), Counter(entry.body_terms)


@dataclass(frozen=True)
class ScopedIndex:
    """Immutable term-frequency index over one (tenant, version)."""

    tenant_id: str
    version_id: str
    entries: Mapping[str, SearchIndexEntry] = field(default_factory=lambda: MappingProxyType({}))
    _frequencies: Mapping[str, tuple[Counter, Counter]] = field(
        default_factory=lambda: MappingProxyType({}), repr=False, compare=False
    )

    @classmethod
    def build(cls, tenant_id: str, version_id: str, entries: list[SearchIndexEntry]) -> ScopedIndex:
        index = cls(tenant_id, version_id)
        for entry in entries:
            index._check_scope(entry)
        by_slug = {entry.slug: entry for entry in entries}
        return index._replace(by_slug)

    @property
    def scope(self) -> Scope:
        return (self.tenant_id, self.version_id)

    def _check_scope(self, entry: SearchIndexEntry) -> None:
        if entry.scope != self.scope:
            raise ScopeMismatchError(
                f"Entry {entry.slug} belongs to {entry.tenant_id}/{entry.version_id}, "
                f"not {self.tenant_id}/{self.version_id}"
            )

    def _replace(self, by_slug: dict[str, SearchIndexEntry]) -> ScopedIndex:
        frequencies = {slug: _term_frequencies(entry) for slug, entry in by_slug.items()}
        return ScopedIndex(
            self.tenant_id,
            self.version_id,
            MappingProxyType(by_slug),
            MappingProxyType(frequencies),
        )

    def with_entry(self, entry: SearchIndexEntry) -> ScopedIndex:
        """Return a new index with ``entry`` added or replaced."""
        self._check_scope(entry)
        return ScopedIndex(
            self.tenant_id,
            self.version_id,
            MappingProxyType({**self.entries, entry.slug: entry}),
            MappingProxyType({**self._frequencies, entry.slug: _term_frequencies(entry)}),
        )

    def rank(self, query_terms: list[str], *, title_boost: float = 2.5, body_boost: float = 1.0) -> list[SearchHit]:
        """Score every entry and return hits with a positive score, best first.

        score = sum over distinct query terms of
        ``title_boost * tf(title) + body_boost * tf(body)``.
        Ties break on case-insensitive title, then slug.
        """
        terms = list(dict.fromkeys(query_terms))
        hits: list[SearchHit] = []
        for slug, entry in self.entries.items():
            title_tf, body_tf = self._frequencies[slug]
            score = sum(title_boost * title_tf[term] + body_boost * body_tf[term] for term in terms)
            if score > 0:
                hits.append(SearchHit(entry=entry, score=score))
        hits.sort(key=lambda hit: (-hit.score, hit.entry.title.casefold(), hit.entry.slug))
        return hits

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class _CachedIndex:
    index: ScopedIndex
    expires_at: float


class SearchScoper:
    """Per-(tenant, version) search over loaded documents."""

    def __init__(
        self,
        registry_holder: RegistryHolder,
        store: AbstractContentStore,
        loader: DocumentLoader,
        *,
        analyzer: Analyzer | None = None,
        title_boost: float = 2.5,
        body_boost: float = 1.0,
        max_results: int = 50,
        max_concurrency: int = 16,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry_holder = registry_holder
        self.store = store
        self.loader = loader
        self.analyzer = analyzer or get_analyzer("default")
        self.title_boost = title_boost
        self.body_boost = body_boost
        self.max_results = max_results
        self.max_concurrency = max_concurrency
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._indexes: dict[Scope, _CachedIndex] = {}
        self._generations: dict[Scope, int] = {}
        self._flight: SingleFlight[tuple[Scope, int], ScopedIndex] = SingleFlight("search-index")
        loader.add_listener(self._on_document_event)

    @classmethod
    def from_config(
        cls,
        registry_holder: RegistryHolder,
        store: AbstractContentStore,
        loader: DocumentLoader,
        search_config: SearchConfig,
        *,
        max_concurrency: int = 16,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> SearchScoper:
        return cls(
            registry_holder,
            store,
            loader,
            analyzer=get_analyzer(search_config.analyzer_profile),
            title_boost=search_config.title_boost,
            body_boost=search_config.body_boost,
            max_results=search_config.max_results,
            max_concurrency=max_concurrency,
            ttl_seconds=ttl_seconds,
            clock=clock,
        )

    def make_entry(self, document: Document) -> SearchIndexEntry:
        return SearchIndexEntry(
            tenant_id=document.tenant_id,
            version_id=document.version_id,
            slug=document.slug,
            title=document.title,
            title_terms=tuple(self.analyzer(document.title)),
            body_terms=tuple(self.analyzer(document.body)),
        )

    async def search(self, tenant_id: str, version_id: str, query: str, limit: int = 20) -> list[SearchIndexEntry]:
        """Return entries of one (tenant, version) matching ``query``, best first."""
        hits = await self.rank(tenant_id, version_id, query, limit)
        return [hit.entry for hit in hits]

    async def rank(self, tenant_id: str, version_id: str, query: str, limit: int = 20) -> list[SearchHit]:
        """Like ``search`` but keeps the score of each hit.

        Raises:
            TenantNotFoundError, VersionNotFoundError: If the scope is not registered
            StorageUnavailableError: If building the index hits failing storage
        """
        scope = self._require_scope(tenant_id, version_id)
        limit = max(1, min(limit, self.max_results))
        query_terms = self.analyzer(query)
        if not query_terms:
            return []

        with track_latency(SEARCH_LATENCY, tenant=tenant_id):
            index = await self.get_index(tenant_id, version_id)
            hits = index.rank(query_terms, title_boost=self.title_boost, body_boost=self.body_boost)

        # The index was built for this scope; an entry from elsewhere is a bug, not a result
        leaked = [hit for hit in hits if hit.entry.scope != scope]
        if leaked:
            raise ScopeMismatchError(f"Index for {tenant_id}/{version_id} returned foreign entries")
        return hits[:limit]

    async def get_index(self, tenant_id: str, version_id: str) -> ScopedIndex:
        scope = self._require_scope(tenant_id, version_id)
        cached = self._indexes.get(scope)
        if cached is not None and cached.expires_at > self._clock():
            return cached.index
        generation = self._generations.get(scope, 0)
        return await self._flight.do((scope, generation), lambda: self._build(scope, generation))

    def _require_scope(self, tenant_id: str, version_id: str) -> Scope:
        registry = self._registry_holder.current
        if registry.get_tenant(tenant_id) is None:
            raise TenantNotFoundError(tenant_id)
        if registry.get_version(tenant_id, version_id) is None:
            raise VersionNotFoundError(tenant_id, version_id)
        return (tenant_id, version_id)

    async def _build(self, scope: Scope, generation: int) -> ScopedIndex:
        tenant_id, version_id = scope
        version = self._registry_holder.current.get_version(tenant_id, version_id)
        if version is None:
            raise VersionNotFoundError(tenant_id, version_id)

        with create_span("search.index.build", attributes={"tenant.id": tenant_id, "version.id": version_id}):
            slugs = await self.store.list_slugs(version.storage_location)
            loaded = await self.loader.get_documents(
                tenant_id, version_id, slugs, max_concurrency=self.max_concurrency
            )
            entries: list[SearchIndexEntry] = []
            for slug, result in sorted(loaded.items()):
                if isinstance(result, Document):
                    entries.append(self.make_entry(result))
                else:
                    logger.warning("Search index for %s/%s skips %s: %s", tenant_id, version_id, slug, result)
            index = ScopedIndex.build(tenant_id, version_id, entries)

        if self._generations.get(scope, 0) == generation:
            self._publish(scope, index, self._clock() + self.ttl_seconds)
        logger.info("Indexed %d documents for %s/%s", len(index), tenant_id, version_id)
        return index

    def _publish(self, scope: Scope, index: ScopedIndex, expires_at: float) -> None:
        self._indexes = {**self._indexes, scope: _CachedIndex(index, expires_at)}
        INDEX_DOC_COUNT.labels(tenant=scope[0], version=scope[1]).set(len(index))

    def _on_document_event(self, event: DocumentEvent) -> None:
        if event.kind == "loaded" and event.document is not None:
            cached = self._indexes.get(event.scope)
            if cached is None:
                return
            try:
                updated = cached.index.with_entry(self.make_entry(event.document))
                self._publish(event.scope, updated, cached.expires_at)
            except ScopeMismatchError:
                logger.error("Rejected search entry %s for scope %s", event.document.slug, event.scope)
        elif event.kind == "invalidated":
            self.drop_index(event.tenant_id, event.version_id)

    def drop_index(self, tenant_id: str, version_id: str) -> bool:
        """Forget one scope's index; the next search rebuilds it."""
        scope = (tenant_id, version_id)
        self._generations = {**self._generations, scope: self._generations.get(scope, 0) + 1}
        if scope not in self._indexes:
            return False
        self._indexes = {key: value for key, value in self._indexes.items() if key != scope}
        INDEX_DOC_COUNT.labels(tenant=tenant_id, version=version_id).set(0)
        return True

    def purge_expired(self) -> int:
        """Drop indexes past their TTL; the next search rebuilds them from storage."""
        now = self._clock()
        expired = [scope for scope, cached in self._indexes.items() if cached.expires_at <= now]
        if expired:
            self._indexes = {scope: cached for scope, cached in self._indexes.items() if cached.expires_at > now}
            for tenant_id, version_id in expired:
                INDEX_DOC_COUNT.labels(tenant=tenant_id, version=version_id).set(0)
        return len(expired)

    def indexed_scopes(self) -> list[Scope]:
        return sorted(self._indexes)
