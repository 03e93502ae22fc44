"""Domain model - entities and value objects.

Pure records with no infrastructure dependencies:
- Tenant and Version are owned by the source registry and never mutated by
  request handling.
- Document is owned by the document loader cache.
- NavigationNode and SearchIndexEntry are derived, replaceable read views.

All records are frozen; derived views are replaced wholesale instead of being
patched in place.
"""

from dataclasses import dataclass, field
from typing import Any


Scalar = str | int | float | bool | None


@dataclass(frozen=True)
class Version:
    """A named snapshot of a tenant's documentation set."""

    version_id: str
    display_name: str
    storage_location: str
    is_default: bool = False

    def as_summary(self) -> dict[str, Any]:
        return {
            "versionId": self.version_id,
            "displayName": self.display_name,
            "isDefault": self.is_default,
        }


@dataclass(frozen=True)
class Tenant:
    """A logically isolated owner of a documentation set."""

    tenant_id: str
    display_name: str
    versions: tuple[Version, ...]

    def __post_init__(self) -> None:
        if not self.versions:
            raise ValueError(f"Tenant '{self.tenant_id}' must define at least one version")

    def get_version(self, version_id: str) -> Version | None:
        for version in self.versions:
            if version.version_id == version_id:
                return version
        return None

    @property
    def version_ids(self) -> list[str]:
        return [version.version_id for version in self.versions]


@dataclass(frozen=True)
class RawContent:
    """Opaque bytes read from a storage location; never interpreted by the adapter."""

    storage_location: str
    slug: str
    data: bytes


@dataclass(frozen=True)
class Document:
    """Normalized document: front matter + body + structural position.

    Identity is ``(tenant_id, version_id, slug)``.
    """

    tenant_id: str
    version_id: str
    slug: str
    title: str
    frontmatter: dict[str, Scalar] = field(default_factory=dict)
    body: str = ""
    order_hint: int | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.tenant_id, self.version_id, self.slug)


@dataclass(frozen=True)
class NavigationNode:
    """One node of a per-(tenant, version) navigation tree.

    ``order`` is the node's position among its siblings after sorting.
    Section nodes group documents by directory and have ``is_document=False``.
    """

    slug: str
    title: str
    order: int = 0
    is_document: bool = False
    children: tuple["NavigationNode", ...] = ()

    def iter_documents(self):
        """Yield every document node in depth-first order."""
        if self.is_document:
            yield self
        for child in self.children:
            yield from child.iter_documents()

    def as_dict(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "title": self.title,
            "order": self.order,
            "isDocument": self.is_document,
            "children": [child.as_dict() for child in self.children],
        }


@dataclass(frozen=True)
class SearchIndexEntry:
    """A document as seen by one (tenant, version) search index."""

    tenant_id: str
    version_id: str
    slug: str
    title: str
    title_terms: tuple[str, ...] = ()
    body_terms: tuple[str, ...] = ()

    @property
    def scope(self) -> tuple[str, str]:
        return (self.tenant_id, self.version_id)


@dataclass(frozen=True)
class SearchHit:
    """A ranked search result."""

    entry: SearchIndexEntry
    score: float
