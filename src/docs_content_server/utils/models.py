"""Pydantic models for HTTP request and response payloads.

Field names are snake_case in Python and camelCase on the wire; responses are
serialized with ``model_dump(by_alias=True)``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from docs_content_server.domain.model import Document, SearchHit, Version


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class VersionSummary(ApiModel):
    version_id: str
    display_name: str
    is_default: bool = False

    @classmethod
    def from_version(cls, version: Version) -> VersionSummary:
        return cls(version_id=version.version_id, display_name=version.display_name, is_default=version.is_default)


class VersionsResponse(ApiModel):
    tenant: str
    versions: list[VersionSummary]


class ContentResponse(ApiModel):
    """A resolved document.

    Example:
        {
            "tenant": "acme",
            "version": "v2",
            "slug": "guide/intro",
            "title": "Introduction",
            "frontmatter": {"title": "Introduction", "order": 1},
            "body": "# Introduction\\n...",
            "orderHint": 1
        }
    """

    tenant: str
    version: str
    slug: str
    title: str
    frontmatter: dict[str, Any] = Field(default_factory=dict)
    body: str
    order_hint: int | None = None
    rendered: str | None = None

    @classmethod
    def from_document(cls, document: Document, *, rendered: str | None = None) -> ContentResponse:
        return cls(
            tenant=document.tenant_id,
            version=document.version_id,
            slug=document.slug,
            title=document.title,
            frontmatter=dict(document.frontmatter),
            body=document.body,
            order_hint=document.order_hint,
            rendered=rendered,
        )

    def to_payload(self) -> dict[str, Any]:
        # orderHint stays present (as null) so clients can rely on the key
        payload = self.model_dump(by_alias=True, exclude={"rendered"})
        if self.rendered is not None:
            payload["rendered"] = self.rendered
        return payload


class NavigationResponse(ApiModel):
    tenant: str
    version: str
    root: dict[str, Any]


class SearchResultItem(ApiModel):
    slug: str
    title: str
    score: float

    @classmethod
    def from_hit(cls, hit: SearchHit) -> SearchResultItem:
        return cls(slug=hit.entry.slug, title=hit.entry.title, score=round(hit.score, 4))


class SearchResponse(ApiModel):
    tenant: str
    version: str
    query: str
    results: list[SearchResultItem]


class ErrorBody(ApiModel):
    code: str
    message: str
    retryable: bool = False


class ErrorResponse(ApiModel):
    """Uniform error envelope: ``{"error": {"code", "message", "retryable"}}``."""

    error: ErrorBody

    @classmethod
    def of(cls, code: str, message: str, *, retryable: bool = False) -> ErrorResponse:
        return cls(error=ErrorBody(code=code, message=message, retryable=retryable))


class ChangeNotification(ApiModel):
    """Admin change notice naming either a storage location or a registry scope."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    storage_location: str | None = None
    tenant_id: str | None = None
    version_id: str | None = None
    slug: str | None = None

    @model_validator(mode="after")
    def _require_target(self) -> ChangeNotification:
        if self.storage_location is None and self.tenant_id is None:
            raise ValueError("either storageLocation or tenantId is required")
        if self.storage_location is not None and (self.tenant_id is not None or self.version_id is not None):
            raise ValueError("storageLocation cannot be combined with tenantId/versionId")
        return self


class ReloadResponse(ApiModel):
    status: str = "reloaded"
    tenants: int
    versions: int
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    relocated: list[str] = Field(default_factory=list)
