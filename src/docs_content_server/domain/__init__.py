"""Domain layer - records and error taxonomy with no infrastructure dependencies."""

from docs_content_server.domain.errors import (
    ContentResolutionError,
    DocumentParseError,
    RegistryConfigError,
    SlugNotFoundError,
    StorageUnavailableError,
    TenantNotFoundError,
    VersionNotFoundError,
)
from docs_content_server.domain.model import (
    Document,
    NavigationNode,
    RawContent,
    SearchHit,
    SearchIndexEntry,
    Tenant,
    Version,
)


__all__ = [
    "ContentResolutionError",
    "Document",
    "DocumentParseError",
    "NavigationNode",
    "RawContent",
    "RegistryConfigError",
    "SearchHit",
    "SearchIndexEntry",
    "SlugNotFoundError",
    "StorageUnavailableError",
    "Tenant",
    "TenantNotFoundError",
    "Version",
    "VersionNotFoundError",
]
