"""Error taxonomy for content resolution.

Every failure a caller can observe maps to one of these classes. Each class
carries a stable ``code`` and HTTP ``status_code`` so client tooling can tell
"nothing here" apart from "temporarily unavailable, retry".
"""

from typing import Any, ClassVar


class ContentResolutionError(Exception):
    """Base error for every resolution failure surfaced to callers."""

    code: ClassVar[str] = "ResolutionError"
    status_code: ClassVar[int] = 500
    retryable: ClassVar[bool] = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class TenantNotFoundError(ContentResolutionError):
    code = "TenantNotFound"
    status_code = 404

    def __init__(self, tenant_id: str) -> None:
        super().__init__(f"Tenant '{tenant_id}' not found", tenant=tenant_id)
        self.tenant_id = tenant_id


class VersionNotFoundError(ContentResolutionError):
    """An explicitly requested version does not exist for the tenant.

    Never answered with another version's content: a pinned URL must not
    silently serve different documentation.
    """

    code = "VersionNotFound"
    status_code = 400

    def __init__(self, tenant_id: str, version_id: str) -> None:
        super().__init__(
            f"Version '{version_id}' not found for tenant '{tenant_id}'",
            tenant=tenant_id,
            version=version_id,
        )
        self.tenant_id = tenant_id
        self.version_id = version_id


class SlugNotFoundError(ContentResolutionError):
    code = "SlugNotFound"
    status_code = 404

    def __init__(self, tenant_id: str, version_id: str, slug: str) -> None:
        super().__init__(
            f"Document '{slug}' not found in {tenant_id}/{version_id}",
            tenant=tenant_id,
            version=version_id,
            slug=slug,
        )
        self.tenant_id = tenant_id
        self.version_id = version_id
        self.slug = slug


class DocumentParseError(ContentResolutionError):
    """A stored document exists but its front matter or encoding is malformed."""

    code = "ParseError"
    status_code = 422

    def __init__(self, tenant_id: str, version_id: str, slug: str, reason: str) -> None:
        super().__init__(
            f"Failed to parse '{slug}' in {tenant_id}/{version_id}: {reason}",
            tenant=tenant_id,
            version=version_id,
            slug=slug,
        )
        self.tenant_id = tenant_id
        self.version_id = version_id
        self.slug = slug
        self.reason = reason


class StorageUnavailableError(ContentResolutionError):
    """Storage kept failing after retries.

    ``storage_location`` and ``reason`` stay on the instance for server-side
    logs; the client-facing message never names a path.
    """

    code = "StorageUnavailable"
    status_code = 503
    retryable = True

    def __init__(self, storage_location: str, reason: str, *, attempts: int = 1) -> None:
        super().__init__(f"Storage unavailable after {attempts} attempt(s)", attempts=attempts)
        self.storage_location = storage_location
        self.reason = reason
        self.attempts = attempts


class RegistryConfigError(ValueError):
    """Raised when a registry descriptor cannot be loaded or fails validation."""
