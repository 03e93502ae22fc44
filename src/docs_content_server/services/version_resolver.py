"""Version resolution: turn an optional requested version into exactly one Version.

Resolution never substitutes: an explicitly requested version either exists
for the tenant or the request fails with ``VersionNotFoundError``. Only a
request that names no version falls back to the tenant's default.
"""

from collections.abc import Callable
import logging
from typing import Any

from packaging.version import InvalidVersion, Version as PackageVersion

from docs_content_server.domain.errors import TenantNotFoundError, VersionNotFoundError
from docs_content_server.domain.model import Tenant, Version
from docs_content_server.registry import RegistryHolder


logger = logging.getLogger(__name__)

VersionOrdering = Callable[[str], Any]


def semantic_version_key(version_id: str) -> tuple:
    """Sort key ranking PEP 440 parseable ids (``v2``, ``1.10.0``) above anything else.

    Parseable ids compare numerically (``v10`` > ``v9``); the rest compare
    lexicographically among themselves. The raw id breaks ties between
    equivalent spellings such as ``1.0`` and ``1.0.0``.
    """
    try:
        return (1, PackageVersion(version_id), version_id)
    except InvalidVersion:
        return (0, version_id, version_id)


def lexicographic_key(version_id: str) -> tuple:
    return (version_id,)


_ORDERINGS: dict[str, VersionOrdering] = {
    "semantic": semantic_version_key,
    "lexicographic": lexicographic_key,
}


def get_ordering(name: str) -> VersionOrdering:
    try:
        return _ORDERINGS[name]
    except KeyError:
        raise ValueError(f"Unknown version ordering '{name}'. Available: {sorted(_ORDERINGS)}") from None


def pick_default_version(tenant: Tenant, ordering: VersionOrdering = semantic_version_key) -> Version:
    """Return the version served when a request names none.

    A single-version tenant is its own default. Otherwise the version marked
    ``is_default`` wins, else the greatest id under ``ordering``.
    """
    if len(tenant.versions) == 1:
        return tenant.versions[0]
    for version in tenant.versions:
        if version.is_default:
            return version
    return max(tenant.versions, key=lambda version: ordering(version.version_id))


class VersionResolver:
    """Resolves (tenant, optional version) against the current registry snapshot."""

    def __init__(self, registry_holder: RegistryHolder, ordering: VersionOrdering | str = "semantic") -> None:
        self._registry_holder = registry_holder
        self.ordering = get_ordering(ordering) if isinstance(ordering, str) else ordering

    def resolve(self, tenant_id: str, requested_version: str | None = None) -> Version:
        """Resolve the version to serve.

        Raises:
            TenantNotFoundError: If the tenant is not registered
            VersionNotFoundError: If ``requested_version`` is given but absent
        """
        tenant = self._registry_holder.current.get_tenant(tenant_id)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)

        if requested_version is not None:
            version = tenant.get_version(requested_version)
            if version is None:
                logger.debug("Rejected unknown version %s for tenant %s", requested_version, tenant_id)
                raise VersionNotFoundError(tenant_id, requested_version)
            return version

        return pick_default_version(tenant, self.ordering)

    def default_version(self, tenant_id: str) -> Version:
        return self.resolve(tenant_id, None)
