"""Registry descriptor schema using Pydantic.

This module defines the declarative catalog loaded at startup: every tenant,
its versions, and the storage location backing each (tenant, version) pair,
plus the shared infrastructure knobs (server, caches, storage retries, search
weights, logging profiles).

Architecture:
- Tenant ids and version ids are slug strings used in URLs
- Each version points at one storage location (bare path or file:// URI)
- Configuration validates at startup (fail fast, never per request)

Keys may be written camelCase (``tenantId``) or snake_case (``tenant_id``).
"""

import json
import logging
import os
from pathlib import Path, PurePosixPath
from typing import Annotated, Any, Literal
from urllib.parse import unquote, urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator, model_validator
from pydantic.alias_generators import to_camel
import yaml

from docs_content_server.domain.errors import RegistryConfigError


logger = logging.getLogger(__name__)

TENANT_ID_PATTERN = r"^[a-z0-9][a-z0-9_-]{0,63}$"
VERSION_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$"
ALLOWED_LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}
FILE_SCHEME = "file"

_DESCRIPTOR_MODEL_CONFIG = ConfigDict(
    extra="forbid",
    alias_generator=to_camel,
    populate_by_name=True,
)


def normalize_storage_location(raw_value: str, base_dir: Path | None = None) -> str:
    """Validate a storage location and return its normalized path form.

    Accepts bare paths and ``file://`` URIs. Relative paths are anchored at
    ``base_dir`` when one is given (the descriptor's directory).

    Raises:
        ValueError: If the location is empty, contains NUL bytes, uses an
            unsupported scheme, or contains a ``..`` segment.
    """
    value = raw_value.strip()
    if not value:
        raise ValueError("storage location must not be empty")
    if "\x00" in value:
        raise ValueError("storage location must not contain NUL bytes")

    if "://" in value:
        parsed = urlparse(value)
        if parsed.scheme != FILE_SCHEME:
            raise ValueError(f"unsupported storage scheme '{parsed.scheme}' (only file:// or bare paths)")
        if parsed.netloc not in ("", "localhost"):
            raise ValueError(f"file:// location must not name a remote host ('{parsed.netloc}')")
        value = unquote(parsed.path)
        if not value:
            raise ValueError("file:// location has an empty path")

    if ".." in PurePosixPath(value).parts:
        raise ValueError("storage location must not contain '..' segments")

    path = Path(value).expanduser()
    if not path.is_absolute() and base_dir is not None:
        path = base_dir / path
    return os.path.normpath(str(path))


class VersionConfig(BaseModel):
    """One documentation version of a tenant."""

    model_config = _DESCRIPTOR_MODEL_CONFIG

    version_id: Annotated[
        str,
        Field(
            pattern=VERSION_ID_PATTERN,
            description="Version identifier used in URLs (e.g., 'v1', '2.3.0', 'next')",
            examples=["v1", "2.3.0"],
        ),
    ]

    display_name: Annotated[
        str,
        Field(max_length=200, description="Human-readable version label; defaults to the version id"),
    ] = ""

    storage_location: Annotated[
        str,
        Field(description="Directory (bare path or file:// URI) holding this version's content"),
    ]

    is_default: Annotated[
        bool,
        Field(description="Serve this version when a request names no version"),
    ] = False

    @field_validator("storage_location")
    @classmethod
    def _validate_storage_location(cls, value: str, info: ValidationInfo) -> str:
        base_dir = None
        if info.context:
            base_dir = info.context.get("base_dir")
        return normalize_storage_location(value, base_dir)

    @model_validator(mode="after")
    def _default_display_name(self) -> "VersionConfig":
        if not self.display_name.strip():
            self.display_name = self.version_id
        return self


class TenantConfig(BaseModel):
    """Configuration for a single documentation tenant."""

    model_config = _DESCRIPTOR_MODEL_CONFIG

    tenant_id: Annotated[
        str,
        Field(
            pattern=TENANT_ID_PATTERN,
            description="Short identifier for routing (e.g., 'acme')",
            examples=["acme", "widgets"],
        ),
    ]

    display_name: Annotated[
        str,
        Field(min_length=1, max_length=200, description="Human-readable name for the documentation set"),
    ]

    versions: Annotated[
        list[VersionConfig],
        Field(min_length=1, description="Documentation versions served for this tenant"),
    ]

    @model_validator(mode="after")
    def validate_versions(self) -> "TenantConfig":
        """Reject duplicate version ids and multiple defaults."""
        seen: set[str] = set()
        duplicates: list[str] = []
        for version in self.versions:
            if version.version_id in seen:
                duplicates.append(version.version_id)
            seen.add(version.version_id)
        if duplicates:
            raise ValueError(f"Tenant '{self.tenant_id}' has duplicate version ids: {sorted(set(duplicates))}")

        defaults = [version.version_id for version in self.versions if version.is_default]
        if len(defaults) > 1:
            raise ValueError(f"Tenant '{self.tenant_id}' marks more than one default version: {defaults}")
        return self


class LogProfileConfig(BaseModel):
    """Configuration for a named logging profile.

    Profiles allow switching between production-optimized (quiet) and
    debug-focused (verbose) logging without code changes.
    """

    model_config = ConfigDict(extra="forbid")

    level: Annotated[
        str,
        Field(pattern=r"^(debug|info|warning|error|critical)$", description="Root log level for this profile"),
    ] = "info"

    json_output: Annotated[
        bool,
        Field(description="Emit structured JSON logs (recommended for production)"),
    ] = True

    logger_levels: Annotated[
        dict[str, str],
        Field(
            description="Per-logger level overrides (logger name -> level)",
            examples=[{"uvicorn.access": "warning", "docs_content_server.services": "debug"}],
        ),
    ] = Field(default_factory=dict)

    access_log: Annotated[
        bool,
        Field(description="Enable uvicorn access logging"),
    ] = False

    @field_validator("logger_levels")
    @classmethod
    def validate_logger_levels(cls, value: dict[str, str]) -> dict[str, str]:
        invalid = {name: level for name, level in value.items() if level not in ALLOWED_LOG_LEVELS}
        if invalid:
            details = ", ".join(f"{name}={level}" for name, level in invalid.items())
            raise ValueError(
                f"Invalid log level(s) in logger_levels; allowed levels are {sorted(ALLOWED_LOG_LEVELS)}; got: {details}"
            )
        return value


class CacheConfig(BaseModel):
    """Document, negative-result, navigation and search index cache tuning."""

    model_config = ConfigDict(extra="forbid")

    document_ttl_seconds: Annotated[
        float,
        Field(gt=0, le=86400, description="Lifetime of a cached document before it is re-read"),
    ] = 300.0

    negative_ttl_seconds: Annotated[
        float,
        Field(gt=0, le=3600, description="Lifetime of a cached parse failure"),
    ] = 10.0

    navigation_ttl_seconds: Annotated[
        float,
        Field(gt=0, le=86400, description="Lifetime of a cached navigation tree"),
    ] = 300.0

    search_ttl_seconds: Annotated[
        float,
        Field(gt=0, le=86400, description="Lifetime of a search index before it is rebuilt from storage"),
    ] = 300.0

    max_entries: Annotated[
        int,
        Field(ge=1, le=1_000_000, description="Maximum cached documents (least recently used are evicted)"),
    ] = 2048

    sweep_interval_seconds: Annotated[
        float,
        Field(gt=0, le=3600, description="Interval of the background expiry sweep"),
    ] = 30.0


class StorageConfig(BaseModel):
    """Content store retry and layout settings."""

    model_config = ConfigDict(extra="forbid")

    retry_attempts: Annotated[
        int,
        Field(ge=1, le=10, description="Total attempts for a storage operation before giving up"),
    ] = 3

    retry_base_delay_ms: Annotated[
        int,
        Field(ge=0, le=10_000, description="Initial backoff delay; doubled after each failed attempt"),
    ] = 50

    retry_max_delay_ms: Annotated[
        int,
        Field(ge=0, le=60_000, description="Upper bound for a single backoff delay"),
    ] = 1000

    extensions: Annotated[
        list[str],
        Field(min_length=1, description="Document file extensions, tried in order"),
    ] = Field(default_factory=lambda: [".md", ".mdx"])

    max_concurrent_reads: Annotated[
        int,
        Field(ge=1, le=256, description="Concurrent document loads while building navigation or search indexes"),
    ] = 16

    @field_validator("extensions")
    @classmethod
    def _normalize_extensions(cls, value: list[str]) -> list[str]:
        normalized: list[str] = []
        for ext in value:
            stripped = ext.strip()
            if not stripped:
                continue
            if not stripped.startswith("."):
                stripped = f".{stripped}"
            if stripped not in normalized:
                normalized.append(stripped)
        if not normalized:
            raise ValueError("At least one document extension is required")
        return normalized


class SearchConfig(BaseModel):
    """Search scoring configuration."""

    model_config = ConfigDict(extra="forbid")

    analyzer_profile: Annotated[
        Literal["default", "no-stem", "code-friendly"],
        Field(description="Analyzer preset controlling tokenization, stopwords, and stemming"),
    ] = "default"

    title_boost: Annotated[
        float,
        Field(ge=0.0, le=10.0, description="Weight applied to each query term found in the title"),
    ] = 2.5

    body_boost: Annotated[
        float,
        Field(ge=0.0, le=10.0, description="Weight applied to each query term found in the body"),
    ] = 1.0

    max_results: Annotated[
        int,
        Field(ge=1, le=500, description="Upper bound on results returned by a single search"),
    ] = 50


class ObservabilityCollectorConfig(BaseModel):
    """Optional OTLP export of spans and metrics to an external collector.

    Disabled by default; spans then stay in-process and metrics are only
    scraped from ``/metrics``.
    """

    model_config = ConfigDict(extra="forbid")

    enabled: Annotated[bool, Field(description="Export spans and metrics over OTLP")] = False

    otlp_protocol: Annotated[
        Literal["http", "grpc"],
        Field(description="OTLP transport protocol"),
    ] = "grpc"

    collector_endpoint: Annotated[
        str,
        Field(
            description="OTLP collector endpoint (HTTP uses /v1/traces; metrics go to the sibling /v1/metrics)",
            examples=["http://localhost:4317", "http://localhost:4318/v1/traces"],
        ),
    ] = "http://localhost:4317"

    headers: Annotated[
        dict[str, str],
        Field(description="Extra headers sent with every OTLP request"),
    ] = Field(default_factory=dict)

    timeout_seconds: Annotated[int, Field(ge=1, le=60, description="OTLP exporter timeout")] = 10

    grpc_insecure: Annotated[bool, Field(description="Allow plaintext gRPC connections")] = True

    resource_attributes: Annotated[
        dict[str, str],
        Field(description="Additional OpenTelemetry resource attributes"),
    ] = Field(default_factory=dict)

    @field_validator("collector_endpoint")
    @classmethod
    def _require_http_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(f"collector_endpoint must be an http(s) URL, got '{value}'")
        return value

    @property
    def metrics_endpoint(self) -> str:
        if self.otlp_protocol == "http" and self.collector_endpoint.endswith("/v1/traces"):
            return self.collector_endpoint.removesuffix("/v1/traces") + "/v1/metrics"
        return self.collector_endpoint


class InfrastructureConfig(BaseModel):
    """Process-wide settings shared by every tenant."""

    model_config = ConfigDict(extra="forbid")

    host: Annotated[str, Field(description="HTTP bind host")] = "127.0.0.1"
    port: Annotated[int, Field(ge=1, le=65535, description="HTTP bind port")] = 15010

    log_level: Annotated[
        str,
        Field(pattern=r"^(debug|info|warning|error|critical)$", description="uvicorn log level"),
    ] = "info"

    log_profile: Annotated[
        str,
        Field(description="Name of the active entry in log_profiles"),
    ] = "default"

    log_profiles: Annotated[
        dict[str, LogProfileConfig],
        Field(description="Named logging profiles"),
    ] = Field(default_factory=lambda: {"default": LogProfileConfig()})

    version_ordering: Annotated[
        Literal["semantic", "lexicographic"],
        Field(description="Ordering used to pick the latest version when no default is marked"),
    ] = "semantic"

    cache: CacheConfig = Field(default_factory=CacheConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    observability: ObservabilityCollectorConfig = Field(default_factory=ObservabilityCollectorConfig)

    admin_enabled: Annotated[
        bool,
        Field(description="Expose /admin endpoints for registry reload and change notifications"),
    ] = True

    @model_validator(mode="after")
    def validate_log_profile_exists(self) -> "InfrastructureConfig":
        if self.log_profile not in self.log_profiles:
            available = sorted(self.log_profiles)
            raise ValueError(f"log_profile '{self.log_profile}' not found in log_profiles. Available: {available}")
        return self

    def get_active_log_profile(self) -> LogProfileConfig:
        return self.log_profiles[self.log_profile]


class DeploymentConfig(BaseModel):
    """Complete registry descriptor.

    Example:
        {
            "infrastructure": {"port": 15010},
            "tenants": [
                {
                    "tenantId": "acme",
                    "displayName": "Acme Docs",
                    "versions": [
                        {"versionId": "v1", "storageLocation": "./content/acme/v1", "isDefault": true},
                        {"versionId": "v2", "storageLocation": "./content/acme/v2"}
                    ]
                }
            ]
        }
    """

    model_config = ConfigDict(extra="forbid")

    infrastructure: InfrastructureConfig = Field(default_factory=InfrastructureConfig)
    tenants: Annotated[
        list[TenantConfig],
        Field(min_length=1, description="Documentation tenants to serve"),
    ]

    @model_validator(mode="after")
    def validate_unique_tenant_ids(self) -> "DeploymentConfig":
        tenant_ids = [tenant.tenant_id for tenant in self.tenants]
        duplicates = sorted({tenant_id for tenant_id in tenant_ids if tenant_ids.count(tenant_id) > 1})
        if duplicates:
            raise ValueError(f"Duplicate tenant ids found: {duplicates}")
        return self

    @classmethod
    def from_mapping(cls, data: Any, *, base_dir: Path | None = None) -> "DeploymentConfig":
        """Validate a parsed descriptor, converting failures to RegistryConfigError."""
        try:
            return cls.model_validate(data, context={"base_dir": base_dir})
        except ValidationError as exc:
            raise RegistryConfigError(_describe_validation_error(exc, data)) from exc

    @classmethod
    def from_file(cls, path: Path) -> "DeploymentConfig":
        """Load a JSON or YAML descriptor.

        Relative storage locations resolve against the descriptor's directory.

        Raises:
            RegistryConfigError: If the file is missing, unparsable, or invalid
        """
        if not path.exists():
            raise RegistryConfigError(f"Registry descriptor not found: {path}")

        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise RegistryConfigError(f"Registry descriptor {path} could not be read: {exc}") from exc

        try:
            if path.suffix.lower() in {".yaml", ".yml"}:
                data = yaml.safe_load(text)
            else:
                data = json.loads(text)
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise RegistryConfigError(f"Registry descriptor {path} is not valid {path.suffix or 'JSON'}: {exc}") from exc

        if not isinstance(data, dict):
            raise RegistryConfigError(f"Registry descriptor {path} must contain a mapping at the top level")

        logger.debug("Validating registry descriptor %s", path)
        return cls.from_mapping(data, base_dir=path.resolve().parent)

    def get_tenant(self, tenant_id: str) -> TenantConfig | None:
        for tenant in self.tenants:
            if tenant.tenant_id == tenant_id:
                return tenant
        return None

    def list_tenant_ids(self) -> list[str]:
        return [tenant.tenant_id for tenant in self.tenants]


def _describe_validation_error(exc: ValidationError, data: Any) -> str:
    """Render pydantic errors naming the offending tenant/version instead of list indexes."""
    lines = [f"Registry descriptor is invalid ({exc.error_count()} error(s)):"]
    for error in exc.errors():
        where = _describe_location(error.get("loc", ()), data)
        message = error.get("msg", "invalid value")
        lines.append(f"  - {where}: {message}")
    return "\n".join(lines)


def _describe_location(loc: tuple[Any, ...], data: Any) -> str:
    parts: list[str] = []
    tenants = data.get("tenants") if isinstance(data, dict) else None
    tenant: Any = None
    index = 0
    while index < len(loc):
        item = loc[index]
        if item == "tenants" and index + 1 < len(loc) and isinstance(loc[index + 1], int):
            position = loc[index + 1]
            tenant = tenants[position] if isinstance(tenants, list) and position < len(tenants) else None
            tenant_id = _lookup_id(tenant, "tenantId", "tenant_id")
            parts.append(f"tenant '{tenant_id}'" if tenant_id else f"tenant #{position}")
            index += 2
            continue
        if item == "versions" and index + 1 < len(loc) and isinstance(loc[index + 1], int):
            position = loc[index + 1]
            versions = tenant.get("versions") if isinstance(tenant, dict) else None
            version = versions[position] if isinstance(versions, list) and position < len(versions) else None
            version_id = _lookup_id(version, "versionId", "version_id")
            parts.append(f"version '{version_id}'" if version_id else f"version #{position}")
            index += 2
            continue
        parts.append(str(item))
        index += 1
    return " ".join(parts) if parts else "descriptor"


def _lookup_id(payload: Any, *keys: str) -> str | None:
    if not isinstance(payload, dict):
        return None
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None
