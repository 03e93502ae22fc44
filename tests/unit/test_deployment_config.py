"""Unit tests for registry descriptor validation."""

import json

import pytest

from docs_content_server.deployment_config import (
    DeploymentConfig,
    InfrastructureConfig,
    LogProfileConfig,
    ObservabilityCollectorConfig,
    StorageConfig,
    normalize_storage_location,
)
from docs_content_server.domain.errors import RegistryConfigError


def _tenant(tenant_id="acme", versions=None, **extra):
    return {
        "tenantId": tenant_id,
        "displayName": f"{tenant_id.title()} Docs",
        "versions": versions or [{"versionId": "v1", "storageLocation": "/srv/docs/acme/v1"}],
        **extra,
    }


class TestNormalizeStorageLocation:
    def test_bare_absolute_path_is_normalized(self):
        assert normalize_storage_location("/srv/docs//acme/./v1/") == "/srv/docs/acme/v1"

    def test_file_uri_is_converted_to_path(self):
        assert normalize_storage_location("file:///srv/docs/acme%20corp/v1") == "/srv/docs/acme corp/v1"

    def test_relative_path_anchors_at_base_dir(self, tmp_path):
        assert normalize_storage_location("content/v1", tmp_path) == str(tmp_path / "content" / "v1")

    @pytest.mark.parametrize(
        "value",
        ["", "   ", "s3://bucket/docs", "http://example.com/docs", "file://remote-host/docs", "/srv/../etc", "a\x00b"],
    )
    def test_rejects_unsafe_locations(self, value):
        with pytest.raises(ValueError):
            normalize_storage_location(value)


class TestDeploymentConfig:
    def test_minimal_descriptor_uses_defaults(self):
        config = DeploymentConfig.from_mapping({"tenants": [_tenant()]})

        tenant = config.tenants[0]
        assert tenant.tenant_id == "acme"
        assert tenant.versions[0].display_name == "v1"
        assert config.infrastructure.version_ordering == "semantic"
        assert config.infrastructure.storage.extensions == [".md", ".mdx"]
        assert config.get_tenant("missing") is None

    def test_snake_case_keys_are_accepted(self):
        data = {
            "tenants": [
                {
                    "tenant_id": "acme",
                    "display_name": "Acme",
                    "versions": [{"version_id": "v1", "storage_location": "/srv/a", "is_default": True}],
                }
            ]
        }
        config = DeploymentConfig.from_mapping(data)
        assert config.tenants[0].versions[0].is_default is True

    def test_duplicate_tenant_ids_rejected(self):
        with pytest.raises(RegistryConfigError, match="Duplicate tenant ids"):
            DeploymentConfig.from_mapping({"tenants": [_tenant(), _tenant()]})

    def test_duplicate_version_ids_rejected(self):
        versions = [
            {"versionId": "v1", "storageLocation": "/srv/a"},
            {"versionId": "v1", "storageLocation": "/srv/b"},
        ]
        with pytest.raises(RegistryConfigError, match="duplicate version ids"):
            DeploymentConfig.from_mapping({"tenants": [_tenant(versions=versions)]})

    def test_multiple_defaults_rejected(self):
        versions = [
            {"versionId": "v1", "storageLocation": "/srv/a", "isDefault": True},
            {"versionId": "v2", "storageLocation": "/srv/b", "isDefault": True},
        ]
        with pytest.raises(RegistryConfigError, match="more than one default"):
            DeploymentConfig.from_mapping({"tenants": [_tenant(versions=versions)]})

    def test_tenant_without_versions_rejected(self):
        with pytest.raises(RegistryConfigError):
            DeploymentConfig.from_mapping({"tenants": [{"tenantId": "acme", "displayName": "Acme", "versions": []}]})

    def test_error_names_the_offending_tenant_and_version(self):
        versions = [{"versionId": "v1", "storageLocation": "s3://bucket/acme"}]
        with pytest.raises(RegistryConfigError) as excinfo:
            DeploymentConfig.from_mapping({"tenants": [_tenant(versions=versions)]})

        message = str(excinfo.value)
        assert "tenant 'acme'" in message
        assert "version 'v1'" in message
        assert "unsupported storage scheme" in message

    def test_unknown_keys_rejected(self):
        with pytest.raises(RegistryConfigError):
            DeploymentConfig.from_mapping({"tenants": [_tenant(color="blue")]})

    def test_invalid_tenant_id_rejected(self):
        with pytest.raises(RegistryConfigError):
            DeploymentConfig.from_mapping({"tenants": [_tenant(tenant_id="Acme Corp")]})


class TestDescriptorFiles:
    def test_json_file_resolves_relative_locations(self, tmp_path):
        path = tmp_path / "deployment.json"
        path.write_text(
            json.dumps({"tenants": [_tenant(versions=[{"versionId": "v1", "storageLocation": "content/v1"}])]}),
            encoding="utf-8",
        )

        config = DeploymentConfig.from_file(path)

        assert config.tenants[0].versions[0].storage_location == str(tmp_path.resolve() / "content" / "v1")

    def test_yaml_file_is_supported(self, tmp_path):
        path = tmp_path / "deployment.yaml"
        path.write_text(
            "tenants:\n"
            "  - tenantId: acme\n"
            "    displayName: Acme\n"
            "    versions:\n"
            "      - versionId: '2.0'\n"
            "        storageLocation: /srv/docs/acme/2.0\n",
            encoding="utf-8",
        )

        config = DeploymentConfig.from_file(path)

        assert config.tenants[0].versions[0].version_id == "2.0"

    def test_missing_file(self, tmp_path):
        with pytest.raises(RegistryConfigError, match="not found"):
            DeploymentConfig.from_file(tmp_path / "absent.json")

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "deployment.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(RegistryConfigError, match="not valid"):
            DeploymentConfig.from_file(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "deployment.json"
        path.write_text("[]", encoding="utf-8")
        with pytest.raises(RegistryConfigError, match="mapping"):
            DeploymentConfig.from_file(path)


class TestInfrastructureConfig:
    def test_active_log_profile_must_exist(self):
        with pytest.raises(ValueError, match="not found in log_profiles"):
            InfrastructureConfig(log_profile="verbose")

    def test_active_log_profile_lookup(self):
        infra = InfrastructureConfig(
            log_profile="verbose",
            log_profiles={"default": LogProfileConfig(), "verbose": LogProfileConfig(level="debug")},
        )
        assert infra.get_active_log_profile().level == "debug"

    def test_logger_levels_validated(self):
        with pytest.raises(ValueError, match="Invalid log level"):
            LogProfileConfig(logger_levels={"uvicorn": "loud"})

    def test_extensions_normalized(self):
        storage = StorageConfig(extensions=["md", ".md", " mdx "])
        assert storage.extensions == [".md", ".mdx"]

    def test_search_indexes_expire_by_default(self):
        assert InfrastructureConfig().cache.search_ttl_seconds == 300.0


class TestObservabilityCollectorConfig:
    def test_export_is_disabled_by_default(self):
        collector = InfrastructureConfig().observability

        assert collector.enabled is False
        assert collector.otlp_protocol == "grpc"
        assert collector.metrics_endpoint == "http://localhost:4317"

    def test_http_metrics_go_to_sibling_path(self):
        collector = ObservabilityCollectorConfig(
            enabled=True, otlp_protocol="http", collector_endpoint="http://otel:4318/v1/traces"
        )
        assert collector.metrics_endpoint == "http://otel:4318/v1/metrics"

    @pytest.mark.parametrize(
        "override",
        [
            {"collector_endpoint": "otel:4317"},
            {"otlp_protocol": "thrift"},
            {"timeout_seconds": 0},
            {"sample_rate": 0.5},
        ],
    )
    def test_invalid_collector_settings_rejected(self, override):
        with pytest.raises(ValueError):
            ObservabilityCollectorConfig(**override)
