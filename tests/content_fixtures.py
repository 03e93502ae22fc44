"""Sample tenants, documents and a hand-driven clock shared by the test suite."""

import json
from pathlib import Path

from docs_content_server.domain.model import Tenant, Version
from docs_content_server.registry import SourceRegistry


ACME_V1 = "/srv/docs/acme/v1"
ACME_V2 = "/srv/docs/acme/v2"
GLOBEX_MAIN = "/srv/docs/globex/main"


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def build_registry() -> SourceRegistry:
    return SourceRegistry(
        [
            Tenant(
                tenant_id="acme",
                display_name="Acme Docs",
                versions=(
                    Version("v1", "v1", ACME_V1, is_default=True),
                    Version("v2", "v2", ACME_V2),
                ),
            ),
            Tenant(
                tenant_id="globex",
                display_name="Globex Manual",
                versions=(Version("main", "Main", GLOBEX_MAIN),),
            ),
        ]
    )


def sample_documents() -> dict[str, dict[str, str]]:
    return {
        ACME_V1: {
            "index": "# Welcome\n\nAcme documentation home.",
            "guide/intro": "---\ntitle: Introduction\norder: 1\n---\nInstall the widget with pip.",
            "guide/install": "---\norder: 2\n---\n# Installing\n\nRun the installer.",
        },
        ACME_V2: {
            "guide/intro": "---\ntitle: Introduction\norder: 1\n---\nVersion two widget setup.",
            "guide/upgrade": "# Upgrading\n\nMigrate your widget configuration.",
        },
        GLOBEX_MAIN: {
            "guide/intro": "# Globex Intro\n\nThe widget factory tour.",
        },
    }


def write_descriptor(path: Path, tenants: list[dict], **infrastructure) -> Path:
    descriptor = {
        "infrastructure": {
            "log_profiles": {"default": {"level": "warning", "json_output": False}},
            "storage": {"retry_attempts": 2, "retry_base_delay_ms": 0, "retry_max_delay_ms": 0},
            **infrastructure,
        },
        "tenants": tenants,
    }
    path.write_text(json.dumps(descriptor), encoding="utf-8")
    return path


DEFAULT_TENANTS = [
    {
        "tenantId": "acme",
        "displayName": "Acme Docs",
        "versions": [
            {"versionId": "v1", "storageLocation": "content/acme/v1", "isDefault": True},
            {"versionId": "v2", "storageLocation": "content/acme/v2"},
        ],
    },
    {
        "tenantId": "globex",
        "displayName": "Globex Manual",
        "versions": [{"versionId": "main", "displayName": "Main", "storageLocation": "content/globex/main"}],
    },
]
