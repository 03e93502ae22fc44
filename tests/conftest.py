"""Shared test fixtures and configuration."""

from pathlib import Path

from content_fixtures import (
    ACME_V1,
    ACME_V2,
    DEFAULT_TENANTS,
    GLOBEX_MAIN,
    FakeClock,
    build_registry,
    sample_documents,
    write_descriptor,
)
import pytest

from docs_content_server.adapters.content_store import InMemoryContentStore
from docs_content_server.registry import RegistryHolder
from docs_content_server.services.document_loader import DocumentLoader


# Environment overrides Settings would otherwise pick up from the host
SETTINGS_ENV = ("DEPLOYMENT_CONFIG", "HOST", "PORT", "LOG_LEVEL", "LOG_PROFILE")


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep host environment variables out of Settings during tests."""
    for key in SETTINGS_ENV:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry_holder():
    return RegistryHolder(build_registry())


@pytest.fixture
def memory_store():
    return InMemoryContentStore(sample_documents())


@pytest.fixture
def loader(registry_holder, memory_store, clock):
    return DocumentLoader(
        registry_holder,
        memory_store,
        max_entries=64,
        ttl_seconds=60.0,
        negative_ttl_seconds=5.0,
        clock=clock,
    )


@pytest.fixture
def content_tree(tmp_path: Path) -> Path:
    """Write the sample documents to disk under ``tmp_path/content``."""
    root = tmp_path / "content"
    documents = sample_documents()
    layout = {"acme/v1": documents[ACME_V1], "acme/v2": documents[ACME_V2], "globex/main": documents[GLOBEX_MAIN]}
    for relative, entries in layout.items():
        for slug, text in entries.items():
            path = root / relative / f"{slug}.md"
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
    (root / "acme/v1/guide/meta.yaml").write_text("title: User Guide\norder: 1\n", encoding="utf-8")
    return root


@pytest.fixture
def descriptor_file(tmp_path: Path, content_tree: Path) -> Path:
    """Registry descriptor pointing at ``content_tree`` through relative locations."""
    return write_descriptor(tmp_path / "deployment.json", DEFAULT_TENANTS)
