"""Unit tests for navigation tree assembly, ordering and caching."""

import asyncio

from content_fixtures import ACME_V1, ACME_V2
import pytest

from docs_content_server.domain.errors import VersionNotFoundError
from docs_content_server.domain.model import Document, NavigationNode
from docs_content_server.services.navigation_builder import (
    DirectoryMeta,
    NavigationBuilder,
    assemble_tree,
    parse_directory_meta,
)


def _titles(node: NavigationNode) -> list[str]:
    return [child.title for child in node.children]


def _child(node: NavigationNode, slug: str) -> NavigationNode:
    return next(child for child in node.children if child.slug == slug)


def _doc(slug: str, title: str, order: int | None = None) -> Document:
    return Document("acme", "v1", slug, title, order_hint=order)


@pytest.fixture
def navigation(registry_holder, memory_store, loader, clock):
    return NavigationBuilder(registry_holder, memory_store, loader, ttl_seconds=30.0, clock=clock)


class TestParseDirectoryMeta:
    def test_yaml_with_page_shorthand(self):
        meta = parse_directory_meta(b"title: Guide\norder: 2\npages:\n  intro: Getting Started\n  setup: {order: 1}\n")

        assert meta.title == "Guide"
        assert meta.order == 2
        assert meta.page("intro").title == "Getting Started"
        assert meta.page("setup").order == 1
        assert meta.page("missing") is None

    def test_json_is_accepted(self):
        meta = parse_directory_meta(b'{"title": "API", "order": 3}')
        assert meta == DirectoryMeta(title="API", order=3)

    def test_empty_file_is_empty_meta(self):
        assert parse_directory_meta(b"") == DirectoryMeta()

    @pytest.mark.parametrize(
        "raw",
        [b"title: [unclosed", b"- a\n- b\n", b"order: first\n", b"\xff\xfe"],
    )
    def test_malformed_meta_is_ignored(self, raw):
        assert parse_directory_meta(raw, source="test") is None


class TestAssembleTree:
    def test_explicit_order_first_then_title(self):
        slugs = ["zeta", "alpha", "beta", "gamma"]
        documents = {
            "zeta": _doc("zeta", "Zeta", order=1),
            "alpha": _doc("alpha", "alpha"),
            "beta": _doc("beta", "Beta", order=2),
            "gamma": _doc("gamma", "Gamma"),
        }

        root = assemble_tree("Root", slugs, documents, {})

        assert _titles(root) == ["Zeta", "Beta", "alpha", "Gamma"]
        assert [child.order for child in root.children] == [0, 1, 2, 3]

    def test_equal_order_and_title_break_on_slug(self):
        slugs = ["b-page", "a-page"]
        documents = {"b-page": _doc("b-page", "Setup", order=1), "a-page": _doc("a-page", "setup", order=1)}

        root = assemble_tree("Root", slugs, documents, {})

        assert [child.slug for child in root.children] == ["a-page", "b-page"]

    def test_storage_order_does_not_matter(self):
        documents = {
            "guide/intro": _doc("guide/intro", "Intro", order=1),
            "guide/setup": _doc("guide/setup", "Setup", order=2),
            "index": _doc("index", "Home"),
        }
        forward = assemble_tree("Root", list(documents), documents, {})
        backward = assemble_tree("Root", list(reversed(documents)), documents, {})
        assert forward == backward

    def test_directories_group_documents(self):
        slugs = ["guide/intro", "guide/advanced/tuning", "index"]
        documents = {slug: _doc(slug, slug.rsplit("/", 1)[-1].title()) for slug in slugs}

        root = assemble_tree("Root", slugs, documents, {})
        guide = _child(root, "guide")
        advanced = _child(guide, "guide/advanced")

        assert guide.is_document is False
        assert guide.title == "Guide"
        assert [node.slug for node in advanced.children] == ["guide/advanced/tuning"]
        assert sorted(node.slug for node in root.iter_documents()) == sorted(slugs)

    def test_node_can_be_document_and_section(self):
        slugs = ["guide", "guide/intro"]
        documents = {"guide": _doc("guide", "Guide Overview"), "guide/intro": _doc("guide/intro", "Intro")}

        root = assemble_tree("Root", slugs, documents, {})
        guide = _child(root, "guide")

        assert guide.is_document is True
        assert guide.title == "Guide Overview"
        assert [child.slug for child in guide.children] == ["guide/intro"]
        assert len(list(root.iter_documents())) == 2

    def test_meta_overrides_titles_and_order(self):
        slugs = ["guide/intro", "guide/setup", "index"]
        documents = {
            "guide/intro": _doc("guide/intro", "Intro", order=1),
            "guide/setup": _doc("guide/setup", "Setup", order=2),
            "index": _doc("index", "Home"),
        }
        metas = {
            "": DirectoryMeta(title="Handbook"),
            "guide": DirectoryMeta.model_validate(
                {"title": "User Guide", "order": 0, "pages": {"setup": {"title": "Installation", "order": 0}}}
            ),
        }

        root = assemble_tree("Root", slugs, documents, metas)
        guide = _child(root, "guide")

        assert root.title == "Handbook"
        assert _titles(root) == ["User Guide", "Home"]
        assert _titles(guide) == ["Installation", "Intro"]

    def test_unparsed_document_uses_humanized_slug(self):
        root = assemble_tree("Root", ["getting-started"], {"getting-started": None}, {})
        assert _titles(root) == ["Getting Started"]


class TestNavigationBuilder:
    @pytest.mark.asyncio
    async def test_builds_tree_for_exactly_the_listed_slugs(self, navigation, memory_store):
        root = await navigation.get_navigation("acme", "v1")

        listed = await memory_store.list_slugs(ACME_V1)
        assert sorted(node.slug for node in root.iter_documents()) == listed
        assert root.title == "Acme Docs v1"
        assert _titles(root) == ["Guide", "Welcome"]
        assert _titles(_child(root, "guide")) == ["Introduction", "Installing"]

    @pytest.mark.asyncio
    async def test_versions_get_separate_trees(self, navigation):
        v1 = await navigation.get_navigation("acme", "v1")
        v2 = await navigation.get_navigation("acme", "v2")

        assert {node.slug for node in v2.iter_documents()} == {"guide/intro", "guide/upgrade"}
        assert v1 != v2
        assert navigation.cached_scopes() == [("acme", "v1"), ("acme", "v2")]

    @pytest.mark.asyncio
    async def test_directory_meta_from_store(self, navigation, memory_store):
        memory_store.put_meta(ACME_V2, "", "title: Acme v2 Handbook\n")
        memory_store.put_meta(ACME_V2, "guide", "pages:\n  upgrade: {title: Upgrade Guide, order: 0}\n")

        root = await navigation.get_navigation("acme", "v2")

        assert root.title == "Acme v2 Handbook"
        assert _titles(_child(root, "guide")) == ["Upgrade Guide", "Introduction"]

    @pytest.mark.asyncio
    async def test_malformed_meta_does_not_fail_the_build(self, navigation, memory_store):
        memory_store.put_meta(ACME_V1, "guide", "title: [unclosed")

        root = await navigation.get_navigation("acme", "v1")

        assert _child(root, "guide").title == "Guide"

    @pytest.mark.asyncio
    async def test_broken_document_still_listed(self, navigation, memory_store):
        memory_store.put(ACME_V1, "release-notes", "---\ntitle: [oops\n---\n")

        root = await navigation.get_navigation("acme", "v1")

        assert _child(root, "release-notes").title == "Release Notes"

    @pytest.mark.asyncio
    async def test_tree_is_cached_until_invalidated(self, navigation, memory_store, loader):
        first = await navigation.get_navigation("acme", "v1")
        second = await navigation.get_navigation("acme", "v1")
        assert first is second
        assert memory_store.list_count == 1

        memory_store.put(ACME_V1, "faq", "# FAQ")
        loader.invalidate("acme", "v1")
        rebuilt = await navigation.get_navigation("acme", "v1")

        assert memory_store.list_count == 2
        assert "faq" in {node.slug for node in rebuilt.iter_documents()}

    @pytest.mark.asyncio
    async def test_tree_expires_after_ttl(self, navigation, memory_store, clock):
        await navigation.get_navigation("acme", "v1")
        clock.advance(31)

        assert navigation.purge_expired() == 1
        await navigation.get_navigation("acme", "v1")
        assert memory_store.list_count == 2

    @pytest.mark.asyncio
    async def test_invalidating_other_tenant_keeps_tree(self, navigation, loader):
        await navigation.get_navigation("acme", "v1")
        loader.invalidate("globex")
        assert navigation.cached_scopes() == [("acme", "v1")]

    @pytest.mark.asyncio
    async def test_invalidating_other_tenant_keeps_in_flight_build(self, navigation, memory_store, loader):
        memory_store.latency = 0.05

        pending = asyncio.create_task(navigation.get_navigation("acme", "v1"))
        await asyncio.sleep(0.01)
        loader.invalidate("globex")
        second = await navigation.get_navigation("acme", "v1")

        assert await pending is second
        assert memory_store.list_count == 1
        assert navigation.cached_scopes() == [("acme", "v1")]

    @pytest.mark.asyncio
    async def test_unknown_version(self, navigation):
        with pytest.raises(VersionNotFoundError):
            await navigation.get_navigation("acme", "v7")
