"""Unit tests for the content store adapters."""

import pytest

from docs_content_server.adapters.content_store import (
    FileSystemContentStore,
    InMemoryContentStore,
    RetryPolicy,
)
from docs_content_server.deployment_config import StorageConfig
from docs_content_server.domain.errors import StorageUnavailableError


LOCATION = "/srv/docs/acme/v1"


class TestRetryPolicy:
    def test_delays_double_and_cap(self):
        policy = RetryPolicy(attempts=5, base_delay=0.1, max_delay=0.3)
        assert [policy.delay_for(attempt) for attempt in (1, 2, 3, 4)] == [0.1, 0.2, 0.3, 0.3]

    def test_from_config_converts_milliseconds(self):
        policy = RetryPolicy.from_config(StorageConfig(retry_attempts=4, retry_base_delay_ms=20, retry_max_delay_ms=500))
        assert policy == RetryPolicy(attempts=4, base_delay=0.02, max_delay=0.5)


class TestInMemoryContentStore:
    @pytest.mark.asyncio
    async def test_read_returns_raw_bytes(self):
        store = InMemoryContentStore({LOCATION: {"guide/intro": "---\ntitle: Hi\n---\n"}})

        raw = await store.read(LOCATION, "guide/intro")

        assert raw.data == b"---\ntitle: Hi\n---\n"
        assert raw.slug == "guide/intro"
        assert await store.read(LOCATION, "missing") is None

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self):
        sleeps = []

        async def record_sleep(delay):
            sleeps.append(delay)

        store = InMemoryContentStore(
            {LOCATION: {"index": "Home"}},
            retry_policy=RetryPolicy(attempts=3, base_delay=0.01, max_delay=1.0),
            sleep=record_sleep,
        )
        store.fail_next(LOCATION, times=2)

        raw = await store.read(LOCATION, "index")

        assert raw.data == b"Home"
        assert store.reads_for(LOCATION, "index") == 3
        assert sleeps == [0.01, 0.02]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_storage_unavailable(self):
        store = InMemoryContentStore({LOCATION: {"index": "Home"}}, retry_policy=RetryPolicy(attempts=2, base_delay=0))
        store.fail_next(LOCATION, times=5)

        with pytest.raises(StorageUnavailableError) as excinfo:
            await store.list_slugs(LOCATION)

        assert excinfo.value.attempts == 2
        assert excinfo.value.retryable is True
        assert excinfo.value.storage_location == LOCATION
        assert LOCATION not in str(excinfo.value)
        assert "simulated" not in str(excinfo.value)
        assert store.list_count == 2

    @pytest.mark.asyncio
    async def test_list_slugs_is_sorted(self):
        store = InMemoryContentStore({LOCATION: {"zeta": "z", "alpha": "a", "guide/intro": "i"}})
        assert await store.list_slugs(LOCATION) == ["alpha", "guide/intro", "zeta"]

    @pytest.mark.asyncio
    async def test_meta_is_keyed_by_directory(self):
        store = InMemoryContentStore(meta={LOCATION: {"": "title: Root", "guide": "title: Guide"}})
        assert await store.read_meta(LOCATION) == b"title: Root"
        assert await store.read_meta(LOCATION, "guide") == b"title: Guide"
        assert await store.read_meta(LOCATION, "api") is None


class TestFileSystemContentStore:
    @pytest.fixture
    def root(self, tmp_path):
        (tmp_path / "guide").mkdir()
        (tmp_path / "guide" / "intro.md").write_text("# Intro", encoding="utf-8")
        (tmp_path / "guide" / "widgets.mdx").write_text("# Widgets", encoding="utf-8")
        (tmp_path / "guide" / "meta.yaml").write_text("title: Guide", encoding="utf-8")
        (tmp_path / "guide" / "notes.txt").write_text("ignored", encoding="utf-8")
        (tmp_path / "index.md").write_text("# Home", encoding="utf-8")
        (tmp_path / ".drafts").mkdir()
        (tmp_path / ".drafts" / "secret.md").write_text("# Draft", encoding="utf-8")
        (tmp_path / ".hidden.md").write_text("# Hidden", encoding="utf-8")
        return tmp_path

    @pytest.mark.asyncio
    async def test_lists_documents_by_extension(self, root):
        store = FileSystemContentStore()
        assert await store.list_slugs(str(root)) == ["guide/intro", "guide/widgets", "index"]

    @pytest.mark.asyncio
    async def test_unaddressable_file_names_are_not_listed(self, root, caplog):
        (root / "Release Notes.md").write_text("# Release Notes", encoding="utf-8")
        (root / "guide" / "~draft.md").write_text("# Draft", encoding="utf-8")
        store = FileSystemContentStore()

        assert await store.list_slugs(str(root)) == ["guide/intro", "guide/widgets", "index"]
        assert "Release Notes" in caplog.text

    @pytest.mark.asyncio
    async def test_reads_first_matching_extension(self, root):
        store = FileSystemContentStore()

        intro = await store.read(str(root), "guide/intro")
        widgets = await store.read(str(root), "guide/widgets")

        assert intro.data == b"# Intro"
        assert widgets.data == b"# Widgets"
        assert await store.read(str(root), "guide/missing") is None

    @pytest.mark.asyncio
    async def test_paths_escaping_the_root_are_absent(self, root):
        store = FileSystemContentStore()
        assert await store.read(str(root / "guide"), "../index") is None

    @pytest.mark.asyncio
    async def test_reads_directory_meta(self, root):
        store = FileSystemContentStore()
        assert await store.read_meta(str(root), "guide") == b"title: Guide"
        assert await store.read_meta(str(root)) is None

    @pytest.mark.asyncio
    async def test_missing_root_is_unavailable(self, tmp_path):
        store = FileSystemContentStore(retry_policy=RetryPolicy(attempts=2, base_delay=0))
        with pytest.raises(StorageUnavailableError):
            await store.list_slugs(str(tmp_path / "unmounted"))
