"""Content store adapters: raw bytes in, no interpretation.

The adapter is the only layer that touches storage. It knows how a slug maps
to a file and how to list a storage location, and it retries transient I/O
failures with exponential backoff before reporting the location unavailable.
It never parses front matter or decides what a document means.
"""

from abc import ABC, abstractmethod
import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging
import os
from pathlib import Path
from typing import TypeVar

import anyio

from docs_content_server.domain.errors import StorageUnavailableError
from docs_content_server.domain.model import RawContent
from docs_content_server.observability.metrics import STORAGE_FAILURES, STORAGE_RETRIES
from docs_content_server.utils.slugs import normalize_slug


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_EXTENSIONS = (".md", ".mdx")
META_FILE_NAMES = ("meta", "meta.json", "meta.yaml", "meta.yml")

# Raised for paths that simply are not there; never retried
NOT_FOUND_ERRORS = (FileNotFoundError, IsADirectoryError, NotADirectoryError)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: ``base_delay * 2**(attempt-1)`` capped at ``max_delay``."""

    attempts: int = 3
    base_delay: float = 0.05
    max_delay: float = 1.0

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    @classmethod
    def from_config(cls, storage_config) -> "RetryPolicy":
        return cls(
            attempts=storage_config.retry_attempts,
            base_delay=storage_config.retry_base_delay_ms / 1000,
            max_delay=storage_config.retry_max_delay_ms / 1000,
        )


class AbstractContentStore(ABC):
    """Read-only access to document bytes and directory metadata.

    Subclasses implement the single-attempt primitives; the public methods
    add retry with backoff and convert exhausted retries into
    ``StorageUnavailableError``.
    """

    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    async def read(self, storage_location: str, slug: str) -> RawContent | None:
        """Return the raw bytes for ``slug``, or None when no such document exists."""
        return await self._with_retry("read", storage_location, lambda: self._read(storage_location, slug))

    async def list_slugs(self, storage_location: str) -> list[str]:
        """Return every document slug under ``storage_location``, sorted."""
        slugs = await self._with_retry("list", storage_location, lambda: self._list_slugs(storage_location))
        return sorted(slugs)

    async def read_meta(self, storage_location: str, directory: str = "") -> bytes | None:
        """Return the raw ``meta`` sidecar of ``directory``, or None when absent."""
        return await self._with_retry(
            "read_meta", storage_location, lambda: self._read_meta(storage_location, directory)
        )

    @abstractmethod
    async def _read(self, storage_location: str, slug: str) -> RawContent | None:
        raise NotImplementedError

    @abstractmethod
    async def _list_slugs(self, storage_location: str) -> list[str]:
        raise NotImplementedError

    @abstractmethod
    async def _read_meta(self, storage_location: str, directory: str) -> bytes | None:
        raise NotImplementedError

    async def _with_retry(self, operation: str, storage_location: str, attempt_fn: Callable[[], Awaitable[T]]) -> T:
        policy = self.retry_policy
        last_error: OSError | None = None
        for attempt in range(1, policy.attempts + 1):
            try:
                return await attempt_fn()
            except OSError as exc:
                last_error = exc
                if attempt == policy.attempts:
                    break
                delay = policy.delay_for(attempt)
                STORAGE_RETRIES.labels(operation=operation).inc()
                logger.warning(
                    "Storage %s on %s failed (attempt %d/%d): %s; retrying in %.3fs",
                    operation,
                    storage_location,
                    attempt,
                    policy.attempts,
                    exc,
                    delay,
                )
                await self._sleep(delay)

        STORAGE_FAILURES.labels(operation=operation).inc()
        logger.error(
            "Storage %s on %s failed after %d attempts: %s", operation, storage_location, policy.attempts, last_error
        )
        raise StorageUnavailableError(storage_location, str(last_error), attempts=policy.attempts) from last_error


class FileSystemContentStore(AbstractContentStore):
    """Documents stored as ``{location}/{slug}{ext}`` files on a local filesystem.

    Directory metadata lives in a ``meta`` sidecar (``meta``, ``meta.json``,
    ``meta.yaml`` or ``meta.yml``) inside each directory. Blocking file I/O
    runs in anyio worker threads.
    """

    def __init__(
        self,
        extensions: tuple[str, ...] | list[str] = DEFAULT_EXTENSIONS,
        retry_policy: RetryPolicy | None = None,
        **kwargs,
    ) -> None:
        super().__init__(retry_policy, **kwargs)
        self.extensions = tuple(extensions)

    async def _read(self, storage_location: str, slug: str) -> RawContent | None:
        root = Path(storage_location)
        for ext in self.extensions:
            candidate = self._resolve_inside(root, f"{slug}{ext}")
            if candidate is None:
                return None
            try:
                data = await anyio.Path(candidate).read_bytes()
            except NOT_FOUND_ERRORS:
                continue
            return RawContent(storage_location=storage_location, slug=slug, data=data)
        return None

    async def _list_slugs(self, storage_location: str) -> list[str]:
        return await anyio.to_thread.run_sync(self._walk_slugs, Path(storage_location))

    async def _read_meta(self, storage_location: str, directory: str) -> bytes | None:
        root = Path(storage_location)
        for name in META_FILE_NAMES:
            relative = f"{directory}/{name}" if directory else name
            candidate = self._resolve_inside(root, relative)
            if candidate is None:
                return None
            try:
                return await anyio.Path(candidate).read_bytes()
            except NOT_FOUND_ERRORS:
                continue
        return None

    def _walk_slugs(self, root: Path) -> list[str]:
        if not root.is_dir():
            # Transient unmounts look exactly like this; let the retry loop see it
            raise FileNotFoundError(f"Storage location is not a directory: {root}")

        slugs: set[str] = set()
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = [name for name in dirnames if not name.startswith(".")]
            relative_dir = Path(dirpath).relative_to(root).as_posix()
            for filename in filenames:
                if filename.startswith(".") or filename in META_FILE_NAMES:
                    continue
                for ext in self.extensions:
                    if filename.endswith(ext) and len(filename) > len(ext):
                        stem = filename[: -len(ext)]
                        slug = stem if relative_dir == "." else f"{relative_dir}/{stem}"
                        try:
                            slugs.add(normalize_slug(slug))
                        except ValueError as exc:
                            logger.warning("Skipping %s in %s: not addressable as a slug (%s)", slug, root, exc)
                        break
        return list(slugs)

    @staticmethod
    def _resolve_inside(root: Path, relative: str) -> Path | None:
        """Join ``relative`` onto ``root``; paths escaping the root are treated as absent."""
        candidate = Path(os.path.normpath(root / relative))
        normalized_root = Path(os.path.normpath(root))
        if candidate != normalized_root and normalized_root not in candidate.parents:
            logger.warning("Rejected path escaping storage root %s: %s", root, relative)
            return None
        return candidate


class InMemoryContentStore(AbstractContentStore):
    """Dict-backed content store for embedding and tests.

    ``documents`` maps ``storage_location -> {slug: text or bytes}``; ``meta``
    maps ``storage_location -> {directory: text or bytes}``. Read counters,
    injectable transient failures and per-read latency make concurrency and
    retry behavior observable.
    """

    def __init__(
        self,
        documents: dict[str, dict[str, str | bytes]] | None = None,
        meta: dict[str, dict[str, str | bytes]] | None = None,
        retry_policy: RetryPolicy | None = None,
        *,
        latency: float = 0.0,
        **kwargs,
    ) -> None:
        super().__init__(retry_policy or RetryPolicy(base_delay=0.0, max_delay=0.0), **kwargs)
        self._documents: dict[str, dict[str, bytes]] = {}
        self._meta: dict[str, dict[str, bytes]] = {}
        for location, entries in (documents or {}).items():
            for slug, content in entries.items():
                self.put(location, slug, content)
        for location, entries in (meta or {}).items():
            for directory, content in entries.items():
                self.put_meta(location, directory, content)
        self.latency = latency
        self.read_counts: dict[tuple[str, str], int] = {}
        self.list_count = 0
        self._pending_failures: dict[str, int] = {}

    def put(self, storage_location: str, slug: str, content: str | bytes) -> None:
        data = content.encode("utf-8") if isinstance(content, str) else content
        self._documents.setdefault(storage_location, {})[slug] = data

    def put_meta(self, storage_location: str, directory: str, content: str | bytes) -> None:
        data = content.encode("utf-8") if isinstance(content, str) else content
        self._meta.setdefault(storage_location, {})[directory] = data

    def delete(self, storage_location: str, slug: str) -> bool:
        return self._documents.get(storage_location, {}).pop(slug, None) is not None

    def fail_next(self, storage_location: str, times: int = 1) -> None:
        """Make the next ``times`` operations against ``storage_location`` raise ``OSError``."""
        self._pending_failures[storage_location] = self._pending_failures.get(storage_location, 0) + times

    def reads_for(self, storage_location: str, slug: str) -> int:
        return self.read_counts.get((storage_location, slug), 0)

    @property
    def total_reads(self) -> int:
        return sum(self.read_counts.values())

    async def _simulate_io(self, storage_location: str) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)
        remaining = self._pending_failures.get(storage_location, 0)
        if remaining:
            self._pending_failures[storage_location] = remaining - 1
            raise OSError(f"simulated transient failure for {storage_location}")

    async def _read(self, storage_location: str, slug: str) -> RawContent | None:
        key = (storage_location, slug)
        self.read_counts[key] = self.read_counts.get(key, 0) + 1
        await self._simulate_io(storage_location)
        data = self._documents.get(storage_location, {}).get(slug)
        if data is None:
            return None
        return RawContent(storage_location=storage_location, slug=slug, data=data)

    async def _list_slugs(self, storage_location: str) -> list[str]:
        self.list_count += 1
        await self._simulate_io(storage_location)
        return list(self._documents.get(storage_location, {}))

    async def _read_meta(self, storage_location: str, directory: str) -> bytes | None:
        await self._simulate_io(storage_location)
        return self._meta.get(storage_location, {}).get(directory)
