"""Storage adapters."""

from docs_content_server.adapters.content_store import (
    AbstractContentStore,
    FileSystemContentStore,
    InMemoryContentStore,
    RetryPolicy,
)


__all__ = [
    "AbstractContentStore",
    "FileSystemContentStore",
    "InMemoryContentStore",
    "RetryPolicy",
]
