"""Resolution services: versions, documents, navigation and search."""

from .document_loader import DocumentEvent, DocumentLoader
from .navigation_builder import DirectoryMeta, NavigationBuilder
from .search_scoper import ScopedIndex, SearchScoper
from .version_resolver import VersionResolver


__all__ = [
    "DirectoryMeta",
    "DocumentEvent",
    "DocumentLoader",
    "NavigationBuilder",
    "ScopedIndex",
    "SearchScoper",
    "VersionResolver",
]
