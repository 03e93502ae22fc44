"""Search analysis helpers."""

from docs_content_server.search.analyzers import Analyzer, get_analyzer


__all__ = ["Analyzer", "get_analyzer"]
