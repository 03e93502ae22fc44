"""Structured logging for the content server.

JSON lines carry the trace id plus the tenant and version being served, so a
request can be followed from the HTTP layer through the loader, navigation
and search logs. Document payloads that end up in ``extra=`` are summarized
rather than dumped.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from pathlib import Path
import sys
from typing import Any

import orjson

from docs_content_server.observability.context import current_scope, get_trace_context


TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [%(scope)s] %(message)s"
QUIET_LOGGERS = ("httpx", "httpcore", "opentelemetry")


class ScopeFilter(logging.Filter):
    """Stamp each record with ``scope`` (``tenant/version``) for text output."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.scope = current_scope()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, correlated with the request scope."""

    REDACT_KEYS = frozenset({"password", "token", "api_key", "secret", "authorization"})
    # Whole documents are never logged; only their size
    SUMMARIZE_KEYS = frozenset({"body", "data", "raw", "frontmatter"})
    MAX_MESSAGE_LEN = 2000
    MAX_FIELD_LEN = 500
    _RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime", "scope"}

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_trace_context()
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": self._clip(record.getMessage(), self.MAX_MESSAGE_LEN),
            "trace_id": ctx.get("trace_id", ""),
            "span_id": ctx.get("span_id", ""),
        }
        if record.name.startswith("docs_content_server."):
            entry["component"] = record.name.rsplit(".", 1)[-1]
        for key in ("tenant", "version"):
            if value := ctx.get(key):
                entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in self._RESERVED or key.startswith("_"):
                continue
            entry[key] = self._field(key, value)

        return orjson.dumps(entry, default=_json_default).decode("utf-8")

    @staticmethod
    def _clip(text: str, limit: int) -> str:
        return text if len(text) <= limit else text[:limit] + "..."

    def _field(self, key: str, value: Any) -> Any:
        lowered = key.lower()
        if lowered in self.REDACT_KEYS:
            return "[REDACTED]"
        if lowered in self.SUMMARIZE_KEYS and isinstance(value, (str, bytes, bytearray, dict)):
            return f"<{len(value)} {'keys' if isinstance(value, dict) else 'chars'}>"
        if isinstance(value, str):
            return self._clip(value, self.MAX_FIELD_LEN)
        return value


def _json_default(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        try:
            return sorted(value)
        except TypeError:
            return list(value)
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, (Path, Exception)):
        return str(value)
    return repr(value)


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    *,
    logger_levels: dict[str, str] | None = None,
    access_log: bool = False,
) -> logging.Handler:
    """Install a single stdout handler on the root logger and apply a log profile.

    Args:
        level: Root log level name
        json_output: JSON lines when True, scoped text lines otherwise
        logger_levels: Per-logger level overrides (logger name -> level name)
        access_log: Keep uvicorn access lines; otherwise raised to WARNING

    Returns:
        The installed handler
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ScopeFilter())
    handler.setFormatter(JsonFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO if access_log else logging.WARNING)

    for logger_name, logger_level in (logger_levels or {}).items():
        logging.getLogger(logger_name).setLevel(getattr(logging, logger_level.upper(), logging.INFO))
    return handler
