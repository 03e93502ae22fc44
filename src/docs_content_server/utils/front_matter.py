"""YAML front matter utilities for documentation sources.

Front matter is a YAML mapping between ``---`` delimiter lines at the very
top of a document:

    ---
    title: Introduction
    order: 1
    ---
    # Introduction

    Welcome to the guide...

Parsing is strict: a document either has no front matter at all, or a
well-formed block of scalar values. Anything else raises
``FrontMatterError`` so a broken document is reported instead of served with
missing metadata.
"""

from datetime import date, datetime
import re
from typing import Any

import yaml


DELIMITER = "---"

_OPENING = re.compile(rf"\A{re.escape(DELIMITER)}[ \t]*\r?\n")
_CLOSING = re.compile(rf"^{re.escape(DELIMITER)}[ \t]*(?:\r?\n|\Z)", re.MULTILINE)

_INTEGER = re.compile(r"^-?\d+$")

ORDER_KEYS = ("order", "sidebar_position")


class FrontMatterError(ValueError):
    """Raised when a front matter block is present but malformed."""


def parse_front_matter(content: str) -> tuple[dict[str, Any], str]:
    """Split ``content`` into (front_matter_dict, body).

    Returns ``({}, content)`` when the document has no front matter block.

    Raises:
        FrontMatterError: If the block is unterminated, is not valid YAML,
            is not a mapping, or holds non-scalar values.

    Example:
        >>> metadata, body = parse_front_matter("---\\ntitle: Hi\\n---\\n# Body")
        >>> metadata["title"]
        'Hi'
        >>> body
        '# Body'
    """
    opening = _OPENING.match(content)
    if not opening:
        return {}, content

    closing = _CLOSING.search(content, opening.end())
    if not closing:
        raise FrontMatterError("front matter block is not terminated by '---'")

    yaml_text = content[opening.end() : closing.start()]
    body = content[closing.end() :]

    try:
        loaded = yaml.safe_load(yaml_text)
    except yaml.YAMLError as exc:
        raise FrontMatterError(f"invalid YAML: {exc}") from exc

    if loaded is None:
        return {}, body
    if not isinstance(loaded, dict):
        raise FrontMatterError(f"front matter must be a mapping, got {type(loaded).__name__}")

    metadata: dict[str, Any] = {}
    for key, value in loaded.items():
        if not isinstance(key, str):
            raise FrontMatterError(f"front matter keys must be strings, got {key!r}")
        metadata[key] = _normalize_scalar(key, value)
    return metadata, body


def _normalize_scalar(key: str, value: Any) -> Any:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise FrontMatterError(f"front matter value for '{key}' must be a scalar, got {type(value).__name__}")


def extract_order_hint(metadata: dict[str, Any]) -> int | None:
    """Return the integer ordering hint declared in front matter, if any.

    Raises:
        FrontMatterError: If an ordering key holds something other than an integer.
    """
    for key in ORDER_KEYS:
        if key not in metadata or metadata[key] is None:
            continue
        value = metadata[key]
        if isinstance(value, bool):
            raise FrontMatterError(f"'{key}' must be an integer, got a boolean")
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and _INTEGER.match(value.strip()):
            return int(value.strip())
        raise FrontMatterError(f"'{key}' must be an integer, got {value!r}")
    return None
