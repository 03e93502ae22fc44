"""Slug normalization helpers.

A slug is a path-like identifier (``guide/intro``) for one document inside a
(tenant, version). Slugs never start with ``/``, never contain ``..`` or
empty segments, and only use URL-safe characters.
"""

import re


_SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9._-]*$")
MAX_SLUG_LENGTH = 512


def normalize_slug(raw_slug: str) -> str:
    """Return the canonical form of ``raw_slug``.

    Leading/trailing slashes are stripped and repeated slashes collapse.

    Raises:
        ValueError: If the slug is empty, too long, or contains an unsafe segment.

    Example:
        >>> normalize_slug("/guide//intro/")
        'guide/intro'
    """
    if len(raw_slug) > MAX_SLUG_LENGTH:
        raise ValueError(f"slug exceeds {MAX_SLUG_LENGTH} characters")
    segments = [segment for segment in raw_slug.strip().split("/") if segment]
    if not segments:
        raise ValueError("slug must not be empty")
    for segment in segments:
        if segment in {".", ".."} or not _SEGMENT_PATTERN.match(segment):
            raise ValueError(f"invalid slug segment '{segment}'")
    return "/".join(segments)


def parent_directory(slug: str) -> str:
    """Return the directory part of a slug (``""`` for top-level slugs)."""
    head, _, _ = slug.rpartition("/")
    return head


def leaf_name(slug: str) -> str:
    return slug.rpartition("/")[2]


def humanize(segment: str) -> str:
    """Turn a slug segment into a readable title (``getting-started`` -> ``Getting Started``)."""
    words = segment.replace("-", " ").replace("_", " ").split()
    title = " ".join(word[:1].upper() + word[1:] for word in words)
    return title or segment
