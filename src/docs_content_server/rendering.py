"""Renderer capability consumed by the content endpoint.

Rendering interactive widgets is outside the engine. A renderer receives the
resolved document body plus a component registry and returns opaque output.
"""

from collections.abc import Mapping
from typing import Any, Protocol


class ContentRenderer(Protocol):
    def render(self, body: str, component_registry: Mapping[str, Any]) -> str:  # pragma: no cover - interface
        ...


class PassthroughRenderer:
    """Returns the body untouched; the default when no external renderer is plugged in."""

    def render(self, body: str, component_registry: Mapping[str, Any]) -> str:
        return body
