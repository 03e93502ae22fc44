"""Per-request correlation state shared by logs and spans.

One dict per asyncio task holds the trace id, the current span id and, once a
request has been resolved, the tenant and version it is serving.
"""

from __future__ import annotations

from contextvars import ContextVar
from uuid import uuid4


trace_context: ContextVar[dict | None] = ContextVar("trace_context", default=None)


def generate_trace_id() -> str:
    """Generate a 32-char hex trace ID."""
    return uuid4().hex


def generate_span_id() -> str:
    """Generate a 16-char hex span ID."""
    return uuid4().hex[:16]


def get_trace_context() -> dict:
    """Current correlation state, creating a fresh trace id on first use."""
    ctx = trace_context.get()
    if ctx is None or not ctx.get("trace_id"):
        ctx = {"trace_id": generate_trace_id(), "span_id": generate_span_id()}
        trace_context.set(ctx)
    return ctx


def set_trace_context(trace_id: str, span_id: str, **extra: object) -> None:
    trace_context.set({"trace_id": trace_id, "span_id": span_id, **extra})


def update_span_id(span_id: str) -> None:
    ctx = trace_context.get() or {}
    trace_context.set({**ctx, "span_id": span_id})


def bind_scope(tenant_id: str, version_id: str | None = None) -> None:
    """Record the (tenant, version) the current request resolved to."""
    ctx = get_trace_context()
    scoped = {**ctx, "tenant": tenant_id}
    if version_id is not None:
        scoped["version"] = version_id
    trace_context.set(scoped)


def current_scope() -> str:
    """``tenant/version``, ``tenant`` or ``-`` for log lines."""
    ctx = trace_context.get() or {}
    tenant = ctx.get("tenant")
    if not tenant:
        return "-"
    version = ctx.get("version")
    return f"{tenant}/{version}" if version else str(tenant)
