"""Observability module for OpenTelemetry-aligned tracing, metrics, and logging."""

from docs_content_server.observability.context import bind_scope, get_trace_context, set_trace_context, trace_context
from docs_content_server.observability.logging import JsonFormatter, configure_logging
from docs_content_server.observability.metrics import (
    REQUEST_COUNT,
    REQUEST_LATENCY,
    SEARCH_LATENCY,
    configure_metrics_exporter,
    get_metrics,
    get_metrics_content_type,
    init_metrics,
    track_latency,
)
from docs_content_server.observability.tracing import (
    TraceContextMiddleware,
    configure_trace_exporter,
    create_span,
    get_tracer,
    init_tracing,
    trace_request,
)


__all__ = [
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "SEARCH_LATENCY",
    "JsonFormatter",
    "TraceContextMiddleware",
    "bind_scope",
    "configure_logging",
    "configure_metrics_exporter",
    "configure_trace_exporter",
    "create_span",
    "get_metrics",
    "get_metrics_content_type",
    "get_trace_context",
    "get_tracer",
    "init_metrics",
    "init_tracing",
    "set_trace_context",
    "trace_context",
    "trace_request",
    "track_latency",
]
