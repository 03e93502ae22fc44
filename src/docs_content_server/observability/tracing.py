"""OpenTelemetry spans around content resolution and HTTP requests.

Spans are recorded by the SDK provider and, when the collector config enables
it, batched to an OTLP collector. Their ids feed the trace context so log
lines of one request share a trace id. Lookups that fail because the caller
asked for something that does not exist are recorded on the span but do not
mark it as an error.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter as GrpcOTLPSpanExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter as HttpOTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.trace import SpanKind, Status, StatusCode

from docs_content_server.observability.context import (
    generate_span_id,
    get_trace_context,
    set_trace_context,
    update_span_id,
)
from docs_content_server.observability.metrics import OTLP_EXPORT_ERRORS, OTLP_EXPORT_STATUS


if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.trace import Span, Tracer
    from starlette.requests import Request
    from starlette.responses import Response

    from docs_content_server.deployment_config import ObservabilityCollectorConfig

logger = logging.getLogger(__name__)

TRACE_HEADER = "x-trace-id"
# Route prefixes whose second path segment is a tenant id
TENANT_ROUTE_PREFIXES = frozenset({"content", "navigation", "search"})

_tracer_holder: dict[str, Any] = {"tracer": None, "provider": None, "exporter": None}


def init_tracing(
    service_name: str = "docs-content-server",
    resource_attributes: dict[str, str] | None = None,
) -> TracerProvider:
    """Install the SDK tracer provider once per process."""
    existing = _tracer_holder.get("provider")
    if isinstance(existing, TracerProvider):
        return existing

    provider = TracerProvider(resource=Resource.create({"service.name": service_name, **(resource_attributes or {})}))
    trace.set_tracer_provider(provider)
    _tracer_holder["provider"] = provider
    _tracer_holder["tracer"] = trace.get_tracer(__name__)
    logger.info("Tracing initialized for service: %s", service_name)
    return provider


def build_span_exporter(config: ObservabilityCollectorConfig) -> SpanExporter:
    if config.otlp_protocol == "grpc":
        return GrpcOTLPSpanExporter(
            endpoint=config.collector_endpoint,
            headers=config.headers,
            timeout=config.timeout_seconds,
            insecure=config.grpc_insecure,
        )
    return HttpOTLPSpanExporter(
        endpoint=config.collector_endpoint,
        headers=config.headers,
        timeout=config.timeout_seconds,
    )


def configure_trace_exporter(
    config: ObservabilityCollectorConfig | None,
    provider: TracerProvider | None = None,
) -> SpanExporter | None:
    """Batch spans of ``provider`` (default: the process provider) to an OTLP collector."""
    if config is None or not config.enabled:
        return None
    if provider is None and _tracer_holder["exporter"] is not None:
        return _tracer_holder["exporter"]

    active_provider = provider or trace.get_tracer_provider()
    if not isinstance(active_provider, TracerProvider):
        active_provider = init_tracing(resource_attributes=config.resource_attributes)

    protocol = config.otlp_protocol
    OTLP_EXPORT_STATUS.labels(signal="traces", protocol=protocol).set(0)
    try:
        exporter = build_span_exporter(config)
    except Exception as exc:
        logger.error("Failed to configure OTLP trace exporter: %s", exc, exc_info=True)
        OTLP_EXPORT_ERRORS.labels(signal="traces", protocol=protocol).inc()
        return None

    active_provider.add_span_processor(BatchSpanProcessor(exporter))
    if provider is None:
        _tracer_holder["exporter"] = exporter
    OTLP_EXPORT_STATUS.labels(signal="traces", protocol=protocol).set(1)
    logger.info("OTLP trace export enabled (%s) to %s", protocol, config.collector_endpoint)
    return exporter


def get_tracer() -> Tracer:
    if _tracer_holder["tracer"] is None:
        _tracer_holder["tracer"] = trace.get_tracer(__name__)
    return _tracer_holder["tracer"]  # type: ignore[return-value]


def extract_tenant_from_path(path: str) -> str | None:
    """Return the tenant segment of ``/content/{tenant}/...`` style paths."""
    parts = [part for part in path.split("/") if part]
    if len(parts) >= 2 and parts[0] in TENANT_ROUTE_PREFIXES:
        return parts[1]
    return None


def _record_failure(span: Span, exc: Exception) -> None:
    code = getattr(exc, "code", None)
    if code is not None:
        span.set_attribute("content.error_code", code)
    if getattr(exc, "status_code", 500) < 500:
        span.set_status(Status(StatusCode.UNSET))
        return
    span.set_status(Status(StatusCode.ERROR, str(exc)))
    span.record_exception(exc)


@contextmanager
def create_span(
    name: str,
    kind: SpanKind = SpanKind.INTERNAL,
    attributes: dict[str, Any] | None = None,
) -> Generator[Span, None, None]:
    """Open a span, publish its id to the log context, and re-raise failures."""
    tracer = get_tracer()
    with tracer.start_as_current_span(name, kind=kind, record_exception=False, set_status_on_exception=False) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)

        span_context = span.get_span_context()
        if span_context.is_valid:
            update_span_id(format(span_context.span_id, "016x"))

        try:
            yield span
        except Exception as exc:
            _record_failure(span, exc)
            raise


class TraceContextMiddleware:
    """Seed the trace context per request and echo the trace id on the response."""

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: dict, receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        trace_id = headers.get(TRACE_HEADER.encode(), b"").decode() or get_trace_context()["trace_id"]
        extra: dict[str, object] = {}
        if tenant := extract_tenant_from_path(scope.get("path", "")):
            extra["tenant"] = tenant
        set_trace_context(trace_id, generate_span_id(), **extra)

        async def send_with_trace_id(message: dict) -> None:
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                message["headers"] = [*message["headers"], (TRACE_HEADER.encode(), trace_id.encode())]
            await send(message)

        await self.app(scope, receive, send_with_trace_id)


async def trace_request(request: Request, call_next: Any) -> Response:
    """Wrap each request in a server span tagged with tenant and requested version."""
    attributes: dict[str, Any] = {
        "http.method": request.method,
        "http.route": request.url.path,
        "tenant.id": extract_tenant_from_path(request.url.path),
        "version.requested": request.query_params.get("version") or None,
    }

    with create_span("http.request", kind=SpanKind.SERVER, attributes=attributes) as span:
        response: Response = await call_next(request)
        span.set_attribute("http.status_code", response.status_code)
        if response.status_code >= 500:
            span.set_status(Status(StatusCode.ERROR, f"HTTP {response.status_code}"))
        return response
