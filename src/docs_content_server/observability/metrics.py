"""Prometheus metrics for content resolution, mirrored to OpenTelemetry instruments.

The OpenTelemetry side can additionally be pushed to a collector over OTLP
when ``infrastructure.observability`` enables it.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import time
from typing import TYPE_CHECKING, Any

from opentelemetry import metrics as otel_metrics
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
    OTLPMetricExporter as GrpcOTLPMetricExporter,
)
from opentelemetry.exporter.otlp.proto.http.metric_exporter import (
    OTLPMetricExporter as HttpOTLPMetricExporter,
)
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest


if TYPE_CHECKING:
    from collections.abc import Generator

    from docs_content_server.deployment_config import ObservabilityCollectorConfig


logger = logging.getLogger(__name__)

_meter_holder: dict[str, Any] = {"meter": None, "provider": None, "reader": None}
_bridges: list[MetricBridge] = []


def init_metrics(
    service_name: str = "docs-content-server",
    resource_attributes: dict[str, str] | None = None,
    metric_readers: list[PeriodicExportingMetricReader] | None = None,
) -> MeterProvider:
    """Initialize the OpenTelemetry meter provider (idempotent)."""
    provider = _meter_holder.get("provider")
    if isinstance(provider, MeterProvider):
        return provider

    attributes = {"service.name": service_name}
    if resource_attributes:
        attributes.update(resource_attributes)
    provider = MeterProvider(resource=Resource.create(attributes), metric_readers=metric_readers or [])
    otel_metrics.set_meter_provider(provider)
    _meter_holder["provider"] = provider
    _meter_holder["meter"] = otel_metrics.get_meter(__name__)
    if metric_readers:
        _meter_holder["reader"] = metric_readers[0]
    return provider


def _get_meter():
    meter = _meter_holder.get("meter")
    if meter is None:
        init_metrics()
        meter = _meter_holder.get("meter")
    return meter


def _label_key(labels: dict[str, str]) -> tuple[tuple[str, str], ...]:
    return tuple(sorted(labels.items()))


class _BoundMetric:
    def __init__(self, wrapper: MetricBridge, labels: dict[str, str]) -> None:
        self._wrapper = wrapper
        self._labels = labels

    def inc(self, amount: float = 1.0) -> None:
        self._wrapper.inc(self._labels, amount)

    def observe(self, value: float) -> None:
        self._wrapper.observe(self._labels, value)

    def set(self, value: float) -> None:
        self._wrapper.set(self._labels, value)


class MetricBridge:
    """Bridge a Prometheus metric to a lazily created OTel instrument."""

    def __init__(self, prom_metric: Counter | Histogram | Gauge, *, otel_kind: str) -> None:
        self._prom_metric = prom_metric
        self._otel_kind = otel_kind
        self._otel_instrument = None
        self._last_values: dict[tuple[tuple[str, str], ...], float] = {}
        _bridges.append(self)

    @property
    def name(self) -> str:
        return self._prom_metric._name

    def labels(self, **labels: str) -> _BoundMetric:
        return _BoundMetric(self, labels)

    def reset_instrument(self) -> None:
        """Forget the OTel instrument so the next update creates it on the current meter."""
        self._otel_instrument = None
        self._last_values.clear()

    def _ensure_otel_instrument(self):
        if self._otel_instrument is not None:
            return self._otel_instrument
        meter = _get_meter()
        description = self._prom_metric._documentation
        if self._otel_kind == "counter":
            self._otel_instrument = meter.create_counter(self.name, description=description)
        elif self._otel_kind == "histogram":
            self._otel_instrument = meter.create_histogram(self.name, description=description)
        elif self._otel_kind == "gauge":
            self._otel_instrument = meter.create_up_down_counter(self.name, description=description)
        else:
            raise ValueError(f"Unknown metric kind: {self._otel_kind}")
        return self._otel_instrument

    def inc(self, labels: dict[str, str], amount: float) -> None:
        self._prom_metric.labels(**labels).inc(amount)
        self._ensure_otel_instrument().add(amount, labels)

    def observe(self, labels: dict[str, str], value: float) -> None:
        self._prom_metric.labels(**labels).observe(value)
        self._ensure_otel_instrument().record(value, labels)

    def set(self, labels: dict[str, str], value: float) -> None:
        self._prom_metric.labels(**labels).set(value)
        key = _label_key(labels)
        delta = value - self._last_values.get(key, 0.0)
        if delta:
            self._ensure_otel_instrument().add(delta, labels)
        self._last_values[key] = value


# HTTP golden signals
REQUEST_LATENCY = MetricBridge(
    Histogram(
        "content_request_latency_seconds",
        "HTTP request latency in seconds",
        ["route"],
        buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
    ),
    otel_kind="histogram",
)

REQUEST_COUNT = MetricBridge(
    Counter("content_requests_total", "Total HTTP requests", ["route", "status"]),
    otel_kind="counter",
)

RESOLUTION_ERRORS = MetricBridge(
    Counter("content_resolution_errors_total", "Resolution errors surfaced to callers", ["code"]),
    otel_kind="counter",
)

# Document loader
DOCUMENT_CACHE_EVENTS = MetricBridge(
    Counter(
        "document_cache_events_total",
        "Document cache lookups by outcome (hit, miss, negative_hit)",
        ["outcome"],
    ),
    otel_kind="counter",
)

DOCUMENT_LOAD_LATENCY = MetricBridge(
    Histogram(
        "document_load_latency_seconds",
        "Latency of a storage read plus parse",
        ["tenant"],
        buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
    ),
    otel_kind="histogram",
)

CACHED_DOCUMENTS = MetricBridge(
    Gauge("document_cache_entries", "Entries held by the document cache", ["kind"]),
    otel_kind="gauge",
)

# Content store
STORAGE_RETRIES = MetricBridge(
    Counter("storage_retries_total", "Storage operations retried after a transient failure", ["operation"]),
    otel_kind="counter",
)

STORAGE_FAILURES = MetricBridge(
    Counter("storage_failures_total", "Storage operations that exhausted their retries", ["operation"]),
    otel_kind="counter",
)

# Navigation and search
NAVIGATION_BUILDS = MetricBridge(
    Counter("navigation_builds_total", "Navigation trees built", ["tenant"]),
    otel_kind="counter",
)

SEARCH_LATENCY = MetricBridge(
    Histogram(
        "search_latency_seconds",
        "Search query latency",
        ["tenant"],
        buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5),
    ),
    otel_kind="histogram",
)

INDEX_DOC_COUNT = MetricBridge(
    Gauge("index_document_count", "Documents in a scoped search index", ["tenant", "version"]),
    otel_kind="gauge",
)

REGISTRY_RELOADS = MetricBridge(
    Counter("registry_reloads_total", "Registry reload attempts", ["status"]),
    otel_kind="counter",
)

# OTLP export
OTLP_EXPORT_ERRORS = MetricBridge(
    Counter("otlp_export_errors_total", "OTLP exporters that failed to configure", ["signal", "protocol"]),
    otel_kind="counter",
)

OTLP_EXPORT_STATUS = MetricBridge(
    Gauge("otlp_exporter_enabled", "OTLP exporter enabled status (1=enabled, 0=disabled)", ["signal", "protocol"]),
    otel_kind="gauge",
)


def build_metric_exporter(config: ObservabilityCollectorConfig) -> MetricExporter:
    if config.otlp_protocol == "grpc":
        return GrpcOTLPMetricExporter(
            endpoint=config.metrics_endpoint,
            headers=config.headers,
            timeout=config.timeout_seconds,
            insecure=config.grpc_insecure,
        )
    return HttpOTLPMetricExporter(
        endpoint=config.metrics_endpoint,
        headers=config.headers,
        timeout=config.timeout_seconds,
    )


def configure_metrics_exporter(
    config: ObservabilityCollectorConfig | None,
    provider: MeterProvider | None = None,
    *,
    service_name: str = "docs-content-server",
) -> PeriodicExportingMetricReader | None:
    """Push the OpenTelemetry instruments to an OTLP collector.

    Readers can only be attached when a meter provider is created, so a
    provider that was initialized without one is replaced and every bridged
    instrument is re-created on the replacement. Returns the active reader,
    or None when export is disabled or could not be configured.
    """
    if config is None or not config.enabled:
        return None
    if _meter_holder.get("reader") is not None:
        return _meter_holder["reader"]

    protocol = config.otlp_protocol
    try:
        reader = PeriodicExportingMetricReader(build_metric_exporter(config))
    except Exception as exc:
        logger.error("Failed to configure OTLP metrics exporter: %s", exc, exc_info=True)
        OTLP_EXPORT_ERRORS.labels(signal="metrics", protocol=protocol).inc()
        return None

    active_provider = provider or _meter_holder.get("provider")
    if not isinstance(active_provider, MeterProvider):
        init_metrics(service_name=service_name, resource_attributes=config.resource_attributes, metric_readers=[reader])
    else:
        attributes = {"service.name": service_name, **config.resource_attributes}
        replacement = MeterProvider(resource=Resource.create(attributes), metric_readers=[reader])
        _meter_holder["provider"] = replacement
        _meter_holder["meter"] = replacement.get_meter(__name__)
        _meter_holder["reader"] = reader
        for bridge in _bridges:
            bridge.reset_instrument()

    OTLP_EXPORT_STATUS.labels(signal="metrics", protocol=protocol).set(1)
    logger.info("OTLP metrics export enabled (%s) to %s", protocol, config.metrics_endpoint)
    return reader


@contextmanager
def track_latency(histogram: MetricBridge, **labels: str) -> Generator[None, None, None]:
    """Context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    """Get content type for metrics endpoint."""
    return CONTENT_TYPE_LATEST
