"""Unit tests for structured logging, trace context and metrics."""

import logging

import orjson
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode
from prometheus_client import REGISTRY
import pytest

from docs_content_server.deployment_config import ObservabilityCollectorConfig
from docs_content_server.domain.errors import StorageUnavailableError, TenantNotFoundError
from docs_content_server.observability.context import (
    bind_scope,
    current_scope,
    get_trace_context,
    set_trace_context,
    trace_context,
)
from docs_content_server.observability.logging import JsonFormatter, ScopeFilter, configure_logging
from docs_content_server.observability.metrics import (
    NAVIGATION_BUILDS,
    REGISTRY_RELOADS,
    SEARCH_LATENCY,
    build_metric_exporter,
    configure_metrics_exporter,
    get_metrics,
    init_metrics,
    track_latency,
)
from docs_content_server.observability.tracing import (
    configure_trace_exporter,
    create_span,
    extract_tenant_from_path,
    init_tracing,
)


@pytest.fixture
def fresh_trace_context():
    token = trace_context.set(None)
    yield
    trace_context.reset(token)


def _record(message="hello", name="docs_content_server.services.document_loader", **extra):
    record = logging.LogRecord(name, logging.WARNING, __file__, 10, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    def test_includes_trace_and_tenant(self, fresh_trace_context):
        set_trace_context("a" * 32, "b" * 16, tenant="acme")

        payload = orjson.loads(JsonFormatter().format(_record()))

        assert payload["trace_id"] == "a" * 32
        assert payload["span_id"] == "b" * 16
        assert payload["tenant"] == "acme"
        assert payload["component"] == "document_loader"
        assert payload["level"] == "WARNING"

    def test_extra_fields_are_redacted(self, fresh_trace_context):
        payload = orjson.loads(JsonFormatter().format(_record(token="s3cr3t", slug="guide/intro")))

        assert payload["token"] == "[REDACTED]"
        assert payload["slug"] == "guide/intro"

    def test_long_messages_are_truncated(self, fresh_trace_context):
        payload = orjson.loads(JsonFormatter().format(_record("x" * 5000)))
        assert len(payload["message"]) == JsonFormatter.MAX_MESSAGE_LEN + 3

    def test_unserializable_extras_fall_back(self, fresh_trace_context):
        payload = orjson.loads(JsonFormatter().format(_record(scopes={("acme", "v1")}, etag=b"bytes")))
        assert payload["etag"] == "bytes"
        assert payload["scopes"] == [["acme", "v1"]]

    def test_document_payloads_are_summarized(self, fresh_trace_context):
        payload = orjson.loads(JsonFormatter().format(_record(body="x" * 40, frontmatter={"title": "Intro"})))

        assert payload["body"] == "<40 chars>"
        assert payload["frontmatter"] == "<1 keys>"

    def test_bound_version_is_reported(self, fresh_trace_context):
        bind_scope("acme", "v2")

        payload = orjson.loads(JsonFormatter().format(_record()))

        assert (payload["tenant"], payload["version"]) == ("acme", "v2")


def test_trace_context_is_generated_on_demand(fresh_trace_context):
    ctx = get_trace_context()
    assert len(ctx["trace_id"]) == 32
    assert get_trace_context() is ctx


def test_current_scope_for_text_logs(fresh_trace_context):
    assert current_scope() == "-"
    bind_scope("acme")
    assert current_scope() == "acme"
    bind_scope("acme", "v1")
    assert current_scope() == "acme/v1"

    record = _record()
    ScopeFilter().filter(record)
    assert record.scope == "acme/v1"


def test_configure_logging_applies_overrides():
    configure_logging(level="warning", json_output=True, logger_levels={"docs_content_server.services": "debug"})

    root = logging.getLogger()
    assert root.level == logging.WARNING
    assert isinstance(root.handlers[0].formatter, JsonFormatter)
    assert logging.getLogger("docs_content_server.services").level == logging.DEBUG
    assert logging.getLogger("uvicorn.access").level == logging.WARNING


@pytest.mark.parametrize(
    ("path", "tenant"),
    [
        ("/content/acme/guide/intro", "acme"),
        ("/navigation/globex", "globex"),
        ("/search/acme", "acme"),
        ("/tenants", None),
        ("/content", None),
        ("/admin/changes", None),
    ],
)
def test_extract_tenant_from_path(path, tenant):
    assert extract_tenant_from_path(path) == tenant


def test_create_span_propagates_exceptions(fresh_trace_context):
    init_tracing()
    with pytest.raises(RuntimeError):
        with create_span("test.span", attributes={"tenant.id": "acme", "version.id": None}):
            raise RuntimeError("boom")


class TestMetrics:
    def test_init_metrics_is_idempotent(self):
        assert init_metrics() is init_metrics()

    def test_counter_updates_prometheus_sample(self):
        before = REGISTRY.get_sample_value("registry_reloads_total", {"status": "applied"}) or 0.0

        REGISTRY_RELOADS.labels(status="applied").inc()

        assert REGISTRY.get_sample_value("registry_reloads_total", {"status": "applied"}) == before + 1

    def test_track_latency_observes_even_on_error(self):
        labels = {"tenant": "latency-test"}
        before = REGISTRY.get_sample_value("search_latency_seconds_count", labels) or 0.0

        with pytest.raises(ValueError):
            with track_latency(SEARCH_LATENCY, **labels):
                raise ValueError("fail")

        assert REGISTRY.get_sample_value("search_latency_seconds_count", labels) == before + 1

    def test_exposition_lists_metrics(self):
        NAVIGATION_BUILDS.labels(tenant="exposition").inc()
        assert b"navigation_builds_total" in get_metrics()


def test_lookup_misses_do_not_fail_spans(fresh_trace_context):
    exporter = InMemorySpanExporter()
    init_tracing().add_span_processor(SimpleSpanProcessor(exporter))

    with pytest.raises(TenantNotFoundError):
        with create_span("test.lookup_miss"):
            raise TenantNotFoundError("initech")
    with pytest.raises(StorageUnavailableError):
        with create_span("test.storage_down"):
            raise StorageUnavailableError("/srv/docs/acme/v1", "disk gone")

    spans = {span.name: span for span in exporter.get_finished_spans()}
    miss, down = spans["test.lookup_miss"], spans["test.storage_down"]
    assert miss.status.status_code is StatusCode.UNSET
    assert miss.attributes["content.error_code"] == "TenantNotFound"
    assert down.status.status_code is StatusCode.ERROR


class TestOtlpExport:
    HTTP_COLLECTOR = ObservabilityCollectorConfig(
        enabled=True, otlp_protocol="http", collector_endpoint="http://localhost:4318/v1/traces"
    )

    @pytest.mark.parametrize("config", [None, ObservabilityCollectorConfig()])
    def test_disabled_export_is_a_no_op(self, config):
        assert configure_trace_exporter(config) is None
        assert configure_metrics_exporter(config) is None

    def test_trace_exporter_attaches_to_given_provider(self):
        provider = TracerProvider()

        exporter = configure_trace_exporter(self.HTTP_COLLECTOR, provider)

        assert isinstance(exporter, OTLPSpanExporter)
        assert REGISTRY.get_sample_value("otlp_exporter_enabled", {"signal": "traces", "protocol": "http"}) == 1.0
        provider.shutdown()

    def test_metric_exporter_targets_metrics_path(self):
        exporter = build_metric_exporter(self.HTTP_COLLECTOR)

        assert isinstance(exporter, OTLPMetricExporter)
        assert exporter._endpoint == "http://localhost:4318/v1/metrics"
