"""Composable builder for the content resolution HTTP server."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
import logging
from pathlib import Path
import time
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from docs_content_server.config import Settings
from docs_content_server.deployment_config import DeploymentConfig
from docs_content_server.domain.errors import ContentResolutionError, RegistryConfigError, StorageUnavailableError
from docs_content_server.engine import ContentEngine
from docs_content_server.observability import (
    REQUEST_COUNT,
    REQUEST_LATENCY,
    configure_logging,
    configure_metrics_exporter,
    configure_trace_exporter,
    get_metrics,
    get_metrics_content_type,
    init_metrics,
    init_tracing,
)
from docs_content_server.observability.metrics import RESOLUTION_ERRORS
from docs_content_server.observability.tracing import TraceContextMiddleware, trace_request
from docs_content_server.runtime.health import build_health_endpoint
from docs_content_server.runtime.signals import ShutdownSignal, install_shutdown_signals
from docs_content_server.utils.models import (
    ChangeNotification,
    ContentResponse,
    ErrorResponse,
    NavigationResponse,
    ReloadResponse,
    SearchResponse,
    SearchResultItem,
    VersionsResponse,
    VersionSummary,
)


if TYPE_CHECKING:
    from starlette.requests import Request

    from docs_content_server.adapters.content_store import AbstractContentStore


logger = logging.getLogger(__name__)
SERVICE_NAME = "docs-content-server"
_SHUTDOWN_DRAIN_TIMEOUT_S = 30.0
_TRUTHY = {"1", "true", "yes", "on"}


def error_response(code: str, message: str, status_code: int, *, retryable: bool = False) -> JSONResponse:
    return JSONResponse(ErrorResponse.of(code, message, retryable=retryable).to_payload(), status_code=status_code)


async def handle_resolution_error(request: Request, exc: Exception) -> JSONResponse:
    """Map the error taxonomy onto stable status/code pairs."""
    assert isinstance(exc, ContentResolutionError)
    RESOLUTION_ERRORS.labels(code=exc.code).inc()
    if isinstance(exc, StorageUnavailableError):
        logger.warning(
            "%s %s failed: storage %s unavailable: %s",
            request.method,
            request.url.path,
            exc.storage_location,
            exc.reason,
        )
    elif exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    return error_response(exc.code, exc.message, exc.status_code, retryable=exc.retryable)


async def track_requests(request: Request, call_next: Any) -> Response:
    """Record request count and latency labeled by top-level route."""
    segments = [segment for segment in request.url.path.split("/") if segment]
    route = f"/{segments[0]}" if segments else "/"
    start = time.perf_counter()
    response: Response = await call_next(request)
    REQUEST_LATENCY.labels(route=route).observe(time.perf_counter() - start)
    REQUEST_COUNT.labels(route=route, status=str(response.status_code)).inc()
    return response


def _version_param(request: Request) -> str | None:
    value = request.query_params.get("version", "").strip()
    return value or None


class AppBuilder:
    """Builds the ASGI app from a registry descriptor plus environment overrides."""

    def __init__(
        self,
        config_path: Path | str | None = None,
        *,
        settings: Settings | None = None,
        store: AbstractContentStore | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.config_path = Path(config_path) if config_path else self.settings.deployment_config
        self.store = store
        self.deployment_config: DeploymentConfig | None = None
        self.engine: ContentEngine | None = None

    def build(self) -> Starlette | None:
        """Build and return the Starlette application, or None if the descriptor is invalid."""
        config = self._load_config()
        if config is None:
            return None
        self.deployment_config = config
        infra = config.infrastructure

        profile = infra.get_active_log_profile()
        configure_logging(
            level=profile.level,
            json_output=profile.json_output,
            logger_levels=profile.logger_levels,
            access_log=profile.access_log,
        )
        collector = infra.observability
        init_metrics(service_name=SERVICE_NAME, resource_attributes=collector.resource_attributes)
        configure_metrics_exporter(collector, service_name=SERVICE_NAME)
        init_tracing(service_name=SERVICE_NAME, resource_attributes=collector.resource_attributes)
        configure_trace_exporter(collector)

        self.engine = ContentEngine(config, store=self.store, descriptor_path=self.config_path)
        routes = self._build_routes(self.engine)

        app = Starlette(
            debug=infra.log_level.lower() == "debug",
            routes=routes,
            lifespan=self._build_lifespan_manager(self.engine),
            exception_handlers={ContentResolutionError: handle_resolution_error},
        )
        app.state.engine = self.engine
        app.add_middleware(BaseHTTPMiddleware, dispatch=track_requests)
        app.add_middleware(BaseHTTPMiddleware, dispatch=trace_request)
        app.add_middleware(TraceContextMiddleware)

        install_shutdown_signals(app)
        logger.info(
            "Content server initialized with %d tenants / %d versions",
            len(self.engine.registry),
            self.engine.registry.version_count(),
        )
        return app

    def _load_config(self) -> DeploymentConfig | None:
        logger.info("Loading registry descriptor from %s", self.config_path)
        try:
            config = DeploymentConfig.from_file(self.config_path)
        except RegistryConfigError as exc:
            logger.error("Registry descriptor is invalid: %s", exc)
            return None
        try:
            return self.settings.apply(config)
        except ValidationError as exc:
            logger.error("Environment overrides are invalid: %s", exc)
            return None

    def _build_routes(self, engine: ContentEngine) -> list[Route]:
        admin_enabled = engine.config.infrastructure.admin_enabled
        return [
            Route("/health", endpoint=build_health_endpoint(engine), methods=["GET"]),
            Route("/metrics", endpoint=self._build_metrics_endpoint(), methods=["GET"]),
            Route("/tenants", endpoint=self._build_tenants_endpoint(engine), methods=["GET"]),
            Route("/content/{tenant}/versions", endpoint=self._build_versions_endpoint(engine), methods=["GET"]),
            Route("/content/{tenant}/{slug:path}", endpoint=self._build_content_endpoint(engine), methods=["GET"]),
            Route("/navigation/{tenant}", endpoint=self._build_navigation_endpoint(engine), methods=["GET"]),
            Route("/search/{tenant}", endpoint=self._build_search_endpoint(engine), methods=["GET"]),
            Route(
                "/admin/registry/reload",
                endpoint=self._build_reload_endpoint(engine, enabled=admin_enabled),
                methods=["POST"],
            ),
            Route(
                "/admin/changes",
                endpoint=self._build_changes_endpoint(engine, enabled=admin_enabled),
                methods=["POST"],
            ),
        ]

    def _build_metrics_endpoint(self):
        async def metrics_endpoint(_: Request) -> Response:
            return Response(content=get_metrics(), media_type=get_metrics_content_type())

        return metrics_endpoint

    def _build_tenants_endpoint(self, engine: ContentEngine):
        async def tenants_endpoint(_: Request) -> JSONResponse:
            tenants = engine.list_tenants()
            return JSONResponse({"tenants": tenants, "count": len(tenants)})

        return tenants_endpoint

    def _build_versions_endpoint(self, engine: ContentEngine):
        async def versions_endpoint(request: Request) -> JSONResponse:
            tenant_id = request.path_params["tenant"]
            versions = engine.list_versions(tenant_id)
            response = VersionsResponse(
                tenant=tenant_id,
                versions=[VersionSummary.from_version(version) for version in versions],
            )
            return JSONResponse(response.to_payload())

        return versions_endpoint

    def _build_content_endpoint(self, engine: ContentEngine):
        async def content_endpoint(request: Request) -> JSONResponse:
            tenant_id = request.path_params["tenant"]
            slug = request.path_params["slug"]
            _, document = await engine.get_content(tenant_id, slug, _version_param(request))
            rendered = None
            if request.query_params.get("render", "").lower() in _TRUTHY:
                rendered = engine.render(document)
            return JSONResponse(ContentResponse.from_document(document, rendered=rendered).to_payload())

        return content_endpoint

    def _build_navigation_endpoint(self, engine: ContentEngine):
        async def navigation_endpoint(request: Request) -> JSONResponse:
            tenant_id = request.path_params["tenant"]
            version, root = await engine.get_navigation(tenant_id, _version_param(request))
            response = NavigationResponse(tenant=tenant_id, version=version.version_id, root=root.as_dict())
            return JSONResponse(response.to_payload())

        return navigation_endpoint

    def _build_search_endpoint(self, engine: ContentEngine):
        async def search_endpoint(request: Request) -> JSONResponse:
            tenant_id = request.path_params["tenant"]
            query = request.query_params.get("q", "").strip()
            if not query:
                return error_response("InvalidQuery", "Query parameter 'q' must not be empty", 400)
            try:
                limit = int(request.query_params.get("limit", "20"))
            except ValueError:
                return error_response("InvalidQuery", "Query parameter 'limit' must be an integer", 400)
            if limit < 1:
                return error_response("InvalidQuery", "Query parameter 'limit' must be positive", 400)

            version, hits = await engine.search(tenant_id, query, _version_param(request), limit)
            response = SearchResponse(
                tenant=tenant_id,
                version=version.version_id,
                query=query,
                results=[SearchResultItem.from_hit(hit) for hit in hits],
            )
            return JSONResponse(response.to_payload())

        return search_endpoint

    def _build_reload_endpoint(self, engine: ContentEngine, *, enabled: bool):
        async def reload_endpoint(_: Request) -> JSONResponse:
            if not enabled:
                return error_response("NotFound", "Admin endpoints are disabled", 404)
            try:
                summary = engine.reload_registry()
            except RegistryConfigError as exc:
                return error_response("InvalidRegistry", str(exc), 422)
            return JSONResponse(ReloadResponse(**summary).to_payload())

        return reload_endpoint

    def _build_changes_endpoint(self, engine: ContentEngine, *, enabled: bool):
        async def changes_endpoint(request: Request) -> JSONResponse:
            if not enabled:
                return error_response("NotFound", "Admin endpoints are disabled", 404)
            try:
                payload = await request.json()
            except ValueError:
                return error_response("InvalidPayload", "Request body must be JSON", 400)
            try:
                notice = ChangeNotification.model_validate(payload)
            except ValidationError as exc:
                return error_response("InvalidPayload", _first_error(exc), 400)

            if notice.storage_location is not None:
                try:
                    delivered = engine.notify_change(notice.storage_location, notice.slug)
                except ValueError as exc:
                    return error_response("InvalidPayload", str(exc), 400)
                return JSONResponse({"status": "accepted", "subscribers": delivered}, status_code=202)

            assert notice.tenant_id is not None
            evicted = engine.invalidate(notice.tenant_id, notice.version_id, notice.slug)
            return JSONResponse({"status": "accepted", "evicted": evicted}, status_code=202)

        return changes_endpoint

    def _build_lifespan_manager(self, engine: ContentEngine):
        @asynccontextmanager
        async def lifespan(app: Starlette):
            await engine.start()

            drained = False

            async def drain(reason: str) -> None:
                nonlocal drained
                if drained:
                    return
                drained = True
                logger.info("Draining content engine (%s)", reason)
                await engine.shutdown()

            shutdown_monitor: asyncio.Task | None = None
            shutdown = getattr(app.state, "shutdown", None)
            if isinstance(shutdown, ShutdownSignal):

                async def watch_shutdown() -> None:
                    await shutdown.event.wait()
                    try:
                        await asyncio.wait_for(
                            asyncio.shield(drain(shutdown.received or "signal")), timeout=_SHUTDOWN_DRAIN_TIMEOUT_S
                        )
                    except asyncio.TimeoutError:
                        logger.warning("Engine drain timed out after %ss (signal)", _SHUTDOWN_DRAIN_TIMEOUT_S)

                shutdown_monitor = asyncio.create_task(watch_shutdown())

            try:
                yield
            finally:
                if shutdown_monitor is not None:
                    shutdown_monitor.cancel()
                    with suppress(asyncio.CancelledError):
                        await shutdown_monitor
                try:
                    await asyncio.wait_for(asyncio.shield(drain("lifespan-exit")), timeout=_SHUTDOWN_DRAIN_TIMEOUT_S)
                except asyncio.TimeoutError:
                    logger.warning("Engine drain timed out after %ss (lifespan)", _SHUTDOWN_DRAIN_TIMEOUT_S)

        return lifespan


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid payload"
    message = errors[0].get("msg", "invalid payload")
    return message.removeprefix("Value error, ")
