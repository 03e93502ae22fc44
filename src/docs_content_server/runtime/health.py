"""Health endpoint factory."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.responses import JSONResponse


if TYPE_CHECKING:
    from starlette.requests import Request

    from docs_content_server.engine import ContentEngine


def build_health_endpoint(engine: ContentEngine):
    """Return a coroutine function reporting registry and cache status.

    Answers 503 once a shutdown signal has been received so load balancers
    stop routing to an instance that is draining.
    """

    async def health_check(request: Request) -> JSONResponse:
        payload = engine.health()
        shutdown = getattr(request.app.state, "shutdown", None)
        if shutdown is not None and shutdown.event.is_set():
            payload["status"] = "draining"
            payload["shutdownReason"] = shutdown.received
        return JSONResponse(payload, status_code=200 if payload["status"] == "healthy" else 503)

    return health_check
