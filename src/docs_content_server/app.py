"""Main ASGI application entry point.

Architecture:
    Starlette App
      ├── /content/{tenant}/versions      → versions of a tenant
      ├── /content/{tenant}/{slug}        → resolved document
      ├── /navigation/{tenant}            → navigation tree
      ├── /search/{tenant}                → scoped search
      ├── /tenants, /health, /metrics
      └── /admin/registry/reload, /admin/changes

Usage:
    # Load from deployment.json
    python -m docs_content_server.app

    # Or specify a custom descriptor
    DEPLOYMENT_CONFIG=/path/to/deployment.yaml python -m docs_content_server.app
"""

import logging
from pathlib import Path

from starlette.applications import Starlette

from docs_content_server.app_builder import AppBuilder
from docs_content_server.config import Settings


logger = logging.getLogger(__name__)


def create_app(config_path: Path | None = None, *, settings: Settings | None = None) -> Starlette | None:
    """Create the ASGI application; returns None when the descriptor is invalid."""
    return AppBuilder(config_path, settings=settings).build()


def main() -> None:
    """Main entry point for the content server."""
    import uvicorn

    settings = Settings()
    builder = AppBuilder(settings=settings)
    app = builder.build()
    if app is None or builder.deployment_config is None:
        raise SystemExit(1)

    infra = builder.deployment_config.infrastructure
    profile = infra.get_active_log_profile()

    logger.info("Starting docs content server")
    logger.info("Configuration: %s", builder.config_path)
    logger.info("Tenants: %d", len(builder.deployment_config.tenants))
    logger.info("Health check: http://%s:%d/health", infra.host, infra.port)

    uvicorn.run(
        app,
        host=infra.host,
        port=infra.port,
        log_level=infra.log_level.lower(),
        log_config=None,  # keep the logging configured by AppBuilder
        access_log=profile.access_log,
    )


if __name__ == "__main__":
    main()
