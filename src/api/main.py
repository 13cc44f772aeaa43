"""FastAPI application for the printsync webhook receiver and admin API.

``create_app`` builds the application; the module-level ``app`` is what
uvicorn serves. The lifespan loads configuration, opens the database and
the provider client, and closes both on shutdown.
"""

import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version

from fastapi import FastAPI

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
# Ensure our application loggers are captured
logging.getLogger("src").setLevel(logging.INFO)

from src.api.routes import orders, webhooks  # noqa: E402
from src.fulfillment.config import FulfillmentConfig, load_config  # noqa: E402
from src.fulfillment.service import FulfillmentService, open_service  # noqa: E402

logger = logging.getLogger(__name__)


def _package_version() -> str:
    try:
        return _pkg_version("printsync")
    except PackageNotFoundError:
        return "unknown"


def create_app(
    config: FulfillmentConfig | None = None,
    service: FulfillmentService | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Configuration to use. If None it is loaded at startup from
            PRINTSYNC_CONFIG_PATH (or the standard locations) and the env.
        service: Pre-built service (tests). When given, the lifespan does
            not open or close anything.

    Returns:
        Configured FastAPI app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Async lifespan: open the service on startup, close it on shutdown."""
        if service is not None:
            app.state.fulfillment_service = service
            yield
            return

        resolved = config or load_config(os.environ.get("PRINTSYNC_CONFIG_PATH") or None)
        async with open_service(resolved) as opened:
            app.state.fulfillment_service = opened
            logger.info("printsync API started configured=%s", resolved.is_configured)
            yield
        app.state.fulfillment_service = None

    app = FastAPI(
        title="printsync API",
        description="Fulfillment provider webhooks and order sync",
        version=_package_version(),
        lifespan=lifespan,
    )
    app.include_router(webhooks.router)
    app.include_router(orders.router)

    @app.get("/health")
    def health_check() -> dict:
        """Health check with provider configuration status."""
        current = getattr(app.state, "fulfillment_service", None)
        return {
            "status": "healthy" if current is not None else "starting",
            "version": _package_version(),
            "provider_configured": bool(current and current.config.is_configured),
        }

    return app


app = create_app()
