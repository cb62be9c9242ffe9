"""
FastAPI Application Factory.

This module provides a clean, configurable FastAPI application setup.

Usage:
    # Development
    uvicorn api.app:create_app --factory --reload

    # Production
    uvicorn api.app:app --host 0.0.0.0 --port 8080 --workers 1

    # Or use the convenience function
    from api.app import create_app
    app = create_app()
"""

import asyncio
from contextlib import asynccontextmanager, suppress
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import get_settings
from core.logging import configure_logging, get_logger
from core.middleware import RequestTracingMiddleware
from realtime_sync.reconciler import get_category_count_reconciler
from realtime_sync.subscriber import get_realtime_product_service
from search.errors import SubscriptionError


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Runs on startup:
    - Initialize logging
    - Subscribe the category count reconciler to live product changes
    - Start the periodic batch reconciler (when configured)

    Runs on shutdown:
    - Stop the periodic reconciler
    - Release every live subscription
    """
    settings = get_settings()

    configure_logging(
        json_logs=settings.is_production,
        log_level="DEBUG" if settings.debug else "INFO",
    )

    logger.info(
        "Starting catalog search API",
        environment=settings.environment,
        store_backend=settings.store_backend,
        port=settings.port,
    )

    realtime = get_realtime_product_service()
    reconciler = get_category_count_reconciler()

    if settings.realtime_count_sync_enabled:
        try:
            realtime.subscribe_to_product_count_changes(reconciler)
        except SubscriptionError as e:
            # Counts still converge through the batch path
            logger.warning("Live category count updates unavailable", error=str(e))

    periodic_task = None
    if settings.reconcile_interval_seconds > 0:
        periodic_task = asyncio.create_task(
            reconciler.run_periodically(settings.reconcile_interval_seconds)
        )

    yield  # Application is running

    logger.info("Shutting down catalog search API")
    if periodic_task is not None:
        periodic_task.cancel()
        with suppress(asyncio.CancelledError):
            await periodic_task
    realtime.unsubscribe_all()
    await realtime.drain()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    settings = get_settings()

    app = FastAPI(
        title="Catalog Search API",
        description="""
        Catalog search and real-time consistency engine.

        ## Main Endpoints

        - `/api/search/products` - Filtered, sorted, cursor-paged search
        - `/api/search/facets` - Facet counts for refinement
        - `/api/search/suggestions` - Title suggestions
        - `/api/sync-category-counts` - Recompute category product counts
        - `/api/categories/counts` - Persisted category product counts

        ## Health Checks

        - `/health` - Basic health check
        - `/health/detailed` - Detailed health with dependency status
        - `/ready` - Kubernetes readiness probe
        - `/live` - Kubernetes liveness probe
        """,
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # =========================================================================
    # Middleware (order matters - first added = outermost)
    # =========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request tracing (adds X-Request-ID, logs timing)
    app.add_middleware(RequestTracingMiddleware)

    # =========================================================================
    # Routes
    # =========================================================================

    from api.routes.health import router as health_router
    app.include_router(health_router, tags=["Health"])

    from api.routes.search import router as search_router
    app.include_router(search_router)

    from api.routes.categories import router as categories_router
    app.include_router(categories_router)

    return app


# Usage: uvicorn api.app:app
app = create_app()


def get_app() -> FastAPI:
    """Get the application instance (for ASGI servers)."""
    return app
