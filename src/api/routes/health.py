"""
Health check endpoints.

Provides endpoints for monitoring application health and status.
"""

from typing import Any, Dict

from fastapi import APIRouter

from config.database import StoreConfigurationError, get_document_store
from config.settings import get_settings
from realtime_sync.subscriber import get_realtime_product_service
from store.base import StoreError, limit, query


router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint.

    Returns:
        Health status with basic info
    """
    return {
        "status": "healthy",
        "service": "catalog-search-api",
    }


@router.get("/health/detailed")
async def detailed_health_check() -> Dict[str, Any]:
    """
    Detailed health check with dependency status.

    Checks:
    - Configuration loaded
    - Document store reachable
    - Live subscriptions

    Returns:
        Detailed health status
    """
    settings = get_settings()

    store_status = "unknown"
    store_error = None
    try:
        store = get_document_store()
        snapshot = await store.get_docs(
            query(store.collection(settings.products_collection), limit(1))
        )
        store_status = "connected" if not snapshot.empty else "empty"
    except (StoreConfigurationError, StoreError) as e:
        store_status = "error"
        store_error = str(e)

    return {
        "status": "healthy" if store_status in ("connected", "empty") else "degraded",
        "service": "catalog-search-api",
        "environment": settings.environment,
        "checks": {
            "config": "ok",
            "store": {
                "backend": settings.store_backend,
                "status": store_status,
                "error": store_error,
            },
            "subscriptions": get_realtime_product_service().active_subscriptions,
        },
    }


@router.get("/ready")
async def readiness_check() -> Dict[str, str]:
    """
    Kubernetes-style readiness probe.

    Returns 200 if the service is ready to accept traffic.
    """
    try:
        get_document_store()
    except StoreConfigurationError:
        return {"status": "not_ready", "reason": "store_not_configured"}

    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """
    Kubernetes-style liveness probe.

    Returns 200 if the service is alive.
    """
    return {"status": "alive"}
