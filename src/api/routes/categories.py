"""
Category count routes.

/api/sync-category-counts recomputes every category's productCount from
the active products and writes them in one atomic batch. It is safe to
call repeatedly (cron, admin button).
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from core.logging import get_logger
from realtime_sync.reconciler import CategoryCountReconciler, get_category_count_reconciler
from search.errors import QueryExecutionError, ReconciliationError
from search.models import CategoryCount

logger = get_logger(__name__)

router = APIRouter(tags=["Categories"])


@router.api_route(
    "/api/sync-category-counts",
    methods=["GET", "POST"],
    summary="Recompute and persist category product counts",
)
async def sync_category_counts(
    reconciler: CategoryCountReconciler = Depends(get_category_count_reconciler),
) -> Any:
    """
    Returns:
        {success, message, updatedCategories, summary, zeroCountCategories},
        or 500 with {success: false, error} when nothing could be written
    """
    try:
        result = await reconciler.synchronize_category_counts()
    except ReconciliationError as e:
        logger.error("Category count sync request failed", error=str(e))
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    return result.model_dump(mode="json", by_alias=True)


@router.get(
    "/api/categories/counts",
    response_model=List[CategoryCount],
    response_model_by_alias=True,
    summary="Persisted category product counts",
)
async def category_counts(
    reconciler: CategoryCountReconciler = Depends(get_category_count_reconciler),
) -> List[CategoryCount]:
    try:
        return await reconciler.list_category_counts()
    except QueryExecutionError as e:
        logger.error("Category count listing failed", error=str(e))
        raise HTTPException(status_code=503, detail="Category counts are temporarily unavailable") from e


@router.get("/api/categories/counts/cached", summary="In-process category counts")
async def cached_category_counts(
    reconciler: CategoryCountReconciler = Depends(get_category_count_reconciler),
) -> Dict[str, int]:
    """Counts as last seen by this process (latest sync, listing or live delta)."""
    return reconciler.get_counts()
