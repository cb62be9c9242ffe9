"""
Search API Routes.

Provides paged product search, facet counts and title suggestions.
Page cursors travel as opaque tokens: pass a response's nextCursor back
with the same filters, sort and page size to get the next page.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from core.logging import get_logger
from search.errors import InvalidFilterError, QueryExecutionError
from search.models import (
    FacetCounts,
    PageCursor,
    PageState,
    SearchFilters,
    SearchProductsRequest,
    SearchProductsResponse,
    SuggestionsResponse,
)
from search.service import SearchService, get_search_service

logger = get_logger(__name__)

router = APIRouter(prefix="/api/search", tags=["Search"])


# =============================================================================
# Product Search
# =============================================================================

@router.post(
    "/products",
    response_model=SearchProductsResponse,
    response_model_by_alias=True,
    summary="Filtered, sorted, cursor-paged product search",
)
async def search_products(
    request: SearchProductsRequest,
    service: SearchService = Depends(get_search_service),
) -> SearchProductsResponse:
    """
    Search active products.

    - **filters**: categories, priceRange, condition, tags, sellerId,
      dateRange, inStock, onSale, query (free text)
    - **sort**: createdAt | price | viewCount, asc | desc
    - **page**: limit (10, 20, 50) and the cursor token from the previous page
    """
    try:
        cursor = PageCursor.decode(request.page.cursor) if request.page.cursor else None
        page = PageState(limit=request.page.limit, cursor=cursor)
        result = await service.search_products(request.filters, request.sort, page)
    except InvalidFilterError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except QueryExecutionError as e:
        logger.error("Product search failed", error=str(e))
        raise HTTPException(status_code=503, detail="Search is temporarily unavailable") from e

    return SearchProductsResponse(
        items=result.items,
        total_count=result.total_count,
        has_next_page=result.has_next_page,
        next_cursor=result.next_cursor.encode() if result.next_cursor else None,
    )


# =============================================================================
# Facets
# =============================================================================

@router.post(
    "/facets",
    response_model=FacetCounts,
    response_model_by_alias=True,
    summary="Facet counts for the current filters",
)
async def facet_counts(
    filters: SearchFilters,
    service: SearchService = Depends(get_search_service),
) -> FacetCounts:
    """
    Category and condition counts plus price bounds. Each facet ignores its
    own filter so alternatives to the current selection are counted.
    """
    try:
        return await service.get_facet_counts(filters)
    except InvalidFilterError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except QueryExecutionError as e:
        logger.error("Facet count failed", error=str(e))
        raise HTTPException(status_code=503, detail="Facet counts are temporarily unavailable") from e


# =============================================================================
# Suggestions
# =============================================================================

@router.get(
    "/suggestions",
    response_model=SuggestionsResponse,
    summary="Title suggestions for a partial search term",
)
async def search_suggestions(
    q: str = Query("", max_length=200, description="Partial search term (2+ characters)"),
    limit: int = Query(10, ge=1, le=20),
    service: SearchService = Depends(get_search_service),
) -> SuggestionsResponse:
    suggestions = await service.get_search_suggestions(q, limit=limit)
    return SuggestionsResponse(query=q, suggestions=suggestions)
