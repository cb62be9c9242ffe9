"""
Catalog Search Service.

Pipeline for search_products:
1. Validate filters, sort and cursor
2. Translate filters into safe store predicates (SafeQueryBuilder)
3. Run one store query (keyset page)
4. Apply the filters the store cannot evaluate (free text, oversized
   membership lists) on the fetched page
5. Normalize documents into CatalogItems
6. Build the next-page cursor from the last raw document
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from config.settings import Settings, get_settings
from core.logging import get_logger
from search.errors import InvalidFilterError, QueryExecutionError
from search.models import (
    CatalogItem,
    FacetCounts,
    ItemStatus,
    PageCursor,
    PageState,
    PriceBounds,
    SearchFilters,
    SearchResult,
    SortSpec,
    compute_fingerprint,
)
from search.normalize import normalize_snapshot, to_datetime, to_float
from search.query_builder import SafeQueryBuilder
from store.base import DocumentSnapshot, DocumentStore, Query, StoreError

logger = get_logger(__name__)


# Largest value list the store accepts in one "in" / "array-contains-any"
MAX_DISJUNCTION_VALUES = 10

ACTIVE_STATUSES = [ItemStatus.ACTIVE.value]


@dataclass
class ClientSideFilters:
    """Filters evaluated on fetched documents instead of in the store."""
    text: str = ""
    categories: List[str] = field(default_factory=list)
    condition: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)

    def matches(self, item: CatalogItem) -> bool:
        if self.text and not matches_text(item, self.text):
            return False
        if self.categories and item.category not in self.categories:
            return False
        if self.condition and item.condition not in self.condition:
            return False
        if self.tags and not any(t in item.tags for t in self.tags):
            return False
        return True


def matches_text(item: CatalogItem, text: str) -> bool:
    """Case-insensitive substring match over title, description and category."""
    needle = text.strip().lower()
    if not needle:
        return True
    return (
        needle in item.title.lower()
        or needle in item.description.lower()
        or needle in item.category.lower()
    )


def validate_search_input(
    filters: SearchFilters,
    sort: Optional[SortSpec] = None,
    page: Optional[PageState] = None,
) -> None:
    """
    Reject contradictory input before any store round trip.

    Raises:
        InvalidFilterError: On min > max, start > end, negative prices, or a
            cursor produced under different filters/sort/limit
    """
    pr = filters.price_range
    for bound in (pr.min, pr.max):
        if bound is not None and bound < 0:
            raise InvalidFilterError(f"Price bounds must be non-negative, got {bound}")
    if pr.min is not None and pr.max is not None and pr.min > pr.max:
        raise InvalidFilterError(f"price_range.min ({pr.min}) must be <= price_range.max ({pr.max})")

    start = to_datetime(filters.date_range.start)
    end = to_datetime(filters.date_range.end)
    if start is not None and end is not None and start > end:
        raise InvalidFilterError("date_range.start must be <= date_range.end")

    if sort is not None and page is not None and page.cursor is not None:
        expected = compute_fingerprint(filters, sort, page.limit)
        if page.cursor.fingerprint != expected:
            raise InvalidFilterError(
                "Page cursor does not belong to the current filters, sort and page size"
            )


class SearchService:
    """
    One-shot catalog search, facet aggregation and title suggestions over
    a DocumentStore.
    """

    def __init__(self, store: DocumentStore, settings: Optional[Settings] = None):
        self._store = store
        self._settings = settings or get_settings()

    @property
    def products_collection(self) -> str:
        return self._settings.products_collection

    # =========================================================================
    # Query translation
    # =========================================================================

    def _apply_common_filters(
        self,
        builder: SafeQueryBuilder,
        filters: SearchFilters,
        deferred: ClientSideFilters,
    ) -> None:
        """Predicates shared by searches and facet scans (everything but category/condition/price)."""
        builder.where_in("status", ACTIVE_STATUSES)

        if len(filters.tags) > MAX_DISJUNCTION_VALUES:
            deferred.tags = list(filters.tags)
        else:
            builder.where_array_contains_any("tags", filters.tags)

        builder.equality("sellerId", filters.seller_id)
        builder.where("createdAt", ">=", to_datetime(filters.date_range.start))
        builder.where("createdAt", "<=", to_datetime(filters.date_range.end))
        if filters.in_stock:
            builder.where("quantity", ">", 0)
        if filters.on_sale:
            builder.equality("isOnSale", True)

    def build_search_query(
        self,
        filters: SearchFilters,
        sort: SortSpec,
        page: PageState,
    ) -> Tuple[Query, ClientSideFilters]:
        """
        Translate search state into a store query plus the filters that must
        run client-side.
        """
        deferred = ClientSideFilters(text=filters.query)
        builder = SafeQueryBuilder(self._store.collection(self.products_collection))

        self._apply_common_filters(builder, filters, deferred)

        if len(filters.categories) > MAX_DISJUNCTION_VALUES:
            deferred.categories = list(filters.categories)
        else:
            builder.where_in("category", filters.categories)

        builder.where("price", ">=", filters.price_range.min)
        builder.where("price", "<=", filters.price_range.max)

        if len(filters.condition) > MAX_DISJUNCTION_VALUES:
            deferred.condition = list(filters.condition)
        else:
            builder.where_in("condition", filters.condition)

        builder.order_by(sort.field.value, sort.direction.value)
        builder.limit(page.limit)
        builder.start_after(page.cursor.to_store_cursor() if page.cursor else None)

        return builder.build(), deferred

    # =========================================================================
    # Search
    # =========================================================================

    async def search_products(
        self,
        filters: Optional[SearchFilters] = None,
        sort: Optional[SortSpec] = None,
        page: Optional[PageState] = None,
    ) -> SearchResult:
        """
        Run one page of a catalog search.

        Args:
            filters: Filter state (all unset by default)
            sort: Sort field and direction (createdAt desc by default)
            page: Page size and cursor from the previous page

        Returns:
            SearchResult with the page's items and the cursor for the next page

        Raises:
            InvalidFilterError: Contradictory filters or a foreign cursor
            QueryExecutionError: The store failed the query
        """
        filters = filters or SearchFilters()
        sort = sort or SortSpec()
        page = page or PageState()

        validate_search_input(filters, sort, page)
        q, deferred = self.build_search_query(filters, sort, page)

        t_start = time.time()
        try:
            snapshot = await self._store.get_docs(q)
        except StoreError as e:
            logger.error(
                "Search query failed",
                collection=q.collection,
                predicates=len(q.filters),
                error=str(e),
            )
            raise QueryExecutionError(f"Search query failed: {e}") from e

        raw_docs = snapshot.docs
        items = [
            item for item in (normalize_snapshot(d) for d in raw_docs)
            if deferred.matches(item)
        ]

        next_cursor = None
        if raw_docs:
            next_cursor = self._cursor_after(raw_docs[-1], filters, sort, page.limit)

        result = SearchResult(
            items=items,
            total_count=len(items),
            has_next_page=len(raw_docs) == page.limit,
            next_cursor=next_cursor,
        )

        logger.info(
            "Search executed",
            fetched=len(raw_docs),
            returned=len(items),
            page=page.page,
            sort=sort.field.value,
            has_next_page=result.has_next_page,
            duration_ms=round((time.time() - t_start) * 1000, 2),
        )
        return result

    @staticmethod
    def _cursor_after(
        doc: DocumentSnapshot,
        filters: SearchFilters,
        sort: SortSpec,
        limit: int,
    ) -> PageCursor:
        return PageCursor(
            doc_id=doc.id,
            sort_values=[doc.get(sort.field.value)],
            fingerprint=compute_fingerprint(filters, sort, limit),
        )

    # =========================================================================
    # Facets
    # =========================================================================

    async def get_facet_counts(self, filters: Optional[SearchFilters] = None) -> FacetCounts:
        """
        Count categories and conditions and find the price bounds over the
        filtered population. Each facet ignores its own filter so the UI can
        show the alternatives to the current selection.

        Raises:
            InvalidFilterError: Contradictory filters
            QueryExecutionError: The store failed the scan
        """
        filters = filters or SearchFilters()
        validate_search_input(filters)

        deferred = ClientSideFilters(text=filters.query)
        builder = SafeQueryBuilder(self._store.collection(self.products_collection))
        self._apply_common_filters(builder, filters, deferred)
        builder.limit(self._settings.facet_scan_limit)
        q = builder.build()

        try:
            snapshot = await self._store.get_docs(q)
        except StoreError as e:
            logger.error("Facet scan failed", collection=q.collection, error=str(e))
            raise QueryExecutionError(f"Facet scan failed: {e}") from e

        categories = set(filters.categories)
        conditions = set(filters.condition)
        pr = filters.price_range

        category_counts: Dict[str, int] = {}
        condition_counts: Dict[str, int] = {}
        prices: List[float] = []

        for doc in snapshot.docs:
            item = normalize_snapshot(doc)
            if not deferred.matches(item):
                continue

            price = to_float(doc.get("price"), default=None)
            has_price = price is not None

            in_category = not categories or item.category in categories
            in_condition = not conditions or item.condition in conditions
            in_price = _within(price, pr.min, pr.max)

            if in_condition and in_price:
                category_counts[item.category] = category_counts.get(item.category, 0) + 1
            if in_category and in_price:
                condition_counts[item.condition] = condition_counts.get(item.condition, 0) + 1
            if in_category and in_condition and has_price:
                prices.append(price)

        bounds = PriceBounds(min=min(prices), max=max(prices)) if prices else PriceBounds()

        logger.debug(
            "Facet counts computed",
            scanned=snapshot.size,
            categories=len(category_counts),
            conditions=len(condition_counts),
        )
        return FacetCounts(
            categories=category_counts,
            conditions=condition_counts,
            price_range=bounds,
        )

    # =========================================================================
    # Suggestions
    # =========================================================================

    async def get_search_suggestions(self, term: Optional[str], limit: int = 10) -> List[str]:
        """
        Titles of popular active items containing `term`.

        Terms shorter than two characters yield no suggestions. Store failures
        are logged and yield no suggestions.
        """
        if not term or len(term.strip()) < 2:
            return []
        needle = term.strip().lower()

        q = (
            SafeQueryBuilder(self._store.collection(self.products_collection))
            .where_in("status", ACTIVE_STATUSES)
            .order_by("viewCount", "desc")
            .limit(self._settings.suggestion_scan_limit)
            .build()
        )
        try:
            snapshot = await self._store.get_docs(q)
        except StoreError as e:
            logger.warning("Suggestion lookup failed", term=term, error=str(e))
            return []

        suggestions: List[str] = []
        seen = set()
        for doc in snapshot.docs:
            title = normalize_snapshot(doc).title
            key = title.lower()
            if needle in key and key not in seen:
                seen.add(key)
                suggestions.append(title)
                if len(suggestions) >= limit:
                    break
        return suggestions


def _within(value: Optional[float], low: Optional[float], high: Optional[float]) -> bool:
    if low is None and high is None:
        return True
    if value is None:
        return False
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True


# =============================================================================
# Singleton
# =============================================================================

_service: Optional[SearchService] = None
_service_lock = threading.Lock()


def get_search_service() -> SearchService:
    """Get or create the SearchService singleton (thread-safe)."""
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                from config.database import get_document_store
                _service = SearchService(get_document_store())
    return _service


def reset_search_service() -> None:
    global _service
    with _service_lock:
        _service = None
