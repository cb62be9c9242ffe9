"""
Catalog Search Module.

Provides:
- SafeQueryBuilder: Filter state -> store query without invalid predicates
- SearchService: Paged search, facet counts, suggestions
- SearchSession: Stateful controller with debounce and stale-response discard
- normalize_product: Raw document -> CatalogItem
"""

from search.errors import (
    CatalogError,
    InvalidFilterError,
    QueryExecutionError,
    ReconciliationError,
    SubscriptionError,
)
from search.models import (
    CatalogItem,
    FacetCounts,
    PageState,
    SearchFilters,
    SearchResult,
    SortSpec,
)
from search.normalize import normalize_product
from search.query_builder import SafeQueryBuilder, clean_query_array, is_valid_query_value
from search.service import SearchService, get_search_service
from search.session import SearchSession

__all__ = [
    "CatalogError",
    "InvalidFilterError",
    "QueryExecutionError",
    "ReconciliationError",
    "SubscriptionError",
    "CatalogItem",
    "FacetCounts",
    "PageState",
    "SearchFilters",
    "SearchResult",
    "SortSpec",
    "normalize_product",
    "SafeQueryBuilder",
    "clean_query_array",
    "is_valid_query_value",
    "SearchService",
    "get_search_service",
    "SearchSession",
]
