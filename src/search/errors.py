"""
Error taxonomy for the catalog search and consistency engine.

    CatalogError
    ├── InvalidFilterError    bad filter/sort/cursor input, never retried
    ├── QueryExecutionError   the store rejected or failed a query, retryable
    ├── SubscriptionError     a live subscription was terminated by the store
    └── ReconciliationError   a batch count recomputation failed, nothing written
"""


class CatalogError(Exception):
    """Base class for catalog engine errors."""
    pass


class InvalidFilterError(CatalogError, ValueError):
    """Raised for contradictory or malformed search input (min > max, stale cursor...)."""
    pass


class QueryExecutionError(CatalogError):
    """Raised when the backing store fails a search query."""

    retryable = True


class SubscriptionError(CatalogError):
    """Delivered to a subscription's error callback when the store ends it."""
    pass


class ReconciliationError(CatalogError):
    """Raised when the batch category count recomputation cannot complete."""
    pass
