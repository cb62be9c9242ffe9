"""
Search session controller.

Holds the search state for one UI consumer (filters, sort, pagination,
results, loading/error flags, facets) and coordinates searches against
SearchService:

- filter and sort changes reset pagination to the first page
- an identical search already in flight is joined, not re-issued
- only the most recently issued search may write results; older responses
  that arrive late are discarded
- with auto_search enabled, state changes trigger one debounced search

All methods run on the event loop thread; there is no locking. With
auto_search enabled, state updates must be made from within a running loop.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Union

from config.settings import get_settings
from core.logging import get_logger
from search.errors import CatalogError
from search.models import (
    CatalogItem,
    FacetCounts,
    PageCursor,
    PageState,
    SearchFilters,
    SortSpec,
    merge_model,
)
from search.service import SearchService

logger = get_logger(__name__)


def _consume_outcome(task: "asyncio.Future") -> None:
    if not task.cancelled():
        task.exception()


class SearchSession:
    """
    Stateful search controller.

    Usage:
        session = SearchSession(get_search_service())
        session.update_filters({"categories": ["electronics"]})
        await session.execute_search()
        session.results  # -> List[CatalogItem]
    """

    def __init__(
        self,
        service: SearchService,
        auto_search: bool = False,
        debounce_seconds: Optional[float] = None,
        initial_filters: Optional[Dict[str, Any]] = None,
    ):
        settings = get_settings()
        self._service = service
        self.auto_search = auto_search
        self.debounce_seconds = (
            debounce_seconds if debounce_seconds is not None
            else settings.search_debounce_ms / 1000
        )
        self._default_limit = settings.search_default_limit

        self.filters = SearchFilters()
        if initial_filters:
            self.filters = merge_model(self.filters, initial_filters)
        self.sort_options = SortSpec()
        self.pagination = PageState(limit=self._default_limit)

        self.results: List[CatalogItem] = []
        self.total_count = 0
        self.has_next_page = False
        self.next_cursor: Optional[PageCursor] = None
        self.is_loading = False
        self.error: Optional[str] = None
        self.facet_counts: Optional[FacetCounts] = None

        self._has_searched = False
        self._request_seq = 0
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._debounce_task: Optional[asyncio.Task] = None

    # =========================================================================
    # State updates
    # =========================================================================

    def update_filters(self, partial: Union[Dict[str, Any], SearchFilters]) -> None:
        """Merge `partial` into the filters and go back to the first page."""
        self.filters = merge_model(self.filters, partial)
        self._reset_pagination()
        self._schedule_search()

    def update_sort(self, spec: Union[Dict[str, Any], SortSpec]) -> None:
        self.sort_options = merge_model(self.sort_options, spec)
        self._reset_pagination()
        self._schedule_search()

    def update_pagination(self, partial: Union[Dict[str, Any], PageState]) -> None:
        """Merge `partial` into pagination. A page-size change restarts at page 1."""
        updated = merge_model(self.pagination, partial)
        if updated.limit != self.pagination.limit:
            updated = PageState(page=1, limit=updated.limit, cursor=None)
        self.pagination = updated
        self._schedule_search()

    def reset_search(self) -> None:
        """Restore default state. A search still in flight will not write its result."""
        self._cancel_debounce()
        self._request_seq += 1

        self.filters = SearchFilters()
        self.sort_options = SortSpec()
        self.pagination = PageState(limit=self._default_limit)
        self._clear_results()
        self.is_loading = False
        self.error = None
        self.facet_counts = None
        self._has_searched = False

    def _reset_pagination(self) -> None:
        self.pagination = PageState(page=1, limit=self.pagination.limit, cursor=None)

    def _clear_results(self) -> None:
        self.results = []
        self.total_count = 0
        self.has_next_page = False
        self.next_cursor = None

    @property
    def no_results(self) -> bool:
        """True once a search has completed without error and returned nothing."""
        return (
            self._has_searched
            and not self.is_loading
            and self.error is None
            and not self.results
        )

    # =========================================================================
    # Searching
    # =========================================================================

    def _request_key(self) -> str:
        payload = {
            "filters": self.filters.model_dump(mode="json"),
            "sort": self.sort_options.model_dump(mode="json"),
            "page": self.pagination.model_dump(mode="json"),
        }
        return json.dumps(payload, sort_keys=True)

    async def execute_search(self) -> None:
        """
        Search with the current state and store the outcome.

        Errors are recorded in `error` (results cleared) rather than raised.
        """
        key = self._request_key()
        existing = self._in_flight.get(key)
        if existing is not None and not existing.done():
            logger.debug("Joining in-flight search")
            await asyncio.wait([existing])
            return

        self._request_seq += 1
        seq = self._request_seq
        self.is_loading = True
        self.error = None

        task = asyncio.ensure_future(
            self._service.search_products(self.filters, self.sort_options, self.pagination)
        )
        self._in_flight[key] = task
        try:
            await asyncio.wait([task])
        except asyncio.CancelledError:
            # Superseded debounce or aclose(): the request dies with its caller
            task.cancel()
            task.add_done_callback(_consume_outcome)
            if seq == self._request_seq:
                self.is_loading = False
            logger.debug("Search cancelled", seq=seq)
            raise
        finally:
            if self._in_flight.get(key) is task:
                del self._in_flight[key]

        if seq != self._request_seq:
            stale_error = None if task.cancelled() else task.exception()
            logger.debug(
                "Discarding stale search response",
                seq=seq,
                latest=self._request_seq,
                error=str(stale_error) if stale_error else None,
            )
            return

        self.is_loading = False
        self._has_searched = True

        if task.cancelled():
            self.error = "Search was cancelled"
            self._clear_results()
            return

        error = task.exception()
        if error is None:
            result = task.result()
            self.results = result.items
            self.total_count = result.total_count
            self.has_next_page = result.has_next_page
            self.next_cursor = result.next_cursor
            return

        if not isinstance(error, CatalogError):
            raise error

        logger.warning("Search failed", error=str(error), error_type=type(error).__name__)
        self.error = str(error) or "Failed to execute search"
        self._clear_results()

    async def next_page(self) -> bool:
        """Advance to the next page. Returns False when there is none."""
        if not self.has_next_page or self.next_cursor is None:
            return False
        self.pagination = PageState(
            page=self.pagination.page + 1,
            limit=self.pagination.limit,
            cursor=self.next_cursor,
        )
        await self.execute_search()
        return True

    async def load_facet_counts(self) -> Optional[FacetCounts]:
        """Refresh facet counts for the current filters. Failures keep the previous counts."""
        try:
            self.facet_counts = await self._service.get_facet_counts(self.filters)
        except CatalogError as e:
            logger.warning("Facet count refresh failed", error=str(e))
        return self.facet_counts

    # =========================================================================
    # Debounce
    # =========================================================================

    def _schedule_search(self) -> None:
        if not self.auto_search:
            return
        self._cancel_debounce()
        self._debounce_task = asyncio.ensure_future(self._debounced_search())

    async def _debounced_search(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        await self.execute_search()

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

    async def wait_for_pending(self) -> None:
        """Wait until a scheduled debounced search (if any) has finished."""
        task = self._debounce_task
        if task is not None:
            await asyncio.wait([task])

    async def aclose(self) -> None:
        """Cancel any pending or running debounced search."""
        task = self._debounce_task
        self._cancel_debounce()
        if task is not None:
            await asyncio.wait([task])
