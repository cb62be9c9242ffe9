"""
Category Count Reconciler.

Two independent paths keep each category's persisted productCount in line
with the number of active products in it:

- incremental: deltas from the live subscription, applied best effort
  (read, clamp at 0, write). Failures are logged and dropped.
- batch: a full recount committed in one atomic write batch. This is the
  authoritative path; it overwrites whatever the incremental path wrote.

Incremental applications run one at a time so concurrent deltas for the same
category never read the same count. The batch path does not take that lock:
a delta applied between a batch run's scan and its commit is overwritten and
corrected by the next batch run.

Products are counted by `categoryId` only.
"""

import asyncio
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from config.settings import Settings, get_settings
from core.logging import get_logger
from realtime_sync.subscriber import category_of
from search.errors import QueryExecutionError, ReconciliationError
from search.models import (
    CategoryCount,
    CategoryDelta,
    CategorySummary,
    ItemStatus,
    SyncResult,
    ZeroCountCategory,
)
from search.normalize import to_datetime, to_int
from store.base import DocumentStore, StoreError, query, where

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CategoryCountReconciler:
    """Maintains persisted per-category counts of active products."""

    def __init__(self, store: DocumentStore, settings: Optional[Settings] = None):
        self._store = store
        self._settings = settings or get_settings()
        self._counts: Dict[str, int] = {}
        self._delta_lock = asyncio.Lock()

    @property
    def categories_collection(self) -> str:
        return self._settings.categories_collection

    def get_counts(self) -> Dict[str, int]:
        """Last known count per category (from the latest sync, listing or delta)."""
        return dict(self._counts)

    # =========================================================================
    # Incremental path
    # =========================================================================

    async def apply_delta(self, delta: CategoryDelta) -> None:
        await self.apply_deltas([delta])

    async def apply_deltas(self, deltas: Iterable[CategoryDelta]) -> None:
        """
        Apply count adjustments. Best effort: unknown categories are skipped
        and store failures are logged, never raised.
        """
        net: Dict[str, int] = {}
        for delta in deltas:
            net[delta.category_id] = net.get(delta.category_id, 0) + delta.delta

        async with self._delta_lock:
            for category_id, change in net.items():
                await self._apply_net_change(category_id, change)

    async def _apply_net_change(self, category_id: str, change: int) -> None:
        if change == 0:
            return
        ref = self._store.doc(self.categories_collection, category_id)
        try:
            snapshot = await self._store.get_doc(ref)
            if not snapshot.exists:
                logger.warning("Skipping count delta for unknown category", category_id=category_id)
                return

            current = max(0, to_int(snapshot.get("productCount")))
            updated = max(0, current + change)
            batch = self._store.write_batch()
            batch.update(ref, {"productCount": updated, "updatedAt": _utcnow()})
            await batch.commit()
        except StoreError as e:
            logger.warning(
                "Incremental count update failed",
                category_id=category_id,
                delta=change,
                error=str(e),
            )
            return

        self._counts[category_id] = updated
        logger.debug("Category count adjusted", category_id=category_id, count=updated)

    # =========================================================================
    # Batch path
    # =========================================================================

    async def synchronize_category_counts(self) -> SyncResult:
        """
        Recount active products per category and persist every category's
        count (zero included) in one atomic batch.

        Raises:
            ReconciliationError: If any read or the commit fails; nothing is written
        """
        try:
            categories = await self._store.get_docs(self._store.collection(self.categories_collection))
            products = await self._store.get_docs(
                query(
                    self._store.collection(self._settings.products_collection),
                    where("status", "==", ItemStatus.ACTIVE.value),
                )
            )
        except StoreError as e:
            logger.error("Category count scan failed", error=str(e))
            raise ReconciliationError(f"Category count synchronization failed: {e}") from e

        counts: Dict[str, int] = {}
        for doc in products.docs:
            category_id = category_of(doc.data)
            if category_id:
                counts[category_id] = counts.get(category_id, 0) + 1

        now = _utcnow()
        batch = self._store.write_batch()
        summary: List[CategorySummary] = []
        zero_count: List[ZeroCountCategory] = []
        for category in categories.docs:
            count = counts.get(category.id, 0)
            batch.update(category.ref, {"productCount": count, "updatedAt": now})
            summary.append(CategorySummary(category_id=category.id, count=count))
            if count == 0:
                zero_count.append(ZeroCountCategory(id=category.id, name=category.get("name")))

        if summary:
            try:
                await batch.commit()
            except StoreError as e:
                logger.error("Category count commit failed", categories=len(summary), error=str(e))
                raise ReconciliationError(f"Category count synchronization failed: {e}") from e

        summary.sort(key=lambda s: s.category_id)
        self._counts = {s.category_id: s.count for s in summary}

        orphaned = sorted(set(counts) - set(self._counts))
        if orphaned:
            logger.warning("Active products reference unknown categories", category_ids=orphaned)

        logger.info(
            "Category counts synchronized",
            updated_categories=len(summary),
            active_products=products.size,
            zero_count_categories=len(zero_count),
        )
        return SyncResult(
            success=True,
            message=f"Successfully updated {len(summary)} categories",
            updated_categories=len(summary),
            summary=summary,
            zero_count_categories=zero_count,
        )

    async def list_category_counts(self) -> List[CategoryCount]:
        """
        Persisted counts for every category, ordered by category id.

        Raises:
            QueryExecutionError: If the store read fails
        """
        try:
            snapshot = await self._store.get_docs(self._store.collection(self.categories_collection))
        except StoreError as e:
            raise QueryExecutionError(f"Could not read category counts: {e}") from e

        records = [
            CategoryCount(
                category_id=doc.id,
                name=doc.get("name"),
                product_count=max(0, to_int(doc.get("productCount"))),
                updated_at=to_datetime(doc.get("updatedAt")),
            )
            for doc in snapshot.docs
        ]
        records.sort(key=lambda r: r.category_id)
        self._counts = {r.category_id: r.product_count for r in records}
        return records

    async def run_periodically(self, interval_seconds: float) -> None:
        """Run the batch path every `interval_seconds` until cancelled."""
        logger.info("Periodic category count sync started", interval_seconds=interval_seconds)
        while True:
            try:
                await self.synchronize_category_counts()
            except ReconciliationError as e:
                logger.error("Scheduled category count sync failed", error=str(e))
            await asyncio.sleep(interval_seconds)


# =============================================================================
# Singleton
# =============================================================================

_reconciler: Optional[CategoryCountReconciler] = None
_reconciler_lock = threading.Lock()


def get_category_count_reconciler() -> CategoryCountReconciler:
    """Get or create the CategoryCountReconciler singleton (thread-safe)."""
    global _reconciler
    if _reconciler is None:
        with _reconciler_lock:
            if _reconciler is None:
                from config.database import get_document_store
                _reconciler = CategoryCountReconciler(get_document_store())
    return _reconciler


def reset_category_count_reconciler() -> None:
    global _reconciler
    with _reconciler_lock:
        _reconciler = None
