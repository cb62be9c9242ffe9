"""
Realtime Catalog Subscriber.

Live subscriptions over the product collection. Every subscribe_* call
returns a SubscriptionHandle; releasing it is the only way to stop the
callbacks. A subscription the store terminates reports a SubscriptionError
to its error callback exactly once and is then released. There is no
automatic resubscribe.
"""

import asyncio
import itertools
import threading
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Set,
)

from config.settings import Settings, get_settings
from core.logging import get_logger
from search.errors import InvalidFilterError, SubscriptionError
from search.models import CatalogItem, CategoryDelta, ItemStatus
from search.normalize import normalize_snapshot
from search.query_builder import SafeQueryBuilder, clean_query_array
from store.base import (
    DocumentChange,
    DocumentSnapshot,
    DocumentStore,
    ListenerRegistration,
    Query,
    QuerySnapshot,
    StoreError,
)

if TYPE_CHECKING:
    from realtime_sync.reconciler import CategoryCountReconciler

logger = get_logger(__name__)


ProductsCallback = Callable[[List[CatalogItem]], None]
ProductCallback = Callable[[Optional[CatalogItem]], None]
SubscriptionErrorCallback = Callable[[SubscriptionError], None]


def category_of(data: Optional[Mapping[str, Any]]) -> Optional[str]:
    """
    Category id of a product document.

    Only `categoryId` names the category document a product counts toward.
    The free-text `category` field is a search attribute and is never read here.
    """
    if not data:
        return None
    value = data.get("categoryId")
    if isinstance(value, str) and value:
        return value
    return None


def derive_category_deltas(changes: Iterable[DocumentChange]) -> List[CategoryDelta]:
    """
    Translate result-set changes of the active-products subscription into
    per-category count adjustments.

    added    -> +1 on the new category
    removed  -> -1 on the category it had when it was last seen
    modified -> -1 old, +1 new when the category changed
    """
    deltas: List[CategoryDelta] = []
    for change in changes:
        if change.type == "added":
            new = category_of(change.doc.data)
            if new:
                deltas.append(CategoryDelta(category_id=new, delta=1))
        elif change.type == "removed":
            old = category_of(change.previous or change.doc.data)
            if old:
                deltas.append(CategoryDelta(category_id=old, delta=-1))
        elif change.type == "modified":
            old = category_of(change.previous)
            new = category_of(change.doc.data)
            if old != new:
                if old:
                    deltas.append(CategoryDelta(category_id=old, delta=-1))
                if new:
                    deltas.append(CategoryDelta(category_id=new, delta=1))
    return deltas


class SubscriptionHandle:
    """
    Explicit release handle for one live subscription.

    Calling the handle releases it, so it can be passed wherever an
    unsubscribe function is expected. Also usable as a context manager.
    """

    def __init__(self, subscription_id: int, name: str, service: "RealtimeProductService"):
        self.id = subscription_id
        self.name = name
        self._service = service
        self._registration: Optional[ListenerRegistration] = None
        self._active = True
        self._failed = False

    @property
    def active(self) -> bool:
        return self._active

    def _attach(self, registration: ListenerRegistration) -> None:
        if self._active:
            self._registration = registration
        else:
            # Released from inside the initial delivery
            registration.remove()

    def release(self) -> None:
        """Stop callbacks and detach from the store. Safe to call repeatedly."""
        if not self._active:
            return
        self._active = False
        registration, self._registration = self._registration, None
        try:
            if registration is not None:
                registration.remove()
        finally:
            self._service._forget(self)
        logger.debug("Subscription released", subscription=self.name, subscription_id=self.id)

    def __call__(self) -> None:
        self.release()

    def __enter__(self) -> "SubscriptionHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    async def __aenter__(self) -> "SubscriptionHandle":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "active" if self._active else "released"
        return f"<SubscriptionHandle {self.name}#{self.id} {state}>"


class RealtimeProductService:
    """Live product subscriptions over a DocumentStore."""

    def __init__(self, store: DocumentStore, settings: Optional[Settings] = None):
        self._store = store
        self._settings = settings or get_settings()
        self._handles: Dict[int, SubscriptionHandle] = {}
        self._ids = itertools.count(1)
        self._pending: Set[asyncio.Task] = set()

    @property
    def active_subscriptions(self) -> int:
        return len(self._handles)

    def _products(self):
        return self._store.collection(self._settings.products_collection)

    # =========================================================================
    # Queries
    # =========================================================================

    def build_active_products_query(self, filters: Optional[Mapping[str, Any]] = None) -> Query:
        """
        status in ["active"], optional category / seller equality, newest first.

        Args:
            filters: Optional mapping with "category" and "sellerId" (or "seller_id")
        """
        filters = filters or {}
        seller_id = filters.get("sellerId", filters.get("seller_id"))
        return (
            SafeQueryBuilder(self._products())
            .where_in("status", clean_query_array([ItemStatus.ACTIVE.value]))
            .equality("category", filters.get("category") or None)
            .equality("sellerId", seller_id or None)
            .order_by("createdAt", "desc")
            .build()
        )

    def build_all_products_query(self) -> Query:
        return SafeQueryBuilder(self._products()).order_by("updatedAt", "desc").build()

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def _new_handle(self, name: str) -> SubscriptionHandle:
        handle = SubscriptionHandle(next(self._ids), name, self)
        self._handles[handle.id] = handle
        return handle

    def _forget(self, handle: SubscriptionHandle) -> None:
        self._handles.pop(handle.id, None)

    def _error_handler(
        self,
        handle: SubscriptionHandle,
        on_error: Optional[SubscriptionErrorCallback],
    ) -> Callable[[Exception], None]:
        def _on_error(error: Exception) -> None:
            if not handle.active or handle._failed:
                return
            handle._failed = True

            if isinstance(error, SubscriptionError):
                sub_error = error
            else:
                sub_error = SubscriptionError(f"Subscription {handle.name} terminated: {error}")
                sub_error.__cause__ = error

            try:
                if on_error is not None:
                    on_error(sub_error)
                else:
                    logger.error(
                        "Subscription terminated",
                        subscription=handle.name,
                        subscription_id=handle.id,
                        error=str(error),
                    )
            finally:
                handle.release()

        return _on_error

    def _listen(
        self,
        handle: SubscriptionHandle,
        q: Query,
        on_snapshot: Callable[[QuerySnapshot], None],
        on_error: Optional[SubscriptionErrorCallback],
    ) -> SubscriptionHandle:
        def _on_change(snapshot: QuerySnapshot) -> None:
            if handle.active:
                on_snapshot(snapshot)

        try:
            registration = self._store.on_snapshot(q, _on_change, self._error_handler(handle, on_error))
        except StoreError as e:
            handle.release()
            raise SubscriptionError(f"Could not open subscription {handle.name}: {e}") from e

        handle._attach(registration)
        logger.info(
            "Subscription opened",
            subscription=handle.name,
            subscription_id=handle.id,
            predicates=len(q.filters),
        )
        return handle

    def subscribe_to_active_products(
        self,
        callback: ProductsCallback,
        filters: Optional[Mapping[str, Any]] = None,
        on_error: Optional[SubscriptionErrorCallback] = None,
    ) -> SubscriptionHandle:
        """
        Live list of active products, newest first.

        The callback receives the full normalized list on attach and after
        every change to the result set.
        """
        handle = self._new_handle("active-products")
        q = self.build_active_products_query(filters)
        return self._listen(
            handle, q,
            lambda snapshot: callback([normalize_snapshot(d) for d in snapshot.docs]),
            on_error,
        )

    def subscribe_to_all_products(
        self,
        callback: ProductsCallback,
        on_error: Optional[SubscriptionErrorCallback] = None,
    ) -> SubscriptionHandle:
        """Live list of every product regardless of status, most recently updated first."""
        handle = self._new_handle("all-products")
        return self._listen(
            handle, self.build_all_products_query(),
            lambda snapshot: callback([normalize_snapshot(d) for d in snapshot.docs]),
            on_error,
        )

    def subscribe_to_product(
        self,
        product_id: str,
        callback: ProductCallback,
        on_error: Optional[SubscriptionErrorCallback] = None,
    ) -> SubscriptionHandle:
        """
        Live view of one product. The callback receives None while the
        document does not exist.

        Raises:
            InvalidFilterError: If product_id is empty
        """
        if not product_id:
            raise InvalidFilterError("Product ID is required for subscription")

        handle = self._new_handle(f"product-{product_id}")
        ref = self._store.doc(self._settings.products_collection, product_id)

        def _on_change(doc: DocumentSnapshot) -> None:
            if handle.active:
                callback(normalize_snapshot(doc) if doc.exists else None)

        try:
            registration = self._store.on_document_snapshot(
                ref, _on_change, self._error_handler(handle, on_error)
            )
        except StoreError as e:
            handle.release()
            raise SubscriptionError(f"Could not open subscription {handle.name}: {e}") from e

        handle._attach(registration)
        logger.info("Subscription opened", subscription=handle.name, subscription_id=handle.id)
        return handle

    def subscribe_to_product_count_changes(
        self,
        reconciler: "CategoryCountReconciler",
        on_error: Optional[SubscriptionErrorCallback] = None,
    ) -> SubscriptionHandle:
        """
        Feed per-category deltas from the active-product set into the
        reconciler's incremental path. The initial snapshot is skipped: the
        batch reconciler owns the baseline.
        """
        handle = self._new_handle("product-count-changes")
        q = (
            SafeQueryBuilder(self._products())
            .where_in("status", clean_query_array([ItemStatus.ACTIVE.value]))
            .build()
        )
        seen_initial = False

        def _on_snapshot(snapshot: QuerySnapshot) -> None:
            nonlocal seen_initial
            if not seen_initial:
                seen_initial = True
                return
            deltas = derive_category_deltas(snapshot.changes)
            if deltas:
                logger.debug("Category deltas derived", deltas=len(deltas))
                self._spawn(reconciler.apply_deltas(deltas))

        return self._listen(handle, q, _on_snapshot, on_error)

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for scheduled count adjustments to finish."""
        while self._pending:
            await asyncio.wait(list(self._pending))

    def unsubscribe_all(self) -> None:
        """Release every live subscription. A failing release does not stop the rest."""
        handles = list(self._handles.values())
        for handle in handles:
            try:
                handle.release()
            except Exception as e:
                logger.warning(
                    "Error releasing subscription",
                    subscription=handle.name,
                    subscription_id=handle.id,
                    error=str(e),
                )
        self._handles.clear()
        if handles:
            logger.info("Released all subscriptions", count=len(handles))


# =============================================================================
# Singleton
# =============================================================================

_service: Optional[RealtimeProductService] = None
_service_lock = threading.Lock()


def get_realtime_product_service() -> RealtimeProductService:
    """Get or create the RealtimeProductService singleton (thread-safe)."""
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                from config.database import get_document_store
                _service = RealtimeProductService(get_document_store())
    return _service


def reset_realtime_product_service() -> None:
    global _service
    with _service_lock:
        if _service is not None:
            _service.unsubscribe_all()
        _service = None
