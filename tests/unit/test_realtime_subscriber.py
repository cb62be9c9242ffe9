"""
Tests for live product subscriptions and category delta derivation.
"""

import pytest

from store.base import DocumentChange, DocumentRef, DocumentSnapshot, StoreError


def _doc(doc_id, data):
    return DocumentSnapshot(DocumentRef("products", doc_id), data)


class TestActiveProductsQuery:
    """Tests for build_active_products_query."""

    def test_no_filters(self, realtime_service):
        from store.base import OrderBy, Where

        q = realtime_service.build_active_products_query()

        assert q.filters == (Where("status", "in", ["active"]),)
        assert q.orders == (OrderBy("createdAt", "desc"),)

    def test_category_filter(self, realtime_service):
        from store.base import Where

        q = realtime_service.build_active_products_query({"category": "electronics"})

        assert q.filters == (
            Where("status", "in", ["active"]),
            Where("category", "==", "electronics"),
        )

    def test_seller_filter(self, realtime_service):
        from store.base import Where

        q = realtime_service.build_active_products_query({"sellerId": "user123"})

        assert q.filters == (
            Where("status", "in", ["active"]),
            Where("sellerId", "==", "user123"),
        )

    def test_empty_values_ignored(self, realtime_service):
        q = realtime_service.build_active_products_query({"category": "", "sellerId": None})

        assert len(q.filters) == 1


class TestSubscriptions:
    """Tests for subscription callbacks and release."""

    @pytest.mark.asyncio
    async def test_active_products_live_list(self, realtime_service, memory_store):
        received = []
        handle = realtime_service.subscribe_to_active_products(received.append)

        assert [i.id for i in received[-1]] == ["p2", "p1", "p5", "p3"]

        await memory_store.delete_doc(memory_store.doc("products", "p1"))
        assert [i.id for i in received[-1]] == ["p2", "p5", "p3"]

        handle.release()
        await memory_store.delete_doc(memory_store.doc("products", "p2"))
        assert len(received) == 2
        assert memory_store.listener_count == 0

    def test_filtered_subscription(self, realtime_service):
        received = []
        realtime_service.subscribe_to_active_products(received.append, {"category": "books"})

        assert [i.id for i in received[0]] == ["p3"]

    def test_all_products_includes_every_status(self, realtime_service):
        received = []
        realtime_service.subscribe_to_all_products(received.append)

        assert sorted(i.id for i in received[0]) == ["p1", "p2", "p3", "p4", "p5", "p6"]

    @pytest.mark.asyncio
    async def test_single_product(self, realtime_service, memory_store):
        received = []
        realtime_service.subscribe_to_product("p3", received.append)

        assert received[0].title == "Paperback Novel"

        await memory_store.delete_doc(memory_store.doc("products", "p3"))
        assert received[-1] is None

    def test_missing_product_reports_none(self, realtime_service):
        received = []
        realtime_service.subscribe_to_product("does-not-exist", received.append)

        assert received == [None]

    def test_empty_product_id_rejected(self, realtime_service):
        from search.errors import InvalidFilterError

        with pytest.raises(InvalidFilterError):
            realtime_service.subscribe_to_product("", lambda item: None)

        assert realtime_service.active_subscriptions == 0

    def test_release_is_idempotent(self, realtime_service, memory_store):
        handle = realtime_service.subscribe_to_active_products(lambda items: None)
        assert handle.active
        assert realtime_service.active_subscriptions == 1

        handle.release()
        handle.release()
        handle()

        assert handle.active is False
        assert realtime_service.active_subscriptions == 0
        assert memory_store.listener_count == 0

    def test_context_manager_releases(self, realtime_service):
        with realtime_service.subscribe_to_all_products(lambda items: None) as handle:
            assert handle.active

        assert handle.active is False

    def test_unsubscribe_all(self, realtime_service, memory_store):
        realtime_service.subscribe_to_active_products(lambda items: None)
        realtime_service.subscribe_to_all_products(lambda items: None)
        realtime_service.subscribe_to_product("p1", lambda item: None)

        realtime_service.unsubscribe_all()

        assert realtime_service.active_subscriptions == 0
        assert memory_store.listener_count == 0


class TestSubscriptionErrors:
    """Tests for store-terminated subscriptions."""

    def test_error_reported_once_then_released(self, realtime_service, memory_store):
        from search.errors import SubscriptionError

        errors = []
        handle = realtime_service.subscribe_to_active_products(lambda items: None, on_error=errors.append)

        error_cb = handle._service._error_handler(handle, errors.append)
        memory_store.fail_listeners(StoreError("connection reset"))
        error_cb(StoreError("late duplicate"))

        assert len(errors) == 1
        assert isinstance(errors[0], SubscriptionError)
        assert isinstance(errors[0].__cause__, StoreError)
        assert handle.active is False
        assert realtime_service.active_subscriptions == 0

    def test_error_without_callback_is_logged(self, realtime_service, memory_store):
        handle = realtime_service.subscribe_to_product("p1", lambda item: None)

        memory_store.fail_listeners(StoreError("permission denied"))

        assert handle.active is False

    def test_store_refusing_listener(self, realtime_service, memory_store):
        from search.errors import SubscriptionError

        def refuse(*args, **kwargs):
            raise StoreError("too many listeners")

        memory_store.on_snapshot = refuse

        with pytest.raises(SubscriptionError):
            realtime_service.subscribe_to_all_products(lambda items: None)

        assert realtime_service.active_subscriptions == 0


class TestCategoryDeltas:
    """Tests for derive_category_deltas."""

    def test_added_and_removed(self):
        from realtime_sync.subscriber import derive_category_deltas

        changes = [
            DocumentChange("added", _doc("a", {"categoryId": "books"})),
            DocumentChange("removed", _doc("b", {"categoryId": "toys"}), previous={"categoryId": "toys"}),
        ]

        deltas = derive_category_deltas(changes)

        assert [(d.category_id, d.delta) for d in deltas] == [("books", 1), ("toys", -1)]

    def test_category_move(self):
        from realtime_sync.subscriber import derive_category_deltas

        change = DocumentChange(
            "modified",
            _doc("a", {"categoryId": "sports"}),
            previous={"categoryId": "books"},
        )

        deltas = derive_category_deltas([change])

        assert [(d.category_id, d.delta) for d in deltas] == [("books", -1), ("sports", 1)]

    def test_modification_within_category_is_ignored(self):
        from realtime_sync.subscriber import derive_category_deltas

        change = DocumentChange(
            "modified",
            _doc("a", {"categoryId": "books", "price": 5}),
            previous={"categoryId": "books", "price": 4},
        )

        assert derive_category_deltas([change]) == []

    def test_uncategorized_products_ignored(self):
        from realtime_sync.subscriber import derive_category_deltas

        assert derive_category_deltas([DocumentChange("added", _doc("a", {"title": "x"}))]) == []

    def test_category_of_reads_category_id_only(self):
        from realtime_sync.subscriber import category_of

        assert category_of({"categoryId": "c1", "category": "Books"}) == "c1"
        assert category_of({"category": "books"}) is None
        assert category_of({"categoryId": ""}) is None
        assert category_of(None) is None

    def test_free_text_category_never_produces_delta(self):
        from realtime_sync.subscriber import derive_category_deltas

        changes = [
            DocumentChange("added", _doc("a", {"category": "books"})),
            DocumentChange("removed", _doc("b", {"category": "toys"}), previous={"category": "toys"}),
        ]

        assert derive_category_deltas(changes) == []


class TestCountChangeWiring:
    """Tests for subscribe_to_product_count_changes."""

    @pytest.mark.asyncio
    async def test_status_change_adjusts_counts(self, realtime_service, reconciler, memory_store):
        await reconciler.synchronize_category_counts()
        realtime_service.subscribe_to_product_count_changes(reconciler)
        await realtime_service.drain()

        # The initial snapshot does not re-add existing products
        assert reconciler.get_counts()["electronics"] == 3

        batch = memory_store.write_batch()
        batch.update(memory_store.doc("products", "p4"), {"status": "active"})
        batch.update(memory_store.doc("products", "p1"), {"status": "inactive"})
        await batch.commit()
        await realtime_service.drain()

        clothing = await memory_store.get_doc(memory_store.doc("categories", "clothing"))
        electronics = await memory_store.get_doc(memory_store.doc("categories", "electronics"))
        assert clothing.get("productCount") == 1
        assert electronics.get("productCount") == 2

    @pytest.mark.asyncio
    async def test_category_move_adjusts_both(self, realtime_service, reconciler, memory_store):
        await reconciler.synchronize_category_counts()
        realtime_service.subscribe_to_product_count_changes(reconciler)

        batch = memory_store.write_batch()
        batch.update(memory_store.doc("products", "p3"), {"categoryId": "furniture", "category": "furniture"})
        await batch.commit()
        await realtime_service.drain()

        counts = reconciler.get_counts()
        assert counts["books"] == 0
        assert counts["furniture"] == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
