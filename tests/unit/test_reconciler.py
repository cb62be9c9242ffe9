"""
Tests for CategoryCountReconciler (batch and incremental paths).
"""

from unittest.mock import AsyncMock

import pytest


EXPECTED_COUNTS = {
    "books": 1,
    "clothing": 0,
    "electronics": 3,
    "furniture": 0,
    "sports": 0,
}


async def _persisted_counts(store):
    snap = await store.get_docs(store.collection("categories"))
    return {doc.id: doc.get("productCount") for doc in snap.docs}


class TestSynchronize:
    """Tests for synchronize_category_counts."""

    @pytest.mark.asyncio
    async def test_converges_to_active_counts(self, reconciler, memory_store):
        result = await reconciler.synchronize_category_counts()

        assert result.success is True
        assert result.updated_categories == 5
        assert result.message == "Successfully updated 5 categories"
        assert [(s.category_id, s.count) for s in result.summary] == sorted(EXPECTED_COUNTS.items())
        assert await _persisted_counts(memory_store) == EXPECTED_COUNTS
        assert reconciler.get_counts() == EXPECTED_COUNTS

    @pytest.mark.asyncio
    async def test_zero_count_categories_reported(self, reconciler):
        result = await reconciler.synchronize_category_counts()

        zero = {(c.id, c.name) for c in result.zero_count_categories}
        assert zero == {("clothing", "Clothing"), ("sports", "Sports"), ("furniture", "Furniture")}

    @pytest.mark.asyncio
    async def test_updated_at_written(self, reconciler, memory_store):
        await reconciler.synchronize_category_counts()

        books = await memory_store.get_doc(memory_store.doc("categories", "books"))
        assert books.get("updatedAt") is not None

    @pytest.mark.asyncio
    async def test_idempotent(self, reconciler, memory_store):
        first = await reconciler.synchronize_category_counts()
        second = await reconciler.synchronize_category_counts()

        assert first.summary == second.summary
        assert await _persisted_counts(memory_store) == EXPECTED_COUNTS

    @pytest.mark.asyncio
    async def test_no_categories(self, empty_store, test_settings):
        from realtime_sync.reconciler import CategoryCountReconciler

        result = await CategoryCountReconciler(empty_store, settings=test_settings).synchronize_category_counts()

        assert result.success is True
        assert result.updated_categories == 0
        assert result.summary == []

    @pytest.mark.asyncio
    async def test_free_text_category_is_not_counted(self, empty_store, test_settings):
        from realtime_sync.reconciler import CategoryCountReconciler

        empty_store._collections["categories"] = {"electronics": {"name": "Electronics", "productCount": 2}}
        empty_store._collections["products"] = {
            "x1": {"status": "active", "category": "electronics"},
        }

        result = await CategoryCountReconciler(empty_store, settings=test_settings).synchronize_category_counts()

        assert [(s.category_id, s.count) for s in result.summary] == [("electronics", 0)]
        assert await _persisted_counts(empty_store) == {"electronics": 0}

    @pytest.mark.asyncio
    async def test_commit_failure_writes_nothing(self, reconciler, memory_store):
        from search.errors import ReconciliationError
        from store.base import StoreError

        class FailingBatch:
            def update(self, ref, fields):
                return self

            async def commit(self):
                raise StoreError("deadline exceeded")

        memory_store.write_batch = FailingBatch

        with pytest.raises(ReconciliationError):
            await reconciler.synchronize_category_counts()

        counts = await _persisted_counts(memory_store)
        assert counts["electronics"] == 7
        assert counts["books"] == 0

    @pytest.mark.asyncio
    async def test_read_failure(self, reconciler, memory_store):
        from search.errors import ReconciliationError
        from store.base import StoreError

        memory_store.get_docs = AsyncMock(side_effect=StoreError("unavailable"))

        with pytest.raises(ReconciliationError):
            await reconciler.synchronize_category_counts()


class TestIncremental:
    """Tests for apply_delta / apply_deltas."""

    @pytest.mark.asyncio
    async def test_delta_applied(self, reconciler, memory_store):
        from search.models import CategoryDelta

        await reconciler.apply_delta(CategoryDelta(category_id="books", delta=1))

        assert (await _persisted_counts(memory_store))["books"] == 1
        assert reconciler.get_counts()["books"] == 1

    @pytest.mark.asyncio
    async def test_never_below_zero(self, reconciler, memory_store):
        from search.models import CategoryDelta

        await reconciler.apply_delta(CategoryDelta(category_id="books", delta=-1))

        assert (await _persisted_counts(memory_store))["books"] == 0

    @pytest.mark.asyncio
    async def test_deltas_netted_per_category(self, reconciler, memory_store):
        from search.models import CategoryDelta

        await reconciler.apply_deltas([
            CategoryDelta(category_id="sports", delta=1),
            CategoryDelta(category_id="sports", delta=1),
            CategoryDelta(category_id="clothing", delta=-1),
            CategoryDelta(category_id="clothing", delta=1),
        ])

        counts = await _persisted_counts(memory_store)
        assert counts["sports"] == 3
        assert counts["clothing"] == 4

    @pytest.mark.asyncio
    async def test_unknown_category_skipped(self, reconciler, memory_store):
        from search.models import CategoryDelta

        await reconciler.apply_delta(CategoryDelta(category_id="toys", delta=1))

        counts = await _persisted_counts(memory_store)
        assert "toys" not in counts

    @pytest.mark.asyncio
    async def test_store_failure_is_swallowed(self, reconciler, memory_store):
        from search.models import CategoryDelta
        from store.base import StoreError

        memory_store.get_doc = AsyncMock(side_effect=StoreError("unavailable"))

        # Best effort: no exception
        await reconciler.apply_delta(CategoryDelta(category_id="books", delta=1))

        assert "books" not in reconciler.get_counts()

    @pytest.mark.asyncio
    async def test_concurrent_deltas_are_not_lost(self, reconciler, memory_store):
        import asyncio

        from search.models import CategoryDelta

        seed = memory_store.write_batch()
        seed.update(memory_store.doc("categories", "books"), {"productCount": 5})
        await seed.commit()

        read = memory_store.get_doc

        async def slow_get_doc(ref):
            snapshot = await read(ref)
            await asyncio.sleep(0)
            return snapshot

        memory_store.get_doc = slow_get_doc

        await asyncio.gather(
            reconciler.apply_deltas([CategoryDelta(category_id="books", delta=1)]),
            reconciler.apply_deltas([CategoryDelta(category_id="books", delta=1)]),
        )

        assert (await _persisted_counts(memory_store))["books"] == 7
        assert reconciler.get_counts()["books"] == 7

    @pytest.mark.asyncio
    async def test_batch_overrides_incremental(self, reconciler, memory_store):
        from search.models import CategoryDelta

        await reconciler.apply_delta(CategoryDelta(category_id="furniture", delta=1))
        await reconciler.synchronize_category_counts()

        assert (await _persisted_counts(memory_store))["furniture"] == 0


class TestListCounts:
    """Tests for list_category_counts."""

    @pytest.mark.asyncio
    async def test_lists_persisted_counts(self, reconciler):
        records = await reconciler.list_category_counts()

        assert [r.category_id for r in records] == ["books", "clothing", "electronics", "furniture", "sports"]
        assert records[2].name == "Electronics"
        assert records[2].product_count == 7
        assert reconciler.get_counts()["electronics"] == 7

    @pytest.mark.asyncio
    async def test_read_failure(self, reconciler, memory_store):
        from search.errors import QueryExecutionError
        from store.base import StoreError

        memory_store.get_docs = AsyncMock(side_effect=StoreError("unavailable"))

        with pytest.raises(QueryExecutionError):
            await reconciler.list_category_counts()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
