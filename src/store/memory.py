"""
In-memory document store.

Development and test backend with Firestore-like query semantics:
- documents missing an order-by field are excluded from ordered queries
- range predicates never match missing or incomparable values
- listeners receive the full current result set on attach and after every
  committed write that changes their result set
- write batches are all-or-nothing

Listener callbacks are dispatched synchronously from the writing coroutine.
"""

import copy
import itertools
from typing import Any, Dict, List, Optional, Union

from core.logging import get_logger
from store.base import (
    CollectionRef,
    DocumentCallback,
    DocumentChange,
    DocumentRef,
    DocumentSnapshot,
    ErrorCallback,
    Query,
    QuerySnapshot,
    SnapshotCallback,
    StoreError,
    compare_positions,
    diff_snapshots,
    matches_query,
    sort_key_values,
    sort_snapshots,
)

logger = get_logger(__name__)


class _Registration:
    """Handle returned by on_snapshot; remove() detaches the listener."""

    def __init__(self, store: "InMemoryDocumentStore", listener_id: int):
        self._store = store
        self._listener_id = listener_id

    def remove(self) -> None:
        self._store._listeners.pop(self._listener_id, None)


class _Listener:
    def __init__(
        self,
        q: Optional[Query],
        ref: Optional[DocumentRef],
        on_change: Union[SnapshotCallback, DocumentCallback],
        on_error: Optional[ErrorCallback],
    ):
        self.query = q
        self.ref = ref
        self.on_change = on_change
        self.on_error = on_error
        self.last: Dict[str, DocumentSnapshot] = {}


class InMemoryWriteBatch:
    """Collects updates and applies them in one step on commit()."""

    def __init__(self, store: "InMemoryDocumentStore"):
        self._store = store
        self._updates: List[tuple] = []
        self._committed = False

    def update(self, ref: DocumentRef, fields: Dict[str, Any]) -> "InMemoryWriteBatch":
        if self._committed:
            raise StoreError("Write batch already committed")
        self._updates.append((ref, dict(fields)))
        return self

    async def commit(self) -> None:
        if self._committed:
            raise StoreError("Write batch already committed")
        self._committed = True
        self._store._apply_updates(self._updates)


class InMemoryDocumentStore:
    """DocumentStore implementation backed by nested dicts."""

    def __init__(self, initial: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._listeners: Dict[int, _Listener] = {}
        self._ids = itertools.count(1)
        for name, docs in (initial or {}).items():
            self._collections[name] = {doc_id: copy.deepcopy(data) for doc_id, data in docs.items()}

    # -------------------------------------------------------------------------
    # References
    # -------------------------------------------------------------------------

    def collection(self, name: str) -> CollectionRef:
        return CollectionRef(name)

    def doc(self, collection_name: str, doc_id: str) -> DocumentRef:
        return DocumentRef(collection_name, doc_id)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _snapshot(self, name: str, doc_id: str) -> DocumentSnapshot:
        data = self._collections.get(name, {}).get(doc_id)
        return DocumentSnapshot(DocumentRef(name, doc_id), copy.deepcopy(data) if data is not None else None)

    def _run(self, q: Query) -> List[DocumentSnapshot]:
        docs = [
            self._snapshot(q.collection, doc_id)
            for doc_id, data in self._collections.get(q.collection, {}).items()
            if matches_query(data, q)
        ]
        docs = sort_snapshots(docs, q.orders)

        if q.start_after is not None:
            cursor = q.start_after
            docs = [
                d for d in docs
                if compare_positions(
                    sort_key_values(d.data or {}, q.orders), d.id,
                    cursor.values, cursor.doc_id,
                    q.orders,
                ) > 0
            ]

        if q.limit is not None:
            docs = docs[: max(0, q.limit)]
        return docs

    async def get_docs(self, q: Union[Query, CollectionRef]) -> QuerySnapshot:
        if isinstance(q, CollectionRef):
            q = Query(collection=q.name)
        docs = self._run(q)
        return QuerySnapshot(docs=docs, changes=[DocumentChange("added", d) for d in docs])

    async def get_doc(self, ref: DocumentRef) -> DocumentSnapshot:
        return self._snapshot(ref.collection, ref.id)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def write_batch(self) -> InMemoryWriteBatch:
        return InMemoryWriteBatch(self)

    async def set_doc(self, ref: DocumentRef, data: Dict[str, Any]) -> None:
        self._collections.setdefault(ref.collection, {})[ref.id] = copy.deepcopy(data)
        self._notify()

    async def delete_doc(self, ref: DocumentRef) -> None:
        self._collections.get(ref.collection, {}).pop(ref.id, None)
        self._notify()

    def _apply_updates(self, updates: List[tuple]) -> None:
        # Validate everything first so a bad update leaves the store untouched.
        for ref, _ in updates:
            if ref.id not in self._collections.get(ref.collection, {}):
                raise StoreError(f"No document to update: {ref.collection}/{ref.id}")

        staged = {
            name: {doc_id: copy.deepcopy(data) for doc_id, data in docs.items()}
            for name, docs in self._collections.items()
        }
        for ref, fields in updates:
            target = staged[ref.collection][ref.id]
            for path, value in fields.items():
                _set_path(target, path, copy.deepcopy(value))

        self._collections = staged
        self._notify()

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def on_snapshot(
        self,
        q: Query,
        on_change: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> _Registration:
        listener_id = next(self._ids)
        listener = _Listener(q, None, on_change, on_error)
        self._listeners[listener_id] = listener
        self._deliver(listener_id, listener, initial=True)
        return _Registration(self, listener_id)

    def on_document_snapshot(
        self,
        ref: DocumentRef,
        on_change: DocumentCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> _Registration:
        listener_id = next(self._ids)
        listener = _Listener(None, ref, on_change, on_error)
        self._listeners[listener_id] = listener
        self._deliver(listener_id, listener, initial=True)
        return _Registration(self, listener_id)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def fail_listeners(self, error: Exception) -> None:
        """Terminate every live listener with `error` (simulates a dropped connection)."""
        listeners = list(self._listeners.items())
        self._listeners.clear()
        for _, listener in listeners:
            if listener.on_error is not None:
                listener.on_error(error)

    def _notify(self) -> None:
        for listener_id, listener in list(self._listeners.items()):
            if listener_id in self._listeners:
                self._deliver(listener_id, listener, initial=False)

    def _deliver(self, listener_id: int, listener: _Listener, initial: bool) -> None:
        if listener.ref is not None:
            snap = self._snapshot(listener.ref.collection, listener.ref.id)
            previous = listener.last.get(snap.id)
            if not initial and previous is not None and previous.data == snap.data:
                return
            listener.last = {snap.id: snap}
            payload: Any = snap
            collection_name = listener.ref.collection
        else:
            current = self._run(listener.query)
            changes = diff_snapshots(listener.last, current)
            if not initial and not changes:
                return
            listener.last = {d.id: d for d in current}
            payload = QuerySnapshot(docs=current, changes=changes)
            collection_name = listener.query.collection

        try:
            listener.on_change(payload)
        except Exception as e:
            # A failing consumer must not abort the write that triggered it.
            logger.error(
                "Snapshot listener raised",
                listener_id=listener_id,
                collection=collection_name,
                error=str(e),
            )


def _set_path(target: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    for part in parts[:-1]:
        nxt = target.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            target[part] = nxt
        target = nxt
    target[parts[-1]] = value
