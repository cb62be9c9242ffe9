"""
Supabase document store adapter.

Maps the document store boundary onto Supabase:
- collections are tables with a text primary key column `id`
- where/order/limit/start_after become PostgREST filters
- on_snapshot opens a Supabase Realtime channel for the table and re-runs
  the query on every postgres change, diffing against the last delivered
  result set
- write batches are committed through ONE RPC call
  (settings.supabase_batch_rpc), so the whole batch runs inside a single
  Postgres transaction

The RPC is expected to accept a JSON array of
{"table": str, "id": str, "fields": {column: value}} and apply every update
or none.

Uses the async Supabase client (supabase.acreate_client).
"""

import asyncio
import itertools
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from supabase import AsyncClient, acreate_client

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
    Where,
    diff_snapshots,
)

logger = get_logger(__name__)

_channel_ids = itertools.count(1)

_FAILED_CHANNEL_STATES = {"CHANNEL_ERROR", "TIMED_OUT", "CLOSED"}


def _literal(value: Any) -> str:
    """Render a value for a PostgREST filter string."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    text = str(value)
    if any(ch in text for ch in ',.()":'):
        return '"' + text.replace('"', '\\"') + '"'
    return text


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _apply_filter(builder: Any, clause: Where) -> Any:
    field, op, value = clause.field, clause.op, clause.value
    if op == "==":
        return builder.eq(field, _jsonable(value))
    if op == "!=":
        return builder.neq(field, _jsonable(value))
    if op == "<":
        return builder.lt(field, _jsonable(value))
    if op == "<=":
        return builder.lte(field, _jsonable(value))
    if op == ">":
        return builder.gt(field, _jsonable(value))
    if op == ">=":
        return builder.gte(field, _jsonable(value))
    if op == "in":
        return builder.in_(field, _jsonable(list(value)))
    if op == "not-in":
        return builder.not_.in_(field, _jsonable(list(value)))
    if op == "array-contains":
        return builder.contains(field, [_jsonable(value)])
    if op == "array-contains-any":
        return builder.overlaps(field, _jsonable(list(value)))
    raise StoreError(f"Operator not supported by Supabase adapter: {op}")


def _keyset_filter(q: Query) -> str:
    """
    Build an `or=(...)` filter selecting rows strictly after the cursor
    position under the query's ordering (id is the final tie-breaker).
    """
    cursor = q.start_after
    keys = [(o.field, o.direction) for o in q.orders]
    last_desc = bool(keys) and keys[-1][1] == "desc"
    keys.append(("id", "desc" if last_desc else "asc"))
    values = list(cursor.values) + [cursor.doc_id]

    branches: List[str] = []
    for i, (field, direction) in enumerate(keys):
        op = "lt" if direction == "desc" else "gt"
        parts = [f"{keys[j][0]}.eq.{_literal(values[j])}" for j in range(i)]
        parts.append(f"{field}.{op}.{_literal(values[i])}")
        if len(parts) == 1:
            branches.append(parts[0])
        else:
            branches.append(f"and({','.join(parts)})")
    return ",".join(branches)


class _ChannelRegistration:
    def __init__(self, store: "SupabaseDocumentStore", channel_name: str):
        self._store = store
        self._channel_name = channel_name
        self._removed = False

    def remove(self) -> None:
        if self._removed:
            return
        self._removed = True
        self._store._close_channel(self._channel_name)


class SupabaseWriteBatch:
    def __init__(self, store: "SupabaseDocumentStore"):
        self._store = store
        self._updates: List[Dict[str, Any]] = []
        self._committed = False

    def update(self, ref: DocumentRef, fields: Dict[str, Any]) -> "SupabaseWriteBatch":
        if self._committed:
            raise StoreError("Write batch already committed")
        self._updates.append({"table": ref.collection, "id": ref.id, "fields": _jsonable(fields)})
        return self

    async def commit(self) -> None:
        if self._committed:
            raise StoreError("Write batch already committed")
        self._committed = True
        if not self._updates:
            return
        client = await self._store.client()
        try:
            await client.rpc(self._store.batch_rpc, {"updates": self._updates}).execute()
        except Exception as e:
            raise StoreError(f"Batch commit failed: {e}") from e


class SupabaseDocumentStore:
    """DocumentStore backed by Supabase tables and Realtime channels."""

    def __init__(
        self,
        url: str,
        key: str,
        schema: str = "public",
        batch_rpc: str = "apply_document_batch",
        client: Optional[AsyncClient] = None,
    ):
        self._url = url
        self._key = key
        self.schema = schema
        self.batch_rpc = batch_rpc
        self._client = client
        self._client_lock = asyncio.Lock()
        self._channels: Dict[str, Any] = {}

    async def client(self) -> AsyncClient:
        if self._client is None:
            async with self._client_lock:
                if self._client is None:
                    try:
                        self._client = await acreate_client(self._url, self._key)
                    except Exception as e:
                        raise StoreError(f"Failed to create Supabase client: {e}") from e
        return self._client

    def collection(self, name: str) -> CollectionRef:
        return CollectionRef(name)

    def doc(self, collection_name: str, doc_id: str) -> DocumentRef:
        return DocumentRef(collection_name, doc_id)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def _fetch(self, q: Query) -> List[DocumentSnapshot]:
        client = await self.client()
        builder = client.table(q.collection).select("*")
        for clause in q.filters:
            builder = _apply_filter(builder, clause)
        for order in q.orders:
            # Rows missing an order-by field are excluded, as in the other backends.
            builder = builder.not_.is_(order.field, "null")
        if q.start_after is not None:
            builder = builder.or_(_keyset_filter(q))
        for order in q.orders:
            builder = builder.order(order.field, desc=order.direction == "desc")
        if q.orders:
            builder = builder.order("id", desc=q.orders[-1].direction == "desc")
        if q.limit is not None:
            builder = builder.limit(q.limit)

        try:
            response = await builder.execute()
        except Exception as e:
            raise StoreError(f"Query on {q.collection} failed: {e}") from e

        return [
            DocumentSnapshot(DocumentRef(q.collection, str(row["id"])), dict(row))
            for row in (response.data or [])
        ]

    async def get_docs(self, q: Union[Query, CollectionRef]) -> QuerySnapshot:
        if isinstance(q, CollectionRef):
            q = Query(collection=q.name)
        docs = await self._fetch(q)
        return QuerySnapshot(docs=docs, changes=[DocumentChange("added", d) for d in docs])

    async def get_doc(self, ref: DocumentRef) -> DocumentSnapshot:
        client = await self.client()
        try:
            response = await client.table(ref.collection).select("*").eq("id", ref.id).limit(1).execute()
        except Exception as e:
            raise StoreError(f"Fetch of {ref.collection}/{ref.id} failed: {e}") from e
        rows = response.data or []
        return DocumentSnapshot(ref, dict(rows[0]) if rows else None)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def write_batch(self) -> SupabaseWriteBatch:
        return SupabaseWriteBatch(self)

    async def set_doc(self, ref: DocumentRef, data: Dict[str, Any]) -> None:
        client = await self.client()
        row = {**_jsonable(data), "id": ref.id}
        try:
            await client.table(ref.collection).upsert(row).execute()
        except Exception as e:
            raise StoreError(f"Upsert of {ref.collection}/{ref.id} failed: {e}") from e

    async def delete_doc(self, ref: DocumentRef) -> None:
        client = await self.client()
        try:
            await client.table(ref.collection).delete().eq("id", ref.id).execute()
        except Exception as e:
            raise StoreError(f"Delete of {ref.collection}/{ref.id} failed: {e}") from e

    # -------------------------------------------------------------------------
    # Realtime
    # -------------------------------------------------------------------------

    def on_snapshot(
        self,
        q: Query,
        on_change: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> _ChannelRegistration:
        last: Dict[str, DocumentSnapshot] = {}
        first = True

        async def refresh() -> None:
            nonlocal last, first
            docs = await self._fetch(q)
            changes = diff_snapshots(last, docs)
            if not first and not changes:
                return
            first = False
            last = {d.id: d for d in docs}
            on_change(QuerySnapshot(docs=docs, changes=changes))

        return self._open_channel(q.collection, None, refresh, on_error)

    def on_document_snapshot(
        self,
        ref: DocumentRef,
        on_change: DocumentCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> _ChannelRegistration:
        last: Optional[DocumentSnapshot] = None

        async def refresh() -> None:
            nonlocal last
            snap = await self.get_doc(ref)
            if last is not None and last.data == snap.data:
                return
            last = snap
            on_change(snap)

        return self._open_channel(ref.collection, f"id=eq.{ref.id}", refresh, on_error)

    def _open_channel(self, table, row_filter, refresh, on_error) -> _ChannelRegistration:
        name = f"{table}-listener-{next(_channel_ids)}"
        registration = _ChannelRegistration(self, name)
        failed = False
        # Refreshes run one at a time so snapshots reach the callback in order
        refresh_lock = asyncio.Lock()

        def fail(error: Exception) -> None:
            nonlocal failed
            if failed:
                return
            failed = True
            registration.remove()
            if on_error is not None:
                on_error(error)
            else:
                logger.error("Realtime listener failed", channel=name, error=str(error))

        async def guarded_refresh() -> None:
            async with refresh_lock:
                if registration._removed:
                    return
                try:
                    await refresh()
                except StoreError as e:
                    fail(e)

        def on_postgres_change(_payload: Any) -> None:
            asyncio.ensure_future(guarded_refresh())

        def on_status(status: Any, err: Optional[Exception] = None) -> None:
            state = getattr(status, "value", status)
            if state == "SUBSCRIBED":
                asyncio.ensure_future(guarded_refresh())
            elif state in _FAILED_CHANNEL_STATES and not registration._removed:
                fail(err or StoreError(f"Realtime channel {name} entered state {state}"))

        async def start() -> None:
            try:
                client = await self.client()
                channel = client.channel(name)
                kwargs: Dict[str, Any] = {
                    "event": "*",
                    "schema": self.schema,
                    "table": table,
                    "callback": on_postgres_change,
                }
                if row_filter:
                    kwargs["filter"] = row_filter
                channel.on_postgres_changes(**kwargs)
                self._channels[name] = channel
                await channel.subscribe(on_status)
                if registration._removed:
                    self._close_channel(name)
            except Exception as e:
                fail(e if isinstance(e, StoreError) else StoreError(str(e)))

        asyncio.ensure_future(start())
        return registration

    def _close_channel(self, name: str) -> None:
        channel = self._channels.pop(name, None)
        if channel is None or self._client is None:
            return
        asyncio.ensure_future(self._client.remove_channel(channel))
