"""
Document store boundary and backends.

Provides:
- base: query primitives, snapshots, DocumentStore protocol
- InMemoryDocumentStore: development/testing backend
- SupabaseDocumentStore: production backend (imported lazily by
  config.database so the supabase client is only loaded when selected)
"""

from store.base import (
    CollectionRef,
    Cursor,
    DocumentChange,
    DocumentRef,
    DocumentSnapshot,
    DocumentStore,
    Query,
    QuerySnapshot,
    StoreError,
    collection,
    limit,
    order_by,
    query,
    start_after,
    where,
)
from store.memory import InMemoryDocumentStore

__all__ = [
    "CollectionRef",
    "Cursor",
    "DocumentChange",
    "DocumentRef",
    "DocumentSnapshot",
    "DocumentStore",
    "InMemoryDocumentStore",
    "Query",
    "QuerySnapshot",
    "StoreError",
    "collection",
    "limit",
    "order_by",
    "query",
    "start_after",
    "where",
]
