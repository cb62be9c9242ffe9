"""
Document store singleton.

Selects the backend named by settings.store_backend and keeps one instance
for the whole process, so the API, the realtime subscriber and the
reconciler all observe the same data.
"""

import threading
from typing import Optional

from config.settings import Settings, get_settings
from core.logging import get_logger
from store.base import DocumentStore
from store.memory import InMemoryDocumentStore


logger = get_logger(__name__)


class StoreConfigurationError(Exception):
    """Raised when the configured document store cannot be created."""
    pass


_store: Optional[DocumentStore] = None
_store_lock = threading.Lock()


def create_document_store(settings: Settings) -> DocumentStore:
    """Build a new store for `settings` (no caching)."""
    if settings.store_backend == "memory":
        return InMemoryDocumentStore()

    if settings.store_backend == "supabase":
        try:
            from store.supabase_store import SupabaseDocumentStore
        except ImportError as e:
            raise StoreConfigurationError(f"Supabase backend unavailable: {e}") from e
        return SupabaseDocumentStore(
            url=settings.supabase_url,
            key=settings.supabase_service_key,
            schema=settings.supabase_schema,
            batch_rpc=settings.supabase_batch_rpc,
        )

    raise StoreConfigurationError(f"Unknown store backend: {settings.store_backend}")


def get_document_store() -> DocumentStore:
    """
    Get the singleton document store.

    Also usable as a FastAPI dependency:
        @router.get("/items")
        async def items(store: DocumentStore = Depends(get_document_store)):
            ...
    """
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                settings = get_settings()
                _store = create_document_store(settings)
                logger.info("Document store created", backend=settings.store_backend)
    return _store


def reset_document_store(store: Optional[DocumentStore] = None) -> None:
    """Replace (or drop) the singleton. Used by tests and app shutdown."""
    global _store
    with _store_lock:
        _store = store
