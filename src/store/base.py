"""
Document store boundary.

The catalog engine only talks to its backing store through the primitives
defined here:

    collection(name)                        -> CollectionRef
    query(base, *clauses)                   -> Query
    where(field, op, value)                 -> Where
    order_by(field, direction)              -> OrderBy
    limit(n)                                -> Limit
    start_after(cursor)                     -> StartAfter
    store.get_docs(query)                   -> QuerySnapshot
    store.on_snapshot(query, on_change, on_error) -> ListenerRegistration
    store.write_batch()                     -> WriteBatch (.update / .commit)

Backends (in-memory, Supabase) implement the DocumentStore protocol. Query
objects are immutable, so a partially built query can be shared safely.
"""

import functools
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
    runtime_checkable,
)


# =============================================================================
# Errors
# =============================================================================

class StoreError(Exception):
    """Raised by a backend when the store rejects or fails a request."""
    pass


# =============================================================================
# References and snapshots
# =============================================================================

@dataclass(frozen=True)
class CollectionRef:
    name: str


@dataclass(frozen=True)
class DocumentRef:
    collection: str
    id: str


@dataclass(frozen=True)
class DocumentSnapshot:
    """Read-only view of one stored document."""
    ref: DocumentRef
    data: Optional[Dict[str, Any]]

    @property
    def id(self) -> str:
        return self.ref.id

    @property
    def exists(self) -> bool:
        return self.data is not None

    def get(self, field_path: str, default: Any = None) -> Any:
        if self.data is None:
            return default
        return get_field(self.data, field_path, default)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.data or {})


ChangeType = str  # "added" | "modified" | "removed"


@dataclass(frozen=True)
class DocumentChange:
    """
    One document entering, changing within, or leaving a query's result set.

    `previous` holds the document's data as last delivered to the listener
    (None for "added"), so consumers can see what a modified or removed
    document used to look like.
    """
    type: ChangeType
    doc: DocumentSnapshot
    previous: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class QuerySnapshot:
    docs: List[DocumentSnapshot]
    changes: List[DocumentChange] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.docs)

    @property
    def empty(self) -> bool:
        return not self.docs


# =============================================================================
# Query clauses
# =============================================================================

SUPPORTED_OPERATORS = frozenset({
    "==", "!=", "<", "<=", ">", ">=",
    "in", "not-in", "array-contains", "array-contains-any",
})


@dataclass(frozen=True)
class Where:
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in SUPPORTED_OPERATORS:
            raise ValueError(f"Unsupported query operator: {self.op!r}")


@dataclass(frozen=True)
class OrderBy:
    field: str
    direction: str = "asc"

    def __post_init__(self):
        if self.direction not in ("asc", "desc"):
            raise ValueError(f"Order direction must be 'asc' or 'desc', got {self.direction!r}")


@dataclass(frozen=True)
class Limit:
    count: int


@dataclass(frozen=True)
class Cursor:
    """
    Resume position for forward iteration: the sort-field values and id of
    the last document already delivered.
    """
    values: Tuple[Any, ...]
    doc_id: str


@dataclass(frozen=True)
class StartAfter:
    cursor: Cursor


Clause = Union[Where, OrderBy, Limit, StartAfter]


@dataclass(frozen=True)
class Query:
    collection: str
    filters: Tuple[Where, ...] = ()
    orders: Tuple[OrderBy, ...] = ()
    limit: Optional[int] = None
    start_after: Optional[Cursor] = None


def collection(name: str) -> CollectionRef:
    return CollectionRef(name)


def where(field_path: str, op: str, value: Any) -> Where:
    return Where(field_path, op, value)


def order_by(field_path: str, direction: str = "asc") -> OrderBy:
    return OrderBy(field_path, direction)


def limit(count: int) -> Limit:
    return Limit(count)


def start_after(cursor: Cursor) -> StartAfter:
    return StartAfter(cursor)


def query(base: Union[CollectionRef, Query], *clauses: Clause) -> Query:
    """Compose a new Query from a collection (or an existing query) and clauses."""
    if isinstance(base, CollectionRef):
        q = Query(collection=base.name)
    else:
        q = base

    filters = list(q.filters)
    orders = list(q.orders)
    max_docs = q.limit
    cursor = q.start_after

    for clause in clauses:
        if isinstance(clause, Where):
            filters.append(clause)
        elif isinstance(clause, OrderBy):
            orders.append(clause)
        elif isinstance(clause, Limit):
            max_docs = clause.count
        elif isinstance(clause, StartAfter):
            cursor = clause.cursor
        else:
            raise TypeError(f"Unknown query clause: {clause!r}")

    return Query(
        collection=q.collection,
        filters=tuple(filters),
        orders=tuple(orders),
        limit=max_docs,
        start_after=cursor,
    )


# =============================================================================
# Write batches and listeners
# =============================================================================

class WriteBatch(Protocol):
    def update(self, ref: DocumentRef, fields: Dict[str, Any]) -> "WriteBatch": ...

    async def commit(self) -> None: ...


class ListenerRegistration(Protocol):
    def remove(self) -> None: ...


SnapshotCallback = Callable[[QuerySnapshot], None]
DocumentCallback = Callable[[DocumentSnapshot], None]
ErrorCallback = Callable[[Exception], None]


@runtime_checkable
class DocumentStore(Protocol):
    """The only surface the catalog engine uses to reach its data."""

    def collection(self, name: str) -> CollectionRef: ...

    def doc(self, collection_name: str, doc_id: str) -> DocumentRef: ...

    async def get_docs(self, q: Union[Query, CollectionRef]) -> QuerySnapshot: ...

    async def get_doc(self, ref: DocumentRef) -> DocumentSnapshot: ...

    def on_snapshot(
        self,
        q: Query,
        on_change: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> ListenerRegistration: ...

    def on_document_snapshot(
        self,
        ref: DocumentRef,
        on_change: DocumentCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> ListenerRegistration: ...

    def write_batch(self) -> WriteBatch: ...

    async def set_doc(self, ref: DocumentRef, data: Dict[str, Any]) -> None: ...

    async def delete_doc(self, ref: DocumentRef) -> None: ...


# =============================================================================
# Shared evaluation helpers
# =============================================================================

_MISSING = object()


def get_field(data: Dict[str, Any], field_path: str, default: Any = None) -> Any:
    """Read a possibly dotted field path ("metadata.productCount")."""
    current: Any = data
    for part in field_path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def _compare_values(a: Any, b: Any) -> int:
    """
    Total order used for sorting and cursors. None sorts first; values of
    incompatible types are ordered by type name so sorting never raises.
    """
    if a is None and b is None:
        return 0
    if a is None:
        return -1
    if b is None:
        return 1
    try:
        if a < b:
            return -1
        if a > b:
            return 1
        return 0
    except TypeError:
        ta, tb = type(a).__name__, type(b).__name__
        return (ta > tb) - (ta < tb)


def matches_filter(data: Dict[str, Any], clause: Where) -> bool:
    """Evaluate one where-clause against a document's data."""
    value = get_field(data, clause.field, _MISSING)
    op = clause.op
    operand = clause.value

    if op == "==":
        return value is not _MISSING and value == operand
    if op == "!=":
        return value is not _MISSING and value is not None and value != operand
    if op == "in":
        return value is not _MISSING and value in operand
    if op == "not-in":
        return value is not _MISSING and value is not None and value not in operand
    if op == "array-contains":
        return isinstance(value, list) and operand in value
    if op == "array-contains-any":
        return isinstance(value, list) and any(v in value for v in operand)

    # Range operators: documents missing the field (or holding a value of a
    # different type) never match.
    if value is _MISSING or value is None:
        return False
    try:
        if op == "<":
            return value < operand
        if op == "<=":
            return value <= operand
        if op == ">":
            return value > operand
        if op == ">=":
            return value >= operand
    except TypeError:
        return False
    return False


def matches_query(data: Dict[str, Any], q: Query) -> bool:
    """All filters match and every order-by field is present."""
    for clause in q.filters:
        if not matches_filter(data, clause):
            return False
    for order in q.orders:
        if get_field(data, order.field, _MISSING) is _MISSING:
            return False
    return True


def sort_key_values(data: Dict[str, Any], orders: Sequence[OrderBy]) -> Tuple[Any, ...]:
    return tuple(get_field(data, o.field) for o in orders)


def compare_positions(
    a_values: Sequence[Any],
    a_id: str,
    b_values: Sequence[Any],
    b_id: str,
    orders: Sequence[OrderBy],
) -> int:
    """Compare two result positions under `orders`, breaking ties by id."""
    for order, av, bv in zip(orders, a_values, b_values):
        c = _compare_values(av, bv)
        if c:
            return -c if order.direction == "desc" else c
    # Document id tie-breaker follows the direction of the last order-by.
    last_desc = bool(orders) and orders[-1].direction == "desc"
    c = _compare_values(a_id, b_id)
    return -c if last_desc else c


def sort_snapshots(docs: List[DocumentSnapshot], orders: Sequence[OrderBy]) -> List[DocumentSnapshot]:
    def _cmp(a: DocumentSnapshot, b: DocumentSnapshot) -> int:
        return compare_positions(
            sort_key_values(a.data or {}, orders), a.id,
            sort_key_values(b.data or {}, orders), b.id,
            orders,
        )

    return sorted(docs, key=functools.cmp_to_key(_cmp))


def cursor_from_snapshot(doc: DocumentSnapshot, orders: Sequence[OrderBy]) -> Cursor:
    return Cursor(values=sort_key_values(doc.data or {}, orders), doc_id=doc.id)


def diff_snapshots(
    previous: Dict[str, DocumentSnapshot],
    current: List[DocumentSnapshot],
) -> List[DocumentChange]:
    """
    Compute the change list between two result sets of the same query.

    Emitted in the order: removals, then additions/modifications in the
    current result order.
    """
    changes: List[DocumentChange] = []
    current_ids = {d.id for d in current}

    for doc_id, old in previous.items():
        if doc_id not in current_ids:
            changes.append(DocumentChange("removed", old, previous=old.data))

    for doc in current:
        old = previous.get(doc.id)
        if old is None:
            changes.append(DocumentChange("added", doc))
        elif old.data != doc.data:
            changes.append(DocumentChange("modified", doc, previous=old.data))

    return changes

