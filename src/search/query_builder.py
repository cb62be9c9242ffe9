"""
Safe query construction.

The backing store rejects predicates whose value is null, and a membership
predicate over an empty list would silently match nothing. SafeQueryBuilder
drops such predicates instead of emitting them, so callers can pass filter
state straight through without checking every optional field.

Usage:
    q = (
        SafeQueryBuilder(collection("products"))
        .where_in("status", clean_query_array(["active"]))
        .equality("category", filters.get("category"))
        .order_by("createdAt", "desc")
        .limit(20)
        .build()
    )
"""

from typing import Any, Iterable, List, Optional, Union

from store.base import (
    Clause,
    CollectionRef,
    Cursor,
    OrderBy,
    Query,
    Where,
    limit as limit_clause,
    order_by as order_by_clause,
    query,
    start_after as start_after_clause,
    where as where_clause,
)


def is_valid_query_value(value: Any) -> bool:
    """A value may be used in a predicate unless it is None."""
    return value is not None


def clean_query_array(values: Optional[Iterable[Any]]) -> List[Any]:
    """
    Remove None entries, keeping order and duplicates.

    clean_query_array(["active", None, None, "blocked"]) -> ["active", "blocked"]
    clean_query_array([None, None]) -> []
    """
    if values is None:
        return []
    return [v for v in values if is_valid_query_value(v)]


class SafeQueryBuilder:
    """Chainable query builder that never emits an invalid predicate."""

    def __init__(self, base: Union[CollectionRef, Query]):
        self._base = base
        self._clauses: List[Clause] = []

    def where(self, field_path: str, op: str, value: Any) -> "SafeQueryBuilder":
        if is_valid_query_value(value):
            self._clauses.append(where_clause(field_path, op, value))
        return self

    def equality(self, field_path: str, value: Any) -> "SafeQueryBuilder":
        return self.where(field_path, "==", value)

    def where_in(self, field_path: str, values: Optional[Iterable[Any]]) -> "SafeQueryBuilder":
        cleaned = clean_query_array(values)
        if cleaned:
            self._clauses.append(where_clause(field_path, "in", cleaned))
        return self

    def where_array_contains_any(
        self, field_path: str, values: Optional[Iterable[Any]]
    ) -> "SafeQueryBuilder":
        cleaned = clean_query_array(values)
        if cleaned:
            self._clauses.append(where_clause(field_path, "array-contains-any", cleaned))
        return self

    def order_by(self, field_path: str, direction: str = "asc") -> "SafeQueryBuilder":
        self._clauses.append(order_by_clause(field_path, direction))
        return self

    def limit(self, count: Optional[int]) -> "SafeQueryBuilder":
        if is_valid_query_value(count):
            self._clauses.append(limit_clause(count))
        return self

    def start_after(self, cursor: Optional[Cursor]) -> "SafeQueryBuilder":
        if is_valid_query_value(cursor):
            self._clauses.append(start_after_clause(cursor))
        return self

    @property
    def predicates(self) -> List[Where]:
        return [c for c in self._clauses if isinstance(c, Where)]

    @property
    def orders(self) -> List[OrderBy]:
        return [c for c in self._clauses if isinstance(c, OrderBy)]

    def build(self) -> Query:
        return query(self._base, *self._clauses)
