from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterable

from firestore_batch.errors import ServiceUnavailableError
from firestore_batch.field_path import FieldPath, FieldPathLike


FILTER_OPERATORS = {
    "<": "LESS_THAN",
    "lt": "LESS_THAN",
    "<=": "LESS_THAN_OR_EQUAL",
    "lte": "LESS_THAN_OR_EQUAL",
    ">": "GREATER_THAN",
    "gt": "GREATER_THAN",
    ">=": "GREATER_THAN_OR_EQUAL",
    "gte": "GREATER_THAN_OR_EQUAL",
    "=": "EQUAL",
    "==": "EQUAL",
    "eq": "EQUAL",
    "eql": "EQUAL",
    "is": "EQUAL",
    "!=": "NOT_EQUAL",
    "ne": "NOT_EQUAL",
    "array_contains": "ARRAY_CONTAINS",
    "array-contains": "ARRAY_CONTAINS",
    "in": "IN",
    "array_contains_any": "ARRAY_CONTAINS_ANY",
    "array-contains-any": "ARRAY_CONTAINS_ANY",
    "not_in": "NOT_IN",
    "not-in": "NOT_IN",
}

DIRECTIONS = {
    "asc": "ASCENDING",
    "ascending": "ASCENDING",
    "desc": "DESCENDING",
    "descending": "DESCENDING",
}


@dataclass(frozen=True)
class CollectionSelector:
    collection_id: str
    all_descendants: bool = False


@dataclass(frozen=True)
class Filter:
    field: FieldPath
    op: str
    value: Any


@dataclass(frozen=True)
class Order:
    field: FieldPath
    direction: str = "ASCENDING"


@dataclass(frozen=True)
class Cursor:
    values: tuple[Any, ...]
    before: bool


@dataclass(frozen=True)
class StructuredQuery:
    """Service-facing description of a query."""

    select: tuple[FieldPath, ...] | None = None
    from_: tuple[CollectionSelector, ...] = ()
    where: tuple[Filter, ...] = ()
    order_by: tuple[Order, ...] = ()
    offset: int | None = None
    limit: int | None = None
    start_at: Cursor | None = None
    end_at: Cursor | None = None


def normalize_operator(operator: str) -> str:
    key = str(operator).strip().lower()
    if key not in FILTER_OPERATORS:
        raise ValueError(f"Unknown filter operator: {operator}")
    return FILTER_OPERATORS[key]


def normalize_direction(direction: str) -> str:
    key = str(direction).strip().lower()
    if key not in DIRECTIONS:
        raise ValueError(f"Unknown order direction: {direction}")
    return DIRECTIONS[key]


def _cursor_values(values: tuple[Any, ...]) -> tuple[Any, ...]:
    if len(values) == 1 and isinstance(values[0], (list, tuple)):
        values = tuple(values[0])
    if len(values) == 0:
        raise ValueError("Cursor requires at least one value.")
    return tuple(values)


def _non_negative(name: str, num: int) -> int:
    value = int(num)
    if value < 0:
        raise ValueError(f"{name} must be >= 0: {num}")
    return value


@dataclass(frozen=True)
class Query:
    """Immutable query builder; every call returns a new Query."""

    parent_path: str
    structured: StructuredQuery = field(default_factory=StructuredQuery)
    client: Any = field(default=None, compare=False, repr=False)

    @classmethod
    def start(cls, parent_path: str, client: Any = None) -> Query:
        return cls(parent_path=parent_path, client=client)

    def _with(self, **changes: Any) -> Query:
        return replace(self, structured=replace(self.structured, **changes))

    def select(self, *fields: FieldPathLike | Iterable[FieldPathLike]) -> Query:
        paths: list[FieldPath] = list(self.structured.select or ())
        for value in fields:
            if isinstance(value, (list, set)):
                paths.extend(FieldPath.parse(item) for item in value)
            else:
                paths.append(FieldPath.parse(value))
        return self._with(select=tuple(paths))

    def from_(self, collection_id: str, *, all_descendants: bool = False) -> Query:
        collection_id = str(collection_id).strip()
        if not collection_id or "/" in collection_id:
            raise ValueError(f"collection_id must be a single path segment: {collection_id!r}")
        selector = CollectionSelector(collection_id=collection_id, all_descendants=all_descendants)
        return self._with(from_=self.structured.from_ + (selector,))

    def where(self, field_path: FieldPathLike, operator: str, value: Any) -> Query:
        condition = Filter(field=FieldPath.parse(field_path), op=normalize_operator(operator), value=value)
        return self._with(where=self.structured.where + (condition,))

    def order(self, field_path: FieldPathLike, direction: str = "asc") -> Query:
        order = Order(field=FieldPath.parse(field_path), direction=normalize_direction(direction))
        return self._with(order_by=self.structured.order_by + (order,))

    order_by = order

    def offset(self, num: int) -> Query:
        return self._with(offset=_non_negative("offset", num))

    def limit(self, num: int) -> Query:
        return self._with(limit=_non_negative("limit", num))

    def start_at(self, *values: Any) -> Query:
        return self._with(start_at=Cursor(values=_cursor_values(values), before=True))

    def start_after(self, *values: Any) -> Query:
        return self._with(start_at=Cursor(values=_cursor_values(values), before=False))

    def end_before(self, *values: Any) -> Query:
        return self._with(end_at=Cursor(values=_cursor_values(values), before=True))

    def end_at(self, *values: Any) -> Query:
        return self._with(end_at=Cursor(values=_cursor_values(values), before=False))

    def get(self) -> Any:
        if self.client is None:
            raise ServiceUnavailableError("Must have active connection to service")
        return self.client.get(self)

    run = get
