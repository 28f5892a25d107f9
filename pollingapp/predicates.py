"""Composable SQL predicates over table columns."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)?")

_TRUE = "1 = 1"
_FALSE = "1 = 0"


def _column(column: str) -> str:
    if not isinstance(column, str) or _IDENTIFIER.fullmatch(column) is None:
        raise ValueError(f"invalid column name {column!r}")
    return ".".join(f'"{part}"' for part in column.split("."))


def _adapt(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    return value


@dataclass(frozen=True)
class Predicate:
    """A WHERE-clause fragment with its positional parameters."""

    clause: str
    params: tuple[Any, ...] = ()

    def to_sql(self) -> tuple[str, tuple[Any, ...]]:
        """Return the clause and its parameters, ready for a DB-API cursor."""
        return self.clause, self.params

    def __and__(self, other: Predicate) -> Predicate:
        return and_(self, other)

    def __or__(self, other: Predicate) -> Predicate:
        return or_(self, other)

    def __invert__(self) -> Predicate:
        return not_(self)


def _compare(column: str, operator: str, value: Any) -> Predicate:
    return Predicate(f"{_column(column)} {operator} ?", (_adapt(value),))


def eq(column: str, value: Any) -> Predicate:
    return _compare(column, "=", value)


def ne(column: str, value: Any) -> Predicate:
    return _compare(column, "<>", value)


def gt(column: str, value: Any) -> Predicate:
    return _compare(column, ">", value)


def ge(column: str, value: Any) -> Predicate:
    return _compare(column, ">=", value)


def lt(column: str, value: Any) -> Predicate:
    return _compare(column, "<", value)


def le(column: str, value: Any) -> Predicate:
    return _compare(column, "<=", value)


def _membership(column: str, values: Iterable[Any], operator: str, empty: str) -> Predicate:
    name = _column(column)
    items = tuple(_adapt(v) for v in values)
    if not items:
        return Predicate(empty)
    marks = ", ".join("?" for _ in items)
    return Predicate(f"{name} {operator} ({marks})", items)


def in_(column: str, values: Iterable[Any]) -> Predicate:
    """Match rows whose column is one of values; nothing matches an empty set."""
    return _membership(column, values, "IN", _FALSE)


def not_in(column: str, values: Iterable[Any]) -> Predicate:
    """Match rows whose column is none of values; everything matches an empty set."""
    return _membership(column, values, "NOT IN", _TRUE)


def _join(predicates: tuple[Predicate, ...], operator: str, empty: str) -> Predicate:
    if not predicates:
        return Predicate(empty)
    if len(predicates) == 1:
        return predicates[0]
    clause = f" {operator} ".join(f"({p.clause})" for p in predicates)
    params = tuple(param for p in predicates for param in p.params)
    return Predicate(clause, params)


def and_(*predicates: Predicate) -> Predicate:
    """Group predicates with AND."""
    return _join(predicates, "AND", _TRUE)


def or_(*predicates: Predicate) -> Predicate:
    """Group predicates with OR."""
    return _join(predicates, "OR", _FALSE)


def not_(predicate: Predicate) -> Predicate:
    """Negate a predicate."""
    return Predicate(f"NOT ({predicate.clause})", predicate.params)