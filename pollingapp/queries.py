"""Query builders that read entities back from a Store."""

from __future__ import annotations

import abc
import copy
from collections.abc import Callable, Iterable
from datetime import datetime
from functools import partial
from typing import Any, ClassVar

from .entities import (
    POLL_OPTIONS_TABLE,
    POLLS_TABLE,
    USERS_TABLE,
    VOTE_COLUMNS,
    VOTE_LABEL,
    VOTES_TABLE,
    EntityValidationError,
    NotFoundError,
    NotSingularError,
    Poll,
    PollOption,
    User,
    Vote,
    VoteEdges,
)
from .predicates import Predicate, and_, in_
from .store import Store

# OFFSET needs a LIMIT; this stands in when only an offset was given.
_MAX_LIMIT = 2**31 - 1


def _quote(name: str) -> str:
    return f'"{name}"'


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _user_from_row(row: Any) -> User:
    return User(row["id"], row["username"], row["email"], _parse_time(row["created_at"]))


def _poll_from_row(row: Any) -> Poll:
    return Poll(row["id"], row["owner_id"], row["title"], _parse_time(row["created_at"]))


def _option_from_row(row: Any) -> PollOption:
    return PollOption(row["id"], row["poll_id"], row["text"])


def _fetch_in(
    store: Store,
    table: str,
    column: str,
    values: Iterable[Any],
    factory: Callable[[Any], Any],
) -> list[Any]:
    """Load the rows of table whose column is among values, ordered by id."""
    items = list(dict.fromkeys(values))
    if not items:
        return []
    clause, params = in_(column, items).to_sql()
    rows = store.execute(
        f"SELECT * FROM {_quote(table)} WHERE {clause} ORDER BY {_quote('id')}", params
    )
    return [factory(row) for row in rows]


class Query(abc.ABC):
    """A chainable query over one table.

    Builder methods return the query itself; the terminal methods
    (all, first, only, ids, count, exist, select, group_by) run it.
    """

    table: ClassVar[str]
    columns: ClassVar[tuple[str, ...]]
    label: ClassVar[str]

    def __init__(self, store: Store) -> None:
        self._store = store
        self._predicates: list[Predicate] = []
        self._order: list[tuple[str, bool]] = []
        self._limit: int | None = None
        self._offset: int | None = None
        self._unique: bool | None = None

    @abc.abstractmethod
    def _entity(self, row: Any) -> Any:
        """Build an entity from a database row."""

    def _edge_loaders(self) -> list[Callable[[list[Any]], None]]:
        """Return the eager loaders requested for this query."""
        return []

    def _check_field(self, name: str) -> None:
        if name not in self.columns:
            raise EntityValidationError(name, f'invalid field "{name}" for query')

    def where(self, *predicates: Predicate) -> Query:
        for predicate in predicates:
            if not isinstance(predicate, Predicate):
                raise TypeError(f"expected a Predicate, got {type(predicate).__name__}")
        self._predicates.extend(predicates)
        return self

    def limit(self, n: int) -> Query:
        self._limit = n
        return self

    def offset(self, n: int) -> Query:
        self._offset = n
        return self

    def unique(self, flag: bool = True) -> Query:
        """Filter out duplicate rows when flag is true."""
        self._unique = flag
        return self

    def order(self, *terms: str) -> Query:
        """Order by columns; a leading "-" sorts that column descending."""
        for term in terms:
            descending = term.startswith("-")
            name = term[1:] if descending else term
            self._check_field(name)
            self._order.append((name, descending))
        return self

    def _statement(self, select_list: str, group: str | None = None) -> tuple[str, tuple[Any, ...]]:
        distinct = "DISTINCT " if self._unique else ""
        sql = f"SELECT {distinct}{select_list} FROM {_quote(self.table)}"
        params: tuple[Any, ...] = ()
        if self._predicates:
            clause, params = and_(*self._predicates).to_sql()
            sql += f" WHERE {clause}"
        if group:
            sql += f" GROUP BY {group}"
        if self._order:
            terms = ", ".join(
                f"{_quote(name)} {'DESC' if descending else 'ASC'}"
                for name, descending in self._order
            )
            sql += f" ORDER BY {terms}"
        if self._limit is not None or self._offset is not None:
            sql += " LIMIT ? OFFSET ?"
            limit = self._limit if self._limit is not None else _MAX_LIMIT
            params += (limit, self._offset or 0)
        return sql, params

    def _rows(self, fields: tuple[str, ...]) -> list[Any]:
        columns = fields or self.columns
        sql, params = self._statement(", ".join(_quote(c) for c in columns))
        return self._store.execute(sql, params)

    def select(self, *fields: str) -> list[dict[str, Any]]:
        """Return the chosen columns (all when none is named) as dicts."""
        for name in fields:
            self._check_field(name)
        return [{key: row[key] for key in row.keys()} for row in self._rows(fields)]

    def all(self) -> list[Any]:
        nodes = [self._entity(row) for row in self._rows(())]
        if nodes:
            for loader in self._edge_loaders():
                loader(nodes)
        return nodes

    def first(self) -> Any:
        nodes = self.clone().limit(1).all()
        if not nodes:
            raise NotFoundError(self.label)
        return nodes[0]

    def first_id(self) -> int:
        ids = self.clone().limit(1).ids()
        if not ids:
            raise NotFoundError(self.label)
        return ids[0]

    def only(self) -> Any:
        """Return the one matching entity; raise if there are none or several."""
        nodes = self.clone().limit(2).all()
        if not nodes:
            raise NotFoundError(self.label)
        if len(nodes) > 1:
            raise NotSingularError(self.label)
        return nodes[0]

    def only_id(self) -> int:
        ids = self.clone().limit(2).ids()
        if not ids:
            raise NotFoundError(self.label)
        if len(ids) > 1:
            raise NotSingularError(self.label)
        return ids[0]

    def ids(self) -> list[int]:
        return [row["id"] for row in self.select("id")]

    def count(self) -> int:
        inner, params = self._statement(_quote("id"))
        rows = self._store.execute(f"SELECT COUNT(*) AS n FROM ({inner})", params)
        return rows[0]["n"]

    def exist(self) -> bool:
        try:
            self.first_id()
        except NotFoundError:
            return False
        return True

    def clone(self) -> Query:
        """Return an independent copy of this query."""
        duplicate = copy.copy(self)
        for key, value in vars(self).items():
            if isinstance(value, (list, set, dict)):
                setattr(duplicate, key, copy.copy(value))
        return duplicate

    def group_by(self, *fields: str) -> list[dict[str, Any]]:
        """Group rows by fields and count each group under the key "count"."""
        if not fields:
            raise TypeError("group_by requires at least one field")
        for name in fields:
            self._check_field(name)
        columns = ", ".join(_quote(name) for name in fields)
        sql, params = self._statement(
            f"{columns}, COUNT(*) AS {_quote('count')}", group=columns
        )
        return [
            {key: row[key] for key in row.keys()}
            for row in self._store.execute(sql, params)
        ]


class VoteQuery(Query):
    """Queries over votes, with optional eager loading of their edges."""

    table = VOTES_TABLE
    columns = VOTE_COLUMNS
    label = VOTE_LABEL

    _EDGES: ClassVar[dict[str, tuple[str, str, Callable[[Any], Any]]]] = {
        "poll": ("poll_id", POLLS_TABLE, _poll_from_row),
        "option": ("option_id", POLL_OPTIONS_TABLE, _option_from_row),
        "user": ("user_id", USERS_TABLE, _user_from_row),
    }

    def __init__(self, store: Store) -> None:
        super().__init__(store)
        self._with: set[str] = set()

    def with_poll(self) -> VoteQuery:
        self._with.add("poll")
        return self

    def with_option(self) -> VoteQuery:
        self._with.add("option")
        return self

    def with_user(self) -> VoteQuery:
        self._with.add("user")
        return self

    def _entity(self, row: Any) -> Vote:
        return Vote(
            row["id"],
            row["poll_id"],
            row["option_id"],
            row["user_id"],
            _parse_time(row["created_at"]),
            VoteEdges(loaded=frozenset(self._with)),
        )

    def _edge_loaders(self) -> list[Callable[[list[Any]], None]]:
        return [partial(self._load, edge) for edge in self._EDGES if edge in self._with]

    def _load(self, edge: str, nodes: list[Vote]) -> None:
        column, table, factory = self._EDGES[edge]
        keys = [getattr(node, column) for node in nodes]
        found = {e.id: e for e in _fetch_in(self._store, table, "id", keys, factory)}
        for node, key in zip(nodes, keys):
            setattr(node.edges, edge, found.get(key))