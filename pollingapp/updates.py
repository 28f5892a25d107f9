"""Update builders for users and votes."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, ClassVar

from .entities import (
    POLLS_TABLE,
    USER_LABEL,
    USERS_TABLE,
    VOTE_COLUMNS,
    VOTE_LABEL,
    VOTES_TABLE,
    ConstraintError,
    EntityValidationError,
    NotFoundError,
    User,
    Vote,
)
from .predicates import Predicate, and_, eq, in_
from .queries import _parse_time
from .store import Store
from .validation import InvalidInput, validate_email, validate_username

USER_COLUMNS = ("id", "username", "email", "created_at")


def _quote(name: str) -> str:
    return f'"{name}"'


class _Update:
    """Shared machinery: predicates and the ids of the rows they match."""

    table: ClassVar[str]
    label: ClassVar[str]
    columns: ClassVar[tuple[str, ...]]

    def __init__(self, store: Store) -> None:
        self._store = store
        self._predicates: list[Predicate] = []

    def _add_predicates(self, predicates: Iterable[Predicate]) -> None:
        predicates = list(predicates)
        for predicate in predicates:
            if not isinstance(predicate, Predicate):
                raise TypeError(f"expected a Predicate, got {type(predicate).__name__}")
        self._predicates.extend(predicates)

    def _matched_ids(self, extra: Iterable[Predicate] = ()) -> list[int]:
        predicates = [*extra, *self._predicates]
        sql = f"SELECT {_quote('id')} FROM {_quote(self.table)}"
        params: tuple[Any, ...] = ()
        if predicates:
            clause, params = and_(*predicates).to_sql()
            sql += f" WHERE {clause}"
        sql += f" ORDER BY {_quote('id')}"
        return [row["id"] for row in self._store.execute(sql, params)]

    def _check_selection(self, fields: Iterable[str]) -> tuple[str, ...]:
        fields = tuple(fields)
        for name in fields:
            if name not in self.columns:
                raise EntityValidationError(name, f'invalid field "{name}" for query')
        chosen = tuple(f for f in fields if f != "id")
        return ("id", *chosen) if fields else self.columns

    def _read_row(self, row_id: int, columns: tuple[str, ...]) -> dict[str, Any]:
        clause, params = eq("id", row_id).to_sql()
        rows = self._store.execute(
            f"SELECT {', '.join(_quote(c) for c in columns)} "
            f"FROM {_quote(self.table)} WHERE {clause}",
            params,
        )
        if not rows:
            raise NotFoundError(self.label)
        return {key: rows[0][key] for key in rows[0].keys()}


class UserUpdate(_Update):
    """Updates every user matched by the predicates."""

    table = USERS_TABLE
    label = USER_LABEL
    columns = USER_COLUMNS

    # edge name -> (table holding the foreign key, foreign-key column)
    _EDGES: ClassVar[dict[str, tuple[str, str]]] = {
        "polls": (POLLS_TABLE, "owner_id"),
        "votes": (VOTES_TABLE, "user_id"),
    }

    def __init__(self, store: Store) -> None:
        super().__init__(store)
        self._fields: dict[str, str] = {}
        self._added: dict[str, list[int]] = {edge: [] for edge in self._EDGES}
        self._removed: dict[str, list[int]] = {edge: [] for edge in self._EDGES}
        self._cleared: set[str] = set()

    def where(self, *predicates: Predicate) -> UserUpdate:
        self._add_predicates(predicates)
        return self

    def set_username(self, value: str) -> UserUpdate:
        self._fields["username"] = value
        return self

    def set_email(self, value: str) -> UserUpdate:
        self._fields["email"] = value
        return self

    def add_poll_ids(self, *ids: int) -> UserUpdate:
        self._added["polls"].extend(ids)
        return self

    def remove_poll_ids(self, *ids: int) -> UserUpdate:
        self._removed["polls"].extend(ids)
        return self

    def clear_polls(self) -> UserUpdate:
        self._cleared.add("polls")
        return self

    def add_vote_ids(self, *ids: int) -> UserUpdate:
        self._added["votes"].extend(ids)
        return self

    def remove_vote_ids(self, *ids: int) -> UserUpdate:
        self._removed["votes"].extend(ids)
        return self

    def clear_votes(self) -> UserUpdate:
        self._cleared.add("votes")
        return self

    def save(self) -> int:
        """Apply the changes; return how many users were matched."""
        self._check()
        with self._store.transaction():
            ids = self._matched_ids()
            if not ids:
                return 0
            self._apply(ids)
        return len(ids)

    def _check(self) -> None:
        validators = {"username": validate_username, "email": validate_email}
        for name, validator in validators.items():
            if name not in self._fields:
                continue
            try:
                validator(self._fields[name])
            except InvalidInput as exc:
                raise EntityValidationError(
                    name, f'validator failed for field "User.{name}": {exc.message}'
                ) from exc

    def _apply(self, ids: list[int]) -> None:
        """Write the pending changes to the users with the given ids."""
        store = self._store
        if self._fields:
            assignments = ", ".join(f"{_quote(name)} = ?" for name in self._fields)
            clause, params = in_("id", ids).to_sql()
            store.execute(
                f"UPDATE {_quote(self.table)} SET {assignments} WHERE {clause}",
                (*self._fields.values(), *params),
            )
        for edge, (table, column) in self._EDGES.items():
            self._clear_edge(edge, table, column, ids)
            self._add_edge(edge, table, column, ids)

    def _clear_edge(self, edge: str, table: str, column: str, ids: list[int]) -> None:
        if edge in self._cleared:
            predicate = in_(column, ids)
        elif self._removed[edge]:
            predicate = and_(in_("id", self._removed[edge]), in_(column, ids))
        else:
            return
        clause, params = predicate.to_sql()
        self._store.execute(
            f"UPDATE {_quote(table)} SET {_quote(column)} = NULL WHERE {clause}", params
        )

    def _add_edge(self, edge: str, table: str, column: str, ids: list[int]) -> None:
        targets = list(dict.fromkeys(self._added[edge]))
        if not targets:
            return
        if len(ids) > 1:
            raise ConstraintError(
                f'cannot connect edge "{edge}" to more than one user: {ids}'
            )
        owner = ids[0]
        clause, params = and_(in_("id", targets)).to_sql()
        free = (
            f"({clause}) AND ({_quote(column)} IS NULL OR {_quote(column)} = ?)"
        )
        rows = self._store.execute(
            f"SELECT COUNT(*) AS n FROM {_quote(table)} WHERE {free}", (*params, owner)
        )
        if rows[0]["n"] < len(targets):
            raise ConstraintError(
                f'one of {targets} is already connected to a different "{column}"'
            )
        self._store.execute(
            f"UPDATE {_quote(table)} SET {_quote(column)} = ? WHERE {free}",
            (owner, *params, owner),
        )


class UserUpdateOne(UserUpdate):
    """Updates a single user and returns it."""

    def __init__(self, store: Store, user_id: int | None) -> None:
        super().__init__(store)
        self._id = user_id
        self._select: tuple[str, ...] = ()

    def select(self, *fields: str) -> UserUpdateOne:
        """Choose the columns of the returned user (all by default)."""
        self._select = fields
        return self

    def save(self) -> User:
        self._check()
        if self._id is None:
            raise EntityValidationError("id", 'missing "User.id" for update')
        columns = self._check_selection(self._select)
        with self._store.transaction():
            if not self._matched_ids((eq("id", self._id),)):
                raise NotFoundError(self.label)
            self._apply([self._id])
            values = self._read_row(self._id, columns)
        extra = {}
        if "created_at" in values:
            extra["created_at"] = _parse_time(values["created_at"])
        return User(
            values["id"], values.get("username", ""), values.get("email", ""), **extra
        )


class VoteUpdate(_Update):
    """Updates the votes matched by the predicates; votes have no mutable fields."""

    table = VOTES_TABLE
    label = VOTE_LABEL
    columns = VOTE_COLUMNS

    def __init__(self, store: Store) -> None:
        super().__init__(store)

    def where(self, *predicates: Predicate) -> VoteUpdate:
        self._add_predicates(predicates)
        return self

    def save(self) -> int:
        """Return how many votes were matched."""
        return len(self._matched_ids())


class VoteUpdateOne(_Update):
    """Updates a single vote and returns it."""

    table = VOTES_TABLE
    label = VOTE_LABEL
    columns = VOTE_COLUMNS

    def __init__(self, store: Store, vote_id: int | None) -> None:
        super().__init__(store)
        self._id = vote_id
        self._select: tuple[str, ...] = ()

    def where(self, *predicates: Predicate) -> VoteUpdateOne:
        self._add_predicates(predicates)
        return self

    def select(self, *fields: str) -> VoteUpdateOne:
        """Choose the columns of the returned vote (all by default)."""
        self._select = fields
        return self

    def save(self) -> Vote:
        if self._id is None:
            raise EntityValidationError("id", 'missing "Vote.id" for update')
        columns = self._check_selection(self._select)
        with self._store.transaction():
            if not self._matched_ids((eq("id", self._id),)):
                raise NotFoundError(self.label)
            values = self._read_row(self._id, columns)
        extra = {}
        if "created_at" in values:
            extra["created_at"] = _parse_time(values["created_at"])
        return Vote(
            values["id"],
            values.get("poll_id", 0),
            values.get("option_id", 0),
            values.get("user_id", 0),
            **extra,
        )