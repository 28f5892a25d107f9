"""Query builders for users, polls and poll options."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, ClassVar

from .entities import (
    POLL_LABEL,
    POLL_OPTION_LABEL,
    POLL_OPTIONS_TABLE,
    POLLS_TABLE,
    USER_LABEL,
    USERS_TABLE,
    VOTES_TABLE,
    EntityError,
    Poll,
    PollOption,
    User,
    Vote,
)
from .queries import (
    Query,
    _fetch_in,
    _option_from_row,
    _parse_time,
    _poll_from_row,
    _user_from_row,
)
from .store import Store

USER_COLUMNS = ("id", "username", "email", "created_at")
POLL_COLUMNS = ("id", "owner_id", "title", "created_at")
POLL_OPTION_COLUMNS = ("id", "poll_id", "text")


def _vote_from_row(row: Any) -> Vote:
    return Vote(
        row["id"],
        row["poll_id"],
        row["option_id"],
        row["user_id"],
        _parse_time(row["created_at"]),
    )


def _attach(parents: Iterable[Any], children: Iterable[Any], key: str, edge: str) -> None:
    """Give each parent a fresh list under edge and fill it with its children."""
    by_id = {}
    for parent in parents:
        setattr(parent, edge, [])
        by_id[parent.id] = parent
    for child in children:
        foreign_key = getattr(child, key)
        parent = by_id.get(foreign_key)
        if parent is None:
            raise EntityError(
                f'unexpected referenced foreign-key "{key}" returned '
                f"{foreign_key} for node {child.id}"
            )
        getattr(parent, edge).append(child)


def _load_option_votes(store: Store, options: list[PollOption]) -> None:
    votes = _fetch_in(
        store, VOTES_TABLE, "option_id", [o.id for o in options], _vote_from_row
    )
    _attach(options, votes, "option_id", "votes")


class UserQuery(Query):
    """Queries over users, optionally loading their polls and votes."""

    table: ClassVar[str] = USERS_TABLE
    columns: ClassVar[tuple[str, ...]] = USER_COLUMNS
    label: ClassVar[str] = USER_LABEL

    def __init__(self, store: Store) -> None:
        super().__init__(store)
        self._with: set[str] = set()

    def with_polls(self) -> UserQuery:
        self._with.add("polls")
        return self

    def with_votes(self) -> UserQuery:
        self._with.add("votes")
        return self

    def _entity(self, row: Any) -> User:
        return _user_from_row(row)

    def _edge_loaders(self) -> list[Callable[[list[Any]], None]]:
        loaders: list[Callable[[list[Any]], None]] = []
        if "polls" in self._with:
            loaders.append(self._load_polls)
        if "votes" in self._with:
            loaders.append(self._load_votes)
        return loaders

    def _load_polls(self, nodes: list[User]) -> None:
        polls = _fetch_in(
            self._store, POLLS_TABLE, "owner_id", [n.id for n in nodes], _poll_from_row
        )
        _attach(nodes, polls, "owner_id", "polls")

    def _load_votes(self, nodes: list[User]) -> None:
        votes = _fetch_in(
            self._store, VOTES_TABLE, "user_id", [n.id for n in nodes], _vote_from_row
        )
        _attach(nodes, votes, "user_id", "votes")


class PollQuery(Query):
    """Queries over polls, optionally loading their options and those options' votes."""

    table: ClassVar[str] = POLLS_TABLE
    columns: ClassVar[tuple[str, ...]] = POLL_COLUMNS
    label: ClassVar[str] = POLL_LABEL

    def __init__(self, store: Store) -> None:
        super().__init__(store)
        self._with_options = False
        self._with_option_votes = False

    def with_options(self, with_votes: bool = False) -> PollQuery:
        """Load each poll's options; with_votes also loads the votes of each option."""
        self._with_options = True
        self._with_option_votes = with_votes
        return self

    def _entity(self, row: Any) -> Poll:
        return _poll_from_row(row)

    def _edge_loaders(self) -> list[Callable[[list[Any]], None]]:
        return [self._load_options] if self._with_options else []

    def _load_options(self, nodes: list[Poll]) -> None:
        options = _fetch_in(
            self._store,
            POLL_OPTIONS_TABLE,
            "poll_id",
            [n.id for n in nodes],
            _option_from_row,
        )
        _attach(nodes, options, "poll_id", "options")
        if self._with_option_votes and options:
            _load_option_votes(self._store, options)


class PollOptionQuery(Query):
    """Queries over poll options, optionally loading their votes."""

    table: ClassVar[str] = POLL_OPTIONS_TABLE
    columns: ClassVar[tuple[str, ...]] = POLL_OPTION_COLUMNS
    label: ClassVar[str] = POLL_OPTION_LABEL

    def __init__(self, store: Store) -> None:
        super().__init__(store)
        self._with_votes = False

    def with_votes(self) -> PollOptionQuery:
        self._with_votes = True
        return self

    def _entity(self, row: Any) -> PollOption:
        return _option_from_row(row)

    def _edge_loaders(self) -> list[Callable[[list[Any]], None]]:
        if not self._with_votes:
            return []
        return [lambda nodes: _load_option_votes(self._store, nodes)]