"""SQLite-backed storage for users, polls, options and votes."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
from os import PathLike
from typing import Any

from .entities import (
    POLL_LABEL,
    VOTE_LABEL,
    ConstraintError,
    EntityValidationError,
    NotFoundError,
    Poll,
    PollOption,
    User,
    Vote,
)
from .predicates import Predicate, and_, eq

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS polls (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id INTEGER NOT NULL REFERENCES users (id),
    title TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS poll_options (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    poll_id INTEGER NOT NULL REFERENCES polls (id),
    text TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS votes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    poll_id INTEGER NOT NULL REFERENCES polls (id),
    option_id INTEGER NOT NULL REFERENCES poll_options (id),
    user_id INTEGER NOT NULL REFERENCES users (id),
    created_at TEXT NOT NULL,
    UNIQUE (poll_id, user_id)
);
"""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse_time(text: str) -> datetime:
    return datetime.fromisoformat(text)


def _where(predicates: tuple[Predicate, ...]) -> tuple[str, tuple[Any, ...]]:
    if not predicates:
        return "", ()
    clause, params = and_(*predicates).to_sql()
    return f" WHERE {clause}", params


class Store:
    """A database connection with the application's schema in place.

    Pass ``":memory:"`` (the default) for a throw-away database.
    """

    def __init__(self, path: str | PathLike[str] = ":memory:") -> None:
        self._lock = threading.RLock()
        self._depth = 0
        self._conn = sqlite3.connect(
            path, check_same_thread=False, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[Store]:
        """Run the block atomically; nested blocks become savepoints."""
        with self._lock:
            if self._depth == 0:
                begin, commit, rollback = "BEGIN", ("COMMIT",), ("ROLLBACK",)
            else:
                name = f"sp_{self._depth}"
                begin = f"SAVEPOINT {name}"
                commit = (f"RELEASE {name}",)
                rollback = (f"ROLLBACK TO {name}", f"RELEASE {name}")
            self._conn.execute(begin)
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                for statement in rollback:
                    self._conn.execute(statement)
                raise
            self._depth -= 1
            for statement in commit:
                self._conn.execute(statement)

    def _run(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                return self._conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError as exc:
                raise ConstraintError(str(exc)) from exc

    def execute(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        """Run a statement and return all rows it produced."""
        with self._lock:
            return self._run(sql, params).fetchall()

    def create_user(self, username: str, email: str) -> User:
        created_at = _now()
        cursor = self._run(
            "INSERT INTO users (username, email, created_at) VALUES (?, ?, ?)",
            (username, email, _timestamp(created_at)),
        )
        return User(cursor.lastrowid, username, email, created_at)

    def create_poll(self, owner_id: int, title: str) -> Poll:
        created_at = _now()
        cursor = self._run(
            "INSERT INTO polls (owner_id, title, created_at) VALUES (?, ?, ?)",
            (owner_id, title, _timestamp(created_at)),
        )
        return Poll(cursor.lastrowid, owner_id, title, created_at)

    def create_option(self, poll_id: int, text: str) -> PollOption:
        cursor = self._run(
            "INSERT INTO poll_options (poll_id, text) VALUES (?, ?)", (poll_id, text)
        )
        return PollOption(cursor.lastrowid, poll_id, text)

    def create_vote(
        self,
        poll_id: int,
        option_id: int,
        user_id: int,
        created_at: datetime | None = None,
    ) -> Vote:
        """Insert a vote; created_at defaults to now."""
        for name, value in (
            ("poll_id", poll_id),
            ("option_id", option_id),
            ("user_id", user_id),
        ):
            if value is None:
                raise EntityValidationError(
                    name, f'missing required field "Vote.{name}"'
                )
        if created_at is None:
            created_at = _now()
        cursor = self._run(
            "INSERT INTO votes (poll_id, option_id, user_id, created_at)"
            " VALUES (?, ?, ?, ?)",
            (poll_id, option_id, user_id, _timestamp(created_at)),
        )
        return Vote(cursor.lastrowid, poll_id, option_id, user_id, created_at)

    def create_votes(self, rows: Iterable[Mapping[str, Any]]) -> list[Vote]:
        """Insert many votes at once; if one fails, none is kept."""
        with self.transaction():
            return [self.create_vote(**row) for row in rows]

    def delete_votes(self, *predicates: Predicate) -> int:
        """Delete the votes matching all predicates; return how many went."""
        clause, params = _where(predicates)
        return self._run(f"DELETE FROM votes{clause}", params).rowcount

    def delete_vote(self, vote_id: int) -> None:
        if self.delete_votes(eq("id", vote_id)) == 0:
            raise NotFoundError(VOTE_LABEL)

    def delete_options(self, *predicates: Predicate) -> int:
        """Delete the poll options matching all predicates; return how many went."""
        clause, params = _where(predicates)
        return self._run(f"DELETE FROM poll_options{clause}", params).rowcount

    def delete_poll(self, poll_id: int) -> None:
        clause, params = _where((eq("id", poll_id),))
        if self._run(f"DELETE FROM polls{clause}", params).rowcount == 0:
            raise NotFoundError(POLL_LABEL)