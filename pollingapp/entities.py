"""Entity models, their errors and the vote table's schema."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

VOTE_LABEL = "vote"
POLL_LABEL = "poll"
POLL_OPTION_LABEL = "poll_option"
USER_LABEL = "user"

VOTES_TABLE = "votes"
POLLS_TABLE = "polls"
POLL_OPTIONS_TABLE = "poll_options"
USERS_TABLE = "users"

VOTE_COLUMNS = ("id", "poll_id", "option_id", "user_id", "created_at")


def valid_vote_column(column: str) -> bool:
    """Report whether column is one of the vote table's columns."""
    return column in VOTE_COLUMNS


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EntityError(Exception):
    """Base of all errors raised by the entity layer."""


class NotFoundError(EntityError):
    def __init__(self, label: str) -> None:
        super().__init__(f"{label} not found")
        self.label = label


class NotSingularError(EntityError):
    def __init__(self, label: str) -> None:
        super().__init__(f"{label} not singular")
        self.label = label


class NotLoadedError(EntityError):
    def __init__(self, edge: str) -> None:
        super().__init__(f"{edge} edge was not loaded")
        self.edge = edge


class EntityValidationError(EntityError, ValueError):
    def __init__(self, name: str, message: str) -> None:
        super().__init__(message)
        self.name = name


class ConstraintError(EntityError):
    """A database constraint (such as uniqueness) was violated."""


@dataclass
class User:
    id: int
    username: str
    email: str
    created_at: datetime = field(default_factory=_now)
    polls: list[Poll] = field(default_factory=list)
    votes: list[Vote] = field(default_factory=list)


@dataclass
class Poll:
    id: int
    owner_id: int
    title: str
    created_at: datetime = field(default_factory=_now)
    options: list[PollOption] = field(default_factory=list)


@dataclass
class PollOption:
    id: int
    poll_id: int
    text: str
    votes: list[Vote] = field(default_factory=list)


@dataclass
class VoteEdges:
    """Eagerly loaded neighbours of a vote; loaded names the edges requested."""

    poll: Poll | None = None
    option: PollOption | None = None
    user: User | None = None
    loaded: frozenset[str] = frozenset()

    def _get(self, edge: str, value, label: str):
        if value is not None:
            return value
        if edge in self.loaded:
            raise NotFoundError(label)
        raise NotLoadedError(edge)

    def poll_or_err(self) -> Poll:
        return self._get("poll", self.poll, POLL_LABEL)

    def option_or_err(self) -> PollOption:
        return self._get("option", self.option, POLL_OPTION_LABEL)

    def user_or_err(self) -> User:
        return self._get("user", self.user, USER_LABEL)


@dataclass
class Vote:
    id: int
    poll_id: int
    option_id: int
    user_id: int
    created_at: datetime = field(default_factory=_now)
    edges: VoteEdges = field(default_factory=VoteEdges)

    def __str__(self) -> str:
        return (
            f"Vote(id={self.id}, poll_id={self.poll_id}, option_id={self.option_id}, "
            f"user_id={self.user_id}, created_at={self.created_at.ctime()})"
        )