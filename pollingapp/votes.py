"""Vote submission endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from werkzeug.wrappers import Request, Response

from .entities import ConstraintError
from .polls import (
    _decode_body,
    _endpoint,
    _integer,
    _load_poll,
    _log,
    _lookup,
    _parse_id,
    _path_value,
    poll_to_response,
)
from .predicates import eq
from .responses import (
    conflict_error,
    internal_error,
    json_response,
    not_found_error,
    validation_error,
)
from .store import Store
from .userqueries import PollOptionQuery, PollQuery, UserQuery
from .validation import InvalidInput


@dataclass
class VoteRequest:
    """The body of a vote request."""

    option_id: int = 0
    user_id: int = 0

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> VoteRequest:
        return cls(
            option_id=_integer(_lookup(body, "option_id")),
            user_id=_integer(_lookup(body, "user_id")),
        )


def _create_vote(store: Store, poll_id: int, option_id: int, user_id: int) -> None:
    with store.transaction():
        store.create_vote(poll_id, option_id, user_id)


def handle_vote(logger: logging.Logger, store: Store):
    """Record a user's vote for an option of a poll and return the updated poll."""

    def view(request: Request) -> Response:
        try:
            poll_id = _parse_id(_path_value(request, "id"), "invalid poll id")
        except InvalidInput as exc:
            return validation_error(exc.message)
        _log(logger, logging.INFO, "submit vote: starting", poll_id=poll_id)

        try:
            body = VoteRequest.from_body(_decode_body(request))
        except InvalidInput:
            return validation_error("invalid request body")
        if body.option_id == 0:
            return validation_error("option_id is required")
        if body.user_id == 0:
            return validation_error("user_id is required")

        try:
            poll_exists = PollQuery(store).where(eq("id", poll_id)).exist()
        except Exception as exc:
            _log(logger, logging.ERROR, "failed to check poll", error=str(exc))
            return internal_error("failed to submit vote")
        if not poll_exists:
            return not_found_error("poll not found")

        try:
            option_exists = (
                PollOptionQuery(store)
                .where(eq("id", body.option_id), eq("poll_id", poll_id))
                .exist()
            )
        except Exception as exc:
            _log(logger, logging.ERROR, "failed to check option", error=str(exc))
            return internal_error("failed to submit vote")
        if not option_exists:
            return validation_error("option not found or does not belong to poll")

        try:
            user_exists = UserQuery(store).where(eq("id", body.user_id)).exist()
        except Exception as exc:
            _log(logger, logging.ERROR, "failed to check user", error=str(exc))
            return internal_error("failed to submit vote")
        if not user_exists:
            return validation_error("user not found")

        try:
            _create_vote(store, poll_id, body.option_id, body.user_id)
        except ConstraintError:
            return conflict_error("user has already voted on this poll")
        except Exception as exc:
            _log(logger, logging.ERROR, "failed to create vote", error=str(exc))
            return internal_error("failed to submit vote")

        try:
            poll = _load_poll(store, poll_id)
        except Exception as exc:
            _log(logger, logging.ERROR, "failed to reload poll", error=str(exc))
            return internal_error("failed to submit vote")

        _log(
            logger,
            logging.INFO,
            "submit vote: completed",
            poll_id=poll_id,
            option_id=body.option_id,
            user_id=body.user_id,
        )
        return json_response(poll_to_response(poll))

    return _endpoint(view)