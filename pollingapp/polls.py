"""Health check and poll endpoints, plus helpers shared by the request handlers."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from werkzeug.wrappers import Request, Response

from .entities import NotFoundError, Poll, PollOption
from .predicates import eq
from .responses import (
    MAX_REQUEST_BODY_SIZE,
    ErrorCode,
    error_response,
    internal_error,
    json_response,
    not_found_error,
    validation_error,
)
from .store import Store
from .userqueries import PollQuery, UserQuery
from .validation import InvalidInput, validate_poll_options, validate_poll_title

PATH_PARAMS_KEY = "pollingapp.path_params"

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_ID_RE = re.compile(r"[+-]?[0-9]+")
_INVALID_BODY = "invalid request body"

View = Callable[[Request], Response]


def _endpoint(view: View):
    """Turn a function from Request to Response into a WSGI application."""

    def app(environ, start_response):
        return view(Request(environ))(environ, start_response)

    return app


def _log(logger: logging.Logger, level: int, message: str, **attrs: Any) -> None:
    logger.log(level, message, extra={"attrs": attrs})


def _path_value(request: Request, name: str) -> str:
    return str(request.environ.get(PATH_PARAMS_KEY, {}).get(name, ""))


def _parse_id(text: str, message: str) -> int:
    """Parse a decimal id the strict way, or raise InvalidInput(message)."""
    if _ID_RE.fullmatch(text) is None:
        raise InvalidInput(message)
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise InvalidInput(message)
    return value


def _decode_body(request: Request) -> dict[str, Any]:
    """Read the first JSON value of the body, which must be an object or null."""
    raw = request.stream.read(MAX_REQUEST_BODY_SIZE + 1)
    if len(raw) > MAX_REQUEST_BODY_SIZE:
        raise InvalidInput(_INVALID_BODY)
    text = raw.decode("utf-8", "replace").lstrip(" \t\r\n")
    try:
        value, _ = json.JSONDecoder().raw_decode(text)
    except ValueError as exc:
        raise InvalidInput(_INVALID_BODY) from exc
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidInput(_INVALID_BODY)
    return value


def _lookup(body: dict[str, Any], name: str) -> Any:
    """Return the value under name, matching keys case-insensitively; last wins."""
    found = None
    folded = name.casefold()
    for key, value in body.items():
        if key == name or key.casefold() == folded:
            found = value
    return found


def _integer(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(_INVALID_BODY)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise InvalidInput(_INVALID_BODY)
    return value


def _string(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidInput(_INVALID_BODY)
    return value


def _strings(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidInput(_INVALID_BODY)
    return [_string(item) for item in value]


@dataclass
class CreatePollRequest:
    """The body of a poll-creation request."""

    owner_id: int = 0
    title: str = ""
    options: list[str] = field(default_factory=list)

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> CreatePollRequest:
        return cls(
            owner_id=_integer(_lookup(body, "owner_id")),
            title=_string(_lookup(body, "title")),
            options=_strings(_lookup(body, "options")),
        )


@dataclass
class OptionResponse:
    id: int
    text: str
    vote_count: int


@dataclass
class PollResponse:
    id: int
    title: str
    created_at: datetime
    options: list[OptionResponse]


def _options_to_response(options: Iterable[PollOption]) -> list[OptionResponse]:
    return [OptionResponse(o.id, o.text, len(o.votes)) for o in options]


def poll_to_response(poll: Poll) -> PollResponse:
    """Map a poll with its loaded options (and their votes) to a response body."""
    return PollResponse(
        poll.id, poll.title, poll.created_at, _options_to_response(poll.options)
    )


def _load_poll(store: Store, poll_id: int) -> Poll:
    return PollQuery(store).with_options(with_votes=True).where(eq("id", poll_id)).only()


def handle_health(logger: logging.Logger, store: Store):
    """Report whether the database answers."""

    def view(request: Request) -> Response:
        try:
            store.execute("SELECT 1")
        except Exception as exc:
            _log(
                logger,
                logging.ERROR,
                "health check failed: database unavailable",
                error=str(exc),
            )
            return error_response("database unavailable", ErrorCode.INTERNAL, 503)
        return Response('{"status":"ok"}', status=200, content_type="application/json")

    return _endpoint(view)


def _create_poll_with_options(store: Store, request: CreatePollRequest) -> Poll:
    with store.transaction():
        poll = store.create_poll(request.owner_id, request.title)
        for text in request.options:
            store.create_option(poll.id, text)
    return poll


def handle_create_poll(logger: logging.Logger, store: Store):
    """Create a poll with its options for an existing owner."""

    def view(request: Request) -> Response:
        _log(logger, logging.INFO, "create poll: starting")
        try:
            body = CreatePollRequest.from_body(_decode_body(request))
        except InvalidInput:
            return validation_error(_INVALID_BODY)
        try:
            validate_poll_title(body.title)
            if body.owner_id == 0:
                raise InvalidInput("owner_id is required")
            body.options = validate_poll_options(body.options)
        except InvalidInput as exc:
            return validation_error(exc.message)

        try:
            exists = UserQuery(store).where(eq("id", body.owner_id)).exist()
        except Exception as exc:
            _log(logger, logging.ERROR, "failed to check user existence", error=str(exc))
            return internal_error("failed to create poll")
        if not exists:
            return validation_error("owner not found")

        try:
            created = _create_poll_with_options(store, body)
        except Exception as exc:
            _log(logger, logging.ERROR, "failed to create poll", error=str(exc))
            return internal_error("failed to create poll")

        try:
            poll = _load_poll(store, created.id)
        except Exception as exc:
            _log(logger, logging.ERROR, "failed to reload poll", error=str(exc))
            return internal_error("failed to create poll")

        _log(
            logger,
            logging.INFO,
            "create poll: completed",
            poll_id=poll.id,
            title=poll.title,
            options_count=len(poll.options),
        )
        return json_response(poll_to_response(poll), 201)

    return _endpoint(view)


def _delete_poll_with_relations(store: Store, poll_id: int) -> None:
    with store.transaction():
        store.delete_votes(eq("poll_id", poll_id))
        store.delete_options(eq("poll_id", poll_id))
        store.delete_poll(poll_id)


def handle_delete_poll(logger: logging.Logger, store: Store):
    """Delete a poll together with its options and votes."""

    def view(request: Request) -> Response:
        try:
            poll_id = _parse_id(_path_value(request, "id"), "invalid poll id")
        except InvalidInput as exc:
            return validation_error(exc.message)
        _log(logger, logging.INFO, "delete poll: starting", poll_id=poll_id)

        try:
            exists = PollQuery(store).where(eq("id", poll_id)).exist()
        except Exception as exc:
            _log(logger, logging.ERROR, "failed to check poll", error=str(exc))
            return internal_error("failed to delete poll")
        if not exists:
            return not_found_error("poll not found")

        try:
            _delete_poll_with_relations(store, poll_id)
        except Exception as exc:
            _log(logger, logging.ERROR, "failed to delete poll", error=str(exc))
            return internal_error("failed to delete poll")

        _log(logger, logging.INFO, "delete poll: completed", poll_id=poll_id)
        response = Response(status=204)
        response.headers.pop("Content-Type", None)
        return response

    return _endpoint(view)


def handle_list_polls(logger: logging.Logger, store: Store):
    """List every poll with its options and vote counts."""

    def view(request: Request) -> Response:
        _log(logger, logging.INFO, "list polls: starting")
        try:
            polls = PollQuery(store).with_options(with_votes=True).all()
        except Exception as exc:
            _log(logger, logging.ERROR, "failed to query polls", error=str(exc))
            return internal_error("failed to retrieve polls")
        _log(logger, logging.INFO, "list polls: completed", count=len(polls))
        return json_response([poll_to_response(p) for p in polls])

    return _endpoint(view)


def handle_get_poll(logger: logging.Logger, store: Store):
    """Return one poll with its options and vote counts."""

    def view(request: Request) -> Response:
        try:
            poll_id = _parse_id(_path_value(request, "id"), "invalid poll id")
        except InvalidInput as exc:
            return validation_error(exc.message)
        _log(logger, logging.INFO, "get poll: starting", poll_id=poll_id)

        try:
            poll = _load_poll(store, poll_id)
        except NotFoundError:
            return not_found_error("poll not found")
        except Exception as exc:
            _log(
                logger,
                logging.ERROR,
                "failed to query poll",
                error=str(exc),
                poll_id=poll_id,
            )
            return internal_error("failed to retrieve poll")

        _log(
            logger, logging.INFO, "get poll: completed", poll_id=poll.id, title=poll.title
        )
        return json_response(poll_to_response(poll))

    return _endpoint(view)