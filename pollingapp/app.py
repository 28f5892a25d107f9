"""The WSGI application: routes wrapped in the default middleware chain."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any

from .logctx import new_logger
from .middleware import default_middleware
from .polls import (
    PATH_PARAMS_KEY,
    handle_create_poll,
    handle_delete_poll,
    handle_get_poll,
    handle_health,
    handle_list_polls,
)
from .store import Store
from .users import handle_register_user
from .votes import handle_vote

_READ = frozenset({"GET", "HEAD"})
_ID = r"(?P<id>[^/]+)"

_ROUTES: tuple[tuple[frozenset[str], str, Callable[..., Any]], ...] = (
    (_READ, r"/health", handle_health),
    (_READ, r"/polls", handle_list_polls),
    (_READ, rf"/polls/{_ID}", handle_get_poll),
    (frozenset({"POST"}), r"/polls", handle_create_poll),
    (frozenset({"DELETE"}), rf"/polls/{_ID}", handle_delete_poll),
    (frozenset({"POST"}), rf"/polls/{_ID}/vote", handle_vote),
    (frozenset({"POST"}), r"/users", handle_register_user),
)


def _not_found(start_response: Callable[..., Any]) -> list[bytes]:
    body = b"404 page not found\n"
    start_response(
        "404 Not Found",
        [
            ("Content-Type", "text/plain; charset=utf-8"),
            ("X-Content-Type-Options", "nosniff"),
            ("Content-Length", str(len(body))),
        ],
    )
    return [body]


class PollingApp:
    """Dispatches requests to the poll, vote and user handlers."""

    def __init__(
        self,
        store: Store,
        logger: logging.Logger | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.store = store
        self.logger = logger if logger is not None else new_logger()
        self._routes = [
            (methods, re.compile(pattern), factory(self.logger, store))
            for methods, pattern, factory in _ROUTES
        ]
        self._app = default_middleware(timeout_seconds, self.logger)(self._dispatch)

    def _dispatch(self, environ, start_response):
        path = environ.get("PATH_INFO") or "/"
        method = environ.get("REQUEST_METHOD", "GET").upper()
        for methods, pattern, handler in self._routes:
            match = pattern.fullmatch(path)
            if match is not None and method in methods:
                environ[PATH_PARAMS_KEY] = match.groupdict()
                return handler(environ, start_response)
        return _not_found(start_response)

    def __call__(self, environ, start_response):
        return self._app(environ, start_response)


def create_app(
    store: Store,
    logger: logging.Logger | None = None,
    timeout_seconds: float = 30.0,
) -> PollingApp:
    """Build the application over store."""
    return PollingApp(store, logger, timeout_seconds)