"""WSGI middleware: request logging, request ids, panic recovery and timeouts."""

from __future__ import annotations

import contextvars
import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from .logctx import bound_context, current_context

WSGIApp = Callable[[dict, Callable[..., Any]], Iterable[bytes]]

REQUEST_ID_KEY = "request_id"
TIMEOUT_MESSAGE = "request took too long"


@dataclass
class _Captured:
    """A fully buffered WSGI response."""

    status: str = "200 OK"
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: list[bytes] = field(default_factory=list)

    @property
    def status_code(self) -> int:
        return int(self.status.split(" ", 1)[0])

    @property
    def size(self) -> int:
        return sum(len(chunk) for chunk in self.body)


def _capture(app: WSGIApp, environ: dict) -> _Captured:
    captured = _Captured()

    def start_response(status, headers, exc_info=None):
        captured.status = status
        captured.headers = list(headers)
        return captured.body.append

    result = app(environ, start_response)
    try:
        for chunk in result:
            captured.body.append(chunk)
    finally:
        close = getattr(result, "close", None)
        if callable(close):
            close()
    return captured


def _replay(captured: _Captured, start_response: Callable[..., Any]) -> list[bytes]:
    start_response(captured.status, captured.headers)
    return captured.body


def _plain(start_response: Callable[..., Any], status: str, text: str) -> list[bytes]:
    body = text.encode("utf-8")
    start_response(
        status,
        [
            ("Content-Type", "text/plain; charset=utf-8"),
            ("Content-Length", str(len(body))),
        ],
    )
    return [body]


def current_request_id() -> str:
    """Return the id of the request being served, or "" outside one."""
    return str(current_context().get(REQUEST_ID_KEY, ""))


def request_logging(logger: logging.Logger, handler: WSGIApp) -> WSGIApp:
    """Log the start and the completion (status, size, duration) of each request."""

    def app(environ, start_response):
        start = time.perf_counter_ns()
        with bound_context(
            method=environ.get("REQUEST_METHOD", "GET"),
            path=environ.get("PATH_INFO") or "/",
        ):
            logger.info("started request")
            captured = _capture(handler, environ)
            logger.info(
                "completed request",
                extra={
                    "attrs": {
                        "status": captured.status_code,
                        "size": captured.size,
                        "duration": time.perf_counter_ns() - start,
                    }
                },
            )
        return _replay(captured, start_response)

    return app


def request_id(handler: WSGIApp) -> WSGIApp:
    """Give each request a fresh id unless one is already bound."""

    def app(environ, start_response):
        if current_request_id():
            return handler(environ, start_response)
        with bound_context(**{REQUEST_ID_KEY: str(uuid.uuid4())}):
            captured = _capture(handler, environ)
        return _replay(captured, start_response)

    return app


def panic_recovery(logger: logging.Logger, handler: WSGIApp) -> WSGIApp:
    """Turn an exception escaping the handler into a logged 500 response."""

    def app(environ, start_response):
        try:
            captured = _capture(handler, environ)
        except Exception as exc:
            logger.error(
                "panic recovered",
                extra={
                    "attrs": {
                        REQUEST_ID_KEY: current_request_id(),
                        "path": environ.get("PATH_INFO") or "/",
                        "panic": str(exc),
                    }
                },
            )
            body = b"Internal Server Error\n"
            start_response(
                "500 Internal Server Error",
                [
                    ("Content-Type", "text/plain; charset=utf-8"),
                    ("X-Content-Type-Options", "nosniff"),
                    ("Content-Length", str(len(body))),
                ],
            )
            return [body]
        return _replay(captured, start_response)

    return app


def timeout(seconds: float, handler: WSGIApp) -> WSGIApp:
    """Answer 503 when the handler takes longer than seconds.

    The handler runs in a worker thread with a copy of the caller's context;
    its response is buffered and only sent if it finishes in time.
    """

    def app(environ, start_response):
        context = contextvars.copy_context()
        outcome: dict[str, Any] = {}
        done = threading.Event()

        def work() -> None:
            try:
                outcome["value"] = context.run(_capture, handler, environ)
            except BaseException as exc:
                outcome["error"] = exc
            finally:
                done.set()

        threading.Thread(target=work, daemon=True).start()
        if not done.wait(max(seconds, 0)):
            return _plain(start_response, "503 Service Unavailable", TIMEOUT_MESSAGE)
        if "error" in outcome:
            raise outcome["error"]
        return _replay(outcome["value"], start_response)

    return app


def default_middleware(
    timeout_seconds: float, logger: logging.Logger
) -> Callable[[WSGIApp], WSGIApp]:
    """Return the standard chain: recovery, request id, logging, then timeout."""

    def wrap(handler: WSGIApp) -> WSGIApp:
        return panic_recovery(
            logger,
            request_id(request_logging(logger, timeout(timeout_seconds, handler))),
        )

    return wrap