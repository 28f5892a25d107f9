import io
import json
import threading
import uuid

import pytest
from werkzeug.test import Client
from werkzeug.wrappers import Response

from pollingapp.logctx import bound_context, new_logger
from pollingapp.middleware import (
    TIMEOUT_MESSAGE,
    current_request_id,
    default_middleware,
    panic_recovery,
    request_id,
    request_logging,
    timeout,
)


@pytest.fixture
def log():
    stream = io.StringIO()
    logger = new_logger(stream=stream)

    def records():
        return [json.loads(line) for line in stream.getvalue().splitlines()]

    return logger, records


def _failing(environ, start_response):
    raise RuntimeError("boom")


def _recording(seen):
    def app(environ, start_response):
        seen.append(current_request_id())
        return Response("ok")(environ, start_response)

    return app


def test_request_logging_records_start_and_completion(log):
    logger, records = log
    app = request_logging(logger, Response("hello", status=201))
    response = Client(app).get("/polls")
    assert response.status_code == 201
    assert response.get_data() == b"hello"
    started, completed = records()
    assert started["msg"] == "started request"
    assert started["method"] == "GET"
    assert started["path"] == "/polls"
    assert completed["msg"] == "completed request"
    assert completed["status"] == 201
    assert completed["size"] == len(b"hello")
    assert completed["duration"] >= 0


def test_request_id_is_fresh_uuid_per_request():
    seen = []
    client = Client(request_id(_recording(seen)))
    client.get("/")
    client.get("/")
    assert str(uuid.UUID(seen[0])) == seen[0]
    assert seen[0] != seen[1]
    assert current_request_id() == ""


def test_request_id_keeps_existing():
    seen = []
    with bound_context(request_id="existing-id"):
        Client(request_id(_recording(seen))).get("/")
    assert seen == ["existing-id"]


def test_panic_recovery_returns_500_and_logs(log):
    logger, records = log
    response = Client(panic_recovery(logger, _failing)).get("/crash")
    assert response.status_code == 500
    assert response.get_data() == b"Internal Server Error\n"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    (entry,) = records()
    assert entry["msg"] == "panic recovered"
    assert entry["level"] == "ERROR"
    assert entry["path"] == "/crash"
    assert entry["panic"] == "boom"


def test_panic_recovery_passes_through_success(log):
    logger, records = log
    response = Client(panic_recovery(logger, Response("fine", status=202))).get("/")
    assert response.status_code == 202
    assert response.get_data() == b"fine"
    assert records() == []


def test_timeout_answers_503_for_slow_handler():
    release = threading.Event()

    def slow(environ, start_response):
        release.wait(5)
        return Response("late")(environ, start_response)

    try:
        response = Client(timeout(0.05, slow)).get("/")
    finally:
        release.set()
    assert response.status_code == 503
    assert response.get_data(as_text=True) == TIMEOUT_MESSAGE


def test_timeout_passes_fast_response():
    response = Client(timeout(5, Response("quick", status=200))).get("/")
    assert response.status_code == 200
    assert response.get_data() == b"quick"


def test_timeout_reraises_handler_error():
    with pytest.raises(RuntimeError, match="boom"):
        Client(timeout(5, _failing)).get("/")


def test_default_middleware_binds_request_id_into_logs(log):
    logger, records = log
    seen = []
    app = default_middleware(5, logger)(_recording(seen))
    response = Client(app).get("/health")
    assert response.status_code == 200
    started, completed = records()
    assert started["request_id"] == seen[0]
    assert completed["request_id"] == seen[0]
    assert completed["path"] == "/health"


def test_default_middleware_recovers_from_errors(log):
    logger, records = log
    app = default_middleware(5, logger)(_failing)
    response = Client(app).get("/x")
    assert response.status_code == 500
    messages = [r["msg"] for r in records()]
    assert messages == ["started request", "panic recovered"]