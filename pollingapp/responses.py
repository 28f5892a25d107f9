"""JSON responses and the unified error body."""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from werkzeug.wrappers import Response

MAX_REQUEST_BODY_SIZE = 1 << 20


class ErrorCode(str, Enum):
    """Machine-readable codes carried in error bodies."""

    VALIDATION = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INTERNAL = "INTERNAL_ERROR"
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"


@dataclass(frozen=True)
class ErrorResponse:
    """The JSON body of every error response."""

    error: str
    code: ErrorCode | str = ""
    details: str = ""

    def to_dict(self) -> dict[str, str]:
        body = {"error": self.error}
        code = self.code.value if isinstance(self.code, ErrorCode) else self.code
        if code:
            body["code"] = code
        if self.details:
            body["details"] = self.details
        return body


def _format_time(value: datetime) -> str:
    text = value.isoformat()
    if value.utcoffset() == timedelta(0):
        text = text[: -len("+00:00")] + "Z"
    return text


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return _format_time(value)
    if isinstance(value, Enum):
        return value.value
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
    raise TypeError(f"cannot encode {type(value).__name__} as JSON")


def json_response(payload: Any, status: int = 200) -> Response:
    """Encode payload as a JSON response with the given status."""
    body = json.dumps(payload, default=_encode) + "\n"
    return Response(body, status=status, content_type="application/json")


def error_response(message: str, code: ErrorCode | str, status: int) -> Response:
    return json_response(ErrorResponse(message, code).to_dict(), status)


def validation_error(message: str) -> Response:
    return error_response(message, ErrorCode.VALIDATION, 400)


def not_found_error(message: str) -> Response:
    return error_response(message, ErrorCode.NOT_FOUND, 404)


def conflict_error(message: str) -> Response:
    return error_response(message, ErrorCode.CONFLICT, 409)


def internal_error(message: str) -> Response:
    return error_response(message, ErrorCode.INTERNAL, 500)