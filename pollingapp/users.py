"""User registration endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from werkzeug.wrappers import Request, Response

from .entities import ConstraintError, User
from .polls import _decode_body, _endpoint, _log, _lookup, _string
from .responses import conflict_error, internal_error, json_response, validation_error
from .store import Store
from .validation import InvalidInput, validate_email, validate_username


@dataclass
class RegisterUserRequest:
    """The body of a registration request."""

    username: str = ""
    email: str = ""

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> RegisterUserRequest:
        return cls(
            username=_string(_lookup(body, "username")),
            email=_string(_lookup(body, "email")),
        )


@dataclass
class UserResponse:
    id: int
    username: str
    email: str
    created_at: datetime


def user_to_response(user: User) -> UserResponse:
    return UserResponse(user.id, user.username, user.email, user.created_at)


def handle_register_user(logger: logging.Logger, store: Store):
    """Register a user with a unique username and e-mail address."""

    def view(request: Request) -> Response:
        _log(logger, logging.INFO, "register user: starting")
        try:
            body = RegisterUserRequest.from_body(_decode_body(request))
        except InvalidInput:
            return validation_error("invalid request body")
        try:
            validate_username(body.username)
            validate_email(body.email)
        except InvalidInput as exc:
            return validation_error(exc.message)

        username = body.username.strip()
        email = body.email.lower().strip()

        try:
            user = store.create_user(username, email)
        except ConstraintError:
            return conflict_error("username or email already exists")
        except Exception as exc:
            _log(logger, logging.ERROR, "failed to create user", error=str(exc))
            return internal_error("failed to create user")

        _log(
            logger,
            logging.INFO,
            "register user: completed",
            user_id=user.id,
            username=user.username,
        )
        return json_response(user_to_response(user), 201)

    return _endpoint(view)