"""Validation of user-supplied fields for users and polls."""

from __future__ import annotations

import re
from collections.abc import Iterable

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 32
EMAIL_MAX_LENGTH = 254  # RFC 5321
TITLE_MAX_LENGTH = 256
OPTION_MAX_LENGTH = 256
MIN_OPTIONS = 2
MAX_OPTIONS = 20

_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}")


class InvalidInput(ValueError):
    """Raised when a field fails validation; the message is user-facing."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def _encoded(text: str) -> bytes:
    return text.encode("utf-8", "surrogatepass")


def validate_username(username: str) -> str:
    """Return the trimmed username, or raise InvalidInput."""
    username = username.strip()
    if not username:
        raise InvalidInput("username is required")
    size = len(_encoded(username))
    if size < USERNAME_MIN_LENGTH:
        raise InvalidInput("username must be at least 3 characters")
    if size > USERNAME_MAX_LENGTH:
        raise InvalidInput("username must be at most 32 characters")
    if not all(ch.isalpha() or ch.isdecimal() or ch in "_-" for ch in username):
        raise InvalidInput(
            "username can only contain letters, numbers, underscores, and hyphens"
        )
    # The first byte of the encoded name decides, as a code point of its own.
    if not chr(_encoded(username)[0]).isalpha():
        raise InvalidInput("username must start with a letter")
    return username


def validate_email(email: str) -> str:
    """Return the trimmed e-mail address, or raise InvalidInput."""
    email = email.strip()
    if not email:
        raise InvalidInput("email is required")
    if len(_encoded(email)) > EMAIL_MAX_LENGTH:
        raise InvalidInput("email address is too long")
    if _EMAIL_RE.fullmatch(email) is None:
        raise InvalidInput("invalid email format")
    return email


def validate_poll_title(title: str) -> str:
    """Return the trimmed poll title, or raise InvalidInput."""
    title = title.strip()
    if not title:
        raise InvalidInput("title is required")
    if len(_encoded(title)) > TITLE_MAX_LENGTH:
        raise InvalidInput("title must be at most 256 characters")
    return title


def validate_poll_options(options: Iterable[str] | None) -> list[str]:
    """Return the options with surrounding whitespace removed, or raise InvalidInput."""
    items = list(options or [])
    if len(items) < MIN_OPTIONS:
        raise InvalidInput("at least 2 options are required")
    if len(items) > MAX_OPTIONS:
        raise InvalidInput("at most 20 options are allowed")
    cleaned = []
    for option in items:
        option = option.strip()
        if not option:
            raise InvalidInput("option cannot be empty")
        if len(_encoded(option)) > OPTION_MAX_LENGTH:
            raise InvalidInput("option text must be at most 256 characters")
        cleaned.append(option)
    return cleaned