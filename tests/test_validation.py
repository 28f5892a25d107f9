import pytest

from pollingapp.validation import (
    InvalidInput,
    validate_email,
    validate_poll_options,
    validate_poll_title,
    validate_username,
)


@pytest.mark.parametrize(
    "username",
    ["johndoe", "john_doe", "john-doe", "john123"],
)
def test_valid_usernames(username):
    assert validate_username(username) == username


def test_username_is_trimmed():
    assert validate_username("  johndoe  ") == "johndoe"


@pytest.mark.parametrize(
    "username, message",
    [
        ("", "username is required"),
        ("   ", "username is required"),
        ("ab", "username must be at least 3 characters"),
        ("a" * 33, "username must be at most 32 characters"),
        ("1user", "username must start with a letter"),
        ("_user", "username must start with a letter"),
        (
            "user@name",
            "username can only contain letters, numbers, underscores, and hyphens",
        ),
        (
            "user name",
            "username can only contain letters, numbers, underscores, and hyphens",
        ),
    ],
)
def test_invalid_usernames(username, message):
    with pytest.raises(InvalidInput) as exc:
        validate_username(username)
    assert exc.value.message == message
    assert str(exc.value) == message


@pytest.mark.parametrize(
    "email",
    ["test@example.com", "test@mail.example.com", "test+tag@example.com"],
)
def test_valid_emails(email):
    assert validate_email(email) == email


@pytest.mark.parametrize(
    "email, message",
    [
        ("", "email is required"),
        ("   ", "email is required"),
        ("testexample.com", "invalid email format"),
        ("test@", "invalid email format"),
        ("test@example", "invalid email format"),
        ("not-an-email", "invalid email format"),
        ("a" * 250 + "@example.com", "email address is too long"),
    ],
)
def test_invalid_emails(email, message):
    with pytest.raises(InvalidInput) as exc:
        validate_email(email)
    assert exc.value.message == message


def test_valid_poll_title():
    assert validate_poll_title("What's your favorite color?") == "What's your favorite color?"


@pytest.mark.parametrize(
    "title, message",
    [
        ("", "title is required"),
        ("   ", "title is required"),
        ("a" * 257, "title must be at most 256 characters"),
    ],
)
def test_invalid_poll_titles(title, message):
    with pytest.raises(InvalidInput) as exc:
        validate_poll_title(title)
    assert exc.value.message == message


@pytest.mark.parametrize(
    "options",
    [["Option 1", "Option 2"], ["A", "B", "C", "D"]],
)
def test_valid_poll_options(options):
    assert validate_poll_options(list(options)) == options


def test_poll_options_are_trimmed():
    assert validate_poll_options([" A ", "B  "]) == ["A", "B"]


@pytest.mark.parametrize(
    "options, message",
    [
        (["Only One"], "at least 2 options are required"),
        ([], "at least 2 options are required"),
        (None, "at least 2 options are required"),
        ([""] * 21, "at most 20 options are allowed"),
        (["Option 1", ""], "option cannot be empty"),
        (["Option 1", "   "], "option cannot be empty"),
        (["Option 1", "a" * 257], "option text must be at most 256 characters"),
    ],
)
def test_invalid_poll_options(options, message):
    with pytest.raises(InvalidInput) as exc:
        validate_poll_options(options)
    assert exc.value.message == message