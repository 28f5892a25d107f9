"""A WSGI polling service with users, polls, options and votes stored in SQLite."""

__version__ = "0.1.0"