"""Repository package for database access."""

from .sessions import SqliteSessionRepository

__all__ = [
    "SqliteSessionRepository",
]
