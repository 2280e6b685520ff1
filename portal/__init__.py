"""Member portal for the Kinetic extreme-sports school."""

from __future__ import annotations

from typing import Any

from .auth import AuthError, AuthResult, SessionStore
from .records import DirectorSeed, RecordStore
from .storage import MappingBackend, SQLiteBackend, resolve_database_path


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the portal web application."""

    from .web import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "AuthError",
    "AuthResult",
    "DirectorSeed",
    "MappingBackend",
    "RecordStore",
    "SQLiteBackend",
    "SessionStore",
    "create_app",
    "resolve_database_path",
]
