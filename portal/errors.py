"""Exception types shared by the record store, session store and dashboards."""

from __future__ import annotations

from typing import Iterable, List


class PortalError(Exception):
    """Base class for errors raised by the portal core."""


class CorruptPersistedState(PortalError):
    """Raised when the persisted aggregate cannot be parsed."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        super().__init__(
            f"Persisted data under '{key}' is unreadable ({reason}). "
            "Run `python main.py reset-data` to reseed the store."
        )


class StaleAggregateError(PortalError):
    """Raised when a save is based on a revision that is no longer current."""

    def __init__(self, expected: str, actual: str | None) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__("The aggregate was modified since it was loaded")


class IntegrityViolation(PortalError):
    """Raised when a save would break one of the aggregate invariants."""


class ValidationFailure(ValueError):
    """Raised by form validators before a request reaches the session store."""

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors: List[str] = list(errors)
        super().__init__(" ".join(self.errors))


class DirectoryError(ValueError):
    """Base class for rejected user/application management actions."""


class UserNotFound(DirectoryError):
    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"User '{user_id}' not found")


class ApplicationNotFound(DirectoryError):
    def __init__(self, application_id: str) -> None:
        self.application_id = application_id
        super().__init__(f"Application '{application_id}' not found")


class EmailTaken(DirectoryError):
    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__("A user with that email already exists")


class PermissionDenied(DirectoryError):
    """The acting user's role does not allow the action."""


class DirectorProtected(DirectoryError):
    """Director accounts cannot be deleted or demoted."""


class SelfDeletion(DirectoryError):
    """Users cannot delete their own account."""


class InvalidRole(DirectoryError):
    def __init__(self, role: str, allowed: Iterable[str]) -> None:
        self.role = role
        super().__init__(f"Role '{role}' is not allowed here (expected one of: {', '.join(allowed)})")


__all__ = [
    "ApplicationNotFound",
    "CorruptPersistedState",
    "DirectorProtected",
    "DirectoryError",
    "EmailTaken",
    "IntegrityViolation",
    "InvalidRole",
    "PermissionDenied",
    "PortalError",
    "SelfDeletion",
    "StaleAggregateError",
    "UserNotFound",
    "ValidationFailure",
]
