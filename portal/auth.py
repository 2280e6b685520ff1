"""Session store: login, registration and the persisted session pointer."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from .models import ROLE_CLIENT, User, current_timestamp, new_record_id
from .records import RecordStore
from .storage import KeyValueBackend

SESSION_USER_KEY = "current_user"
SESSION_USER_ID_KEY = "current_user_id"

LOGIN_ACTION = "login"

logger = logging.getLogger("kinetic.portal.auth")


class AuthError(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_TAKEN = "email_taken"


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a login or registration attempt.

    Truthy on success so callers that only care about success/failure can
    treat it as a boolean.
    """

    user: Optional[User] = None
    error: Optional[AuthError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.user is not None

    def __bool__(self) -> bool:
        return self.ok


class SessionStore:
    """Track the authenticated user for one client.

    The pointer holds a copy of the user record (without the password), so
    edits made to the stored record by someone else only show up after the
    next login.
    """

    def __init__(
        self,
        records: RecordStore,
        pointer: KeyValueBackend,
        *,
        clock: Callable[[], datetime] = current_timestamp,
    ) -> None:
        self._records = records
        self._pointer = pointer
        self._clock = clock
        self._user: Optional[User] = None
        self._is_loading = True
        self.restore()

    @property
    def current_user(self) -> Optional[User]:
        return self._user

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    def restore(self) -> Optional[User]:
        """Adopt a previously persisted session pointer without re-validating it."""

        self._is_loading = True
        try:
            raw = self._pointer.get(SESSION_USER_KEY)
            if raw is None:
                self._user = None
                return None
            try:
                self._user = User.from_dict(json.loads(raw))
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning("Discarding unreadable session pointer: %s", exc)
                self._clear_pointer()
                self._user = None
            return self._user
        finally:
            self._is_loading = False

    def login(self, email: str, password: str) -> AuthResult:
        with self._records.transaction() as aggregate:
            found = next(
                (u for u in aggregate.users if u.email == email and u.password == password),
                None,
            )
            if found is None:
                logger.info("Rejected login for %s", email)
                return AuthResult(error=AuthError.INVALID_CREDENTIALS)

            now = self._clock()
            updated = replace(found, last_activity=now)
            aggregate.replace_user(updated)
            self._records.append_activity(
                aggregate,
                user_id=updated.id,
                action=LOGIN_ACTION,
                details=f"Login: {email}",
                timestamp=now,
            )

        self._set_pointer(updated)
        logger.info("User %s logged in as %s", updated.id, updated.role)
        return AuthResult(user=updated)

    def register(
        self,
        email: str,
        password: str,
        name: str,
        age: Optional[int] = None,
    ) -> AuthResult:
        with self._records.transaction() as aggregate:
            if aggregate.find_user_by_email(email) is not None:
                return AuthResult(error=AuthError.EMAIL_TAKEN)

            now = self._clock()
            user = User(
                id=new_record_id("user"),
                email=email,
                password=password,
                name=name,
                role=ROLE_CLIENT,
                age=age,
                created_at=now,
                last_activity=now,
                is_active=True,
            )
            aggregate.users = [*aggregate.users, user]

        self._set_pointer(user)
        logger.info("Registered new client %s", user.id)
        return AuthResult(user=user)

    def logout(self) -> None:
        self._clear_pointer()
        self._user = None

    def refresh(self, user: User) -> bool:
        """Rewrite the pointer when ``user`` is the one currently logged in."""

        if self._user is None or self._user.id != user.id:
            return False
        self._set_pointer(user)
        return True

    def _set_pointer(self, user: User) -> None:
        payload = json.dumps(user.to_dict(include_password=False), ensure_ascii=False)
        self._pointer.set(SESSION_USER_KEY, payload)
        self._pointer.set(SESSION_USER_ID_KEY, user.id)
        self._user = User.from_dict(json.loads(payload))

    def _clear_pointer(self) -> None:
        self._pointer.delete(SESSION_USER_KEY)
        self._pointer.delete(SESSION_USER_ID_KEY)


__all__ = [
    "AuthError",
    "AuthResult",
    "LOGIN_ACTION",
    "SESSION_USER_ID_KEY",
    "SESSION_USER_KEY",
    "SessionStore",
]
