"""User management for directors and profile settings for every member."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, List, Optional

from .errors import (
    DirectorProtected,
    EmailTaken,
    InvalidRole,
    PermissionDenied,
    SelfDeletion,
    UserNotFound,
)
from .models import (
    ROLE_ADMIN,
    ROLE_CLIENT,
    ROLES,
    Aggregate,
    User,
    current_timestamp,
    new_record_id,
)
from .records import RecordStore

CREATABLE_ROLES = (ROLE_CLIENT, ROLE_ADMIN)

logger = logging.getLogger("kinetic.portal.directory")


def _require_director(actor: User) -> None:
    if not actor.is_director:
        raise PermissionDenied("Only a director can manage user accounts")


def _require_role(role: str, allowed: Iterable[str]) -> None:
    choices = tuple(allowed)
    if role not in choices:
        raise InvalidRole(role, choices)


def _get(aggregate: Aggregate, user_id: str) -> User:
    user = aggregate.find_user(user_id)
    if user is None:
        raise UserNotFound(user_id)
    return user


class UserDirectory:
    """Operations behind the director dashboard and the profile settings form."""

    def __init__(self, records: RecordStore) -> None:
        self._records = records

    def list_users(self) -> List[User]:
        return list(self._records.load().users)

    def get_user(self, user_id: str) -> Optional[User]:
        return self._records.load().find_user(user_id)

    def search_users(self, term: str) -> List[User]:
        needle = term.strip().lower()
        users = self._records.load().users
        if not needle:
            return list(users)
        return [u for u in users if needle in u.name.lower() or needle in u.email.lower()]

    def create_user(
        self,
        actor: User,
        *,
        email: str,
        password: str,
        name: str,
        role: str = ROLE_CLIENT,
    ) -> User:
        _require_director(actor)
        _require_role(role, CREATABLE_ROLES)
        if not email.strip() or not name.strip() or not password.strip():
            raise ValueError("Email, name and password are all required")

        with self._records.transaction() as aggregate:
            if aggregate.find_user_by_email(email) is not None:
                raise EmailTaken(email)
            now = current_timestamp()
            user = User(
                id=new_record_id("user"),
                email=email,
                password=password,
                name=name,
                role=role,
                created_at=now,
                last_activity=now,
            )
            aggregate.users = [*aggregate.users, user]

        logger.info("Director %s created %s account %s", actor.id, role, user.id)
        return user

    def change_role(self, actor: User, user_id: str, role: str) -> User:
        """Switch a member between client and admin."""

        _require_role(role, CREATABLE_ROLES)
        return self.assign_role(actor, user_id, role)

    def assign_role(self, actor: User, user_id: str, role: str) -> User:
        """Set any role, including trainer, which has no other creation path."""

        _require_director(actor)
        _require_role(role, ROLES)

        with self._records.transaction() as aggregate:
            target = _get(aggregate, user_id)
            if target.is_director and target.role != role:
                raise DirectorProtected("Director accounts cannot be demoted")
            updated = replace(target, role=role)
            aggregate.replace_user(updated)

        logger.info("Director %s set role of %s to %s", actor.id, user_id, role)
        return updated

    def delete_user(self, actor: User, user_id: str) -> None:
        _require_director(actor)
        if user_id == actor.id:
            raise SelfDeletion("You cannot delete your own account")

        with self._records.transaction() as aggregate:
            target = _get(aggregate, user_id)
            if target.is_director:
                raise DirectorProtected("Director accounts cannot be deleted")
            aggregate.users = [u for u in aggregate.users if u.id != user_id]

        logger.info("Director %s deleted user %s", actor.id, user_id)

    def update_profile(self, user_id: str, *, name: str, email: str) -> User:
        """Save the name and email entered in the profile settings form."""

        cleaned_name = name.strip()
        if not cleaned_name:
            raise ValueError("Name must not be empty")
        cleaned_email = email.strip()
        if not cleaned_email:
            raise ValueError("Email must not be empty")

        with self._records.transaction() as aggregate:
            user = _get(aggregate, user_id)
            owner = aggregate.find_user_by_email(cleaned_email)
            if owner is not None and owner.id != user_id:
                raise EmailTaken(cleaned_email)
            updated = replace(user, name=cleaned_name, email=cleaned_email)
            aggregate.replace_user(updated)

        return updated


__all__ = ["CREATABLE_ROLES", "UserDirectory"]
