"""Role gating for the portal pages."""

from __future__ import annotations

from enum import Enum
from typing import Collection, Dict, FrozenSet, Optional

from .models import ROLE_ADMIN, ROLE_CLIENT, ROLE_DIRECTOR, ROLE_TRAINER, User


class Access(Enum):
    ALLOW = "allow"
    REDIRECT_TO_LOGIN = "redirect_to_login"
    REDIRECT_TO_DEFAULT_DASHBOARD = "redirect_to_default_dashboard"


DIRECTOR_VIEW = "director"
ADMIN_VIEW = "admin"
CLIENT_VIEW = "client"

# Trainers have no page of their own and fall through to the client view.
VIEW_ROLES: Dict[str, FrozenSet[str]] = {
    DIRECTOR_VIEW: frozenset({ROLE_DIRECTOR}),
    ADMIN_VIEW: frozenset({ROLE_ADMIN, ROLE_DIRECTOR}),
    CLIENT_VIEW: frozenset({ROLE_CLIENT, ROLE_ADMIN, ROLE_DIRECTOR, ROLE_TRAINER}),
}

REVIEWER_ROLES: FrozenSet[str] = VIEW_ROLES[ADMIN_VIEW]


def allowed(role: str, allowed_roles: Collection[str]) -> bool:
    return role in allowed_roles


def check_access(user: Optional[User], required: Collection[str]) -> Access:
    if user is None:
        return Access.REDIRECT_TO_LOGIN
    if not allowed(user.role, required):
        return Access.REDIRECT_TO_DEFAULT_DASHBOARD
    return Access.ALLOW


def dashboard_for(role: str) -> str:
    """Name of the landing view for ``role``."""

    if role == ROLE_DIRECTOR:
        return DIRECTOR_VIEW
    if role == ROLE_ADMIN:
        return ADMIN_VIEW
    return CLIENT_VIEW


__all__ = [
    "ADMIN_VIEW",
    "Access",
    "CLIENT_VIEW",
    "DIRECTOR_VIEW",
    "REVIEWER_ROLES",
    "VIEW_ROLES",
    "allowed",
    "check_access",
    "dashboard_for",
]
