"""Validation for the login and registration forms."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from .errors import ValidationFailure

NAME_MIN_LENGTH = 2
PASSWORD_MIN_LENGTH = 6
AGE_MIN = 3
AGE_MAX = 99


@dataclass(frozen=True)
class Credentials:
    email: str
    password: str


@dataclass(frozen=True)
class Registration:
    email: str
    password: str
    name: str
    age: Optional[int]


def validate_login(email: str, password: str) -> Credentials:
    cleaned_email = email.strip()
    if not cleaned_email or not password.strip():
        raise ValidationFailure(["Enter both email and password."])
    return Credentials(email=cleaned_email, password=password)


def _parse_age(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def validate_registration(
    email: str,
    password: str,
    name: str,
    age: Optional[str],
    *,
    age_required: bool = True,
) -> Registration:
    """Check the registration fields; the JSON API passes ``age_required=False``."""

    credentials = validate_login(email, password)

    errors: List[str] = []
    cleaned_name = name.strip()
    if len(cleaned_name) < NAME_MIN_LENGTH:
        errors.append(f"Name must be at least {NAME_MIN_LENGTH} characters long.")
    parsed_age = _parse_age(age)
    age_given = age is not None and str(age).strip() != ""
    if age_given or age_required:
        if parsed_age is None or not AGE_MIN <= parsed_age <= AGE_MAX:
            errors.append(f"Age must be between {AGE_MIN} and {AGE_MAX}.")
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long.")
    if errors:
        raise ValidationFailure(errors)

    return Registration(
        email=credentials.email,
        password=credentials.password,
        name=cleaned_name,
        age=parsed_age,
    )


__all__ = [
    "AGE_MAX",
    "AGE_MIN",
    "Credentials",
    "NAME_MIN_LENGTH",
    "PASSWORD_MIN_LENGTH",
    "Registration",
    "validate_login",
    "validate_registration",
]
