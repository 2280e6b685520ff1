from __future__ import annotations

import pytest

from portal.auth import AuthError, SessionStore
from portal.directory import UserDirectory
from portal.errors import (
    DirectorProtected,
    EmailTaken,
    InvalidRole,
    PermissionDenied,
    SelfDeletion,
    UserNotFound,
)
from portal.models import User
from portal.records import SEED_DIRECTOR_ID, DirectorSeed, RecordStore
from portal.storage import MappingBackend

SEED = DirectorSeed(email="director@example.com", password="director-pass", name="Director")


@pytest.fixture()
def records() -> RecordStore:
    return RecordStore(MappingBackend(), seed=SEED)


@pytest.fixture()
def directory(records: RecordStore) -> UserDirectory:
    return UserDirectory(records)


@pytest.fixture()
def director(directory: UserDirectory) -> User:
    user = directory.get_user(SEED_DIRECTOR_ID)
    assert user is not None
    return user


def _register(records: RecordStore, email: str = "kid@example.com", name: str = "Kid") -> User:
    user = SessionStore(records, MappingBackend()).register(email, "secret1", name, 9).user
    assert user is not None
    return user


def test_director_cannot_be_deleted_or_demoted(directory: UserDirectory, director: User) -> None:
    with pytest.raises(SelfDeletion):
        directory.delete_user(director, SEED_DIRECTOR_ID)

    for role in ("client", "admin", "trainer"):
        with pytest.raises(DirectorProtected):
            directory.assign_role(director, SEED_DIRECTOR_ID, role)

    stored = directory.get_user(SEED_DIRECTOR_ID)
    assert stored is not None
    assert stored.role == "director"


def test_second_director_cannot_be_deleted(records: RecordStore, directory: UserDirectory, director: User) -> None:
    other = _register(records, "deputy@example.com", "Deputy")
    directory.assign_role(director, other.id, "director")

    with pytest.raises(DirectorProtected):
        directory.delete_user(director, other.id)


def test_deleted_user_cannot_log_in_but_history_remains(records: RecordStore, directory: UserDirectory) -> None:
    kid = _register(records)
    session = SessionStore(records, MappingBackend())
    assert session.login("kid@example.com", "secret1")
    session.logout()

    director = directory.get_user(SEED_DIRECTOR_ID)
    assert director is not None
    directory.delete_user(director, kid.id)

    assert directory.get_user(kid.id) is None
    result = session.login("kid@example.com", "secret1")
    assert result.error is AuthError.INVALID_CREDENTIALS

    activities = records.load().user_activities
    assert [a.user_id for a in activities] == [kid.id]


def test_delete_unknown_user(directory: UserDirectory, director: User) -> None:
    with pytest.raises(UserNotFound):
        directory.delete_user(director, "user-missing")


def test_only_directors_manage_accounts(records: RecordStore, directory: UserDirectory) -> None:
    kid = _register(records)
    with pytest.raises(PermissionDenied):
        directory.create_user(kid, email="x@example.com", password="secret1", name="X")
    with pytest.raises(PermissionDenied):
        directory.delete_user(kid, SEED_DIRECTOR_ID)
    with pytest.raises(PermissionDenied):
        directory.assign_role(kid, kid.id, "admin")


def test_create_user_checks_role_and_email(directory: UserDirectory, director: User) -> None:
    admin = directory.create_user(
        director, email="coach@example.com", password="secret1", name="Coach", role="admin"
    )
    assert admin.role == "admin"
    assert admin.id.startswith("user-")

    with pytest.raises(EmailTaken):
        directory.create_user(director, email="coach@example.com", password="secret1", name="Again")
    with pytest.raises(InvalidRole):
        directory.create_user(director, email="t@example.com", password="secret1", name="T", role="trainer")
    with pytest.raises(ValueError):
        directory.create_user(director, email="blank@example.com", password="", name="Blank")


def test_change_role_limits_choices_and_assign_role_allows_trainer(
    records: RecordStore, directory: UserDirectory, director: User
) -> None:
    kid = _register(records)

    assert directory.change_role(director, kid.id, "admin").role == "admin"
    with pytest.raises(InvalidRole):
        directory.change_role(director, kid.id, "trainer")

    assert directory.assign_role(director, kid.id, "trainer").role == "trainer"
    with pytest.raises(InvalidRole):
        directory.assign_role(director, kid.id, "owner")


def test_search_matches_name_or_email(records: RecordStore, directory: UserDirectory) -> None:
    _register(records, "ann@example.com", "Ann Rider")
    _register(records, "bob@skate.test", "Bob")

    assert [u.name for u in directory.search_users("rider")] == ["Ann Rider"]
    assert [u.name for u in directory.search_users("SKATE")] == ["Bob"]
    assert len(directory.search_users("  ")) == 3


def test_update_profile_enforces_unique_email(records: RecordStore, directory: UserDirectory) -> None:
    kid = _register(records)

    updated = directory.update_profile(kid.id, name="  New Name ", email="kid@example.com")
    assert updated.name == "New Name"

    with pytest.raises(EmailTaken):
        directory.update_profile(kid.id, name="New Name", email=SEED.email)
    with pytest.raises(ValueError):
        directory.update_profile(kid.id, name=" ", email="kid@example.com")

    stored = directory.get_user(kid.id)
    assert stored is not None
    assert stored.email == "kid@example.com"
    assert stored.password == "secret1"
