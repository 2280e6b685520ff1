from __future__ import annotations

import json
from datetime import timedelta

import pytest

from portal.auth import (
    SESSION_USER_ID_KEY,
    SESSION_USER_KEY,
    AuthError,
    SessionStore,
)
from portal.models import current_timestamp
from portal.records import AGGREGATE_KEY, SEED_DIRECTOR_ID, DirectorSeed, RecordStore
from portal.storage import MappingBackend

SEED = DirectorSeed(email="director@example.com", password="director-pass", name="Director")


@pytest.fixture()
def records() -> RecordStore:
    return RecordStore(MappingBackend(), seed=SEED)


@pytest.fixture()
def pointer() -> MappingBackend:
    return MappingBackend()


@pytest.fixture()
def session(records: RecordStore, pointer: MappingBackend) -> SessionStore:
    return SessionStore(records, pointer)


def test_register_then_duplicate_email_is_rejected(session: SessionStore, records: RecordStore) -> None:
    before = len(records.load().users)

    first = session.register("a@x.com", "secret1", "Ann", 10)
    assert first
    assert first.user is not None
    assert first.user.role == "client"
    assert first.user.age == 10
    assert first.user.is_active

    second = session.register("a@x.com", "other", "Bob", 11)
    assert not second
    assert second.error is AuthError.EMAIL_TAKEN

    users = records.load().users
    assert len(users) == before + 1
    assert len({u.email for u in users}) == len(users)


def test_register_sets_session_without_logging_activity(
    session: SessionStore, records: RecordStore, pointer: MappingBackend
) -> None:
    result = session.register("a@x.com", "secret1", "Ann")

    assert session.current_user is not None
    assert session.current_user.id == result.user.id
    assert pointer.get(SESSION_USER_ID_KEY) == result.user.id
    assert records.load().user_activities == []


def test_director_login_updates_activity_and_logs_once(
    session: SessionStore, records: RecordStore
) -> None:
    previous = records.load().find_user(SEED_DIRECTOR_ID)
    assert previous is not None

    result = session.login(SEED.email, SEED.password)

    assert result
    assert session.current_user is not None
    assert session.current_user.role == "director"

    aggregate = records.load()
    director = aggregate.find_user(SEED_DIRECTOR_ID)
    assert director is not None
    assert director.last_activity >= previous.last_activity

    logins = [a for a in aggregate.user_activities if a.action == "login"]
    assert len(logins) == 1
    assert logins[0].user_id == SEED_DIRECTOR_ID
    assert logins[0].timestamp == director.last_activity


def test_login_uses_injected_clock(records: RecordStore, pointer: MappingBackend) -> None:
    later = current_timestamp() + timedelta(days=1)
    session = SessionStore(records, pointer, clock=lambda: later)

    assert session.login(SEED.email, SEED.password)
    director = records.load().find_user(SEED_DIRECTOR_ID)
    assert director is not None
    assert director.last_activity == later


@pytest.mark.parametrize(
    "email, password",
    [
        (SEED.email, "wrong"),
        ("nobody@example.com", SEED.password),
        (SEED.email.upper(), SEED.password),
        ("", ""),
    ],
)
def test_login_failures_are_invalid_credentials(
    session: SessionStore, records: RecordStore, email: str, password: str
) -> None:
    records.load()
    before = records.backend.get(AGGREGATE_KEY)

    result = session.login(email, password)

    assert not result
    assert result.error is AuthError.INVALID_CREDENTIALS
    assert session.current_user is None
    assert records.backend.get(AGGREGATE_KEY) == before


def test_every_registered_user_can_log_in(session: SessionStore) -> None:
    accounts = [("a@x.com", "secret1"), ("b@x.com", "secret2"), ("c@x.com", "secret3")]
    for index, (email, password) in enumerate(accounts):
        assert session.register(email, password, f"Kid {index}", 8 + index)
        session.logout()

    for email, password in accounts:
        assert session.login(email, password)
        assert not session.login(email, password + "x")


def test_logout_clears_pointer_and_is_idempotent(
    session: SessionStore, records: RecordStore, pointer: MappingBackend
) -> None:
    session.login(SEED.email, SEED.password)
    before = records.backend.get(AGGREGATE_KEY)

    session.logout()
    session.logout()

    assert session.current_user is None
    assert pointer.get(SESSION_USER_KEY) is None
    assert pointer.get(SESSION_USER_ID_KEY) is None
    assert records.backend.get(AGGREGATE_KEY) == before


def test_pointer_is_restored_without_revalidation(records: RecordStore, pointer: MappingBackend) -> None:
    first = SessionStore(records, pointer)
    result = first.register("a@x.com", "secret1", "Ann", 9)
    assert result.user is not None

    with records.transaction() as aggregate:
        aggregate.users = [u for u in aggregate.users if u.id != result.user.id]

    restored = SessionStore(records, pointer)
    assert not restored.is_loading
    assert restored.current_user is not None
    assert restored.current_user.id == result.user.id


def test_pointer_is_denormalized_without_password(session: SessionStore, pointer: MappingBackend) -> None:
    session.login(SEED.email, SEED.password)

    payload = json.loads(pointer.get(SESSION_USER_KEY) or "{}")
    assert payload["id"] == SEED_DIRECTOR_ID
    assert payload["name"] == SEED.name
    assert "password" not in payload


def test_unreadable_pointer_is_discarded(records: RecordStore, pointer: MappingBackend) -> None:
    pointer.set(SESSION_USER_KEY, "not json")
    pointer.set(SESSION_USER_ID_KEY, "director-1")

    session = SessionStore(records, pointer)

    assert session.current_user is None
    assert pointer.get(SESSION_USER_ID_KEY) is None


def test_refresh_only_applies_to_session_owner(session: SessionStore, records: RecordStore) -> None:
    session.login(SEED.email, SEED.password)
    other = SessionStore(records, MappingBackend()).register("a@x.com", "secret1", "Ann").user
    assert other is not None

    assert not session.refresh(other)
    assert session.current_user is not None
    assert session.current_user.id == SEED_DIRECTOR_ID
