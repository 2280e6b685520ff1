"""Persistence of the portal aggregate as a single JSON blob.

Every durable collection (users, chat messages, purchases, applications and
the activity log) lives in one serialized document. Writers replace the whole
document, so a writer that mutates one slice must carry the other slices
through unchanged. :meth:`RecordStore.transaction` is the sanctioned way to
do that; raw :meth:`RecordStore.save` keeps last-writer-wins semantics unless
an expected revision is supplied.
"""
from __future__ import annotations

import hashlib
import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional

from .errors import CorruptPersistedState, IntegrityViolation, StaleAggregateError
from .models import (
    ROLE_DIRECTOR,
    Aggregate,
    User,
    UserActivity,
    current_timestamp,
    new_record_id,
)
from .storage import KeyValueBackend

AGGREGATE_KEY = "fitness_app_data"
SEED_DIRECTOR_ID = "director-1"

logger = logging.getLogger("kinetic.portal.records")


@dataclass(frozen=True)
class DirectorSeed:
    """Credentials of the bootstrap director account created on first run."""

    email: str
    password: str
    name: str


def serialize_aggregate(aggregate: Aggregate) -> str:
    return json.dumps(aggregate.to_dict(), ensure_ascii=False, separators=(",", ":"))


def _digest(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _revision_of(raw: Optional[str]) -> Optional[str]:
    return _digest(raw) if raw is not None else None


def _parse_aggregate(raw: str) -> Aggregate:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CorruptPersistedState(AGGREGATE_KEY, f"invalid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise CorruptPersistedState(AGGREGATE_KEY, "expected a JSON object")
    try:
        aggregate = Aggregate.from_dict(data)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise CorruptPersistedState(AGGREGATE_KEY, f"malformed record: {exc!r}") from exc
    aggregate.revision = _digest(raw)
    return aggregate


def _check_invariants(previous: Optional[Aggregate], updated: Aggregate) -> None:
    seen = set()
    for user in updated.users:
        if user.email in seen:
            raise IntegrityViolation(f"Duplicate email address: {user.email}")
        seen.add(user.email)

    if previous is None:
        return

    remaining = {user.id: user for user in updated.users}
    for user in previous.users:
        if not user.is_director:
            continue
        kept = remaining.get(user.id)
        if kept is None:
            raise IntegrityViolation(f"Director account '{user.id}' cannot be deleted")
        if user.id == SEED_DIRECTOR_ID and not kept.is_director:
            raise IntegrityViolation("The founding director account cannot be demoted")

    history = previous.user_activities
    if updated.user_activities[: len(history)] != history:
        raise IntegrityViolation("The activity log is append-only")


class RecordStore:
    """Load and save the aggregate through an injected key/value backend."""

    def __init__(
        self,
        backend: KeyValueBackend,
        *,
        seed: DirectorSeed,
        key: str = AGGREGATE_KEY,
    ) -> None:
        self._backend = backend
        self._seed = seed
        self._key = key
        self._lock = threading.RLock()

    @property
    def backend(self) -> KeyValueBackend:
        return self._backend

    def load(self) -> Aggregate:
        """Return the persisted aggregate, creating the seed state on first use."""

        with self._lock:
            raw = self._backend.get(self._key)
            if raw is not None:
                return _parse_aggregate(raw)

            aggregate = self._seed_state()
            aggregate.revision = self._write(aggregate)
            logger.info("Initialised portal data with director account %s", self._seed.email)
            return aggregate

    def save(self, aggregate: Aggregate, *, expected_revision: Optional[str] = None) -> str:
        """Replace the persisted aggregate and return the new revision.

        Without ``expected_revision`` the last writer wins. With it, the save
        is rejected if another writer has replaced the blob in the meantime.
        """

        with self._lock:
            raw = self._backend.get(self._key)
            current_revision = _revision_of(raw)
            if expected_revision is not None and expected_revision != current_revision:
                raise StaleAggregateError(expected_revision, current_revision)

            serialized = serialize_aggregate(aggregate)
            previous = _parse_aggregate(raw) if raw is not None else None
            if previous is not None and serialize_aggregate(previous) == serialized:
                # Same content as stored, even if another serializer wrote it.
                aggregate.revision = current_revision
                return current_revision

            _check_invariants(previous, aggregate)
            self._backend.set(self._key, serialized)
            aggregate.revision = _digest(serialized)
            return aggregate.revision

    @contextmanager
    def transaction(self) -> Iterator[Aggregate]:
        """Load, let the caller mutate, then save, holding the store lock.

        Nothing is written if the block raises.
        """

        with self._lock:
            aggregate = self.load()
            yield aggregate
            self.save(aggregate, expected_revision=aggregate.revision)

    def reset(self) -> Aggregate:
        """Discard everything persisted and write a fresh seed state."""

        with self._lock:
            self._backend.delete(self._key)
            logger.warning("Portal data under '%s' was reset to the seed state", self._key)
            return self.load()

    def append_activity(
        self,
        aggregate: Aggregate,
        *,
        user_id: str,
        action: str,
        details: str,
        timestamp: Optional[datetime] = None,
    ) -> UserActivity:
        """Append an activity entry to ``aggregate`` (persisted by the caller's save)."""

        if aggregate.find_user(user_id) is None:
            raise IntegrityViolation(f"Cannot log activity for unknown user '{user_id}'")
        activity = UserActivity(
            id=new_record_id(),
            user_id=user_id,
            action=action,
            details=details,
            timestamp=timestamp or current_timestamp(),
        )
        aggregate.user_activities = [*aggregate.user_activities, activity]
        return activity

    def _seed_state(self) -> Aggregate:
        now = current_timestamp()
        director = User(
            id=SEED_DIRECTOR_ID,
            email=self._seed.email,
            password=self._seed.password,
            name=self._seed.name,
            role=ROLE_DIRECTOR,
            created_at=now,
            last_activity=now,
        )
        return Aggregate(users=[director])

    def _write(self, aggregate: Aggregate) -> str:
        raw = serialize_aggregate(aggregate)
        self._backend.set(self._key, raw)
        return _digest(raw)


__all__ = [
    "AGGREGATE_KEY",
    "DirectorSeed",
    "RecordStore",
    "SEED_DIRECTOR_ID",
    "serialize_aggregate",
]
