"""Domain models for the records kept in the portal aggregate."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

ROLE_CLIENT = "client"
ROLE_ADMIN = "admin"
ROLE_DIRECTOR = "director"
ROLE_TRAINER = "trainer"

ROLES = (ROLE_CLIENT, ROLE_ADMIN, ROLE_DIRECTOR, ROLE_TRAINER)

APPLICATION_PENDING = "pending"
APPLICATION_APPROVED = "approved"
APPLICATION_REJECTED = "rejected"

PURCHASE_STATUSES = ("pending", "completed", "cancelled")


def current_timestamp() -> datetime:
    """Return the current UTC time truncated to millisecond precision."""

    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def serialize_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_datetime(value: str) -> datetime:
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def new_record_id(prefix: Optional[str] = None) -> str:
    token = secrets.token_hex(8)
    return f"{prefix}-{token}" if prefix else token


def _optional_datetime(data: Mapping[str, Any], key: str) -> Optional[datetime]:
    raw = data.get(key)
    return parse_datetime(raw) if raw else None


@dataclass(frozen=True)
class _WireShape:
    """The keys one record type reads and writes, and how to compare them."""

    keys: FrozenSet[str]
    datetime_keys: FrozenSet[str] = frozenset()
    defaults: Mapping[str, Any] = field(default_factory=dict)

    def _same(self, key: str, stored: Any, fresh: Any) -> bool:
        if key not in self.datetime_keys:
            return stored == fresh
        try:
            return parse_datetime(stored) == parse_datetime(fresh)
        except (TypeError, ValueError):
            return False

    def merge(self, source: Mapping[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        """Overlay ``payload`` on the mapping the record was parsed from.

        Unknown keys are carried over unchanged. Known keys keep their stored
        text and position while they still hold the same value, and defaults
        that were absent from the stored record are not added.
        """

        if not source:
            return payload
        merged: Dict[str, Any] = {}
        for key, stored in source.items():
            if key in payload:
                fresh = payload[key]
                merged[key] = stored if self._same(key, stored, fresh) else fresh
            elif key not in self.keys:
                merged[key] = stored
        for key, fresh in payload.items():
            if key in merged:
                continue
            if key in self.defaults and self.defaults[key] == fresh:
                continue
            merged[key] = fresh
        return merged


_USER_SHAPE = _WireShape(
    keys=frozenset({"id", "email", "password", "name", "role", "age", "createdAt", "lastActivity", "isActive"}),
    datetime_keys=frozenset({"createdAt", "lastActivity"}),
    defaults={"password": "", "isActive": True},
)
_ACTIVITY_SHAPE = _WireShape(
    keys=frozenset({"id", "userId", "action", "details", "timestamp"}),
    datetime_keys=frozenset({"timestamp"}),
    defaults={"details": ""},
)
_APPLICATION_SHAPE = _WireShape(
    keys=frozenset(
        {
            "id",
            "userId",
            "userName",
            "userEmail",
            "program",
            "message",
            "status",
            "createdAt",
            "reviewedBy",
            "reviewedAt",
        }
    ),
    datetime_keys=frozenset({"createdAt", "reviewedAt"}),
    defaults={"userName": "", "userEmail": "", "program": "", "message": "", "status": "pending"},
)
_PURCHASE_SHAPE = _WireShape(
    keys=frozenset({"id", "userId", "program", "amount", "date", "status"}),
    datetime_keys=frozenset({"date"}),
    defaults={"program": "", "amount": 0, "status": "pending"},
)
_CHAT_SHAPE = _WireShape(
    keys=frozenset({"id", "userId", "message", "response", "timestamp"}),
    datetime_keys=frozenset({"timestamp"}),
    defaults={"message": "", "response": ""},
)

_SLICE_KEYS = ("users", "chatMessages", "purchases", "applications", "userActivities")


# Every record keeps the mapping it was parsed from in ``source`` so that
# rewriting the aggregate leaves records nobody changed as they were stored.


@dataclass(frozen=True)
class User:
    """A portal account as stored in the ``users`` slice."""

    id: str
    email: str
    password: str
    name: str
    role: str
    created_at: datetime
    last_activity: datetime
    age: Optional[int] = None
    is_active: bool = True
    source: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def is_director(self) -> bool:
        return self.role == ROLE_DIRECTOR

    def to_dict(self, *, include_password: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id, "email": self.email}
        if include_password:
            payload["password"] = self.password
        payload["name"] = self.name
        payload["role"] = self.role
        if self.age is not None:
            payload["age"] = self.age
        payload["createdAt"] = serialize_datetime(self.created_at)
        payload["lastActivity"] = serialize_datetime(self.last_activity)
        payload["isActive"] = self.is_active
        return _USER_SHAPE.merge(self.source, payload)

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "User":
        age = data.get("age")
        return User(
            id=str(data["id"]),
            email=str(data["email"]),
            password=str(data.get("password", "")),
            name=str(data["name"]),
            role=str(data["role"]),
            age=int(age) if age is not None else None,
            created_at=parse_datetime(data["createdAt"]),
            last_activity=parse_datetime(data["lastActivity"]),
            is_active=bool(data.get("isActive", True)),
            source=dict(data),
        )


@dataclass(frozen=True)
class UserActivity:
    """An entry of the append-only activity log."""

    id: str
    user_id: str
    action: str
    details: str
    timestamp: datetime
    source: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "id": self.id,
            "userId": self.user_id,
            "action": self.action,
            "details": self.details,
            "timestamp": serialize_datetime(self.timestamp),
        }
        return _ACTIVITY_SHAPE.merge(self.source, payload)

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "UserActivity":
        return UserActivity(
            id=str(data["id"]),
            user_id=str(data["userId"]),
            action=str(data["action"]),
            details=str(data.get("details", "")),
            timestamp=parse_datetime(data["timestamp"]),
            source=dict(data),
        )


@dataclass(frozen=True)
class Application:
    """A request from a member to join a training programme."""

    id: str
    user_id: str
    user_name: str
    user_email: str
    program: str
    message: str
    status: str
    created_at: datetime
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    source: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "userId": self.user_id,
            "userName": self.user_name,
            "userEmail": self.user_email,
            "program": self.program,
            "message": self.message,
            "status": self.status,
            "createdAt": serialize_datetime(self.created_at),
        }
        if self.reviewed_by is not None:
            payload["reviewedBy"] = self.reviewed_by
        if self.reviewed_at is not None:
            payload["reviewedAt"] = serialize_datetime(self.reviewed_at)
        return _APPLICATION_SHAPE.merge(self.source, payload)

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Application":
        reviewed_by = data.get("reviewedBy")
        return Application(
            id=str(data["id"]),
            user_id=str(data["userId"]),
            user_name=str(data.get("userName", "")),
            user_email=str(data.get("userEmail", "")),
            program=str(data.get("program", "")),
            message=str(data.get("message", "")),
            status=str(data.get("status", APPLICATION_PENDING)),
            created_at=parse_datetime(data["createdAt"]),
            reviewed_by=str(reviewed_by) if reviewed_by is not None else None,
            reviewed_at=_optional_datetime(data, "reviewedAt"),
            source=dict(data),
        )


@dataclass(frozen=True)
class Purchase:
    id: str
    user_id: str
    program: str
    amount: float
    date: datetime
    status: str
    source: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "id": self.id,
            "userId": self.user_id,
            "program": self.program,
            "amount": self.amount,
            "date": serialize_datetime(self.date),
            "status": self.status,
        }
        return _PURCHASE_SHAPE.merge(self.source, payload)

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Purchase":
        amount = data.get("amount", 0)
        return Purchase(
            id=str(data["id"]),
            user_id=str(data["userId"]),
            program=str(data.get("program", "")),
            amount=amount if isinstance(amount, (int, float)) else float(amount),
            date=parse_datetime(data["date"]),
            status=str(data.get("status", "pending")),
            source=dict(data),
        )


@dataclass(frozen=True)
class ChatMessage:
    id: str
    user_id: str
    message: str
    response: str
    timestamp: datetime
    source: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "id": self.id,
            "userId": self.user_id,
            "message": self.message,
            "response": self.response,
            "timestamp": serialize_datetime(self.timestamp),
        }
        return _CHAT_SHAPE.merge(self.source, payload)

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "ChatMessage":
        return ChatMessage(
            id=str(data["id"]),
            user_id=str(data["userId"]),
            message=str(data.get("message", "")),
            response=str(data.get("response", "")),
            timestamp=parse_datetime(data["timestamp"]),
            source=dict(data),
        )


@dataclass
class Aggregate:
    """Every durable collection, persisted together as a single blob.

    ``revision`` identifies the persisted blob the aggregate was read from and
    is used for compare-and-swap saves. It is not part of the serialized form.
    Top-level keys other than the five slices are kept in ``extra``.
    """

    users: List[User] = field(default_factory=list)
    chat_messages: List[ChatMessage] = field(default_factory=list)
    purchases: List[Purchase] = field(default_factory=list)
    applications: List[Application] = field(default_factory=list)
    user_activities: List[UserActivity] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)
    revision: Optional[str] = field(default=None, compare=False)

    def find_user(self, user_id: str) -> Optional[User]:
        for user in self.users:
            if user.id == user_id:
                return user
        return None

    def find_user_by_email(self, email: str) -> Optional[User]:
        for user in self.users:
            if user.email == email:
                return user
        return None

    def replace_user(self, updated: User) -> None:
        self.users = [updated if user.id == updated.id else user for user in self.users]

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "users": [user.to_dict() for user in self.users],
            "chatMessages": [message.to_dict() for message in self.chat_messages],
            "purchases": [purchase.to_dict() for purchase in self.purchases],
            "applications": [application.to_dict() for application in self.applications],
            "userActivities": [activity.to_dict() for activity in self.user_activities],
        }
        for key, value in self.extra.items():
            payload.setdefault(key, value)
        return payload

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Aggregate":
        return Aggregate(
            users=[User.from_dict(item) for item in data.get("users") or []],
            chat_messages=[ChatMessage.from_dict(item) for item in data.get("chatMessages") or []],
            purchases=[Purchase.from_dict(item) for item in data.get("purchases") or []],
            applications=[Application.from_dict(item) for item in data.get("applications") or []],
            user_activities=[UserActivity.from_dict(item) for item in data.get("userActivities") or []],
            extra={key: value for key, value in data.items() if key not in _SLICE_KEYS},
        )


__all__ = [
    "APPLICATION_APPROVED",
    "APPLICATION_PENDING",
    "APPLICATION_REJECTED",
    "Aggregate",
    "Application",
    "ChatMessage",
    "PURCHASE_STATUSES",
    "Purchase",
    "ROLES",
    "ROLE_ADMIN",
    "ROLE_CLIENT",
    "ROLE_DIRECTOR",
    "ROLE_TRAINER",
    "User",
    "UserActivity",
    "current_timestamp",
    "new_record_id",
    "parse_datetime",
    "serialize_datetime",
]
