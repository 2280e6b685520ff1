"""Applications, purchases and chat history, plus the dashboard summaries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import List

from .access import REVIEWER_ROLES, allowed
from .errors import ApplicationNotFound, PermissionDenied, UserNotFound
from .models import (
    APPLICATION_APPROVED,
    APPLICATION_PENDING,
    APPLICATION_REJECTED,
    PURCHASE_STATUSES,
    ROLE_ADMIN,
    ROLE_CLIENT,
    Application,
    ChatMessage,
    Purchase,
    User,
    UserActivity,
    current_timestamp,
    new_record_id,
)
from .records import RecordStore

REVIEW_DECISIONS = (APPLICATION_APPROVED, APPLICATION_REJECTED)

logger = logging.getLogger("kinetic.portal.enrollment")


@dataclass(frozen=True)
class ClientOverview:
    purchases: List[Purchase]
    applications: List[Application]
    chat_messages: List[ChatMessage]

    @property
    def pending_count(self) -> int:
        return sum(1 for a in self.applications if a.status == APPLICATION_PENDING)


@dataclass(frozen=True)
class AdminOverview:
    pending: List[Application]
    processed: List[Application]
    clients: List[User]


@dataclass(frozen=True)
class ChatEntry:
    """A chat message with the name of its author, or the raw id if they are gone."""

    message: ChatMessage
    user_name: str


@dataclass(frozen=True)
class DirectorOverview:
    users: List[User]
    pending: List[Application]
    applications: List[Application]
    activities: List[UserActivity]
    chat_messages: List[ChatEntry]
    total_revenue: float
    client_count: int
    admin_count: int


@dataclass(frozen=True)
class UserSummary:
    user: User
    application_count: int
    purchase_total: float


class Enrollment:
    """Programme applications and the records hanging off each member."""

    def __init__(self, records: RecordStore) -> None:
        self._records = records

    def submit_application(self, user: User, *, program: str, message: str = "") -> Application:
        program = program.strip()
        if not program:
            raise ValueError("Choose a programme to apply for")

        with self._records.transaction() as aggregate:
            stored = aggregate.find_user(user.id)
            if stored is None:
                raise UserNotFound(user.id)
            application = Application(
                id=new_record_id("app"),
                user_id=stored.id,
                user_name=stored.name,
                user_email=stored.email,
                program=program,
                message=message.strip(),
                status=APPLICATION_PENDING,
                created_at=current_timestamp(),
            )
            aggregate.applications = [*aggregate.applications, application]

        logger.info("User %s applied for %s", user.id, program)
        return application

    def review_application(self, reviewer: User, application_id: str, decision: str) -> Application:
        if not allowed(reviewer.role, REVIEWER_ROLES):
            raise PermissionDenied("Only admins and directors can review applications")
        if decision not in REVIEW_DECISIONS:
            raise ValueError(f"Unknown decision '{decision}'")

        with self._records.transaction() as aggregate:
            current = next((a for a in aggregate.applications if a.id == application_id), None)
            if current is None:
                raise ApplicationNotFound(application_id)
            reviewed = replace(
                current,
                status=decision,
                reviewed_by=reviewer.name,
                reviewed_at=current_timestamp(),
            )
            aggregate.applications = [
                reviewed if a.id == application_id else a for a in aggregate.applications
            ]

        logger.info("%s %s application %s", reviewer.id, decision, application_id)
        return reviewed

    def record_purchase(
        self,
        user_id: str,
        *,
        program: str,
        amount: float,
        status: str = "pending",
    ) -> Purchase:
        if status not in PURCHASE_STATUSES:
            raise ValueError(f"Unknown purchase status '{status}'")
        if amount < 0:
            raise ValueError("Amount must not be negative")

        with self._records.transaction() as aggregate:
            if aggregate.find_user(user_id) is None:
                raise UserNotFound(user_id)
            purchase = Purchase(
                id=new_record_id("purchase"),
                user_id=user_id,
                program=program,
                amount=amount,
                date=current_timestamp(),
                status=status,
            )
            aggregate.purchases = [*aggregate.purchases, purchase]
        return purchase

    def record_chat_message(self, user_id: str, *, message: str, response: str) -> ChatMessage:
        with self._records.transaction() as aggregate:
            if aggregate.find_user(user_id) is None:
                raise UserNotFound(user_id)
            entry = ChatMessage(
                id=new_record_id("chat"),
                user_id=user_id,
                message=message,
                response=response,
                timestamp=current_timestamp(),
            )
            aggregate.chat_messages = [*aggregate.chat_messages, entry]
        return entry

    def client_overview(self, user_id: str) -> ClientOverview:
        aggregate = self._records.load()
        return ClientOverview(
            purchases=[p for p in aggregate.purchases if p.user_id == user_id],
            applications=[a for a in aggregate.applications if a.user_id == user_id],
            chat_messages=[m for m in aggregate.chat_messages if m.user_id == user_id],
        )

    def admin_overview(self) -> AdminOverview:
        aggregate = self._records.load()
        return AdminOverview(
            pending=[a for a in aggregate.applications if a.status == APPLICATION_PENDING],
            processed=[a for a in aggregate.applications if a.status != APPLICATION_PENDING],
            clients=[u for u in aggregate.users if u.role == ROLE_CLIENT],
        )

    def director_overview(self, search: str = "") -> DirectorOverview:
        aggregate = self._records.load()
        needle = search.strip().lower()
        names = {u.id: u.name for u in aggregate.users}
        users = [
            u for u in aggregate.users
            if not needle or needle in u.name.lower() or needle in u.email.lower()
        ]
        return DirectorOverview(
            users=users,
            pending=[a for a in aggregate.applications if a.status == APPLICATION_PENDING],
            applications=list(aggregate.applications),
            activities=list(reversed(aggregate.user_activities)),
            chat_messages=[
                ChatEntry(message=m, user_name=names.get(m.user_id, m.user_id))
                for m in reversed(aggregate.chat_messages)
            ],
            total_revenue=sum(p.amount for p in aggregate.purchases),
            client_count=sum(1 for u in aggregate.users if u.role == ROLE_CLIENT),
            admin_count=sum(1 for u in aggregate.users if u.role == ROLE_ADMIN),
        )

    def user_summary(self, user_id: str) -> UserSummary:
        aggregate = self._records.load()
        user = aggregate.find_user(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return UserSummary(
            user=user,
            application_count=sum(1 for a in aggregate.applications if a.user_id == user_id),
            purchase_total=sum(p.amount for p in aggregate.purchases if p.user_id == user_id),
        )


__all__ = [
    "AdminOverview",
    "ChatEntry",
    "ClientOverview",
    "DirectorOverview",
    "Enrollment",
    "REVIEW_DECISIONS",
    "UserSummary",
]
