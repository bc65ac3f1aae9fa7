"""Summary: Domain model dataclasses for CampusLink messaging.

Importance: Defines the entities shared across the store, projector, and session layers.
Alternatives: Use Pydantic models or ORM classes directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

JOB = "job"
MARKETPLACE = "marketplace"
SCOPE_KINDS = (JOB, MARKETPLACE)

JOB_MESSAGES = "job_messages"
MARKETPLACE_MESSAGES = "marketplace_messages"
MESSAGE_TABLES = (JOB_MESSAGES, MARKETPLACE_MESSAGES)

# Column on each message table that carries the scope id.
SCOPE_COLUMNS = {JOB_MESSAGES: "application_id", MARKETPLACE_MESSAGES: "product_id"}
TABLE_FOR_KIND = {JOB: JOB_MESSAGES, MARKETPLACE: MARKETPLACE_MESSAGES}

STATUS_PENDING = "pending"
STATUS_INQUIRY = "inquiry"
APPLICATION_STATUSES = (STATUS_PENDING, STATUS_INQUIRY, "accepted", "rejected", "withdrawn")


@dataclass(frozen=True)
class User:
    """Summary: Represents a student or employer profile.

    Importance: Supplies counterpart names and sender identities for threads.
    Alternatives: Resolve names from the auth provider on every render.
    """

    display_name: str
    email: str
    role: str = "student"


@dataclass(frozen=True)
class Job:
    """Summary: Represents a job posting owned by an employer.

    Importance: Anchors job applications and provides thread titles.
    Alternatives: Store job titles directly on each application.
    """

    employer_id: int
    title: str
    company: str = ""


@dataclass(frozen=True)
class Product:
    """Summary: Represents a marketplace listing owned by a seller.

    Importance: Anchors marketplace threads and provides thread titles.
    Alternatives: Key marketplace threads on the seller only.
    """

    seller_id: int
    title: str
    price: float = 0.0


@dataclass(frozen=True)
class Scope:
    """Summary: Identifies the anchor a set of messages belongs to.

    Importance: Job threads are keyed by application; marketplace threads by product and counterpart.
    Alternatives: Use a single polymorphic conversation table.
    """

    kind: str
    scope_id: int
    counterpart_id: int | None = None

    def __post_init__(self) -> None:
        if self.kind not in SCOPE_KINDS:
            raise ValueError(f"Unknown scope kind: {self.kind}")
        if self.kind == MARKETPLACE and self.counterpart_id is None:
            raise ValueError("Marketplace scopes require a counterpart")

    @property
    def table(self) -> str:
        return TABLE_FOR_KIND[self.kind]


@dataclass(frozen=True)
class Message:
    """Summary: A single immutable chat entry.

    Importance: Core unit for threads, previews, and unread counts.
    Alternatives: Store messages as JSON arrays on the scope row.
    """

    id: int
    scope_id: int
    scope_kind: str
    sender_id: int
    sender_email: str
    body: str
    created_at: datetime
    receiver_id: int | None = None
    read_at: datetime | None = None


@dataclass(frozen=True)
class ThreadMessage:
    """Summary: A message as seen by one participant.

    Importance: `is_sender` drives alignment instead of the raw sender id.
    Alternatives: Let each UI compare sender ids itself.
    """

    id: int
    sender_id: int
    sender_email: str
    body: str
    created_at: datetime
    is_sender: bool
    read_at: datetime | None = None


@dataclass(frozen=True)
class Conversation:
    """Summary: A derived, non-persisted thread summary.

    Importance: One entry per (scope id, scope kind, counterpart) visible to the user.
    Alternatives: Persist a conversations table and keep it in sync with messages.
    """

    id: str
    scope_id: int
    scope_kind: str
    counterpart_id: int
    counterpart_name: str
    last_message: str
    last_message_time: datetime | None
    unread_count: int
    title: str
    job_or_item_id: int

    @property
    def key(self) -> tuple[int, str, int]:
        return (self.scope_id, self.scope_kind, self.counterpart_id)

    @property
    def scope(self) -> Scope:
        return Scope(kind=self.scope_kind, scope_id=self.scope_id, counterpart_id=self.counterpart_id)


@dataclass(frozen=True)
class UserGroup:
    """Summary: Conversations regrouped by counterpart user.

    Importance: Backs the "by person" mailbox view without extra queries.
    Alternatives: Run a second aggregation query grouped by user.
    """

    user_id: int
    user_name: str
    conversations: list[Conversation]
    unread_count: int
    last_message_time: datetime | None


@dataclass(frozen=True)
class JobApplication:
    """Summary: Relationship between one applicant and one job.

    Importance: Serves as the scope anchor for job message threads.
    Alternatives: Thread job messages directly on (job, applicant) pairs.
    """

    id: int
    job_id: int
    applicant_id: int
    status: str
    cover_letter: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class ChangeEvent:
    """Summary: Notification that a row in a watched table changed.

    Importance: Used only as a refresh trigger, never as the authoritative payload.
    Alternatives: Push full message payloads and splice them into local state.
    """

    table: str
    event_type: str
    row: dict[str, Any] = field(default_factory=dict)

    @property
    def scope_id(self) -> int | None:
        column = SCOPE_COLUMNS.get(self.table)
        if column is None:
            return None
        return self.row.get(column)

    @property
    def scope_kind(self) -> str | None:
        for kind, table in TABLE_FOR_KIND.items():
            if table == self.table:
                return kind
        return None
