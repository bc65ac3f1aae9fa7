"""Summary: Message Store contract and its SQLite-backed implementation.

Importance: Every messaging component talks to storage through this async contract.
Alternatives: Call the database directly from each view controller.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, TypeVar

from campuslink.errors import MessageStoreError
from campuslink.feed import ChangeCallback, ChangeFeed, Subscription
from campuslink.models import (
    JOB,
    JOB_MESSAGES,
    MARKETPLACE_MESSAGES,
    ChangeEvent,
    Conversation,
    Message,
    Scope,
)
from campuslink.storage.sqlite_store import SqliteStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MessageStore(ABC):
    """Summary: Abstract interface for the hosted message platform.

    Importance: Lets sessions, widgets, and tests swap the backing platform freely.
    Alternatives: Bind the controllers to one vendor SDK.
    """

    @abstractmethod
    async def get_user_conversations(self, user_id: int) -> list[Conversation]:
        """Summary: Aggregate one summary per thread visible to the user.

        Importance: Single entry point for the mailbox list and unread totals.
        Alternatives: Fetch raw messages and aggregate client-side.
        """

    @abstractmethod
    async def get_conversation_messages(self, user_id: int, scope: Scope) -> list[Message]:
        """Summary: Return a thread ordered by creation time.

        Importance: Participation is enforced here, not by callers.
        Alternatives: Return unordered rows and sort in the view.
        """

    @abstractmethod
    async def send_message(self, sender_id: int, scope: Scope, text: str) -> Message:
        """Summary: Append a message to a scope."""

    @abstractmethod
    async def create_job_application(
        self,
        job_id: int,
        applicant_id: int,
        status: str,
        cover_letter: str | None = None,
    ) -> int:
        """Summary: Create an application row and return its ID."""

    @abstractmethod
    async def find_application(self, job_id: int, applicant_id: int) -> int | None:
        """Summary: Return an existing application ID for (job, applicant), if any."""

    @abstractmethod
    async def update_application_status(
        self, application_id: int, status: str, cover_letter: str | None = None
    ) -> bool:
        """Summary: Change an application's status."""

    @abstractmethod
    async def mark_read(self, user_id: int, scope: Scope) -> int:
        """Summary: Mark counterpart messages in a scope as read and return how many."""

    @abstractmethod
    def subscribe_to_changes(
        self,
        tables: Iterable[str],
        callback: ChangeCallback,
        scope_id: int | None = None,
    ) -> Subscription:
        """Summary: Register for change notifications on message tables."""


class SqliteMessageStore(MessageStore):
    """Summary: Message Store backed by SQLite and an in-process change feed.

    Importance: Runs blocking SQLite calls on a worker thread so the loop stays responsive.
    Alternatives: Use aiosqlite or an async Postgres driver.
    """

    def __init__(self, store: SqliteStore, feed: ChangeFeed) -> None:
        self._store = store
        self._feed = feed

    @property
    def feed(self) -> ChangeFeed:
        return self._feed

    async def get_user_conversations(self, user_id: int) -> list[Conversation]:
        return await self._call(self._store.user_conversations, user_id)

    async def get_conversation_messages(self, user_id: int, scope: Scope) -> list[Message]:
        if scope.kind == JOB:
            if not await self._is_participant(user_id, scope.scope_id):
                return []
            return await self._call(self._store.list_job_messages, scope.scope_id)
        return await self._call(
            self._store.list_marketplace_messages, scope.scope_id, user_id, scope.counterpart_id
        )

    async def send_message(self, sender_id: int, scope: Scope, text: str) -> Message:
        if scope.kind == JOB:
            if not await self._is_participant(sender_id, scope.scope_id):
                raise MessageStoreError(
                    f"User {sender_id} cannot post to application {scope.scope_id}"
                )
            message = await self._call(
                self._store.insert_job_message, scope.scope_id, sender_id, text
            )
            row = {"id": message.id, "application_id": scope.scope_id, "sender_id": sender_id}
        else:
            message = await self._call(
                self._store.insert_marketplace_message,
                scope.scope_id,
                sender_id,
                scope.counterpart_id,
                text,
            )
            row = {
                "id": message.id,
                "product_id": scope.scope_id,
                "sender_id": sender_id,
                "receiver_id": scope.counterpart_id,
            }
        logger.info("Stored %s message %s in scope %s.", scope.kind, message.id, scope.scope_id)
        self._feed.publish(ChangeEvent(table=scope.table, event_type="INSERT", row=row))
        return message

    async def create_job_application(
        self,
        job_id: int,
        applicant_id: int,
        status: str,
        cover_letter: str | None = None,
    ) -> int:
        job = await self._call(self._store.get_job, job_id)
        if job is None:
            raise MessageStoreError(f"Job {job_id} does not exist")
        if job.employer_id == applicant_id:
            raise MessageStoreError(f"User {applicant_id} owns job {job_id} and cannot apply")
        application_id = await self._call(
            self._store.create_application, job_id, applicant_id, status, cover_letter
        )
        logger.info(
            "Created %s application %s for job %s by user %s.",
            status,
            application_id,
            job_id,
            applicant_id,
        )
        return application_id

    async def find_application(self, job_id: int, applicant_id: int) -> int | None:
        return await self._call(self._store.find_application, job_id, applicant_id)

    async def update_application_status(
        self, application_id: int, status: str, cover_letter: str | None = None
    ) -> bool:
        return await self._call(
            self._store.update_application, application_id, status, cover_letter
        )

    async def mark_read(self, user_id: int, scope: Scope) -> int:
        if scope.kind == JOB:
            if not await self._is_participant(user_id, scope.scope_id):
                return 0
            ids = await self._call(self._store.mark_job_messages_read, scope.scope_id, user_id)
            row: dict[str, Any] = {"application_id": scope.scope_id, "ids": ids}
        else:
            ids = await self._call(
                self._store.mark_marketplace_messages_read,
                scope.scope_id,
                user_id,
                scope.counterpart_id,
            )
            row = {"product_id": scope.scope_id, "ids": ids}
        if ids:
            self._feed.publish(ChangeEvent(table=scope.table, event_type="UPDATE", row=row))
        return len(ids)

    def subscribe_to_changes(
        self,
        tables: Iterable[str],
        callback: ChangeCallback,
        scope_id: int | None = None,
    ) -> Subscription:
        tables = tuple(tables)
        unknown = set(tables) - {JOB_MESSAGES, MARKETPLACE_MESSAGES}
        if unknown:
            raise ValueError(f"Unknown change tables: {sorted(unknown)}")
        return self._feed.subscribe(tables, callback, scope_id=scope_id)

    async def _is_participant(self, user_id: int, application_id: int) -> bool:
        participants = await self._call(self._store.application_participants, application_id)
        if participants is None or user_id not in participants:
            logger.warning(
                "User %s is not a participant of application %s.", user_id, application_id
            )
            return False
        return True

    async def _call(self, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            raise MessageStoreError(f"{func.__name__} failed: {exc}") from exc
