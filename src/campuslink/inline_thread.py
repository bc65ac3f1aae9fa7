"""Summary: Inline Thread Widget bound to one job or one marketplace listing.

Importance: Handles the "message before applying" path that lazily creates an inquiry application.
Alternatives: Require a formal application before any job message.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable

from campuslink.errors import (
    ApplicationBootstrapFailed,
    FetchFailed,
    MessageStoreError,
    MessagingError,
    NotAuthenticated,
    Result,
    SendFailed,
)
from campuslink.feed import Subscription
from campuslink.message_store import MessageStore
from campuslink.models import (
    JOB,
    MARKETPLACE,
    STATUS_INQUIRY,
    TABLE_FOR_KIND,
    ChangeEvent,
    Scope,
    ThreadMessage,
)
from campuslink.projector import ConversationProjector

logger = logging.getLogger(__name__)


class KeyedLocks:
    """Summary: Registry of asyncio locks keyed by an arbitrary hashable.

    Importance: Single-flight guard for lazy application creation per (job, user).
    Alternatives: Rely on a unique index and catch the conflict afterwards.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._holders: dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """Summary: Hold the lock for key, dropping it once nobody holds or awaits it.

        Importance: Keeps the registry from growing with every (job, user) ever seen.
        Alternatives: Keep every lock forever or bound the registry with an LRU.
        """

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]


class InlineThreadWidget:
    """Summary: Self-contained thread embedded in a job or listing detail view.

    Importance: The application scope is established at most once per widget lifetime.
    Alternatives: Create the application as soon as the dialog opens.
    """

    def __init__(
        self,
        store: MessageStore,
        user_id: int | None,
        kind: str,
        target_id: int,
        counterpart_id: int | None = None,
        application_id: int | None = None,
        projector: ConversationProjector | None = None,
        locks: KeyedLocks | None = None,
        live: bool = True,
    ) -> None:
        if kind == MARKETPLACE and counterpart_id is None:
            raise ValueError("Marketplace threads need the seller as counterpart")
        self._store = store
        self._projector = projector or ConversationProjector(store)
        self._locks = locks or KeyedLocks()
        self._live = live
        self._subscription: Subscription | None = None
        self._refreshes = 0
        self.user_id = user_id
        self.kind = kind
        self.target_id = target_id
        self.counterpart_id = counterpart_id
        self.application_id = application_id
        self.messages: list[ThreadMessage] = []
        self.error: MessagingError | None = None
        self.draft = ""

    @classmethod
    def for_job(
        cls,
        store: MessageStore,
        user_id: int | None,
        job_id: int,
        application_id: int | None = None,
        **kwargs,
    ) -> "InlineThreadWidget":
        return cls(store, user_id, JOB, job_id, application_id=application_id, **kwargs)

    @classmethod
    def for_product(
        cls,
        store: MessageStore,
        user_id: int | None,
        product_id: int,
        seller_id: int,
        **kwargs,
    ) -> "InlineThreadWidget":
        return cls(store, user_id, MARKETPLACE, product_id, counterpart_id=seller_id, **kwargs)

    @property
    def scope(self) -> Scope | None:
        if self.kind == MARKETPLACE:
            return Scope(kind=MARKETPLACE, scope_id=self.target_id, counterpart_id=self.counterpart_id)
        if self.application_id is None:
            return None
        return Scope(kind=JOB, scope_id=self.application_id, counterpart_id=self.counterpart_id)

    async def open(self) -> Result:
        """Summary: Resolve the scope and load any existing messages.

        Importance: Opening never creates an application; only sending does.
        Alternatives: Bootstrap the application eagerly on open.
        """

        if self.user_id is None:
            return Result.failure(NotAuthenticated("Please sign in to send messages"))
        if self.kind == JOB and self.application_id is None:
            try:
                found = await self._store.find_application(self.target_id, self.user_id)
            except MessageStoreError as exc:
                logger.exception("Failed to look up application for job %s.", self.target_id)
                self.error = FetchFailed(f"Failed to load this conversation: {exc}")
                return Result.failure(self.error)
            if found is not None and self.application_id is None:
                self.application_id = found
        if self.scope is None:
            self.messages = []
            return Result.success([])
        result = await self.refresh()
        self._ensure_subscription()
        return result

    async def refresh(self) -> Result:
        scope = self.scope
        if scope is None or self.user_id is None:
            return Result.success(list(self.messages))
        self._refreshes += 1
        request = self._refreshes
        try:
            messages = await self._projector.list_messages(scope, self.user_id)
        except FetchFailed as exc:
            self.error = exc
            return Result.failure(exc)
        if request != self._refreshes:
            return Result(value=messages, skipped=True)
        self.messages = messages
        return Result.success(messages)

    async def send(self, text: str) -> Result:
        """Summary: Send text, creating an inquiry application first when needed.

        Importance: Failures keep the text for a user-initiated retry; nothing retries automatically.
        Alternatives: Retry transient failures in the background.
        """

        if not text or not text.strip():
            return Result.noop()
        if self.user_id is None:
            return Result.failure(NotAuthenticated("Please sign in to send messages"))
        self.draft = text
        if self.kind == JOB and self.application_id is None:
            try:
                await self._ensure_application()
            except ApplicationBootstrapFailed as exc:
                self.error = exc
                return Result.failure(exc)
        try:
            message = await self._store.send_message(self.user_id, self.scope, text.strip())
        except MessageStoreError as exc:
            logger.exception("Failed to send %s message for %s.", self.kind, self.target_id)
            self.error = SendFailed(f"Failed to send message: {exc}", text=text)
            return Result.failure(self.error)
        self.draft = ""
        self.error = None
        await self.refresh()
        self._ensure_subscription()
        return Result.success(message)

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def _ensure_application(self) -> int:
        async with self._locks.hold((self.target_id, self.user_id)):
            if self.application_id is not None:
                return self.application_id
            try:
                application_id = await self._store.find_application(self.target_id, self.user_id)
                if application_id is None:
                    application_id = await self._store.create_job_application(
                        self.target_id, self.user_id, STATUS_INQUIRY
                    )
            except MessageStoreError as exc:
                logger.exception("Failed to create inquiry for job %s.", self.target_id)
                raise ApplicationBootstrapFailed(
                    f"Failed to send message: {exc}", text=self.draft
                ) from exc
            self.application_id = application_id
            return application_id

    def _ensure_subscription(self) -> None:
        scope = self.scope
        if not self._live or scope is None or self._subscription is not None:
            return
        self._subscription = self._store.subscribe_to_changes(
            (TABLE_FOR_KIND[scope.kind],), self._on_change, scope_id=scope.scope_id
        )

    async def _on_change(self, event: ChangeEvent) -> None:
        if self._subscription is None:
            return
        await self.refresh()
