"""Summary: Conversation Session controlling one open mailbox.

Importance: Owns the current-conversation pointer, fetch-on-select, send, and realtime refresh.
Alternatives: Keep the current conversation in module-level global state.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from campuslink.errors import (
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
    MARKETPLACE,
    MESSAGE_TABLES,
    ChangeEvent,
    Conversation,
    Scope,
    ThreadMessage,
)
from campuslink.projector import ConversationProjector

logger = logging.getLogger(__name__)

SessionListener = Callable[["ConversationSession"], None]


class SessionState(str, Enum):
    NO_CONVERSATION_SELECTED = "no_conversation_selected"
    LOADING_MESSAGES = "loading_messages"
    CONVERSATION_OPEN = "conversation_open"
    LOAD_ERROR = "load_error"


class ConversationSession:
    """Summary: Stateful controller for one user's mailbox view.

    Importance: The displayed thread is always rebuilt from a fresh ordered fetch.
    Alternatives: Append pushed rows to the local list as they arrive.
    """

    def __init__(
        self,
        user_id: int | None,
        store: MessageStore,
        projector: ConversationProjector | None = None,
    ) -> None:
        self.user_id = user_id
        self._store = store
        self._projector = projector or ConversationProjector(store)
        self.state = SessionState.NO_CONVERSATION_SELECTED
        self.current: Conversation | None = None
        self.messages: list[ThreadMessage] = []
        self.conversations: list[Conversation] = []
        self.error: MessagingError | None = None
        self.draft = ""
        self._thread_subscription: Subscription | None = None
        self._inbox_subscription: Subscription | None = None
        self._listeners: list[SessionListener] = []
        # Monotonic request counters; only the latest response is applied.
        self._list_requests = 0
        self._thread_requests = 0
        self._list_error: FetchFailed | None = None

    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        """Summary: Register a callback run after every state change.

        Importance: Lets a UI layer re-render reactively.
        Alternatives: Have views poll the session attributes.
        """

        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def start(self) -> Result:
        """Summary: Load the conversation list and watch both message tables.

        Importance: Keeps previews and unread counts current while the view is mounted.
        Alternatives: Refresh the list only on manual reload.
        """

        if self.user_id is None:
            return Result.noop()
        result = await self.refresh_conversations()
        if self._inbox_subscription is None:
            self._inbox_subscription = self._store.subscribe_to_changes(
                MESSAGE_TABLES, self._on_inbox_change
            )
        return result

    async def refresh_conversations(self) -> Result:
        self._list_requests += 1
        request = self._list_requests
        conversations = await self._projector.list_conversations(self.user_id)
        if request != self._list_requests:
            return Result(value=conversations, skipped=True)
        self.conversations = conversations
        error = self._projector.last_error
        if error is not None:
            self.error = error
        elif self.error is not None and self.error is self._list_error:
            self.error = None
        self._list_error = error
        self._notify()
        return Result(value=conversations, error=error)

    async def select_conversation(self, conversation: Conversation) -> Result:
        """Summary: Open a conversation and load its messages.

        Importance: A result for a conversation that is no longer selected is discarded.
        Alternatives: Cancel the in-flight task on every switch.
        """

        if self.user_id is None:
            return Result.failure(NotAuthenticated("Please sign in to read messages"))
        self._drop_thread_subscription()
        self.current = conversation
        self.state = SessionState.LOADING_MESSAGES
        self.error = None
        self._notify()
        request = self._next_thread_request()
        try:
            messages = await self._projector.list_messages(conversation.scope, self.user_id)
        except FetchFailed as exc:
            if not self._is_latest(conversation, request):
                return Result.noop()
            self.messages = []
            self.state = SessionState.LOAD_ERROR
            self.error = exc
            self._notify()
            return Result.failure(exc)
        if not self._is_latest(conversation, request):
            logger.debug("Discarding stale messages for %s.", conversation.id)
            return Result.noop()
        self.messages = messages
        self.state = SessionState.CONVERSATION_OPEN
        self._drop_thread_subscription()
        self._thread_subscription = self._store.subscribe_to_changes(
            MESSAGE_TABLES, self._on_thread_change, scope_id=conversation.scope_id
        )
        self._notify()
        await self._mark_read(conversation.scope)
        return Result.success(messages)

    async def retry(self) -> Result:
        if self.current is None:
            return Result.noop()
        return await self.select_conversation(self.current)

    async def send_message(self, text: str) -> Result:
        """Summary: Send text into the current conversation.

        Importance: The list updates from the change feed, never from an optimistic copy.
        Alternatives: Append the message locally before the insert confirms.
        """

        if self.current is None or not text or not text.strip():
            return Result.noop()
        if self.user_id is None:
            return Result.failure(NotAuthenticated("Please sign in to send messages"))
        self.draft = text
        try:
            message = await self._store.send_message(
                self.user_id, self.current.scope, text.strip()
            )
        except MessageStoreError as exc:
            logger.exception("Failed to send message in %s.", self.current.id)
            error = SendFailed(f"Failed to send message: {exc}", text=text)
            self.error = error
            self._notify()
            return Result.failure(error)
        self.draft = ""
        self._notify()
        return Result.success(message)

    async def start_marketplace_conversation(
        self, product_id: int, seller_id: int, text: str
    ) -> Result:
        """Summary: Message a seller about a listing and open the resulting thread.

        Importance: The first message is what creates a marketplace conversation.
        Alternatives: Create an empty conversation row before messaging.
        """

        if self.user_id is None:
            return Result.failure(NotAuthenticated("Please sign in to send messages"))
        if not text or not text.strip():
            return Result.noop()
        scope = Scope(kind=MARKETPLACE, scope_id=product_id, counterpart_id=seller_id)
        self.draft = text
        try:
            await self._store.send_message(self.user_id, scope, text.strip())
        except MessageStoreError as exc:
            logger.exception("Failed to message seller %s about item %s.", seller_id, product_id)
            error = SendFailed(f"Failed to send message: {exc}", text=text)
            self.error = error
            self._notify()
            return Result.failure(error)
        self.draft = ""
        listed = await self.refresh_conversations()
        key = (product_id, MARKETPLACE, seller_id)
        for conversation in listed.value or []:
            if conversation.key == key:
                await self.select_conversation(conversation)
                return Result.success(conversation)
        return Result.success(None)

    def dispose(self) -> None:
        self._drop_thread_subscription()
        if self._inbox_subscription is not None:
            self._inbox_subscription.unsubscribe()
            self._inbox_subscription = None

    async def _on_inbox_change(self, event: ChangeEvent) -> None:
        await self.refresh_conversations()

    async def _on_thread_change(self, event: ChangeEvent) -> None:
        conversation = self.current
        if self.state is not SessionState.CONVERSATION_OPEN or conversation is None:
            return
        if event.scope_kind != conversation.scope_kind or event.scope_id != conversation.scope_id:
            return
        if conversation.scope_kind == MARKETPLACE and "sender_id" in event.row:
            participants = {event.row.get("sender_id"), event.row.get("receiver_id")}
            if conversation.counterpart_id not in participants:
                return
        request = self._next_thread_request()
        try:
            messages = await self._projector.list_messages(conversation.scope, self.user_id)
        except FetchFailed as exc:
            if self._is_latest(conversation, request):
                self.error = exc
                self._notify()
            return
        if self.state is not SessionState.CONVERSATION_OPEN:
            return
        if not self._is_latest(conversation, request):
            return
        self.messages = messages
        self._notify()
        await self._mark_read(conversation.scope)

    async def _mark_read(self, scope: Scope) -> None:
        try:
            await self._store.mark_read(self.user_id, scope)
        except MessageStoreError:
            logger.exception("Failed to mark %s scope %s as read.", scope.kind, scope.scope_id)

    def _is_current(self, conversation: Conversation) -> bool:
        return self.current is not None and self.current.key == conversation.key

    def _next_thread_request(self) -> int:
        self._thread_requests += 1
        return self._thread_requests

    def _is_latest(self, conversation: Conversation, request: int) -> bool:
        return request == self._thread_requests and self._is_current(conversation)

    def _drop_thread_subscription(self) -> None:
        if self._thread_subscription is not None:
            self._thread_subscription.unsubscribe()
            self._thread_subscription = None

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)
