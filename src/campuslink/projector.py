"""Summary: Conversation Projector turning store rows into thread summaries.

Importance: Conversations are never stored; they are projected fresh on every fetch.
Alternatives: Cache conversations and patch them from change events.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from campuslink.errors import FetchFailed, MessageStoreError
from campuslink.message_store import MessageStore
from campuslink.models import Conversation, Message, Scope, ThreadMessage

logger = logging.getLogger(__name__)

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def _recency(conversation: Conversation) -> datetime:
    return conversation.last_message_time or _NEVER


def dedupe_conversations(conversations: list[Conversation]) -> list[Conversation]:
    """Summary: Keep one conversation per key, most recent first.

    Importance: Duplicate keys are integrity violations in the aggregation.
    Alternatives: Trust the aggregation and render duplicates.
    """

    ordered = sorted(conversations, key=_recency, reverse=True)
    seen: set[tuple[int, str, int]] = set()
    result: list[Conversation] = []
    for conversation in ordered:
        if conversation.key in seen:
            logger.warning("Dropping duplicate conversation for key %s.", conversation.key)
            continue
        seen.add(conversation.key)
        result.append(conversation)
    return result


def annotate_messages(messages: list[Message], user_id: int) -> list[ThreadMessage]:
    """Summary: Order a thread and flag the viewer's own messages.

    Importance: Sorting is stable, so equal timestamps keep store order.
    Alternatives: Compare sender IDs in every view.
    """

    ordered = sorted(messages, key=lambda message: message.created_at)
    return [
        ThreadMessage(
            id=message.id,
            sender_id=message.sender_id,
            sender_email=message.sender_email,
            body=message.body,
            created_at=message.created_at,
            is_sender=message.sender_id == user_id,
            read_at=message.read_at,
        )
        for message in ordered
    ]


class ConversationProjector:
    """Summary: Read-only projection over the Message Store.

    Importance: Keeps the last good list per user so failures stay non-destructive.
    Alternatives: Clear the list on every failed refresh.
    """

    def __init__(self, store: MessageStore) -> None:
        self._store = store
        self._cache: dict[int, list[Conversation]] = {}
        self.last_error: FetchFailed | None = None

    def cached(self, user_id: int | None) -> list[Conversation]:
        if user_id is None:
            return []
        return list(self._cache.get(user_id, []))

    async def list_conversations(self, user_id: int | None) -> list[Conversation]:
        """Summary: Return the user's conversations, newest thread first.

        Importance: A missing user is a valid steady state and yields an empty list.
        Alternatives: Raise when no session is present.
        """

        if user_id is None:
            return []
        try:
            rows = await self._store.get_user_conversations(user_id)
        except MessageStoreError as exc:
            logger.exception("Failed to fetch conversations for user %s.", user_id)
            self.last_error = FetchFailed(f"Failed to fetch your conversations: {exc}")
            return self.cached(user_id)
        conversations = dedupe_conversations(rows)
        self._cache[user_id] = conversations
        self.last_error = None
        return list(conversations)

    async def list_messages(self, scope: Scope, user_id: int) -> list[ThreadMessage]:
        try:
            messages = await self._store.get_conversation_messages(user_id, scope)
        except MessageStoreError as exc:
            logger.exception("Failed to fetch %s messages for scope %s.", scope.kind, scope.scope_id)
            raise FetchFailed("Failed to fetch messages for this conversation") from exc
        return annotate_messages(messages, user_id)
