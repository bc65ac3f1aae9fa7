"""Summary: Unread Badge Feed for navigation chrome.

Importance: Keeps a session-wide unread total in sync with both message tables.
Alternatives: Poll the unread count on a fixed interval.
"""

from __future__ import annotations

import logging
from typing import Callable

from campuslink.auth import SIGNED_IN, AuthSession, AuthUser
from campuslink.feed import Subscription
from campuslink.message_store import MessageStore
from campuslink.models import MESSAGE_TABLES, ChangeEvent
from campuslink.projector import ConversationProjector

logger = logging.getLogger(__name__)


class UnreadBadgeFeed:
    """Summary: Sums unread counts across all conversations for the signed-in user.

    Importance: Re-sums on every change event; campus-scale volume keeps this cheap.
    Alternatives: Maintain a per-user counter incremented by triggers.
    """

    def __init__(
        self,
        store: MessageStore,
        projector: ConversationProjector | None = None,
        cap: int = 9,
    ) -> None:
        self._store = store
        self._projector = projector or ConversationProjector(store)
        self._cap = cap
        self._subscription: Subscription | None = None
        self._recounts = 0
        self.user_id: int | None = None
        self.total = 0

    @property
    def label(self) -> str:
        if self.total <= 0:
            return ""
        if self.total > self._cap:
            return f"{self._cap}+"
        return str(self.total)

    def attach(self, auth: AuthSession) -> Callable[[], None]:
        """Summary: Bind the badge lifetime to the auth session.

        Importance: Subscribes on sign-in and tears down on sign-out.
        Alternatives: Have the navigation view call sign_in/sign_out itself.
        """

        async def on_auth(event: str, user: AuthUser | None) -> None:
            if event == SIGNED_IN and user is not None:
                await self.sign_in(user.id)
            else:
                await self.sign_out()

        return auth.add_listener(on_auth)

    async def sign_in(self, user_id: int) -> int:
        if self.user_id != user_id:
            await self.sign_out()
        self.user_id = user_id
        if self._subscription is None:
            self._subscription = self._store.subscribe_to_changes(MESSAGE_TABLES, self._on_change)
        return await self.recount()

    async def sign_out(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self.user_id = None
        self.total = 0

    async def recount(self) -> int:
        user_id = self.user_id
        if user_id is None:
            return 0
        self._recounts += 1
        request = self._recounts
        conversations = await self._projector.list_conversations(user_id)
        if self._projector.last_error is not None:
            logger.warning("Keeping unread total %s after failed recount.", self.total)
            return self.total
        if self.user_id != user_id or request != self._recounts:
            return self.total
        self.total = sum(conversation.unread_count for conversation in conversations)
        return self.total

    async def recount_for(self, user_id: int) -> int:
        """One-shot total for request/response callers; does not subscribe."""

        self.user_id = user_id
        return await self.recount()

    async def _on_change(self, event: ChangeEvent) -> None:
        await self.recount()
