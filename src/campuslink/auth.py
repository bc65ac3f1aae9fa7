"""Summary: Minimal auth session collaborator.

Importance: Exposes the signed-in user and sign-in/sign-out events to messaging components.
Alternatives: Read the current user from a global request context.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

SIGNED_IN = "signed_in"
SIGNED_OUT = "signed_out"

AuthListener = Callable[[str, "AuthUser | None"], Awaitable[None]]


@dataclass(frozen=True)
class AuthUser:
    id: int
    email: str


class AuthSession:
    """Summary: Holds the current user and notifies listeners on changes.

    Importance: Lets the unread badge bind its lifetime to the login session.
    Alternatives: Poll for the current user on a timer.
    """

    def __init__(self) -> None:
        self._user: AuthUser | None = None
        self._listeners: list[AuthListener] = []

    def current_user(self) -> AuthUser | None:
        return self._user

    def add_listener(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def sign_in(self, user: AuthUser) -> None:
        if self._user is not None and self._user != user:
            await self.sign_out()
        self._user = user
        logger.info("User %s signed in.", user.id)
        for listener in list(self._listeners):
            await listener(SIGNED_IN, user)

    async def sign_out(self) -> None:
        if self._user is None:
            return
        logger.info("User %s signed out.", self._user.id)
        self._user = None
        for listener in list(self._listeners):
            await listener(SIGNED_OUT, None)
