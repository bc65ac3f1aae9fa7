"""Summary: Application factory wiring core services.

Importance: Centralizes dependency creation for CLI and API layers.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass

from campuslink.badge import UnreadBadgeFeed
from campuslink.config import AppConfig
from campuslink.feed import ChangeFeed
from campuslink.inline_thread import InlineThreadWidget, KeyedLocks
from campuslink.message_store import SqliteMessageStore
from campuslink.models import User
from campuslink.projector import ConversationProjector
from campuslink.services import ApplicationService, DirectoryService
from campuslink.session import ConversationSession
from campuslink.storage.sqlite_store import SqliteStore


@dataclass(frozen=True)
class AppContext:
    """Summary: Shared application context for building user services.

    Importance: Reuses storage, the change feed, and single-flight locks across users.
    Alternatives: Rebuild dependencies for every request.
    """

    store: SqliteStore
    feed: ChangeFeed
    messages: SqliteMessageStore
    locks: KeyedLocks
    config: AppConfig

    def services_for_user(self, user_id: int | None) -> "AppServices":
        """Summary: Build user-scoped services from shared context.

        Importance: Keeps per-user caches apart while sharing storage.
        Alternatives: Use one global projector for every user.
        """

        projector = ConversationProjector(self.messages)
        return AppServices(
            directory=DirectoryService(store=self.store),
            applications=ApplicationService(messages=self.messages, user_id=user_id),
            projector=projector,
            messages=self.messages,
            feed=self.feed,
            locks=self.locks,
            badge_cap=self.config.badge_cap,
            user_id=user_id,
        )


@dataclass(frozen=True)
class AppServices:
    """Summary: Bundle of core services for CampusLink.

    Importance: Simplifies passing dependencies to UI or API layers.
    Alternatives: Use a dependency injection container.
    """

    directory: DirectoryService
    applications: ApplicationService
    projector: ConversationProjector
    messages: SqliteMessageStore
    feed: ChangeFeed
    locks: KeyedLocks
    badge_cap: int
    user_id: int | None

    def session(self) -> ConversationSession:
        return ConversationSession(self.user_id, self.messages, self.projector)

    def job_thread(
        self, job_id: int, application_id: int | None = None, live: bool = True
    ) -> InlineThreadWidget:
        return InlineThreadWidget.for_job(
            self.messages,
            self.user_id,
            job_id,
            application_id=application_id,
            projector=self.projector,
            locks=self.locks,
            live=live,
        )

    def product_thread(
        self, product_id: int, seller_id: int, live: bool = True
    ) -> InlineThreadWidget:
        return InlineThreadWidget.for_product(
            self.messages,
            self.user_id,
            product_id,
            seller_id,
            projector=self.projector,
            locks=self.locks,
            live=live,
        )

    def badge(self) -> UnreadBadgeFeed:
        return UnreadBadgeFeed(self.messages, self.projector, cap=self.badge_cap)


def build_context(config: AppConfig) -> AppContext:
    """Summary: Build shared context for user-scoped services.

    Importance: One store and one change feed per process.
    Alternatives: Construct dependencies separately per request.
    """

    store = SqliteStore(config.db_path)
    store.initialize()
    feed = ChangeFeed()
    return AppContext(
        store=store,
        feed=feed,
        messages=SqliteMessageStore(store, feed),
        locks=KeyedLocks(),
        config=config,
    )


def build_services(config: AppConfig) -> AppServices:
    """Summary: Build services for the configured default user.

    Importance: Provides a single construction path for local CLI use.
    Alternatives: Require a user ID on every command.
    """

    context = build_context(config)
    user = User(display_name=config.default_user_name, email=config.default_user_email)
    user_id = context.store.ensure_user(user)
    return context.services_for_user(user_id)
