"""Summary: In-process change feed for message tables.

Importance: Delivers row-change notifications that views use as "re-pull now" triggers.
Alternatives: Use Postgres LISTEN/NOTIFY or Redis pub/sub channels.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable

from campuslink.models import ChangeEvent

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], Awaitable[None]]


@dataclass(eq=False)
class Subscription:
    """Summary: A live registration on the change feed.

    Importance: Pairs every subscribe with exactly one effective unsubscribe.
    Alternatives: Return an opaque handle and a separate remove function.
    """

    feed: "ChangeFeed"
    tables: frozenset[str]
    callback: ChangeCallback
    scope_id: int | None = None
    active: bool = field(default=True)

    def matches(self, event: ChangeEvent) -> bool:
        if event.table not in self.tables:
            return False
        if self.scope_id is None:
            return True
        return event.scope_id == self.scope_id

    def unsubscribe(self) -> bool:
        """Summary: Stop receiving events.

        Importance: Prevents leaked listeners across conversation switches.
        Alternatives: Let the feed prune dead listeners lazily.
        """

        if not self.active:
            return False
        self.active = False
        self.feed._remove(self)
        return True


class ChangeFeed:
    """Summary: Fan-out hub for change events on watched tables.

    Importance: Each delivery runs as its own task, never on the publisher's call stack.
    Alternatives: Call subscribers synchronously inside publish.
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._pending: set[asyncio.Task] = set()

    @property
    def active_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self,
        tables: Iterable[str],
        callback: ChangeCallback,
        scope_id: int | None = None,
    ) -> Subscription:
        """Summary: Register a coroutine callback for changes on tables.

        Importance: Optional scope filtering avoids refetching on unrelated traffic.
        Alternatives: Deliver every event and let subscribers filter.
        """

        subscription = Subscription(
            feed=self, tables=frozenset(tables), callback=callback, scope_id=scope_id
        )
        self._subscriptions.append(subscription)
        logger.debug(
            "Subscribed to %s (scope %s); %s active.",
            sorted(subscription.tables),
            scope_id,
            len(self._subscriptions),
        )
        return subscription

    def publish(self, event: ChangeEvent) -> int:
        """Summary: Schedule delivery of an event to matching subscribers.

        Importance: Must be called from inside the running event loop.
        Alternatives: Queue events and deliver them from a background worker.
        """

        loop = asyncio.get_running_loop()
        delivered = 0
        for subscription in list(self._subscriptions):
            if not subscription.matches(event):
                continue
            task = loop.create_task(self._deliver(subscription, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            delivered += 1
        return delivered

    async def drain(self) -> None:
        """Summary: Wait until every scheduled delivery has finished.

        Importance: Gives tests and shutdown paths a deterministic settle point.
        Alternatives: Sleep for a fixed interval.
        """

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, subscription: Subscription, event: ChangeEvent) -> None:
        if not subscription.active:
            return
        try:
            await subscription.callback(event)
        except Exception:
            logger.exception("Change callback failed for %s event.", event.table)

    def _remove(self, subscription: Subscription) -> None:
        self._subscriptions = [item for item in self._subscriptions if item is not subscription]
        logger.debug("Unsubscribed; %s active.", len(self._subscriptions))
