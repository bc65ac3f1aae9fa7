"""Summary: View Grouper that re-keys conversations by counterpart user.

Importance: Backs the "by person" mailbox view with no additional I/O.
Alternatives: Run a separate grouped aggregation on the server.
"""

from __future__ import annotations

from datetime import datetime

from campuslink.models import Conversation, UserGroup


def unique_counterparts(conversations: list[Conversation]) -> list[tuple[int, str]]:
    """Return (user id, name) pairs in first-seen order."""

    seen: dict[int, str] = {}
    for conversation in conversations:
        seen.setdefault(conversation.counterpart_id, conversation.counterpart_name)
    return list(seen.items())


def filter_by_user(conversations: list[Conversation], user_id: int | None) -> list[Conversation]:
    if user_id is None:
        return list(conversations)
    return [item for item in conversations if item.counterpart_id == user_id]


def group_by_user(conversations: list[Conversation]) -> list[UserGroup]:
    """Summary: Aggregate conversations per counterpart.

    Importance: Groups with no messages sort last instead of posing as the oldest.
    Alternatives: Treat missing times as the epoch.
    """

    groups: list[UserGroup] = []
    for user_id, user_name in unique_counterparts(conversations):
        members = filter_by_user(conversations, user_id)
        times = [item.last_message_time for item in members if item.last_message_time]
        last: datetime | None = max(times) if times else None
        groups.append(
            UserGroup(
                user_id=user_id,
                user_name=user_name,
                conversations=members,
                unread_count=sum(item.unread_count for item in members),
                last_message_time=last,
            )
        )
    dated = [group for group in groups if group.last_message_time is not None]
    undated = [group for group in groups if group.last_message_time is None]
    dated.sort(key=lambda group: group.last_message_time, reverse=True)
    return dated + undated
