"""Summary: Tests for the conversation projector.

Importance: The mailbox list and thread ordering are derived here on every fetch.
Alternatives: Assert on raw store rows only.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from campuslink.errors import FetchFailed
from campuslink.models import JOB, MARKETPLACE, STATUS_INQUIRY, Conversation, Message, Scope
from campuslink.projector import ConversationProjector, annotate_messages, dedupe_conversations

BASE = datetime(2026, 4, 1, 12, 0, tzinfo=timezone.utc)


def _conversation(scope_id: int, minutes: int | None, body: str = "hi") -> Conversation:
    return Conversation(
        id=f"{JOB}:{scope_id}",
        scope_id=scope_id,
        scope_kind=JOB,
        counterpart_id=2,
        counterpart_name="Erin",
        last_message=body,
        last_message_time=None if minutes is None else BASE + timedelta(minutes=minutes),
        unread_count=0,
        title="Barista",
        job_or_item_id=1,
    )


def test_dedupe_keeps_most_recent_per_key() -> None:
    """Summary: Verify duplicates collapse to the newest row.

    Importance: Conversation keys must be unique in the list.
    Alternatives: Raise on duplicates.
    """

    rows = [
        _conversation(1, 1, "old"),
        _conversation(2, 5),
        _conversation(1, 9, "new"),
        _conversation(3, None),
    ]
    result = dedupe_conversations(rows)
    assert [item.scope_id for item in result] == [1, 2, 3]
    assert result[0].last_message == "new"


def test_annotate_messages_is_stable_and_flags_sender() -> None:
    messages = [
        Message(3, 1, JOB, 5, "b@x", "late", BASE + timedelta(minutes=1)),
        Message(1, 1, JOB, 4, "a@x", "tie-first", BASE),
        Message(2, 1, JOB, 5, "b@x", "tie-second", BASE),
    ]
    annotated = annotate_messages(messages, user_id=5)
    assert [item.body for item in annotated] == ["tie-first", "tie-second", "late"]
    assert [item.is_sender for item in annotated] == [False, True, True]


def test_list_conversations_without_user_is_empty(world) -> None:
    projector = ConversationProjector(world.messages)
    assert asyncio.run(projector.list_conversations(None)) == []
    assert world.messages.calls["get_user_conversations"] == 0


def test_failed_refresh_keeps_previous_list(world) -> None:
    """Summary: Verify failures are non-destructive.

    Importance: A flaky platform must not blank the mailbox.
    Alternatives: Clear the list and show only the error.
    """

    application_id = world.store.create_application(world.job_id, world.student, STATUS_INQUIRY)
    world.store.insert_job_message(application_id, world.student, "Hello")
    projector = ConversationProjector(world.messages)

    async def scenario():
        first = await projector.list_conversations(world.student)
        world.messages.failing.add("get_user_conversations")
        second = await projector.list_conversations(world.student)
        error = projector.last_error
        world.messages.failing.clear()
        await projector.list_conversations(world.student)
        return first, second, error

    first, second, error = asyncio.run(scenario())
    assert second == first
    assert isinstance(error, FetchFailed)
    assert projector.last_error is None


def test_list_messages_round_trip(world) -> None:
    world.store.insert_marketplace_message(world.product_id, world.buyer, world.seller, "Lamp?")
    world.store.insert_marketplace_message(world.product_id, world.seller, world.buyer, "Yours")
    projector = ConversationProjector(world.messages)
    scope = Scope(kind=MARKETPLACE, scope_id=world.product_id, counterpart_id=world.seller)
    thread = asyncio.run(projector.list_messages(scope, world.buyer))
    assert [(item.body, item.is_sender) for item in thread] == [("Lamp?", True), ("Yours", False)]


def test_list_messages_raises_fetch_failed(world) -> None:
    world.messages.failing.add("get_conversation_messages")
    projector = ConversationProjector(world.messages)
    scope = Scope(kind=JOB, scope_id=1)
    with pytest.raises(FetchFailed):
        asyncio.run(projector.list_messages(scope, world.student))


def test_non_participant_sees_empty_job_thread(world) -> None:
    application_id = world.store.create_application(world.job_id, world.student, STATUS_INQUIRY)
    world.store.insert_job_message(application_id, world.student, "private")
    projector = ConversationProjector(world.messages)
    thread = asyncio.run(projector.list_messages(Scope(kind=JOB, scope_id=application_id), world.buyer))
    assert thread == []


def test_non_participant_cannot_clear_unread(world) -> None:
    """Summary: Verify an outsider marking a job thread read changes nothing.

    Importance: Read state belongs to the two participants of an application.
    Alternatives: Raise an error for outsiders instead of returning zero.
    """

    application_id = world.store.create_application(world.job_id, world.student, STATUS_INQUIRY)
    world.store.insert_job_message(application_id, world.employer, "Can you start Monday?")
    scope = Scope(kind=JOB, scope_id=application_id)

    async def scenario():
        thread = await world.messages.get_conversation_messages(world.buyer, scope)
        marked = await world.messages.mark_read(world.buyer, scope)
        conversations = await world.messages.get_user_conversations(world.student)
        return thread, marked, conversations

    thread, marked, conversations = asyncio.run(scenario())
    assert thread == []
    assert marked == 0
    assert [item.unread_count for item in conversations] == [1]
