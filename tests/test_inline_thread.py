"""Summary: Tests for the inline thread widget.

Importance: Covers messaging an employer before applying and messaging a seller.
Alternatives: Exercise these paths only through the HTTP API.
"""

from __future__ import annotations

import asyncio

from campuslink.errors import ApplicationBootstrapFailed, NotAuthenticated, SendFailed
from campuslink.inline_thread import InlineThreadWidget, KeyedLocks
from campuslink.models import JOB, MARKETPLACE, STATUS_INQUIRY, Scope
from campuslink.projector import ConversationProjector


def test_open_never_creates_application(world) -> None:
    """Summary: Verify opening a job thread with no application stays empty.

    Importance: Browsing a job must not leave inquiry rows behind.
    Alternatives: Create the inquiry eagerly when the dialog opens.
    """

    widget = InlineThreadWidget.for_job(world.messages, world.student, world.job_id)
    result = asyncio.run(widget.open())
    assert result.ok
    assert result.value == []
    assert widget.application_id is None
    assert widget.scope is None
    assert world.store.count_applications(world.job_id, world.student) == 0


def test_open_adopts_existing_application(world) -> None:
    application_id = world.store.create_application(world.job_id, world.student, "pending")
    world.store.insert_job_message(application_id, world.employer, "Thanks for applying")
    widget = InlineThreadWidget.for_job(world.messages, world.student, world.job_id, live=False)
    result = asyncio.run(widget.open())
    assert widget.application_id == application_id
    assert [message.body for message in result.value] == ["Thanks for applying"]


def test_message_before_applying_scenario(world) -> None:
    """Summary: Walk through an inquiry from first message to read receipt.

    Importance: This is the end-to-end path for "message employer" on a job page.
    Alternatives: Split into isolated unit tests only.
    """

    projector = ConversationProjector(world.messages)
    widget = InlineThreadWidget.for_job(world.messages, world.student, world.job_id)

    async def scenario():
        await widget.open()
        sent = await widget.send("Is this remote?")
        await world.feed.drain()
        before_reply = await projector.list_conversations(world.student)
        application_id = widget.application_id
        await world.messages.send_message(world.employer, Scope(kind=JOB, scope_id=application_id), "Yes")
        await world.feed.drain()
        after_reply = await projector.list_conversations(world.student)
        await world.messages.mark_read(world.student, Scope(kind=JOB, scope_id=application_id))
        await world.feed.drain()
        after_open = await projector.list_conversations(world.student)
        widget.close()
        return sent, before_reply, after_reply, after_open

    sent, before_reply, after_reply, after_open = asyncio.run(scenario())
    assert sent.ok
    assert widget.draft == ""
    application = world.store.get_application(widget.application_id)
    assert application.status == STATUS_INQUIRY
    assert application.applicant_id == world.student
    assert world.store.count_applications(world.job_id, world.student) == 1

    assert len(before_reply) == 1
    conversation = before_reply[0]
    assert conversation.scope_kind == JOB
    assert conversation.scope_id == widget.application_id
    assert conversation.title == "Campus Barista"
    assert conversation.last_message == "Is this remote?"
    assert after_reply[0].unread_count == 1
    assert after_open[0].unread_count == 0
    assert [message.body for message in widget.messages] == ["Is this remote?", "Yes"]
    assert world.feed.active_count == 0


def test_concurrent_sends_create_one_application(world) -> None:
    """Summary: Verify two widgets for the same (job, user) share one inquiry.

    Importance: Double-clicks and parallel tabs must not duplicate applications.
    Alternatives: Enforce a unique index and retry on conflict.
    """

    locks = KeyedLocks()
    first = InlineThreadWidget.for_job(
        world.messages, world.student, world.job_id, locks=locks, live=False
    )
    second = InlineThreadWidget.for_job(
        world.messages, world.student, world.job_id, locks=locks, live=False
    )

    async def scenario():
        return await asyncio.gather(first.send("Hello?"), second.send("Anyone there?"))

    results = asyncio.run(scenario())
    assert all(result.ok for result in results)
    assert world.messages.calls["create_job_application"] == 1
    assert world.store.count_applications(world.job_id, world.student) == 1
    assert first.application_id == second.application_id
    assert len(world.store.list_job_messages(first.application_id)) == 2


def test_repeated_sends_on_one_widget_reuse_application(world) -> None:
    widget = InlineThreadWidget.for_job(world.messages, world.student, world.job_id, live=False)

    async def scenario():
        await widget.send("One")
        await widget.send("Two")

    asyncio.run(scenario())
    assert world.messages.calls["create_job_application"] == 1
    assert [message.body for message in widget.messages] == ["One", "Two"]


def test_bootstrap_failure_leaves_scope_unset(world) -> None:
    widget = InlineThreadWidget.for_job(world.messages, world.student, world.job_id, live=False)
    world.messages.failing.add("create_job_application")
    result = asyncio.run(widget.send("Is this remote?"))
    assert isinstance(result.error, ApplicationBootstrapFailed)
    assert result.error.text == "Is this remote?"
    assert widget.application_id is None
    assert widget.draft == "Is this remote?"
    assert world.messages.calls["send_message"] == 0


def test_insert_failure_keeps_application_for_retry(world) -> None:
    """Summary: Verify a retry after a failed insert reuses the inquiry.

    Importance: The scope is established at most once per widget.
    Alternatives: Roll back the application when the message fails.
    """

    widget = InlineThreadWidget.for_job(world.messages, world.student, world.job_id, live=False)

    async def scenario():
        world.messages.failing.add("send_message")
        failed = await widget.send("Is this remote?")
        application_id = widget.application_id
        world.messages.failing.clear()
        retried = await widget.send(widget.draft)
        return failed, application_id, retried

    failed, application_id, retried = asyncio.run(scenario())
    assert isinstance(failed.error, SendFailed)
    assert not isinstance(failed.error, ApplicationBootstrapFailed)
    assert application_id is not None
    assert retried.ok
    assert widget.application_id == application_id
    assert world.messages.calls["create_job_application"] == 1


def test_blank_and_signed_out_sends(world) -> None:
    widget = InlineThreadWidget.for_job(world.messages, world.student, world.job_id)
    assert asyncio.run(widget.send("   ")).skipped
    anonymous = InlineThreadWidget.for_job(world.messages, None, world.job_id)
    result = asyncio.run(anonymous.send("hello"))
    assert isinstance(result.error, NotAuthenticated)
    assert world.messages.calls["find_application"] == 0


def test_product_thread_round_trip(world) -> None:
    buyer = InlineThreadWidget.for_product(
        world.messages, world.buyer, world.product_id, world.seller
    )
    seller_view = Scope(kind=MARKETPLACE, scope_id=world.product_id, counterpart_id=world.buyer)

    async def scenario():
        await buyer.open()
        await buyer.send("Is the lamp still available?")
        await world.messages.send_message(world.seller, seller_view, "It is")
        await world.feed.drain()
        buyer.close()

    asyncio.run(scenario())
    assert [(message.body, message.is_sender) for message in buyer.messages] == [
        ("Is the lamp still available?", True),
        ("It is", False),
    ]
    assert world.messages.calls["create_job_application"] == 0
    assert world.feed.active_count == 0


def test_employer_cannot_open_inquiry_on_own_job(world) -> None:
    """Summary: Verify an employer messaging their own posting creates nothing.

    Importance: An inquiry needs two distinct participants.
    Alternatives: Let the owner message themselves and hide the thread later.
    """

    widget = InlineThreadWidget.for_job(world.messages, world.employer, world.job_id, live=False)
    result = asyncio.run(widget.send("Testing my own posting"))
    assert isinstance(result.error, ApplicationBootstrapFailed)
    assert widget.application_id is None
    assert world.store.count_applications(world.job_id, world.employer) == 0
    assert world.messages.calls["send_message"] == 0


def test_lock_registry_empties_after_sends(world) -> None:
    """Summary: Verify per-(job, user) locks are released once sends finish.

    Importance: A long-lived registry must not keep a lock for every pair ever seen.
    Alternatives: Bound the registry with an LRU.
    """

    locks = KeyedLocks()
    widgets = [
        InlineThreadWidget.for_job(world.messages, user, world.job_id, locks=locks, live=False)
        for user in (world.student, world.student, world.buyer)
    ]

    async def scenario():
        results = await asyncio.gather(*(widget.send("Still hiring?") for widget in widgets))
        return results, len(locks)

    results, remaining = asyncio.run(scenario())
    assert all(result.ok for result in results)
    assert remaining == 0
    assert world.store.count_applications(world.job_id, world.student) == 1
