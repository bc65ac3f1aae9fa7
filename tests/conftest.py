"""Summary: Shared fixtures for CampusLink tests.

Importance: Gives every test an isolated database seeded with jobs, listings, and users.
Alternatives: Rebuild the same fixtures inline in each test module.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass
from pathlib import Path

import pytest

from campuslink.errors import MessageStoreError
from campuslink.feed import ChangeFeed
from campuslink.message_store import SqliteMessageStore
from campuslink.models import Job, Product, Scope, User
from campuslink.storage.sqlite_store import SqliteStore


class FlakyMessageStore(SqliteMessageStore):
    """Summary: Message store with injectable failures and delays.

    Importance: Lets tests reproduce platform errors and slow fetches deterministically.
    Alternatives: Monkeypatch individual methods per test.
    """

    def __init__(self, store: SqliteStore, feed: ChangeFeed) -> None:
        super().__init__(store, feed)
        self.failing: set[str] = set()
        self.gates: dict[int, asyncio.Event] = {}
        self.calls: Counter[str] = Counter()

    def _check(self, name: str) -> None:
        self.calls[name] += 1
        if name in self.failing:
            raise MessageStoreError(f"{name} unavailable")

    async def get_user_conversations(self, user_id):
        self._check("get_user_conversations")
        return await super().get_user_conversations(user_id)

    async def get_conversation_messages(self, user_id, scope: Scope):
        gate = self.gates.get(scope.scope_id)
        if gate is not None:
            await gate.wait()
        self._check("get_conversation_messages")
        return await super().get_conversation_messages(user_id, scope)

    async def send_message(self, sender_id, scope, text):
        self._check("send_message")
        return await super().send_message(sender_id, scope, text)

    async def create_job_application(self, job_id, applicant_id, status, cover_letter=None):
        self._check("create_job_application")
        await asyncio.sleep(0)
        return await super().create_job_application(job_id, applicant_id, status, cover_letter)

    async def find_application(self, job_id, applicant_id):
        self._check("find_application")
        return await super().find_application(job_id, applicant_id)


@dataclass
class World:
    store: SqliteStore
    feed: ChangeFeed
    messages: FlakyMessageStore
    student: int
    employer: int
    buyer: int
    seller: int
    job_id: int
    product_id: int


@pytest.fixture
def world(tmp_path: Path) -> World:
    """Summary: Build a seeded store with one job and one listing.

    Importance: Mirrors the campus setup of students, an employer, and a seller.
    Alternatives: Seed data from a JSON fixture file.
    """

    store = SqliteStore(str(tmp_path / "test.db"))
    store.initialize()
    feed = ChangeFeed()
    student = store.ensure_user(User(display_name="Sam Student", email="sam@campus.edu"))
    employer = store.ensure_user(
        User(display_name="Erin Employer", email="erin@acme.com", role="employer")
    )
    buyer = store.ensure_user(User(display_name="Bea Buyer", email="bea@campus.edu"))
    seller = store.ensure_user(User(display_name="Sid Seller", email="sid@campus.edu"))
    job_id = store.create_job(Job(employer_id=employer, title="Campus Barista", company="Acme"))
    product_id = store.create_product(Product(seller_id=seller, title="Desk Lamp", price=12.0))
    return World(
        store=store,
        feed=feed,
        messages=FlakyMessageStore(store, feed),
        student=student,
        employer=employer,
        buyer=buyer,
        seller=seller,
        job_id=job_id,
        product_id=product_id,
    )
