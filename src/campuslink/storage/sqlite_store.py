"""Summary: SQLite storage implementation for CampusLink.

Importance: Provides a local-first relational store for messages, applications, and anchors.
Alternatives: Use an ORM or a hosted Postgres backend immediately.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from campuslink.models import (
    JOB,
    MARKETPLACE,
    Conversation,
    Job,
    JobApplication,
    Message,
    Product,
    User,
)


@dataclass(frozen=True)
class StoredUser:
    """Summary: User record with database identifier.

    Importance: Resolves counterpart names and sender emails.
    Alternatives: Keep identities only in the auth provider.
    """

    id: int
    display_name: str
    email: str
    role: str


@dataclass(frozen=True)
class StoredJob:
    id: int
    employer_id: int
    title: str
    company: str


@dataclass(frozen=True)
class StoredProduct:
    id: int
    seller_id: int
    title: str
    price: float


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp(value: datetime) -> str:
    # Fixed-width UTC text so lexical ORDER BY matches chronological order.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class SqliteStore:
    """Summary: SQLite-backed storage for CampusLink.

    Importance: Enables local-first persistence with minimal dependencies.
    Alternatives: Use Postgres and SQLAlchemy from day one.
    """

    def __init__(self, db_path: str) -> None:
        """Summary: Initialize the storage with a database path.

        Importance: Allows configurable database location per environment.
        Alternatives: Hardcode a default path in the class.
        """

        self._db_path = Path(db_path)

    def initialize(self) -> None:
        """Summary: Create tables if they do not exist.

        Importance: Ensures the database is ready for messaging workflows.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    display_name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    role TEXT NOT NULL DEFAULT 'student'
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    employer_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    company TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS marketplace_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    seller_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    price REAL NOT NULL DEFAULT 0
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS job_applications (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id INTEGER NOT NULL,
                    applicant_id INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    cover_letter TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS job_messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    application_id INTEGER NOT NULL,
                    sender_id INTEGER NOT NULL,
                    message TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    read_at TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS marketplace_messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    product_id INTEGER NOT NULL,
                    sender_id INTEGER NOT NULL,
                    receiver_id INTEGER NOT NULL,
                    message TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    read_at TEXT
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_job_messages_scope ON job_messages (application_id)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_marketplace_messages_scope "
                "ON marketplace_messages (product_id)"
            )
            connection.commit()

    def ensure_user(self, user: User) -> int:
        """Summary: Ensure a user exists and return their ID.

        Importance: Provides a stable profile record for senders and counterparts.
        Alternatives: Mirror users lazily from the auth provider.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "INSERT OR IGNORE INTO users (display_name, email, role) VALUES (?, ?, ?)",
                (user.display_name, user.email, user.role),
            )
            if cursor.rowcount:
                user_id = cursor.lastrowid
            else:
                cursor.execute("SELECT id FROM users WHERE email = ?", (user.email,))
                row = cursor.fetchone()
                user_id = int(row[0]) if row else 0
            connection.commit()
        return int(user_id)

    def get_user(self, user_id: int) -> StoredUser | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT id, display_name, email, role FROM users WHERE id = ?", (user_id,)
            )
            row = cursor.fetchone()
        return StoredUser(*row) if row else None

    def create_job(self, job: Job) -> int:
        """Summary: Create a job posting and return its ID.

        Importance: Jobs anchor applications and supply thread titles.
        Alternatives: Import jobs from an external board.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "INSERT INTO jobs (employer_id, title, company) VALUES (?, ?, ?)",
                (job.employer_id, job.title, job.company),
            )
            job_id = cursor.lastrowid
            connection.commit()
        return int(job_id)

    def get_job(self, job_id: int) -> StoredJob | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT id, employer_id, title, company FROM jobs WHERE id = ?", (job_id,)
            )
            row = cursor.fetchone()
        return StoredJob(*row) if row else None

    def create_product(self, product: Product) -> int:
        """Summary: Create a marketplace listing and return its ID.

        Importance: Listings anchor marketplace threads and supply titles.
        Alternatives: Key marketplace threads on free-form subjects.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "INSERT INTO marketplace_items (seller_id, title, price) VALUES (?, ?, ?)",
                (product.seller_id, product.title, product.price),
            )
            product_id = cursor.lastrowid
            connection.commit()
        return int(product_id)

    def get_product(self, product_id: int) -> StoredProduct | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT id, seller_id, title, price FROM marketplace_items WHERE id = ?",
                (product_id,),
            )
            row = cursor.fetchone()
        return StoredProduct(*row) if row else None

    def create_application(
        self,
        job_id: int,
        applicant_id: int,
        status: str,
        cover_letter: str | None = None,
    ) -> int:
        """Summary: Insert a job application row and return its ID.

        Importance: Applications are the scope anchor for job threads.
        Alternatives: Create applications only through the apply form.
        """

        now = _timestamp(utcnow())
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO job_applications (
                    job_id, applicant_id, status, cover_letter, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (job_id, applicant_id, status, cover_letter, now, now),
            )
            application_id = cursor.lastrowid
            connection.commit()
        return int(application_id)

    def find_application(self, job_id: int, applicant_id: int) -> int | None:
        """Summary: Return the earliest application for a job and applicant.

        Importance: Lets a new thread adopt an existing scope instead of creating one.
        Alternatives: Enforce a unique index and rely on insert conflicts.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id FROM job_applications
                WHERE job_id = ? AND applicant_id = ?
                ORDER BY id
                LIMIT 1
                """,
                (job_id, applicant_id),
            )
            row = cursor.fetchone()
        return int(row[0]) if row else None

    def get_application(self, application_id: int) -> JobApplication | None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id, job_id, applicant_id, status, cover_letter, created_at, updated_at
                FROM job_applications WHERE id = ?
                """,
                (application_id,),
            )
            row = cursor.fetchone()
        if not row:
            return None
        return JobApplication(
            id=row[0],
            job_id=row[1],
            applicant_id=row[2],
            status=row[3],
            cover_letter=row[4],
            created_at=_parse_time(row[5]),
            updated_at=_parse_time(row[6]),
        )

    def count_applications(self, job_id: int, applicant_id: int) -> int:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "SELECT COUNT(*) FROM job_applications WHERE job_id = ? AND applicant_id = ?",
                (job_id, applicant_id),
            )
            row = cursor.fetchone()
        return int(row[0])

    def update_application(
        self, application_id: int, status: str, cover_letter: str | None = None
    ) -> bool:
        """Summary: Update an application's status and optionally its cover letter.

        Importance: Upgrades inquiries to formal applications and records decisions.
        Alternatives: Insert a new application row per status change.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            if cover_letter is None:
                cursor.execute(
                    "UPDATE job_applications SET status = ?, updated_at = ? WHERE id = ?",
                    (status, _timestamp(utcnow()), application_id),
                )
            else:
                cursor.execute(
                    """
                    UPDATE job_applications SET status = ?, cover_letter = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (status, cover_letter, _timestamp(utcnow()), application_id),
                )
            updated = cursor.rowcount > 0
            connection.commit()
        return updated

    def application_participants(self, application_id: int) -> tuple[int, int] | None:
        """Return (applicant id, employer id) for an application, if it exists."""

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT a.applicant_id, j.employer_id
                FROM job_applications a
                JOIN jobs j ON j.id = a.job_id
                WHERE a.id = ?
                """,
                (application_id,),
            )
            row = cursor.fetchone()
        return (int(row[0]), int(row[1])) if row else None

    def insert_job_message(
        self,
        application_id: int,
        sender_id: int,
        body: str,
        created_at: datetime | None = None,
    ) -> Message:
        """Summary: Append a message to a job application thread.

        Importance: Job messages are single-row appends scoped to an application.
        Alternatives: Route job messages through a generic conversation table.
        """

        created = _timestamp(created_at or utcnow())
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO job_messages (application_id, sender_id, message, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (application_id, sender_id, body, created),
            )
            message_id = cursor.lastrowid
            connection.commit()
        return self._require_message(JOB, int(message_id))

    def insert_marketplace_message(
        self,
        product_id: int,
        sender_id: int,
        receiver_id: int,
        body: str,
        created_at: datetime | None = None,
    ) -> Message:
        """Summary: Append a message about a marketplace listing.

        Importance: Marketplace threads are keyed by product and participant pair.
        Alternatives: Create a conversation row before the first message.
        """

        created = _timestamp(created_at or utcnow())
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO marketplace_messages (
                    product_id, sender_id, receiver_id, message, created_at
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (product_id, sender_id, receiver_id, body, created),
            )
            message_id = cursor.lastrowid
            connection.commit()
        return self._require_message(MARKETPLACE, int(message_id))

    def list_job_messages(self, application_id: int) -> list[Message]:
        """Summary: Return a job thread ordered by creation time.

        Importance: Insertion order breaks timestamp ties.
        Alternatives: Sort client-side after fetching.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT m.id, m.application_id, m.sender_id, COALESCE(u.email, ''),
                       m.message, m.created_at, NULL, m.read_at
                FROM job_messages m
                LEFT JOIN users u ON u.id = m.sender_id
                WHERE m.application_id = ?
                ORDER BY m.created_at ASC, m.id ASC
                """,
                (application_id,),
            )
            rows = cursor.fetchall()
        return [self._row_to_message(JOB, row) for row in rows]

    def list_marketplace_messages(
        self, product_id: int, user_id: int, counterpart_id: int
    ) -> list[Message]:
        """Summary: Return the thread between two users about one listing.

        Importance: Separate buyers on the same listing never see each other's messages.
        Alternatives: Show every message on a listing to its seller as one thread.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT m.id, m.product_id, m.sender_id, COALESCE(u.email, ''),
                       m.message, m.created_at, m.receiver_id, m.read_at
                FROM marketplace_messages m
                LEFT JOIN users u ON u.id = m.sender_id
                WHERE m.product_id = ?
                  AND ((m.sender_id = ? AND m.receiver_id = ?)
                    OR (m.sender_id = ? AND m.receiver_id = ?))
                ORDER BY m.created_at ASC, m.id ASC
                """,
                (product_id, user_id, counterpart_id, counterpart_id, user_id),
            )
            rows = cursor.fetchall()
        return [self._row_to_message(MARKETPLACE, row) for row in rows]

    def mark_job_messages_read(self, application_id: int, reader_id: int) -> list[int]:
        """Summary: Mark counterpart messages in a job thread as read.

        Importance: Clears unread counts once the thread has been viewed.
        Alternatives: Track a per-user "last seen" watermark.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id FROM job_messages
                WHERE application_id = ? AND sender_id != ? AND read_at IS NULL
                """,
                (application_id, reader_id),
            )
            ids = [int(row[0]) for row in cursor.fetchall()]
            if ids:
                cursor.executemany(
                    "UPDATE job_messages SET read_at = ? WHERE id = ?",
                    [(_timestamp(utcnow()), message_id) for message_id in ids],
                )
            connection.commit()
        return ids

    def mark_marketplace_messages_read(
        self, product_id: int, reader_id: int, counterpart_id: int
    ) -> list[int]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id FROM marketplace_messages
                WHERE product_id = ? AND sender_id = ? AND receiver_id = ? AND read_at IS NULL
                """,
                (product_id, counterpart_id, reader_id),
            )
            ids = [int(row[0]) for row in cursor.fetchall()]
            if ids:
                cursor.executemany(
                    "UPDATE marketplace_messages SET read_at = ? WHERE id = ?",
                    [(_timestamp(utcnow()), message_id) for message_id in ids],
                )
            connection.commit()
        return ids

    def user_conversations(self, user_id: int) -> list[Conversation]:
        """Summary: Aggregate one summary row per thread visible to a user.

        Importance: Powers the mailbox list and the unread badge in a single query path.
        Alternatives: Maintain a denormalized conversations table with triggers.
        """

        return self._job_conversations(user_id) + self._marketplace_conversations(user_id)

    def _job_conversations(self, user_id: int) -> list[Conversation]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT a.id, a.job_id, j.title, j.employer_id, a.applicant_id,
                       (SELECT m.message FROM job_messages m WHERE m.application_id = a.id
                        ORDER BY m.created_at DESC, m.id DESC LIMIT 1),
                       (SELECT MAX(m.created_at) FROM job_messages m
                        WHERE m.application_id = a.id),
                       (SELECT COUNT(*) FROM job_messages m
                        WHERE m.application_id = a.id AND m.sender_id != ? AND m.read_at IS NULL)
                FROM job_applications a
                JOIN jobs j ON j.id = a.job_id
                WHERE (a.applicant_id = ? OR j.employer_id = ?)
                  AND EXISTS (SELECT 1 FROM job_messages m WHERE m.application_id = a.id)
                """,
                (user_id, user_id, user_id),
            )
            rows = cursor.fetchall()
        names = self._display_names({row[3] for row in rows} | {row[4] for row in rows})
        conversations = []
        for application_id, job_id, title, employer_id, applicant_id, body, last, unread in rows:
            counterpart_id = applicant_id if employer_id == user_id else employer_id
            conversations.append(
                Conversation(
                    id=f"{JOB}:{application_id}",
                    scope_id=application_id,
                    scope_kind=JOB,
                    counterpart_id=counterpart_id,
                    counterpart_name=names.get(counterpart_id, "Unknown user"),
                    last_message=body or "",
                    last_message_time=_parse_time(last),
                    unread_count=int(unread),
                    title=title,
                    job_or_item_id=job_id,
                )
            )
        return conversations

    def _marketplace_conversations(self, user_id: int) -> list[Conversation]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT m.product_id, p.title, m.sender_id, m.receiver_id,
                       m.message, m.created_at, m.read_at
                FROM marketplace_messages m
                LEFT JOIN marketplace_items p ON p.id = m.product_id
                WHERE m.sender_id = ? OR m.receiver_id = ?
                ORDER BY m.created_at ASC, m.id ASC
                """,
                (user_id, user_id),
            )
            rows = cursor.fetchall()
        threads: dict[tuple[int, int], dict] = {}
        for product_id, title, sender_id, receiver_id, body, created_at, read_at in rows:
            counterpart_id = receiver_id if sender_id == user_id else sender_id
            thread = threads.setdefault(
                (product_id, counterpart_id),
                {"title": title or "Marketplace item", "unread": 0},
            )
            thread["body"] = body
            thread["last"] = created_at
            if sender_id == counterpart_id and read_at is None:
                thread["unread"] += 1
        names = self._display_names({counterpart for _, counterpart in threads})
        return [
            Conversation(
                id=f"{MARKETPLACE}:{product_id}:{counterpart_id}",
                scope_id=product_id,
                scope_kind=MARKETPLACE,
                counterpart_id=counterpart_id,
                counterpart_name=names.get(counterpart_id, "Unknown user"),
                last_message=thread["body"],
                last_message_time=_parse_time(thread["last"]),
                unread_count=thread["unread"],
                title=thread["title"],
                job_or_item_id=product_id,
            )
            for (product_id, counterpart_id), thread in threads.items()
        ]

    def _display_names(self, user_ids: set[int]) -> dict[int, str]:
        if not user_ids:
            return {}
        placeholders = ", ".join("?" for _ in user_ids)
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"SELECT id, display_name, email FROM users WHERE id IN ({placeholders})",
                tuple(user_ids),
            )
            rows = cursor.fetchall()
        return {int(row[0]): row[1] or row[2] for row in rows}

    def _require_message(self, kind: str, message_id: int) -> Message:
        if kind == JOB:
            query = """
                SELECT m.id, m.application_id, m.sender_id, COALESCE(u.email, ''),
                       m.message, m.created_at, NULL, m.read_at
                FROM job_messages m LEFT JOIN users u ON u.id = m.sender_id
                WHERE m.id = ?
                """
        else:
            query = """
                SELECT m.id, m.product_id, m.sender_id, COALESCE(u.email, ''),
                       m.message, m.created_at, m.receiver_id, m.read_at
                FROM marketplace_messages m LEFT JOIN users u ON u.id = m.sender_id
                WHERE m.id = ?
                """
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(query, (message_id,))
            row = cursor.fetchone()
        if not row:
            raise sqlite3.DatabaseError(f"{kind} message {message_id} vanished after insert")
        return self._row_to_message(kind, row)

    @staticmethod
    def _row_to_message(kind: str, row: tuple) -> Message:
        return Message(
            id=int(row[0]),
            scope_id=int(row[1]),
            scope_kind=kind,
            sender_id=int(row[2]),
            sender_email=row[3],
            body=row[4],
            created_at=_parse_time(row[5]),
            receiver_id=row[6],
            read_at=_parse_time(row[7]),
        )

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Summary: Context manager for SQLite connections.

        Importance: Ensures connections are closed cleanly after use.
        Alternatives: Keep a single long-lived connection.
        """

        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
        finally:
            connection.close()
