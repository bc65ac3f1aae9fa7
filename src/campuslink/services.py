"""Summary: Core application services for CampusLink.

Importance: Groups directory and application workflows that surround the messaging core.
Alternatives: Build a full service layer with dependency injection framework.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging

from campuslink.errors import MessageStoreError
from campuslink.message_store import MessageStore
from campuslink.models import (
    APPLICATION_STATUSES,
    STATUS_INQUIRY,
    STATUS_PENDING,
    Job,
    Product,
    User,
)
from campuslink.storage.sqlite_store import SqliteStore, StoredJob, StoredProduct, StoredUser


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectoryService:
    """Summary: Manages users, job postings, and listings that anchor threads.

    Importance: Provides the titles and counterparts conversations are projected from.
    Alternatives: Read these records from separate CRUD services.
    """

    store: SqliteStore

    def create_user(self, display_name: str, email: str, role: str = "student") -> int:
        """Summary: Create or ensure a user exists.

        Importance: Gives senders a stable identity and display name.
        Alternatives: Keep identities only in the auth provider.
        """

        if role not in {"student", "employer"}:
            raise ValueError(f"Unknown role: {role}")
        return self.store.ensure_user(User(display_name=display_name, email=email, role=role))

    def get_user(self, user_id: int) -> StoredUser | None:
        return self.store.get_user(user_id)

    def post_job(self, employer_id: int, title: str, company: str = "") -> int:
        job_id = self.store.create_job(Job(employer_id=employer_id, title=title, company=company))
        logger.info("Employer %s posted job %s.", employer_id, job_id)
        return job_id

    def get_job(self, job_id: int) -> StoredJob | None:
        return self.store.get_job(job_id)

    def list_item(self, seller_id: int, title: str, price: float = 0.0) -> int:
        product_id = self.store.create_product(
            Product(seller_id=seller_id, title=title, price=price)
        )
        logger.info("Seller %s listed item %s.", seller_id, product_id)
        return product_id

    def get_product(self, product_id: int) -> StoredProduct | None:
        return self.store.get_product(product_id)


@dataclass(frozen=True)
class ApplicationService:
    """Summary: Handles explicit job applications and status changes.

    Importance: Upgrades an implicit inquiry to a formal application instead of duplicating it.
    Alternatives: Insert a fresh application on every apply.
    """

    messages: MessageStore
    user_id: int

    async def apply(self, job_id: int, cover_letter: str | None = None) -> int:
        """Summary: Apply to a job with status pending.

        Importance: Keeps a single scope anchor per (job, applicant).
        Alternatives: Allow multiple applications per job.
        """

        existing = await self.messages.find_application(job_id, self.user_id)
        if existing is None:
            return await self.messages.create_job_application(
                job_id, self.user_id, STATUS_PENDING, cover_letter
            )
        await self.messages.update_application_status(existing, STATUS_PENDING, cover_letter)
        logger.info("Upgraded application %s to pending.", existing)
        return existing

    async def update_status(self, application_id: int, status: str) -> bool:
        if status not in APPLICATION_STATUSES:
            raise ValueError(f"Unknown application status: {status}")
        if status == STATUS_INQUIRY:
            raise ValueError("Inquiry status is only assigned implicitly")
        try:
            return await self.messages.update_application_status(application_id, status)
        except MessageStoreError:
            logger.exception("Failed to update application %s.", application_id)
            raise
