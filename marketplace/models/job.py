"""Job SQLAlchemy model: full lifecycle entity."""

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Enum, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database import Base, JSONType, UTCDateTime, utcnow


class JobStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    REJECTED = "rejected"


# Valid state transitions. All one-way; completed and rejected are terminal.
VALID_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.APPROVED, JobStatus.REJECTED},
    JobStatus.APPROVED: {JobStatus.ACCEPTED, JobStatus.REJECTED},
    JobStatus.ACCEPTED: {JobStatus.COMPLETED},
    JobStatus.COMPLETED: set(),
    JobStatus.REJECTED: set(),
}

# Jobs in these states carry work in flight or finished work and are never deleted.
UNDELETABLE_STATUSES = frozenset({JobStatus.ACCEPTED, JobStatus.COMPLETED})


@dataclass(frozen=True)
class RegisteredOwner:
    user_id: uuid.UUID


@dataclass(frozen=True)
class GuestOwner:
    name: str
    email: str
    phone: str | None = None

    def __post_init__(self) -> None:
        if not self.name or not self.email:
            raise ValueError("Guest owner requires a name and an email")


Owner = RegisteredOwner | GuestOwner


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        CheckConstraint(
            "(customer_id IS NOT NULL AND guest_email IS NULL) "
            "OR (customer_id IS NULL AND guest_email IS NOT NULL)",
            name="ck_jobs_exactly_one_owner",
        ),
        CheckConstraint("proposal_count >= 0", name="ck_jobs_proposal_count"),
        Index("ix_jobs_status_created_at", "status", "created_at"),
        Index("ix_jobs_customer_id_status", "customer_id", "status"),
    )

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)

    # Owner: either a registered customer or a guest contact, never both
    customer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    guest_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    guest_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    guest_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)

    city: Mapped[str] = mapped_column(String(64), nullable=False)
    district: Mapped[str] = mapped_column(String(64), nullable=False)
    address: Mapped[str | None] = mapped_column(String(512), nullable=True)
    budget_min: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    budget_max: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="TL")
    estimated_duration: Mapped[str | None] = mapped_column(String(64), nullable=True)
    attachments: Mapped[list | None] = mapped_column(JSONType, nullable=True, default=list)

    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=JobStatus.PENDING,
    )
    max_proposals: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    # Cache of COUNT(proposals WHERE job_id = this); recomputed on every proposal mutation
    proposal_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Acceptance snapshot: the agreed contract, frozen at accept time
    accepted_proposal_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    accepted_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    accepted_duration: Mapped[str | None] = mapped_column(String(64), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    delivered_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    @property
    def owner(self) -> Owner:
        if self.customer_id is not None:
            return RegisteredOwner(self.customer_id)
        return GuestOwner(self.guest_name or "", self.guest_email or "", self.guest_phone)

    @owner.setter
    def owner(self, value: Owner) -> None:
        if isinstance(value, RegisteredOwner):
            self.customer_id = value.user_id
            self.guest_name = self.guest_email = self.guest_phone = None
        elif isinstance(value, GuestOwner):
            self.customer_id = None
            self.guest_name = value.name
            self.guest_email = value.email
            self.guest_phone = value.phone
        else:
            raise TypeError(f"Unsupported job owner: {value!r}")

    @property
    def is_guest(self) -> bool:
        return self.customer_id is None

    def is_open_for_proposals(self, now: datetime) -> bool:
        return self.status == JobStatus.APPROVED and now < self.expires_at
