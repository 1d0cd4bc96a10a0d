"""Review model for post-job ratings."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Enum, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database import Base, UTCDateTime, utcnow


class ReviewerType(enum.Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating"),
        UniqueConstraint("job_id", "reviewer_id", name="uq_reviews_job_reviewer"),
    )

    review_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    reviewer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    reviewed_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    reviewer_type: Mapped[ReviewerType] = mapped_column(
        Enum(ReviewerType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
