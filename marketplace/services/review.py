"""Review business logic: one review per party per completed job."""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.errors import Conflict, Forbidden, InvalidState, NotFound, ValidationFailed
from marketplace.models.job import Job, JobStatus
from marketplace.models.proposal import Proposal
from marketplace.models.review import Review, ReviewerType
from marketplace.schemas.review import ReviewCreate
from marketplace.services import stats
from marketplace.services.job import get_job

logger = logging.getLogger(__name__)


async def _accepted_provider_id(db: AsyncSession, job: Job) -> uuid.UUID | None:
    if job.accepted_proposal_id is None:
        return None
    proposal = await db.get(Proposal, job.accepted_proposal_id)
    return proposal.provider_id if proposal is not None else None


async def _has_reviewed(db: AsyncSession, job_id: uuid.UUID, reviewer_id: uuid.UUID) -> bool:
    existing = await db.execute(
        select(Review.review_id).where(Review.job_id == job_id, Review.reviewer_id == reviewer_id)
    )
    return existing.scalar_one_or_none() is not None


async def create_review(
    db: AsyncSession,
    job_id: uuid.UUID,
    reviewer_id: uuid.UUID,
    data: ReviewCreate,
) -> Review:
    """Submit a review for a completed job. Each party can review the other once."""
    job = await get_job(db, job_id)
    if job.status != JobStatus.COMPLETED:
        raise InvalidState("Can only review completed jobs")

    provider_id = await _accepted_provider_id(db, job)
    if job.customer_id is not None and reviewer_id == job.customer_id:
        counterparty_id = provider_id
        reviewer_type = ReviewerType.CUSTOMER
    elif provider_id is not None and reviewer_id == provider_id:
        counterparty_id = job.customer_id
        reviewer_type = ReviewerType.PROVIDER
    else:
        raise Forbidden("Only parties to the job can leave reviews")

    if counterparty_id is None:
        raise InvalidState("The other party of this job cannot be reviewed")
    reviewed_id = data.reviewed_id or counterparty_id
    if reviewed_id != counterparty_id:
        raise ValidationFailed("You can only review the other party of this job")

    if await _has_reviewed(db, job_id, reviewer_id):
        raise Conflict("You have already reviewed this job")

    review = Review(
        review_id=uuid.uuid4(),
        job_id=job_id,
        reviewer_id=reviewer_id,
        reviewed_id=reviewed_id,
        reviewer_type=reviewer_type,
        rating=data.rating,
        comment=data.comment,
    )
    db.add(review)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent review by the same party committed first
        await db.rollback()
        raise Conflict("You have already reviewed this job")
    await db.refresh(review)
    logger.info("Review %s on job %s: %s rated %s", review.review_id, job_id, reviewer_id, reviewed_id)

    await stats.refresh_after_event(db, [reviewer_id, reviewed_id])
    return review


async def delete_review(db: AsyncSession, review_id: uuid.UUID) -> None:
    """Admin removes a review; both parties are recomputed."""
    result = await db.execute(select(Review).where(Review.review_id == review_id))
    review = result.scalar_one_or_none()
    if review is None:
        raise NotFound("Review not found")

    parties = [review.reviewer_id, review.reviewed_id]
    await db.delete(review)
    await db.commit()
    logger.info("Review %s deleted", review_id)

    await stats.refresh_after_event(db, parties)


async def get_reviews_for_user(
    db: AsyncSession, user_id: uuid.UUID, limit: int = 20, offset: int = 0
) -> list[Review]:
    """Get reviews where the user is the reviewed party."""
    result = await db.execute(
        select(Review)
        .where(Review.reviewed_id == user_id)
        .order_by(Review.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def get_reviews_for_job(db: AsyncSession, job_id: uuid.UUID) -> list[Review]:
    result = await db.execute(
        select(Review)
        .where(Review.job_id == job_id)
        .order_by(Review.created_at.asc())
    )
    return list(result.scalars().all())
