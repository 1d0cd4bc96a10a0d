"""Derived per-user statistics.

Every counter on the user row (completed jobs, earnings, spend, review counts,
rating) is a cache. ``compute_user_stats`` and ``compute_rating`` rebuild the
values from jobs, proposals and reviews; the ``refresh_*``/``update_*``
helpers write them back. Recomputing is idempotent, so callers may invoke it
as often as they like, concurrently, and last writer wins.
"""

import logging
import uuid
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database import utcnow
from marketplace.models.job import Job, JobStatus
from marketplace.models.proposal import Proposal
from marketplace.models.review import Review
from marketplace.models.user import User
from marketplace.schemas.user import RatingResponse, UserStats

logger = logging.getLogger(__name__)

_CENTS = Decimal("0.01")


def _money(value: object) -> Decimal:
    return Decimal(str(value or 0)).quantize(_CENTS, rounding=ROUND_HALF_UP)


async def compute_user_stats(db: AsyncSession, user_id: uuid.UUID) -> UserStats:
    """Aggregate a user's stats from persisted facts. Read-only."""
    # Customer side: completed jobs the user owns
    spent_row = (
        await db.execute(
            select(func.count(), func.coalesce(func.sum(Job.accepted_price), 0)).where(
                Job.customer_id == user_id,
                Job.status == JobStatus.COMPLETED,
            )
        )
    ).one()

    # Provider side: completed jobs whose accepted proposal is the user's
    earned_row = (
        await db.execute(
            select(func.count(), func.coalesce(func.sum(Job.accepted_price), 0))
            .select_from(Job)
            .join(Proposal, Proposal.proposal_id == Job.accepted_proposal_id)
            .where(
                Job.status == JobStatus.COMPLETED,
                Proposal.provider_id == user_id,
            )
        )
    ).one()

    reviews_given = (
        await db.execute(
            select(func.count()).select_from(Review).where(Review.reviewer_id == user_id)
        )
    ).scalar_one()
    reviews_received = (
        await db.execute(
            select(func.count()).select_from(Review).where(Review.reviewed_id == user_id)
        )
    ).scalar_one()

    return UserStats(
        completed_jobs=spent_row[0] + earned_row[0],
        total_earnings=_money(earned_row[1]),
        total_spent=_money(spent_row[1]),
        reviews_given=reviews_given,
        reviews_received=reviews_received,
    )


async def compute_rating(db: AsyncSession, user_id: uuid.UUID) -> RatingResponse:
    """Average and count of ratings received; 0/0 when there are none."""
    avg, count = (
        await db.execute(
            select(func.avg(Review.rating), func.count(Review.review_id)).where(
                Review.reviewed_id == user_id
            )
        )
    ).one()
    if not count:
        return RatingResponse(average=Decimal("0.00"), count=0)
    return RatingResponse(average=_money(avg), count=count)


async def refresh_user_stats(db: AsyncSession, user_id: uuid.UUID) -> UserStats | None:
    """Recompute and write the stats onto the user row. Does not commit.

    Returns None when the user no longer exists.
    """
    user = await db.get(User, user_id)
    if user is None:
        return None
    stats = await compute_user_stats(db, user_id)
    user.completed_jobs = stats.completed_jobs
    user.total_earnings = stats.total_earnings
    user.total_spent = stats.total_spent
    user.reviews_given = stats.reviews_given
    user.reviews_received = stats.reviews_received
    user.stats_refreshed_at = utcnow()
    await db.flush()
    return stats


async def update_rating(db: AsyncSession, user_id: uuid.UUID) -> RatingResponse | None:
    """Recompute and write the rating onto the user row. Does not commit."""
    user = await db.get(User, user_id)
    if user is None:
        return None
    rating = await compute_rating(db, user_id)
    user.rating_average = rating.average
    user.rating_count = rating.count
    await db.flush()
    return rating


async def recompute_user(
    db: AsyncSession, user_id: uuid.UUID
) -> tuple[UserStats, RatingResponse] | None:
    """Full repair for one user: stats and rating, committed."""
    stats = await refresh_user_stats(db, user_id)
    if stats is None:
        return None
    rating = await update_rating(db, user_id)
    await db.commit()
    return stats, rating  # type: ignore[return-value]


async def refresh_after_event(db: AsyncSession, user_ids: Iterable[uuid.UUID | None]) -> None:
    """Post-commit refresh for the parties of a lifecycle event.

    Runs in its own session so a failure cannot disturb the caller's
    already-committed state. Errors are logged and left for the admin
    repair path; this never raises.
    """
    targets = {uid for uid in user_ids if uid is not None}
    if not targets:
        return
    async with AsyncSession(bind=db.bind, expire_on_commit=False) as side:
        for uid in targets:
            try:
                await refresh_user_stats(side, uid)
                await update_rating(side, uid)
                await side.commit()
            except Exception:
                await side.rollback()
                logger.exception("Stats refresh failed for user %s", uid)
