"""Job lifecycle business logic: posting, moderation, expiry, delivery, deletion."""

import logging
import math
import uuid
from datetime import timedelta

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import settings
from marketplace.database import utcnow
from marketplace.errors import Forbidden, InvalidState, NotFound, ValidationFailed
from marketplace.models.job import (
    UNDELETABLE_STATUSES,
    VALID_TRANSITIONS,
    GuestOwner,
    Job,
    JobStatus,
    RegisteredOwner,
)
from marketplace.models.proposal import Proposal, ProposalStatus
from marketplace.models.review import Review
from marketplace.models.support import SupportTicket
from marketplace.models.user import User
from marketplace.schemas.job import ApproveJob, JobCreate, JobFilters, Pagination, RejectJob
from marketplace.services import stats
from marketplace.services.storage import require_owned_keys, schedule_cleanup

logger = logging.getLogger(__name__)


def _assert_transition(current: JobStatus, target: JobStatus) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidState(f"Cannot transition job from {current.value} to {target.value}")


async def get_job(db: AsyncSession, job_id: uuid.UUID) -> Job:
    result = await db.execute(select(Job).where(Job.job_id == job_id))
    job = result.scalar_one_or_none()
    if job is None:
        raise NotFound("Job not found")
    return job


async def create_job(
    db: AsyncSession, data: JobCreate, caller: User | None = None
) -> Job:
    """Post a job for moderation. Registered callers own it; anonymous callers need guest contact.

    Attachments must be keys the caller uploaded; guests cannot attach files.
    """
    if caller is not None:
        owner = RegisteredOwner(caller.user_id)
    else:
        if data.guest is None:
            raise ValidationFailed("Guest name and email are required when posting without an account")
        if not data.kvkk_accepted:
            raise ValidationFailed("KVKK consent is required")
        owner = GuestOwner(data.guest.name, data.guest.email.lower(), data.guest.phone)
    require_owned_keys(caller.user_id if caller is not None else None, data.attachments)

    now = utcnow()
    job = Job(
        job_id=uuid.uuid4(),
        title=data.title.strip(),
        description=data.description.strip(),
        category=data.category,
        city=data.city,
        district=data.district,
        address=data.address,
        budget_min=data.budget_min,
        budget_max=data.budget_max,
        currency=data.currency,
        estimated_duration=data.estimated_duration,
        attachments=list(data.attachments),
        status=JobStatus.PENDING,
        max_proposals=settings.default_max_proposals,
        expires_at=now + timedelta(days=settings.job_ttl_days),
        proposal_count=0,
    )
    job.owner = owner
    db.add(job)
    await db.commit()
    await db.refresh(job)
    logger.info("Job %s created by %s", job.job_id, "guest" if job.is_guest else job.customer_id)
    return job


async def approve_job(
    db: AsyncSession, job_id: uuid.UUID, data: ApproveJob | None = None
) -> Job:
    """Admin opens a pending job for proposals."""
    job = await get_job(db, job_id)
    _assert_transition(job.status, JobStatus.APPROVED)

    job.status = JobStatus.APPROVED
    if data is not None:
        if data.max_proposals is not None:
            job.max_proposals = data.max_proposals
        if data.admin_notes is not None:
            job.admin_notes = data.admin_notes
    await db.commit()
    await db.refresh(job)
    logger.info("Job %s approved (max_proposals=%d)", job.job_id, job.max_proposals)
    return job


async def _reject_pending_proposals(db: AsyncSession, job_ids: list[uuid.UUID]) -> int:
    if not job_ids:
        return 0
    now = utcnow()
    result = await db.execute(
        update(Proposal)
        .where(Proposal.job_id.in_(job_ids), Proposal.status == ProposalStatus.PENDING)
        .values(status=ProposalStatus.REJECTED, rejected_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def detach_tickets(db: AsyncSession, job_ids: list[uuid.UUID]) -> None:
    """Support tickets outlive the jobs they mention."""
    if job_ids:
        await db.execute(
            update(SupportTicket)
            .where(SupportTicket.job_id.in_(job_ids))
            .values(job_id=None)
            .execution_options(synchronize_session=False)
        )


async def reject_job(
    db: AsyncSession, job_id: uuid.UUID, data: RejectJob | None = None
) -> Job:
    """Admin closes a pending or approved job. Its pending proposals are rejected."""
    job = await get_job(db, job_id)
    _assert_transition(job.status, JobStatus.REJECTED)

    job.status = JobStatus.REJECTED
    if data is not None and data.admin_notes is not None:
        job.admin_notes = data.admin_notes
    rejected = await _reject_pending_proposals(db, [job.job_id])
    await db.commit()
    await db.refresh(job)
    logger.info("Job %s rejected; %d pending proposals closed", job.job_id, rejected)
    return job


async def expire_jobs(db: AsyncSession) -> tuple[int, int]:
    """Move approved jobs past their expiry to rejected.

    Submission already refuses expired jobs; this sweep only makes the stored
    status agree. Returns (jobs expired, proposals rejected).
    """
    now = utcnow()
    result = await db.execute(
        select(Job.job_id).where(Job.status == JobStatus.APPROVED, Job.expires_at <= now)
    )
    candidates = list(result.scalars().all())
    if not candidates:
        return 0, 0

    expired: list[uuid.UUID] = []
    for job_id in candidates:
        # Compare-and-set so a concurrent accept wins over expiry
        result = await db.execute(
            update(Job)
            .where(Job.job_id == job_id, Job.status == JobStatus.APPROVED)
            .values(status=JobStatus.REJECTED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            expired.append(job_id)
    rejected = await _reject_pending_proposals(db, expired)
    await db.commit()
    logger.info("Expired %d jobs, rejected %d proposals", len(expired), rejected)
    return len(expired), rejected


async def deliver_job(db: AsyncSession, job_id: uuid.UUID, caller_id: uuid.UUID) -> Job:
    """Accepted provider marks the job completed; both parties' stats are recomputed."""
    job = await get_job(db, job_id)
    if job.status != JobStatus.ACCEPTED:
        raise InvalidState(f"Job must be accepted to deliver (status: {job.status.value})")
    if job.accepted_proposal_id is None:
        raise InvalidState("Job has no accepted proposal")

    proposal = await db.get(Proposal, job.accepted_proposal_id)
    if proposal is None:
        raise InvalidState("Accepted proposal no longer exists")
    if proposal.provider_id != caller_id:
        raise Forbidden("Only the accepted provider can deliver this job")

    now = utcnow()
    result = await db.execute(
        update(Job)
        .where(Job.job_id == job_id, Job.status == JobStatus.ACCEPTED)
        .values(
            status=JobStatus.COMPLETED,
            delivered_at=now,
            delivered_by=caller_id,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise InvalidState("Job was already delivered")
    await db.commit()
    await db.refresh(job)
    logger.info("Job %s delivered by %s (price %s)", job.job_id, caller_id, job.accepted_price)

    await stats.refresh_after_event(db, [caller_id, job.customer_id])
    return job


async def delete_job(
    db: AsyncSession, job_id: uuid.UUID, caller_id: uuid.UUID, is_admin: bool = False
) -> None:
    """Owner or admin deletes a job that carries no accepted or finished work.

    Proposals and reviews of the job go with it. Attachments are removed
    after the commit; failures there are only logged.
    """
    job = await get_job(db, job_id)
    if not is_admin and (job.customer_id is None or job.customer_id != caller_id):
        raise Forbidden("Only the job owner or an admin can delete this job")
    if job.status in UNDELETABLE_STATUSES:
        raise InvalidState(f"Cannot delete a job in status {job.status.value}")

    attachments = list(job.attachments or [])
    await db.execute(delete(Proposal).where(Proposal.job_id == job_id))
    await db.execute(delete(Review).where(Review.job_id == job_id))
    await detach_tickets(db, [job_id])
    await db.delete(job)
    await db.commit()
    logger.info("Job %s deleted by %s", job_id, caller_id)

    schedule_cleanup(attachments, f"Job {job_id} attachments")


# --- Queries ---


_SORTS = {
    "newest": (Job.created_at.desc(),),
    "oldest": (Job.created_at.asc(),),
    "budget_high": (Job.budget_max.desc(), Job.created_at.desc()),
    "budget_low": (Job.budget_min.asc(), Job.created_at.desc()),
    "most_proposals": (Job.proposal_count.desc(), Job.created_at.desc()),
    "least_proposals": (Job.proposal_count.asc(), Job.created_at.desc()),
}


async def _paginate(db: AsyncSession, query, page: int, limit: int) -> tuple[list[Job], Pagination]:  # type: ignore[no-untyped-def]
    total = (
        await db.execute(select(func.count()).select_from(query.order_by(None).subquery()))
    ).scalar_one()
    result = await db.execute(query.limit(limit).offset((page - 1) * limit))
    jobs = list(result.scalars().all())
    pages = math.ceil(total / limit) if total else 0
    return jobs, Pagination(page=page, limit=limit, total=total, pages=pages)


async def list_open_jobs(db: AsyncSession, filters: JobFilters) -> tuple[list[Job], Pagination]:
    """Public board: approved jobs only."""
    query = select(Job).where(Job.status == JobStatus.APPROVED)
    if filters.category:
        query = query.where(Job.category == filters.category)
    if filters.city:
        query = query.where(Job.city == filters.city)
    if filters.district:
        query = query.where(Job.district == filters.district)
    if filters.search:
        pattern = f"%{filters.search.strip()}%"
        query = query.where(or_(Job.title.ilike(pattern), Job.description.ilike(pattern)))
    if filters.budget_min is not None:
        query = query.where(Job.budget_max >= filters.budget_min)
    if filters.budget_max is not None:
        query = query.where(Job.budget_min <= filters.budget_max)
    query = query.order_by(*_SORTS[filters.sort_by])
    return await _paginate(db, query, filters.page, filters.limit)


async def list_customer_jobs(
    db: AsyncSession, customer_id: uuid.UUID, status: JobStatus | None = None
) -> list[Job]:
    query = select(Job).where(Job.customer_id == customer_id)
    if status is not None:
        query = query.where(Job.status == status)
    result = await db.execute(query.order_by(Job.created_at.desc()))
    return list(result.scalars().all())


async def list_jobs_for_admin(
    db: AsyncSession,
    status: JobStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Job], Pagination]:
    query = select(Job)
    if status is not None:
        query = query.where(Job.status == status)
    query = query.order_by(Job.created_at.desc())
    return await _paginate(db, query, page, limit)


async def list_completed_jobs(db: AsyncSession, user_id: uuid.UUID) -> list[Job]:
    """Completed jobs where the user was the customer or the accepted provider."""
    provider_jobs = (
        select(Job.job_id)
        .join(Proposal, Proposal.proposal_id == Job.accepted_proposal_id)
        .where(Proposal.provider_id == user_id)
    )
    result = await db.execute(
        select(Job)
        .where(
            Job.status == JobStatus.COMPLETED,
            or_(Job.customer_id == user_id, Job.job_id.in_(provider_jobs)),
        )
        .order_by(Job.delivered_at.desc())
    )
    return list(result.scalars().all())
