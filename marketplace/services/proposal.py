"""Proposal lifecycle: submission, edits, withdrawal, rejection and acceptance.

Acceptance is the one multi-row write in the system. The job's
``approved -> accepted`` move is a compare-and-set UPDATE in the same
transaction as the target proposal's acceptance and the rejection of its
pending siblings, so two concurrent accepts on one job cannot both win.
"""

import logging
import uuid

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database import utcnow
from marketplace.errors import (
    Conflict,
    Forbidden,
    InvalidOperation,
    InvalidState,
    LimitExceeded,
    NotFound,
)
from marketplace.models.job import Job, JobStatus
from marketplace.models.proposal import VALID_TRANSITIONS, Proposal, ProposalStatus
from marketplace.models.user import User, UserRole
from marketplace.schemas.proposal import ProposalCreate, ProposalUpdate
from marketplace.services.job import get_job
from marketplace.services.notifications import NotificationEvent, notify

logger = logging.getLogger(__name__)


def _assert_transition(current: ProposalStatus, target: ProposalStatus) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidState(f"Cannot move proposal from {current.value} to {target.value}")


async def get_proposal(db: AsyncSession, proposal_id: uuid.UUID) -> Proposal:
    result = await db.execute(select(Proposal).where(Proposal.proposal_id == proposal_id))
    proposal = result.scalar_one_or_none()
    if proposal is None:
        raise NotFound("Proposal not found")
    return proposal


async def count_proposals(db: AsyncSession, job_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count()).select_from(Proposal).where(Proposal.job_id == job_id)
    )
    return result.scalar_one()


async def sync_proposal_count(db: AsyncSession, job_id: uuid.UUID) -> int:
    """Rewrite the job's cached proposal_count from the proposals table."""
    count = await count_proposals(db, job_id)
    await db.execute(
        update(Job)
        .where(Job.job_id == job_id)
        .values(proposal_count=count)
    )
    return count


async def _customer_contact(db: AsyncSession, job: Job) -> tuple[str | None, str]:
    if job.customer_id is None:
        return job.guest_email, job.guest_name or ""
    customer = await db.get(User, job.customer_id)
    if customer is None:
        return None, ""
    return customer.email, customer.name


async def _has_bid(db: AsyncSession, job_id: uuid.UUID, provider_id: uuid.UUID) -> bool:
    existing = await db.execute(
        select(Proposal.proposal_id).where(
            Proposal.job_id == job_id, Proposal.provider_id == provider_id
        )
    )
    return existing.scalar_one_or_none() is not None


async def submit_proposal(
    db: AsyncSession, job_id: uuid.UUID, provider: User, data: ProposalCreate
) -> Proposal:
    """Provider bids on an open job.

    Preconditions are checked in a fixed order and the first failure wins:
    job exists, job open, cap not reached, caller is a provider, caller is
    not the owner, no earlier bid by the caller.
    """
    job = await get_job(db, job_id)
    if not job.is_open_for_proposals(utcnow()):
        raise InvalidState("Job is not open for proposals")
    if await count_proposals(db, job_id) >= job.max_proposals:
        raise LimitExceeded(f"Job already has the maximum of {job.max_proposals} proposals")
    if provider.role != UserRole.PROVIDER:
        raise Forbidden("Only providers can submit proposals")
    if job.customer_id == provider.user_id:
        raise InvalidOperation("Cannot propose on your own job")

    if await _has_bid(db, job_id, provider.user_id):
        raise Conflict("You have already submitted a proposal for this job")

    proposal = Proposal(
        proposal_id=uuid.uuid4(),
        job_id=job_id,
        provider_id=provider.user_id,
        description=data.description,
        price=data.price,
        duration_value=data.duration.value,
        duration_unit=data.duration.unit,
        status=ProposalStatus.PENDING,
    )
    db.add(proposal)
    try:
        await db.flush()
    except IntegrityError:
        # Lost the race against a concurrent submission by the same provider
        await db.rollback()
        raise Conflict("You have already submitted a proposal for this job")

    await sync_proposal_count(db, job_id)
    await db.commit()
    await db.refresh(proposal)
    logger.info("Proposal %s submitted on job %s by %s", proposal.proposal_id, job_id, provider.user_id)

    recipient, recipient_name = await _customer_contact(db, job)
    notify(
        NotificationEvent.PROPOSAL_SUBMITTED,
        recipient,
        {
            "recipient_name": recipient_name,
            "provider_name": provider.name,
            "job_title": job.title,
            "job_id": str(job.job_id),
            "price": str(proposal.price),
            "currency": job.currency,
            "duration": proposal.duration_label,
        },
    )
    return proposal


async def _get_editable(
    db: AsyncSession, proposal_id: uuid.UUID, provider_id: uuid.UUID
) -> tuple[Proposal, Job]:
    proposal = await get_proposal(db, proposal_id)
    if proposal.provider_id != provider_id:
        raise Forbidden("You can only modify your own proposals")
    job = await get_job(db, proposal.job_id)
    if job.status != JobStatus.APPROVED:
        raise InvalidState("Proposal terms are frozen once the job leaves approved")
    if proposal.status != ProposalStatus.PENDING:
        raise InvalidState(f"Cannot modify a {proposal.status.value} proposal")
    return proposal, job


async def update_proposal(
    db: AsyncSession, proposal_id: uuid.UUID, provider_id: uuid.UUID, data: ProposalUpdate
) -> Proposal:
    """Provider edits their pending bid while the job is still approved."""
    proposal, _ = await _get_editable(db, proposal_id, provider_id)

    if data.description is not None:
        proposal.description = data.description.strip()
    if data.price is not None:
        proposal.price = data.price
    if data.duration is not None:
        proposal.duration_value = data.duration.value
        proposal.duration_unit = data.duration.unit

    await db.commit()
    await db.refresh(proposal)
    return proposal


async def withdraw_proposal(
    db: AsyncSession, proposal_id: uuid.UUID, provider_id: uuid.UUID
) -> None:
    """Provider removes their pending bid; the job's count drops with it."""
    proposal, job = await _get_editable(db, proposal_id, provider_id)
    await db.delete(proposal)
    await db.flush()
    await sync_proposal_count(db, job.job_id)
    await db.commit()
    logger.info("Proposal %s withdrawn from job %s", proposal_id, job.job_id)


async def reject_proposal(
    db: AsyncSession,
    job_id: uuid.UUID,
    proposal_id: uuid.UUID,
    caller_id: uuid.UUID,
    notes: str | None = None,
) -> Proposal:
    """Job owner explicitly declines one pending bid."""
    job = await get_job(db, job_id)
    if job.customer_id is None or job.customer_id != caller_id:
        raise Forbidden("Only the job owner can reject proposals")
    proposal = await get_proposal(db, proposal_id)
    if proposal.job_id != job_id:
        raise NotFound("Proposal not found")
    _assert_transition(proposal.status, ProposalStatus.REJECTED)

    now = utcnow()
    result = await db.execute(
        update(Proposal)
        .where(Proposal.proposal_id == proposal_id, Proposal.status == ProposalStatus.PENDING)
        .values(status=ProposalStatus.REJECTED, rejected_at=now, notes=notes, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict("Proposal was decided concurrently")
    await db.commit()
    await db.refresh(proposal)
    return proposal


async def accept_proposal(
    db: AsyncSession, job_id: uuid.UUID, proposal_id: uuid.UUID, caller_id: uuid.UUID
) -> Job:
    """Job owner accepts one bid; every other pending bid is rejected."""
    job = await get_job(db, job_id)
    if job.customer_id is None or job.customer_id != caller_id:
        raise Forbidden("Only the job owner can accept proposals")
    proposal = await get_proposal(db, proposal_id)
    if proposal.job_id != job_id:
        raise NotFound("Proposal not found")
    if proposal.status == ProposalStatus.ACCEPTED:
        raise Conflict("Proposal is already accepted")
    if job.status in (JobStatus.ACCEPTED, JobStatus.COMPLETED):
        raise Conflict("Job already has an accepted proposal")
    if job.status != JobStatus.APPROVED:
        raise InvalidState(f"Cannot accept proposals on a {job.status.value} job")
    _assert_transition(proposal.status, ProposalStatus.ACCEPTED)

    now = utcnow()
    # Snapshot the agreed terms; later edits to the proposal never reach the job
    claimed = await db.execute(
        update(Job)
        .where(Job.job_id == job_id, Job.status == JobStatus.APPROVED)
        .values(
            status=JobStatus.ACCEPTED,
            accepted_proposal_id=proposal.proposal_id,
            accepted_price=proposal.price,
            accepted_duration=proposal.duration_label,
            accepted_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        await db.rollback()
        raise Conflict("Another proposal was accepted for this job")

    won = await db.execute(
        update(Proposal)
        .where(Proposal.proposal_id == proposal_id, Proposal.status == ProposalStatus.PENDING)
        .values(status=ProposalStatus.ACCEPTED, accepted_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if won.rowcount != 1:
        await db.rollback()
        raise Conflict("Proposal was decided concurrently")

    # Only pending siblings; already-terminal proposals stay as they are
    await db.execute(
        update(Proposal)
        .where(
            Proposal.job_id == job_id,
            Proposal.proposal_id != proposal_id,
            Proposal.status == ProposalStatus.PENDING,
        )
        .values(status=ProposalStatus.REJECTED, rejected_at=now, updated_at=now)
    )
    await db.commit()
    await db.refresh(job)
    await db.refresh(proposal)
    logger.info("Job %s accepted proposal %s at %s", job_id, proposal_id, job.accepted_price)

    provider = await db.get(User, proposal.provider_id)
    notify(
        NotificationEvent.PROPOSAL_ACCEPTED,
        provider.email if provider is not None else None,
        {
            "recipient_name": provider.name if provider is not None else "",
            "job_title": job.title,
            "job_id": str(job.job_id),
            "price": str(job.accepted_price),
            "currency": job.currency,
            "duration": job.accepted_duration,
        },
    )
    return job


async def list_job_proposals(
    db: AsyncSession, job_id: uuid.UUID, caller_id: uuid.UUID, is_admin: bool = False
) -> list[Proposal]:
    job = await get_job(db, job_id)
    if not is_admin and (job.customer_id is None or job.customer_id != caller_id):
        raise Forbidden("Only the job owner can view its proposals")
    result = await db.execute(
        select(Proposal).where(Proposal.job_id == job_id).order_by(Proposal.created_at.asc())
    )
    return list(result.scalars().all())


async def list_provider_proposals(
    db: AsyncSession, provider_id: uuid.UUID, status: ProposalStatus | None = None
) -> list[Proposal]:
    query = select(Proposal).where(Proposal.provider_id == provider_id)
    if status is not None:
        query = query.where(Proposal.status == status)
    result = await db.execute(query.order_by(Proposal.created_at.desc()))
    return list(result.scalars().all())
