"""Maintenance: orphan sweep and stats repair.

These run outside the request path (admin actions). The sweep works from a
snapshot read and deletes by id, so rows that vanish in between are simply
counted as already gone; it is safe next to live traffic.
"""

import logging
import uuid

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.errors import NotFound
from marketplace.models.job import Job
from marketplace.models.proposal import Proposal
from marketplace.models.review import Review
from marketplace.models.service_listing import ServiceListing
from marketplace.models.support import SupportTicket
from marketplace.models.user import User
from marketplace.schemas.maintenance import OrphanRecord, OrphanSection, SweepReport
from marketplace.services import stats
from marketplace.services.proposal import sync_proposal_count
from marketplace.services.service_listing import delete_listings
from marketplace.services.storage import schedule_cleanup
from marketplace.services.support import delete_tickets

logger = logging.getLogger(__name__)


async def _existing_ids(db: AsyncSession, column) -> set[uuid.UUID]:  # type: ignore[no-untyped-def]
    result = await db.execute(select(column))
    return set(result.scalars().all())


async def _delete_ids(db: AsyncSession, model, column, ids: list[uuid.UUID]) -> int:  # type: ignore[no-untyped-def]
    """Delete by primary key; returns how many rows were still there."""
    if not ids:
        return 0
    result = await db.execute(delete(model).where(column.in_(ids)))
    return result.rowcount or 0


def _settle(section: OrphanSection, deleted: int) -> None:
    section.deleted = deleted
    section.already_gone = len(section.orphans) - deleted


async def sweep_orphans(db: AsyncSession) -> SweepReport:
    """Delete proposals, reviews, listings and tickets whose job or users no longer exist.

    The accepted proposal of a live job is never removed, even when its
    provider is gone: the job's acceptance snapshot points at it. Such rows
    are reported under ``retained``.
    """
    report = SweepReport()
    job_ids = await _existing_ids(db, Job.job_id)
    user_ids = await _existing_ids(db, User.user_id)
    contract_ids = await _existing_ids(db, Job.accepted_proposal_id)

    proposals = (
        await db.execute(select(Proposal.proposal_id, Proposal.job_id, Proposal.provider_id))
    ).all()
    report.proposals.checked = len(proposals)
    touched_jobs: set[uuid.UUID] = set()
    affected_users: set[uuid.UUID] = set()
    for proposal_id, job_id, provider_id in proposals:
        if job_id not in job_ids:
            reason = "job_deleted"
        elif provider_id not in user_ids:
            reason = "provider_deleted"
            if proposal_id in contract_ids:
                report.proposals.retained.append(
                    OrphanRecord(id=proposal_id, job_id=job_id, reason=reason)
                )
                continue
        else:
            continue
        report.proposals.orphans.append(OrphanRecord(id=proposal_id, job_id=job_id, reason=reason))
        touched_jobs.add(job_id)
        affected_users.add(provider_id)

    reviews = (
        await db.execute(
            select(Review.review_id, Review.job_id, Review.reviewer_id, Review.reviewed_id)
        )
    ).all()
    report.reviews.checked = len(reviews)
    for review_id, job_id, reviewer_id, reviewed_id in reviews:
        if job_id not in job_ids:
            reason = "job_deleted"
        elif reviewer_id not in user_ids:
            reason = "reviewer_deleted"
        elif reviewed_id not in user_ids:
            reason = "reviewed_deleted"
        else:
            continue
        report.reviews.orphans.append(OrphanRecord(id=review_id, job_id=job_id, reason=reason))
        affected_users.update((reviewer_id, reviewed_id))

    listings = (
        await db.execute(
            select(ServiceListing.listing_id, ServiceListing.provider_id, ServiceListing.cover_image)
        )
    ).all()
    report.listings.checked = len(listings)
    covers: list[str] = []
    for listing_id, provider_id, cover_image in listings:
        if provider_id not in user_ids:
            report.listings.orphans.append(OrphanRecord(id=listing_id, reason="provider_deleted"))
            if cover_image:
                covers.append(cover_image)

    tickets = (await db.execute(select(SupportTicket.ticket_id, SupportTicket.user_id))).all()
    report.tickets.checked = len(tickets)
    for ticket_id, user_id in tickets:
        if user_id not in user_ids:
            report.tickets.orphans.append(OrphanRecord(id=ticket_id, reason="user_deleted"))

    _settle(
        report.proposals,
        await _delete_ids(
            db, Proposal, Proposal.proposal_id, [o.id for o in report.proposals.orphans]
        ),
    )
    _settle(
        report.reviews,
        await _delete_ids(db, Review, Review.review_id, [o.id for o in report.reviews.orphans]),
    )
    _settle(report.listings, await delete_listings(db, [o.id for o in report.listings.orphans]))
    _settle(report.tickets, await delete_tickets(db, [o.id for o in report.tickets.orphans]))

    # Counts of surviving jobs that lost proposals
    for job_id in touched_jobs & job_ids:
        await sync_proposal_count(db, job_id)
        report.jobs_resynced += 1
    await db.commit()

    for record in report.proposals.retained:
        logger.warning(
            "Proposal %s on job %s kept: accepted contract of a deleted provider",
            record.id, record.job_id,
        )
    schedule_cleanup(covers, "Orphaned listing covers")

    survivors = affected_users & user_ids
    for job_id in touched_jobs & job_ids:
        job = await db.get(Job, job_id)
        if job is not None and job.customer_id is not None:
            survivors.add(job.customer_id)
    await stats.refresh_after_event(db, survivors)
    report.users_recomputed = len(survivors)

    logger.info("Orphan sweep: %s", report.summary)
    return report


async def repair_user_stats(db: AsyncSession, user_id: uuid.UUID):  # type: ignore[no-untyped-def]
    """Recompute one user's stats and rating on demand."""
    result = await stats.recompute_user(db, user_id)
    if result is None:
        raise NotFound("User not found")
    return result


async def repair_all_stats(db: AsyncSession) -> tuple[int, int]:
    """Recompute every user. Returns (recomputed, failed); failures are logged."""
    user_ids = sorted(await _existing_ids(db, User.user_id))
    failed = 0
    for user_id in user_ids:
        try:
            await stats.recompute_user(db, user_id)
        except Exception:
            await db.rollback()
            failed += 1
            logger.exception("Stats repair failed for user %s", user_id)
    logger.info("Stats repair: %d users, %d failed", len(user_ids) - failed, failed)
    return len(user_ids) - failed, failed
