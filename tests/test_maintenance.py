"""Tests for the orphan sweep, stats repair and user removal."""

import uuid
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.errors import Forbidden, NotFound
from marketplace.models.job import Job, JobStatus
from marketplace.models.proposal import DurationUnit, Proposal, ProposalStatus
from marketplace.models.review import Review, ReviewerType
from marketplace.models.service_listing import ServiceArea, ServiceListing
from marketplace.models.support import SupportTicket
from marketplace.models.user import User, UserRole
from marketplace.schemas.review import ReviewCreate
from marketplace.schemas.support import TicketCreate
from marketplace.services import job as job_service
from marketplace.services import maintenance
from marketplace.services import proposal as proposal_service
from marketplace.services import review as review_service
from marketplace.services import storage
from marketplace.services import support as support_service
from marketplace.services import user as user_service
from marketplace.services.storage import SERVICE_COVERS, attachment_key
from tests.conftest import (
    InMemoryBlobStore,
    auth_headers,
    make_completed_job,
    make_job,
    make_listing,
    make_proposal,
    make_user,
    reload,
)


def _stray_proposal(job_id: uuid.UUID, provider_id: uuid.UUID) -> Proposal:
    return Proposal(
        proposal_id=uuid.uuid4(),
        job_id=job_id,
        provider_id=provider_id,
        description="left behind",
        price=Decimal("100"),
        duration_value=1,
        duration_unit=DurationUnit.DAY,
        status=ProposalStatus.PENDING,
    )


def _stray_review(job_id: uuid.UUID, reviewer_id: uuid.UUID, reviewed_id: uuid.UUID) -> Review:
    return Review(
        review_id=uuid.uuid4(),
        job_id=job_id,
        reviewer_id=reviewer_id,
        reviewed_id=reviewed_id,
        reviewer_type=ReviewerType.CUSTOMER,
        rating=1,
        comment="left behind",
    )


async def _count(db: AsyncSession, model) -> int:  # type: ignore[no-untyped-def]
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


# --- Orphan sweep ---


@pytest.mark.asyncio
async def test_sweep_removes_orphans(db_session: AsyncSession) -> None:
    customer = await make_user(db_session)
    provider = await make_user(db_session, UserRole.PROVIDER)
    job = await make_job(db_session, customer)
    kept = await make_proposal(db_session, job, provider)

    gone_job = _stray_proposal(uuid.uuid4(), provider.user_id)
    gone_provider = _stray_proposal(job.job_id, uuid.uuid4())
    gone_reviewer = _stray_review(job.job_id, uuid.uuid4(), provider.user_id)
    gone_reviewed = _stray_review(job.job_id, customer.user_id, uuid.uuid4())
    db_session.add_all([gone_job, gone_provider, gone_reviewer, gone_reviewed])
    await db_session.commit()

    report = await maintenance.sweep_orphans(db_session)

    assert report.proposals.checked == 3
    assert report.proposals.deleted == 2
    reasons = {o.id: o.reason for o in report.proposals.orphans}
    assert reasons == {
        gone_job.proposal_id: "job_deleted",
        gone_provider.proposal_id: "provider_deleted",
    }
    assert report.reviews.deleted == 2
    reasons = {o.id: o.reason for o in report.reviews.orphans}
    assert reasons == {
        gone_reviewer.review_id: "reviewer_deleted",
        gone_reviewed.review_id: "reviewed_deleted",
    }
    assert report.total_deleted == 4
    assert report.jobs_resynced == 1

    remaining = (await db_session.execute(select(Proposal.proposal_id))).scalars().all()
    assert remaining == [kept.proposal_id]
    assert await _count(db_session, Review) == 0
    assert (await reload(db_session, Job, job.job_id)).proposal_count == 1


@pytest.mark.asyncio
async def test_sweep_on_clean_data_is_noop(db_session: AsyncSession) -> None:
    customer = await make_user(db_session)
    provider = await make_user(db_session, UserRole.PROVIDER)
    await make_completed_job(db_session, customer, provider)

    report = await maintenance.sweep_orphans(db_session)
    assert report.total_deleted == 0
    assert report.proposals.checked == 1
    assert report.users_recomputed == 0


@pytest.mark.asyncio
async def test_sweep_endpoint(client: AsyncClient, db_session: AsyncSession) -> None:
    admin = await make_user(db_session, UserRole.ADMIN)
    customer = await make_user(db_session)
    db_session.add(_stray_proposal(uuid.uuid4(), uuid.uuid4()))
    await db_session.commit()

    resp = await client.post("/admin/maintenance/orphans", headers=auth_headers(customer))
    assert resp.status_code == 403

    resp = await client.post("/admin/maintenance/orphans", headers=auth_headers(admin))
    assert resp.status_code == 200
    body = resp.json()
    assert body["proposals"]["deleted"] == 1
    assert body["proposals"]["orphans"][0]["reason"] == "job_deleted"
    assert body["reviews"] == {
        "checked": 0, "deleted": 0, "already_gone": 0, "orphans": [], "retained": [],
    }
    assert body["listings"]["checked"] == 0
    assert body["tickets"]["checked"] == 0


# --- Stats repair ---


@pytest.mark.asyncio
async def test_recompute_single_user_endpoint(client: AsyncClient, db_session: AsyncSession) -> None:
    admin = await make_user(db_session, UserRole.ADMIN)
    customer = await make_user(db_session)
    provider = await make_user(db_session, UserRole.PROVIDER)
    job = await make_completed_job(db_session, customer, provider, price="4000")
    await review_service.create_review(
        db_session, job.job_id, customer.user_id, ReviewCreate(rating=5, comment="Great")
    )

    resp = await client.post(
        f"/admin/users/{provider.user_id}/recompute-stats", headers=auth_headers(admin)
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["user_id"] == str(provider.user_id)
    assert body["stats"]["completed_jobs"] == 1
    assert Decimal(body["stats"]["total_earnings"]) == Decimal("4000")
    assert Decimal(body["rating"]["average"]) == Decimal("5")
    assert body["rating"]["count"] == 1

    resp = await client.post(f"/admin/users/{uuid.uuid4()}/recompute-stats", headers=auth_headers(admin))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_recompute_all(client: AsyncClient, db_session: AsyncSession) -> None:
    admin = await make_user(db_session, UserRole.ADMIN)
    await make_user(db_session)
    await make_user(db_session, UserRole.PROVIDER)

    resp = await client.post("/admin/maintenance/recompute-stats", headers=auth_headers(admin))
    assert resp.status_code == 200
    assert resp.json() == {"users_recomputed": 3, "failed": 0}


@pytest.mark.asyncio
async def test_repair_unknown_user(db_session: AsyncSession) -> None:
    with pytest.raises(NotFound):
        await maintenance.repair_user_stats(db_session, uuid.uuid4())


# --- User removal ---


@pytest.mark.asyncio
async def test_delete_provider_cascades(db_session: AsyncSession) -> None:
    customer = await make_user(db_session)
    provider = await make_user(db_session, UserRole.PROVIDER)
    other = await make_user(db_session, UserRole.PROVIDER)
    done = await make_completed_job(db_session, customer, provider, price="1500")
    await review_service.create_review(
        db_session, done.job_id, customer.user_id, ReviewCreate(rating=5, comment="Great")
    )
    open_job = await make_job(db_session, customer)
    await make_proposal(db_session, open_job, provider)
    await make_proposal(db_session, open_job, other)

    await user_service.delete_user(db_session, provider.user_id)

    assert await db_session.get(User, provider.user_id, populate_existing=True) is None
    # Only the accepted bid of the finished contract is kept
    leftover = await db_session.execute(
        select(Proposal.proposal_id).where(Proposal.provider_id == provider.user_id)
    )
    assert leftover.scalars().all() == [done.accepted_proposal_id]
    assert (await reload(db_session, Job, done.job_id)).accepted_proposal_id == done.accepted_proposal_id
    assert await _count(db_session, Review) == 0
    assert (await reload(db_session, Job, open_job.job_id)).proposal_count == 1

    # The customer's record no longer counts the removed provider's review
    fresh = await reload(db_session, User, customer.user_id)
    assert fresh.reviews_given == 0


@pytest.mark.asyncio
async def test_delete_customer_removes_jobs(client: AsyncClient, db_session: AsyncSession) -> None:
    admin = await make_user(db_session, UserRole.ADMIN)
    customer = await make_user(db_session)
    provider = await make_user(db_session, UserRole.PROVIDER)
    job = await make_job(db_session, customer)
    await make_proposal(db_session, job, provider)

    resp = await client.delete(f"/admin/users/{customer.user_id}", headers=auth_headers(admin))
    assert resp.status_code == 204
    assert await _count(db_session, Job) == 0
    assert await _count(db_session, Proposal) == 0


@pytest.mark.asyncio
async def test_admin_cannot_be_deleted(db_session: AsyncSession) -> None:
    admin = await make_user(db_session, UserRole.ADMIN)
    with pytest.raises(Forbidden):
        await user_service.delete_user(db_session, admin.user_id)


@pytest.mark.asyncio
async def test_delete_refused_while_work_in_progress(client: AsyncClient, db_session: AsyncSession) -> None:
    admin = await make_user(db_session, UserRole.ADMIN)
    customer = await make_user(db_session)
    provider = await make_user(db_session, UserRole.PROVIDER)
    job = await make_job(db_session, customer)
    proposal = await make_proposal(db_session, job, provider)
    await proposal_service.accept_proposal(db_session, job.job_id, proposal.proposal_id, customer.user_id)

    for user in (provider, customer):
        resp = await client.delete(f"/admin/users/{user.user_id}", headers=auth_headers(admin))
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_state"

    # The contract is intact and can still be delivered
    assert await reload(db_session, Proposal, proposal.proposal_id) is not None
    delivered = await job_service.deliver_job(db_session, job.job_id, provider.user_id)
    assert delivered.status == JobStatus.COMPLETED
    await user_service.delete_user(db_session, provider.user_id)


@pytest.mark.asyncio
async def test_delete_user_removes_listings_and_tickets(
    db_session: AsyncSession, blob_store: InMemoryBlobStore
) -> None:
    provider = await make_user(db_session, UserRole.PROVIDER)
    cover = attachment_key(str(provider.user_id), "cover.png", SERVICE_COVERS)
    await blob_store.upload(cover, b"png", "image/png")
    await make_listing(db_session, provider, cover_image=cover)
    await support_service.open_ticket(
        db_session, provider, TicketCreate(subject="Payout", message="Where is my payout?")
    )

    await user_service.delete_user(db_session, provider.user_id)
    await storage.drain()

    assert await _count(db_session, ServiceListing) == 0
    assert await _count(db_session, ServiceArea) == 0
    assert await _count(db_session, SupportTicket) == 0
    assert blob_store.deleted == [cover]


@pytest.mark.asyncio
async def test_sweep_keeps_accepted_proposal_of_live_job(db_session: AsyncSession) -> None:
    customer = await make_user(db_session)
    provider = await make_user(db_session, UserRole.PROVIDER)
    job = await make_job(db_session, customer)
    proposal = await make_proposal(db_session, job, provider)
    await proposal_service.accept_proposal(db_session, job.job_id, proposal.proposal_id, customer.user_id)
    # Provider row vanishes outside the service layer
    await db_session.delete(await reload(db_session, User, provider.user_id))
    await db_session.commit()

    report = await maintenance.sweep_orphans(db_session)

    assert report.proposals.deleted == 0
    assert report.proposals.orphans == []
    assert [(r.id, r.reason) for r in report.proposals.retained] == [
        (proposal.proposal_id, "provider_deleted")
    ]
    assert await reload(db_session, Proposal, proposal.proposal_id) is not None
    assert (await reload(db_session, Job, job.job_id)).accepted_proposal_id == proposal.proposal_id


@pytest.mark.asyncio
async def test_sweep_counts_rows_deleted_concurrently(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    monkeypatch,  # type: ignore[no-untyped-def]
) -> None:
    first = _stray_proposal(uuid.uuid4(), uuid.uuid4())
    second = _stray_proposal(uuid.uuid4(), uuid.uuid4())
    db_session.add_all([first, second])
    await db_session.commit()
    real_delete = maintenance._delete_ids

    async def delete_after_competitor(db, model, column, ids):  # type: ignore[no-untyped-def]
        if model is Proposal:
            async with session_factory() as other:
                await other.execute(delete(Proposal).where(Proposal.proposal_id == first.proposal_id))
                await other.commit()
        return await real_delete(db, model, column, ids)

    monkeypatch.setattr(maintenance, "_delete_ids", delete_after_competitor)
    report = await maintenance.sweep_orphans(db_session)

    assert len(report.proposals.orphans) == 2
    assert report.proposals.deleted == 1
    assert report.proposals.already_gone == 1
    assert "total deleted=1" in report.summary
    assert await _count(db_session, Proposal) == 0


@pytest.mark.asyncio
async def test_sweep_removes_listings_and_tickets_of_missing_users(
    db_session: AsyncSession, blob_store: InMemoryBlobStore
) -> None:
    provider = await make_user(db_session, UserRole.PROVIDER)
    keeper = await make_user(db_session, UserRole.PROVIDER)
    cover = attachment_key(str(provider.user_id), "cover.png", SERVICE_COVERS)
    listing = await make_listing(db_session, provider, cover_image=cover)
    kept = await make_listing(db_session, keeper)
    ticket = await support_service.open_ticket(
        db_session, provider, TicketCreate(subject="Help", message="Cannot log in")
    )
    await db_session.delete(await reload(db_session, User, provider.user_id))
    await db_session.commit()

    report = await maintenance.sweep_orphans(db_session)
    await storage.drain()

    assert [(o.id, o.reason) for o in report.listings.orphans] == [(listing.listing_id, "provider_deleted")]
    assert report.listings.deleted == 1
    assert [(o.id, o.reason) for o in report.tickets.orphans] == [(ticket.ticket_id, "user_deleted")]
    assert report.tickets.deleted == 1
    remaining = (await db_session.execute(select(ServiceListing.listing_id))).scalars().all()
    assert remaining == [kept.listing_id]
    assert blob_store.deleted == [cover]
