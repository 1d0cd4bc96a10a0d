"""Admin endpoints: moderation, user management, support and maintenance."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.auth.middleware import AuthenticatedUser, require_admin
from marketplace.auth.rate_limit import check_rate_limit
from marketplace.database import get_db
from marketplace.models.job import JobStatus
from marketplace.models.service_listing import ListingStatus
from marketplace.models.support import TicketCategory, TicketPriority, TicketStatus
from marketplace.models.user import UserRole
from marketplace.schemas.job import ApproveJob, JobListResponse, JobResponse, RejectJob
from marketplace.schemas.maintenance import (
    BulkRepairResponse,
    ExpireReport,
    StatsRepairResponse,
    SweepReport,
)
from marketplace.schemas.service_listing import (
    AdminListingListResponse,
    AdminListingResponse,
    ListingStatusUpdate,
)
from marketplace.schemas.support import (
    AdminTicketListResponse,
    TicketReplyCreate,
    TicketResponse,
    TicketUpdate,
)
from marketplace.schemas.user import UserListResponse, UserResponse, UserStatusUpdate
from marketplace.services import job as job_service
from marketplace.services import maintenance as maintenance_service
from marketplace.services import review as review_service
from marketplace.services import service_listing as listing_service
from marketplace.services import support as support_service
from marketplace.services import user as user_service

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(check_rate_limit)],
)


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    status: JobStatus | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    _: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> JobListResponse:
    """Every job regardless of status, e.g. ``?status=pending`` for the moderation queue."""
    jobs, pagination = await job_service.list_jobs_for_admin(db, status, page, limit)
    return JobListResponse(
        jobs=[JobResponse.model_validate(j) for j in jobs],
        pagination=pagination,
    )


@router.post("/jobs/{job_id}/approve", response_model=JobResponse)
async def approve_job(
    job_id: uuid.UUID,
    data: ApproveJob | None = None,
    _: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    job = await job_service.approve_job(db, job_id, data)
    return JobResponse.model_validate(job)


@router.post("/jobs/{job_id}/reject", response_model=JobResponse)
async def reject_job(
    job_id: uuid.UUID,
    data: RejectJob | None = None,
    _: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    job = await job_service.reject_job(db, job_id, data)
    return JobResponse.model_validate(job)


@router.delete("/reviews/{review_id}", status_code=204)
async def delete_review(
    review_id: uuid.UUID,
    _: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> None:
    await review_service.delete_review(db, review_id)


@router.delete("/users/{user_id}", status_code=204)
async def delete_user(
    user_id: uuid.UUID,
    _: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> None:
    """Remove a user with their jobs, bids, reviews, listings and tickets.

    Refused while the user has an accepted job in progress.
    """
    await user_service.delete_user(db, user_id)


@router.get("/users", response_model=UserListResponse)
async def list_users(
    role: UserRole | None = Query(None),
    is_active: bool | None = Query(None),
    search: str | None = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    _: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> UserListResponse:
    users, pagination = await user_service.list_users(db, role, is_active, search, page, limit)
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in users],
        pagination=pagination,
    )


@router.patch("/users/{user_id}/status", response_model=UserResponse)
async def set_user_status(
    user_id: uuid.UUID,
    data: UserStatusUpdate,
    _: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    """Activate or deactivate an account. Deactivated users cannot sign in."""
    user = await user_service.set_user_status(db, user_id, data.is_active)
    return UserResponse.model_validate(user)


# --- Service listings ---


@router.get("/services", response_model=AdminListingListResponse)
async def list_listings(
    status: ListingStatus | None = Query(None),
    search: str | None = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    _: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> AdminListingListResponse:
    listings, pagination, stats = await listing_service.list_listings_for_admin(
        db, status, search, page, limit
    )
    return AdminListingListResponse(
        listings=[AdminListingResponse.model_validate(s) for s in listings],
        pagination=pagination,
        stats=stats,
    )


@router.put("/services/{listing_id}/status", response_model=AdminListingResponse)
async def set_listing_status(
    listing_id: uuid.UUID,
    data: ListingStatusUpdate,
    _: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> AdminListingResponse:
    listing = await listing_service.set_listing_status(db, listing_id, data)
    return AdminListingResponse.model_validate(listing)


# --- Support ---


@router.get("/support", response_model=AdminTicketListResponse)
async def list_tickets(
    status: TicketStatus | None = Query(None),
    priority: TicketPriority | None = Query(None),
    category: TicketCategory | None = Query(None),
    search: str | None = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    _: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> AdminTicketListResponse:
    tickets, pagination, stats = await support_service.list_tickets_for_admin(
        db, status, priority, category, search, page, limit
    )
    return AdminTicketListResponse(
        tickets=[TicketResponse.model_validate(t) for t in tickets],
        pagination=pagination,
        stats=stats,
    )


@router.post("/support/{ticket_id}/respond", response_model=TicketResponse)
async def respond_to_ticket(
    ticket_id: uuid.UUID,
    data: TicketReplyCreate,
    auth: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> TicketResponse:
    ticket = await support_service.respond(db, ticket_id, auth.user_id, data)
    return TicketResponse.model_validate(ticket)


@router.patch("/support/{ticket_id}", response_model=TicketResponse)
async def update_ticket(
    ticket_id: uuid.UUID,
    data: TicketUpdate,
    _: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> TicketResponse:
    ticket = await support_service.update_ticket(db, ticket_id, data)
    return TicketResponse.model_validate(ticket)


@router.post("/maintenance/orphans", response_model=SweepReport)
async def sweep_orphans(
    _: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> SweepReport:
    return await maintenance_service.sweep_orphans(db)


@router.post("/maintenance/expire-jobs", response_model=ExpireReport)
async def expire_jobs(
    _: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> ExpireReport:
    expired, rejected = await job_service.expire_jobs(db)
    return ExpireReport(expired_jobs=expired, rejected_proposals=rejected)


@router.post("/users/{user_id}/recompute-stats", response_model=StatsRepairResponse)
async def recompute_user_stats(
    user_id: uuid.UUID,
    _: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> StatsRepairResponse:
    stats, rating = await maintenance_service.repair_user_stats(db, user_id)
    return StatsRepairResponse(user_id=user_id, stats=stats, rating=rating)


@router.post("/maintenance/recompute-stats", response_model=BulkRepairResponse)
async def recompute_all_stats(
    _: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> BulkRepairResponse:
    recomputed, failed = await maintenance_service.repair_all_stats(db)
    return BulkRepairResponse(users_recomputed=recomputed, failed=failed)
