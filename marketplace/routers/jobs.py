"""Job lifecycle endpoints."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.auth.middleware import AuthenticatedUser, optional_auth, verify_request
from marketplace.auth.rate_limit import check_rate_limit
from marketplace.database import get_db
from marketplace.errors import NotFound
from marketplace.models.job import JobStatus
from marketplace.schemas.job import JobCreate, JobFilters, JobListResponse, JobResponse, JobSummary
from marketplace.schemas.proposal import ProposalCreate, ProposalResponse, RejectProposal
from marketplace.services import job as job_service
from marketplace.services import proposal as proposal_service

router = APIRouter(prefix="/jobs", tags=["jobs"])

# Visible to everyone; pending and rejected jobs only to their owner and admins
_PUBLIC_STATUSES = (JobStatus.APPROVED, JobStatus.ACCEPTED, JobStatus.COMPLETED)


@router.post("", response_model=JobResponse, status_code=201, dependencies=[Depends(check_rate_limit)])
async def create_job(
    data: JobCreate,
    auth: AuthenticatedUser | None = Depends(optional_auth),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """Post a job. Anonymous callers post as a guest with contact details."""
    job = await job_service.create_job(db, data, auth.user if auth else None)
    return JobResponse.model_validate(job)


@router.get("", response_model=JobListResponse, dependencies=[Depends(check_rate_limit)])
async def list_jobs(
    filters: Annotated[JobFilters, Query()],
    db: AsyncSession = Depends(get_db),
) -> JobListResponse:
    """Public job board: approved jobs only."""
    jobs, pagination = await job_service.list_open_jobs(db, filters)
    return JobListResponse(
        jobs=[JobResponse.model_validate(j) for j in jobs],
        pagination=pagination,
    )


@router.get("/mine", response_model=list[JobResponse], dependencies=[Depends(check_rate_limit)])
async def list_my_jobs(
    status: JobStatus | None = Query(None),
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[JobResponse]:
    jobs = await job_service.list_customer_jobs(db, auth.user_id, status)
    return [JobResponse.model_validate(j) for j in jobs]


@router.get("/{job_id}", response_model=JobResponse, dependencies=[Depends(check_rate_limit)])
async def get_job(
    job_id: uuid.UUID,
    auth: AuthenticatedUser | None = Depends(optional_auth),
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    job = await job_service.get_job(db, job_id)
    if job.status not in _PUBLIC_STATUSES:
        is_owner = auth is not None and job.customer_id == auth.user_id
        if not (is_owner or (auth is not None and auth.is_admin)):
            raise NotFound("Job not found")
    return JobResponse.model_validate(job)


@router.delete("/{job_id}", dependencies=[Depends(check_rate_limit)])
async def delete_job(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Delete a pending, approved or rejected job with its proposals and reviews."""
    await job_service.delete_job(db, job_id, auth.user_id, is_admin=auth.is_admin)
    return {"job_id": str(job_id), "deleted": True}


@router.post(
    "/{job_id}/proposals",
    response_model=ProposalResponse,
    status_code=201,
    dependencies=[Depends(check_rate_limit)],
)
async def submit_proposal(
    job_id: uuid.UUID,
    data: ProposalCreate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ProposalResponse:
    proposal = await proposal_service.submit_proposal(db, job_id, auth.user, data)
    return ProposalResponse.model_validate(proposal)


@router.get(
    "/{job_id}/proposals",
    response_model=list[ProposalResponse],
    dependencies=[Depends(check_rate_limit)],
)
async def list_job_proposals(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[ProposalResponse]:
    """All proposals on a job. Owner (or admin) only."""
    proposals = await proposal_service.list_job_proposals(
        db, job_id, auth.user_id, is_admin=auth.is_admin
    )
    return [ProposalResponse.model_validate(p) for p in proposals]


@router.put(
    "/{job_id}/proposals/{proposal_id}/accept",
    response_model=JobSummary,
    dependencies=[Depends(check_rate_limit)],
)
async def accept_proposal(
    job_id: uuid.UUID,
    proposal_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> JobSummary:
    """Accept a proposal. All other pending proposals on the job are rejected."""
    job = await proposal_service.accept_proposal(db, job_id, proposal_id, auth.user_id)
    return JobSummary.model_validate(job)


@router.put(
    "/{job_id}/proposals/{proposal_id}/reject",
    response_model=ProposalResponse,
    dependencies=[Depends(check_rate_limit)],
)
async def reject_proposal(
    job_id: uuid.UUID,
    proposal_id: uuid.UUID,
    data: RejectProposal | None = None,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ProposalResponse:
    proposal = await proposal_service.reject_proposal(
        db, job_id, proposal_id, auth.user_id, notes=data.notes if data else None
    )
    return ProposalResponse.model_validate(proposal)


@router.post("/{job_id}/deliver", response_model=JobSummary, dependencies=[Depends(check_rate_limit)])
async def deliver_job(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> JobSummary:
    """Accepted provider marks the job completed."""
    job = await job_service.deliver_job(db, job_id, auth.user_id)
    return JobSummary.model_validate(job)
