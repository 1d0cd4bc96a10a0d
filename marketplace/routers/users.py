"""Public user endpoints: profile, received reviews, completed work."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.auth.rate_limit import check_rate_limit
from marketplace.database import get_db
from marketplace.schemas.job import JobResponse
from marketplace.schemas.review import ReviewResponse
from marketplace.schemas.user import PublicProfileResponse
from marketplace.services import job as job_service
from marketplace.services import review as review_service
from marketplace.services import user as user_service

router = APIRouter(prefix="/users", tags=["users"])


@router.get(
    "/{user_id}",
    response_model=PublicProfileResponse,
    dependencies=[Depends(check_rate_limit)],
)
async def get_user_profile(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> PublicProfileResponse:
    user = await user_service.get_public_profile(db, user_id)
    return PublicProfileResponse.model_validate(user)


@router.get(
    "/{user_id}/reviews",
    response_model=list[ReviewResponse],
    dependencies=[Depends(check_rate_limit)],
)
async def get_user_reviews(
    user_id: uuid.UUID,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> list[ReviewResponse]:
    """Reviews the user received, newest first."""
    reviews = await review_service.get_reviews_for_user(db, user_id, limit, offset)
    return [ReviewResponse.model_validate(r) for r in reviews]


@router.get(
    "/{user_id}/completed-jobs",
    response_model=list[JobResponse],
    dependencies=[Depends(check_rate_limit)],
)
async def get_completed_jobs(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> list[JobResponse]:
    jobs = await job_service.list_completed_jobs(db, user_id)
    return [JobResponse.model_validate(j) for j in jobs]
