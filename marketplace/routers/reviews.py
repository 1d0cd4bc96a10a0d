"""Review endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.auth.middleware import AuthenticatedUser, verify_request
from marketplace.auth.rate_limit import check_rate_limit
from marketplace.database import get_db
from marketplace.schemas.review import ReviewCreate, ReviewResponse
from marketplace.services import review as review_service

router = APIRouter(tags=["reviews"])


@router.post(
    "/jobs/{job_id}/reviews",
    response_model=ReviewResponse,
    dependencies=[Depends(check_rate_limit)],
)
async def create_review(
    job_id: uuid.UUID,
    data: ReviewCreate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ReviewResponse:
    """Review the other party of a completed job."""
    review = await review_service.create_review(db, job_id, auth.user_id, data)
    return ReviewResponse.model_validate(review)


@router.get(
    "/jobs/{job_id}/reviews",
    response_model=list[ReviewResponse],
    dependencies=[Depends(check_rate_limit)],
)
async def get_job_reviews(
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> list[ReviewResponse]:
    reviews = await review_service.get_reviews_for_job(db, job_id)
    return [ReviewResponse.model_validate(r) for r in reviews]
