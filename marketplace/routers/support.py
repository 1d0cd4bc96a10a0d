"""Support ticket endpoints for signed-in users."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.auth.middleware import AuthenticatedUser, verify_request
from marketplace.auth.rate_limit import check_rate_limit
from marketplace.database import get_db
from marketplace.models.support import TicketStatus
from marketplace.schemas.support import (
    SupportableJob,
    TicketCreate,
    TicketListResponse,
    TicketResponse,
)
from marketplace.services import support as support_service

router = APIRouter(prefix="/support", tags=["support"], dependencies=[Depends(check_rate_limit)])


@router.post("", response_model=TicketResponse, status_code=201)
async def open_ticket(
    data: TicketCreate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> TicketResponse:
    ticket = await support_service.open_ticket(db, auth.user, data)
    return TicketResponse.model_validate(ticket)


@router.get("/mine", response_model=TicketListResponse)
async def list_my_tickets(
    status: TicketStatus | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> TicketListResponse:
    tickets, pagination = await support_service.list_user_tickets(
        db, auth.user_id, status, page, limit
    )
    return TicketListResponse(
        tickets=[TicketResponse.model_validate(t) for t in tickets],
        pagination=pagination,
    )


@router.get("/jobs", response_model=list[SupportableJob])
async def list_supportable_jobs(
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[SupportableJob]:
    """The caller's jobs a ticket can refer to, including ones posted as a guest."""
    jobs = await support_service.list_supportable_jobs(db, auth.user)
    return [SupportableJob.model_validate(j) for j in jobs]
