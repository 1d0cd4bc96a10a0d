"""Provider-side proposal endpoints."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.auth.middleware import AuthenticatedUser, verify_request
from marketplace.auth.rate_limit import check_rate_limit
from marketplace.database import get_db
from marketplace.models.proposal import ProposalStatus
from marketplace.schemas.proposal import ProposalResponse, ProposalUpdate
from marketplace.services import proposal as proposal_service

router = APIRouter(prefix="/proposals", tags=["proposals"])


@router.get("/mine", response_model=list[ProposalResponse], dependencies=[Depends(check_rate_limit)])
async def list_my_proposals(
    status: ProposalStatus | None = Query(None),
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[ProposalResponse]:
    proposals = await proposal_service.list_provider_proposals(db, auth.user_id, status)
    return [ProposalResponse.model_validate(p) for p in proposals]


@router.patch("/{proposal_id}", response_model=ProposalResponse, dependencies=[Depends(check_rate_limit)])
async def update_proposal(
    proposal_id: uuid.UUID,
    data: ProposalUpdate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ProposalResponse:
    """Edit a pending proposal while its job is still open."""
    proposal = await proposal_service.update_proposal(db, proposal_id, auth.user_id, data)
    return ProposalResponse.model_validate(proposal)


@router.delete("/{proposal_id}", status_code=204, dependencies=[Depends(check_rate_limit)])
async def withdraw_proposal(
    proposal_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> None:
    await proposal_service.withdraw_proposal(db, proposal_id, auth.user_id)
