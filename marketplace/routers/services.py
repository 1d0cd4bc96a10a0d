"""Provider service listing endpoints."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.auth.middleware import AuthenticatedUser, optional_auth, verify_request
from marketplace.auth.rate_limit import check_rate_limit
from marketplace.database import get_db
from marketplace.schemas.service_listing import (
    ContactResponse,
    CoverImageUpdate,
    ListingCreate,
    ListingFilters,
    ListingListResponse,
    ListingResponse,
    ListingUpdate,
)
from marketplace.services import service_listing as listing_service

router = APIRouter(prefix="/services", tags=["services"], dependencies=[Depends(check_rate_limit)])


@router.post("", response_model=ListingResponse, status_code=201)
async def create_listing(
    data: ListingCreate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ListingResponse:
    listing = await listing_service.create_listing(db, auth.user, data)
    return ListingResponse.model_validate(listing)


@router.get("", response_model=ListingListResponse)
async def list_listings(
    filters: Annotated[ListingFilters, Query()],
    db: AsyncSession = Depends(get_db),
) -> ListingListResponse:
    listings, pagination = await listing_service.list_public_listings(db, filters)
    return ListingListResponse(
        listings=[ListingResponse.model_validate(s) for s in listings],
        pagination=pagination,
    )


@router.get("/mine", response_model=list[ListingResponse])
async def list_my_listings(
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[ListingResponse]:
    listings = await listing_service.list_provider_listings(db, auth.user_id)
    return [ListingResponse.model_validate(s) for s in listings]


@router.get("/{listing_id}", response_model=ListingResponse)
async def get_listing(
    listing_id: uuid.UUID,
    auth: AuthenticatedUser | None = Depends(optional_auth),
    db: AsyncSession = Depends(get_db),
) -> ListingResponse:
    listing = await listing_service.view_listing(
        db,
        listing_id,
        viewer_id=auth.user_id if auth else None,
        is_admin=auth is not None and auth.is_admin,
    )
    return ListingResponse.model_validate(listing)


@router.put("/{listing_id}", response_model=ListingResponse)
async def update_listing(
    listing_id: uuid.UUID,
    data: ListingUpdate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ListingResponse:
    listing = await listing_service.update_listing(db, listing_id, auth.user_id, data)
    return ListingResponse.model_validate(listing)


@router.put("/{listing_id}/cover", response_model=ListingResponse)
async def set_cover_image(
    listing_id: uuid.UUID,
    data: CoverImageUpdate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ListingResponse:
    """Replace the cover with a key from ``/uploads/service-covers``, or clear it with null."""
    listing = await listing_service.set_cover_image(db, listing_id, auth.user_id, data.cover_image)
    return ListingResponse.model_validate(listing)


@router.post("/{listing_id}/contact", response_model=ContactResponse)
async def contact_provider(
    listing_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> ContactResponse:
    listing = await listing_service.record_contact(db, listing_id)
    return ContactResponse(listing_id=listing.listing_id, contact_count=listing.contact_count)


@router.delete("/{listing_id}", status_code=204)
async def delete_listing(
    listing_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> None:
    await listing_service.delete_listing(db, listing_id, auth.user_id, is_admin=auth.is_admin)
