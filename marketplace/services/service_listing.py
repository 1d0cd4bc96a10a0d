"""Provider service listings: creation, public board, moderation and removal."""

import logging
import math
import uuid

from sqlalchemy import and_, delete, exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import settings
from marketplace.errors import Forbidden, InvalidState, NotFound
from marketplace.models.service_listing import ListingStatus, PriceType, ServiceArea, ServiceListing
from marketplace.models.user import User, UserRole
from marketplace.schemas.job import Pagination
from marketplace.schemas.service_listing import (
    ListingCreate,
    ListingFilters,
    ListingStats,
    ListingStatusUpdate,
    ListingUpdate,
    ServiceAreaIn,
)
from marketplace.services.storage import SERVICE_COVERS, require_owned_keys, schedule_cleanup

logger = logging.getLogger(__name__)


def _build_areas(areas: list[ServiceAreaIn]) -> list[ServiceArea]:
    rows: list[ServiceArea] = []
    seen: set[str] = set()
    for area in areas:
        city = area.city.strip()
        if city in seen:
            continue
        seen.add(city)
        if not area.districts:
            rows.append(ServiceArea(city=city, district=None))
        else:
            rows.extend(ServiceArea(city=city, district=d) for d in area.districts)
    return rows


def _visible_providers():  # type: ignore[no-untyped-def]
    return select(User.user_id).where(User.is_active.is_(True), User.role == UserRole.PROVIDER)


async def get_listing(db: AsyncSession, listing_id: uuid.UUID) -> ServiceListing:
    result = await db.execute(select(ServiceListing).where(ServiceListing.listing_id == listing_id))
    listing = result.scalar_one_or_none()
    if listing is None:
        raise NotFound("Service listing not found")
    return listing


async def create_listing(db: AsyncSession, provider: User, data: ListingCreate) -> ServiceListing:
    if provider.role != UserRole.PROVIDER:
        raise Forbidden("Only providers can create service listings")
    if data.cover_image:
        require_owned_keys(provider.user_id, [data.cover_image], SERVICE_COVERS)

    listing = ServiceListing(
        listing_id=uuid.uuid4(),
        provider_id=provider.user_id,
        title=data.title,
        description=data.description,
        category=data.category,
        subcategory=(data.subcategory or "").strip() or "general",
        price_amount=data.pricing.amount,
        currency=data.pricing.currency,
        price_type=PriceType(data.pricing.price_type),
        cover_image=data.cover_image,
        status=ListingStatus.APPROVED if settings.listing_auto_approve else ListingStatus.PENDING,
        views=0,
        contact_count=0,
        areas=_build_areas(data.service_areas),
    )
    db.add(listing)
    await db.commit()
    await db.refresh(listing)
    logger.info("Listing %s created by %s (%s)", listing.listing_id, provider.user_id, listing.status.value)
    return listing


async def view_listing(
    db: AsyncSession,
    listing_id: uuid.UUID,
    viewer_id: uuid.UUID | None = None,
    is_admin: bool = False,
) -> ServiceListing:
    """Listing detail. Unapproved listings are hidden from everyone but the owner and admins.

    Views by anyone other than the owner are counted.
    """
    listing = await get_listing(db, listing_id)
    is_owner = viewer_id is not None and listing.provider_id == viewer_id
    if listing.status != ListingStatus.APPROVED and not (is_owner or is_admin):
        raise NotFound("Service listing not found")
    if not is_owner:
        await db.execute(
            update(ServiceListing)
            .where(ServiceListing.listing_id == listing_id)
            .values(views=ServiceListing.views + 1)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(listing)
    return listing


async def record_contact(db: AsyncSession, listing_id: uuid.UUID) -> ServiceListing:
    """A visitor reached out to the provider through the listing."""
    listing = await get_listing(db, listing_id)
    status = listing.status
    result = await db.execute(
        update(ServiceListing)
        .where(
            ServiceListing.listing_id == listing_id,
            ServiceListing.status == ListingStatus.APPROVED,
        )
        .values(contact_count=ServiceListing.contact_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise InvalidState(f"Listing is not open for contact (status: {status.value})")
    await db.commit()
    await db.refresh(listing)
    return listing


def _check_owner(listing: ServiceListing, caller_id: uuid.UUID) -> None:
    if listing.provider_id != caller_id:
        raise Forbidden("Only the listing owner can change it")


async def update_listing(
    db: AsyncSession, listing_id: uuid.UUID, caller_id: uuid.UUID, data: ListingUpdate
) -> ServiceListing:
    listing = await get_listing(db, listing_id)
    _check_owner(listing, caller_id)

    changes = data.model_dump(exclude_unset=True, exclude={"pricing", "service_areas"})
    if "subcategory" in changes:
        changes["subcategory"] = (changes["subcategory"] or "").strip() or "general"
    for field, value in changes.items():
        if value is not None:
            setattr(listing, field, value)
    if data.pricing is not None:
        listing.price_amount = data.pricing.amount
        listing.currency = data.pricing.currency
        listing.price_type = PriceType(data.pricing.price_type)
    if data.service_areas is not None:
        listing.areas = _build_areas(data.service_areas)

    await db.commit()
    await db.refresh(listing)
    return listing


async def set_cover_image(
    db: AsyncSession, listing_id: uuid.UUID, caller_id: uuid.UUID, key: str | None
) -> ServiceListing:
    """Replace or clear the cover. The previous image is removed after the commit."""
    listing = await get_listing(db, listing_id)
    _check_owner(listing, caller_id)
    if key:
        require_owned_keys(caller_id, [key], SERVICE_COVERS)

    previous = listing.cover_image
    listing.cover_image = key
    await db.commit()
    await db.refresh(listing)
    if previous and previous != key:
        schedule_cleanup([previous], f"Listing {listing_id} cover")
    return listing


async def delete_listings(db: AsyncSession, listing_ids: list[uuid.UUID]) -> int:
    """Bulk delete without committing. Returns how many listings were still there."""
    if not listing_ids:
        return 0
    await db.execute(delete(ServiceArea).where(ServiceArea.listing_id.in_(listing_ids)))
    result = await db.execute(
        delete(ServiceListing).where(ServiceListing.listing_id.in_(listing_ids))
    )
    return result.rowcount or 0


async def delete_listing(
    db: AsyncSession, listing_id: uuid.UUID, caller_id: uuid.UUID, is_admin: bool = False
) -> None:
    listing = await get_listing(db, listing_id)
    if not is_admin and listing.provider_id != caller_id:
        raise Forbidden("Only the listing owner or an admin can delete this listing")
    cover = listing.cover_image
    await delete_listings(db, [listing_id])
    await db.commit()
    logger.info("Listing %s deleted by %s", listing_id, caller_id)
    if cover:
        schedule_cleanup([cover], f"Listing {listing_id} cover")


async def set_listing_status(
    db: AsyncSession, listing_id: uuid.UUID, data: ListingStatusUpdate
) -> ServiceListing:
    """Admin moderation. Any status can be set from any other."""
    listing = await get_listing(db, listing_id)
    listing.status = ListingStatus(data.status)
    if data.admin_notes is not None:
        listing.admin_notes = data.admin_notes
    await db.commit()
    await db.refresh(listing)
    logger.info("Listing %s set to %s", listing_id, listing.status.value)
    return listing


# --- Queries ---


_SORTS = {
    "newest": (ServiceListing.created_at.desc(),),
    "oldest": (ServiceListing.created_at.asc(),),
    "price_low": (ServiceListing.price_amount.asc(), ServiceListing.created_at.desc()),
    "price_high": (ServiceListing.price_amount.desc(), ServiceListing.created_at.desc()),
    "most_viewed": (ServiceListing.views.desc(), ServiceListing.created_at.desc()),
}


async def _paginate(db: AsyncSession, query, page: int, limit: int) -> tuple[list[ServiceListing], Pagination]:  # type: ignore[no-untyped-def]
    total = (
        await db.execute(select(func.count()).select_from(query.order_by(None).subquery()))
    ).scalar_one()
    result = await db.execute(query.limit(limit).offset((page - 1) * limit))
    pages = math.ceil(total / limit) if total else 0
    return list(result.scalars().all()), Pagination(page=page, limit=limit, total=total, pages=pages)


async def list_public_listings(
    db: AsyncSession, filters: ListingFilters
) -> tuple[list[ServiceListing], Pagination]:
    """Public board: approved listings of active providers."""
    query = select(ServiceListing).where(
        ServiceListing.status == ListingStatus.APPROVED,
        ServiceListing.provider_id.in_(_visible_providers()),
    )
    if filters.category:
        query = query.where(ServiceListing.category == filters.category)
    if filters.city or filters.district:
        area = [ServiceArea.listing_id == ServiceListing.listing_id]
        if filters.city:
            area.append(ServiceArea.city == filters.city)
        if filters.district:
            # A whole-city row covers every district, but only when a city was given
            if filters.city:
                area.append(or_(ServiceArea.district == filters.district, ServiceArea.district.is_(None)))
            else:
                area.append(ServiceArea.district == filters.district)
        query = query.where(exists().where(and_(*area)))
    if filters.search:
        pattern = f"%{filters.search.strip()}%"
        query = query.where(
            or_(ServiceListing.title.ilike(pattern), ServiceListing.description.ilike(pattern))
        )
    if filters.price_min is not None:
        query = query.where(ServiceListing.price_amount >= filters.price_min)
    if filters.price_max is not None:
        query = query.where(ServiceListing.price_amount <= filters.price_max)
    query = query.order_by(*_SORTS[filters.sort_by])
    return await _paginate(db, query, filters.page, filters.limit)


async def list_provider_listings(db: AsyncSession, provider_id: uuid.UUID) -> list[ServiceListing]:
    result = await db.execute(
        select(ServiceListing)
        .where(ServiceListing.provider_id == provider_id)
        .order_by(ServiceListing.created_at.desc())
    )
    return list(result.scalars().all())


async def list_listings_for_admin(
    db: AsyncSession,
    status: ListingStatus | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[ServiceListing], Pagination, ListingStats]:
    query = select(ServiceListing)
    if status is not None:
        query = query.where(ServiceListing.status == status)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(
            or_(ServiceListing.title.ilike(pattern), ServiceListing.description.ilike(pattern))
        )
    listings, pagination = await _paginate(
        db, query.order_by(ServiceListing.created_at.desc()), page, limit
    )

    counts = await db.execute(
        select(ServiceListing.status, func.count()).group_by(ServiceListing.status)
    )
    stats = ListingStats(**{row_status.value: n for row_status, n in counts.all()})
    totals = (
        await db.execute(
            select(
                func.coalesce(func.sum(ServiceListing.views), 0),
                func.coalesce(func.sum(ServiceListing.contact_count), 0),
            )
        )
    ).one()
    stats.total_views, stats.total_contacts = int(totals[0]), int(totals[1])
    return listings, pagination, stats
