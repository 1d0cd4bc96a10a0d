"""User service: registration, login, profile management, account status and admin removal."""

import logging
import math
import uuid

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database import utcnow
from marketplace.errors import (
    Conflict,
    Forbidden,
    InvalidState,
    NotFound,
    Unauthorized,
    ValidationFailed,
)
from marketplace.models.job import Job, JobStatus
from marketplace.models.proposal import Proposal, ProposalStatus
from marketplace.models.review import Review
from marketplace.models.service_listing import ServiceListing
from marketplace.models.support import SupportTicket
from marketplace.models.user import User, UserRole
from marketplace.schemas.job import Pagination
from marketplace.schemas.user import PROVIDER_ONLY_FIELDS, UserLogin, UserRegister, UserUpdate
from marketplace.services import stats
from marketplace.services.job import detach_tickets
from marketplace.services.proposal import sync_proposal_count
from marketplace.services.service_listing import delete_listings
from marketplace.services.storage import schedule_cleanup
from marketplace.services.support import delete_tickets
from marketplace.utils.crypto import create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    result = await db.execute(select(User).where(User.user_id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("User not found")
    return user


async def register(
    db: AsyncSession, data: UserRegister, client_ip: str | None = None
) -> tuple[User, str]:
    """Create a customer or provider account and issue its first token."""
    existing = await db.execute(select(User.user_id).where(User.email == data.email))
    if existing.scalar_one_or_none() is not None:
        raise Conflict("An account with this email already exists")

    now = utcnow()
    user = User(
        user_id=uuid.uuid4(),
        name=data.name.strip(),
        email=data.email,
        password_hash=hash_password(data.password),
        phone=data.phone,
        role=UserRole(data.role),
        kvkk_accepted_at=now,
        kvkk_ip=client_ip,
        last_login_at=now,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("An account with this email already exists")
    await db.refresh(user)
    logger.info("Registered %s %s", user.role.value, user.user_id)
    return user, create_access_token(user.user_id, user.role.value)


async def login(db: AsyncSession, data: UserLogin) -> tuple[User, str]:
    result = await db.execute(select(User).where(User.email == data.email.strip().lower()))
    user = result.scalar_one_or_none()
    if user is None or not verify_password(data.password, user.password_hash):
        raise Unauthorized("Invalid email or password")
    if not user.is_active:
        raise Forbidden("Account is disabled")

    user.last_login_at = utcnow()
    await db.commit()
    await db.refresh(user)
    return user, create_access_token(user.user_id, user.role.value)


async def update_profile(db: AsyncSession, user: User, data: UserUpdate) -> User:
    """Apply a whitelisted partial update. Provider-only fields are refused for customers."""
    changes = data.model_dump(exclude_unset=True)
    forbidden = PROVIDER_ONLY_FIELDS & changes.keys()
    if forbidden and user.role != UserRole.PROVIDER:
        raise ValidationFailed(f"Only providers can set: {', '.join(sorted(forbidden))}")
    if "name" in changes and changes["name"] is None:
        raise ValidationFailed("Name cannot be empty")

    for field, value in changes.items():
        setattr(user, field, value)
    await db.commit()
    await db.refresh(user)
    return user


async def change_role(db: AsyncSession, user: User, role: str) -> tuple[User, str]:
    """Switch between customer and provider. Admins keep their role."""
    if user.role == UserRole.ADMIN:
        raise Forbidden("Admin accounts cannot switch role")
    user.role = UserRole(role)
    await db.commit()
    await db.refresh(user)
    logger.info("User %s switched role to %s", user.user_id, user.role.value)
    return user, create_access_token(user.user_id, user.role.value)


async def get_public_profile(db: AsyncSession, user_id: uuid.UUID) -> User:
    user = await get_user(db, user_id)
    if not user.is_active:
        raise NotFound("User not found")
    return user


async def list_users(
    db: AsyncSession,
    role: UserRole | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[User], Pagination]:
    """Admin user directory, newest first."""
    query = select(User)
    if role is not None:
        query = query.where(User.role == role)
    if is_active is not None:
        query = query.where(User.is_active == is_active)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

    total = (
        await db.execute(select(func.count()).select_from(query.subquery()))
    ).scalar_one()
    result = await db.execute(
        query.order_by(User.created_at.desc()).limit(limit).offset((page - 1) * limit)
    )
    pages = math.ceil(total / limit) if total else 0
    return list(result.scalars().all()), Pagination(page=page, limit=limit, total=total, pages=pages)


async def set_user_status(db: AsyncSession, user_id: uuid.UUID, is_active: bool) -> User:
    """Admin enables or disables an account. Disabled accounts cannot log in or act."""
    user = await get_user(db, user_id)
    if user.role == UserRole.ADMIN:
        raise Forbidden("Admin accounts cannot be deactivated")
    user.is_active = is_active
    await db.commit()
    await db.refresh(user)
    logger.info("User %s %s", user_id, "activated" if is_active else "deactivated")
    return user


async def _in_flight_jobs(db: AsyncSession, user_id: uuid.UUID) -> list[uuid.UUID]:
    """Accepted, undelivered jobs the user owns or is the accepted provider of."""
    provider_side = (
        select(Job.job_id)
        .join(Proposal, Proposal.proposal_id == Job.accepted_proposal_id)
        .where(Proposal.provider_id == user_id)
    )
    result = await db.execute(
        select(Job.job_id).where(
            Job.status == JobStatus.ACCEPTED,
            or_(Job.customer_id == user_id, Job.job_id.in_(provider_side)),
        )
    )
    return list(result.scalars().all())


async def delete_user(db: AsyncSession, user_id: uuid.UUID) -> None:
    """Admin removes a non-admin user together with their jobs, bids, reviews,
    service listings and support tickets.

    Users with accepted work still in flight are refused; that job would be
    left pointing at a proposal that no longer exists. A provider's accepted
    proposals on completed jobs stay as the record of the finished contract.
    Counterparties are recomputed after the commit and stored files are
    removed in the background.
    """
    user = await get_user(db, user_id)
    if user.role == UserRole.ADMIN:
        raise Forbidden("Admin accounts cannot be deleted")
    in_flight = await _in_flight_jobs(db, user_id)
    if in_flight:
        raise InvalidState(
            f"User has {len(in_flight)} accepted job(s) in progress; complete them first"
        )

    affected: set[uuid.UUID] = set()

    jobs = list((await db.execute(select(Job).where(Job.customer_id == user_id))).scalars().all())
    job_ids = [job.job_id for job in jobs]
    blobs = [key for job in jobs for key in (job.attachments or [])]
    if job_ids:
        providers = await db.execute(
            select(Proposal.provider_id).where(Proposal.job_id.in_(job_ids))
        )
        affected.update(providers.scalars().all())
        reviewers = await db.execute(
            select(Review.reviewer_id, Review.reviewed_id).where(Review.job_id.in_(job_ids))
        )
        for reviewer_id, reviewed_id in reviewers.all():
            affected.update((reviewer_id, reviewed_id))
        await db.execute(delete(Proposal).where(Proposal.job_id.in_(job_ids)))
        await db.execute(delete(Review).where(Review.job_id.in_(job_ids)))
        await detach_tickets(db, job_ids)
        await db.execute(delete(Job).where(Job.job_id.in_(job_ids)))

    # Bids placed on other customers' jobs; accepted ones belong to completed contracts
    bid_jobs = await db.execute(
        select(Proposal.job_id).where(Proposal.provider_id == user_id).distinct()
    )
    other_job_ids = set(bid_jobs.scalars().all()) - set(job_ids)
    for job in (
        await db.execute(select(Job).where(Job.job_id.in_(list(other_job_ids))))
    ).scalars().all():
        if job.customer_id is not None:
            affected.add(job.customer_id)
    await db.execute(
        delete(Proposal).where(
            Proposal.provider_id == user_id,
            Proposal.status != ProposalStatus.ACCEPTED,
        )
    )

    parties = await db.execute(
        select(Review.reviewer_id, Review.reviewed_id).where(
            or_(Review.reviewer_id == user_id, Review.reviewed_id == user_id)
        )
    )
    for reviewer_id, reviewed_id in parties.all():
        affected.update((reviewer_id, reviewed_id))
    await db.execute(
        delete(Review).where(or_(Review.reviewer_id == user_id, Review.reviewed_id == user_id))
    )

    listings = await db.execute(
        select(ServiceListing.listing_id, ServiceListing.cover_image).where(
            ServiceListing.provider_id == user_id
        )
    )
    listing_rows = listings.all()
    blobs.extend(cover for _, cover in listing_rows if cover)
    await delete_listings(db, [listing_id for listing_id, _ in listing_rows])
    tickets = await db.execute(select(SupportTicket.ticket_id).where(SupportTicket.user_id == user_id))
    await delete_tickets(db, list(tickets.scalars().all()))

    for job_id in other_job_ids:
        await sync_proposal_count(db, job_id)
    await db.delete(user)
    await db.commit()
    logger.info(
        "Deleted user %s with %d jobs and %d listings; recomputing %d counterparties",
        user_id, len(job_ids), len(listing_rows), len(affected - {user_id}),
    )

    await stats.refresh_after_event(db, affected - {user_id})
    schedule_cleanup(blobs, f"User {user_id} files")
