"""Support tickets: users open them, admins answer and triage them."""

import logging
import math
import uuid

from sqlalchemy import case, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.errors import Forbidden, NotFound
from marketplace.models.job import Job, JobStatus
from marketplace.models.support import (
    PRIORITY_RANK,
    SupportTicket,
    TicketCategory,
    TicketPriority,
    TicketReply,
    TicketStatus,
)
from marketplace.models.user import User
from marketplace.schemas.job import Pagination
from marketplace.schemas.support import TicketCreate, TicketReplyCreate, TicketStats, TicketUpdate
from marketplace.services.job import get_job
from marketplace.services.notifications import NotificationEvent, notify

logger = logging.getLogger(__name__)

# Jobs a user may raise a ticket about
SUPPORTABLE_STATUSES = (JobStatus.APPROVED, JobStatus.ACCEPTED, JobStatus.COMPLETED)

_priority_order = case(
    *((SupportTicket.priority == p, rank) for p, rank in PRIORITY_RANK.items()),
    else_=0,
)


def _owns_job(job: Job, user: User) -> bool:
    if job.customer_id is not None:
        return job.customer_id == user.user_id
    return job.guest_email is not None and job.guest_email == user.email.lower()


async def get_ticket(db: AsyncSession, ticket_id: uuid.UUID) -> SupportTicket:
    result = await db.execute(select(SupportTicket).where(SupportTicket.ticket_id == ticket_id))
    ticket = result.scalar_one_or_none()
    if ticket is None:
        raise NotFound("Support ticket not found")
    return ticket


async def open_ticket(db: AsyncSession, user: User, data: TicketCreate) -> SupportTicket:
    """Open a ticket, optionally about one of the caller's jobs (posted while registered or as a guest)."""
    if data.job_id is not None:
        job = await get_job(db, data.job_id)
        if not _owns_job(job, user):
            raise Forbidden("You can only open tickets about your own jobs")

    ticket = SupportTicket(
        ticket_id=uuid.uuid4(),
        user_id=user.user_id,
        job_id=data.job_id,
        subject=data.subject,
        message=data.message,
        category=TicketCategory(data.category),
        status=TicketStatus.OPEN,
        priority=TicketPriority.MEDIUM,
        replies=[],
    )
    db.add(ticket)
    await db.commit()
    await db.refresh(ticket)
    logger.info("Ticket %s opened by %s", ticket.ticket_id, user.user_id)
    return ticket


async def _paginate(db: AsyncSession, query, page: int, limit: int) -> tuple[list[SupportTicket], Pagination]:  # type: ignore[no-untyped-def]
    total = (
        await db.execute(select(func.count()).select_from(query.order_by(None).subquery()))
    ).scalar_one()
    result = await db.execute(query.limit(limit).offset((page - 1) * limit))
    pages = math.ceil(total / limit) if total else 0
    return list(result.scalars().all()), Pagination(page=page, limit=limit, total=total, pages=pages)


async def list_user_tickets(
    db: AsyncSession,
    user_id: uuid.UUID,
    status: TicketStatus | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[SupportTicket], Pagination]:
    query = select(SupportTicket).where(SupportTicket.user_id == user_id)
    if status is not None:
        query = query.where(SupportTicket.status == status)
    return await _paginate(db, query.order_by(SupportTicket.created_at.desc()), page, limit)


async def list_supportable_jobs(db: AsyncSession, user: User) -> list[Job]:
    result = await db.execute(
        select(Job)
        .where(
            or_(Job.customer_id == user.user_id, Job.guest_email == user.email.lower()),
            Job.status.in_(SUPPORTABLE_STATUSES),
        )
        .order_by(Job.created_at.desc())
    )
    return list(result.scalars().all())


async def list_tickets_for_admin(
    db: AsyncSession,
    status: TicketStatus | None = None,
    priority: TicketPriority | None = None,
    category: TicketCategory | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[SupportTicket], Pagination, TicketStats]:
    """Admin queue, most urgent first. Stats always cover every ticket."""
    query = select(SupportTicket)
    if status is not None:
        query = query.where(SupportTicket.status == status)
    if priority is not None:
        query = query.where(SupportTicket.priority == priority)
    if category is not None:
        query = query.where(SupportTicket.category == category)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.where(
            or_(SupportTicket.subject.ilike(pattern), SupportTicket.message.ilike(pattern))
        )
    query = query.order_by(_priority_order.desc(), SupportTicket.created_at.desc())
    tickets, pagination = await _paginate(db, query, page, limit)

    counts = await db.execute(
        select(SupportTicket.status, func.count()).group_by(SupportTicket.status)
    )
    stats = TicketStats(**{row_status.value: n for row_status, n in counts.all()})
    stats.urgent = (
        await db.execute(
            select(func.count()).where(SupportTicket.priority == TicketPriority.URGENT)
        )
    ).scalar_one()
    return tickets, pagination, stats


async def respond(
    db: AsyncSession, ticket_id: uuid.UUID, admin_id: uuid.UUID, data: TicketReplyCreate
) -> SupportTicket:
    """Append an admin reply, optionally moving the ticket on. The user is emailed."""
    ticket = await get_ticket(db, ticket_id)
    ticket.replies.append(
        TicketReply(
            reply_id=uuid.uuid4(),
            author_id=admin_id,
            is_admin=True,
            message=data.message,
        )
    )
    if data.status is not None:
        ticket.status = TicketStatus(data.status)
    await db.commit()
    await db.refresh(ticket)
    logger.info("Ticket %s answered by %s (%s)", ticket_id, admin_id, ticket.status.value)

    user = await db.get(User, ticket.user_id)
    if user is not None:
        notify(
            NotificationEvent.SUPPORT_REPLY,
            user.email,
            {
                "recipient_name": user.name,
                "subject": ticket.subject,
                "status": ticket.status.value,
                "message": data.message,
            },
        )
    return ticket


async def update_ticket(db: AsyncSession, ticket_id: uuid.UUID, data: TicketUpdate) -> SupportTicket:
    ticket = await get_ticket(db, ticket_id)
    if data.status is not None:
        ticket.status = TicketStatus(data.status)
    if data.priority is not None:
        ticket.priority = TicketPriority(data.priority)
    await db.commit()
    await db.refresh(ticket)
    return ticket


async def delete_tickets(db: AsyncSession, ticket_ids: list[uuid.UUID]) -> int:
    """Bulk delete with replies, without committing. Returns how many tickets were still there."""
    if not ticket_ids:
        return 0
    await db.execute(delete(TicketReply).where(TicketReply.ticket_id.in_(ticket_ids)))
    result = await db.execute(delete(SupportTicket).where(SupportTicket.ticket_id.in_(ticket_ids)))
    return result.rowcount or 0
