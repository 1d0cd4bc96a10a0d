"""Tests for support tickets: users open them, admins answer and triage them."""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.models.support import SupportTicket, TicketPriority, TicketReply, TicketStatus
from marketplace.models.user import User, UserRole
from marketplace.schemas.job import GuestContact
from marketplace.schemas.support import TicketCreate, TicketReplyCreate
from marketplace.services import job as job_service
from marketplace.services import notifications
from marketplace.services import support as support_service
from marketplace.services.email import Notice
from tests.conftest import auth_headers, make_job, make_user, reload


class Outbox:
    def __init__(self) -> None:
        self.notices: list[Notice] = []

    async def send(self, notice: Notice) -> None:
        self.notices.append(notice)


@pytest.fixture
def outbox(monkeypatch) -> Outbox:  # type: ignore[no-untyped-def]
    sender = Outbox()
    monkeypatch.setattr(notifications, "get_email_sender", lambda: sender)
    return sender


async def make_ticket(
    db: AsyncSession, user: User, subject: str = "Payment question", **fields
) -> SupportTicket:  # type: ignore[no-untyped-def]
    data = TicketCreate(subject=subject, message=fields.pop("message", "Where is my invoice?"), **fields)
    return await support_service.open_ticket(db, user, data)


# --- Opening tickets ---


@pytest.mark.asyncio
async def test_user_opens_ticket(client: AsyncClient, db_session: AsyncSession) -> None:
    customer = await make_user(db_session)
    job = await make_job(db_session, customer)

    resp = await client.post(
        "/support",
        json={
            "subject": "  Provider did not show up ",
            "message": "Nobody came on Monday",
            "category": "job_related",
            "job_id": str(job.job_id),
        },
        headers=auth_headers(customer),
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["subject"] == "Provider did not show up"
    assert body["status"] == "open"
    assert body["priority"] == "medium"
    assert body["category"] == "job_related"
    assert body["job_id"] == str(job.job_id)
    assert body["user_id"] == str(customer.user_id)
    assert body["replies"] == []


@pytest.mark.asyncio
async def test_open_ticket_validation(client: AsyncClient, db_session: AsyncSession) -> None:
    customer = await make_user(db_session)
    headers = auth_headers(customer)

    resp = await client.post("/support", json={"subject": "  ", "message": "x"}, headers=headers)
    assert resp.status_code == 400
    resp = await client.post(
        "/support", json={"subject": "Hi", "message": "x", "category": "refund"}, headers=headers
    )
    assert resp.status_code == 400
    resp = await client.post("/support", json={"subject": "Hi", "message": "x"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_ticket_about_someone_elses_job_is_refused(
    client: AsyncClient, db_session: AsyncSession
) -> None:
    owner = await make_user(db_session)
    other = await make_user(db_session)
    job = await make_job(db_session, owner)

    resp = await client.post(
        "/support",
        json={"subject": "Hi", "message": "x", "job_id": str(job.job_id)},
        headers=auth_headers(other),
    )
    assert resp.status_code == 403
    assert resp.json()["error"] == "forbidden"

    resp = await client.post(
        "/support",
        json={"subject": "Hi", "message": "x", "job_id": str(uuid.uuid4())},
        headers=auth_headers(other),
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_guest_job_matched_by_email(client: AsyncClient, db_session: AsyncSession) -> None:
    user = await make_user(db_session, email="ayse@example.com")
    stranger = await make_user(db_session)
    job = await make_job(
        db_session, None, guest=GuestContact(name="Ayse", email="Ayse@Example.com")
    )

    resp = await client.post(
        "/support",
        json={"subject": "About my guest job", "message": "x", "job_id": str(job.job_id)},
        headers=auth_headers(user),
    )
    assert resp.status_code == 201

    resp = await client.post(
        "/support",
        json={"subject": "Not mine", "message": "x", "job_id": str(job.job_id)},
        headers=auth_headers(stranger),
    )
    assert resp.status_code == 403


# --- User views ---


@pytest.mark.asyncio
async def test_my_tickets_filtered_by_status(client: AsyncClient, db_session: AsyncSession) -> None:
    customer = await make_user(db_session)
    other = await make_user(db_session)
    first = await make_ticket(db_session, customer, "First")
    second = await make_ticket(db_session, customer, "Second")
    await make_ticket(db_session, other, "Someone else")
    second.status = TicketStatus.RESOLVED
    await db_session.commit()

    resp = await client.get("/support/mine", headers=auth_headers(customer))
    assert resp.status_code == 200
    body = resp.json()
    assert [t["subject"] for t in body["tickets"]] == ["Second", "First"]
    assert body["pagination"]["total"] == 2

    resp = await client.get(
        "/support/mine", params={"status": "open"}, headers=auth_headers(customer)
    )
    assert [t["ticket_id"] for t in resp.json()["tickets"]] == [str(first.ticket_id)]


@pytest.mark.asyncio
async def test_supportable_jobs(client: AsyncClient, db_session: AsyncSession) -> None:
    customer = await make_user(db_session, email="mehmet@example.com")
    other = await make_user(db_session)
    live = await make_job(db_session, customer, title="Live job")
    await make_job(db_session, customer, approve=False, title="Still in review")
    guest_job = await make_job(
        db_session, None, guest=GuestContact(name="Mehmet", email="mehmet@example.com"),
        title="Posted as guest",
    )
    await make_job(db_session, other, title="Not mine")

    resp = await client.get("/support/jobs", headers=auth_headers(customer))
    assert resp.status_code == 200
    jobs = {j["job_id"]: j for j in resp.json()}
    assert set(jobs) == {str(live.job_id), str(guest_job.job_id)}
    assert jobs[str(live.job_id)]["status"] == "approved"


# --- Admin queue ---


@pytest.mark.asyncio
async def test_admin_queue_sorted_by_priority(client: AsyncClient, db_session: AsyncSession) -> None:
    admin = await make_user(db_session, UserRole.ADMIN)
    customer = await make_user(db_session)
    low = await make_ticket(db_session, customer, "Low")
    urgent = await make_ticket(db_session, customer, "Urgent")
    medium = await make_ticket(db_session, customer, "Medium")
    high = await make_ticket(db_session, customer, "High refund", category="billing")
    low.priority = TicketPriority.LOW
    urgent.priority = TicketPriority.URGENT
    high.priority = TicketPriority.HIGH
    medium.status = TicketStatus.CLOSED
    await db_session.commit()

    resp = await client.get("/admin/support", headers=auth_headers(admin))
    assert resp.status_code == 200
    body = resp.json()
    assert [t["subject"] for t in body["tickets"]] == ["Urgent", "High refund", "Medium", "Low"]
    assert body["stats"] == {"open": 3, "in_progress": 0, "resolved": 0, "closed": 1, "urgent": 1}

    resp = await client.get(
        "/admin/support", params={"category": "billing"}, headers=auth_headers(admin)
    )
    assert [t["subject"] for t in resp.json()["tickets"]] == ["High refund"]
    # Stats ignore the filters
    assert resp.json()["stats"]["open"] == 3

    resp = await client.get(
        "/admin/support", params={"search": "refund", "status": "open"}, headers=auth_headers(admin)
    )
    assert resp.json()["pagination"]["total"] == 1

    resp = await client.get("/admin/support", headers=auth_headers(customer))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_admin_reply_notifies_user(
    client: AsyncClient, db_session: AsyncSession, outbox: Outbox
) -> None:
    admin = await make_user(db_session, UserRole.ADMIN)
    customer = await make_user(db_session, name="Zeynep", email="zeynep@example.com")
    ticket = await make_ticket(db_session, customer, "Invoice missing")

    resp = await client.post(
        f"/admin/support/{ticket.ticket_id}/respond",
        json={"message": "  Sent it again, check your spam folder ", "status": "resolved"},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "resolved"
    assert len(body["replies"]) == 1
    reply = body["replies"][0]
    assert reply["message"] == "Sent it again, check your spam folder"
    assert reply["author_id"] == str(admin.user_id)
    assert reply["is_admin"] is True

    await notifications.drain()
    assert len(outbox.notices) == 1
    notice = outbox.notices[0]
    assert notice.recipient == "zeynep@example.com"
    assert notice.event == "support_reply"
    assert notice.subject == "Re: Invoice missing"
    assert "Hello Zeynep" in notice.body
    assert "check your spam folder" in notice.body
    assert "Status: resolved" in notice.body

    # A second reply keeps the status when none is given
    resp = await client.post(
        f"/admin/support/{ticket.ticket_id}/respond",
        json={"message": "Anything else?"},
        headers=auth_headers(admin),
    )
    assert resp.json()["status"] == "resolved"
    assert [r["message"] for r in resp.json()["replies"]][-1] == "Anything else?"


@pytest.mark.asyncio
async def test_reply_validation(client: AsyncClient, db_session: AsyncSession) -> None:
    admin = await make_user(db_session, UserRole.ADMIN)
    customer = await make_user(db_session)
    ticket = await make_ticket(db_session, customer)
    url = f"/admin/support/{ticket.ticket_id}/respond"

    resp = await client.post(url, json={"message": "   "}, headers=auth_headers(admin))
    assert resp.status_code == 400
    resp = await client.post(url, json={"message": "ok", "status": "done"}, headers=auth_headers(admin))
    assert resp.status_code == 400
    resp = await client.post(url, json={"message": "ok"}, headers=auth_headers(customer))
    assert resp.status_code == 403
    resp = await client.post(
        f"/admin/support/{uuid.uuid4()}/respond", json={"message": "ok"}, headers=auth_headers(admin)
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_admin_updates_status_and_priority(client: AsyncClient, db_session: AsyncSession) -> None:
    admin = await make_user(db_session, UserRole.ADMIN)
    customer = await make_user(db_session)
    ticket = await make_ticket(db_session, customer)
    url = f"/admin/support/{ticket.ticket_id}"

    resp = await client.patch(url, json={"priority": "urgent"}, headers=auth_headers(admin))
    assert resp.status_code == 200
    assert resp.json()["priority"] == "urgent"
    assert resp.json()["status"] == "open"

    resp = await client.patch(url, json={"status": "in_progress"}, headers=auth_headers(admin))
    assert resp.json()["status"] == "in_progress"
    assert resp.json()["priority"] == "urgent"

    resp = await client.patch(url, json={}, headers=auth_headers(admin))
    assert resp.status_code == 400
    resp = await client.patch(url, json={"subject": "Changed"}, headers=auth_headers(admin))
    assert resp.status_code == 400
    resp = await client.patch(url, json={"priority": "urgent"}, headers=auth_headers(customer))
    assert resp.status_code == 403


# --- Lifecycle ---


@pytest.mark.asyncio
async def test_deleting_job_keeps_its_tickets(db_session: AsyncSession) -> None:
    customer = await make_user(db_session)
    job = await make_job(db_session, customer)
    ticket = await make_ticket(db_session, customer, job_id=job.job_id)

    await job_service.delete_job(db_session, job.job_id, customer.user_id)

    row = await reload(db_session, SupportTicket, ticket.ticket_id)
    assert row is not None
    assert row.job_id is None


@pytest.mark.asyncio
async def test_delete_tickets_removes_replies(db_session: AsyncSession) -> None:
    admin = await make_user(db_session, UserRole.ADMIN)
    customer = await make_user(db_session)
    ticket = await make_ticket(db_session, customer)
    ticket_id = ticket.ticket_id
    await support_service.respond(
        db_session, ticket_id, admin.user_id, TicketReplyCreate(message="On it")
    )

    assert await support_service.delete_tickets(db_session, [ticket_id, uuid.uuid4()]) == 1
    await db_session.commit()
    db_session.expunge_all()

    assert await db_session.get(SupportTicket, ticket_id) is None
    replies = await db_session.execute(select(TicketReply).where(TicketReply.ticket_id == ticket_id))
    assert replies.all() == []
    assert await support_service.delete_tickets(db_session, []) == 0
