"""Best-effort notifications dispatched after the triggering write commits.

``notify`` schedules delivery as a background task and returns immediately.
Delivery failures are logged as ``DependencyFailure`` and never reach the
request that caused them; nothing is retried in-request.
"""

import asyncio
import enum
import logging
from typing import Any

from marketplace.config import settings
from marketplace.errors import DependencyFailure
from marketplace.services.email import Notice, get_email_sender

logger = logging.getLogger(__name__)


class NotificationEvent(enum.Enum):
    PROPOSAL_SUBMITTED = "proposal_submitted"
    PROPOSAL_ACCEPTED = "proposal_accepted"
    SUPPORT_REPLY = "support_reply"


_TEMPLATES: dict[NotificationEvent, tuple[str, str]] = {
    NotificationEvent.PROPOSAL_SUBMITTED: (
        "New proposal for \"{job_title}\"",
        "Hello {recipient_name},\n\n"
        "{provider_name} sent a proposal for your job \"{job_title}\".\n"
        "Price: {price} {currency}\n"
        "Duration: {duration}\n\n"
        "Review it at {base_url}/jobs/{job_id}\n",
    ),
    NotificationEvent.PROPOSAL_ACCEPTED: (
        "Your proposal for \"{job_title}\" was accepted",
        "Hello {recipient_name},\n\n"
        "Your proposal for \"{job_title}\" was accepted.\n"
        "Agreed price: {price} {currency}\n"
        "Agreed duration: {duration}\n\n"
        "Job details: {base_url}/jobs/{job_id}\n",
    ),
    NotificationEvent.SUPPORT_REPLY: (
        "Re: {subject}",
        "Hello {recipient_name},\n\n"
        "Our team replied to your support request \"{subject}\":\n\n"
        "{message}\n\n"
        "Status: {status}\n"
        "See the full conversation at {base_url}/support\n",
    ),
}

# Strong references so running tasks are not garbage collected mid-flight
_pending: set[asyncio.Task] = set()


def render(event: NotificationEvent, context: dict[str, Any]) -> tuple[str, str]:
    subject_tpl, body_tpl = _TEMPLATES[event]
    values = {"base_url": settings.base_url, "recipient_name": "", **context}
    return subject_tpl.format(**values), body_tpl.format(**values)


async def _deliver(event: NotificationEvent, recipient: str, context: dict[str, Any]) -> None:
    try:
        subject, body = render(event, context)
        await get_email_sender().send(Notice(recipient, subject, body, event.value))
    except Exception as e:
        failure = DependencyFailure(f"{event.value} notification to {recipient} failed: {e}")
        logger.warning("Notification dropped [%s]: %s", failure.kind, failure.detail)
        return
    logger.info("Notification %s sent to %s", event.value, recipient)


def notify(
    event: NotificationEvent, recipient: str | None, context: dict[str, Any]
) -> asyncio.Task | None:
    """Schedule a notification. Must be called after the primary commit."""
    if not recipient:
        logger.warning("Notification %s skipped: no recipient address", event.value)
        return None
    task = asyncio.create_task(_deliver(event, recipient, context))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


def pending_count() -> int:
    return len(_pending)


async def drain() -> None:
    """Wait for every scheduled notification to finish."""
    while _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)
