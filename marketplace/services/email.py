"""Outbound email for marketplace notifications.

A ``Notice`` is one rendered notification for one recipient. ``build_message``
turns it into a MIME message sent from the configured display name and
address, tagged with the event that produced it so mail filters and bounce
handling can tell notices apart.

EMAIL_BACKEND=smtp delivers through aiosmtplib; the default ``log`` backend
only records what would have been sent.
"""

import logging
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import Protocol

import aiosmtplib

from marketplace.config import settings

logger = logging.getLogger(__name__)

EVENT_HEADER = "X-Marketplace-Event"


@dataclass(frozen=True)
class Notice:
    recipient: str
    subject: str
    body: str
    event: str


def build_message(notice: Notice) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = formataddr((settings.smtp_from_name, settings.smtp_from_address))
    msg["To"] = notice.recipient
    msg["Subject"] = notice.subject
    msg[EVENT_HEADER] = notice.event
    msg.set_content(notice.body)
    return msg


class EmailSender(Protocol):
    async def send(self, notice: Notice) -> None: ...


class LogEmailSender:
    async def send(self, notice: Notice) -> None:
        logger.info(
            "EMAIL [%s] to=%s subject=%s\n%s",
            notice.event, notice.recipient, notice.subject, notice.body,
        )


class SmtpEmailSender:
    async def send(self, notice: Notice) -> None:
        await aiosmtplib.send(
            build_message(notice),
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username or None,
            password=settings.smtp_password or None,
            use_tls=settings.smtp_use_tls,
        )


def get_email_sender() -> EmailSender:
    return SmtpEmailSender() if settings.email_backend == "smtp" else LogEmailSender()
