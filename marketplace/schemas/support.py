"""Pydantic v2 schemas for support tickets."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from marketplace.schemas.job import Pagination

_STATUSES = r"^(open|in_progress|resolved|closed)$"
_PRIORITIES = r"^(low|medium|high|urgent)$"
_CATEGORIES = r"^(technical|billing|general|job_related|account)$"


def _enum_value(v: object) -> str:
    if hasattr(v, "value"):
        return v.value
    return str(v)


class TicketCreate(BaseModel):
    subject: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=2000)
    category: str = Field("general", pattern=_CATEGORIES)
    job_id: uuid.UUID | None = None

    @field_validator("subject", "message")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Must not be blank")
        return v


class TicketReplyCreate(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)
    status: str | None = Field(None, pattern=_STATUSES)

    @field_validator("message")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Message must not be blank")
        return v


class TicketUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: str | None = Field(None, pattern=_STATUSES)
    priority: str | None = Field(None, pattern=_PRIORITIES)

    @model_validator(mode="after")
    def require_change(self) -> "TicketUpdate":
        if self.status is None and self.priority is None:
            raise ValueError("Provide status or priority")
        return self


class TicketReplyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    reply_id: uuid.UUID
    author_id: uuid.UUID
    is_admin: bool
    message: str
    created_at: datetime


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ticket_id: uuid.UUID
    user_id: uuid.UUID
    job_id: uuid.UUID | None
    subject: str
    message: str
    status: str
    priority: str
    category: str
    replies: list[TicketReplyResponse]
    created_at: datetime
    updated_at: datetime

    @field_validator("status", "priority", "category", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> str:
        return _enum_value(v)


class TicketListResponse(BaseModel):
    tickets: list[TicketResponse]
    pagination: Pagination


class TicketStats(BaseModel):
    open: int = 0
    in_progress: int = 0
    resolved: int = 0
    closed: int = 0
    urgent: int = 0


class AdminTicketListResponse(TicketListResponse):
    stats: TicketStats


class SupportableJob(BaseModel):
    """A job the caller may open a ticket about."""
    model_config = ConfigDict(from_attributes=True)

    job_id: uuid.UUID
    title: str
    status: str
    created_at: datetime

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> str:
        return _enum_value(v)
