"""Pydantic v2 schemas for Job lifecycle endpoints."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator


class GuestContact(BaseModel):
    """Contact details of a customer posting without an account."""
    name: str = Field(..., min_length=1, max_length=128)
    email: EmailStr
    phone: str | None = Field(None, max_length=32)


class JobCreate(BaseModel):
    """Customer posts a job.

    Registered callers post under their account. Anonymous callers must send
    ``guest`` contact details and ``kvkk_accepted=true``; the job is then owned
    by that guest contact and can only be managed by admins.
    """
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    category: str = Field(..., min_length=1, max_length=64)
    city: str = Field(..., min_length=1, max_length=64)
    district: str = Field(..., min_length=1, max_length=64)
    address: str | None = Field(None, max_length=512)
    budget_min: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    budget_max: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    currency: str = Field("TL", max_length=8)
    estimated_duration: str | None = Field(None, max_length=64)
    attachments: list[str] = Field(default_factory=list, max_length=20)
    guest: GuestContact | None = None
    kvkk_accepted: bool | None = None

    @model_validator(mode="after")
    def validate_budget_range(self) -> "JobCreate":
        if (
            self.budget_min is not None
            and self.budget_max is not None
            and self.budget_min > self.budget_max
        ):
            raise ValueError("budget_min must not exceed budget_max")
        return self

    @field_validator("attachments")
    @classmethod
    def validate_attachments(cls, v: list[str]) -> list[str]:
        for key in v:
            if not key or len(key) > 512:
                raise ValueError("Attachment keys must be 1-512 chars")
        return v


class ApproveJob(BaseModel):
    max_proposals: int | None = Field(None, ge=1, le=100)
    admin_notes: str | None = Field(None, max_length=2048)


class RejectJob(BaseModel):
    admin_notes: str | None = Field(None, max_length=2048)


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_id: uuid.UUID
    title: str
    description: str
    category: str
    customer_id: uuid.UUID | None
    is_guest: bool
    guest_name: str | None = None
    city: str
    district: str
    address: str | None
    budget_min: Decimal | None
    budget_max: Decimal | None
    currency: str
    estimated_duration: str | None
    attachments: list[str] | None
    status: str
    max_proposals: int
    expires_at: datetime
    proposal_count: int
    accepted_proposal_id: uuid.UUID | None
    accepted_price: Decimal | None
    accepted_duration: str | None
    accepted_at: datetime | None
    delivered_at: datetime | None
    delivered_by: uuid.UUID | None
    created_at: datetime
    updated_at: datetime

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)


class JobSummary(BaseModel):
    """Compact view returned by accept/deliver actions."""
    model_config = ConfigDict(from_attributes=True)

    job_id: uuid.UUID
    title: str
    status: str
    customer_id: uuid.UUID | None
    accepted_proposal_id: uuid.UUID | None
    accepted_price: Decimal | None
    accepted_duration: str | None
    accepted_at: datetime | None
    delivered_at: datetime | None
    delivered_by: uuid.UUID | None

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    pagination: Pagination


JOB_SORTS = ("newest", "oldest", "budget_high", "budget_low", "most_proposals", "least_proposals")


class JobFilters(BaseModel):
    """Query filters for the public job board."""
    category: str | None = None
    city: str | None = None
    district: str | None = None
    search: str | None = Field(None, max_length=200)
    budget_min: Decimal | None = Field(None, ge=0)
    budget_max: Decimal | None = Field(None, ge=0)
    sort_by: str = "newest"
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)

    @field_validator("sort_by")
    @classmethod
    def validate_sort(cls, v: str) -> str:
        if v not in JOB_SORTS:
            raise ValueError(f"sort_by must be one of {', '.join(JOB_SORTS)}")
        return v
