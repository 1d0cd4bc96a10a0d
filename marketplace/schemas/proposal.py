"""Pydantic v2 schemas for Proposals."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from marketplace.config import settings
from marketplace.models.proposal import DurationUnit


def _strip_description(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Description must not be blank")
    return v


class DurationIn(BaseModel):
    value: int = Field(..., ge=1, le=1000)
    unit: DurationUnit


class ProposalCreate(BaseModel):
    description: str = Field(..., min_length=1, max_length=1000)
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    duration: DurationIn

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: str) -> str:
        return _strip_description(v)

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: Decimal) -> Decimal:
        if v > settings.max_price:
            raise ValueError(f"Maximum price is {settings.max_price}")
        return v


class ProposalUpdate(BaseModel):
    """Provider edits a pending bid while the job is still open."""
    model_config = ConfigDict(extra="forbid")

    description: str | None = Field(None, min_length=1, max_length=1000)
    price: Decimal | None = Field(None, ge=0, max_digits=12, decimal_places=2)
    duration: DurationIn | None = None

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _strip_description(v)

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: Decimal | None) -> Decimal | None:
        if v is not None and v > settings.max_price:
            raise ValueError(f"Maximum price is {settings.max_price}")
        return v


class RejectProposal(BaseModel):
    notes: str | None = Field(None, max_length=1000)


class ProposalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    proposal_id: uuid.UUID
    job_id: uuid.UUID
    provider_id: uuid.UUID
    description: str
    price: Decimal
    duration_value: int
    duration_unit: str
    duration_label: str
    status: str
    notes: str | None
    accepted_at: datetime | None
    rejected_at: datetime | None
    created_at: datetime

    @field_validator("status", "duration_unit", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)
