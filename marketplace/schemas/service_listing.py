"""Pydantic v2 schemas for provider service listings."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from marketplace.config import settings
from marketplace.schemas.job import Pagination

_PRICE_TYPES = r"^(fixed|starting_from|hourly|daily)$"
_LISTING_STATUSES = r"^(pending|approved|rejected|inactive)$"

LISTING_SORTS = ("newest", "oldest", "price_low", "price_high", "most_viewed")


class ServiceAreaIn(BaseModel):
    city: str = Field(..., min_length=1, max_length=64)
    # Empty: every district of the city
    districts: list[str] = Field(default_factory=list, max_length=100)

    @field_validator("districts")
    @classmethod
    def validate_districts(cls, v: list[str]) -> list[str]:
        cleaned = []
        for district in v:
            district = district.strip()
            if not district or len(district) > 64:
                raise ValueError("District names must be 1-64 chars")
            if district not in cleaned:
                cleaned.append(district)
        return cleaned


class Pricing(BaseModel):
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    currency: str = Field("TL", max_length=8)
    price_type: str = Field("starting_from", pattern=_PRICE_TYPES)

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        if v > settings.max_price:
            raise ValueError(f"Maximum price is {settings.max_price}")
        return v


class ListingCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    category: str = Field(..., min_length=1, max_length=64)
    subcategory: str | None = Field(None, max_length=64)
    pricing: Pricing
    service_areas: list[ServiceAreaIn] = Field(default_factory=list, max_length=81)
    cover_image: str | None = Field(None, max_length=512)

    @field_validator("title", "description")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Must not be blank")
        return v


class ListingUpdate(BaseModel):
    """Provider edits. Status, counters and notes are not editable here."""
    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = Field(None, min_length=1, max_length=2000)
    category: str | None = Field(None, min_length=1, max_length=64)
    subcategory: str | None = Field(None, max_length=64)
    pricing: Pricing | None = None
    service_areas: list[ServiceAreaIn] | None = Field(None, max_length=81)

    @field_validator("title", "description")
    @classmethod
    def not_blank(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Must not be blank")
        return v


class CoverImageUpdate(BaseModel):
    cover_image: str | None = Field(None, max_length=512)


class ListingStatusUpdate(BaseModel):
    status: str = Field(..., pattern=_LISTING_STATUSES)
    admin_notes: str | None = Field(None, max_length=2048)


class ServiceAreaOut(BaseModel):
    city: str
    districts: list[str]


class ListingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    listing_id: uuid.UUID
    provider_id: uuid.UUID
    title: str
    description: str
    category: str
    subcategory: str
    price_amount: Decimal
    currency: str
    price_type: str
    cover_image: str | None
    service_areas: list[ServiceAreaOut]
    status: str
    views: int
    contact_count: int
    created_at: datetime
    updated_at: datetime

    @field_validator("price_type", "status", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)


class AdminListingResponse(ListingResponse):
    admin_notes: str | None


class ListingListResponse(BaseModel):
    listings: list[ListingResponse]
    pagination: Pagination


class ListingStats(BaseModel):
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    inactive: int = 0
    total_views: int = 0
    total_contacts: int = 0


class AdminListingListResponse(BaseModel):
    listings: list[AdminListingResponse]
    pagination: Pagination
    stats: ListingStats


class ContactResponse(BaseModel):
    listing_id: uuid.UUID
    contact_count: int


class ListingFilters(BaseModel):
    """Query filters for the public service board."""
    category: str | None = None
    city: str | None = None
    district: str | None = None
    search: str | None = Field(None, max_length=200)
    price_min: Decimal | None = Field(None, ge=0)
    price_max: Decimal | None = Field(None, ge=0)
    sort_by: str = "newest"
    page: int = Field(1, ge=1)
    limit: int = Field(12, ge=1, le=100)

    @field_validator("sort_by")
    @classmethod
    def validate_sort(cls, v: str) -> str:
        if v not in LISTING_SORTS:
            raise ValueError(f"sort_by must be one of {', '.join(LISTING_SORTS)}")
        return v
