"""Pydantic v2 schemas for users, authentication and derived stats."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StrictBool, field_validator

from marketplace.schemas.job import Pagination


def _enum_value(v: object) -> str:
    if hasattr(v, "value"):
        return v.value
    return str(v)


class UserRegister(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    phone: str | None = Field(None, max_length=32)
    role: str = Field("customer", pattern="^(customer|provider)$")
    kvkk_accepted: bool = Field(..., description="Personal data processing consent (KVKK)")

    @field_validator("kvkk_accepted")
    @classmethod
    def validate_consent(cls, v: bool) -> bool:
        if not v:
            raise ValueError("KVKK consent is required")
        return v

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class UserUpdate(BaseModel):
    """Whitelisted profile fields. Unknown keys are rejected, never merged."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(None, min_length=1, max_length=128)
    phone: str | None = Field(None, max_length=32)
    about: str | None = Field(None, max_length=500)
    city: str | None = Field(None, max_length=64)
    district: str | None = Field(None, max_length=64)
    profile_image_key: str | None = Field(None, max_length=512)
    # Provider-only
    experience_years: int | None = Field(None, ge=0, le=80)
    bio: str | None = Field(None, max_length=500)


PROVIDER_ONLY_FIELDS = frozenset({"experience_years", "bio"})


class RoleChange(BaseModel):
    role: str = Field(..., pattern="^(customer|provider)$")


class UserStats(BaseModel):
    completed_jobs: int
    total_earnings: Decimal
    total_spent: Decimal
    reviews_given: int
    reviews_received: int


class RatingResponse(BaseModel):
    average: Decimal
    count: int


class PublicProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    name: str
    role: str
    about: str | None
    city: str | None
    district: str | None
    profile_image_key: str | None
    experience_years: int | None = None
    bio: str | None = None
    rating_average: Decimal
    rating_count: int
    completed_jobs: int
    reviews_received: int
    created_at: datetime

    @field_validator("role", mode="before")
    @classmethod
    def serialize_role(cls, v: object) -> str:
        return _enum_value(v)


class UserResponse(PublicProfileResponse):
    email: str
    phone: str | None
    is_active: bool
    total_earnings: Decimal
    total_spent: Decimal
    reviews_given: int
    last_login_at: datetime | None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class UserStatusUpdate(BaseModel):
    """Admin activates or deactivates an account."""

    model_config = ConfigDict(extra="forbid")

    is_active: StrictBool


class UserListResponse(BaseModel):
    users: list[UserResponse]
    pagination: Pagination
