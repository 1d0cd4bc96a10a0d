"""Pydantic v2 schemas for Reviews."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from marketplace.config import settings


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)
    reviewed_id: uuid.UUID | None = Field(
        None,
        description="User being reviewed. Defaults to the other party of the job.",
    )

    @field_validator("rating", mode="before")
    @classmethod
    def validate_integer_rating(cls, v: object) -> object:
        # Reject 4.5 rather than silently truncating
        if isinstance(v, float) and not v.is_integer():
            raise ValueError("Rating must be a whole number between 1 and 5")
        if isinstance(v, bool):
            raise ValueError("Rating must be a whole number between 1 and 5")
        return v

    @field_validator("comment")
    @classmethod
    def strip_comment(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Comment must not be blank")
        if len(v) > settings.review_comment_max_length:
            raise ValueError(f"Comment must be at most {settings.review_comment_max_length} characters")
        return v


class ReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    review_id: uuid.UUID
    job_id: uuid.UUID
    reviewer_id: uuid.UUID
    reviewed_id: uuid.UUID
    reviewer_type: str
    rating: int
    comment: str
    created_at: datetime

    @field_validator("reviewer_type", mode="before")
    @classmethod
    def serialize_reviewer_type(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)
