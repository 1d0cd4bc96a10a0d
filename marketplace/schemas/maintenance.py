"""Pydantic v2 schemas for admin maintenance endpoints."""

import uuid

from pydantic import BaseModel, Field

from marketplace.schemas.user import RatingResponse, UserStats


class OrphanRecord(BaseModel):
    id: uuid.UUID
    job_id: uuid.UUID | None = None
    reason: str


class OrphanSection(BaseModel):
    checked: int = 0
    deleted: int = 0
    # Found in the snapshot but removed by someone else before the delete
    already_gone: int = 0
    orphans: list[OrphanRecord] = Field(default_factory=list)
    retained: list[OrphanRecord] = Field(default_factory=list)


class SweepReport(BaseModel):
    proposals: OrphanSection = Field(default_factory=OrphanSection)
    reviews: OrphanSection = Field(default_factory=OrphanSection)
    listings: OrphanSection = Field(default_factory=OrphanSection)
    tickets: OrphanSection = Field(default_factory=OrphanSection)
    jobs_resynced: int = 0
    users_recomputed: int = 0

    @property
    def total_deleted(self) -> int:
        return (
            self.proposals.deleted
            + self.reviews.deleted
            + self.listings.deleted
            + self.tickets.deleted
        )

    @property
    def summary(self) -> str:
        return (
            f"proposals checked={self.proposals.checked} deleted={self.proposals.deleted}; "
            f"reviews checked={self.reviews.checked} deleted={self.reviews.deleted}; "
            f"listings deleted={self.listings.deleted}; tickets deleted={self.tickets.deleted}; "
            f"retained={len(self.proposals.retained)}; "
            f"total deleted={self.total_deleted}"
        )


class ExpireReport(BaseModel):
    expired_jobs: int
    rejected_proposals: int


class StatsRepairResponse(BaseModel):
    user_id: uuid.UUID
    stats: UserStats
    rating: RatingResponse


class BulkRepairResponse(BaseModel):
    users_recomputed: int
    failed: int = 0
