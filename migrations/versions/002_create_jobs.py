"""Create jobs table.

Owner is either a registered customer (customer_id) or a guest contact
(guest_*), never both. References to users and proposals are plain UUID
columns; the orphan sweep repairs dangling rows.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "jobs",
        sa.Column("job_id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=True),
        sa.Column("guest_name", sa.String(128), nullable=True),
        sa.Column("guest_email", sa.String(320), nullable=True),
        sa.Column("guest_phone", sa.String(32), nullable=True),
        sa.Column("city", sa.String(64), nullable=False),
        sa.Column("district", sa.String(64), nullable=False),
        sa.Column("address", sa.String(512), nullable=True),
        sa.Column("budget_min", sa.Numeric(12, 2), nullable=True),
        sa.Column("budget_max", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(8), nullable=False, server_default="TL"),
        sa.Column("estimated_duration", sa.String(64), nullable=True),
        sa.Column("attachments", JSONB, nullable=True, server_default="[]"),
        sa.Column(
            "status",
            sa.Enum("pending", "approved", "accepted", "completed", "rejected", name="jobstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("max_proposals", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("proposal_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("accepted_proposal_id", sa.Uuid(), nullable=True),
        sa.Column("accepted_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("accepted_duration", sa.String(64), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_by", sa.Uuid(), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "(customer_id IS NOT NULL AND guest_email IS NULL) "
            "OR (customer_id IS NULL AND guest_email IS NOT NULL)",
            name="ck_jobs_exactly_one_owner",
        ),
        sa.CheckConstraint("proposal_count >= 0", name="ck_jobs_proposal_count"),
    )
    op.create_index("ix_jobs_status_created_at", "jobs", ["status", "created_at"])
    op.create_index("ix_jobs_customer_id_status", "jobs", ["customer_id", "status"])


def downgrade() -> None:
    op.drop_table("jobs")
    op.execute("DROP TYPE IF EXISTS jobstatus")
