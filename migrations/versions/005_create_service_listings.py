"""Create service_listings and service_areas tables.

A listing's areas are child rows; a NULL district covers the whole city.

Revision ID: 005
Revises: 004
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "service_listings",
        sa.Column("listing_id", sa.Uuid(), primary_key=True),
        sa.Column("provider_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("subcategory", sa.String(64), nullable=False, server_default="general"),
        sa.Column("price_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False, server_default="TL"),
        sa.Column(
            "price_type",
            sa.Enum("fixed", "starting_from", "hourly", "daily", name="pricetype"),
            nullable=False,
            server_default="starting_from",
        ),
        sa.Column("cover_image", sa.String(512), nullable=True),
        sa.Column(
            "status",
            sa.Enum("pending", "approved", "rejected", "inactive", name="listingstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("views", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("contact_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("price_amount >= 0", name="ck_service_listings_price"),
    )
    op.create_index("ix_service_listings_provider_id", "service_listings", ["provider_id"])
    op.create_index("ix_service_listings_category", "service_listings", ["category"])
    op.create_index(
        "ix_service_listings_status_created_at", "service_listings", ["status", "created_at"]
    )

    op.create_table(
        "service_areas",
        sa.Column("area_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "listing_id",
            sa.Uuid(),
            sa.ForeignKey("service_listings.listing_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("city", sa.String(64), nullable=False),
        sa.Column("district", sa.String(64), nullable=True),
    )
    op.create_index("ix_service_areas_listing_id", "service_areas", ["listing_id"])
    op.create_index("ix_service_areas_city", "service_areas", ["city"])


def downgrade() -> None:
    op.drop_table("service_areas")
    op.drop_table("service_listings")
    op.execute("DROP TYPE IF EXISTS listingstatus")
    op.execute("DROP TYPE IF EXISTS pricetype")
