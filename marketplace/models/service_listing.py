"""Provider service listing SQLAlchemy models."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database import Base, UTCDateTime, utcnow


class PriceType(enum.Enum):
    FIXED = "fixed"
    STARTING_FROM = "starting_from"
    HOURLY = "hourly"
    DAILY = "daily"


class ListingStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    INACTIVE = "inactive"


class ServiceListing(Base):
    __tablename__ = "service_listings"
    __table_args__ = (
        CheckConstraint("price_amount >= 0", name="ck_service_listings_price"),
        Index("ix_service_listings_status_created_at", "status", "created_at"),
    )

    listing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    subcategory: Mapped[str] = mapped_column(String(64), nullable=False, default="general")
    price_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="TL")
    price_type: Mapped[PriceType] = mapped_column(
        Enum(PriceType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=PriceType.STARTING_FROM,
    )
    cover_image: Mapped[str | None] = mapped_column(String(512), nullable=True)
    status: Mapped[ListingStatus] = mapped_column(
        Enum(ListingStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ListingStatus.PENDING,
    )
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    contact_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    areas = relationship(
        "ServiceArea",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="ServiceArea.area_id",
    )

    @property
    def service_areas(self) -> list[dict]:
        """Areas grouped by city. An empty district list means the whole city."""
        grouped: dict[str, list[str]] = {}
        whole_city: set[str] = set()
        for area in self.areas:
            districts = grouped.setdefault(area.city, [])
            if area.district is None:
                whole_city.add(area.city)
            else:
                districts.append(area.district)
        return [
            {"city": city, "districts": [] if city in whole_city else districts}
            for city, districts in grouped.items()
        ]


class ServiceArea(Base):
    """One city (or one district of it) a listing is offered in."""

    __tablename__ = "service_areas"

    area_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    listing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("service_listings.listing_id", ondelete="CASCADE"), nullable=False, index=True
    )
    city: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # NULL covers every district of the city
    district: Mapped[str | None] = mapped_column(String(64), nullable=True)
