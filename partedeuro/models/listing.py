"""
Catalog models: listings and the inventory parts that back them.

A Listing is the sellable unit. One or more Part rows back it, typically the
same part pulled from different donor cars; settlement depletes the oldest
part first.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, JSON, String, Table, Text
from sqlalchemy.orm import relationship

from partedeuro.core.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


listing_parts = Table(
    "listing_parts",
    Base.metadata,
    Column("listing_id", String(36), ForeignKey("listings.id", ondelete="CASCADE"), primary_key=True),
    Column("part_id", String(36), ForeignKey("parts.id", ondelete="CASCADE"), primary_key=True),
)


class Listing(Base):
    __tablename__ = "listings"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    # Minor units (cents, AUD)
    price = Column(Integer, nullable=False)
    images = Column(JSON, default=list)
    length = Column(Integer)
    width = Column(Integer)
    height = Column(Integer)
    weight = Column(Integer)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    parts = relationship("Part", secondary=listing_parts, back_populates="listings")

    __table_args__ = (
        CheckConstraint("price >= 0", name="check_listing_price_non_negative"),
    )

    @property
    def first_image(self):
        return self.images[0] if self.images else None


class Part(Base):
    """A physical stock record. quantity is only decremented by settlement."""

    __tablename__ = "parts"

    id = Column(String(36), primary_key=True, default=_uuid)
    part_number = Column(String(100), index=True)
    name = Column(String(255))
    quantity = Column(Integer, nullable=False, default=1)
    donor_vin = Column(String(17), index=True)
    inventory_location = Column(String(100))

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    listings = relationship("Listing", secondary=listing_parts, back_populates="parts")

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="check_part_quantity_non_negative"),
        Index("ix_parts_created_at", "created_at"),
    )
