"""
Order models

Orders are created PENDING by checkout and moved to PAID by settlement, which
is also the only writer of the Xero invoice references. Money columns are
integer minor units.
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from partedeuro.core.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    PENDING_PAYMENT = "Pending payment"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    READY_FOR_PICKUP = "Ready for pickup"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    status = Column(String(32), nullable=False, default=OrderStatus.PENDING.value, index=True)
    admin_created = Column(Boolean, nullable=False, default=False)

    # Customer
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    phone_number = Column(String(50))

    # Pricing (minor units)
    subtotal = Column(Integer, nullable=False, default=0)
    shipping = Column(Integer, nullable=False, default=0)

    # Shipping address
    shipping_address = Column(Text)
    shipping_line1 = Column(String(255))
    shipping_line2 = Column(String(255))
    shipping_city = Column(String(100))
    shipping_postcode = Column(String(20))
    shipping_state = Column(String(100))
    shipping_country = Column(String(2))

    # Fulfilment
    shipping_method = Column(String(255))
    shipping_rate_id = Column(String(255))
    carrier = Column(String(100))
    tracking_number = Column(String(100))

    # External references
    xero_invoice_id = Column(String(50), index=True)
    xero_invoice_ref = Column(String(50), unique=True)
    stripe_checkout_session_id = Column(String(255), index=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("subtotal >= 0", name="check_order_subtotal_non_negative"),
        CheckConstraint("shipping >= 0", name="check_order_shipping_non_negative"),
    )

    @property
    def total(self) -> int:
        return (self.subtotal or 0) + (self.shipping or 0)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    listing_id = Column(String(36), ForeignKey("listings.id", ondelete="RESTRICT"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    order = relationship("Order", back_populates="items")
    listing = relationship("Listing")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_order_item_quantity_positive"),
        Index("ix_order_items_order_id", "order_id"),
    )


class FailedOrder(Base):
    """
    Settlement failure captured from the payment webhook.

    The raw checkout session and its line items are kept so an admin can
    replay settlement once the cause is fixed.
    """

    __tablename__ = "failed_orders"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(36), index=True)
    stripe_event = Column(JSON, nullable=False)
    line_items = Column(JSON)
    error = Column(Text)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    resolved_at = Column(DateTime(timezone=True))
