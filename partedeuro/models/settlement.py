"""
Settlement saga log.

One row per completed settlement step per order. A replayed settlement skips
any step already recorded here, so the Xero invoice and payment are never
created twice for the same order.
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint

from partedeuro.core.database import Base


class SettlementStepName(str, enum.Enum):
    INVOICE_CREATED = "invoice_created"
    PAYMENT_RECORDED = "payment_recorded"
    ORDER_UPDATED = "order_updated"
    INVENTORY_ALLOCATED = "inventory_allocated"
    NOTIFIED = "notified"


class SettlementStep(Base):
    __tablename__ = "settlement_steps"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    step = Column(String(32), nullable=False)
    data = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("order_id", "step", name="uq_settlement_step_order_step"),
    )
