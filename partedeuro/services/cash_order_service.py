"""
Admin cash orders.

Records a sale taken in person: the order is created PAID and settled in the
same request. Shipping is operator-entered, so no carrier quoting happens.
Inventory is taken in database order rather than FIFO. Unlike the webhook
path, failures are raised to the admin.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from partedeuro.models.order import Order, OrderItem, OrderStatus
from partedeuro.services.checkout_service import listing_vin, load_listings
from partedeuro.services.inventory_service import AllocationMode
from partedeuro.services.settlement_service import (
    PaymentSuccessEvent,
    SettlementLine,
    SettlementProcessor,
    ShippingAddress,
)

logger = logging.getLogger(__name__)


@dataclass
class CashOrderItem:
    listing_id: str
    quantity: int = 1
    # Minor units; defaults to the listing price
    price: Optional[int] = None


@dataclass
class CashOrderRequest:
    name: str
    email: str
    country_code: str
    items: List[CashOrderItem] = field(default_factory=list)
    phone: Optional[str] = None
    shipping_method: Optional[str] = None
    postage_cost: int = 0
    carrier: Optional[str] = None


@dataclass
class CashOrderResult:
    success: bool
    order_id: str


class CashOrderService:
    def __init__(self, db: AsyncSession, processor: SettlementProcessor):
        self.db = db
        self.processor = processor

    async def create_cash_order(self, request: CashOrderRequest) -> CashOrderResult:
        """
        Create a PAID order and settle it synchronously.

        Raises:
            ListingNotFoundError: Unknown listing id
            SettlementError: Invoice, payment, order update or allocation failed
        """
        listings = await load_listings(self.db, [item.listing_id for item in request.items])

        lines = []
        for item in request.items:
            listing = listings[item.listing_id]
            unit_price = item.price if item.price is not None else listing.price
            lines.append(SettlementLine(
                description=listing.title,
                quantity=item.quantity,
                unit_amount_minor=unit_price,
                vin=listing_vin(listing),
            ))

        order = Order(
            id=str(uuid.uuid4()),
            email=request.email,
            name=request.name,
            phone_number=request.phone,
            status=OrderStatus.PAID.value,
            admin_created=True,
            subtotal=sum(line.unit_amount_minor * line.quantity for line in lines),
            shipping=request.postage_cost,
            shipping_country=request.country_code.upper(),
            shipping_method=request.shipping_method,
            carrier=request.carrier,
        )
        self.db.add(order)
        await self.db.flush()
        for item in request.items:
            self.db.add(OrderItem(order_id=order.id, listing_id=item.listing_id, quantity=item.quantity))
        await self.db.commit()

        logger.info(f"Cash order {order.id} created for {request.email} ({len(lines)} lines)")

        event = PaymentSuccessEvent(
            order_id=order.id,
            customer_email=request.email,
            customer_name=request.name,
            customer_phone=request.phone,
            line_items=lines,
            shipping_address=ShippingAddress(country=request.country_code.upper()),
            shipping_cost_minor_units=request.postage_cost,
            shipping_method=request.shipping_method,
            carrier=request.carrier,
        )
        await self.processor.settle(event, allocation_mode=AllocationMode.QUERY_ORDER)
        return CashOrderResult(success=True, order_id=order.id)
