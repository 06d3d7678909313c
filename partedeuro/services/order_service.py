"""
OrderService - order lookup and fulfilment updates.

Status changes that the customer cares about (shipped, ready for pickup)
trigger an email. COMPLETED and CANCELLED are terminal.
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from partedeuro.core.exceptions import InvalidStatusTransitionError, OrderNotFoundError
from partedeuro.models.order import Order, OrderItem, OrderStatus
from partedeuro.services.email_hooks import EmailService, get_email_service

logger = logging.getLogger(__name__)


class OrderService:
    """Order reads and admin fulfilment writes."""

    @staticmethod
    async def get_order(db: AsyncSession, order_id: str) -> Order:
        result = await db.execute(
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items).selectinload(OrderItem.listing))
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order

    @staticmethod
    def _check_transition(order: Order, target: OrderStatus):
        current = OrderStatus(order.status)
        if current.is_terminal and current != target:
            raise InvalidStatusTransitionError(
                f"Order {order.id} is {current.value} and cannot change to {target.value}",
                from_status=current.value,
                to_status=target.value,
            )

    @staticmethod
    async def _notify(order: Order, email_service: EmailService):
        if order.status == OrderStatus.SHIPPED.value:
            await email_service.send_shipped_email(order)
        elif order.status == OrderStatus.READY_FOR_PICKUP.value:
            await email_service.send_ready_for_pickup_email(order)

    @staticmethod
    async def update_tracking(
        db: AsyncSession,
        order_id: str,
        tracking_number: str,
        carrier: str,
        email_service: Optional[EmailService] = None,
    ) -> Order:
        """Attach tracking and mark the order SHIPPED."""
        order = await OrderService.get_order(db, order_id)
        OrderService._check_transition(order, OrderStatus.SHIPPED)

        order.tracking_number = tracking_number
        order.carrier = carrier
        order.status = OrderStatus.SHIPPED.value
        await db.commit()

        logger.info(f"Order {order_id} shipped via {carrier} ({tracking_number})")
        await OrderService._notify(order, email_service or get_email_service())
        return order

    @staticmethod
    async def update_status(
        db: AsyncSession,
        order_id: str,
        status: OrderStatus,
        email_service: Optional[EmailService] = None,
    ) -> Order:
        order = await OrderService.get_order(db, order_id)
        OrderService._check_transition(order, status)

        previous = order.status
        order.status = status.value
        await db.commit()

        logger.info(f"Order {order_id} status {previous} -> {status.value}")
        if previous != status.value:
            await OrderService._notify(order, email_service or get_email_service())
        return order
