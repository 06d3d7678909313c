"""
Settlement Processor

Runs after a payment succeeds. Steps, in order:
1. Create the Xero invoice
2. Record the payment against it
3. Update the order (PAID, address, shipping method, carrier, invoice refs)
4. Allocate inventory from the listing's parts
5. Send the new-order and invoice emails (best-effort)

Each completed step is written to settlement_steps and committed, so a
settlement that fails part way can be replayed: completed steps are skipped
and the invoice is never created twice for the same order.
"""
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from partedeuro.core.config import settings
from partedeuro.core.exceptions import OrderNotFoundError, SettlementError
from partedeuro.models.order import FailedOrder, Order, OrderItem, OrderStatus
from partedeuro.models.settlement import SettlementStep, SettlementStepName
from partedeuro.services.email_hooks import EmailService, get_email_service
from partedeuro.services.inventory_service import AllocationMode, InventoryService
from partedeuro.services.stripe_gateway import StripeGateway, _get
from partedeuro.services.xero_client import InvoiceLineItem, XeroClient, XeroContact

logger = logging.getLogger(__name__)

SHIPPING_LINE_DESCRIPTION = "Shipping"


@dataclass
class ShippingAddress:
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None

    def one_line(self) -> str:
        parts = [self.line1, self.line2, self.city, self.state, self.postal_code, self.country]
        return ", ".join(p for p in parts if p)

    @classmethod
    def from_stripe(cls, address: Optional[Dict[str, Any]]) -> "ShippingAddress":
        address = address or {}
        return cls(
            line1=address.get("line1"),
            line2=address.get("line2"),
            city=address.get("city"),
            postal_code=address.get("postal_code"),
            state=address.get("state"),
            country=address.get("country"),
        )


@dataclass
class SettlementLine:
    description: str
    quantity: int
    unit_amount_minor: int
    vin: Optional[str] = None


@dataclass
class PaymentSuccessEvent:
    """Everything settlement needs from a successful payment."""
    order_id: str
    customer_email: str
    customer_name: str
    line_items: List[SettlementLine]
    shipping_address: ShippingAddress = field(default_factory=ShippingAddress)
    shipping_cost_minor_units: int = 0
    session_id: Optional[str] = None
    customer_phone: Optional[str] = None
    shipping_method: Optional[str] = None
    shipping_rate_id: Optional[str] = None
    carrier: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaymentSuccessEvent":
        data = dict(data)
        data["shipping_address"] = ShippingAddress(**(data.get("shipping_address") or {}))
        data["line_items"] = [SettlementLine(**line) for line in data.get("line_items") or []]
        return cls(**data)

    @classmethod
    def from_checkout_session(
        cls,
        session: Dict[str, Any],
        line_items: List[Dict[str, Any]],
        shipping_method: Optional[str] = None,
    ) -> "PaymentSuccessEvent":
        order_id = _get(session, "metadata", "orderId")
        if not order_id:
            raise SettlementError("Checkout session has no orderId metadata", step="event")

        details = _get(session, "customer_details", default={}) or {}
        shipping_details = (
            _get(session, "collected_information", "shipping_details")
            or _get(session, "shipping_details")
            or {}
        )
        address = shipping_details.get("address") or details.get("address")

        return cls(
            order_id=order_id,
            session_id=_get(session, "id"),
            customer_email=details.get("email") or "",
            customer_name=shipping_details.get("name") or details.get("name") or "",
            customer_phone=details.get("phone"),
            shipping_address=ShippingAddress.from_stripe(address),
            shipping_cost_minor_units=int(_get(session, "shipping_cost", "amount_total", default=0)),
            shipping_rate_id=_get(session, "shipping_cost", "shipping_rate"),
            shipping_method=shipping_method,
            line_items=[
                SettlementLine(
                    description=item["description"],
                    quantity=item["quantity"],
                    unit_amount_minor=item["unit_amount"],
                    vin=item.get("vin"),
                )
                for item in line_items
            ],
        )


def minor_to_decimal(amount: int) -> Decimal:
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


def carrier_from_shipping_method(shipping_method: Optional[str]) -> Optional[str]:
    """
    Derive the carrier name from a shipping option label.

    "AusPost Express" -> "AusPost", "Couriers Please - Road" -> "Couriers Please".
    Pickup and admin placeholder options have no carrier.
    """
    if not shipping_method:
        return None
    if shipping_method in (settings.PICKUP_OPTION_NAME, settings.ADMIN_SHIPPING_NAME):
        return None
    if " - " in shipping_method:
        return shipping_method.split(" - ", 1)[0].strip()
    if shipping_method.startswith("AusPost"):
        return "AusPost"
    return None


def build_invoice_line_items(event: PaymentSuccessEvent) -> List[InvoiceLineItem]:
    """One line per purchased listing plus a shipping line when shipping was charged."""
    lines = [
        InvoiceLineItem(
            description=line.description,
            quantity=line.quantity,
            unit_amount=minor_to_decimal(line.unit_amount_minor),
            account_code=settings.XERO_SALES_ACCOUNT_CODE,
            vin=line.vin,
        )
        for line in event.line_items
    ]
    if event.shipping_cost_minor_units > 0:
        lines.append(InvoiceLineItem(
            description=event.shipping_method or SHIPPING_LINE_DESCRIPTION,
            quantity=1,
            unit_amount=minor_to_decimal(event.shipping_cost_minor_units),
            account_code=settings.XERO_SHIPPING_ACCOUNT_CODE,
        ))
    return lines


class SettlementProcessor:
    """
    Resumable settlement for one order at a time.

    Collaborators are injected; the db session is owned by the caller.
    """

    def __init__(
        self,
        db: AsyncSession,
        xero: XeroClient,
        email_service: Optional[EmailService] = None,
        inventory: Optional[InventoryService] = None,
        gateway: Optional[StripeGateway] = None,
    ):
        self.db = db
        self.xero = xero
        self.email_service = email_service or get_email_service()
        self.inventory = inventory or InventoryService(db)
        self.gateway = gateway

    # ==================== Saga bookkeeping ====================

    async def _load_order(self, order_id: str) -> Order:
        result = await self.db.execute(select(Order).where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if order is None:
            raise SettlementError(f"Order {order_id} not found", order_id=order_id, step="load_order")
        return order

    async def _completed_steps(self, order_id: str) -> Dict[str, SettlementStep]:
        result = await self.db.execute(select(SettlementStep).where(SettlementStep.order_id == order_id))
        return {row.step: row for row in result.scalars().all()}

    async def _record(self, order_id: str, step: SettlementStepName, data: Optional[Dict[str, Any]] = None):
        self.db.add(SettlementStep(order_id=order_id, step=step.value, data=data or {}))
        await self.db.commit()
        logger.info(f"[Settlement:{order_id}] {step.value}")

    # ==================== Steps ====================

    async def _create_invoice(self, order: Order, event: PaymentSuccessEvent, lines: List[InvoiceLineItem]) -> Dict[str, Any]:
        if order.xero_invoice_ref:
            # Invoice exists from an earlier run whose step record was lost
            return {"invoice_id": order.xero_invoice_ref, "invoice_number": order.xero_invoice_id}

        address = event.shipping_address
        contact = XeroContact(
            name=event.customer_name or order.name,
            email=event.customer_email or order.email,
            address_line1=address.line1,
            address_line2=address.line2,
            city=address.city,
            region=address.state,
            postal_code=address.postal_code,
            country=address.country or order.shipping_country,
        )
        invoice = await self.xero.create_invoice(
            contact,
            lines,
            reference=order.id,
            idempotency_key=f"order-{order.id}-invoice",
        )
        return {"invoice_id": invoice.invoice_id, "invoice_number": invoice.invoice_number}

    async def _record_payment(self, order: Order, invoice: Dict[str, Any], lines: List[InvoiceLineItem]) -> Dict[str, Any]:
        amount = sum((line.line_amount for line in lines), Decimal("0"))
        payment = await self.xero.create_payment(
            invoice["invoice_id"],
            amount,
            account_code=settings.XERO_BANK_ACCOUNT,
            idempotency_key=f"order-{order.id}-payment",
        )
        return {"payment_id": payment.payment_id, "amount": str(amount)}

    def _update_order(self, order: Order, event: PaymentSuccessEvent, invoice: Dict[str, Any]):
        address = event.shipping_address

        if order.status in (OrderStatus.PENDING.value, OrderStatus.PENDING_PAYMENT.value):
            order.status = OrderStatus.PAID.value
        order.shipping = event.shipping_cost_minor_units
        if event.customer_phone:
            order.phone_number = event.customer_phone

        order.shipping_address = address.one_line() or order.shipping_address
        order.shipping_line1 = address.line1
        order.shipping_line2 = address.line2
        order.shipping_city = address.city
        order.shipping_postcode = address.postal_code
        order.shipping_state = address.state
        order.shipping_country = address.country or order.shipping_country

        order.shipping_method = event.shipping_method or order.shipping_method
        order.shipping_rate_id = event.shipping_rate_id
        order.carrier = event.carrier or order.carrier or carrier_from_shipping_method(order.shipping_method)

        order.xero_invoice_id = invoice.get("invoice_number")
        order.xero_invoice_ref = invoice["invoice_id"]
        if event.session_id:
            order.stripe_checkout_session_id = event.session_id

    async def _allocate(self, order: Order, mode: AllocationMode) -> Dict[str, Any]:
        result = await self.db.execute(select(OrderItem).where(OrderItem.order_id == order.id))
        items = list(result.scalars().all())
        plans = await self.inventory.allocate_order(items, mode)
        return {"mode": mode.value, "items": [plan.to_dict() for plan in plans]}

    async def _notify(self, order: Order, event: PaymentSuccessEvent, invoice: Dict[str, Any]) -> Dict[str, Any]:
        emailed = await self.email_service.send_new_order_email(order, event.line_items)

        invoice_emailed = False
        try:
            await self.xero.email_invoice(invoice["invoice_id"])
            invoice_emailed = True
        except Exception as e:
            logger.warning(f"[Settlement:{order.id}] Invoice email failed: {e}")

        return {"new_order_email": emailed, "invoice_email": invoice_emailed}

    # ==================== Entry points ====================

    async def settle(
        self,
        event: PaymentSuccessEvent,
        allocation_mode: AllocationMode = AllocationMode.FIFO,
    ) -> Order:
        """
        Settle an order, skipping steps already recorded.

        Raises:
            SettlementError: Invoice, payment, order update or allocation failed
        """
        order = await self._load_order(event.order_id)
        order_id = order.id
        done = await self._completed_steps(order_id)
        lines = build_invoice_line_items(event)

        step = SettlementStepName.INVOICE_CREATED
        try:
            if step.value in done:
                invoice = done[step.value].data
            else:
                invoice = await self._create_invoice(order, event, lines)
                await self._record(order_id, step, invoice)

            step = SettlementStepName.PAYMENT_RECORDED
            if step.value not in done:
                await self._record(order_id, step, await self._record_payment(order, invoice, lines))

            step = SettlementStepName.ORDER_UPDATED
            if step.value not in done:
                self._update_order(order, event, invoice)
                await self._record(order_id, step, {"status": order.status})

            step = SettlementStepName.INVENTORY_ALLOCATED
            if step.value not in done:
                await self._record(order_id, step, await self._allocate(order, allocation_mode))
        except SettlementError:
            await self.db.rollback()
            raise
        except Exception as e:
            await self.db.rollback()
            logger.error(f"[Settlement:{order_id}] Failed at {step.value}: {type(e).__name__}: {e}")
            raise SettlementError(
                f"Settlement failed at {step.value}: {e}",
                order_id=order_id,
                step=step.value,
            ) from e

        if SettlementStepName.NOTIFIED.value not in done:
            await self._record(order_id, SettlementStepName.NOTIFIED, await self._notify(order, event, invoice))

        logger.info(f"[Settlement:{order_id}] Settled (invoice {invoice.get('invoice_number')})")
        return order

    async def _build_event(self, session: Dict[str, Any], line_items: Optional[List[Dict[str, Any]]]) -> PaymentSuccessEvent:
        if self.gateway is None:
            raise SettlementError("A Stripe gateway is required to settle checkout sessions", step="event")
        if line_items is None:
            line_items = await self.gateway.list_line_items(session["id"])
        shipping_method = await self.gateway.get_shipping_rate_name(
            _get(session, "shipping_cost", "shipping_rate")
        )
        return PaymentSuccessEvent.from_checkout_session(session, line_items, shipping_method)

    async def settle_checkout_session(self, session: Dict[str, Any]) -> bool:
        """
        Settle a completed Stripe checkout session.

        The buyer has already paid, so failures are not raised: the session
        and its line items are stored in failed_orders for manual replay.
        """
        order_id = _get(session, "metadata", "orderId")
        line_items = None
        try:
            if self.gateway is not None:
                line_items = await self.gateway.list_line_items(session["id"])
            event = await self._build_event(session, line_items)
            await self.settle(event)
            return True
        except Exception as e:
            logger.error(f"[Settlement:{order_id}] Checkout session {session.get('id')} not settled: {e}", exc_info=True)
            await self.db.rollback()
            await self.record_failure(order_id, session, line_items, str(e))
            return False

    async def record_failure(
        self,
        order_id: Optional[str],
        session: Dict[str, Any],
        line_items: Optional[List[Dict[str, Any]]],
        error: str,
    ) -> FailedOrder:
        failed = FailedOrder(order_id=order_id, stripe_event=session, line_items=line_items, error=error)
        self.db.add(failed)
        await self.db.commit()
        return failed

    async def retry_failed_order(self, order_id: str) -> Order:
        """Replay the latest unresolved webhook failure for an order."""
        result = await self.db.execute(
            select(FailedOrder)
            .where(FailedOrder.order_id == order_id)
            .where(FailedOrder.resolved_at.is_(None))
            .order_by(FailedOrder.created_at.desc())
            .limit(1)
        )
        failed = result.scalar_one_or_none()
        if failed is None:
            raise OrderNotFoundError(f"No unresolved settlement failure for order {order_id}")

        event = await self._build_event(failed.stripe_event, failed.line_items)
        order = await self.settle(event)

        failed.resolved_at = datetime.now(timezone.utc)
        await self.db.commit()
        return order
