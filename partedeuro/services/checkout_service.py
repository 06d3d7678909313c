"""
Checkout Session Builder

Prices come from the catalog, never from the client. The PENDING order and
its items are committed before the Stripe session is opened, so a webhook
that arrives early can always find the order from the session metadata.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from partedeuro.core.config import settings
from partedeuro.core.exceptions import CheckoutError, ListingNotFoundError
from partedeuro.models.listing import Listing
from partedeuro.models.order import Order, OrderItem, OrderStatus
from partedeuro.modules.shipping.carriers.base import ShippingOption
from partedeuro.services.stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


@dataclass
class CheckoutItem:
    listing_id: str
    quantity: int = 1


@dataclass
class CheckoutResult:
    order_id: str
    session_id: str
    url: str


async def load_listings(db: AsyncSession, listing_ids: Sequence[str]) -> Dict[str, Listing]:
    """Fetch listings with their parts; every id must exist."""
    result = await db.execute(
        select(Listing)
        .where(Listing.id.in_(list(listing_ids)))
        .options(selectinload(Listing.parts))
    )
    listings = {listing.id: listing for listing in result.scalars().all()}
    missing = [listing_id for listing_id in listing_ids if listing_id not in listings]
    if missing:
        raise ListingNotFoundError(f"Listings not found: {', '.join(missing)}", listing_ids=missing)
    return listings


def listing_vin(listing: Listing) -> Optional[str]:
    for part in listing.parts or []:
        if part.donor_vin:
            return part.donor_vin
    return None


def listing_locations(listing: Listing) -> str:
    locations = sorted({part.inventory_location for part in listing.parts or [] if part.inventory_location})
    return ", ".join(locations)


def merge_items(items: Sequence[CheckoutItem]) -> List[CheckoutItem]:
    """Collapse repeated listing ids into one line, preserving first-seen order."""
    merged: Dict[str, CheckoutItem] = {}
    for item in items:
        if item.listing_id in merged:
            merged[item.listing_id].quantity += item.quantity
        else:
            merged[item.listing_id] = CheckoutItem(item.listing_id, item.quantity)
    return list(merged.values())


class CheckoutSessionBuilder:
    def __init__(self, db: AsyncSession, gateway: StripeGateway):
        self.db = db
        self.gateway = gateway

    def _line_item(self, listing: Listing, quantity: int) -> dict:
        product_data = {
            "name": listing.title,
            "metadata": {
                "listingId": listing.id,
                "VIN": listing_vin(listing) or "",
                "inventoryLocations": listing_locations(listing),
            },
        }
        if listing.first_image:
            product_data["images"] = [listing.first_image]
        return {
            "price_data": {
                "currency": settings.STRIPE_CURRENCY,
                "unit_amount": listing.price,
                "product_data": product_data,
            },
            "quantity": quantity,
        }

    async def create_checkout_session(
        self,
        items: Sequence[CheckoutItem],
        name: str,
        email: str,
        country_code: str,
        shipping_options: Sequence[ShippingOption],
        admin_created: bool = False,
    ) -> CheckoutResult:
        """
        Snapshot catalog prices into a PENDING order and open a hosted checkout.

        Raises:
            ListingNotFoundError: An item references an unknown listing
            CheckoutError: Stripe rejected the customer or session
        """
        if not items:
            raise CheckoutError("Cart is empty")

        items = merge_items(items)
        listings = await load_listings(self.db, [item.listing_id for item in items])

        try:
            customer_id = await self.gateway.create_customer(email=email, name=name)
        except stripe.StripeError as e:
            raise CheckoutError(f"Could not create payment customer: {e.user_message or e}") from e

        line_items = [self._line_item(listings[item.listing_id], item.quantity) for item in items]
        subtotal = sum(listings[item.listing_id].price * item.quantity for item in items)

        order = Order(
            id=str(uuid.uuid4()),
            email=email,
            name=name,
            status=(OrderStatus.PENDING_PAYMENT if admin_created else OrderStatus.PENDING).value,
            admin_created=admin_created,
            subtotal=subtotal,
            shipping=0,
            shipping_country=country_code.upper(),
        )
        self.db.add(order)
        await self.db.flush()

        for item in items:
            self.db.add(OrderItem(order_id=order.id, listing_id=item.listing_id, quantity=item.quantity))
        await self.db.commit()

        base_url = settings.checkout_base_url
        try:
            session = await self.gateway.create_checkout_session(
                customer=customer_id,
                line_items=line_items,
                mode="payment",
                payment_method_types=settings.STRIPE_PAYMENT_METHOD_TYPES,
                phone_number_collection={"enabled": True},
                shipping_address_collection={"allowed_countries": [country_code.upper()]},
                shipping_options=[option.to_stripe() for option in shipping_options],
                success_url=f"{base_url}/checkout/confirmation/{order.id}",
                cancel_url=f"{base_url}/checkout?stripeError=true",
                metadata={"orderId": order.id},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe session creation failed for order {order.id}: {e}")
            raise CheckoutError(f"Could not start checkout: {e.user_message or e}") from e

        order.stripe_checkout_session_id = session["id"]
        await self.db.commit()

        logger.info(f"Checkout session {session['id']} opened for order {order.id} (subtotal {subtotal})")
        return CheckoutResult(order_id=order.id, session_id=session["id"], url=session["url"])
