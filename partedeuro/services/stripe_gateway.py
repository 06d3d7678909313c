"""
Stripe gateway.

Wraps the Stripe SDK calls used by checkout and settlement behind one
injectable object, using the SDK's async methods. Results are returned as
plain dicts so they can be stored in JSON columns.
"""
import logging
from typing import Any, Dict, List, Optional

import stripe

from partedeuro.core.config import settings

logger = logging.getLogger(__name__)


def _get(obj: Any, *path: str, default: Any = None) -> Any:
    """Read a nested key from Stripe objects or dicts."""
    current = obj
    for key in path:
        if current is None:
            return default
        try:
            current = current[key]
        except (KeyError, TypeError, IndexError):
            return default
    return current if current is not None else default


def normalize_line_item(item: Any) -> Dict[str, Any]:
    """Reduce an expanded checkout line item to the fields settlement needs."""
    quantity = int(_get(item, "quantity", default=1))
    unit_amount = _get(item, "price", "unit_amount")
    if unit_amount is None:
        unit_amount = int(_get(item, "amount_total", default=0)) // max(quantity, 1)
    metadata = _get(item, "price", "product", "metadata", default={}) or {}
    return {
        "description": _get(item, "description") or _get(item, "price", "product", "name", default=""),
        "quantity": quantity,
        "unit_amount": int(unit_amount),
        "vin": metadata.get("VIN") or None,
    }


class StripeGateway:
    """Thin async facade over the Stripe SDK."""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = api_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

    async def create_customer(self, email: str, name: str) -> str:
        customer = await stripe.Customer.create_async(api_key=self.api_key, email=email, name=name)
        return customer["id"]

    async def create_checkout_session(self, **params) -> Dict[str, str]:
        session = await stripe.checkout.Session.create_async(api_key=self.api_key, **params)
        return {"id": session["id"], "url": session["url"]}

    async def list_line_items(self, session_id: str) -> List[Dict[str, Any]]:
        items = await stripe.checkout.Session.list_line_items_async(
            session_id,
            api_key=self.api_key,
            expand=["data.price.product"],
            limit=100,
        )
        return [normalize_line_item(item) for item in items["data"]]

    async def get_shipping_rate_name(self, shipping_rate_id: Optional[str]) -> Optional[str]:
        if not shipping_rate_id:
            return None
        rate = await stripe.ShippingRate.retrieve_async(shipping_rate_id, api_key=self.api_key)
        return rate["display_name"]

    def verify_webhook(self, payload: bytes, sig_header: str):
        """
        Verify a webhook signature.

        Raises:
            ValueError: Invalid payload
            stripe.SignatureVerificationError: Bad signature
        """
        return stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)


_gateway: Optional[StripeGateway] = None


def get_stripe_gateway() -> StripeGateway:
    global _gateway
    if _gateway is None:
        _gateway = StripeGateway()
    return _gateway
