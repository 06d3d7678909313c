"""
Stripe Checkout API Routes

1. POST /checkout/session: snapshot catalog prices into a PENDING order and
   open a hosted checkout session
2. POST /checkout/webhook: signature-verified, idempotent settlement of
   checkout.session.completed
"""
import json
import logging
from typing import Any, Dict

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from partedeuro.api.deps import get_email_service, get_is_admin, get_stripe_gateway, get_xero_client
from partedeuro.core.config import settings
from partedeuro.core.database import get_db
from partedeuro.core.rate_limit import limiter
from partedeuro.core.redis_client import is_webhook_processed, mark_webhook_processed
from partedeuro.modules.shipping.carriers.base import ShippingOption
from partedeuro.schemas.checkout import CheckoutRequest, CheckoutResponse
from partedeuro.services.checkout_service import CheckoutItem, CheckoutSessionBuilder
from partedeuro.services.email_hooks import EmailService
from partedeuro.services.settlement_service import SettlementProcessor
from partedeuro.services.stripe_gateway import StripeGateway
from partedeuro.services.xero_client import XeroClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post("/session", response_model=CheckoutResponse)
@limiter.limit(settings.RATE_LIMIT_CHECKOUT)
async def create_checkout_session(
    request: Request,
    payload: CheckoutRequest,
    is_admin: bool = Depends(get_is_admin),
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    builder = CheckoutSessionBuilder(db, gateway)
    result = await builder.create_checkout_session(
        items=[CheckoutItem(i.listing_id, i.quantity) for i in payload.items],
        name=payload.name,
        email=payload.email,
        country_code=payload.country_code,
        shipping_options=[
            ShippingOption(o.display_name, o.amount_minor_units, o.currency)
            for o in payload.shipping_options
        ],
        admin_created=is_admin,
    )
    return CheckoutResponse(url=result.url, order_id=result.order_id)


async def handle_checkout_session_completed(
    db: AsyncSession,
    session: Dict[str, Any],
    gateway: StripeGateway,
    xero: XeroClient,
    email_service: EmailService,
) -> bool:
    """
    Settle a paid checkout session.

    Never raises for settlement failures: the buyer has paid, so the event
    is parked in failed_orders and the webhook is still acknowledged.
    """
    processor = SettlementProcessor(db, xero, email_service=email_service, gateway=gateway)
    return await processor.settle_checkout_session(session)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    xero: XeroClient = Depends(get_xero_client),
    email_service: EmailService = Depends(get_email_service),
):
    """
    Stripe webhook handler with signature verification.

    Only checkout.session.completed is acted on. Event ids are remembered
    for 24 hours so redeliveries are acknowledged without reprocessing.
    """
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Stripe webhook received but STRIPE_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=500, detail="Webhook not configured")

    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        logger.warning("Stripe webhook missing signature header")
        raise HTTPException(status_code=400, detail="Missing signature")

    try:
        gateway.verify_webhook(payload, sig_header)
    except ValueError as e:
        logger.warning(f"Stripe webhook invalid payload: {e}")
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Stripe webhook signature verification failed: {e}")
        raise HTTPException(status_code=400, detail="Invalid signature")

    # Plain dicts from here on
    event = json.loads(payload)
    event_id = event.get("id")
    event_type = event.get("type")

    if await is_webhook_processed(event_id):
        logger.info(f"Stripe webhook event {event_id} already processed, skipping")
        return {"status": "already_processed"}

    logger.info(f"Stripe webhook received: {event_type} (event_id={event_id})")

    if event_type == "checkout.session.completed":
        session = event["data"]["object"]
        settled = await handle_checkout_session_completed(db, session, gateway, xero, email_service)
        await mark_webhook_processed(event_id)
        return {"status": "success" if settled else "failed_recorded"}

    logger.info(f"Unhandled webhook event type: {event_type}")
    await mark_webhook_processed(event_id)
    return {"status": "ignored"}
