"""
Admin API Routes

Cash orders, settlement retries, fulfilment updates and the Xero
connection. Every route requires the X-Admin-Token header.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from partedeuro.api.deps import get_email_service, get_stripe_gateway, get_xero_client, require_admin
from partedeuro.core.database import get_db
from partedeuro.schemas.checkout import CashOrderRequestSchema, CashOrderResponse
from partedeuro.schemas.order import OrderResponse, UpdateStatusRequest, UpdateTrackingRequest
from partedeuro.services.cash_order_service import CashOrderItem, CashOrderRequest, CashOrderService
from partedeuro.services.email_hooks import EmailService
from partedeuro.services.order_service import OrderService
from partedeuro.services.settlement_service import SettlementProcessor
from partedeuro.services.stripe_gateway import StripeGateway
from partedeuro.services.xero_client import XeroClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# ==================== Orders ====================

@router.post("/orders/cash", response_model=CashOrderResponse)
async def create_cash_order(
    payload: CashOrderRequestSchema,
    db: AsyncSession = Depends(get_db),
    xero: XeroClient = Depends(get_xero_client),
    email_service: EmailService = Depends(get_email_service),
):
    """Record an in-person sale and settle it immediately."""
    processor = SettlementProcessor(db, xero, email_service=email_service)
    service = CashOrderService(db, processor)
    result = await service.create_cash_order(CashOrderRequest(
        name=payload.name,
        email=payload.email,
        country_code=payload.country_code,
        phone=payload.phone,
        items=[CashOrderItem(i.listing_id, i.quantity, i.price) for i in payload.items],
        shipping_method=payload.shipping_method,
        postage_cost=payload.postage_cost,
        carrier=payload.carrier,
    ))
    return CashOrderResponse(success=result.success, order_id=result.order_id)


@router.post("/orders/{order_id}/settlement/retry", response_model=OrderResponse)
async def retry_settlement(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    xero: XeroClient = Depends(get_xero_client),
    email_service: EmailService = Depends(get_email_service),
):
    processor = SettlementProcessor(db, xero, email_service=email_service, gateway=gateway)
    await processor.retry_failed_order(order_id)
    logger.info(f"Settlement retried for order {order_id}")
    return OrderResponse.model_validate(await OrderService.get_order(db, order_id))


@router.patch("/orders/{order_id}/tracking", response_model=OrderResponse)
async def update_tracking(
    order_id: str,
    payload: UpdateTrackingRequest,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
):
    order = await OrderService.update_tracking(
        db, order_id, payload.tracking_number, payload.carrier, email_service=email_service
    )
    return OrderResponse.model_validate(order)


@router.patch("/orders/{order_id}/status", response_model=OrderResponse)
async def update_status(
    order_id: str,
    payload: UpdateStatusRequest,
    db: AsyncSession = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
):
    order = await OrderService.update_status(db, order_id, payload.status, email_service=email_service)
    return OrderResponse.model_validate(order)


# ==================== Xero ====================

@router.get("/xero/consent-url")
async def xero_consent_url(xero: XeroClient = Depends(get_xero_client)):
    return {"url": xero.get_consent_url()}


@router.get("/xero/callback")
async def xero_callback(
    code: str = Query(...),
    state: Optional[str] = Query(None),
    xero: XeroClient = Depends(get_xero_client),
):
    tenant_id = await xero.complete_authorization(code)
    return {"connected": True, "tenant_id": tenant_id}


@router.get("/xero/status")
async def xero_status(xero: XeroClient = Depends(get_xero_client)):
    return await xero.test_connection()
