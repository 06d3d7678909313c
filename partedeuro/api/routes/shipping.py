"""
Shipping quote routes.

Quotes are public; a valid admin token adds the Admin Shipping option.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, Request

from partedeuro.api.deps import get_auspost_client, get_is_admin, get_shipping_resolver
from partedeuro.core.config import settings
from partedeuro.core.rate_limit import limiter
from partedeuro.modules.shipping.carriers.auspost import AusPostClient
from partedeuro.schemas.shipping import (
    CountrySchema,
    ShippingOptionSchema,
    ShippingQuoteRequest,
    ShippingServicesResponse,
)
from partedeuro.services.shipping_service import ShippingRateResolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipping", tags=["shipping"])


@router.post("/services", response_model=ShippingServicesResponse)
@limiter.limit(settings.RATE_LIMIT_SHIPPING)
async def get_shipping_services(
    request: Request,
    payload: ShippingQuoteRequest,
    is_admin: bool = Depends(get_is_admin),
    resolver: ShippingRateResolver = Depends(get_shipping_resolver),
):
    """Quote every shipping choice for a package, in display order."""
    options = await resolver.get_shipping_services(payload.to_quote_request(), is_admin=is_admin)
    return ShippingServicesResponse(options=[ShippingOptionSchema.from_option(o) for o in options])


@router.get("/countries", response_model=List[CountrySchema])
async def get_shipping_countries(client: AusPostClient = Depends(get_auspost_client)):
    return await client.get_countries()
