"""
Shipping Rate Resolver

Decides which carriers quote a package, merges their options and injects the
synthetic Pickup and Admin Shipping options.

Policy, evaluated in order:
1. weight >= 20kg: Interparcel only. Pickup appended for AU destinations.
2. non-AU destination: AusPost International when every dimension is under
   105cm, otherwise Interparcel.
3. AU under 20kg: AusPost Domestic plus an optional Interparcel leg when every
   dimension is under 105cm, otherwise Interparcel. Pickup leads the list.

Admins always get Admin Shipping (1 cent) first. Every result is capped at
MAX_SHIPPING_OPTIONS, synthetic options included.
"""
import asyncio
import logging
from typing import Dict, List, Optional

import httpx

from partedeuro.core.config import settings
from partedeuro.core.http_client import get_http_client, protected_call
from partedeuro.modules.shipping.carriers import CarrierFactory
from partedeuro.modules.shipping.carriers.base import BaseCarrier, CarrierCode, QuoteRequest, ShippingOption

logger = logging.getLogger(__name__)

HEAVY_WEIGHT_KG = 20
MAX_POSTAL_DIMENSION_CM = 105


def pickup_option() -> ShippingOption:
    return ShippingOption(settings.PICKUP_OPTION_NAME, 0)


def admin_option() -> ShippingOption:
    return ShippingOption(settings.ADMIN_SHIPPING_NAME, 1)


class ShippingRateResolver:
    """
    Entry point for checkout shipping quotes.

    Carriers are passed in so tests can substitute fakes; by default they
    are built from the registry around the shared HTTP client.
    """

    def __init__(
        self,
        carriers: Optional[Dict[CarrierCode, BaseCarrier]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        max_options: Optional[int] = None,
    ):
        if carriers is None:
            carriers = CarrierFactory.get_all_carriers(http_client or get_http_client())
        self.carriers = carriers
        self.max_options = max_options or settings.MAX_SHIPPING_OPTIONS

    async def _quote(self, code: CarrierCode, request: QuoteRequest) -> List[ShippingOption]:
        carrier = self.carriers[code]
        return await protected_call(code.value, carrier.get_rates, request)

    async def _optional_quote(self, code: CarrierCode, request: QuoteRequest) -> List[ShippingOption]:
        try:
            return await self._quote(code, request)
        except Exception as e:
            logger.warning(
                f"Optional {code.value} quote failed for {request.destination_postcode}: "
                f"{type(e).__name__}: {e}"
            )
            return []

    async def get_shipping_services(self, request: QuoteRequest, is_admin: bool = False) -> List[ShippingOption]:
        """
        Quote every shipping choice for a package.

        Raises:
            ShippingUnavailable, ProviderError: A required carrier failed.
                No fallback rate is substituted.
        """
        leading: List[ShippingOption] = [admin_option()] if is_admin else []
        trailing: List[ShippingOption] = []

        if request.weight >= HEAVY_WEIGHT_KG:
            carrier_options = await self._quote(CarrierCode.INTERPARCEL, request)
            if request.is_domestic:
                trailing.append(pickup_option())

        elif not request.is_domestic:
            if request.all_dimensions_below(MAX_POSTAL_DIMENSION_CM):
                carrier_options = await self._quote(CarrierCode.AUSPOST_INTERNATIONAL, request)
            else:
                carrier_options = await self._quote(CarrierCode.INTERPARCEL, request)

        else:
            leading.append(pickup_option())
            carrier_options = await self._domestic_options(request)

        # The cap only trims carrier options; synthetic ones always survive
        slots = max(self.max_options - len(leading) - len(trailing), 0)
        options = leading + carrier_options[:slots] + trailing

        logger.info(
            f"Resolved {len(options)} shipping options for {request.destination_country} "
            f"{request.destination_postcode or ''} ({request.weight}kg, admin={is_admin})"
        )
        return options

    async def _domestic_options(self, request: QuoteRequest) -> List[ShippingOption]:
        if not request.all_dimensions_below(MAX_POSTAL_DIMENSION_CM):
            return await self._quote(CarrierCode.INTERPARCEL, request)

        interparcel_task = asyncio.create_task(self._optional_quote(CarrierCode.INTERPARCEL, request))
        try:
            auspost = await self._quote(CarrierCode.AUSPOST_DOMESTIC, request)
        except Exception:
            interparcel_task.cancel()
            raise
        interparcel = await interparcel_task
        return auspost + interparcel
