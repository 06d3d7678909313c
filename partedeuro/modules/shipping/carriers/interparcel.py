"""
Interparcel carrier.

Quoting is three sequential phases:
1. Availability: which services can carry this package to this destination
2. Quote session: CSRF token and cookie from the public quote page
3. Per-service quotes, fired concurrently

A single service that errors or returns nothing is dropped without failing
the others. Only when every service drops out does the adapter fail.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from partedeuro.core.config import settings
from partedeuro.core.exceptions import ProviderError, ShippingUnavailable
from partedeuro.modules.shipping.carriers import register_carrier
from partedeuro.modules.shipping.carriers.base import (
    BaseCarrier,
    CarrierCode,
    QuoteRequest,
    ShippingOption,
    format_number,
    to_minor_units,
)
from partedeuro.modules.shipping.token_provider import QuotePageTokenProvider, QuoteSession, TokenProvider

logger = logging.getLogger(__name__)

# Above this weight (kg) the package ships on a pallet
PALLET_WEIGHT_THRESHOLD = 35
# Pallet wrapping allowance in cm
PALLET_PADDING = {"length": 30, "width": 30, "height": 10}

EXCLUDED_SERVICE_MARKERS = ["Hunter"]
B2B_MARKER = "b2b"

MAX_RESULTS = 4


def package_type(weight: float) -> str:
    return "pallet" if weight > PALLET_WEIGHT_THRESHOLD else "parcel"


def is_service_allowed(service_name: str, is_b2b: bool) -> bool:
    if any(marker in service_name for marker in EXCLUDED_SERVICE_MARKERS):
        return False
    if not is_b2b and B2B_MARKER in service_name.lower():
        return False
    return True


@register_carrier(CarrierCode.INTERPARCEL)
class InterparcelCarrier(BaseCarrier):
    """Courier and freight rates via Interparcel's booking API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_provider: Optional[TokenProvider] = None,
        base_url: Optional[str] = None,
    ):
        super().__init__(http_client)
        self.token_provider = token_provider or QuotePageTokenProvider(http_client)
        self.api_url = f"{(base_url or settings.INTERPARCEL_BASE_URL).rstrip('/')}/api"

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.INTERPARCEL

    @property
    def carrier_name(self) -> str:
        return "Interparcel"

    def build_params(self, request: QuoteRequest) -> Dict[str, str]:
        """Shipment parameters shared by availability and quote calls."""
        length, width, height = request.length, request.width, request.height
        if package_type(request.weight) == "pallet":
            length += PALLET_PADDING["length"]
            width += PALLET_PADDING["width"]
            height += PALLET_PADDING["height"]

        return {
            "pkg[0][0]": format_number(request.weight),
            "pkg[0][1]": format_number(length),
            "pkg[0][2]": format_number(width),
            "pkg[0][3]": format_number(height),
            "source": "booking",
            "coll_country": "Australia",
            "coll_state": self.origin_state,
            "coll_city": self.origin_city,
            "coll_postcode": self.origin_postcode,
            "del_postcode": request.destination_postcode or "",
            "del_city": request.destination_city or "",
            "del_state": request.destination_state or "",
            "del_country": request.destination_country,
        }

    def build_page_params(self, request: QuoteRequest) -> Dict[str, str]:
        """Query string for the public quote page (unpadded dimensions)."""
        dims = "|".join(
            format_number(v) for v in (request.weight, request.length, request.width, request.height)
        )
        return {
            "p": dims,
            "t": package_type(request.weight),
            "ct": self.origin_city,
            "cs": self.origin_state,
            "cp": self.origin_postcode,
            "cc": "Australia",
            "dt": request.destination_city or "",
            "ds": request.destination_state or "",
            "dp": request.destination_postcode or "",
            "dc": request.destination_country,
        }

    async def get_available_services(self, request: QuoteRequest, params: Dict[str, str]) -> List[Dict[str, Any]]:
        try:
            response = await self.http_client.get(
                f"{self.api_url}/quote/availability",
                params={**params, "type": package_type(request.weight)},
            )
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderError(f"Interparcel availability request failed: {e}", carrier="interparcel") from e

        if not isinstance(data, dict):
            raise ProviderError("Interparcel availability returned an unexpected payload", carrier="interparcel")
        if data.get("errorMessage"):
            raise ProviderError(data["errorMessage"], carrier="interparcel", status_code=response.status_code)
        return data.get("services") or []

    async def quote_service(
        self,
        service: Dict[str, Any],
        params: Dict[str, str],
        session: QuoteSession,
    ) -> Optional[ShippingOption]:
        """Quote one service. Any failure yields None."""
        try:
            response = await self.http_client.get(
                f"{self.api_url}/quote/quote",
                params={**params, "service": str(service["id"])},
                headers=session.headers(),
            )
            if not response.is_success:
                logger.warning(f"[Interparcel] Quote for {service.get('service')} returned {response.status_code}")
                return None

            quoted = response.json().get("services") or []
            if not quoted:
                return None

            first = quoted[0]
            return ShippingOption(
                display_name=f"{first['carrier']} - {first['name']}",
                amount_minor_units=to_minor_units(first["sellPrice"]),
            )
        except Exception as e:
            logger.warning(f"[Interparcel] Quote for {service.get('service')} failed: {type(e).__name__}: {e}")
            return None

    async def get_rates(self, request: QuoteRequest) -> List[ShippingOption]:
        params = self.build_params(request)

        services = await self.get_available_services(request, params)
        session = await self.token_provider.get_session(self.build_page_params(request))

        candidates = [
            s for s in services
            if is_service_allowed(s.get("service") or "", request.is_b2b)
        ]
        results = await asyncio.gather(
            *(self.quote_service(service, params, session) for service in candidates),
            return_exceptions=True,
        )
        options = [r for r in results if isinstance(r, ShippingOption)]

        logger.info(f"[Interparcel] {len(options)}/{len(candidates)} services quoted for {request.destination_country}")

        if not options:
            raise ShippingUnavailable(
                "Unable to ship this item to the destination country",
                carrier=self.carrier_code.value,
            )
        return options[:MAX_RESULTS]
