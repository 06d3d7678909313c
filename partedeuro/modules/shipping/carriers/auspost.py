"""
Australia Post carriers (PAC API).

Domestic quotes always offer exactly two tiers, Regular and Express; both
must be present in the response. International quotes keep only the
Standard and Express services and drop anything else.
"""
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

logger = logging.getLogger(__name__)

DOMESTIC_SERVICES = [
    ("AUS_PARCEL_REGULAR", "AusPost Regular"),
    ("AUS_PARCEL_EXPRESS", "AusPost Express"),
]

INTERNATIONAL_SERVICE_NAMES = ["Standard", "Express"]

# Listed first in the country picker, in this order
PRIORITY_COUNTRIES = ["US", "GB", "CA", "BR"]


class AusPostClient:
    """Thin async wrapper over the PAC endpoints, authenticated by AUTH-KEY header."""

    def __init__(self, http_client: httpx.AsyncClient, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.http_client = http_client
        self.api_key = api_key if api_key is not None else settings.AUSPOST_API_KEY
        self.base_url = (base_url or settings.AUSPOST_BASE_URL).rstrip("/")

    async def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        try:
            response = await self.http_client.get(
                f"{self.base_url}{path}",
                params=params,
                headers={"AUTH-KEY": self.api_key},
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"AusPost request failed: {e}", carrier="auspost") from e

        try:
            data = response.json()
        except ValueError:
            raise ProviderError(
                f"AusPost returned non-JSON response ({response.status_code})",
                carrier="auspost",
            )

        error = data.get("error") if isinstance(data, dict) else None
        if response.status_code >= 400 or error:
            message = error.get("errorMessage") if isinstance(error, dict) else None
            raise ProviderError(
                message or f"AusPost error ({response.status_code})",
                carrier="auspost",
                status_code=response.status_code,
            )
        return data

    @staticmethod
    def _services(data: Dict[str, Any]) -> List[Dict[str, Any]]:
        services = (data.get("services") or {}).get("service") or []
        # A single service comes back as an object rather than a list
        if isinstance(services, dict):
            services = [services]
        return services

    async def get_domestic_services(self, request: QuoteRequest, from_postcode: str) -> List[Dict[str, Any]]:
        data = await self._get(
            "/postage/parcel/domestic/service.json",
            params={
                "length": format_number(request.length),
                "width": format_number(request.width),
                "height": format_number(request.height),
                "weight": format_number(request.weight),
                "from_postcode": from_postcode,
                "to_postcode": request.destination_postcode or "",
            },
        )
        return self._services(data)

    async def get_international_services(self, request: QuoteRequest) -> List[Dict[str, Any]]:
        data = await self._get(
            "/postage/parcel/international/service.json",
            params={
                "country_code": request.destination_country.upper(),
                "weight": format_number(request.weight),
            },
        )
        return self._services(data)

    async def get_countries(self) -> List[Dict[str, str]]:
        """Destination countries, priority countries first then alphabetical by name."""
        data = await self._get("/postage/country.json")
        countries = (data.get("countries") or {}).get("country") or []
        if isinstance(countries, dict):
            countries = [countries]

        def sort_key(country):
            code = country.get("code")
            if code in PRIORITY_COUNTRIES:
                return (0, PRIORITY_COUNTRIES.index(code), "")
            return (1, 0, (country.get("name") or "").lower())

        return [
            {"code": c.get("code"), "name": c.get("name")}
            for c in sorted(countries, key=sort_key)
        ]


@register_carrier(CarrierCode.AUSPOST_DOMESTIC)
class AusPostDomesticCarrier(BaseCarrier):
    """Regular and Express parcel rates for Australian destinations."""

    def __init__(self, http_client: httpx.AsyncClient, client: Optional[AusPostClient] = None):
        super().__init__(http_client)
        self.client = client or AusPostClient(http_client)

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.AUSPOST_DOMESTIC

    @property
    def carrier_name(self) -> str:
        return "AusPost"

    async def get_rates(self, request: QuoteRequest) -> List[ShippingOption]:
        services = await self.client.get_domestic_services(request, self.origin_postcode)
        by_code = {s.get("code"): s for s in services}

        options = []
        for code, display_name in DOMESTIC_SERVICES:
            service = by_code.get(code)
            if service is None or service.get("price") is None:
                logger.warning(f"AusPost domestic response missing {code} for {request.destination_postcode}")
                raise ShippingUnavailable(
                    f"AusPost did not return {display_name} for this destination",
                    carrier=self.carrier_code.value,
                )
            options.append(ShippingOption(display_name, to_minor_units(service["price"])))
        return options


@register_carrier(CarrierCode.AUSPOST_INTERNATIONAL)
class AusPostInternationalCarrier(BaseCarrier):
    """International Standard and Express rates. Callers keep dimensions under 105cm."""

    def __init__(self, http_client: httpx.AsyncClient, client: Optional[AusPostClient] = None):
        super().__init__(http_client)
        self.client = client or AusPostClient(http_client)

    @property
    def carrier_code(self) -> CarrierCode:
        return CarrierCode.AUSPOST_INTERNATIONAL

    @property
    def carrier_name(self) -> str:
        return "AusPost"

    async def get_rates(self, request: QuoteRequest) -> List[ShippingOption]:
        services = await self.client.get_international_services(request)

        options = [
            ShippingOption(service["name"], to_minor_units(service["price"]))
            for service in services
            if service.get("name") in INTERNATIONAL_SERVICE_NAMES and service.get("price") is not None
        ]
        if not options:
            raise ShippingUnavailable(
                f"AusPost has no supported international service to {request.destination_country}",
                carrier=self.carrier_code.value,
            )
        return options
