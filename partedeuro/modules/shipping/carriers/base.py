"""
Base Carrier Interface

Every carrier adapter turns one provider's rate API into a list of
ShippingOption values. Adapters do not apply routing policy; the
ShippingRateResolver decides which adapters run for a given request.
"""
import enum
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING
from typing import Any, Dict, List, Optional, Union

import httpx

from partedeuro.core.config import settings


class CarrierCode(str, enum.Enum):
    AUSPOST_DOMESTIC = "auspost_domestic"
    AUSPOST_INTERNATIONAL = "auspost_international"
    INTERPARCEL = "interparcel"


# =============================================================================
# Carrier-Agnostic Data Classes
# =============================================================================

@dataclass(frozen=True)
class QuoteRequest:
    """Package and destination for a shipping quote. Weight in kg, dimensions in cm."""
    weight: float
    length: float
    width: float
    height: float
    destination_country: str
    destination_postcode: Optional[str] = None
    destination_city: Optional[str] = None
    destination_state: Optional[str] = None
    is_b2b: bool = False

    @property
    def is_domestic(self) -> bool:
        return self.destination_country.upper() == "AU"

    def all_dimensions_below(self, limit: float) -> bool:
        return self.length < limit and self.width < limit and self.height < limit


@dataclass(frozen=True)
class ShippingOption:
    """
    One shipping choice shown at checkout.

    Order within a list matters: the first option is pre-selected.
    """
    display_name: str
    amount_minor_units: int
    currency: str = "AUD"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "display_name": self.display_name,
            "amount_minor_units": self.amount_minor_units,
            "currency": self.currency,
        }

    def to_stripe(self) -> Dict[str, Any]:
        """Stripe Checkout shipping_options entry."""
        return {
            "shipping_rate_data": {
                "type": "fixed_amount",
                "display_name": self.display_name,
                "fixed_amount": {
                    "amount": self.amount_minor_units,
                    "currency": self.currency.lower(),
                },
            }
        }


def to_minor_units(price: Union[str, float, int, Decimal]) -> int:
    """
    Convert a decimal currency amount to integer cents, always rounding up.

    Goes through Decimal so "1.10" becomes 110, not 111.
    """
    amount = Decimal(str(price)) * 100
    return int(amount.to_integral_value(rounding=ROUND_CEILING))


def format_number(value: float) -> str:
    """Render 5.0 as "5" and 2.5 as "2.5" for provider query strings."""
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


class BaseCarrier(ABC):
    """
    Abstract base class for all shipping carriers.

    Carriers share one httpx.AsyncClient; it is injected so tests can hand in
    a client backed by httpx.MockTransport.
    """

    def __init__(self, http_client: httpx.AsyncClient):
        self.http_client = http_client
        self.origin_postcode = settings.SHIPPING_ORIGIN_POSTCODE
        self.origin_city = settings.SHIPPING_ORIGIN_CITY
        self.origin_state = settings.SHIPPING_ORIGIN_STATE

    @property
    @abstractmethod
    def carrier_code(self) -> CarrierCode:
        """Return the carrier code."""

    @property
    @abstractmethod
    def carrier_name(self) -> str:
        """Human-readable carrier name."""

    @abstractmethod
    async def get_rates(self, request: QuoteRequest) -> List[ShippingOption]:
        """
        Quote the package.

        Returns:
            Normalized options in provider order

        Raises:
            ShippingUnavailable: No usable service for these inputs
            ProviderError: The provider answered with an error or garbage
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.carrier_code.value}>"
