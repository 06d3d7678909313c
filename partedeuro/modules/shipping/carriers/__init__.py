"""
Carrier Registry and Factory

- Carrier implementations register themselves by CarrierCode
- CarrierFactory builds instances around a shared httpx client
"""
import logging
from typing import Dict, List, Optional, Type

import httpx

from partedeuro.modules.shipping.carriers.base import BaseCarrier, CarrierCode

logger = logging.getLogger(__name__)

_CARRIER_REGISTRY: Dict[CarrierCode, Type[BaseCarrier]] = {}


def register_carrier(carrier_code: CarrierCode):
    """
    Decorator to register a carrier implementation.

    Usage:
        @register_carrier(CarrierCode.INTERPARCEL)
        class InterparcelCarrier(BaseCarrier):
            ...
    """
    def decorator(cls: Type[BaseCarrier]):
        _CARRIER_REGISTRY[carrier_code] = cls
        logger.debug(f"Registered carrier: {carrier_code.value} -> {cls.__name__}")
        return cls
    return decorator


class CarrierFactory:
    """Factory for creating carrier instances."""

    @classmethod
    def get_carrier(cls, carrier_code: CarrierCode, http_client: httpx.AsyncClient) -> Optional[BaseCarrier]:
        carrier_cls = _CARRIER_REGISTRY.get(carrier_code)
        if not carrier_cls:
            logger.warning(f"No implementation registered for carrier: {carrier_code.value}")
            return None
        return carrier_cls(http_client)

    @classmethod
    def get_all_carriers(cls, http_client: httpx.AsyncClient) -> Dict[CarrierCode, BaseCarrier]:
        return {
            code: carrier_cls(http_client)
            for code, carrier_cls in _CARRIER_REGISTRY.items()
        }

    @classmethod
    def get_registered_carriers(cls) -> List[CarrierCode]:
        return list(_CARRIER_REGISTRY.keys())


# Import carriers to trigger registration
# These imports must be at the bottom to avoid circular imports
from partedeuro.modules.shipping.carriers.auspost import AusPostDomesticCarrier, AusPostInternationalCarrier  # noqa: E402, F401
from partedeuro.modules.shipping.carriers.interparcel import InterparcelCarrier  # noqa: E402, F401
