"""
Shared HTTP client and protected carrier calls.

One httpx.AsyncClient is shared across requests and closed by the app
lifespan. Carrier calls go through protected_call(), which applies a bounded
timeout inside a per-carrier circuit breaker. There are no retries: a failed
carrier call fails that quote.
"""
import asyncio
import logging
from typing import Any, Callable, Optional

import httpx

from partedeuro.core.circuit_breaker import CircuitOpenError, get_circuit_breaker
from partedeuro.core.config import settings
from partedeuro.core.exceptions import (
    CarrierCircuitOpenError,
    CarrierTimeoutError,
    CsrfTokenUnavailable,
    ProviderError,
    ShippingUnavailable,
)

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "PartedEuro/1.0 (+https://partedeuro.com.au)",
    "Accept": "application/json",
}

_http_client: Optional[httpx.AsyncClient] = None

# 4xx statuses that still count as outages
OUTAGE_CLIENT_STATUSES = {408, 429}


def build_http_client(**kwargs) -> httpx.AsyncClient:
    kwargs.setdefault("timeout", httpx.Timeout(settings.CARRIER_TIMEOUT_SECONDS))
    kwargs.setdefault("headers", DEFAULT_HEADERS)
    kwargs.setdefault("follow_redirects", True)
    return httpx.AsyncClient(**kwargs)


def get_http_client() -> httpx.AsyncClient:
    """Get the shared client, creating it on first use."""
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = build_http_client()
    return _http_client


async def close_http_client():
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


def is_carrier_outage(error: Exception) -> bool:
    """
    True when a carrier error means the provider is degraded.

    Timeouts, transport failures, malformed payloads and 5xx responses are
    outages. ShippingUnavailable and 4xx or in-body error answers (unknown
    country, bad postcode) are the provider doing its job and are not.
    """
    if isinstance(error, ShippingUnavailable):
        return False
    if isinstance(error, CsrfTokenUnavailable):
        return True
    if isinstance(error, ProviderError):
        status_code = error.details.get("status_code")
        if status_code is None:
            return True
        return status_code >= 500 or status_code in OUTAGE_CLIENT_STATUSES
    return True


async def protected_call(
    name: str,
    func: Callable,
    *args,
    timeout: Optional[float] = None,
    **kwargs,
) -> Any:
    """
    Await func(*args, **kwargs) with a timeout, inside the breaker called name.

    Only outages count as breaker failures, see is_carrier_outage().

    Raises:
        CarrierTimeoutError: The call exceeded the timeout
        CarrierCircuitOpenError: The breaker is rejecting calls
    """
    timeout = timeout or settings.CARRIER_TIMEOUT_SECONDS
    breaker = get_circuit_breaker(
        name,
        failure_threshold=settings.CARRIER_FAILURE_THRESHOLD,
        recovery_timeout=settings.CARRIER_RECOVERY_TIMEOUT,
    )

    async def _bounded():
        return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)

    try:
        return await breaker.execute(_bounded, is_failure=is_carrier_outage)
    except CircuitOpenError as e:
        raise CarrierCircuitOpenError(
            f"{name} is temporarily unavailable",
            carrier=name,
            retry_after_seconds=e.retry_after_seconds,
        ) from e
    except asyncio.TimeoutError as e:
        logger.warning(f"[{name}] call timed out after {timeout}s")
        raise CarrierTimeoutError(f"{name} did not respond within {timeout}s", carrier=name) from e
