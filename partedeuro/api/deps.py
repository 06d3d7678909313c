"""
API dependencies

Admin access is a shared token in the X-Admin-Token header. Service
providers are exposed as dependencies so tests can override them.
"""
import hmac
from typing import Optional

from fastapi import Header, HTTPException, status

from partedeuro.core.config import settings
from partedeuro.core.http_client import get_http_client
from partedeuro.modules.shipping.carriers.auspost import AusPostClient
from partedeuro.services import email_hooks, stripe_gateway, xero_client
from partedeuro.services.email_hooks import EmailService
from partedeuro.services.shipping_service import ShippingRateResolver
from partedeuro.services.stripe_gateway import StripeGateway
from partedeuro.services.xero_client import XeroClient


def _token_matches(token: Optional[str]) -> bool:
    expected = settings.ADMIN_API_TOKEN
    if not expected or not token:
        return False
    return hmac.compare_digest(token.encode(), expected.encode())


async def get_is_admin(x_admin_token: Optional[str] = Header(None)) -> bool:
    """True when a valid admin token is present; never raises."""
    return _token_matches(x_admin_token)


async def require_admin(x_admin_token: Optional[str] = Header(None)) -> None:
    """Require admin token"""
    if not _token_matches(x_admin_token):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )


def get_shipping_resolver() -> ShippingRateResolver:
    return ShippingRateResolver(http_client=get_http_client())


def get_auspost_client() -> AusPostClient:
    return AusPostClient(get_http_client())


def get_stripe_gateway() -> StripeGateway:
    return stripe_gateway.get_stripe_gateway()


def get_xero_client() -> XeroClient:
    return xero_client.get_xero_client()


def get_email_service() -> EmailService:
    return email_hooks.get_email_service()
