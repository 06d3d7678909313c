"""
Order Email Hooks

Notifications are fire-and-forget: EmailService never raises, it logs and
returns False so a mail outage cannot fail settlement or fulfilment.
Uses Resend when RESEND_API_KEY is set, otherwise a logging mock.
"""
import logging
from dataclasses import dataclass
from html import escape
from typing import Any, List, Optional, Protocol

import httpx

from partedeuro.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailProvider(Protocol):
    """Protocol for email providers."""

    async def send_email(self, to: List[str], subject: str, html: str) -> SendResult:
        ...


class MockEmailProvider:
    """Mock provider for development/testing."""

    def __init__(self):
        self.sent: List[dict] = []

    async def send_email(self, to: List[str], subject: str, html: str) -> SendResult:
        self.sent.append({"to": to, "subject": subject, "html": html})
        logger.info(f"[MOCK EMAIL] {subject} -> {', '.join(to)}")
        return SendResult(success=True, message_id=f"mock-{len(self.sent)}")


class ResendProvider:
    """Resend transactional email provider."""

    BASE_URL = "https://api.resend.com"

    def __init__(self, api_key: Optional[str] = None, from_email: Optional[str] = None):
        self.api_key = api_key or settings.RESEND_API_KEY
        self.from_email = from_email or settings.EMAIL_FROM
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=30.0,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._http_client

    async def close(self):
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def send_email(self, to: List[str], subject: str, html: str) -> SendResult:
        http = await self._get_http_client()
        payload = {
            "from": self.from_email,
            "to": to,
            "subject": subject,
            "html": html,
        }
        resp = await http.post(f"{self.BASE_URL}/emails", json=payload)
        if resp.status_code in (200, 201, 202):
            return SendResult(success=True, message_id=resp.json().get("id"))
        return SendResult(success=False, error=resp.text)


def format_money(minor_units: int) -> str:
    return f"${(minor_units or 0) / 100:,.2f}"


def _order_link(order: Any) -> str:
    return f"{settings.checkout_base_url}/checkout/confirmation/{order.id}"


class EmailService:
    """Email service wrapper. Every method returns True on a successful send."""

    def __init__(self, provider: Optional[EmailProvider] = None):
        self.provider = provider or MockEmailProvider()

    async def _send(self, kind: str, to: List[str], subject: str, html: str) -> bool:
        try:
            result = await self.provider.send_email(to=to, subject=subject, html=html)
        except Exception as e:
            logger.error(f"Failed to send {kind} email to {to}: {e}")
            return False
        if not result.success:
            logger.warning(f"{kind} email to {to} rejected: {result.error}")
        return result.success

    async def send_new_order_email(self, order: Any, lines: Optional[List[Any]] = None) -> bool:
        """Notify the shop that an order has been paid."""
        rows = "".join(
            f"<li>{escape(line.description)} x {line.quantity}</li>" for line in (lines or [])
        )
        html = (
            f"<h2>New order {escape(order.id)}</h2>"
            f"<p>{escape(order.name or '')} &lt;{escape(order.email or '')}&gt;</p>"
            f"<ul>{rows}</ul>"
            f"<p>Shipping: {escape(order.shipping_method or 'n/a')} ({format_money(order.shipping)})</p>"
            f"<p>Total: {format_money(order.total)}</p>"
        )
        return await self._send(
            "new order", [settings.ORDER_NOTIFICATION_EMAIL], f"New order from {order.name}", html
        )

    async def send_shipped_email(self, order: Any) -> bool:
        tracking = (
            f"<p>{escape(order.carrier or 'Carrier')} tracking number: "
            f"<strong>{escape(order.tracking_number)}</strong></p>"
            if order.tracking_number else ""
        )
        html = (
            f"<p>Hi {escape(order.name or '')},</p>"
            f"<p>Your Parted Euro order has shipped.</p>"
            f"{tracking}"
            f"<p><a href=\"{_order_link(order)}\">View your order</a></p>"
        )
        return await self._send("shipped", [order.email], "Your order has shipped", html)

    async def send_ready_for_pickup_email(self, order: Any) -> bool:
        html = (
            f"<p>Hi {escape(order.name or '')},</p>"
            f"<p>Your order is ready for pickup from {escape(settings.SHIPPING_ORIGIN_STREET)}, "
            f"{escape(settings.SHIPPING_ORIGIN_CITY)} {escape(settings.SHIPPING_ORIGIN_STATE)} "
            f"{escape(settings.SHIPPING_ORIGIN_POSTCODE)}.</p>"
            f"<p><a href=\"{_order_link(order)}\">View your order</a></p>"
        )
        return await self._send("ready for pickup", [order.email], "Your order is ready for pickup", html)


# Singleton
_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    global _service
    if _service is None:
        provider = ResendProvider() if settings.RESEND_API_KEY else MockEmailProvider()
        _service = EmailService(provider)
    return _service
