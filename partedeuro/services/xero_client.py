"""
Xero Accounting API client.

OAuth2 token sets are persisted in xero_tokens. get_valid_client() refreshes
the access token five minutes before expiry and saves the rotated refresh
token straight away in its own session, so a failed settlement cannot roll
the new token back.

Write calls carry an Idempotency-Key so a replayed settlement step cannot
create a second invoice or payment in Xero.
"""
import base64
import logging
import secrets
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from sqlalchemy import select

from partedeuro.core.config import settings
from partedeuro.core.database import get_db_session
from partedeuro.core.exceptions import XeroError, XeroNotConnectedError
from partedeuro.models.xero import XeroToken

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://login.xero.com/identity/connect/authorize"
TOKEN_URL = "https://identity.xero.com/connect/token"
CONNECTIONS_URL = "https://api.xero.com/connections"
API_BASE_URL = "https://api.xero.com/api.xro/2.0"

TOKEN_REFRESH_MARGIN = timedelta(minutes=5)
VIN_TRACKING_CATEGORY = "VIN"


@dataclass
class InvoiceLineItem:
    description: str
    quantity: int
    unit_amount: Decimal
    account_code: str
    vin: Optional[str] = None

    @property
    def line_amount(self) -> Decimal:
        return self.unit_amount * self.quantity

    def to_xero(self) -> Dict[str, Any]:
        line = {
            "Description": self.description,
            "Quantity": self.quantity,
            "UnitAmount": float(self.unit_amount),
            "AccountCode": self.account_code,
            "LineAmount": float(self.line_amount),
        }
        if self.vin:
            # Tracking options are limited in length; the VIN tail identifies the donor
            line["Tracking"] = [{"Name": VIN_TRACKING_CATEGORY, "Option": self.vin[-7:]}]
        return line


@dataclass
class XeroContact:
    name: str
    email: str
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    def to_xero(self) -> Dict[str, Any]:
        address = {
            "AddressType": "POBOX",
            "AddressLine1": self.address_line1 or "",
            "AddressLine2": self.address_line2 or "",
            "City": self.city or "",
            "Region": self.region or "",
            "PostalCode": self.postal_code or "",
            "Country": self.country or "",
        }
        return {
            "Name": self.name,
            "EmailAddress": self.email,
            "Addresses": [address],
        }


@dataclass
class XeroInvoice:
    invoice_id: str
    invoice_number: str
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class XeroPayment:
    payment_id: str
    amount: Decimal


class XeroTokenStore:
    """Loads and saves the single stored token set."""

    def __init__(self, session_factory: Callable = get_db_session):
        self.session_factory = session_factory

    async def load(self) -> Optional[XeroToken]:
        async with self.session_factory() as db:
            result = await db.execute(select(XeroToken).order_by(XeroToken.id).limit(1))
            return result.scalar_one_or_none()

    async def save(self, token_data: Dict[str, Any], tenant_id: Optional[str] = None) -> XeroToken:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(token_data.get("expires_in", 1800)))
        async with self.session_factory() as db:
            result = await db.execute(select(XeroToken).order_by(XeroToken.id).limit(1))
            token = result.scalar_one_or_none()
            if token is None:
                token = XeroToken()
                db.add(token)
            token.access_token = token_data["access_token"]
            token.refresh_token = token_data["refresh_token"]
            token.expires_at = expires_at
            token.token_set = token_data
            if tenant_id:
                token.tenant_id = tenant_id
            await db.commit()
            return token


class XeroClient:
    """
    Xero Accounting API client.

    Call get_valid_client() before API calls; it loads the stored token set,
    refreshes it if needed and resolves the tenant id.
    """

    def __init__(
        self,
        token_store: Optional[XeroTokenStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.token_store = token_store or XeroTokenStore()
        self.client_id = settings.XERO_CLIENT_ID
        self.client_secret = settings.XERO_CLIENT_SECRET
        self._http_client = http_client

        self._access_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        self._tenant_id: Optional[str] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    async def close(self):
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    def _basic_auth(self) -> str:
        raw = f"{self.client_id}:{self.client_secret}"
        return base64.b64encode(raw.encode()).decode()

    # ==================== OAuth ====================

    def get_consent_url(self, state: Optional[str] = None) -> str:
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": settings.XERO_REDIRECT_URI,
            "scope": settings.XERO_SCOPES,
            "state": state or secrets.token_urlsafe(16),
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    async def _token_request(self, data: Dict[str, str]) -> Dict[str, Any]:
        client = await self._get_http_client()
        try:
            response = await client.post(
                TOKEN_URL,
                headers={
                    "Authorization": f"Basic {self._basic_auth()}",
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                data=data,
            )
        except httpx.RequestError as e:
            logger.error(f"[Xero] Token request failed: {e}")
            raise XeroError(f"Network error during Xero authentication: {e}")

        if response.status_code != 200:
            logger.error(f"[Xero] OAuth failed: {response.status_code} - {response.text[:500]}")
            raise XeroError(
                "Failed to authenticate with Xero",
                code="XERO_AUTH_FAILED",
                status_code=response.status_code,
            )
        return response.json()

    def _apply_token(self, token_data: Dict[str, Any]):
        self._access_token = token_data["access_token"]
        self._refresh_token = token_data["refresh_token"]
        expires_in = int(token_data.get("expires_in", 1800))
        self._token_expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)

    async def _resolve_tenant(self) -> str:
        client = await self._get_http_client()
        response = await client.get(
            CONNECTIONS_URL,
            headers={"Authorization": f"Bearer {self._access_token}", "Accept": "application/json"},
        )
        if response.status_code != 200:
            raise XeroError("Failed to list Xero connections", status_code=response.status_code)
        connections = response.json()
        if not connections:
            raise XeroNotConnectedError("Xero app is not connected to any organisation")
        return connections[0]["tenantId"]

    async def complete_authorization(self, code: str) -> str:
        """Exchange a consent callback code for tokens. Returns the tenant id."""
        token_data = await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": settings.XERO_REDIRECT_URI,
        })
        self._apply_token(token_data)
        self._tenant_id = await self._resolve_tenant()
        await self.token_store.save(token_data, tenant_id=self._tenant_id)
        logger.info(f"[Xero] Connected to tenant {self._tenant_id}")
        return self._tenant_id

    async def get_valid_client(self) -> "XeroClient":
        """Return self with a live access token and tenant id."""
        if self._access_token is None:
            stored = await self.token_store.load()
            if stored is None:
                raise XeroNotConnectedError("Xero has not been connected. Complete the consent flow first.")
            self._access_token = stored.access_token
            self._refresh_token = stored.refresh_token
            self._token_expires_at = stored.expires_at
            self._tenant_id = stored.tenant_id

        if self._token_expires_at is None or datetime.now(timezone.utc) >= self._token_expires_at - TOKEN_REFRESH_MARGIN:
            token_data = await self._token_request({
                "grant_type": "refresh_token",
                "refresh_token": self._refresh_token,
            })
            self._apply_token(token_data)
            if not self._tenant_id:
                self._tenant_id = await self._resolve_tenant()
            await self.token_store.save(token_data, tenant_id=self._tenant_id)
            logger.info("[Xero] Access token refreshed")

        if not self._tenant_id:
            self._tenant_id = await self._resolve_tenant()
        return self

    async def test_connection(self) -> Dict[str, Any]:
        try:
            await self.get_valid_client()
        except XeroError as e:
            return {"connected": False, "error": e.message}
        return {"connected": True, "tenant_id": self._tenant_id}

    # ==================== API ====================

    async def _make_request(
        self,
        method: str,
        path: str,
        data: Optional[Dict] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict:
        """Make authenticated API request."""
        await self.get_valid_client()
        client = await self._get_http_client()

        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "xero-tenant-id": self._tenant_id,
            "Accept": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            response = await client.request(method, f"{API_BASE_URL}{path}", headers=headers, json=data)
        except httpx.RequestError as e:
            logger.error(f"[Xero] {method} {path} failed: {e}")
            raise XeroError(f"Network error calling Xero: {e}")

        logger.debug(f"[Xero] {method} {path} -> {response.status_code}")

        if response.status_code >= 400:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {"raw": response.text[:500]}

            message = error_data.get("Message") or error_data.get("Detail") or "Xero API error"
            for element in error_data.get("Elements") or []:
                for validation in element.get("ValidationErrors") or []:
                    message = f"{message}: {validation.get('Message')}"
                    break

            logger.error(f"[Xero] API error {response.status_code} on {path}: {message}")
            raise XeroError(message, status_code=response.status_code, details={"response": error_data})

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def create_invoice(
        self,
        contact: XeroContact,
        line_items: List[InvoiceLineItem],
        reference: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> XeroInvoice:
        """Create an AUTHORISED sales invoice, tax inclusive, due today."""
        today = date.today().isoformat()
        invoice = {
            "Type": "ACCREC",
            "Contact": contact.to_xero(),
            "Date": today,
            "DueDate": today,
            "Status": "AUTHORISED",
            "LineAmountTypes": "Inclusive",
            "LineItems": [line.to_xero() for line in line_items],
        }
        if reference:
            invoice["Reference"] = reference

        data = await self._make_request("PUT", "/Invoices", {"Invoices": [invoice]}, idempotency_key)
        created = (data.get("Invoices") or [None])[0]
        if not created or not created.get("InvoiceID"):
            raise XeroError("Xero did not return the created invoice")
        logger.info(f"[Xero] Created invoice {created.get('InvoiceNumber')} ({created['InvoiceID']})")
        return XeroInvoice(
            invoice_id=created["InvoiceID"],
            invoice_number=created.get("InvoiceNumber") or "",
            raw=created,
        )

    async def create_payment(
        self,
        invoice_id: str,
        amount: Decimal,
        account_code: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> XeroPayment:
        payment = {
            "Invoice": {"InvoiceID": invoice_id},
            "Account": {"Code": account_code or settings.XERO_BANK_ACCOUNT},
            "Date": date.today().isoformat(),
            "Amount": float(amount),
        }
        data = await self._make_request("PUT", "/Payments", {"Payments": [payment]}, idempotency_key)
        created = (data.get("Payments") or [None])[0]
        if not created or not created.get("PaymentID"):
            raise XeroError("Xero did not return the created payment")
        return XeroPayment(payment_id=created["PaymentID"], amount=amount)

    async def email_invoice(self, invoice_id: str) -> None:
        await self._make_request("POST", f"/Invoices/{invoice_id}/Email", {})


# Singleton
_client: Optional[XeroClient] = None


def get_xero_client() -> XeroClient:
    global _client
    if _client is None:
        _client = XeroClient()
    return _client
