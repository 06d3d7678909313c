import json
from unittest.mock import AsyncMock

import pytest
import stripe
from httpx import ASGITransport, AsyncClient

from partedeuro.api import deps
from partedeuro.api.routes import checkout as checkout_routes
from partedeuro.core.database import get_db
from partedeuro.core.exceptions import ShippingUnavailable
from partedeuro.main import app
from partedeuro.models.listing import Listing
from partedeuro.models.order import Order, OrderStatus
from partedeuro.modules.shipping.carriers.base import ShippingOption
from tests.conftest import scalar_result, scalars_result

ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token"}


class FakeResolver:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def get_shipping_services(self, request, is_admin=False):
        self.calls.append((request, is_admin))
        if self.error:
            raise self.error
        options = [ShippingOption("AusPost Regular", 1500)]
        if is_admin:
            options.insert(0, ShippingOption("Admin Shipping", 1))
        return options


class FakeGateway:
    async def create_customer(self, email, name):
        return "cus_1"

    async def create_checkout_session(self, **params):
        return {"id": "cs_test_1", "url": "https://checkout.stripe.com/c/pay/cs_test_1"}

    def verify_webhook(self, payload, sig_header):
        if sig_header != "valid":
            raise stripe.SignatureVerificationError("No signatures found", sig_header)
        return json.loads(payload)


@pytest.fixture
def overrides(mock_db):
    async def _get_db():
        yield mock_db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[deps.get_stripe_gateway] = lambda: FakeGateway()
    app.dependency_overrides[deps.get_xero_client] = lambda: object()
    yield app.dependency_overrides
    app.dependency_overrides.clear()


@pytest.fixture
async def client(overrides):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


QUOTE = {"weight": 5, "length": 30, "width": 20, "height": 10, "country_code": "au", "postcode": "2000"}


@pytest.mark.anyio
async def test_shipping_services(client, overrides):
    resolver = FakeResolver()
    overrides[deps.get_shipping_resolver] = lambda: resolver

    resp = await client.post("/api/shipping/services", json=QUOTE)

    assert resp.status_code == 200
    assert resp.json()["options"] == [
        {"display_name": "AusPost Regular", "amount_minor_units": 1500, "currency": "AUD"},
    ]
    request, is_admin = resolver.calls[0]
    assert request.destination_country == "AU"
    assert is_admin is False


@pytest.mark.anyio
async def test_shipping_services_admin_token(client, overrides):
    resolver = FakeResolver()
    overrides[deps.get_shipping_resolver] = lambda: resolver

    resp = await client.post("/api/shipping/services", json=QUOTE, headers=ADMIN_HEADERS)

    assert resp.json()["options"][0]["display_name"] == "Admin Shipping"


@pytest.mark.anyio
async def test_shipping_failure_is_friendly(client, overrides):
    overrides[deps.get_shipping_resolver] = lambda: FakeResolver(
        error=ShippingUnavailable("AusPost did not return AusPost Express", carrier="auspost_domestic")
    )

    resp = await client.post("/api/shipping/services", json=QUOTE)

    assert resp.status_code == 422
    assert resp.json()["message"] == "Unable to calculate shipping for this destination"


@pytest.mark.anyio
async def test_checkout_session(client, mock_db):
    listing = Listing(id="L1", title="E46 Door Handle", price=2500, images=[])
    listing.parts = []
    mock_db.execute.return_value = scalars_result([listing])

    resp = await client.post("/api/checkout/session", json={
        "items": [{"listing_id": "L1", "quantity": 2}],
        "name": "Sam Buyer",
        "email": "buyer@example.com",
        "country_code": "AU",
        "shipping_options": [{"display_name": "AusPost Regular", "amount_minor_units": 1500}],
    })

    assert resp.status_code == 200
    body = resp.json()
    assert body["url"] == "https://checkout.stripe.com/c/pay/cs_test_1"
    assert body["order_id"]


@pytest.mark.anyio
async def test_webhook_rejects_bad_signature(client):
    resp = await client.post("/api/checkout/webhook", content=b"{}", headers={"stripe-signature": "forged"})

    assert resp.status_code == 400


@pytest.mark.anyio
async def test_webhook_settles_once(client, monkeypatch):
    handler = AsyncMock(return_value=True)
    monkeypatch.setattr(checkout_routes, "handle_checkout_session_completed", handler)
    event = {
        "id": "evt_route_test_1",
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_test_1", "metadata": {"orderId": "order-1"}}},
    }
    payload = json.dumps(event).encode()

    first = await client.post("/api/checkout/webhook", content=payload, headers={"stripe-signature": "valid"})
    second = await client.post("/api/checkout/webhook", content=payload, headers={"stripe-signature": "valid"})

    assert first.json() == {"status": "success"}
    assert second.json() == {"status": "already_processed"}
    handler.assert_awaited_once()
    assert handler.await_args.args[1]["metadata"]["orderId"] == "order-1"


@pytest.mark.anyio
async def test_admin_routes_require_token(client):
    resp = await client.post("/api/admin/orders/cash", json={})

    assert resp.status_code == 403


@pytest.mark.anyio
async def test_order_not_found(client, mock_db):
    mock_db.execute.return_value = scalar_result(None)

    resp = await client.get("/api/orders/missing")

    assert resp.status_code == 404
    assert resp.json()["error"] == "ORDER_NOT_FOUND"


@pytest.mark.anyio
async def test_terminal_status_conflict(client, mock_db):
    order = Order(
        id="order-1", email="buyer@example.com", name="Sam Buyer",
        status=OrderStatus.COMPLETED.value, subtotal=2500, shipping=0,
    )
    mock_db.execute.return_value = scalar_result(order)

    resp = await client.patch(
        "/api/admin/orders/order-1/status", json={"status": "SHIPPED"}, headers=ADMIN_HEADERS,
    )

    assert resp.status_code == 409
