"""
Tests for the Interparcel carrier and its CSRF token source.
"""
import httpx
import pytest

from partedeuro.core.exceptions import CsrfTokenUnavailable, ProviderError, ShippingUnavailable
from partedeuro.modules.shipping.carriers.base import QuoteRequest, ShippingOption
from partedeuro.modules.shipping.carriers.interparcel import (
    InterparcelCarrier,
    is_service_allowed,
    package_type,
)
from partedeuro.modules.shipping.token_provider import (
    QuotePageTokenProvider,
    StaticTokenProvider,
    extract_csrf_token,
)

QUOTE_PAGE = '<html><head><meta name="csrf-token" content="tok-abc"></head><body></body></html>'


def availability(*names):
    return {"services": [{"id": i + 1, "service": name} for i, name in enumerate(names)]}


def quote(carrier, name, price):
    return {"services": [{"carrier": carrier, "name": name, "sellPrice": price}]}


class InterparcelStub:
    """Routes availability, quote page and per-service quote requests."""

    def __init__(self, services, quotes, page=QUOTE_PAGE):
        self.services = services
        self.quotes = quotes
        self.page = page
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/api/quote/availability":
            return httpx.Response(200, json=self.services)
        if path == "/quote/select-service":
            return httpx.Response(200, text=self.page, headers={"Set-Cookie": "PHPSESSID=sess-1; Path=/"})
        if path == "/api/quote/quote":
            service_id = int(request.url.params["service"])
            result = self.quotes.get(service_id)
            if isinstance(result, int):
                return httpx.Response(result, json={})
            if result is None:
                return httpx.Response(200, json={"services": []})
            return httpx.Response(200, json=result)
        return httpx.Response(404)

    def quote_requests(self):
        return [r for r in self.requests if r.url.path == "/api/quote/quote"]


@pytest.fixture
def carrier_for(make_http_client):
    def _build(stub, token_provider=None):
        client = make_http_client(stub)
        return InterparcelCarrier(client, token_provider=token_provider)
    return _build


class TestPackaging:
    def test_pallet_only_above_35kg(self):
        assert package_type(35) == "parcel"
        assert package_type(35.5) == "pallet"

    def test_pallet_padding_applied(self, make_http_client):
        carrier = InterparcelCarrier(make_http_client(lambda r: httpx.Response(404)))
        params = carrier.build_params(QuoteRequest(
            weight=50, length=100, width=80, height=60, destination_country="AU", destination_postcode="2000",
        ))

        assert params["pkg[0][0]"] == "50"
        assert params["pkg[0][1]"] == "130"
        assert params["pkg[0][2]"] == "110"
        assert params["pkg[0][3]"] == "70"
        assert params["coll_postcode"] == "3180"

    def test_parcel_not_padded(self, make_http_client):
        carrier = InterparcelCarrier(make_http_client(lambda r: httpx.Response(404)))
        params = carrier.build_params(QuoteRequest(
            weight=10, length=100, width=80, height=60, destination_country="AU",
        ))

        assert (params["pkg[0][1]"], params["pkg[0][2]"], params["pkg[0][3]"]) == ("100", "80", "60")


class TestServiceFilter:
    def test_hunter_always_excluded(self):
        assert not is_service_allowed("Hunter Express Road", is_b2b=True)

    def test_b2b_excluded_unless_requested(self):
        assert not is_service_allowed("Couriers Please B2B", is_b2b=False)
        assert is_service_allowed("Couriers Please B2B", is_b2b=True)

    def test_regular_service_allowed(self):
        assert is_service_allowed("TNT Road Express", is_b2b=False)


class TestGetRates:
    @pytest.mark.asyncio
    async def test_quotes_allowed_services(self, carrier_for, sample_domestic_request):
        stub = InterparcelStub(
            availability("TNT Road Express", "Hunter Express", "Couriers Please B2B", "Aramex Road"),
            {1: quote("TNT", "Road Express", "23.401"), 4: quote("Aramex", "Road", 18)},
        )
        options = await carrier_for(stub).get_rates(sample_domestic_request)

        assert options == [
            ShippingOption("TNT - Road Express", 2341),
            ShippingOption("Aramex - Road", 1800),
        ]
        quoted_ids = sorted(r.url.params["service"] for r in stub.quote_requests())
        assert quoted_ids == ["1", "4"]

    @pytest.mark.asyncio
    async def test_quote_requests_carry_session(self, carrier_for, sample_domestic_request):
        stub = InterparcelStub(availability("TNT Road Express"), {1: quote("TNT", "Road Express", 20)})
        await carrier_for(stub).get_rates(sample_domestic_request)

        request = stub.quote_requests()[0]
        assert request.headers["x-csrf-token"] == "tok-abc"
        assert "PHPSESSID=sess-1" in request.headers["Cookie"]

    @pytest.mark.asyncio
    async def test_failed_services_are_dropped(self, carrier_for, sample_domestic_request):
        stub = InterparcelStub(
            availability("A Road", "B Road", "C Road", "D Road"),
            {1: quote("A", "Road", 10), 2: 500, 3: None, 4: quote("D", "Road", 40)},
        )
        options = await carrier_for(stub).get_rates(sample_domestic_request)

        assert [o.display_name for o in options] == ["A - Road", "D - Road"]

    @pytest.mark.asyncio
    async def test_capped_at_four(self, carrier_for, sample_domestic_request):
        names = [f"Carrier{i} Road" for i in range(1, 7)]
        stub = InterparcelStub(
            availability(*names),
            {i: quote(f"Carrier{i}", "Road", 10 + i) for i in range(1, 7)},
        )
        options = await carrier_for(stub).get_rates(sample_domestic_request)

        assert len(options) == 4
        assert options[0].display_name == "Carrier1 - Road"

    @pytest.mark.asyncio
    async def test_all_services_failing_is_unavailable(self, carrier_for, sample_domestic_request):
        stub = InterparcelStub(availability("A Road", "B Road"), {1: 500, 2: None})

        with pytest.raises(ShippingUnavailable) as exc_info:
            await carrier_for(stub).get_rates(sample_domestic_request)

        assert exc_info.value.message == "Unable to ship this item to the destination country"

    @pytest.mark.asyncio
    async def test_availability_error_message(self, carrier_for, sample_domestic_request):
        stub = InterparcelStub({"errorMessage": "Invalid delivery postcode"}, {})

        with pytest.raises(ProviderError) as exc_info:
            await carrier_for(stub).get_rates(sample_domestic_request)

        assert exc_info.value.message == "Invalid delivery postcode"
        assert stub.quote_requests() == []

    @pytest.mark.asyncio
    async def test_missing_csrf_token_fails(self, carrier_for, sample_domestic_request):
        stub = InterparcelStub(
            availability("A Road"), {1: quote("A", "Road", 10)}, page="<html><head></head></html>",
        )

        with pytest.raises(CsrfTokenUnavailable):
            await carrier_for(stub).get_rates(sample_domestic_request)

        assert stub.quote_requests() == []

    @pytest.mark.asyncio
    async def test_static_token_provider_skips_page(self, carrier_for, sample_domestic_request):
        stub = InterparcelStub(availability("A Road"), {1: quote("A", "Road", 10)})
        carrier = carrier_for(stub, token_provider=StaticTokenProvider("fixed-token", "cookie-1"))

        await carrier.get_rates(sample_domestic_request)

        assert not any(r.url.path == "/quote/select-service" for r in stub.requests)
        assert stub.quote_requests()[0].headers["x-csrf-token"] == "fixed-token"


class TestTokenProvider:
    def test_extract_csrf_token(self):
        assert extract_csrf_token(QUOTE_PAGE) == "tok-abc"
        assert extract_csrf_token('<meta name="csrf-token" content="  ">') is None
        assert extract_csrf_token("<html></html>") is None

    @pytest.mark.asyncio
    async def test_page_params_forwarded(self, make_http_client):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, text=QUOTE_PAGE)

        provider = QuotePageTokenProvider(make_http_client(handler))
        session = await provider.get_session({"p": "5|30|20|10", "t": "parcel"})

        assert seen["params"] == {"p": "5|30|20|10", "t": "parcel"}
        assert session.csrf_token == "tok-abc"
        # No cookie issued: configured fallback
        assert session.session_cookie == "f"
