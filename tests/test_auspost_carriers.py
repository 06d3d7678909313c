"""
Tests for AusPost domestic and international carriers.
"""
import httpx
import pytest

from partedeuro.core.exceptions import ProviderError, ShippingUnavailable
from partedeuro.modules.shipping.carriers.auspost import (
    AusPostClient,
    AusPostDomesticCarrier,
    AusPostInternationalCarrier,
)
from partedeuro.modules.shipping.carriers.base import QuoteRequest, ShippingOption, to_minor_units


def services_payload(*services):
    return {"services": {"service": list(services)}}


class TestMinorUnits:
    def test_rounds_up_fractional_cents(self):
        assert to_minor_units("12.301") == 1231
        assert to_minor_units(10.0) == 1000

    def test_exact_decimal_not_inflated(self):
        assert to_minor_units("1.10") == 110
        assert to_minor_units(0.1) == 10


class TestAusPostDomestic:
    @pytest.mark.asyncio
    async def test_returns_regular_then_express(self, make_http_client, sample_domestic_request):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            seen["auth"] = request.headers.get("AUTH-KEY")
            return httpx.Response(200, json=services_payload(
                {"code": "AUS_PARCEL_EXPRESS", "name": "Express Post", "price": "25.40"},
                {"code": "AUS_PARCEL_REGULAR", "name": "Parcel Post", "price": "14.951"},
                {"code": "AUS_PARCEL_COURIER", "name": "Courier", "price": "40.00"},
            ))

        client = make_http_client(handler)
        carrier = AusPostDomesticCarrier(client, AusPostClient(client, api_key="key-123"))

        options = await carrier.get_rates(sample_domestic_request)

        assert options == [
            ShippingOption("AusPost Regular", 1496),
            ShippingOption("AusPost Express", 2540),
        ]
        assert seen["path"] == "/postage/parcel/domestic/service.json"
        assert seen["params"]["from_postcode"] == "3180"
        assert seen["params"]["to_postcode"] == "2000"
        assert seen["params"]["weight"] == "5"
        assert seen["auth"] == "key-123"

    @pytest.mark.asyncio
    async def test_missing_express_is_unavailable(self, make_http_client, sample_domestic_request):
        def handler(request):
            return httpx.Response(200, json=services_payload(
                {"code": "AUS_PARCEL_REGULAR", "name": "Parcel Post", "price": "14.95"},
            ))

        client = make_http_client(handler)
        carrier = AusPostDomesticCarrier(client)

        with pytest.raises(ShippingUnavailable):
            await carrier.get_rates(sample_domestic_request)

    @pytest.mark.asyncio
    async def test_single_service_object_is_accepted(self, make_http_client, sample_domestic_request):
        def handler(request):
            return httpx.Response(200, json={"services": {"service": {
                "code": "AUS_PARCEL_REGULAR", "price": "9.00",
            }}})

        client = make_http_client(handler)
        carrier = AusPostDomesticCarrier(client)

        # Normalised to a list, but Express is still missing
        with pytest.raises(ShippingUnavailable):
            await carrier.get_rates(sample_domestic_request)

    @pytest.mark.asyncio
    async def test_provider_error_message_surfaces(self, make_http_client, sample_domestic_request):
        def handler(request):
            return httpx.Response(404, json={"error": {"errorMessage": "Please enter a valid To postcode."}})

        client = make_http_client(handler)
        carrier = AusPostDomesticCarrier(client)

        with pytest.raises(ProviderError) as exc_info:
            await carrier.get_rates(sample_domestic_request)

        assert "valid To postcode" in exc_info.value.message
        assert exc_info.value.details["status_code"] == 404

    @pytest.mark.asyncio
    async def test_non_json_response_is_provider_error(self, make_http_client, sample_domestic_request):
        def handler(request):
            return httpx.Response(502, text="<html>Bad gateway</html>")

        client = make_http_client(handler)

        with pytest.raises(ProviderError):
            await AusPostDomesticCarrier(client).get_rates(sample_domestic_request)


class TestAusPostInternational:
    @pytest.fixture
    def us_request(self):
        return QuoteRequest(weight=2, length=40, width=30, height=20, destination_country="us")

    @pytest.mark.asyncio
    async def test_keeps_only_standard_and_express(self, make_http_client, us_request):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=services_payload(
                {"code": "INT_PARCEL_COR_OWN_PACKAGING", "name": "Courier", "price": "120.00"},
                {"code": "INT_PARCEL_EXP_OWN_PACKAGING", "name": "Express", "price": "85.50"},
                {"code": "INT_PARCEL_STD_OWN_PACKAGING", "name": "Standard", "price": "60.10"},
                {"code": "INT_PARCEL_SEA_OWN_PACKAGING", "name": "Economy Sea", "price": "30.00"},
            ))

        client = make_http_client(handler)
        options = await AusPostInternationalCarrier(client).get_rates(us_request)

        assert options == [ShippingOption("Express", 8550), ShippingOption("Standard", 6010)]
        assert seen["params"]["country_code"] == "US"

    @pytest.mark.asyncio
    async def test_nothing_supported_is_unavailable(self, make_http_client, us_request):
        def handler(request):
            return httpx.Response(200, json=services_payload(
                {"code": "INT_PARCEL_COR_OWN_PACKAGING", "name": "Courier", "price": "120.00"},
            ))

        client = make_http_client(handler)

        with pytest.raises(ShippingUnavailable):
            await AusPostInternationalCarrier(client).get_rates(us_request)


class TestCountries:
    @pytest.mark.asyncio
    async def test_priority_countries_first_then_alphabetical(self, make_http_client):
        def handler(request):
            assert request.url.path == "/postage/country.json"
            return httpx.Response(200, json={"countries": {"country": [
                {"code": "NZ", "name": "NEW ZEALAND"},
                {"code": "GB", "name": "UNITED KINGDOM"},
                {"code": "AF", "name": "AFGHANISTAN"},
                {"code": "US", "name": "UNITED STATES OF AMERICA"},
                {"code": "BR", "name": "BRAZIL"},
                {"code": "CA", "name": "CANADA"},
            ]}})

        client = AusPostClient(make_http_client(handler), api_key="k")
        countries = await client.get_countries()

        assert [c["code"] for c in countries] == ["US", "GB", "CA", "BR", "AF", "NZ"]
