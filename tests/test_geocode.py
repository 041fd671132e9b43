import asyncio

import httpx

from parcel_discovery.geocode import ReverseGeocoder, parse_reverse
from parcel_discovery.http_client import AsyncJsonClient, RetryConfig
from parcel_discovery.model import FailureKind


def _nominatim(**address):
    return {
        "display_name": "350, 5th Avenue, Manhattan, New York, 10118, United States",
        "address": address,
    }


def _geocoder(handler):
    http = AsyncJsonClient(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        retry_config=RetryConfig(retries=0),
    )
    return ReverseGeocoder("https://geo.test/reverse", http)


def test_parse_reverse_street_address():
    geo = parse_reverse(
        _nominatim(
            house_number="350", road="5th Avenue", city="New York", state="New York", postcode="10118"
        )
    )
    assert geo.line1 == "350 5th Avenue"
    assert geo.line2 == "New York, New York 10118"
    assert geo.postal_code == "10118"
    assert geo.display_name.startswith("350, 5th Avenue")


def test_parse_reverse_uses_town_or_village():
    town = parse_reverse(_nominatim(house_number="4", road="Elm St", town="Hamden", state="CT"))
    assert town.line2 == "Hamden, CT"
    village = parse_reverse(_nominatim(house_number="9", road="Mill Rd", village="Ghent"))
    assert village.line2 == "Ghent"


def test_parse_reverse_requires_house_number():
    assert parse_reverse(_nominatim(road="Central Park West", city="New York")) is None
    assert parse_reverse({"error": "Unable to geocode"}) is None
    assert parse_reverse(["nope"]) is None
    assert parse_reverse({"display_name": "Atlantic Ocean"}) is None


def test_reverse_sends_nominatim_params():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200, json=_nominatim(house_number="1", road="Main St", city="Springfield")
        )

    result = asyncio.run(_geocoder(handler).reverse(39.8, -89.65))

    assert result.ok
    assert result.data.line1 == "1 Main St"
    params = seen[0].url.params
    assert params["format"] == "json"
    assert params["lat"] == "39.8000000"
    assert params["lon"] == "-89.6500000"
    assert params["addressdetails"] == "1"


def test_reverse_no_address_is_success_with_none():
    handler = lambda request: httpx.Response(200, json={"error": "Unable to geocode"})
    result = asyncio.run(_geocoder(handler).reverse(0.0, 0.0))
    assert result.ok
    assert result.data is None


def test_reverse_failures_pass_through():
    result = asyncio.run(_geocoder(lambda r: httpx.Response(500)).reverse(1.0, 1.0))
    assert result.kind == FailureKind.UPSTREAM_ERROR

    def refuse(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    result = asyncio.run(_geocoder(refuse).reverse(1.0, 1.0))
    assert result.kind == FailureKind.NETWORK
