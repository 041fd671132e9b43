import logging
from typing import Any, Mapping, Optional

import httpx

from parcel_discovery.http_client import AsyncJsonClient, RetryConfig
from parcel_discovery.model import GeocodedAddress, ProviderResult
from parcel_discovery.normalize import clean_str, join_nonempty
from parcel_discovery.settings import Settings


logger = logging.getLogger("parcel_discovery.geocode")


def parse_reverse(payload: Any) -> Optional[GeocodedAddress]:
    """Turn a Nominatim reverse response into a two-line street address.

    Points that do not resolve to a house number (water, parks, open road)
    yield None: they cannot be looked up by address.
    """
    if not isinstance(payload, Mapping) or payload.get("error"):
        return None
    address = payload.get("address")
    if not isinstance(address, Mapping):
        return None
    house_number = clean_str(address.get("house_number"))
    road = clean_str(address.get("road"))
    if not house_number:
        return None
    locality = (
        clean_str(address.get("city"))
        or clean_str(address.get("town"))
        or clean_str(address.get("village"))
        or clean_str(address.get("hamlet"))
    )
    postcode = clean_str(address.get("postcode"))
    state = clean_str(address.get("state"))
    line2 = join_nonempty([locality, join_nonempty([state, postcode], sep=" ")])
    return GeocodedAddress(
        line1=join_nonempty([house_number, road], sep=" "),
        line2=line2,
        display_name=clean_str(payload.get("display_name")) or "",
        postal_code=postcode,
    )


class ReverseGeocoder:
    """Reverse geocoding against a Nominatim-compatible endpoint."""

    def __init__(self, url: str, http: AsyncJsonClient):
        self.url = url
        self.http = http

    async def reverse(self, lat: float, lng: float) -> ProviderResult:
        result = await self.http.get_json(
            self.url,
            params={
                "format": "json",
                "lat": f"{lat:.7f}",
                "lon": f"{lng:.7f}",
                "addressdetails": 1,
                "zoom": 18,
            },
        )
        if not result.ok:
            logger.warning("reverse geocode %.6f,%.6f failed: %s", lat, lng, result.detail)
            return result
        geocoded = parse_reverse(result.data)
        if geocoded is None:
            logger.info("no street address at %.6f,%.6f", lat, lng)
        return ProviderResult.success(geocoded)

    async def aclose(self) -> None:
        await self.http.aclose()

    @classmethod
    def from_settings(
        cls, settings: Settings, client: Optional[httpx.AsyncClient] = None
    ) -> "ReverseGeocoder":
        http = AsyncJsonClient(
            timeout=settings.http_timeout_s,
            user_agent=settings.user_agent,
            retry_config=RetryConfig(retries=0),
            client=client,
        )
        return cls(settings.geocoder_url, http)
