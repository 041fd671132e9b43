"""Property data provider client.

Five read operations over the provider's REST API. Every call resolves to a
``ProviderResult`` whose ``data`` is the raw JSON envelope; normalization
happens downstream. Failures are values, never exceptions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import httpx

from parcel_discovery.http_client import AsyncJsonClient
from parcel_discovery.model import FailureKind, ProviderResult
from parcel_discovery.settings import Settings


logger = logging.getLogger("parcel_discovery.source")

# Provider status messages that mean "the query was fine, nothing matched".
_EMPTY_MESSAGES = {"successwithoutresult", "no results", "noresults"}


@dataclass(frozen=True)
class SourceEndpoints:
    postal: str = "property/snapshot"
    address: str = "property/address"
    detail: str = "property/detail"
    owner: str = "property/detailowner"
    events: str = "allevents/detail"


def classify_envelope(result: ProviderResult) -> ProviderResult:
    """Apply the provider's own status block on top of the HTTP outcome."""
    if not result.ok:
        return result
    payload = result.data
    if not isinstance(payload, Mapping):
        return ProviderResult.failure(
            FailureKind.UPSTREAM_ERROR, detail="response is not a JSON object"
        )
    status = payload.get("status")
    if isinstance(status, Mapping):
        code = status.get("code")
        msg = str(status.get("msg") or "").strip()
        if msg.lower() in _EMPTY_MESSAGES:
            return ProviderResult.failure(FailureKind.NOT_FOUND, detail=msg)
        if code not in (None, 0, "0"):
            if str(code) == "1":
                return ProviderResult.failure(FailureKind.NOT_FOUND, detail=msg or "no results")
            return ProviderResult.failure(
                FailureKind.UPSTREAM_ERROR, detail=f"provider status {code}: {msg}".strip()
            )
    if "property" in payload:
        items = payload.get("property")
        if not items:
            return ProviderResult.failure(FailureKind.NOT_FOUND, detail="empty property list")
    return result


class PropertySourceClient:
    """Async client for the property data provider."""

    def __init__(
        self,
        base_url: str,
        http: AsyncJsonClient,
        endpoints: Optional[SourceEndpoints] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.http = http
        self.endpoints = endpoints or SourceEndpoints()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _get(self, op: str, path: str, params: Mapping[str, Any]) -> ProviderResult:
        result = classify_envelope(await self.http.get_json(self._url(path), params=params))
        if result.ok:
            logger.debug("%s ok", op)
        elif result.kind == FailureKind.NOT_FOUND:
            logger.info("%s not_found: %s", op, result.detail)
        else:
            logger.warning("%s %s: %s", op, result.kind, result.detail)
        return result

    async def search_by_postal_code(self, postal_code: str) -> ProviderResult:
        return await self._get(
            "search_by_postal_code", self.endpoints.postal, {"postalcode": postal_code.strip()}
        )

    async def search_by_address(self, line1: str, line2: str = "") -> ProviderResult:
        params = {"address1": line1.strip()}
        if line2 and line2.strip():
            params["address2"] = line2.strip()
        return await self._get("search_by_address", self.endpoints.address, params)

    async def get_detail(self, provider_id: str) -> ProviderResult:
        return await self._get("get_detail", self.endpoints.detail, {"id": provider_id})

    async def get_owner(self, provider_id: str) -> ProviderResult:
        return await self._get("get_owner", self.endpoints.owner, {"id": provider_id})

    async def get_events(self, provider_id: str) -> ProviderResult:
        return await self._get("get_events", self.endpoints.events, {"id": provider_id})

    async def aclose(self) -> None:
        await self.http.aclose()

    @classmethod
    def from_settings(
        cls, settings: Settings, client: Optional[httpx.AsyncClient] = None
    ) -> "PropertySourceClient":
        headers = {"apikey": settings.property_api_key} if settings.property_api_key else None
        http = AsyncJsonClient(
            timeout=settings.http_timeout_s,
            user_agent=settings.user_agent,
            headers=headers,
            client=client,
        )
        return cls(settings.property_api_url, http)
