import asyncio
import json
import logging
import random
from typing import Any, Awaitable, Callable, Mapping, Optional

import httpx

from parcel_discovery.model import FailureKind, ProviderResult


logger = logging.getLogger("parcel_discovery.http")

RETRY_STATUS = {429, 500, 502, 503, 504}


class RetryConfig:
    def __init__(self, retries=1, base_delay=0.2, factor=2.0, jitter=0.1):
        self.retries = retries
        self.base_delay = base_delay
        self.factor = factor
        self.jitter = jitter


def compute_backoff_delays(
    retries, base_delay=0.2, factor=2.0, jitter=0.1, rand_fn=None
):
    delays = []
    current = base_delay
    rand_fn = rand_fn or random.random
    for _ in range(retries):
        noise = (rand_fn() * 2 - 1) * jitter
        delays.append(max(0.0, current + noise))
        current *= factor
    return delays


class AsyncJsonClient:
    """Small wrapper over ``httpx.AsyncClient`` that never raises.

    Every call resolves to a ``ProviderResult``: transport errors and
    timeouts are ``network``, 404 is ``not_found``, any other non-2xx or an
    undecodable body is ``upstream_error``. Retryable statuses are retried
    with jittered exponential backoff.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: str = "parcel-discovery",
        headers: Optional[Mapping[str, str]] = None,
        retry_config: Optional[RetryConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep_fn: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig()
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}
        self._headers.update(headers or {})
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep_fn or asyncio.sleep

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def request(
        self,
        method: str,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Any = None,
    ) -> ProviderResult:
        client = self._ensure_client()
        delays = compute_backoff_delays(
            self.retry_config.retries,
            self.retry_config.base_delay,
            self.retry_config.factor,
            self.retry_config.jitter,
        )
        attempts = len(delays) + 1
        for attempt in range(attempts):
            try:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=self._headers,
                )
            except httpx.TransportError as exc:
                logger.warning("%s %s failed: %r", method, url, exc)
                if attempt < len(delays):
                    await self._sleep(delays[attempt])
                    continue
                return ProviderResult.failure(FailureKind.NETWORK, detail=str(exc) or repr(exc))

            status = response.status_code
            if status in RETRY_STATUS and attempt < len(delays):
                logger.info("%s %s -> %s; retrying", method, url, status)
                await self._sleep(delays[attempt])
                continue
            if status == 404:
                return ProviderResult.failure(FailureKind.NOT_FOUND, detail="HTTP 404")
            if not 200 <= status < 300:
                logger.warning("%s %s -> HTTP %s", method, url, status)
                return ProviderResult.failure(
                    FailureKind.UPSTREAM_ERROR, detail=f"HTTP {status}"
                )
            if not response.content:
                return ProviderResult.success(None)
            try:
                return ProviderResult.success(response.json())
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                logger.warning("%s %s returned invalid JSON: %s", method, url, exc)
                return ProviderResult.failure(
                    FailureKind.UPSTREAM_ERROR, detail="invalid JSON body"
                )
        return ProviderResult.failure(FailureKind.UPSTREAM_ERROR, detail="retries exhausted")

    async def get_json(
        self, url: str, params: Optional[Mapping[str, Any]] = None
    ) -> ProviderResult:
        return await self.request("GET", url, params=params)

    async def post_json(self, url: str, body: Any) -> ProviderResult:
        return await self.request("POST", url, json_body=body)
