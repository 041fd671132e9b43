"""Search history events.

History is a side channel: a sink failing must never affect the search that
produced the event, so dispatch is fire-and-forget and errors are only logged.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set, Tuple

from parcel_discovery.http_client import AsyncJsonClient, RetryConfig
from parcel_discovery.model import CanonicalProperty
from parcel_discovery.settings import Settings


logger = logging.getLogger("parcel_discovery.history")

TEXT_SEARCH = "text_search"
MAP_CLICK = "map_click"


@dataclass(frozen=True)
class SearchHistoryEvent:
    query: str
    search_type: str
    count: int
    properties: Tuple[Dict[str, Any], ...] = ()
    property_id: Optional[str] = None
    filters: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "searchType": self.search_type,
            "propertyId": self.property_id,
            "filters": dict(self.filters),
            "results": {"count": self.count, "properties": list(self.properties)},
            "createdAt": self.created_at,
        }


def summarize(record: CanonicalProperty) -> Dict[str, Any]:
    return {
        "identity": record.identity,
        "address": record.address.single_line,
        "propertyType": record.classification.property_type,
        "marketValue": record.valuation.market_value,
    }


def build_event(
    query: str,
    search_type: str,
    records: Sequence[CanonicalProperty],
    sample_size: int = 5,
    property_id: Optional[str] = None,
    filters: Optional[Dict[str, Any]] = None,
) -> SearchHistoryEvent:
    return SearchHistoryEvent(
        query=query,
        search_type=search_type,
        count=len(records),
        properties=tuple(summarize(r) for r in records[: max(0, sample_size)]),
        property_id=property_id,
        filters=dict(filters or {}),
    )


class SearchHistorySink(Protocol):
    async def record(self, event: SearchHistoryEvent) -> None: ...


class NullSearchHistorySink:
    async def record(self, event: SearchHistoryEvent) -> None:
        return None


class MemorySearchHistorySink:
    def __init__(self):
        self.events: List[SearchHistoryEvent] = []

    async def record(self, event: SearchHistoryEvent) -> None:
        self.events.append(event)


class HttpSearchHistorySink:
    """POSTs each event as JSON to a history endpoint."""

    def __init__(self, url: str, http: AsyncJsonClient):
        self.url = url
        self.http = http

    async def record(self, event: SearchHistoryEvent) -> None:
        result = await self.http.post_json(self.url, event.to_dict())
        if not result.ok:
            raise RuntimeError(f"history endpoint {result.kind}: {result.detail}")

    async def aclose(self) -> None:
        await self.http.aclose()

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpSearchHistorySink":
        if not settings.history_url:
            raise ValueError("PDE_HISTORY_URL is not set")
        http = AsyncJsonClient(
            timeout=settings.http_timeout_s,
            user_agent=settings.user_agent,
            retry_config=RetryConfig(retries=0),
        )
        return cls(settings.history_url, http)


async def _deliver(sink: SearchHistorySink, event: SearchHistoryEvent) -> None:
    try:
        await sink.record(event)
    except Exception as exc:
        logger.warning(
            "search history not recorded (%s, %d results): %s",
            event.search_type,
            event.count,
            exc,
        )


def dispatch(
    sink: SearchHistorySink,
    event: SearchHistoryEvent,
    pending: Optional[Set[asyncio.Task]] = None,
) -> asyncio.Task:
    """Schedule delivery on the running loop and return immediately.

    ``pending`` keeps a strong reference to the task until it finishes so the
    owner can drain it on shutdown.
    """
    task = asyncio.get_running_loop().create_task(_deliver(sink, event))
    if pending is not None:
        pending.add(task)
        task.add_done_callback(pending.discard)
    return task
