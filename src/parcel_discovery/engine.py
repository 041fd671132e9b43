"""Property discovery session.

One engine owns one result list, one click record, one selection, one filter
set and one map controller. Every mutation of those goes through ``search``,
``select`` or ``set_filters``; the accessors return immutable snapshots.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Set

from parcel_discovery.filters import FilterSet, RANGE_FIELDS, apply_filters, default_filters
from parcel_discovery.history import (
    MAP_CLICK,
    TEXT_SEARCH,
    NullSearchHistorySink,
    SearchHistorySink,
    build_event,
    dispatch,
)
from parcel_discovery.markers import MapController, MapView, RecordingMapView
from parcel_discovery.merge import (
    fetch_enrichment,
    fold_fragments,
    merge,
    merge_all,
    needs_enrichment,
)
from parcel_discovery.model import (
    AddressQuery,
    CanonicalProperty,
    ClickQuery,
    EnrichmentReport,
    FragmentSource,
    MapMarker,
    OutcomeStatus,
    PostalQuery,
    ProviderResult,
    SearchOutcome,
    SearchQuery,
)
from parcel_discovery.normalize import join_nonempty
from parcel_discovery.normalizer import TaggedPayload, click_placeholder, normalize_payload
from parcel_discovery.popup import render_popup
from parcel_discovery.settings import Settings, get_settings


logger = logging.getLogger("parcel_discovery.engine")


def _failure_status(result: ProviderResult) -> OutcomeStatus:
    return OutcomeStatus(str(result.kind)) if result.kind else OutcomeStatus.UPSTREAM_ERROR


class PropertyDiscoveryEngine:
    def __init__(
        self,
        source: Any,
        geocoder: Any,
        map_view: Optional[MapView] = None,
        history_sink: Optional[SearchHistorySink] = None,
        settings: Optional[Settings] = None,
        on_save: Optional[Callable[[CanonicalProperty], Any]] = None,
    ):
        self.settings = settings or get_settings()
        self.source = source
        self.geocoder = geocoder
        self.history_sink = history_sink or NullSearchHistorySink()
        self.on_save = on_save
        self.controller = MapController(
            map_view if map_view is not None else RecordingMapView(),
            fit_padding=self.settings.fit_padding,
            click_zoom=self.settings.click_zoom,
        ).init()
        self.controller.on_map_click(self._on_map_click)
        self.controller.on_marker_click(self._on_marker_click)
        self.controller.on_marker_action("view", self._on_view)
        self.controller.on_marker_action("save", self._on_save)

        self._records: Dict[str, CanonicalProperty] = {}
        self._result_ids: List[str] = []
        self._click_id: Optional[str] = None
        self._selected_id: Optional[str] = None
        self._filters = FilterSet()
        self._filter_defaults = FilterSet()
        self._filtered: List[CanonicalProperty] = []
        self._last_outcome: Optional[SearchOutcome] = None

        self._list_seq = 0
        self._click_seq = 0
        self._inflight: Dict[str, asyncio.Task] = {}
        self._background: Set[asyncio.Task] = set()

    # accessors

    @property
    def results(self) -> List[CanonicalProperty]:
        return [self._records[i] for i in self._result_ids]

    @property
    def selected(self) -> Optional[CanonicalProperty]:
        if self._selected_id is None:
            return None
        return self._records.get(self._selected_id)

    @property
    def click_record(self) -> Optional[CanonicalProperty]:
        if self._click_id is None:
            return None
        return self._records.get(self._click_id)

    @property
    def markers(self) -> List[MapMarker]:
        return list(self.controller.markers)

    @property
    def click_marker(self) -> Optional[MapMarker]:
        return self.controller.click_marker

    @property
    def filtered(self) -> List[CanonicalProperty]:
        return list(self._filtered)

    @property
    def filters(self) -> FilterSet:
        return self._filters

    @property
    def filter_defaults(self) -> FilterSet:
        return self._filter_defaults

    @property
    def last_outcome(self) -> Optional[SearchOutcome]:
        return self._last_outcome

    def record(self, identity: str) -> CanonicalProperty:
        if identity not in self._result_ids and identity != self._click_id:
            raise KeyError(identity)
        return self._records[identity]

    def popup(self, identity: str) -> Dict[str, Any]:
        return render_popup(self.record(identity))

    # search

    async def search(self, query: SearchQuery) -> SearchOutcome:
        if isinstance(query, ClickQuery):
            outcome = await self._search_click(query)
        elif isinstance(query, (PostalQuery, AddressQuery)):
            outcome = await self._search_list(query)
        else:
            raise TypeError(f"unsupported query type {type(query).__name__}")
        logger.info(
            "search kind=%s status=%s count=%d", query.kind, outcome.status, outcome.count
        )
        if outcome.status != OutcomeStatus.STALE:
            self._last_outcome = outcome
        return outcome

    async def _search_list(self, query) -> SearchOutcome:
        self._list_seq += 1
        token = self._list_seq
        if isinstance(query, PostalQuery):
            result = await self.source.search_by_postal_code(query.postal_code)
        else:
            result = await self.source.search_by_address(query.line1, query.line2)
        if token != self._list_seq:
            return SearchOutcome(query, OutcomeStatus.STALE, detail="superseded by a newer search")

        if not result.ok:
            if result.not_found:
                self._install_results([])
            return SearchOutcome(query, _failure_status(result), detail=result.detail)

        fragments = normalize_payload(TaggedPayload(FragmentSource.SEARCH, result.data))
        records = fold_fragments(fragments, known=self._records)
        self._install_results(records)
        if not records:
            return SearchOutcome(query, OutcomeStatus.NOT_FOUND, detail="no usable records")

        self._record_history(
            build_event(
                query.describe(),
                TEXT_SEARCH,
                records,
                sample_size=self.settings.history_sample_size,
            )
        )
        return SearchOutcome(query, OutcomeStatus.OK, count=len(records))

    async def _search_click(self, query: ClickQuery) -> SearchOutcome:
        self._click_seq += 1
        token = self._click_seq
        if self._selected_id is not None and self._selected_id == self._click_id:
            if self._selected_id not in self._result_ids:
                self._selected_id = None
        self._click_id = None
        self.controller.begin_click(query.lat, query.lng)

        geocoded = await self.geocoder.reverse(query.lat, query.lng)
        if token != self._click_seq:
            return SearchOutcome(query, OutcomeStatus.STALE, detail="superseded by a newer click")
        if not geocoded.ok:
            self.controller.fail_click()
            return SearchOutcome(query, _failure_status(geocoded), detail=geocoded.detail)
        address = geocoded.data
        if address is None:
            self.controller.fail_click()
            return SearchOutcome(query, OutcomeStatus.NO_ADDRESS)

        result = await self.source.search_by_address(address.line1, address.line2)
        if token != self._click_seq:
            return SearchOutcome(query, OutcomeStatus.STALE, detail="superseded by a newer click")
        if not result.ok:
            self.controller.fail_click()
            return SearchOutcome(query, _failure_status(result), detail=result.detail)

        fragments = [
            f
            for f in normalize_payload(TaggedPayload(FragmentSource.SEARCH, result.data))
            if not f.normalization_failed and f.identity
        ]
        if not fragments:
            self.controller.fail_click()
            return SearchOutcome(query, OutcomeStatus.NOT_FOUND, detail="no usable records")

        first = fragments[0]
        record = merge(self._records.get(first.identity), first)
        record = merge(record, click_placeholder(address, query.lat, query.lng))
        self._store(record)
        self._click_id = record.identity
        self.controller.resolve_click(record.identity, record.position or (query.lat, query.lng))

        self._record_history(
            build_event(
                join_nonempty([address.line1, address.line2]),
                MAP_CLICK,
                [record],
                sample_size=self.settings.history_sample_size,
                property_id=record.provider_id,
            )
        )
        await self.select(record.identity)
        return SearchOutcome(query, OutcomeStatus.OK, count=1)

    def _install_results(self, records: List[CanonicalProperty]) -> None:
        keep = {r.identity for r in records} | set(self._inflight)
        if self._click_id is not None:
            keep.add(self._click_id)
        self._records = {i: r for i, r in self._records.items() if i in keep}
        for record in records:
            self._records[record.identity] = record
        self._result_ids = [r.identity for r in records]
        if self._selected_id is not None and self._selected_id != self._click_id:
            self._selected_id = None
        self.controller.replace_results(records)
        self._refresh_filters(reset=True)

    def _store(self, record: CanonicalProperty) -> None:
        self._records[record.identity] = record

    # selection / enrichment

    async def select(self, identity: str) -> Optional[EnrichmentReport]:
        """Select a record and enrich it when it is still a summary.

        Selecting a record whose enrichment is already running waits on that
        same task instead of issuing new provider calls.
        """
        record = self.record(identity)
        self._selected_id = identity
        self.controller.select(identity)

        task = self._inflight.get(identity)
        if task is None:
            if not needs_enrichment(record):
                return None
            task = asyncio.get_running_loop().create_task(self._enrich(record))
            self._inflight[identity] = task
        self.controller.set_pending(identity)
        return await task

    async def _enrich(self, snapshot: CanonicalProperty) -> EnrichmentReport:
        identity = snapshot.identity
        try:
            fragments, report = await fetch_enrichment(snapshot, self.source)
            current = self._records.get(identity)
            if current is None:
                logger.info("enrichment for %s finished after it left the session", identity)
            else:
                self._store(merge_all(current, fragments) or current)
                if identity in self._result_ids:
                    self._refresh_filters()
            return report
        finally:
            self._inflight.pop(identity, None)
            if self.controller.active:
                self.controller.clear_pending(identity)

    # filters

    def set_filters(self, filters: FilterSet) -> List[CanonicalProperty]:
        if not isinstance(filters, FilterSet):
            raise TypeError("filters must be a FilterSet")
        self._filters = filters
        self._filtered = apply_filters(self.results, filters, self._filter_defaults)
        return self.filtered

    def _refresh_filters(self, reset: bool = False) -> None:
        """Recompute pool defaults and re-run the filter.

        On a new result list every range snaps to the new defaults and only
        the property type carries over. Otherwise ranges still sitting on the
        old default follow the new one, so enrichment never activates a filter.
        """
        results = self.results
        old_defaults = self._filter_defaults
        new_defaults = default_filters(results)
        if reset:
            filters = replace(new_defaults, property_type=self._filters.property_type)
        else:
            changes = {
                name: getattr(new_defaults, name)
                for name, _ in RANGE_FIELDS
                if getattr(self._filters, name) == getattr(old_defaults, name)
            }
            filters = replace(self._filters, **changes)
        self._filter_defaults = new_defaults
        self._filters = filters
        self._filtered = apply_filters(results, filters, new_defaults)

    # history / background work

    def _record_history(self, event) -> None:
        dispatch(self.history_sink, event, self._background)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _on_map_click(self, lat: float, lng: float) -> asyncio.Task:
        return self._spawn(self.search(ClickQuery(lat, lng)))

    def _on_marker_click(self, identity: str) -> asyncio.Task:
        return self._spawn(self.select(identity))

    def _on_view(self, identity: str) -> Dict[str, Any]:
        self._spawn(self.select(identity))
        return self.popup(identity)

    def _on_save(self, identity: str) -> Any:
        record = self.record(identity)
        if self.on_save is None:
            logger.info("save requested for %s but no save handler is configured", identity)
            return None
        return self.on_save(record)

    async def drain(self) -> None:
        while self._background or self._inflight:
            pending = list(self._background) + list(self._inflight.values())
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        self.controller.dispose()
        for collaborator in (self.source, self.geocoder, self.history_sink):
            closer = getattr(collaborator, "aclose", None)
            if closer is not None:
                await closer()


def create_engine(
    settings: Optional[Settings] = None,
    map_view: Optional[MapView] = None,
) -> PropertyDiscoveryEngine:
    """Wire an engine from settings: live provider clients, or the offline demo."""
    settings = settings or get_settings()
    if settings.demo:
        from parcel_discovery.demo import DemoGeocoder, DemoPropertySource

        source: Any = DemoPropertySource()
        geocoder: Any = DemoGeocoder()
    else:
        from parcel_discovery.geocode import ReverseGeocoder
        from parcel_discovery.source import PropertySourceClient

        source = PropertySourceClient.from_settings(settings)
        geocoder = ReverseGeocoder.from_settings(settings)

    sink: SearchHistorySink
    if settings.history_url:
        from parcel_discovery.history import HttpSearchHistorySink

        sink = HttpSearchHistorySink.from_settings(settings)
    else:
        sink = NullSearchHistorySink()
    return PropertyDiscoveryEngine(
        source, geocoder, map_view=map_view, history_sink=sink, settings=settings
    )
