from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from parcel_discovery.model import CanonicalProperty, MapMarker, MarkerKind, MarkerState


logger = logging.getLogger("parcel_discovery.markers")

LatLng = Tuple[float, float]

MARKER_ACTIONS = ("view", "save")
CLICK_MARKER_ID = "click"


class MapView(Protocol):
    def place_marker(self, marker_id: str, position: LatLng, icon: str) -> None: ...

    def remove_marker(self, marker_id: str) -> None: ...

    def set_marker_icon(self, marker_id: str, icon: str) -> None: ...

    def fit_bounds(
        self, south_west: LatLng, north_east: LatLng, padding: int, max_zoom: int
    ) -> None: ...

    def fly_to(self, position: LatLng, zoom: int) -> None: ...


def icon_for(kind: MarkerKind, state: MarkerState) -> str:
    return f"{kind}-{state}"


def click_view_key(identity: str) -> str:
    """Map-view key of a resolved click marker, kept apart from result markers."""
    return f"{CLICK_MARKER_ID}:{identity}"


def bounds_of(positions: Iterable[LatLng]) -> Optional[Tuple[LatLng, LatLng]]:
    points = list(positions)
    if not points:
        return None
    lats = [p[0] for p in points]
    lngs = [p[1] for p in points]
    return (min(lats), min(lngs)), (max(lats), max(lngs))


class MapController:
    """Owns the marker registry and the camera for one map instance.

    Result markers are keyed by record identity and replaced wholesale on every
    new result list. The click marker lives outside that registry: there is at
    most one, and the next map click replaces it.
    """

    def __init__(
        self,
        view: MapView,
        fit_padding: int = 50,
        fit_max_zoom: int = 14,
        click_zoom: int = 16,
    ):
        self.view = view
        self.fit_padding = fit_padding
        self.fit_max_zoom = fit_max_zoom
        self.click_zoom = click_zoom
        self._markers: Dict[str, MapMarker] = {}
        self._click: Optional[MapMarker] = None
        self._click_key: Optional[str] = None
        self._selected: Optional[str] = None
        self._click_listeners: List[Callable[[float, float], Any]] = []
        self._marker_click_listeners: List[Callable[[str], Any]] = []
        self._action_handlers: Dict[str, Callable[[str], Any]] = {}
        self._active = False

    # lifecycle

    def init(self) -> "MapController":
        self._active = True
        return self

    def dispose(self) -> None:
        if not self._active:
            return
        for marker_id in list(self._markers):
            self.view.remove_marker(marker_id)
        if self._click_key is not None:
            self.view.remove_marker(self._click_key)
        self._markers.clear()
        self._click = None
        self._click_key = None
        self._selected = None
        self._click_listeners.clear()
        self._marker_click_listeners.clear()
        self._action_handlers.clear()
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def _require_active(self) -> None:
        if not self._active:
            raise RuntimeError("MapController is not initialized")

    # state

    @property
    def markers(self) -> Tuple[MapMarker, ...]:
        return tuple(self._markers.values())

    @property
    def click_marker(self) -> Optional[MapMarker]:
        return self._click

    @property
    def selected_id(self) -> Optional[str]:
        return self._selected

    def marker(self, marker_id: str) -> Optional[MapMarker]:
        if marker_id in self._markers:
            return self._markers[marker_id]
        if self._click is not None and self._click.id == marker_id:
            return self._click
        return None

    def _set_state(self, marker_id: str, state: MarkerState) -> None:
        current = self.marker(marker_id)
        if current is None or current.visual_state == state:
            return
        updated = replace(current, visual_state=state)
        if marker_id in self._markers:
            self._markers[marker_id] = updated
            view_key = marker_id
        else:
            self._click = updated
            view_key = self._click_key
        self.view.set_marker_icon(view_key, icon_for(updated.kind, state))

    # result list

    def replace_results(self, records: Iterable[CanonicalProperty]) -> None:
        """Destroy every result marker and place one per positioned record."""
        self._require_active()
        for marker_id in list(self._markers):
            self.view.remove_marker(marker_id)
        self._markers.clear()
        if self._click is None or self._selected != self._click.id:
            self._selected = None
        for record in records:
            position = record.position
            if position is None or record.identity in self._markers:
                continue
            marker = MapMarker(id=record.identity, position=position)
            self._markers[marker.id] = marker
            self.view.place_marker(marker.id, position, icon_for(marker.kind, marker.visual_state))
        if self._click is not None and self._click.id in self._markers:
            # The click record joined the list; its result marker takes over the state.
            state = self._click.visual_state
            self._click = replace(self._click, visual_state=MarkerState.DEFAULT)
            self.view.set_marker_icon(self._click_key, icon_for(self._click.kind, MarkerState.DEFAULT))
            self._set_state(self._click.id, state)
        bounds = bounds_of(m.position for m in self._markers.values())
        if bounds is not None:
            self.view.fit_bounds(bounds[0], bounds[1], self.fit_padding, self.fit_max_zoom)
        logger.debug("markers replaced: %d", len(self._markers))

    def select(self, identity: str) -> None:
        self._require_active()
        previous = self._selected
        if previous is not None and previous != identity:
            self._set_state(previous, MarkerState.DEFAULT)
        self._selected = identity
        self._set_state(identity, MarkerState.SELECTED)

    def set_pending(self, identity: str) -> None:
        """Show the enrichment glyph, but only on the selected marker."""
        self._require_active()
        if identity == self._selected:
            self._set_state(identity, MarkerState.PENDING)

    def clear_pending(self, identity: str) -> None:
        self._require_active()
        marker = self.marker(identity)
        if marker is None or marker.visual_state != MarkerState.PENDING:
            return
        state = MarkerState.SELECTED if identity == self._selected else MarkerState.DEFAULT
        self._set_state(identity, state)

    # click marker

    def _place_click(self, marker: MapMarker, view_key: str) -> None:
        self._click = marker
        self._click_key = view_key
        self.view.place_marker(view_key, marker.position, icon_for(marker.kind, marker.visual_state))

    def _drop_click(self) -> None:
        if self._click is not None:
            self.view.remove_marker(self._click_key)
            if self._selected == self._click.id and self._selected not in self._markers:
                self._selected = None
            self._click = None
            self._click_key = None

    def begin_click(self, lat: float, lng: float) -> MapMarker:
        self._require_active()
        self._drop_click()
        marker = MapMarker(
            id=CLICK_MARKER_ID,
            position=(lat, lng),
            visual_state=MarkerState.PENDING,
            kind=MarkerKind.CLICK,
        )
        self._place_click(marker, CLICK_MARKER_ID)
        return marker

    def resolve_click(self, identity: str, position: Optional[LatLng] = None) -> MapMarker:
        """Re-key the provisional click marker to the record it resolved to."""
        self._require_active()
        anchor = position or (self._click.position if self._click is not None else None)
        if anchor is None:
            raise ValueError("no click marker to resolve and no position given")
        self._drop_click()
        marker = MapMarker(id=identity, position=anchor, kind=MarkerKind.CLICK)
        self._place_click(marker, click_view_key(identity))
        self.view.fly_to(anchor, self.click_zoom)
        return marker

    def fail_click(self) -> None:
        self._require_active()
        if self._click is not None:
            self._set_state(self._click.id, MarkerState.ERROR)

    # inbound events

    def on_map_click(self, listener: Callable[[float, float], Any]) -> None:
        self._click_listeners.append(listener)

    def on_marker_click(self, listener: Callable[[str], Any]) -> None:
        self._marker_click_listeners.append(listener)

    def on_marker_action(self, action: str, handler: Callable[[str], Any]) -> None:
        if action not in MARKER_ACTIONS:
            raise ValueError(f"unknown marker action {action!r}")
        self._action_handlers[action] = handler

    def map_clicked(self, lat: float, lng: float) -> List[Any]:
        self._require_active()
        return [listener(lat, lng) for listener in list(self._click_listeners)]

    def marker_clicked(self, identity: str) -> List[Any]:
        self._require_active()
        if self.marker(identity) is None:
            raise KeyError(identity)
        return [listener(identity) for listener in list(self._marker_click_listeners)]

    def marker_action(self, identity: str, action: str) -> Any:
        """Route a popup button press to the handler registered for it."""
        self._require_active()
        if action not in MARKER_ACTIONS:
            raise ValueError(f"unknown marker action {action!r}")
        if self.marker(identity) is None:
            raise KeyError(identity)
        handler = self._action_handlers.get(action)
        if handler is None:
            logger.debug("no handler for marker action %s", action)
            return None
        return handler(identity)


class RecordingMapView:
    """In-memory map collaborator; records every call it receives."""

    def __init__(self):
        self.markers: Dict[str, Tuple[LatLng, str]] = {}
        self.calls: List[Tuple[Any, ...]] = []
        self.camera: Optional[Tuple[Any, ...]] = None

    def place_marker(self, marker_id, position, icon):
        self.markers[marker_id] = (tuple(position), icon)
        self.calls.append(("place_marker", marker_id, tuple(position), icon))

    def remove_marker(self, marker_id):
        self.markers.pop(marker_id, None)
        self.calls.append(("remove_marker", marker_id))

    def set_marker_icon(self, marker_id, icon):
        if marker_id in self.markers:
            self.markers[marker_id] = (self.markers[marker_id][0], icon)
        self.calls.append(("set_marker_icon", marker_id, icon))

    def fit_bounds(self, south_west, north_east, padding, max_zoom):
        self.camera = ("fit_bounds", tuple(south_west), tuple(north_east), padding, max_zoom)
        self.calls.append(self.camera)

    def fly_to(self, position, zoom):
        self.camera = ("fly_to", tuple(position), zoom)
        self.calls.append(self.camera)

    def camera_moves(self) -> List[Tuple[Any, ...]]:
        return [c for c in self.calls if c[0] in ("fit_bounds", "fly_to")]


def to_feature_collection(
    markers: Iterable[MapMarker],
    records: Optional[Mapping[str, CanonicalProperty]] = None,
) -> dict:
    """GeoJSON view of the marker set, with the address when it is known."""
    records = records or {}
    features = []
    for marker in markers:
        lat, lng = marker.position
        record = records.get(marker.id)
        features.append(
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [lng, lat]},
                "properties": {
                    "id": marker.id,
                    "kind": str(marker.kind),
                    "state": str(marker.visual_state),
                    "icon": icon_for(marker.kind, marker.visual_state),
                    "address": (record.address.single_line if record else None) or "",
                },
            }
        )
    return {"type": "FeatureCollection", "features": features}
