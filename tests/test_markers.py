import pytest

from parcel_discovery.markers import (
    CLICK_MARKER_ID,
    MapController,
    RecordingMapView,
    bounds_of,
    icon_for,
    to_feature_collection,
)
from parcel_discovery.merge import merge
from parcel_discovery.model import FragmentSource, MarkerKind, MarkerState
from parcel_discovery.normalizer import normalize_property


def _records(payloads, *specs):
    out = []
    for attom_id, lat, lng in specs:
        raw = payloads.summary(attom_id, lat=lat, lng=lng)
        out.append(merge(None, normalize_property(raw, FragmentSource.SEARCH)))
    return out


@pytest.fixture
def controller():
    view = RecordingMapView()
    return MapController(view, fit_padding=50, fit_max_zoom=14, click_zoom=16).init()


def test_replace_results_places_markers_and_fits_bounds(controller, payloads):
    records = _records(payloads, ("A1", 40.0, -74.0), ("A2", 41.0, -73.0))
    controller.replace_results(records)
    assert [m.id for m in controller.markers] == ["A1", "A2"]
    assert all(m.visual_state == MarkerState.DEFAULT for m in controller.markers)
    assert controller.view.camera == ("fit_bounds", (40.0, -74.0), (41.0, -73.0), 50, 14)


def test_replace_results_destroys_previous_markers(controller, payloads):
    controller.replace_results(_records(payloads, ("A1", 40.0, -74.0)))
    controller.replace_results(_records(payloads, ("B1", 30.0, -90.0)))
    assert set(controller.view.markers) == {"B1"}
    assert ("remove_marker", "A1") in controller.view.calls


def test_records_without_position_get_no_marker(controller, payloads):
    raw = payloads.summary("A9")
    del raw["location"]
    bare = merge(None, normalize_property(raw, FragmentSource.SEARCH))
    controller.replace_results([bare])
    assert controller.markers == ()
    assert controller.view.camera is None


def test_single_selection(controller, payloads):
    controller.replace_results(_records(payloads, ("A1", 40.0, -74.0), ("A2", 41.0, -73.0)))
    controller.select("A1")
    controller.select("A2")
    states = {m.id: m.visual_state for m in controller.markers}
    assert states == {"A1": MarkerState.DEFAULT, "A2": MarkerState.SELECTED}
    assert controller.view.markers["A2"][1] == icon_for(MarkerKind.RESULT, MarkerState.SELECTED)


def test_pending_only_on_selected_marker(controller, payloads):
    controller.replace_results(_records(payloads, ("A1", 40.0, -74.0), ("A2", 41.0, -73.0)))
    controller.select("A1")
    controller.set_pending("A2")
    assert controller.marker("A2").visual_state == MarkerState.DEFAULT
    controller.set_pending("A1")
    assert controller.marker("A1").visual_state == MarkerState.PENDING
    controller.clear_pending("A1")
    assert controller.marker("A1").visual_state == MarkerState.SELECTED


def test_pending_returns_to_default_if_selection_moved(controller, payloads):
    controller.replace_results(_records(payloads, ("A1", 40.0, -74.0), ("A2", 41.0, -73.0)))
    controller.select("A1")
    controller.set_pending("A1")
    controller.select("A2")
    controller.clear_pending("A1")
    assert controller.marker("A1").visual_state == MarkerState.DEFAULT


def test_camera_not_moved_by_selection(controller, payloads):
    controller.replace_results(_records(payloads, ("A1", 40.0, -74.0)))
    moves = len(controller.view.camera_moves())
    controller.select("A1")
    controller.set_pending("A1")
    controller.clear_pending("A1")
    assert len(controller.view.camera_moves()) == moves


def test_click_marker_lifecycle(controller):
    marker = controller.begin_click(40.5, -73.5)
    assert marker.id == CLICK_MARKER_ID
    assert marker.visual_state == MarkerState.PENDING
    controller.fail_click()
    assert controller.click_marker.visual_state == MarkerState.ERROR

    controller.begin_click(40.6, -73.6)
    assert [k for k in controller.view.markers] == [CLICK_MARKER_ID]
    resolved = controller.resolve_click("A7", (40.61, -73.61))
    assert resolved.kind == MarkerKind.CLICK
    assert set(controller.view.markers) == {"click:A7"}
    assert controller.view.camera == ("fly_to", (40.61, -73.61), 16)
    assert controller.markers == ()


def test_marker_actions_route_to_handlers(controller, payloads):
    controller.replace_results(_records(payloads, ("A1", 40.0, -74.0)))
    seen = []
    controller.on_marker_action("save", lambda identity: seen.append(("save", identity)) or "saved")
    assert controller.marker_action("A1", "save") == "saved"
    assert controller.marker_action("A1", "view") is None
    assert seen == [("save", "A1")]
    with pytest.raises(ValueError):
        controller.marker_action("A1", "delete")
    with pytest.raises(KeyError):
        controller.marker_action("nope", "view")


def test_map_clicked_notifies_listeners(controller):
    clicks = []
    controller.on_map_click(lambda lat, lng: clicks.append((lat, lng)))
    controller.map_clicked(1.5, 2.5)
    assert clicks == [(1.5, 2.5)]


def test_dispose_clears_everything(controller, payloads):
    controller.replace_results(_records(payloads, ("A1", 40.0, -74.0)))
    controller.begin_click(1.0, 2.0)
    controller.dispose()
    assert controller.view.markers == {}
    assert not controller.active
    with pytest.raises(RuntimeError):
        controller.replace_results([])


def test_bounds_and_geojson(payloads):
    assert bounds_of([]) is None
    assert bounds_of([(1, 5), (3, 2)]) == ((1, 2), (3, 5))

    controller = MapController(RecordingMapView()).init()
    records = _records(payloads, ("A1", 40.0, -74.0))
    controller.replace_results(records)
    fc = to_feature_collection(controller.markers, {r.identity: r for r in records})
    assert fc["type"] == "FeatureCollection"
    feature = fc["features"][0]
    assert feature["geometry"] == {"type": "Point", "coordinates": [-74.0, 40.0]}
    assert feature["properties"]["id"] == "A1"
    assert feature["properties"]["state"] == "default"
    assert feature["properties"]["address"].startswith("1 Main St")


def test_click_on_a_result_parcel_leaves_result_marker_alone(controller, payloads):
    controller.replace_results(_records(payloads, ("A1", 40.0, -74.0), ("A2", 41.0, -73.0)))
    controller.begin_click(40.0, -74.0)
    controller.resolve_click("A1", (40.0, -74.0))
    assert set(controller.view.markers) == {"A1", "A2", "click:A1"}

    controller.begin_click(10.0, 10.0)
    controller.fail_click()
    assert set(controller.view.markers) == {"A1", "A2", CLICK_MARKER_ID}
    assert {m.id for m in controller.markers} == {"A1", "A2"}


def test_selected_click_marker_survives_result_replacement(controller, payloads):
    controller.begin_click(40.5, -73.5)
    controller.resolve_click("C7", (40.5, -73.5))
    controller.select("C7")
    controller.replace_results(_records(payloads, ("A1", 40.0, -74.0), ("A2", 41.0, -73.0)))
    assert controller.selected_id == "C7"

    controller.select("A1")
    markers = list(controller.markers) + [controller.click_marker]
    selected = [m.id for m in markers if m.visual_state == MarkerState.SELECTED]
    assert selected == ["A1"]
    assert controller.view.markers["click:C7"][1] == icon_for(MarkerKind.CLICK, MarkerState.DEFAULT)


def test_click_record_joining_the_list_hands_over_its_state(controller, payloads):
    controller.begin_click(40.0, -74.0)
    controller.resolve_click("A1", (40.0, -74.0))
    controller.select("A1")
    controller.replace_results(_records(payloads, ("A1", 40.0, -74.0), ("A2", 41.0, -73.0)))

    assert controller.marker("A1").visual_state == MarkerState.SELECTED
    assert controller.click_marker.visual_state == MarkerState.DEFAULT
    controller.select("A2")
    markers = list(controller.markers) + [controller.click_marker]
    assert [m.id for m in markers if m.visual_state == MarkerState.SELECTED] == ["A2"]
