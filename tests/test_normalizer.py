import logging

from parcel_discovery.extractors import PROPERTY_CHAINS, dig
from parcel_discovery.model import FragmentSource, GeocodedAddress
from parcel_discovery.normalizer import (
    TaggedPayload,
    click_placeholder,
    normalize_payload,
    normalize_property,
)


def _chain(target):
    return next(c for c in PROPERTY_CHAINS if c.target == target)


def test_market_value_prefers_market_over_assessed():
    prop = {
        "identifier": {"attomId": "1"},
        "assessment": {
            "market": {"mktttlvalue": 750000},
            "assessed": {"assdttlvalue": 300000},
        },
    }
    frag = normalize_property(prop, FragmentSource.SEARCH)
    assert frag.valuation.market_value == 750000
    assert frag.valuation.assessed_value == 300000
    assert frag.trace["valuation.market_value"] == "assessment.market.mktttlvalue"


def test_market_value_fallback_chain_order():
    chain = _chain("valuation.market_value")
    prop = {
        "assessment": {
            "calculations": {"calcttlvalue": 610000},
            "assessed": {"assdttlvalue": 300000},
        },
        "sale": {"amount": {"saleamt": 90000}},
    }
    assert chain.resolve(prop) == (610000, "assessment.calculations.calcttlvalue")

    del prop["assessment"]["calculations"]
    assert chain.resolve(prop) == (300000, "assessment.assessed.assdttlvalue")

    del prop["assessment"]
    assert chain.resolve(prop) == (90000, "sale.amount.saleamt")


def test_zero_market_value_falls_through():
    chain = _chain("valuation.market_value")
    prop = {"assessment": {"market": {"mktttlvalue": 0}, "assessed": {"assdttlvalue": 1}}}
    assert chain.resolve(prop)[0] == 1


def test_identity_stable_across_normalizations(payloads):
    raw = payloads.envelope([payloads.summary("A1")])
    first = normalize_payload(TaggedPayload(FragmentSource.SEARCH, raw))
    second = normalize_payload(TaggedPayload(FragmentSource.SEARCH, raw))
    assert [f.identity for f in first] == [f.identity for f in second] == ["A1"]
    assert first == second


def test_identity_falls_back_to_address_hash(payloads):
    raw = payloads.summary("A1")
    del raw["identifier"]
    frag = normalize_property(raw, FragmentSource.SEARCH)
    assert frag.identity.startswith("addr:")
    assert frag.provider_id is None


def test_fragment_only_carries_present_fields(payloads):
    frag = normalize_property(payloads.summary("A1"), FragmentSource.SEARCH)
    assert frag.address.city == "New York"
    assert frag.address.single_line == "1 Main St, New York, NY 10019"
    assert frag.location.latitude == 40.765
    assert frag.classification.property_type == "SFR"
    assert frag.building.size_sq_ft is None
    assert frag.lot.size_sq_ft is None
    assert frag.owner.primary_name is None


def test_single_line_synthesized_when_provider_omits_it(payloads):
    raw = payloads.summary("A1", city="")
    del raw["address"]["oneLine"]
    frag = normalize_property(raw, FragmentSource.SEARCH)
    assert frag.address.single_line == "1 Main St, NY, 10019"


def test_detail_payload_sizes(payloads):
    frag = normalize_property(payloads.detail("A1"), FragmentSource.DETAIL)
    assert frag.building.size_sq_ft == 1850
    assert frag.building.bedrooms == 3
    assert frag.lot.size_sq_ft == 5200
    assert frag.lot.size_acres == 0.12


def test_owner_and_events_payloads(payloads):
    owner = normalize_payload(
        TaggedPayload(FragmentSource.OWNER, payloads.envelope([payloads.owner("A1")]))
    )[0]
    assert owner.identity == "A1"
    assert owner.owner.primary_name == "JANE DOE"
    assert owner.owner.is_corporate is False
    assert owner.valuation.market_value is None

    events = normalize_payload(
        TaggedPayload(FragmentSource.EVENTS, payloads.envelope([payloads.events("A1")]))
    )[0]
    history = events.events.history
    assert [e.amount for e in history] == [450000, 210000]
    assert history[0].transaction_type == "Resale"


def test_owner_uses_identity_hint_when_payload_has_no_id():
    payload = {"owner": {"owner1": {"fullname": "ACME LLC"}, "corporateindicator": "Y"}}
    frags = normalize_payload(TaggedPayload(FragmentSource.OWNER, payload), identity_hint="A9")
    assert frags[0].identity == "A9"
    assert frags[0].owner.is_corporate is True


def test_unrecognized_payload_is_marked_failed(caplog):
    with caplog.at_level(logging.WARNING, logger="parcel_discovery.normalizer"):
        frags = normalize_payload(TaggedPayload(FragmentSource.SEARCH, ["not", "a", "dict"]))
    assert len(frags) == 1
    assert frags[0].normalization_failed
    assert frags[0].is_empty
    assert "normalization_failed" in caplog.text


def test_empty_envelope_yields_no_fragments(payloads):
    assert normalize_payload(TaggedPayload(FragmentSource.SEARCH, payloads.envelope([]))) == []


def test_one_bad_item_does_not_abort_the_rest(payloads):
    raw = payloads.envelope([{"unrelated": True}, payloads.summary("A2")])
    raw["property"][0] = {"identifier": {}}
    frags = normalize_payload(TaggedPayload(FragmentSource.SEARCH, raw))
    assert [f.normalization_failed for f in frags] == [True, False]
    assert frags[1].identity == "A2"


def test_click_placeholder_is_low_trust_click_fragment():
    geo = GeocodedAddress("12 Elm St", "Springfield, IL 62701", postal_code="62701")
    frag = click_placeholder(geo, 39.8, -89.6)
    assert frag.source == FragmentSource.CLICK
    assert frag.identity is None
    assert frag.address.line1 == "12 Elm St"
    assert (frag.location.latitude, frag.location.longitude) == (39.8, -89.6)


def test_dig_indexes_lists():
    prop = {"location": {"geometry": {"coordinates": [-73.9, 40.7]}}}
    assert dig(prop, "location.geometry.coordinates.1") == 40.7
    assert dig(prop, "location.geometry.coordinates.5") is None
    assert dig(prop, "location.missing.path") is None


def test_events_payload_carries_live_assessment(payloads):
    raw = payloads.events("A1")
    raw["assessment"] = {
        "market": {"mktttlvalue": 815000},
        "tax": {"taxamt": 9100, "taxyear": 2025},
    }
    frag = normalize_payload(TaggedPayload(FragmentSource.EVENTS, payloads.envelope([raw])))[0]
    assert frag.valuation.market_value == 815000
    assert frag.valuation.tax_year == 2025
    assert frag.trace["valuation.market_value"] == "assessment.market.mktttlvalue"
    assert len(frag.events.history) == 2
    assert frag.address.line1 is None
