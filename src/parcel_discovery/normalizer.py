from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from parcel_discovery.extractors import (
    OWNER_CHAINS,
    PROPERTY_CHAINS,
    PROVIDER_ID,
    extract_sale_history,
    resolve_chains,
)
from parcel_discovery.identity import compute_identity
from parcel_discovery.model import (
    Address,
    Building,
    Classification,
    Events,
    FragmentSource,
    GeocodedAddress,
    Location,
    Lot,
    Owner,
    PropertyFragment,
    Sale,
    Valuation,
)


logger = logging.getLogger("parcel_discovery.normalizer")

VALUATION_CHAINS = tuple(c for c in PROPERTY_CHAINS if c.target.startswith("valuation."))

_GROUP_TYPES = {
    "address": Address,
    "location": Location,
    "classification": Classification,
    "building": Building,
    "lot": Lot,
    "valuation": Valuation,
    "sale": Sale,
    "owner": Owner,
    "events": Events,
}

# Top-level keys that identify a bare (un-enveloped) property dict.
_PROPERTY_KEYS = frozenset(
    {
        "identifier",
        "address",
        "location",
        "summary",
        "building",
        "lot",
        "assessment",
        "sale",
        "owner",
        "salesHistory",
        "expandedProfile",
    }
)


@dataclass(frozen=True)
class TaggedPayload:
    source: FragmentSource
    payload: Any


def _property_items(payload: Any) -> Optional[List[Mapping[str, Any]]]:
    if not isinstance(payload, Mapping):
        return None
    if "property" in payload:
        prop = payload.get("property")
        if isinstance(prop, list):
            return [p for p in prop if isinstance(p, Mapping)]
        if isinstance(prop, Mapping):
            return [prop]
        return None
    if _PROPERTY_KEYS.intersection(payload.keys()):
        return [payload]
    return None


def _build_groups(values: Mapping[str, Any]) -> Dict[str, Any]:
    kwargs: Dict[str, Dict[str, Any]] = {}
    for target, value in values.items():
        group, _, name = target.partition(".")
        kwargs.setdefault(group, {})[name] = value
    return {group: _GROUP_TYPES[group](**fields) for group, fields in kwargs.items()}


def failed_fragment(source: FragmentSource, identity: Optional[str] = None) -> PropertyFragment:
    return PropertyFragment(source=source, identity=identity, normalization_failed=True)


def normalize_property(
    prop: Mapping[str, Any],
    source: FragmentSource,
    identity_hint: Optional[str] = None,
) -> PropertyFragment:
    """Normalize one provider property dict into a fragment.

    ``identity_hint`` is the identity the caller asked about (owner/events
    lookups by id); it is used when the payload does not echo its own id.
    """
    trace: Dict[str, str] = {}
    if source == FragmentSource.OWNER:
        values, trace = resolve_chains(prop, OWNER_CHAINS)
    elif source == FragmentSource.EVENTS:
        # The events record carries the live assessment alongside the sales.
        values, trace = resolve_chains(prop, VALUATION_CHAINS)
        history, path = extract_sale_history(prop)
        if history is not None:
            values["events.history"] = history
            trace["events.history"] = path or ""
    else:
        values, trace = resolve_chains(prop, PROPERTY_CHAINS)

    provider_id, _ = PROVIDER_ID.resolve(prop)
    groups = _build_groups(values)
    address = groups.get("address") or Address()
    if provider_id is None and identity_hint:
        identity, warnings = identity_hint, []
    else:
        identity, warnings = compute_identity(provider_id, address.single_line)
    for warning in warnings:
        logger.debug("identity source=%s: %s", source, warning)

    if not values and identity is None:
        logger.warning("normalization_failed source=%s: no recognizable fields", source)
        return failed_fragment(source, identity_hint)

    return PropertyFragment(
        source=source,
        identity=identity,
        provider_id=provider_id,
        trace=trace,
        **groups,
    )


def normalize_payload(
    tagged: TaggedPayload,
    identity_hint: Optional[str] = None,
) -> List[PropertyFragment]:
    """Dispatch one tagged provider response to fragments.

    An envelope with an empty ``property`` list yields no fragments. A payload
    of unknown shape yields a single ``normalization_failed`` fragment, which
    merges as a no-op.
    """
    items = _property_items(tagged.payload)
    if items is None:
        logger.warning(
            "normalization_failed source=%s: unrecognized payload shape (%s)",
            tagged.source,
            type(tagged.payload).__name__,
        )
        return [failed_fragment(tagged.source, identity_hint)]
    return [normalize_property(item, tagged.source, identity_hint) for item in items]


def click_placeholder(
    geocoded: GeocodedAddress, lat: float, lng: float
) -> PropertyFragment:
    """Lowest-trust fragment describing what a map click resolved to."""
    return PropertyFragment(
        source=FragmentSource.CLICK,
        address=Address(line1=geocoded.line1 or None, postal=geocoded.postal_code),
        location=Location(latitude=lat, longitude=lng),
    )
