"""Ordered fallback chains for every canonical field.

Providers place the same fact under different paths depending on the endpoint
and on the historical payload version. Each canonical field gets one chain of
extractors tried in order; the first one producing a usable value wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from parcel_discovery.model import SaleEvent
from parcel_discovery.normalize import as_coordinate, as_int, as_number, clean_str, join_nonempty


Extractor = Union[str, Tuple[str, Callable[[Mapping[str, Any]], Any]]]


def dig(obj: Any, path: str) -> Any:
    """Walk a dotted path; integer segments index into lists."""
    cur = obj
    for key in path.split("."):
        if isinstance(cur, Mapping):
            cur = cur.get(key)
        elif isinstance(cur, (list, tuple)) and key.isdigit():
            idx = int(key)
            cur = cur[idx] if idx < len(cur) else None
        else:
            return None
        if cur is None:
            return None
    return cur


def as_flag(value: object) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    s = (clean_str(value) or "").lower()
    if s in {"y", "yes", "true", "t", "1"}:
        return True
    if s in {"n", "no", "false", "f", "0"}:
        return False
    return None


@dataclass(frozen=True)
class FieldChain:
    target: str
    extractors: Tuple[Extractor, ...]
    coerce: Callable[[object], Any] = clean_str

    def resolve(self, prop: Mapping[str, Any]) -> Tuple[Any, Optional[str]]:
        """Return (value, extractor_name); (None, None) when nothing matched."""
        for extractor in self.extractors:
            if isinstance(extractor, str):
                name, raw = extractor, dig(prop, extractor)
            else:
                name, fn = extractor
                raw = fn(prop)
            value = self.coerce(raw)
            if value is not None:
                return value, name
        return None, None


def _owner_mailing_from_parts(prop: Mapping[str, Any]) -> Optional[str]:
    mailing = dig(prop, "owner.mailingaddress")
    if not isinstance(mailing, Mapping):
        return None
    return join_nonempty(
        [
            clean_str(mailing.get("line1")),
            clean_str(mailing.get("line2")),
            clean_str(mailing.get("city") or mailing.get("locality")),
            clean_str(mailing.get("state") or mailing.get("countrySubd")),
            clean_str(mailing.get("postal1")),
        ]
    ) or None


PROVIDER_ID = FieldChain(
    "provider_id",
    ("identifier.attomId", "identifier.Id", "identifier.id", "attomId"),
)

# Fields carried by search (summary) and detail payloads.
PROPERTY_CHAINS: Tuple[FieldChain, ...] = (
    FieldChain("address.line1", ("address.line1",)),
    FieldChain("address.city", ("address.locality", "address.city")),
    FieldChain("address.state", ("address.countrySubd", "address.state")),
    FieldChain("address.postal", ("address.postal1", "address.postalCode")),
    FieldChain("address.one_line", ("address.oneLine", "fullAddress")),
    FieldChain(
        "location.latitude",
        (
            "location.latitude",
            "address.latitude",
            "address.location.geometry.coordinates.1",
            "location.coordinates.1",
            "location.geometry.coordinates.1",
        ),
        as_coordinate,
    ),
    FieldChain(
        "location.longitude",
        (
            "location.longitude",
            "address.longitude",
            "address.location.geometry.coordinates.0",
            "location.coordinates.0",
            "location.geometry.coordinates.0",
        ),
        as_coordinate,
    ),
    FieldChain(
        "classification.property_type",
        ("summary.propertyType", "summary.propclass", "summary.proptype", "propertyType"),
    ),
    FieldChain(
        "building.size_sq_ft",
        ("building.size.universalsize", "building.size.livingsize", "building.size.bldgsize"),
        as_number,
    ),
    FieldChain(
        "building.year_built",
        ("summary.yearbuilt", "building.summary.yearbuilt", "yearBuilt"),
        as_int,
    ),
    FieldChain("building.bedrooms", ("building.rooms.beds",), as_int),
    FieldChain(
        "building.bathrooms",
        ("building.rooms.bathstotal", "building.rooms.bathsfull"),
        as_number,
    ),
    FieldChain("building.stories", ("building.summary.levels", "summary.levels"), as_number),
    FieldChain("lot.size_sq_ft", ("lot.lotsize2", "lot.lotSize"), as_number),
    FieldChain("lot.size_acres", ("lot.lotsize1",), as_number),
    # Order is load-bearing: providers put the "true" market value under
    # different paths depending on the endpoint.
    FieldChain(
        "valuation.market_value",
        (
            "assessment.market.mktttlvalue",
            "assessment.calculations.calcttlvalue",
            "assessment.assessed.assdttlvalue",
            "sale.amount.saleamt",
        ),
        as_number,
    ),
    FieldChain("valuation.assessed_value", ("assessment.assessed.assdttlvalue",), as_number),
    FieldChain(
        "valuation.land_value",
        ("assessment.market.mktlandvalue", "assessment.assessed.assdlandvalue"),
        as_number,
    ),
    FieldChain("valuation.tax_amount", ("assessment.tax.taxamt",), as_number),
    FieldChain("valuation.tax_year", ("assessment.tax.taxyear",), as_int),
    FieldChain("sale.amount", ("sale.amount.saleamt",), as_number),
    FieldChain(
        "sale.date",
        ("sale.saleTransDate", "sale.salesearchdate", "sale.amount.salerecdate"),
    ),
    FieldChain("sale.document_type", ("sale.amount.saledoctype",)),
)

OWNER_CHAINS: Tuple[FieldChain, ...] = (
    FieldChain("owner.primary_name", ("owner.owner1.fullname", "owner.name")),
    FieldChain("owner.secondary_name", ("owner.owner2.fullname", "owner.secondname")),
    FieldChain("owner.is_corporate", ("owner.corporateindicator",), as_flag),
    FieldChain(
        "owner.mailing_address",
        (
            "owner.mailingaddressoneline",
            ("owner.mailingaddress", _owner_mailing_from_parts),
        ),
    ),
)


def resolve_chains(
    prop: Mapping[str, Any], chains: Sequence[FieldChain]
) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """Resolve every chain; returns (values by target, extractor name by target)."""
    values: Dict[str, Any] = {}
    trace: Dict[str, str] = {}
    for chain in chains:
        value, name = chain.resolve(prop)
        if value is None:
            continue
        values[chain.target] = value
        trace[chain.target] = name or ""
    return values, trace


def _sale_event(raw: Mapping[str, Any]) -> Optional[SaleEvent]:
    amount = raw.get("amount")
    if isinstance(amount, Mapping):
        amount_value = as_number(amount.get("saleamt"))
        doc_type = clean_str(amount.get("saletranstype")) or clean_str(amount.get("saledoctype"))
        doc_num = clean_str(amount.get("saledocnum"))
    else:
        amount_value = as_number(amount)
        doc_type = None
        doc_num = None
    event = SaleEvent(
        date=clean_str(raw.get("recordingDate"))
        or clean_str(raw.get("saleTransDate"))
        or clean_str(raw.get("salesearchdate")),
        amount=amount_value,
        transaction_type=clean_str(raw.get("transactionType")) or doc_type,
        document_number=clean_str(raw.get("recordingDocumentNumber")) or doc_num,
        grantee=clean_str(raw.get("grantee")),
        grantor=clean_str(raw.get("grantor")),
    )
    if all(v is None for v in (event.date, event.amount, event.transaction_type)):
        return None
    return event


def extract_sale_history(prop: Mapping[str, Any]) -> Tuple[Optional[Tuple[SaleEvent, ...]], Optional[str]]:
    """Sale history from an events payload, newest first as delivered."""
    for path in ("salesHistory", "expandedProfile.salesHistory", "saleHistory"):
        raw = dig(prop, path)
        if isinstance(raw, list):
            events: List[SaleEvent] = []
            for item in raw:
                if isinstance(item, Mapping):
                    event = _sale_event(item)
                    if event is not None:
                        events.append(event)
            return tuple(events), path
    sale = prop.get("sale")
    if isinstance(sale, Mapping):
        event = _sale_event(sale)
        if event is not None:
            return (event,), "sale"
    return None, None
