from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import IntEnum, StrEnum
from typing import Any, ClassVar, Dict, FrozenSet, Iterator, Mapping, Optional, Tuple, Union

from parcel_discovery.normalize import join_nonempty


class FragmentSource(StrEnum):
    """Which provider endpoint produced a payload."""

    SEARCH = "search"
    DETAIL = "detail"
    OWNER = "owner"
    EVENTS = "events"
    CLICK = "click"


class Trust(IntEnum):
    CLICK = 1
    SEARCH = 2
    DETAIL = 3


# Owner fragments never overlap summary/detail fields. Events fragments carry
# the live assessment and compete with detail at the same trust.
SOURCE_TRUST: Dict[FragmentSource, Trust] = {
    FragmentSource.CLICK: Trust.CLICK,
    FragmentSource.SEARCH: Trust.SEARCH,
    FragmentSource.DETAIL: Trust.DETAIL,
    FragmentSource.OWNER: Trust.DETAIL,
    FragmentSource.EVENTS: Trust.DETAIL,
}


class Completeness(StrEnum):
    SUMMARY = "summary"
    DETAILED = "detailed"


class FailureKind(StrEnum):
    NETWORK = "network"
    NOT_FOUND = "not_found"
    UPSTREAM_ERROR = "upstream_error"


class MarkerState(StrEnum):
    DEFAULT = "default"
    SELECTED = "selected"
    PENDING = "pending"
    ERROR = "error"


class MarkerKind(StrEnum):
    RESULT = "result"
    CLICK = "click"


class OutcomeStatus(StrEnum):
    OK = "ok"
    NOT_FOUND = "not_found"
    NO_ADDRESS = "no_address_at_point"
    NETWORK = "network"
    UPSTREAM_ERROR = "upstream_error"
    STALE = "stale"


# groups

@dataclass(frozen=True)
class Address:
    line1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal: Optional[str] = None
    one_line: Optional[str] = None

    @property
    def single_line(self) -> Optional[str]:
        if self.one_line:
            return self.one_line
        return join_nonempty([self.line1, self.city, self.state, self.postal]) or None


@dataclass(frozen=True)
class Location:
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass(frozen=True)
class Classification:
    property_type: Optional[str] = None


@dataclass(frozen=True)
class Building:
    size_sq_ft: Optional[float] = None
    year_built: Optional[int] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[float] = None
    stories: Optional[float] = None


@dataclass(frozen=True)
class Lot:
    size_sq_ft: Optional[float] = None
    size_acres: Optional[float] = None


@dataclass(frozen=True)
class Valuation:
    market_value: Optional[float] = None
    assessed_value: Optional[float] = None
    land_value: Optional[float] = None
    tax_amount: Optional[float] = None
    tax_year: Optional[int] = None


@dataclass(frozen=True)
class Sale:
    amount: Optional[float] = None
    date: Optional[str] = None
    document_type: Optional[str] = None


@dataclass(frozen=True)
class Owner:
    primary_name: Optional[str] = None
    secondary_name: Optional[str] = None
    is_corporate: Optional[bool] = None
    mailing_address: Optional[str] = None


@dataclass(frozen=True)
class SaleEvent:
    date: Optional[str] = None
    amount: Optional[float] = None
    transaction_type: Optional[str] = None
    document_number: Optional[str] = None
    grantee: Optional[str] = None
    grantor: Optional[str] = None


@dataclass(frozen=True)
class Events:
    history: Optional[Tuple[SaleEvent, ...]] = None


GROUPS: Tuple[str, ...] = (
    "address",
    "location",
    "classification",
    "building",
    "lot",
    "valuation",
    "sale",
    "owner",
    "events",
)


def iter_leaves(obj: Any) -> Iterator[Tuple[str, str, Any]]:
    """Yield (group, field, value) for every leaf of a record or fragment."""
    for group in GROUPS:
        group_value = getattr(obj, group)
        for f in fields(group_value):
            yield group, f.name, getattr(group_value, f.name)


@dataclass(frozen=True)
class PropertyFragment:
    """Partial record normalized from one provider payload.

    Only fields the payload actually carried are set. ``trace`` records which
    extractor produced a value and is not part of equality or serialization.
    """

    source: FragmentSource
    identity: Optional[str] = None
    provider_id: Optional[str] = None
    address: Address = field(default_factory=Address)
    location: Location = field(default_factory=Location)
    classification: Classification = field(default_factory=Classification)
    building: Building = field(default_factory=Building)
    lot: Lot = field(default_factory=Lot)
    valuation: Valuation = field(default_factory=Valuation)
    sale: Sale = field(default_factory=Sale)
    owner: Owner = field(default_factory=Owner)
    events: Events = field(default_factory=Events)
    normalization_failed: bool = False
    trace: Mapping[str, str] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_empty(self) -> bool:
        return all(value is None for _, _, value in iter_leaves(self))


@dataclass(frozen=True)
class CanonicalProperty:
    identity: str
    provider_id: Optional[str] = None
    address: Address = field(default_factory=Address)
    location: Location = field(default_factory=Location)
    classification: Classification = field(default_factory=Classification)
    building: Building = field(default_factory=Building)
    lot: Lot = field(default_factory=Lot)
    valuation: Valuation = field(default_factory=Valuation)
    sale: Sale = field(default_factory=Sale)
    owner: Owner = field(default_factory=Owner)
    events: Events = field(default_factory=Events)
    # "group.field" -> Trust of the fragment that wrote it
    provenance: Mapping[str, int] = field(default_factory=dict)
    merged_sources: FrozenSet[str] = frozenset()

    @property
    def completeness(self) -> Completeness:
        if FragmentSource.DETAIL in self.merged_sources:
            return Completeness.DETAILED
        if self.building.size_sq_ft is not None and self.lot.size_sq_ft is not None:
            return Completeness.DETAILED
        return Completeness.SUMMARY

    @property
    def position(self) -> Optional[Tuple[float, float]]:
        lat = self.location.latitude
        lng = self.location.longitude
        if lat is None or lng is None:
            return None
        return (lat, lng)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "identity": self.identity,
            "provider_id": self.provider_id,
        }
        for group in GROUPS:
            payload[group] = asdict(getattr(self, group))
        payload["address"]["single_line"] = self.address.single_line
        history = self.events.history
        payload["events"]["history"] = (
            [asdict(e) for e in history] if history is not None else None
        )
        payload["completeness"] = str(self.completeness)
        return payload


# queries

@dataclass(frozen=True)
class PostalQuery:
    postal_code: str
    kind: ClassVar[str] = "postal"

    def __post_init__(self) -> None:
        if not (self.postal_code or "").strip():
            raise ValueError("postal_code is required")

    def describe(self) -> str:
        return self.postal_code.strip()


@dataclass(frozen=True)
class AddressQuery:
    line1: str
    line2: str = ""
    kind: ClassVar[str] = "address"

    def __post_init__(self) -> None:
        if not (self.line1 or "").strip():
            raise ValueError("line1 is required")

    def describe(self) -> str:
        return join_nonempty([self.line1, self.line2])


@dataclass(frozen=True)
class ClickQuery:
    lat: float
    lng: float
    kind: ClassVar[str] = "click"

    def __post_init__(self) -> None:
        if not -90.0 <= float(self.lat) <= 90.0:
            raise ValueError("lat must be within [-90, 90]")
        if not -180.0 <= float(self.lng) <= 180.0:
            raise ValueError("lng must be within [-180, 180]")

    def describe(self) -> str:
        return f"{self.lat:.6f},{self.lng:.6f}"


SearchQuery = Union[PostalQuery, AddressQuery, ClickQuery]


@dataclass(frozen=True)
class GeocodedAddress:
    line1: str
    line2: str
    display_name: str = ""
    postal_code: Optional[str] = None


@dataclass(frozen=True)
class MapMarker:
    id: str
    position: Tuple[float, float]
    visual_state: MarkerState = MarkerState.DEFAULT
    kind: MarkerKind = MarkerKind.RESULT


@dataclass(frozen=True)
class ProviderResult:
    """Discriminated outcome of one provider call.

    ``ok=True`` carries ``data`` (possibly None, e.g. no address at a point).
    ``ok=False`` carries a ``kind`` and a human readable ``detail``.
    """

    ok: bool
    data: Any = None
    kind: Optional[FailureKind] = None
    detail: str = ""

    @classmethod
    def success(cls, data: Any) -> "ProviderResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, kind: FailureKind, detail: str = "") -> "ProviderResult":
        return cls(ok=False, kind=kind, detail=detail)

    @property
    def not_found(self) -> bool:
        return not self.ok and self.kind == FailureKind.NOT_FOUND


@dataclass(frozen=True)
class SearchOutcome:
    query: SearchQuery
    status: OutcomeStatus
    count: int = 0
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.OK

    def to_dict(self) -> dict:
        return {
            "kind": self.query.kind,
            "query": self.query.describe(),
            "status": str(self.status),
            "count": self.count,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class EnrichmentReport:
    identity: str
    detail_ok: bool
    owner_ok: bool
    events_ok: bool
    errors: Tuple[str, ...] = ()

    @property
    def partial(self) -> bool:
        return not (self.detail_ok and self.owner_ok and self.events_ok)

    def to_dict(self) -> dict:
        return {
            "identity": self.identity,
            "detail_ok": self.detail_ok,
            "owner_ok": self.owner_ok,
            "events_ok": self.events_ok,
            "partial": self.partial,
            "errors": list(self.errors),
        }
