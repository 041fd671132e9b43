from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from parcel_discovery.model import CanonicalProperty


Range = Tuple[Optional[float], Optional[float]]
UNBOUNDED: Range = (None, None)


def _year_built(record: CanonicalProperty) -> Optional[float]:
    return record.building.year_built


def _tax_amount(record: CanonicalProperty) -> Optional[float]:
    return record.valuation.tax_amount


def _market_value(record: CanonicalProperty) -> Optional[float]:
    return record.valuation.market_value


RANGE_FIELDS: Tuple[Tuple[str, Callable[[CanonicalProperty], Optional[float]]], ...] = (
    ("year_built", _year_built),
    ("tax_amount", _tax_amount),
    ("market_value", _market_value),
)


@dataclass(frozen=True)
class FilterSet:
    """Categorical + inclusive range predicates over the result list.

    A bound of None is open on that side.
    """

    property_type: Optional[str] = None
    year_built: Range = UNBOUNDED
    tax_amount: Range = UNBOUNDED
    market_value: Range = UNBOUNDED

    def __post_init__(self) -> None:
        for name, _ in RANGE_FIELDS:
            value = getattr(self, name)
            if len(value) != 2:
                raise ValueError(f"{name} must be a (min, max) pair")
            lo, hi = value
            if lo is not None and hi is not None and lo > hi:
                raise ValueError(f"{name}: min {lo} is greater than max {hi}")
            # lists coming from JSON must compare equal to tuple defaults
            object.__setattr__(self, name, (lo, hi))
        if self.property_type is not None and not self.property_type.strip():
            object.__setattr__(self, "property_type", None)


def _observed_range(values: Iterable[Optional[float]]) -> Range:
    present = [v for v in values if v is not None]
    if not present:
        return UNBOUNDED
    return (min(present), max(present))


def default_filters(pool: Sequence[CanonicalProperty]) -> FilterSet:
    """Ranges spanning every value observed in the pool; no type filter."""
    return FilterSet(
        property_type=None,
        **{name: _observed_range(get(r) for r in pool) for name, get in RANGE_FIELDS},
    )


def property_types(pool: Iterable[CanonicalProperty]) -> List[str]:
    return sorted({r.classification.property_type for r in pool if r.classification.property_type})


def active_filter_names(filters: FilterSet, defaults: FilterSet) -> List[str]:
    names = []
    for f in fields(FilterSet):
        if getattr(filters, f.name) != getattr(defaults, f.name):
            names.append(f.name)
    return names


def is_default(filters: FilterSet, defaults: FilterSet) -> bool:
    return not active_filter_names(filters, defaults)


def _in_range(value: Optional[float], bounds: Range, active: bool) -> bool:
    if value is None:
        return not active
    lo, hi = bounds
    if lo is not None and value < lo:
        return False
    if hi is not None and value > hi:
        return False
    return True


def apply_filters(
    records: Sequence[CanonicalProperty],
    filters: FilterSet,
    defaults: Optional[FilterSet] = None,
) -> List[CanonicalProperty]:
    """Return the records passing every predicate, in input order.

    A record missing a value passes that range only while the range is still
    the pool default; once narrowed, missing values fail. Never mutates input.
    """
    if defaults is None:
        defaults = default_filters(records)
    active = {name: getattr(filters, name) != getattr(defaults, name) for name, _ in RANGE_FIELDS}
    wanted_type = filters.property_type
    passed = []
    for record in records:
        if wanted_type is not None and record.classification.property_type != wanted_type:
            continue
        if all(
            _in_range(get(record), getattr(filters, name), active[name])
            for name, get in RANGE_FIELDS
        ):
            passed.append(record)
    return passed
