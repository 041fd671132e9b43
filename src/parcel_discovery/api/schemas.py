from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from parcel_discovery.filters import FilterSet, Range
from parcel_discovery.model import AddressQuery, ClickQuery, PostalQuery, SearchQuery


class SearchRequest(BaseModel):
    kind: Literal["postal", "address", "click"]
    postal_code: Optional[str] = None
    line1: Optional[str] = None
    line2: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None

    def to_query(self) -> SearchQuery:
        """Raises ValueError when the fields for ``kind`` are missing or invalid."""
        if self.kind == "postal":
            return PostalQuery(self.postal_code or "")
        if self.kind == "address":
            return AddressQuery(self.line1 or "", self.line2 or "")
        if self.lat is None or self.lng is None:
            raise ValueError("lat and lng are required for a click search")
        return ClickQuery(self.lat, self.lng)


class FilterRequest(BaseModel):
    """Omitted ranges fall back to the current pool defaults."""

    property_type: Optional[str] = None
    year_built: Optional[List[Optional[float]]] = Field(default=None, min_length=2, max_length=2)
    tax_amount: Optional[List[Optional[float]]] = Field(default=None, min_length=2, max_length=2)
    market_value: Optional[List[Optional[float]]] = Field(default=None, min_length=2, max_length=2)

    def to_filter_set(self, defaults: FilterSet) -> FilterSet:
        def pick(value: Optional[List[Optional[float]]], fallback: Range) -> Range:
            if value is None:
                return fallback
            return (value[0], value[1])

        return FilterSet(
            property_type=self.property_type,
            year_built=pick(self.year_built, defaults.year_built),
            tax_amount=pick(self.tax_amount, defaults.tax_amount),
            market_value=pick(self.market_value, defaults.market_value),
        )


class SearchOutcomeOut(BaseModel):
    kind: str
    query: str
    status: str
    count: int = 0
    detail: str = ""


class FilterStateOut(BaseModel):
    property_type: Optional[str] = None
    year_built: List[Optional[float]]
    tax_amount: List[Optional[float]]
    market_value: List[Optional[float]]

    @classmethod
    def from_filter_set(cls, filters: FilterSet) -> "FilterStateOut":
        return cls(
            property_type=filters.property_type,
            year_built=list(filters.year_built),
            tax_amount=list(filters.tax_amount),
            market_value=list(filters.market_value),
        )
