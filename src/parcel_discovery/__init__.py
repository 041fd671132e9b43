"""Package initializer for `parcel_discovery`."""

from .engine import PropertyDiscoveryEngine, create_engine
from .model import AddressQuery, CanonicalProperty, ClickQuery, PostalQuery

__all__ = [
    "AddressQuery",
    "CanonicalProperty",
    "ClickQuery",
    "PostalQuery",
    "PropertyDiscoveryEngine",
    "create_engine",
]
