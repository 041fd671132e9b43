import hashlib
from typing import List, Optional, Tuple

from parcel_discovery.normalize import clean_str, normalize_address


def compute_identity(
    provider_id: object,
    single_line_address: Optional[str],
) -> Tuple[Optional[str], List[str]]:
    """Return (identity, warnings) for a property.

    The provider id wins when present. Otherwise the identity is a sha256 of
    the normalized single-line address, so the same parcel always hashes to
    the same key across renders and repeated searches.
    """
    warnings: List[str] = []
    pid = clean_str(provider_id)
    if pid:
        return pid, warnings
    situs = normalize_address(single_line_address)
    if not situs:
        warnings.append("Missing provider id and address; cannot compute identity.")
        return None, warnings
    warnings.append("Used fallback identity (normalized address hash).")
    digest = hashlib.sha256(situs.encode("utf-8")).hexdigest()
    return f"addr:{digest[:24]}", warnings
