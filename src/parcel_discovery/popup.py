from typing import Any, Dict, List, Optional

from parcel_discovery.markers import MARKER_ACTIONS
from parcel_discovery.model import CanonicalProperty


def format_currency(value: Optional[float]) -> Optional[str]:
    if not value:
        return None
    return f"${value:,.0f}"


def format_area(value: Optional[float], unit: str = "sq ft") -> Optional[str]:
    if not value:
        return None
    return f"{value:,.0f} {unit}"


def render_popup(record: CanonicalProperty) -> Dict[str, Any]:
    """Display model for a marker popup.

    Pure rendering: the actions list only names what the popup offers. Button
    presses are routed back through ``MapController.marker_action``.
    """
    lines: List[Dict[str, str]] = []

    def add(label: str, text: Optional[str]) -> None:
        if text:
            lines.append({"label": label, "text": text})

    add("Type", record.classification.property_type)
    add("Value", format_currency(record.valuation.market_value))
    add("Building", format_area(record.building.size_sq_ft))
    add("Lot", format_area(record.lot.size_sq_ft))
    if record.building.year_built:
        add("Built", str(record.building.year_built))
    add("Owner", record.owner.primary_name)

    return {
        "id": record.identity,
        "title": record.address.single_line or "Address unavailable",
        "lines": lines,
        "completeness": str(record.completeness),
        "actions": [{"action": a, "target": record.identity} for a in MARKER_ACTIONS],
    }
