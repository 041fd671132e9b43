import hashlib
from typing import Dict, List, Optional

from parcel_discovery.model import FailureKind, GeocodedAddress, ProviderResult


_TYPES = ["SFR", "CONDOMINIUM", "APARTMENT", "TOWNHOUSE"]
_STREETS = ["Demo Rd", "Sample Ave", "Fixture St", "Mock Blvd"]


def _digest(seed: str) -> str:
    return hashlib.md5(seed.encode("utf-8")).hexdigest()


def _center(seed: str):
    digest = _digest(seed)
    lat = 25.0 + int(digest[:4], 16) / 0xFFFF * 20.0
    lng = -120.0 + int(digest[4:8], 16) / 0xFFFF * 45.0
    return lat, lng


def _envelope(items: List[dict]) -> dict:
    if not items:
        return {"status": {"code": 1, "msg": "SuccessWithoutResult", "total": 0}, "property": []}
    return {"status": {"code": 0, "msg": "SuccessWithResult", "total": len(items)}, "property": items}


class DemoPropertySource:
    """Deterministic offline stand-in for the property provider.

    Search results are summaries; detail, owner and events are only served for
    ids this instance has handed out, like the live provider.
    """

    def __init__(self, per_postal: int = 5):
        self.per_postal = per_postal
        self._catalog: Dict[str, dict] = {}
        self.calls: List[tuple] = []

    def _parcel(self, seed: str, idx: int, postal: str, city: str, state: str) -> dict:
        digest = _digest(f"{seed}:{idx}")
        attom_id = str(100000 + int(digest[:5], 16) % 900000)
        lat, lng = _center(seed)
        lat += ((idx % 3) - 1) * 0.004
        lng += ((idx // 3) - 1) * 0.004
        number = 100 + int(digest[5:8], 16) % 900
        line1 = f"{number} {_STREETS[idx % len(_STREETS)]}"
        parcel = {
            "attom_id": attom_id,
            "line1": line1,
            "city": city,
            "state": state,
            "postal": postal,
            "lat": round(lat, 6),
            "lng": round(lng, 6),
            "type": _TYPES[int(digest[8], 16) % len(_TYPES)],
            "year": 1920 + int(digest[9:11], 16) % 100,
            "market": 150000 + (int(digest[11:15], 16) % 200) * 10000,
            "tax": 1500 + int(digest[15:18], 16) % 20000,
            "bldg": 800 + int(digest[18:21], 16) % 3000,
            "lot": 2000 + int(digest[21:24], 16) % 10000,
            "owner": f"DEMO OWNER {digest[24:28].upper()}",
        }
        self._catalog[attom_id] = parcel
        return parcel

    def _summary(self, p: dict) -> dict:
        return {
            "identifier": {"attomId": p["attom_id"]},
            "address": {
                "line1": p["line1"],
                "locality": p["city"],
                "countrySubd": p["state"],
                "postal1": p["postal"],
                "oneLine": f"{p['line1']}, {p['city']}, {p['state']} {p['postal']}",
            },
            "location": {"latitude": str(p["lat"]), "longitude": str(p["lng"])},
            "summary": {"propclass": p["type"], "yearbuilt": p["year"]},
            "assessment": {
                "market": {"mktttlvalue": p["market"]},
                "tax": {"taxamt": p["tax"], "taxyear": 2024},
            },
        }

    async def search_by_postal_code(self, postal_code: str) -> ProviderResult:
        self.calls.append(("search_by_postal_code", postal_code))
        code = postal_code.strip()
        if not code.isdigit():
            return ProviderResult.failure(FailureKind.NOT_FOUND, detail="SuccessWithoutResult")
        items = [
            self._summary(self._parcel(code, i, code, "Demo City", "NY"))
            for i in range(self.per_postal)
        ]
        return ProviderResult.success(_envelope(items))

    async def search_by_address(self, line1: str, line2: str = "") -> ProviderResult:
        self.calls.append(("search_by_address", line1, line2))
        seed = f"{line1}|{line2}".lower()
        postal = "".join(ch for ch in line2 if ch.isdigit())[-5:] or "00000"
        parcel = self._parcel(seed, 0, postal, "Demo City", "NY")
        parcel["line1"] = line1.strip()
        return ProviderResult.success(_envelope([self._summary(parcel)]))

    def _known(self, provider_id: str) -> Optional[dict]:
        return self._catalog.get(str(provider_id))

    async def get_detail(self, provider_id: str) -> ProviderResult:
        self.calls.append(("get_detail", provider_id))
        p = self._known(provider_id)
        if p is None:
            return ProviderResult.failure(FailureKind.NOT_FOUND, detail="HTTP 404")
        detail = self._summary(p)
        detail["building"] = {
            "size": {"universalsize": p["bldg"], "livingsize": p["bldg"]},
            "rooms": {"beds": 1 + p["bldg"] // 700, "bathstotal": 1 + p["bldg"] // 1200},
            "summary": {"levels": 1 + p["bldg"] // 1800},
        }
        detail["lot"] = {"lotsize1": round(p["lot"] / 43560, 4), "lotsize2": p["lot"]}
        detail["assessment"]["assessed"] = {"assdttlvalue": int(p["market"] * 0.8)}
        return ProviderResult.success(_envelope([detail]))

    async def get_owner(self, provider_id: str) -> ProviderResult:
        self.calls.append(("get_owner", provider_id))
        p = self._known(provider_id)
        if p is None:
            return ProviderResult.failure(FailureKind.NOT_FOUND, detail="HTTP 404")
        owner = {
            "identifier": {"attomId": p["attom_id"]},
            "owner": {
                "owner1": {"fullname": p["owner"]},
                "corporateindicator": "N",
                "mailingaddressoneline": f"{p['line1']}, {p['city']}, {p['state']} {p['postal']}",
            },
        }
        return ProviderResult.success(_envelope([owner]))

    async def get_events(self, provider_id: str) -> ProviderResult:
        self.calls.append(("get_events", provider_id))
        p = self._known(provider_id)
        if p is None:
            return ProviderResult.failure(FailureKind.NOT_FOUND, detail="HTTP 404")
        events = {
            "identifier": {"attomId": p["attom_id"]},
            "salesHistory": [
                {
                    "saleTransDate": f"{p['year'] + 30}-06-01",
                    "amount": {"saleamt": int(p["market"] * 0.7), "saletranstype": "Resale"},
                },
                {
                    "saleTransDate": f"{p['year'] + 5}-03-15",
                    "amount": {"saleamt": int(p["market"] * 0.3), "saletranstype": "Resale"},
                },
            ],
        }
        return ProviderResult.success(_envelope([events]))


class DemoGeocoder:
    """Resolves every point to a street address except open water.

    "Water" is the quarter of points whose hash starts with 0-3.
    """

    def __init__(self):
        self.calls: List[tuple] = []

    async def reverse(self, lat: float, lng: float) -> ProviderResult:
        self.calls.append(("reverse", lat, lng))
        digest = _digest(f"{lat:.5f},{lng:.5f}")
        if digest[0] in "0123":
            return ProviderResult.success(None)
        number = 100 + int(digest[1:4], 16) % 900
        line1 = f"{number} {_STREETS[int(digest[4], 16) % len(_STREETS)]}"
        return ProviderResult.success(
            GeocodedAddress(
                line1=line1,
                line2="Demo City, NY 10019",
                display_name=f"{line1}, Demo City, NY 10019",
                postal_code="10019",
            )
        )
