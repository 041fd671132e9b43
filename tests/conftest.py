import asyncio
import logging
import os
import socket
import sys
import urllib.request
from pathlib import Path
from types import SimpleNamespace

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC = REPO_ROOT / "src"

# Prefer repo sources over any installed package.
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture(autouse=True)
def block_network(monkeypatch):
    if os.getenv("LIVE") == "1":
        return

    real_connect = socket.socket.connect

    def guarded_connect(sock, address):
        host = address[0]
        if host not in ("127.0.0.1", "localhost"):
            raise RuntimeError("Network access blocked in tests")
        return real_connect(sock, address)

    monkeypatch.setattr(socket.socket, "connect", guarded_connect)
    monkeypatch.setattr(
        urllib.request,
        "urlopen",
        lambda *args, **kwargs: (_ for _ in ()).throw(
            RuntimeError("Network access blocked in tests")
        ),
    )


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    from parcel_discovery.settings import reset_settings_cache

    for key in list(os.environ):
        if key.startswith("PDE_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture(autouse=True)
def restore_package_logger():
    # The CLI installs its own handler and stops propagation; undo that so
    # caplog keeps working in later tests.
    logger = logging.getLogger("parcel_discovery")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


# provider payloads


def envelope(items):
    return {
        "status": {"code": 0, "msg": "SuccessWithResult", "total": len(items)},
        "property": list(items),
    }


def summary_payload(
    attom_id,
    line1="1 Main St",
    lat=40.765,
    lng=-73.985,
    property_type="SFR",
    market_value=500000,
    year_built=1990,
    tax_amount=8000,
    city="New York",
    state="NY",
    postal="10019",
):
    return {
        "identifier": {"attomId": attom_id},
        "address": {
            "line1": line1,
            "locality": city,
            "countrySubd": state,
            "postal1": postal,
            "oneLine": f"{line1}, {city}, {state} {postal}",
        },
        "location": {"latitude": str(lat), "longitude": str(lng)},
        "summary": {"propclass": property_type, "yearbuilt": year_built},
        "assessment": {
            "market": {"mktttlvalue": market_value},
            "tax": {"taxamt": tax_amount, "taxyear": 2024},
        },
    }


def detail_payload(attom_id, building_size=1850, lot_size=5200, property_type=None, **kw):
    payload = summary_payload(attom_id, **kw)
    payload["building"] = {
        "size": {"universalsize": building_size},
        "rooms": {"beds": 3, "bathstotal": 2.5},
        "summary": {"levels": 2},
    }
    payload["lot"] = {"lotsize1": 0.12, "lotsize2": lot_size}
    if property_type is not None:
        payload["summary"]["propclass"] = property_type
    return payload


def owner_payload(attom_id, name="JANE DOE", corporate="N"):
    return {
        "identifier": {"attomId": attom_id},
        "owner": {
            "owner1": {"fullname": name},
            "corporateindicator": corporate,
            "mailingaddressoneline": "PO BOX 1, New York, NY 10019",
        },
    }


def events_payload(attom_id):
    return {
        "identifier": {"attomId": attom_id},
        "salesHistory": [
            {"saleTransDate": "2019-05-01", "amount": {"saleamt": 450000, "saletranstype": "Resale"}},
            {"saleTransDate": "2004-02-11", "amount": {"saleamt": 210000, "saletranstype": "Resale"}},
        ],
    }


@pytest.fixture
def payloads():
    return SimpleNamespace(
        envelope=envelope,
        summary=summary_payload,
        detail=detail_payload,
        owner=owner_payload,
        events=events_payload,
    )


# collaborator doubles


class FakeSource:
    """Scripted provider. Unknown lookups are not_found.

    ``gates`` maps a call key to an asyncio.Event the call waits on, which
    lets a test control the order in which concurrent calls resolve.
    """

    def __init__(self):
        self.postal = {}
        self.address = {}
        self.detail = {}
        self.owner = {}
        self.events = {}
        self.failures = {}
        self.gates = {}
        self.calls = []

    async def _answer(self, key, table, lookup):
        from parcel_discovery.model import FailureKind, ProviderResult

        self.calls.append(key)
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()
        else:
            await asyncio.sleep(0)
        if key in self.failures:
            return ProviderResult.failure(self.failures[key], detail="scripted failure")
        if lookup not in table:
            return ProviderResult.failure(FailureKind.NOT_FOUND, detail="no results")
        return ProviderResult.success(table[lookup])

    async def search_by_postal_code(self, postal_code):
        return await self._answer(("postal", postal_code), self.postal, postal_code)

    async def search_by_address(self, line1, line2=""):
        return await self._answer(("address", line1), self.address, line1)

    async def get_detail(self, provider_id):
        return await self._answer(("detail", provider_id), self.detail, provider_id)

    async def get_owner(self, provider_id):
        return await self._answer(("owner", provider_id), self.owner, provider_id)

    async def get_events(self, provider_id):
        return await self._answer(("events", provider_id), self.events, provider_id)

    def count(self, kind):
        return sum(1 for c in self.calls if c[0] == kind)


class FakeGeocoder:
    def __init__(self, answers=None):
        self.answers = answers or {}
        self.calls = []

    async def reverse(self, lat, lng):
        from parcel_discovery.model import ProviderResult

        self.calls.append((lat, lng))
        await asyncio.sleep(0)
        answer = self.answers.get((lat, lng))
        if isinstance(answer, ProviderResult):
            return answer
        return ProviderResult.success(answer)


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def fake_geocoder():
    return FakeGeocoder()


@pytest.fixture
def make_engine(fake_source, fake_geocoder):
    from parcel_discovery.engine import PropertyDiscoveryEngine
    from parcel_discovery.history import MemorySearchHistorySink
    from parcel_discovery.markers import RecordingMapView
    from parcel_discovery.settings import Settings

    def _make(**kw):
        settings = kw.pop("settings", None) or Settings.from_env()
        view = kw.pop("map_view", None) or RecordingMapView()
        sink = kw.pop("history_sink", None) or MemorySearchHistorySink()
        return PropertyDiscoveryEngine(
            kw.pop("source", fake_source),
            kw.pop("geocoder", fake_geocoder),
            map_view=view,
            history_sink=sink,
            settings=settings,
            **kw,
        )

    return _make
