from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

from fastapi import FastAPI, HTTPException, Request

from parcel_discovery.api.schemas import (
    FilterRequest,
    FilterStateOut,
    SearchOutcomeOut,
    SearchRequest,
)
from parcel_discovery.engine import PropertyDiscoveryEngine, create_engine
from parcel_discovery.filters import active_filter_names, property_types
from parcel_discovery.markers import to_feature_collection


logger = logging.getLogger("parcel_discovery.api")


def health():
    return {"status": "ok"}


def _records_payload(engine: PropertyDiscoveryEngine, records) -> dict:
    return {"count": len(records), "results": [r.to_dict() for r in records]}


def _filters_payload(engine: PropertyDiscoveryEngine) -> dict:
    return {
        "filters": FilterStateOut.from_filter_set(engine.filters).model_dump(),
        "defaults": FilterStateOut.from_filter_set(engine.filter_defaults).model_dump(),
        "active": active_filter_names(engine.filters, engine.filter_defaults),
        "property_types": property_types(engine.results),
        "filtered_count": len(engine.filtered),
    }


def create_app(
    engine_factory: Optional[Callable[[], PropertyDiscoveryEngine]] = None,
) -> FastAPI:
    """One app serves one discovery session."""
    factory = engine_factory or create_engine

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        engine = app.state.engine
        if engine is not None:
            await engine.aclose()
            app.state.engine = None

    app = FastAPI(title="parcel-discovery", lifespan=lifespan)
    app.state.engine = None

    def get_engine(request: Request) -> PropertyDiscoveryEngine:
        engine = request.app.state.engine
        if engine is None:
            engine = factory()
            request.app.state.engine = engine
        return engine

    @app.get("/api/health")
    def health_route():
        return health()

    @app.post("/api/search")
    async def search_route(payload: SearchRequest, request: Request):
        engine = get_engine(request)
        try:
            query = payload.to_query()
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        outcome = await engine.search(query)
        body: dict[str, Any] = {
            "outcome": SearchOutcomeOut(**outcome.to_dict()).model_dump(),
            **_records_payload(engine, engine.results),
        }
        click = engine.click_record
        body["click_record"] = click.to_dict() if click is not None else None
        return body

    @app.post("/api/select/{identity}")
    async def select_route(identity: str, request: Request):
        engine = get_engine(request)
        try:
            report = await engine.select(identity)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"unknown property {identity}")
        return {
            "record": engine.record(identity).to_dict(),
            "enrichment": report.to_dict() if report is not None else None,
            "popup": engine.popup(identity),
        }

    @app.post("/api/markers/{identity}/{action}")
    async def marker_action_route(identity: str, action: str, request: Request):
        engine = get_engine(request)
        try:
            result = engine.controller.marker_action(identity, action)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"no marker for {identity}")
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"identity": identity, "action": action, "result": result}

    @app.put("/api/filters")
    def filters_route(payload: FilterRequest, request: Request):
        engine = get_engine(request)
        try:
            filters = payload.to_filter_set(engine.filter_defaults)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        engine.set_filters(filters)
        return _filters_payload(engine)

    @app.get("/api/filters")
    def filters_state_route(request: Request):
        return _filters_payload(get_engine(request))

    @app.get("/api/results")
    def results_route(request: Request):
        engine = get_engine(request)
        return _records_payload(engine, engine.results)

    @app.get("/api/filtered")
    def filtered_route(request: Request):
        engine = get_engine(request)
        return _records_payload(engine, engine.filtered)

    @app.get("/api/markers")
    def markers_route(request: Request):
        engine = get_engine(request)
        markers = list(engine.markers)
        if engine.click_marker is not None:
            markers.append(engine.click_marker)
        records = {r.identity: r for r in engine.results}
        click = engine.click_record
        if click is not None:
            records.setdefault(click.identity, click)
        return to_feature_collection(markers, records)

    @app.get("/api/selected")
    def selected_route(request: Request):
        engine = get_engine(request)
        record = engine.selected
        if record is None:
            return {"selected": None}
        return {"selected": record.to_dict(), "popup": engine.popup(record.identity)}

    return app


app = create_app()
