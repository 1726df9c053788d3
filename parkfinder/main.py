import logging
from datetime import datetime
from typing import Optional, Sequence

import requests
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from parkfinder.availability import AvailabilityAggregator
from parkfinder.cache import TTLCache
from parkfinder.config import Settings, settings as default_settings
from parkfinder.data_loader import load_spots_from_file
from parkfinder.dedup import make_deduplicator
from parkfinder.discovery import DiscoveryService
from parkfinder.errors import InvalidCoordinate, SpotNotFound
from parkfinder.events import EventSink, LoggingSink
from parkfinder.ingestion import IngestionOrchestrator, build_default_sources
from parkfinder.logging_config import setup_logging
from parkfinder.lookups import MeterSegmentLookup, PlacesLookup
from parkfinder.models import (
    AvailabilityResult,
    ConfirmRequest,
    IngestRequest,
    NearbyQuery,
    ParkingSpot,
    PredictionResult,
    ReportRequest,
    SpotReportResult,
)
from parkfinder.services import find_nearby, predict_availability
from parkfinder.sources.base import SourceAdapter
from parkfinder.storage import MemorySpotStore, SpotStore

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    store: SpotStore | None = None,
    sources: Sequence[SourceAdapter] | None = None,
    sink: EventSink | None = None,
    session: requests.Session | None = None,
) -> FastAPI:
    settings = settings or default_settings
    session = session or requests.Session()

    app = FastAPI(title="Parkfinder API", version="0.1.0")

    # CORS Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    cache = TTLCache(sweep_interval_s=settings.cache_sweep_interval_s)
    store = store if store is not None else MemorySpotStore()
    sink = sink if sink is not None else LoggingSink()

    app.state.settings = settings
    app.state.cache = cache
    app.state.store = store
    app.state.sources = list(sources) if sources is not None else build_default_sources(settings, session)
    app.state.discovery = DiscoveryService(store, sink=sink, settings=settings)
    app.state.aggregator = AvailabilityAggregator(
        store,
        meter_lookup=MeterSegmentLookup(cache, settings, session),
        places_lookup=PlacesLookup(cache, settings, session),
        settings=settings,
    )

    @app.on_event("startup")
    def startup():
        setup_logging(settings.log_level)
        cache.start()
        if settings.local_file_path:
            try:
                result = load_spots_from_file(settings.local_file_path, confidence=settings.local_file_confidence)
            except (OSError, ValueError):
                logger.exception("Error loading parking data from %s", settings.local_file_path)
                return
            store.upsert_spots(result.spots)
            logger.info("Loaded %d parking spots from %s", len(result.spots), result.source)

    @app.on_event("shutdown")
    def shutdown():
        cache.stop()

    @app.exception_handler(InvalidCoordinate)
    def invalid_coordinate_handler(request: Request, exc: InvalidCoordinate):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(SpotNotFound)
    def spot_not_found_handler(request: Request, exc: SpotNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "spots_loaded": len(store.all_spots()),
            "cache": cache.stats()["size"],
        }

    @app.post("/spots/nearby", response_model=list[dict])
    def get_nearby_spots(query: NearbyQuery) -> list[dict]:
        """
        Find the nearest parking spots to the given coordinates.

        - **lat, lon**: Center point coordinates (required)
        - **k**: Maximum number of spots to return (default: 5)
        - **radius_m**: Optional maximum distance in meters
        """
        spots = store.all_spots()
        if not spots:
            raise HTTPException(status_code=503, detail="Parking data not loaded")

        return find_nearby(
            spots,
            lat=query.lat,
            lon=query.lon,
            k=query.k,
            radius_m=query.radius_m,
        )

    @app.get("/availability", response_model=AvailabilityResult)
    def get_availability(lat: float, lon: float, radius_m: Optional[float] = None) -> AvailabilityResult:
        """Live reports, metered segments and garages around a point, with a summary."""
        try:
            return app.state.aggregator.availability(lat, lon, radius_m)
        except InvalidCoordinate:
            raise
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.get("/predict/probability", response_model=PredictionResult)
    def get_availability_prediction(when: Optional[datetime] = None) -> PredictionResult:
        """
        Predict the probability of finding street parking.

        - **when**: Optional timestamp (defaults to now)
        """
        return predict_availability(when=when)

    @app.post("/spots/report", response_model=SpotReportResult)
    def report_spot(body: ReportRequest, response: Response) -> SpotReportResult:
        result = app.state.discovery.report(body.latitude, body.longitude, body.status, body.user_id)
        response.status_code = 201 if result.is_new_discovery else 200
        return result

    @app.post("/spots/{spot_id}/confirm", response_model=ParkingSpot)
    def confirm_spot(spot_id: str, body: Optional[ConfirmRequest] = None) -> ParkingSpot:
        return app.state.discovery.confirm(spot_id, body.user_id if body else None)

    @app.post("/ingest")
    def trigger_ingest(body: IngestRequest) -> dict:
        """Run the selected sources now and merge them into the store."""
        try:
            orchestrator = IngestionOrchestrator(
                app.state.sources,
                store=store,
                deduplicator=make_deduplicator(body.strategy, settings),
                settings=settings,
            )
            report = orchestrator.ingest(body.sources, persist=body.persist)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        return {
            **report.model_dump(mode="json", exclude={"final_spots"}),
            "final_spot_count": report.final_spot_count,
        }

    return app


app = create_app()
