from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import aiohttp
from fastapi import FastAPI, Header, HTTPException, Query, Request

from mapsearch.config import get_settings
from mapsearch.models import (
    Coordinates,
    SearchResponse,
    StationMatch,
    ValidateRequest,
    ValidationReport,
)
from mapsearch.services.cache import TTLCache
from mapsearch.services.coordinator import SearchCoordinator
from mapsearch.services.errors import ProviderError
from mapsearch.services.geo import bounding_box
from mapsearch.services.geocoding import GeocodeEnricher, NominatimGeocoder
from mapsearch.services.intent import GeminiIntentClient
from mapsearch.services.stations import StationDirectory
from mapsearch.services.validation import SourceValidator

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

DEFAULT_SESSION = "default"


def _close_session(session_id: str, coordinator: SearchCoordinator) -> None:
    logger.debug("Closing search session %r", session_id)
    coordinator.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with aiohttp.ClientSession() as session:
        geocoder = NominatimGeocoder(session, settings)
        stations = StationDirectory(session, str(settings.stations_url), timeout_s=settings.http_timeout_s)
        enricher = GeocodeEnricher(
            geocoder,
            radius_km=settings.search_radius_km,
            box_km=settings.geocode_box_km,
            timeout_s=settings.geocode_timeout_s,
        )
        app.state.geocoder = geocoder
        app.state.stations = stations
        app.state.enricher = enricher
        app.state.intent = GeminiIntentClient(session, settings)
        app.state.validator = SourceValidator.from_settings(session, settings)
        app.state.sessions = TTLCache[SearchCoordinator](
            ttl_s=settings.session_ttl_s,
            max_size=settings.max_sessions,
            on_evict=_close_session,
        )
        logger.info("Starting %s %s", settings.app_name, settings.version)
        try:
            yield
        finally:
            app.state.sessions.clear()
            logger.info("Shutting down %s", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Free-text map search combining an AI intent service, a station directory and a geocoder.",
    lifespan=lifespan,
)


def _origin(lat: Optional[float], lng: Optional[float]) -> Optional[Coordinates]:
    if lat is None or lng is None:
        return None
    return Coordinates(latitude=lat, longitude=lng)


def _coordinator_for(app: FastAPI, session_id: str) -> SearchCoordinator:
    sessions: TTLCache[SearchCoordinator] = app.state.sessions
    coordinator = sessions.get(session_id)
    if coordinator is None:
        logger.debug("New search session %r", session_id)
        coordinator = SearchCoordinator.from_settings(
            app.state.intent, app.state.stations, app.state.enricher, settings
        )
    # re-set on every use so active sessions do not expire
    sessions.set(session_id, coordinator)
    return coordinator


@app.get("/", tags=["Root"])
async def root():
    return {"ok": True, "service": settings.app_name, "version": settings.version}


@app.get("/health", tags=["Healthcheck"])
async def health():
    return {"ok": True}


@app.get("/api/search", response_model=SearchResponse, tags=["Api Search"])
async def api_search(
    request: Request,
    q: str = Query(..., min_length=1, description="Free-text search query"),
    lat: Optional[float] = Query(None, ge=-90.0, le=90.0),
    lng: Optional[float] = Query(None, ge=-180.0, le=180.0),
    address: Optional[str] = Query(None, description="Human-readable origin address"),
    x_session_id: Optional[str] = Header(None, max_length=128),
):
    coordinator = _coordinator_for(request.app, x_session_id or DEFAULT_SESSION)
    try:
        result = await coordinator.submit(q, _origin(lat, lng), address)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return SearchResponse(superseded=result is None, result=result)


@app.post("/api/search/validate", response_model=ValidationReport, tags=["Api Search"])
async def api_validate(request: Request, body: ValidateRequest):
    validator: SourceValidator = request.app.state.validator
    return await validator.report(body.candidates)


@app.get("/api/stations", response_model=List[StationMatch], tags=["Api Stations"])
async def api_stations(
    request: Request,
    q: str = Query(..., min_length=1),
    limit: int = Query(10, ge=1, le=100),
):
    stations: StationDirectory = request.app.state.stations
    try:
        await stations.snapshot()
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return stations.match([q], limit)


@app.get("/api/geocode", tags=["Api Geocode"])
async def api_geocode(
    request: Request,
    q: str = Query(..., min_length=2, description="Free-text address"),
    lat: Optional[float] = Query(None, ge=-90.0, le=90.0),
    lng: Optional[float] = Query(None, ge=-180.0, le=180.0),
):
    geocoder: NominatimGeocoder = request.app.state.geocoder
    origin = _origin(lat, lng)
    box = bounding_box(origin, settings.geocode_box_km) if origin is not None else None
    try:
        coords = await geocoder.geocode(q, box)
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if coords is None:
        raise HTTPException(status_code=404, detail="Location not found")

    return {"query": q, "lat": coords.latitude, "lon": coords.longitude}


@app.get("/api/reverse-geocode", tags=["Api Geocode"])
async def api_reverse_geocode(
    request: Request,
    lat: float = Query(..., ge=-90.0, le=90.0),
    lng: float = Query(..., ge=-180.0, le=180.0),
):
    geocoder: NominatimGeocoder = request.app.state.geocoder
    try:
        display_name = await geocoder.reverse(Coordinates(latitude=lat, longitude=lng))
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if display_name is None:
        raise HTTPException(status_code=404, detail="Address not found")

    return {"lat": lat, "lon": lng, "display_name": display_name}
