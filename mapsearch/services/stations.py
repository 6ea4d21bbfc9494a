from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, List, Optional, Sequence

import aiohttp

from mapsearch.models import Coordinates, StationMatch
from mapsearch.services.errors import ProviderError

logger = logging.getLogger(__name__)

PROVIDER = "station-directory"


def _line_names(lines: Any) -> List[str]:
    names: List[str] = []
    if not isinstance(lines, list):
        return names
    for line in lines:
        # lines may be plain names or {"name": ...} objects
        name = line.get("name") if isinstance(line, dict) else line
        if isinstance(name, str) and name:
            names.append(name)
    return names


def station_from_feature(feature: Any) -> Optional[StationMatch]:
    """Project one GeoJSON Point feature into a StationMatch, or None if unusable."""
    if not isinstance(feature, dict):
        return None
    props = feature.get("properties") or {}
    geometry = feature.get("geometry") or {}
    if not isinstance(props, dict) or not isinstance(geometry, dict):
        return None
    if geometry.get("type") != "Point":
        return None

    coords = geometry.get("coordinates")
    if not isinstance(coords, list) or len(coords) < 2:
        return None

    name = props.get("name")
    if not isinstance(name, str) or not name:
        return None
    cartography = props.get("cartography") if isinstance(props.get("cartography"), dict) else {}
    display_name = props.get("displayName") or cartography.get("display") or name
    zone = props.get("zone")

    try:
        # GeoJSON positions are [lon, lat]
        point = Coordinates(longitude=float(coords[0]), latitude=float(coords[1]))
    except (TypeError, ValueError):
        return None

    return StationMatch(
        id=str(props.get("id") or name),
        name=name,
        display_name=str(display_name),
        zone=str(zone) if zone not in (None, "") else None,
        lines=_line_names(props.get("lines")),
        coordinates=point,
    )


def parse_station_collection(data: Any) -> List[StationMatch]:
    if not isinstance(data, dict) or not isinstance(data.get("features"), list):
        raise ValueError("Station directory response is not a GeoJSON FeatureCollection")
    stations = []
    for feature in data["features"]:
        station = station_from_feature(feature)
        if station is not None:
            stations.append(station)
    return stations


def match_stations(
    stations: Iterable[StationMatch], terms: Sequence[str], limit: int
) -> List[StationMatch]:
    """Stations whose display name contains any term (case-insensitive), directory order."""
    needles = [t.strip().lower() for t in terms if t and t.strip()]
    if not needles or limit <= 0:
        return []
    matches: List[StationMatch] = []
    for station in stations:
        display = station.display_name.lower()
        if any(needle in display for needle in needles):
            matches.append(station)
            if len(matches) >= limit:
                break
    return matches


class StaticStationDirectory:
    """In-memory snapshot, for preloaded data and tests."""

    def __init__(self, stations: Iterable[StationMatch]) -> None:
        self._stations = list(stations)

    async def snapshot(self) -> List[StationMatch]:
        return self._stations

    def match(self, terms: Sequence[str], limit: int) -> List[StationMatch]:
        return match_stations(self._stations, terms, limit)


class StationDirectory:
    """Read-only station directory fetched once over HTTP and then filtered locally."""

    def __init__(self, session: aiohttp.ClientSession, url: str, *, timeout_s: float = 20.0) -> None:
        self._session = session
        self._url = url
        self._timeout_s = timeout_s
        self._stations: Optional[List[StationMatch]] = None
        self._lock = asyncio.Lock()

    async def _fetch(self) -> List[StationMatch]:
        timeout = aiohttp.ClientTimeout(total=self._timeout_s)
        try:
            async with self._session.get(self._url, timeout=timeout) as resp:
                resp.raise_for_status()
                data = await resp.json(content_type=None)
        except aiohttp.ClientResponseError as e:
            raise ProviderError(PROVIDER, status=e.status) from e
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ProviderError(PROVIDER, str(e) or type(e).__name__) from e

        try:
            return parse_station_collection(data)
        except ValueError as e:
            raise ProviderError(PROVIDER, str(e)) from e

    async def snapshot(self) -> List[StationMatch]:
        if self._stations is not None:
            return self._stations
        async with self._lock:
            if self._stations is None:
                self._stations = await self._fetch()
                logger.info("Loaded %d stations from %s", len(self._stations), self._url)
        return self._stations

    def match(self, terms: Sequence[str], limit: int) -> List[StationMatch]:
        if self._stations is None:
            return []
        return match_stations(self._stations, terms, limit)
