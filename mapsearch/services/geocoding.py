from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Protocol, Sequence

import aiohttp

from mapsearch.config import Settings
from mapsearch.models import BoundingBox, Coordinates, PlaceCandidate
from mapsearch.services.cache import TTLCache, make_cache_key
from mapsearch.services.cancellation import CancellationToken
from mapsearch.services.errors import ProviderError
from mapsearch.services.geo import bounding_box, haversine_km

logger = logging.getLogger(__name__)

PROVIDER = "nominatim"


class Geocoder(Protocol):
    async def geocode(self, address: str, box: Optional[BoundingBox] = None) -> Optional[Coordinates]:
        ...


class NominatimGeocoder:
    """Address lookups against OpenStreetMap Nominatim.

    Successful lookups (including "no match") are cached per address and box;
    failures are not cached so they can be retried by the next search.
    """

    def __init__(self, session: aiohttp.ClientSession, settings: Settings) -> None:
        self._session = session
        self._settings = settings
        self._cache: TTLCache[Optional[Coordinates]] = TTLCache(
            ttl_s=settings.cache_ttl_s, max_size=settings.cache_max_size * 8
        )

    def _base_params(self) -> Dict[str, object]:
        params: Dict[str, object] = {"format": "jsonv2"}
        if self._settings.nominatim_email:
            params["email"] = self._settings.nominatim_email
        return params

    async def _get_json(self, url: str, params: Dict[str, object]) -> object:
        headers = {"User-Agent": self._settings.user_agent}
        timeout = aiohttp.ClientTimeout(total=self._settings.http_timeout_s)
        try:
            async with self._session.get(url, params=params, headers=headers, timeout=timeout) as resp:
                resp.raise_for_status()
                return await resp.json(content_type=None)
        except aiohttp.ClientResponseError as e:
            raise ProviderError(PROVIDER, status=e.status) from e
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ProviderError(PROVIDER, str(e) or type(e).__name__) from e

    async def geocode(self, address: str, box: Optional[BoundingBox] = None) -> Optional[Coordinates]:
        """Best match for a free-text address, or None when nothing matches."""
        cache_key = make_cache_key("geocode", address.strip().lower(), box.viewbox if box else "")
        if cache_key in self._cache:
            return self._cache.get(cache_key)

        params = self._base_params()
        params.update({"q": address, "limit": 1})
        if box is not None:
            params["viewbox"] = box.viewbox
            params["bounded"] = 1

        data = await self._get_json(str(self._settings.nominatim_base_url), params)
        result: Optional[Coordinates] = None
        if isinstance(data, list) and data:
            item = data[0]
            try:
                result = Coordinates(latitude=float(item["lat"]), longitude=float(item["lon"]))
            except (KeyError, TypeError, ValueError):
                logger.warning("Unusable Nominatim match for %r: %r", address, item)

        self._cache.set(cache_key, result)
        return result

    async def reverse(self, location: Coordinates) -> Optional[str]:
        """Displayable address for a coordinate pair, or None."""
        params = self._base_params()
        params.update({"lat": location.latitude, "lon": location.longitude, "zoom": 16})
        data = await self._get_json(str(self._settings.nominatim_reverse_url), params)
        if isinstance(data, dict):
            name = data.get("display_name")
            if isinstance(name, str) and name:
                return name
        return None


class GeocodeEnricher:
    """Fills in missing candidate coordinates and applies the radius filter."""

    def __init__(
        self,
        geocoder: Geocoder,
        *,
        radius_km: float,
        box_km: float,
        timeout_s: float,
    ) -> None:
        self.geocoder = geocoder
        self.radius_km = radius_km
        self.box_km = box_km
        self.timeout_s = timeout_s

    async def _resolve(self, candidate: PlaceCandidate, box: Optional[BoundingBox]) -> None:
        try:
            coords = await asyncio.wait_for(
                self.geocoder.geocode(candidate.address or "", box), timeout=self.timeout_s
            )
        except asyncio.TimeoutError:
            logger.warning("Geocoding timed out for %s (%r)", candidate.id, candidate.address)
            return
        except ProviderError as e:
            logger.warning("Geocoding failed for %s: %s", candidate.id, e)
            return
        if coords is None:
            logger.debug("No geocode match for %s (%r)", candidate.id, candidate.address)
            return
        candidate.coordinates = coords

    async def enrich(
        self,
        candidates: Sequence[PlaceCandidate],
        origin: Optional[Coordinates] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[PlaceCandidate]:
        """Geocode address-only candidates concurrently, in place."""
        box = bounding_box(origin, self.box_km) if origin is not None else None
        pending = [c for c in candidates if c.address and c.coordinates is None]
        if pending:
            gathered = asyncio.gather(*(self._resolve(c, box) for c in pending))
            if token is not None:
                await token.run(gathered)
            else:
                await gathered
        return list(candidates)

    def filter_by_radius(
        self,
        candidates: Sequence[PlaceCandidate],
        origin: Optional[Coordinates] = None,
    ) -> List[PlaceCandidate]:
        """Drop unresolved candidates, and those beyond the radius when an origin is known."""
        kept: List[PlaceCandidate] = []
        for candidate in candidates:
            if candidate.coordinates is None:
                continue
            if origin is not None and haversine_km(origin, candidate.coordinates) > self.radius_km:
                continue
            kept.append(candidate)
        return kept
