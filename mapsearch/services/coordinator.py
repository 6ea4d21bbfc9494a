"""Search orchestration: sequencing, cancellation, caching, fan-out and merge.

Lifecycle of one request::

    ISSUED -> FETCHING -> NORMALIZING -> ENRICHING -> MERGING -> DELIVERED
                     \\-> FAILED (a provider failed; delivered but not cached)

    SUPERSEDED is reachable from any state once a newer request is issued;
    it is terminal and has no visible effect.

Cancellation tokens stop in-flight network work early, but a response may
already have resolved when the token fires, so every resumption point also
compares the request's sequence id with the latest one issued. Only the
newest request may write to the cache or return a result.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Protocol, Sequence

from mapsearch.config import Settings
from mapsearch.models import Coordinates, PlaceCandidate, SearchResultSet, StationMatch
from mapsearch.services.cache import TTLCache
from mapsearch.services.cancellation import CancellationToken
from mapsearch.services.errors import ProviderError, ProviderUnavailable, RequestCancelled
from mapsearch.services.geocoding import GeocodeEnricher
from mapsearch.services.intent import IntentService
from mapsearch.services.normalizer import normalize_intent_payload
from mapsearch.services.query import describe_intent, normalize_query
from mapsearch.services.stations import match_stations

logger = logging.getLogger(__name__)


class StationSource(Protocol):
    async def snapshot(self) -> List[StationMatch]:
        ...


class RequestState(str, enum.Enum):
    ISSUED = "issued"
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    ENRICHING = "enriching"
    MERGING = "merging"
    DELIVERED = "delivered"
    FAILED = "failed"
    SUPERSEDED = "superseded"


@dataclass
class SearchRequest:
    sequence_id: int
    normalized_query: str
    token: CancellationToken = field(default_factory=CancellationToken)
    origin: Optional[Coordinates] = None
    origin_address: Optional[str] = None
    state: RequestState = RequestState.ISSUED
    degraded: bool = False


class SearchCoordinator:
    """Owns the result cache and the sequence counter; nothing else writes them."""

    def __init__(
        self,
        intent_service: IntentService,
        stations: StationSource,
        enricher: GeocodeEnricher,
        *,
        result_limit: int = 20,
        station_match_limit: int = 3,
        cache_ttl_s: float = 86400.0,
        cache_max_size: int = 256,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._intent = intent_service
        self._stations = stations
        self._enricher = enricher
        self.result_limit = result_limit
        self.station_match_limit = station_match_limit
        self._clock = clock or time.monotonic
        self._cache: TTLCache[SearchResultSet] = TTLCache(
            ttl_s=cache_ttl_s, max_size=cache_max_size, clock=self._clock
        )
        self._latest_sequence_id = 0
        self._in_flight: Optional[SearchRequest] = None

    @classmethod
    def from_settings(
        cls,
        intent_service: IntentService,
        stations: StationSource,
        enricher: GeocodeEnricher,
        settings: Settings,
        clock: Optional[Callable[[], float]] = None,
    ) -> "SearchCoordinator":
        return cls(
            intent_service,
            stations,
            enricher,
            result_limit=settings.result_limit,
            station_match_limit=settings.station_match_limit,
            cache_ttl_s=settings.cache_ttl_s,
            cache_max_size=settings.cache_max_size,
            clock=clock,
        )

    @property
    def latest_sequence_id(self) -> int:
        return self._latest_sequence_id

    @property
    def cache(self) -> TTLCache[SearchResultSet]:
        return self._cache

    @property
    def in_flight(self) -> Optional[SearchRequest]:
        return self._in_flight

    def _advance(self) -> int:
        if self._in_flight is not None:
            self._in_flight.token.cancel("superseded")
            self._in_flight = None
        self._latest_sequence_id += 1
        return self._latest_sequence_id

    def _is_current(self, request: SearchRequest) -> bool:
        return request.sequence_id == self._latest_sequence_id and not request.token.cancelled

    def close(self) -> None:
        """Cancel in-flight work on session teardown."""
        if self._in_flight is not None:
            self._in_flight.token.cancel("closed")
            self._in_flight = None

    async def submit(
        self,
        query: str,
        origin: Optional[Coordinates] = None,
        origin_address: Optional[str] = None,
    ) -> Optional[SearchResultSet]:
        """Run one search. Returns None when a newer submission superseded this one."""
        key = normalize_query(query)
        if not key:
            raise ValueError("Query required")

        cached = self._cache.get(key)
        if cached is not None:
            # A cache hit is still the newest submission; older work must not surface.
            self._advance()
            logger.debug("Cache hit for %r", key)
            return cached

        request = SearchRequest(
            sequence_id=self._advance(),
            normalized_query=key,
            origin=origin,
            origin_address=origin_address,
        )
        self._in_flight = request
        started = self._clock()
        try:
            result = await self._execute(request, query.strip())
        except RequestCancelled:
            result = None
        finally:
            if self._in_flight is request:
                self._in_flight = None

        if result is None:
            request.state = RequestState.SUPERSEDED
            logger.debug("Request #%d (%r) superseded", request.sequence_id, key)
            return None

        logger.info(
            "Search #%d %r -> %d results in %.2fs (%s)",
            request.sequence_id,
            key,
            len(result.ranked_results),
            self._clock() - started,
            request.state.value,
        )
        return result

    async def _load_stations(self, request: SearchRequest) -> List[StationMatch]:
        try:
            return await self._stations.snapshot()
        except ProviderError as e:
            logger.warning("Station directory unavailable for #%d: %s", request.sequence_id, e)
        request.degraded = True
        return []

    async def _fetch_intent(self, request: SearchRequest, query: str) -> Any:
        try:
            return await request.token.run(
                self._intent.parse(query, request.origin, request.origin_address)
            )
        except ProviderUnavailable as e:
            logger.info("%s; using fallback intent", e)
        except ProviderError as e:
            logger.warning("Intent service failed for #%d: %s", request.sequence_id, e)
        request.degraded = True
        return None

    def _settle(self, request: SearchRequest, outcome: Any, label: str, default: Any) -> Any:
        """Unwrap one `gather(return_exceptions=True)` outcome; failures degrade the request."""
        if not isinstance(outcome, BaseException):
            return outcome
        if isinstance(outcome, (RequestCancelled, asyncio.CancelledError)):
            raise outcome
        logger.error("%s failed for #%d", label, request.sequence_id, exc_info=outcome)
        request.degraded = True
        return default

    async def _execute(self, request: SearchRequest, query: str) -> Optional[SearchResultSet]:
        request.state = RequestState.FETCHING
        stations, raw = await asyncio.gather(
            self._load_stations(request),
            self._fetch_intent(request, query),
            return_exceptions=True,
        )
        if not self._is_current(request):
            return None
        stations = self._settle(request, stations, "Station directory", [])
        raw = self._settle(request, raw, "Intent service", None)

        request.state = RequestState.NORMALIZING
        intent_result = normalize_intent_payload(raw, query, request.origin)

        request.state = RequestState.ENRICHING
        await self._enricher.enrich(intent_result.candidates, request.origin, request.token)
        if not self._is_current(request):
            return None
        places = self._enricher.filter_by_radius(intent_result.candidates, request.origin)

        request.state = RequestState.MERGING
        intent = intent_result.parsed_intent
        result_set = SearchResultSet(
            query=request.normalized_query,
            intent_summary=intent,
            summary_text=describe_intent(intent),
            ranked_results=self.merge(
                places,
                stations,
                [request.normalized_query, normalize_query(intent.search_term)],
            ),
        )

        if not self._is_current(request):
            return None
        if request.degraded:
            request.state = RequestState.FAILED
        else:
            self._cache.set(request.normalized_query, result_set)
            request.state = RequestState.DELIVERED
        return result_set

    def merge(
        self,
        places: Sequence[PlaceCandidate],
        stations: Sequence[StationMatch],
        terms: Sequence[str],
    ) -> List[Any]:
        """Provider-ordered places, then capped station matches, truncated to the ceiling."""
        matches = match_stations(stations, terms, self.station_match_limit)
        return [*places, *matches][: self.result_limit]
