from __future__ import annotations

import pytest

from mapsearch.services.coordinator import SearchCoordinator
from mapsearch.services.geocoding import GeocodeEnricher

from tests.fakes import FakeGeocoder, FakeIntentService, GatedStations, make_station


@pytest.fixture
def stations():
    return GatedStations(
        [
            make_station("940GZZLUBST", "Baker Street"),
            make_station("940GZZLUOXC", "Oxford Circus", 51.515, -0.1415),
            make_station("940GZZLUBKF", "Blackfriars", 51.5119, -0.1039),
            make_station("940GZZLUBNK", "Bank", 51.5133, -0.0886),
        ]
    )


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def intent_service():
    return FakeIntentService()


@pytest.fixture
def coordinator(intent_service, stations, geocoder):
    enricher = GeocodeEnricher(geocoder, radius_km=10.0, box_km=10.0, timeout_s=0.5)
    return SearchCoordinator(
        intent_service,
        stations,
        enricher,
        result_limit=8,
        station_match_limit=3,
        cache_ttl_s=60.0,
        cache_max_size=16,
    )
