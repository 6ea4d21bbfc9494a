from __future__ import annotations

import asyncio

import aiohttp
import pytest

from mapsearch.models import Coordinates
from mapsearch.services.errors import ProviderError
from mapsearch.services.stations import (
    StationDirectory,
    match_stations,
    parse_station_collection,
    station_from_feature,
)

from tests.fakes import FakeResponse, FakeSession, make_station

URL = "http://localhost:3000/api/underground/stations"


def _feature(name, lon=-0.1571, lat=51.5226, **props):
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [lon, lat]},
        "properties": {"name": name, **props},
    }


COLLECTION = {
    "type": "FeatureCollection",
    "features": [
        _feature(
            "Baker Street",
            id="940GZZLUBST",
            zone="1",
            lines=[{"name": "Bakerloo"}, {"name": "Jubilee"}],
            cartography={"display": "Baker Street"},
        ),
        _feature("Bank", -0.0886, 51.5133, displayName="Bank / Monument", lines=["Central"]),
        {"type": "Feature", "geometry": {"type": "LineString", "coordinates": [[0, 0], [1, 1]]}, "properties": {}},
        _feature(""),
    ],
}


def test_station_from_feature_reads_lon_lat_order():
    station = station_from_feature(COLLECTION["features"][0])

    assert station.id == "940GZZLUBST"
    assert station.coordinates == Coordinates(latitude=51.5226, longitude=-0.1571)
    assert station.lines == ["Bakerloo", "Jubilee"]
    assert station.zone == "1"
    assert station.description == "Underground Station · Zone 1"


def test_station_without_zone_or_id():
    station = station_from_feature(COLLECTION["features"][1])

    assert station.id == "Bank"
    assert station.display_name == "Bank / Monument"
    assert station.zone is None
    assert station.description == "Underground Station · Zone N/A"


@pytest.mark.parametrize(
    "feature",
    [
        None,
        "feature",
        {"geometry": {"type": "Point", "coordinates": [1]}, "properties": {"name": "x"}},
        {"geometry": {"type": "Point", "coordinates": ["a", "b"]}, "properties": {"name": "x"}},
        {"geometry": {"type": "Point", "coordinates": [0, 91]}, "properties": {"name": "x"}},
    ],
)
def test_unusable_features(feature):
    assert station_from_feature(feature) is None


def test_parse_collection_skips_unusable_features():
    stations = parse_station_collection(COLLECTION)
    assert [s.name for s in stations] == ["Baker Street", "Bank"]


def test_parse_collection_rejects_other_documents():
    with pytest.raises(ValueError):
        parse_station_collection({"type": "Feature"})


def test_match_is_case_insensitive_substring_in_directory_order():
    stations = [
        make_station("a", "Bank"),
        make_station("b", "Baker Street"),
        make_station("c", "Canary Wharf"),
        make_station("d", "Barbican"),
    ]

    assert [s.id for s in match_stations(stations, ["BA"], 10)] == ["a", "b", "d"]
    assert [s.id for s in match_stations(stations, ["ba"], 2)] == ["a", "b"]
    assert [s.id for s in match_stations(stations, ["wharf", "barb"], 10)] == ["c", "d"]


def test_match_with_blank_terms_or_zero_limit():
    stations = [make_station("a", "Bank")]
    assert match_stations(stations, ["", "  "], 5) == []
    assert match_stations(stations, ["bank"], 0) == []


@pytest.mark.asyncio
async def test_directory_fetches_once_and_matches_locally():
    session = FakeSession(FakeResponse(COLLECTION))
    directory = StationDirectory(session, URL, timeout_s=1.0)

    assert directory.match(["bank"], 3) == []

    first, second = await asyncio.gather(directory.snapshot(), directory.snapshot())

    assert first is second
    assert len(session.calls) == 1
    assert session.calls[0][1] == URL
    assert [s.display_name for s in directory.match(["bank"], 3)] == ["Bank / Monument"]


@pytest.mark.asyncio
async def test_directory_failures_raise_provider_error_and_retry():
    session = FakeSession(
        FakeResponse(status=500),
        aiohttp.ClientConnectionError("refused"),
        FakeResponse({"unexpected": True}),
        FakeResponse(COLLECTION),
    )
    directory = StationDirectory(session, URL)

    with pytest.raises(ProviderError) as excinfo:
        await directory.snapshot()
    assert excinfo.value.status == 500

    with pytest.raises(ProviderError):
        await directory.snapshot()
    with pytest.raises(ProviderError):
        await directory.snapshot()

    assert len(await directory.snapshot()) == 2
