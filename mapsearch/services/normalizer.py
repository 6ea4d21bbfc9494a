"""Reconcile intent-service payloads into a canonical `IntentResult`.

The provider's JSON is never trusted to follow one schema. Each known shape
is described by a `PayloadShape` (a predicate plus an extractor) and the
shapes are tried in priority order; the first match wins. Supporting a new
provider shape means appending to `PAYLOAD_SHAPES`.

`normalize_intent_payload` is total: any JSON-decodable input yields a valid
result, falling back to the raw query with no candidates.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from mapsearch.models import Coordinates, IntentResult, ParsedIntent, PlaceCandidate

logger = logging.getLogger(__name__)

PARSED_QUERY_KEYS = ("parsedQuery", "parsed_query")
SEARCH_INTENT_KEYS = ("search_intent", "searchIntent")
PLACES_KEYS = ("suggested_places", "suggestedPlaces", "places")
SEARCH_TERM_KEYS = ("searchTerm", "search_term", "original_query", "originalQuery")

# Per-axis precedence: the first populated field wins.
LATITUDE_KEYS = ("latitude", "lat", "y")
LONGITUDE_KEYS = ("longitude", "lng", "lon", "x")
COORDINATE_CONTAINERS = ("coordinates", "location", "geo")

FILTER_ALIASES = {
    "priceRange": "price_range",
    "openNow": "open_now",
}

CONFIDENCE_TIERS = {"high", "medium", "low"}
PRICE_RANGES = {"low", "medium", "high", "luxury"}

Extracted = Tuple[Dict[str, Any], List[Any]]


@dataclass(frozen=True)
class PayloadShape:
    name: str
    matches: Callable[[Dict[str, Any]], bool]
    extract: Callable[[Dict[str, Any], str], Extracted]


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first_key(raw: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _first_text(*values: Any) -> Optional[str]:
    for value in values:
        text = _text(value)
        if text is not None:
            return text
    return None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
    elif not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _first_number(container: Dict[str, Any], keys: Sequence[str]) -> Optional[float]:
    for key in keys:
        number = _number(container.get(key))
        if number is not None:
            return number
    return None


def resolve_coordinates(value: Any) -> Optional[Coordinates]:
    """Resolve a lat/lon pair from any of the known alias fields of a mapping."""
    if not isinstance(value, dict):
        return None
    lat = _first_number(value, LATITUDE_KEYS)
    lon = _first_number(value, LONGITUDE_KEYS)
    if lat is None or lon is None:
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None
    return Coordinates(latitude=lat, longitude=lon)


def _place_coordinates(place: Dict[str, Any]) -> Optional[Coordinates]:
    for key in COORDINATE_CONTAINERS:
        coords = resolve_coordinates(place.get(key))
        if coords is not None:
            return coords
    return resolve_coordinates(place)


def _filters(value: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(value, dict) or not value:
        return None
    return {FILTER_ALIASES.get(key, key): item for key, item in value.items()}


def _as_id(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        try:
            return str(value)
        except ValueError:
            # past the interpreter's int-to-str digit limit
            return None
    return _text(value)


def _candidate_fields(place: Dict[str, Any], index: int) -> Optional[Dict[str, Any]]:
    name = _first_text(place.get("name"), place.get("title"))
    if name is None:
        return None

    confidence = _text(place.get("confidence"))
    price_range = _first_text(place.get("priceRange"), place.get("price_range"))
    rating = _number(place.get("rating"))
    sources = place.get("sources")
    return {
        "id": _as_id(place.get("id")) or f"place-{index}",
        "name": name,
        "description": _text(place.get("description")),
        "address": _first_text(place.get("address"), place.get("formatted_address")),
        "coordinates": _place_coordinates(place),
        "rating": rating if rating is not None and 0 <= rating <= 5 else None,
        "price_range": price_range.lower() if price_range and price_range.lower() in PRICE_RANGES else None,
        "website": _text(place.get("website")),
        "phone": _text(place.get("phone")),
        "sources": sources if isinstance(sources, list) else [],
        "place_type": _text(place.get("type")) or "place",
        "confidence_tier": confidence if confidence in CONFIDENCE_TIERS else None,
    }


def _is_canonical(raw: Dict[str, Any]) -> bool:
    return isinstance(_first_key(raw, PARSED_QUERY_KEYS), dict)


def _extract_canonical(raw: Dict[str, Any], query: str) -> Extracted:
    parsed = _as_dict(_first_key(raw, PARSED_QUERY_KEYS))
    location = _as_dict(parsed.get("location"))
    context = _as_dict(parsed.get("context"))

    fields = {
        "search_term": _first_text(*(parsed.get(key) for key in SEARCH_TERM_KEYS), query) or query,
        "area_hint": _first_text(location.get("area"), parsed.get("area")),
        "type_hint": _first_text(context.get("type"), parsed.get("type")),
        "filters": _filters(
            context.get("filters") or parsed.get("filters") or raw.get("filters")
        ),
        "location": resolve_coordinates(location.get("coordinates"))
        or resolve_coordinates(location),
    }
    results = raw.get("results")
    return fields, results if isinstance(results, list) else []


def _is_search_intent(raw: Dict[str, Any]) -> bool:
    if _first_key(raw, SEARCH_INTENT_KEYS) is not None:
        return True
    if any(isinstance(raw.get(key), list) for key in PLACES_KEYS):
        return True
    return any(_text(raw.get(key)) for key in SEARCH_TERM_KEYS)


def _extract_search_intent(raw: Dict[str, Any], query: str) -> Extracted:
    intent_value = _first_key(raw, SEARCH_INTENT_KEYS)
    intent = _as_dict(intent_value)

    search_term = _first_text(
        intent.get("query"),
        intent_value,
        *(raw.get(key) for key in SEARCH_TERM_KEYS),
        query,
    )
    fields = {
        "search_term": search_term or query,
        "area_hint": _first_text(intent.get("area"), raw.get("area")),
        "type_hint": _first_text(intent.get("type"), raw.get("type")),
        "filters": _filters(intent.get("filters") or raw.get("filters")),
        "location": resolve_coordinates(intent.get("location"))
        or resolve_coordinates(raw.get("location")),
    }
    places: List[Any] = []
    for key in PLACES_KEYS:
        if isinstance(raw.get(key), list):
            places = raw[key]
            break
    return fields, places


PAYLOAD_SHAPES: List[PayloadShape] = [
    PayloadShape("canonical", _is_canonical, _extract_canonical),
    PayloadShape("search_intent", _is_search_intent, _extract_search_intent),
]


def fallback_result(query: str, origin: Optional[Coordinates] = None) -> IntentResult:
    """Safe default: the literal query as search term, no candidates."""
    return IntentResult(
        parsed_intent=ParsedIntent(search_term=query, location=origin),
        candidates=[],
    )


def _build(extracted: Extracted, origin: Optional[Coordinates]) -> IntentResult:
    fields, places = extracted
    if origin is not None:
        fields["location"] = origin
    intent = ParsedIntent.model_validate(fields)

    candidates = []
    for index, place in enumerate(places):
        if not isinstance(place, dict):
            continue
        candidate = _candidate_fields(place, index)
        if candidate is not None:
            candidates.append(PlaceCandidate.model_validate(candidate))
    return IntentResult(parsed_intent=intent, candidates=candidates)


def normalize_intent_payload(
    raw: Any,
    query: str,
    origin: Optional[Coordinates] = None,
) -> IntentResult:
    """Normalize an arbitrary intent-service payload. Never raises."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raw = None

    if not isinstance(raw, dict):
        return fallback_result(query, origin)

    for shape in PAYLOAD_SHAPES:
        if not shape.matches(raw):
            continue
        try:
            result = _build(shape.extract(raw, query), origin)
        except ValidationError as exc:
            logger.warning(
                "Intent payload matched %r but failed validation (%d errors); using fallback",
                shape.name,
                exc.error_count(),
            )
            return fallback_result(query, origin)
        except (ValueError, OverflowError) as exc:
            logger.warning("Intent payload matched %r but has unusable values (%s); using fallback", shape.name, exc)
            return fallback_result(query, origin)
        logger.debug("Intent payload matched %r with %d candidates", shape.name, len(result.candidates))
        return result

    logger.debug("Intent payload shape not recognised; using fallback")
    return fallback_result(query, origin)
