from __future__ import annotations

from typing import Annotated, Any, List, Literal, Optional, Union
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

PriceRange = Literal["low", "medium", "high", "luxury"]
ConfidenceTier = Literal["high", "medium", "low"]
PlaceType = Literal["place", "restaurant", "hotel", "cafe", "park", "landmark", "store", "other"]

INTENT_TYPES = {"restaurant", "hotel", "cafe", "park", "landmark", "store", "other"}
PLACE_TYPES = INTENT_TYPES | {"place"}


def is_http_url(value: str, *, allow_localhost: bool = True) -> bool:
    try:
        parts = urlsplit(value.strip())
    except ValueError:
        return False
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return False
    if not allow_localhost and parts.hostname == "localhost":
        return False
    return True


def split_source(source: str) -> tuple[str, Optional[str]]:
    """Split a "Name | URL" source entry. Plain names have no URL."""
    if "|" not in source:
        return source.strip(), None
    parts = [p.strip() for p in source.split("|")]
    if len(parts) != 2:
        return source.strip(), ""
    return parts[0], parts[1]


def _coerce_type(value: Any, allowed: set[str]) -> Any:
    if not isinstance(value, str):
        return value
    normalized = value.strip().lower()
    return normalized if normalized in allowed else "other"


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)


class BoundingBox(BaseModel):
    model_config = ConfigDict(frozen=True)

    left: float
    top: float
    right: float
    bottom: float

    @property
    def viewbox(self) -> str:
        """Nominatim `viewbox` parameter (x1,y1,x2,y2)."""
        return f"{self.left},{self.top},{self.right},{self.bottom}"

    def contains(self, point: Coordinates) -> bool:
        return self.bottom <= point.latitude <= self.top and self.left <= point.longitude <= self.right


class Distance(BaseModel):
    value: float
    unit: Literal["miles", "kilometers"]


class IntentFilters(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    cuisine: Optional[List[str]] = None
    price_range: Optional[PriceRange] = None
    open_now: Optional[bool] = None
    rating: Optional[float] = Field(None, ge=0, le=5)
    amenities: Optional[List[str]] = None
    distance: Optional[Distance] = None


class ParsedIntent(BaseModel):
    model_config = ConfigDict(frozen=True)

    search_term: str
    area_hint: Optional[str] = None
    type_hint: Optional[Literal["restaurant", "hotel", "cafe", "park", "landmark", "store", "other"]] = None
    filters: Optional[IntentFilters] = None
    location: Optional[Coordinates] = None

    @field_validator("type_hint", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        return _coerce_type(value, INTENT_TYPES)


class PlaceCandidate(BaseModel):
    kind: Literal["place"] = "place"
    id: str
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    address: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    rating: Optional[float] = Field(None, ge=0, le=5)
    price_range: Optional[PriceRange] = None
    website: Optional[str] = None
    phone: Optional[str] = None
    sources: List[str] = Field(default_factory=list)
    place_type: Optional[PlaceType] = None
    confidence_tier: Optional[ConfidenceTier] = None

    @field_validator("place_type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        return _coerce_type(value, PLACE_TYPES)

    @field_validator("website", mode="before")
    @classmethod
    def _drop_bad_website(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        if not isinstance(value, str) or not is_http_url(value, allow_localhost=False):
            return None
        return value.strip()

    @field_validator("sources", mode="before")
    @classmethod
    def _drop_bad_sources(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        kept = []
        for source in value:
            if not isinstance(source, str) or not source.strip():
                continue
            _, url = split_source(source)
            if url is not None and not is_http_url(url):
                continue
            kept.append(source.strip())
        return kept


class StationMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["station"] = "station"
    id: str
    name: str
    display_name: str
    zone: Optional[str] = None
    lines: List[str] = Field(default_factory=list)
    coordinates: Coordinates

    @computed_field
    @property
    def description(self) -> str:
        return f"Underground Station · Zone {self.zone or 'N/A'}"


RankedResult = Annotated[Union[PlaceCandidate, StationMatch], Field(discriminator="kind")]


class IntentResult(BaseModel):
    parsed_intent: ParsedIntent
    candidates: List[PlaceCandidate] = Field(default_factory=list)


class SearchResultSet(BaseModel):
    query: str
    intent_summary: ParsedIntent
    summary_text: str = ""
    ranked_results: List[RankedResult] = Field(default_factory=list)


class SearchResponse(BaseModel):
    superseded: bool = False
    result: Optional[SearchResultSet] = None


class ValidateRequest(BaseModel):
    candidates: List[PlaceCandidate] = Field(..., min_length=1)


class ValidationReport(BaseModel):
    results: List[PlaceCandidate]
    results_with_sources: int = 0
    results_with_websites: int = 0
    average_confidence: float = 0.0
