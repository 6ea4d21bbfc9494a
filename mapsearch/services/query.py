from __future__ import annotations

from typing import List

from mapsearch.models import ParsedIntent


def normalize_query(raw: str) -> str:
    """Canonical cache key for a raw query: trimmed and lower-cased.

    Idempotent. Blank input maps to "" and is rejected by callers, not here.
    """
    return raw.strip().lower()


def describe_intent(intent: ParsedIntent) -> str:
    """Human-readable summary of the filters detected in a parsed intent."""
    parts: List[str] = []
    filters = intent.filters

    if intent.type_hint:
        parts.append(f"Type: {intent.type_hint}")
    if intent.area_hint:
        parts.append(f"Area: {intent.area_hint}")

    if filters is not None:
        if filters.price_range:
            parts.append(f"Price: {filters.price_range}")
        if filters.open_now:
            parts.append("Open now")
        if filters.rating:
            parts.append(f"Rating: {filters.rating:g}+")
        if filters.cuisine:
            parts.append(f"Cuisine: {', '.join(filters.cuisine)}")
        if filters.amenities:
            parts.append(f"Amenities: {', '.join(filters.amenities)}")
        if filters.distance:
            parts.append(f"Within {filters.distance.value:g} {filters.distance.unit}")

    return " · ".join(parts) if parts else "No filters detected"
