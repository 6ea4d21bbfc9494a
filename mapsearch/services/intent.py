from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Protocol

import aiohttp

from mapsearch.config import Settings
from mapsearch.models import Coordinates
from mapsearch.services.errors import ProviderError, ProviderUnavailable

logger = logging.getLogger(__name__)

PROVIDER = "intent-service"

SYSTEM_PROMPT = """
You are a map search assistant. Return structured search intent and a short list of real, well-known places.

Guidelines:
- Extract the user's search intent and filters.
- If the user provides a location (area or coordinates), include it.
- Only include real companies/places you are confident exist.
- Provide up to 20 suggested places relevant to the query.
- Use the viewport center as the reference and keep results within ~10km.
- Include a street address or full place address for every result.
- Do not include coordinates; the server will geocode addresses.
- Keep descriptions concise and useful (1 sentence).
- Respond with JSON: {"parsedQuery": {"searchTerm", "location": {"area"}, "context": {"type", "filters"}}, "results": [{"name", "description", "address", "website", "sources", "rating", "priceRange", "type"}]}.
"""


class IntentService(Protocol):
    async def parse(
        self,
        query: str,
        origin: Optional[Coordinates] = None,
        origin_address: Optional[str] = None,
    ) -> Any:
        ...


def build_prompt(query: str, origin: Optional[Coordinates] = None, origin_address: Optional[str] = None) -> str:
    lines = ["SYSTEM:", SYSTEM_PROMPT.strip(), "", "USER QUERY:", query]
    if origin is not None:
        lines.append(f"Viewport center: {origin.latitude}, {origin.longitude}")
    if origin_address:
        lines.append(f"Viewport address: {origin_address}")
    return "\n".join(lines)


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def extract_payload(response: Any) -> Any:
    """Decode the JSON document carried in the first text part of a generateContent response.

    Returns None when there is no text part or it is not valid JSON.
    """
    if not isinstance(response, dict):
        return None
    candidates = response.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return None
    content = candidates[0].get("content") or {}
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return None

    text = next(
        (p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str) and p["text"]),
        None,
    )
    if text is None:
        return None
    try:
        return json.loads(_strip_fences(text))
    except ValueError:
        logger.warning("Intent service returned non-JSON text (%d chars)", len(text))
        return None


class GeminiIntentClient:
    """Intent Service backed by the Gemini generateContent API."""

    def __init__(self, session: aiohttp.ClientSession, settings: Settings) -> None:
        self._session = session
        self._settings = settings

    @property
    def configured(self) -> bool:
        return bool(self._settings.gemini_api_key)

    async def parse(
        self,
        query: str,
        origin: Optional[Coordinates] = None,
        origin_address: Optional[str] = None,
    ) -> Any:
        if not self.configured:
            raise ProviderUnavailable(PROVIDER)

        settings = self._settings
        url = f"{str(settings.gemini_base_url).rstrip('/')}/{settings.gemini_model}:generateContent"
        body: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": build_prompt(query, origin, origin_address)}]}],
            "generationConfig": {
                "response_mime_type": "application/json",
                "temperature": settings.intent_temperature,
            },
        }
        timeout = aiohttp.ClientTimeout(total=settings.intent_timeout_s)

        try:
            async with self._session.post(
                url, params={"key": settings.gemini_api_key}, json=body, timeout=timeout
            ) as resp:
                if resp.status >= 400:
                    detail = (await resp.text())[:200]
                    raise ProviderError(PROVIDER, f"HTTP {resp.status} {detail}".strip(), status=resp.status)
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ProviderError(PROVIDER, str(e) or type(e).__name__) from e

        return extract_payload(data)
