from __future__ import annotations

import json

import aiohttp
import pytest

from mapsearch.config import Settings
from mapsearch.services.errors import ProviderError, ProviderUnavailable
from mapsearch.services.intent import GeminiIntentClient, build_prompt, extract_payload

from tests.fakes import LONDON, FakeResponse, FakeSession


def _response(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def test_build_prompt_includes_viewport():
    prompt = build_prompt("sushi", LONDON, "Trafalgar Square")

    assert "USER QUERY:\nsushi" in prompt
    assert "Viewport center: 51.5074, -0.1278" in prompt
    assert "Viewport address: Trafalgar Square" in prompt


def test_build_prompt_without_viewport():
    assert "Viewport" not in build_prompt("sushi")


def test_extract_payload_decodes_json_text():
    payload = {"parsedQuery": {"searchTerm": "sushi"}, "results": []}
    assert extract_payload(_response(json.dumps(payload))) == payload


def test_extract_payload_strips_code_fences():
    text = '```json\n{"searchTerm": "ramen"}\n```'
    assert extract_payload(_response(text)) == {"searchTerm": "ramen"}


@pytest.mark.parametrize(
    "response",
    [
        None,
        {},
        {"candidates": []},
        {"candidates": [{"content": {"parts": [{"inlineData": {}}]}}]},
        _response("Sorry, I can't help with that."),
    ],
)
def test_extract_payload_returns_none_for_unusable_responses(response):
    assert extract_payload(response) is None


@pytest.mark.asyncio
async def test_parse_without_api_key_is_unavailable():
    session = FakeSession()
    client = GeminiIntentClient(session, Settings(gemini_api_key=None))

    assert client.configured is False
    with pytest.raises(ProviderUnavailable):
        await client.parse("sushi")
    assert session.calls == []


@pytest.mark.asyncio
async def test_parse_posts_prompt_and_returns_payload():
    session = FakeSession(FakeResponse(_response('{"searchTerm": "sushi"}')))
    settings = Settings(gemini_api_key="secret", gemini_model="gemini-2.5-flash")
    client = GeminiIntentClient(session, settings)

    payload = await client.parse("Sushi", LONDON)

    assert payload == {"searchTerm": "sushi"}
    method, url, kwargs = session.calls[0]
    assert method == "POST"
    assert url.endswith("/models/gemini-2.5-flash:generateContent")
    assert kwargs["params"] == {"key": "secret"}
    assert kwargs["json"]["generationConfig"]["response_mime_type"] == "application/json"
    assert "Sushi" in kwargs["json"]["contents"][0]["parts"][0]["text"]


@pytest.mark.asyncio
async def test_parse_error_status_raises_provider_error():
    session = FakeSession(FakeResponse(status=429, text="quota exceeded"))
    client = GeminiIntentClient(session, Settings(gemini_api_key="secret"))

    with pytest.raises(ProviderError) as excinfo:
        await client.parse("sushi")

    assert excinfo.value.status == 429
    assert "quota exceeded" in str(excinfo.value)


@pytest.mark.asyncio
async def test_parse_network_failure_raises_provider_error():
    session = FakeSession(aiohttp.ClientConnectionError("reset"))
    client = GeminiIntentClient(session, Settings(gemini_api_key="secret"))

    with pytest.raises(ProviderError):
        await client.parse("sushi")
