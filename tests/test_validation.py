from __future__ import annotations

import asyncio

import aiohttp
import pytest

from mapsearch.models import PlaceCandidate
from mapsearch.services import validation
from mapsearch.services.validation import (
    SourceValidator,
    UrlCheck,
    calculate_confidence,
    clean_candidate,
    confidence_score,
    extract_result_urls,
    verify_url,
    verify_urls,
)

from tests.fakes import FakeResponse, FakeSession

SITE = "https://www.example-sushi.co.uk"
TIMEOUT_GUIDE = "https://www.timeout.com/london/restaurants/best-sushi"
BLOG = "https://londonfoodblog.example.com/sushi"


def _rich_candidate() -> PlaceCandidate:
    return PlaceCandidate(
        id="place-0",
        name="Sushi Bar",
        description="Omakase counter.",
        address="1 Dean St, London",
        rating=4.6,
        website=SITE,
        sources=[f"Time Out | {TIMEOUT_GUIDE}", f"Food Blog | {BLOG}"],
    )


def test_rich_candidate_scores_high():
    candidate = _rich_candidate()

    assert confidence_score(candidate) == 9
    assert calculate_confidence(candidate) == "high"


def test_name_only_candidate_scores_low():
    candidate = PlaceCandidate(id="place-1", name="Mystery Spot")

    assert confidence_score(candidate) == 0
    assert calculate_confidence(candidate) == "low"


def test_medium_tier_boundary():
    candidate = PlaceCandidate(
        id="place-2", name="Corner Cafe", address="2 High St", rating=4.0, sources=["google", "yelp"]
    )
    assert confidence_score(candidate) == 3

    described = candidate.model_copy(update={"description": "Coffee."})
    assert confidence_score(described) == 4
    assert calculate_confidence(described) == "medium"


def test_extract_result_urls_skips_plain_sources():
    candidate = _rich_candidate().model_copy(update={"sources": ["google", f"Blog | {BLOG}"]})
    assert extract_result_urls(candidate) == [SITE, BLOG]


def test_clean_candidate_strips_unverified_urls_and_sets_tier():
    candidate = _rich_candidate().model_copy(update={"sources": ["google", *_rich_candidate().sources]})
    checks = {SITE: False, TIMEOUT_GUIDE: True, BLOG: False}

    cleaned = clean_candidate(candidate, checks)

    assert cleaned.website is None
    assert cleaned.sources == ["google", f"Time Out | {TIMEOUT_GUIDE}"]
    # +3 verified source, +1 two sources, +1 rating, +1 address, +1 description
    assert cleaned.confidence_tier == "high"
    assert candidate.website == SITE


@pytest.mark.asyncio
async def test_verify_url_treats_redirects_as_valid():
    session = FakeSession(FakeResponse(status=301), FakeResponse(status=404))

    assert await verify_url(session, SITE) == UrlCheck(valid=True, status=301)
    assert (await verify_url(session, BLOG)).valid is False

    method, url, kwargs = session.calls[0]
    assert method == "HEAD"
    assert kwargs["allow_redirects"] is True


@pytest.mark.asyncio
async def test_verify_url_network_error_is_invalid():
    session = FakeSession(aiohttp.ClientConnectionError("dns"))

    check = await verify_url(session, SITE)

    assert check.valid is False
    assert check.error == "dns"


@pytest.mark.asyncio
async def test_verify_urls_dedupes_and_bounds_concurrency(monkeypatch):
    active = {"now": 0, "peak": 0}
    probed = []

    async def fake_verify(session, url, timeout_s=3.0):
        probed.append(url)
        active["now"] += 1
        active["peak"] = max(active["peak"], active["now"])
        await asyncio.sleep(0)
        active["now"] -= 1
        return UrlCheck(valid="bad" not in url)

    monkeypatch.setattr(validation, "verify_url", fake_verify)
    urls = [f"https://site{i}.example.com" for i in range(7)] + ["https://bad.example.com", SITE, SITE]

    results = await verify_urls(object(), urls, concurrency=3)

    assert sorted(probed) == sorted(set(urls))
    assert active["peak"] <= 3
    assert results["https://bad.example.com"] is False
    assert results[SITE] is True


@pytest.mark.asyncio
async def test_report_summarizes_cleaned_candidates(monkeypatch):
    async def fake_verify(session, url, timeout_s=3.0):
        return UrlCheck(valid=url != BLOG)

    monkeypatch.setattr(validation, "verify_url", fake_verify)
    validator = SourceValidator(object(), concurrency=5, timeout_s=1.0)
    candidates = [_rich_candidate(), PlaceCandidate(id="place-1", name="Mystery Spot")]

    report = await validator.report(candidates)

    first, second = report.results
    assert first.sources == [f"Time Out | {TIMEOUT_GUIDE}"]
    assert first.confidence_tier == "high"
    assert second.confidence_tier == "low"
    assert report.results_with_sources == 1
    assert report.results_with_websites == 1
    # first scores 2 + 3 + 1 + 1 + 1 = 8, second 0
    assert report.average_confidence == 4.0
