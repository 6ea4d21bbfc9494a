"""URL verification and data-quality scoring for AI-suggested places.

This stage is invoked separately from the search pipeline so that URL probes
never add latency to an ordinary search.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import aiohttp

from mapsearch.config import Settings
from mapsearch.models import ConfidenceTier, PlaceCandidate, ValidationReport, is_http_url, split_source

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_SCORE = 7
MEDIUM_CONFIDENCE_SCORE = 4


@dataclass(frozen=True)
class UrlCheck:
    valid: bool
    status: Optional[int] = None
    error: Optional[str] = None


async def verify_url(session: aiohttp.ClientSession, url: str, timeout_s: float = 3.0) -> UrlCheck:
    """HEAD the URL (following redirects); 2xx and 3xx count as existing."""
    timeout = aiohttp.ClientTimeout(total=timeout_s)
    try:
        async with session.head(url, allow_redirects=True, timeout=timeout) as resp:
            status = resp.status
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        return UrlCheck(valid=False, error=str(e) or type(e).__name__)
    return UrlCheck(valid=200 <= status < 400, status=status)


async def verify_urls(
    session: aiohttp.ClientSession,
    urls: Iterable[str],
    *,
    concurrency: int = 5,
    timeout_s: float = 3.0,
) -> Dict[str, bool]:
    """Probe unique URLs in batches of `concurrency`."""
    unique = list(dict.fromkeys(urls))
    results: Dict[str, bool] = {}
    for i in range(0, len(unique), concurrency):
        batch = unique[i:i + concurrency]
        checks = await asyncio.gather(*(verify_url(session, url, timeout_s) for url in batch))
        for url, check in zip(batch, checks):
            results[url] = check.valid
    return results


def extract_result_urls(candidate: PlaceCandidate) -> List[str]:
    urls: List[str] = []
    if candidate.website:
        urls.append(candidate.website)
    for source in candidate.sources:
        _, url = split_source(source)
        if url and is_http_url(url):
            urls.append(url)
    return urls


def confidence_score(candidate: PlaceCandidate) -> int:
    score = 0
    if candidate.website:
        score += 2
    if any(split_source(s)[1] for s in candidate.sources):
        score += 3
    if len(candidate.sources) > 1:
        score += 1
    if candidate.rating is not None:
        score += 1
    if candidate.address:
        score += 1
    if candidate.description:
        score += 1
    return score


def confidence_tier(score: int) -> ConfidenceTier:
    if score >= HIGH_CONFIDENCE_SCORE:
        return "high"
    if score >= MEDIUM_CONFIDENCE_SCORE:
        return "medium"
    return "low"


def calculate_confidence(candidate: PlaceCandidate) -> ConfidenceTier:
    return confidence_tier(confidence_score(candidate))


def clean_candidate(candidate: PlaceCandidate, checks: Mapping[str, bool]) -> PlaceCandidate:
    """Copy of the candidate without unverified URLs, with its confidence tier set."""
    website = candidate.website
    if website and not checks.get(website, False):
        logger.warning("Invalid website URL for %s: %s", candidate.name, website)
        website = None

    sources: List[str] = []
    for source in candidate.sources:
        _, url = split_source(source)
        if url is None:
            sources.append(source)
        elif url and checks.get(url, False):
            sources.append(source)
        else:
            logger.warning("Invalid source URL for %s: %s", candidate.name, url)

    cleaned = candidate.model_copy(update={"website": website, "sources": sources})
    return cleaned.model_copy(update={"confidence_tier": calculate_confidence(cleaned)})


def summarize(candidates: Sequence[PlaceCandidate]) -> ValidationReport:
    scores = [confidence_score(c) for c in candidates]
    return ValidationReport(
        results=list(candidates),
        results_with_sources=sum(1 for c in candidates if c.sources),
        results_with_websites=sum(1 for c in candidates if c.website),
        average_confidence=round(sum(scores) / len(scores), 2) if scores else 0.0,
    )


class SourceValidator:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        concurrency: int = 5,
        timeout_s: float = 3.0,
    ) -> None:
        self._session = session
        self.concurrency = concurrency
        self.timeout_s = timeout_s

    @classmethod
    def from_settings(cls, session: aiohttp.ClientSession, settings: Settings) -> "SourceValidator":
        return cls(
            session,
            concurrency=settings.url_probe_concurrency,
            timeout_s=settings.url_probe_timeout_s,
        )

    async def validate(self, candidates: Sequence[PlaceCandidate]) -> List[PlaceCandidate]:
        urls = [url for c in candidates for url in extract_result_urls(c)]
        checks = await verify_urls(
            self._session, urls, concurrency=self.concurrency, timeout_s=self.timeout_s
        )
        return [clean_candidate(c, checks) for c in candidates]

    async def report(self, candidates: Sequence[PlaceCandidate]) -> ValidationReport:
        return summarize(await self.validate(candidates))
