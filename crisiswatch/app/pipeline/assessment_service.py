"""
assessment_service.py — Fan-out/fan-in crisis assessment for one region.

Pipeline per region:

    1. FETCH      →  one asyncio task per domain, each bounded by a timeout
    2. NORMALIZE  →  result-or-error → CanonicalSourceRecord
    3. AGGREGATE  →  risk tier, confidence, factors        (risk_aggregator)
    4. DISPLACE   →  displacement sub-assessment           (displacement)
    5. TRENDS     →  per-domain and overall trajectories   (trends)
    6. COMPOSE    →  one frozen CrisisAssessment, cached per region

Partial failure is the normal case, not an exception: ``asyncio.gather``
runs with ``return_exceptions=True`` so a failing or slow source never
cancels its siblings, and whatever it raised becomes an unavailable
record.  Only an unknown region (a caller mistake) raises.

Usage:
    service = AssessmentService.from_settings()
    assessment = await service.assess("Sudan")
    ranked = await service.monitor_regions(["Sudan", "Syria", "Chad"])
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

import httpx

from crisiswatch.app.core.cache import RegionCache
from crisiswatch.app.core.config import settings
from crisiswatch.app.core.errors import ExternalServiceError
from crisiswatch.app.pipeline.displacement import (
    DEFAULT_HEURISTICS,
    DisplacementHeuristics,
    predict_displacement,
)
from crisiswatch.app.pipeline.models import (
    DOMAINS,
    OVERALL_RISK_ORDER,
    CanonicalSourceRecord,
    CrisisAssessment,
    Domain,
    OverallRisk,
)
from crisiswatch.app.pipeline.normalizer import normalize_source
from crisiswatch.app.pipeline.regions import MONITORED_REGIONS, resolve_region
from crisiswatch.app.pipeline.risk_aggregator import aggregate_sources
from crisiswatch.app.pipeline.trends import analyze_trends

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Source Fetchers
# ═══════════════════════════════════════════════════════════════════════════

class SourceFetcher(Protocol):
    """Fetches one domain's raw payload for a region."""

    async def fetch(self, region: str) -> Any: ...


class HttpSourceFetcher:
    """
    Pulls an already-shaped domain payload from ``<url>?region=<name>``.

    Raises ``ExternalServiceError`` on transport or HTTP errors; the
    assessment service turns that into an unavailable record.
    """

    def __init__(
        self,
        domain: Domain,
        url: str,
        *,
        timeout: float = 30.0,
        api_key: Optional[str] = None,
    ):
        self.domain = domain
        self.url = url
        self.timeout = timeout
        self.api_key = api_key
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
            self._http_client = httpx.AsyncClient(timeout=self.timeout, headers=headers)
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def fetch(self, region: str) -> Any:
        client = await self._get_client()
        try:
            response = await client.get(self.url, params={"region": region})
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                self.domain.value, f"HTTP {e.response.status_code}",
                region=region,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ExternalServiceError(self.domain.value, str(e), region=region) from e


def fetchers_from_settings() -> Dict[Domain, SourceFetcher]:
    """Build HTTP fetchers for every domain with a configured URL."""
    return {
        Domain(name): HttpSourceFetcher(Domain(name), url, timeout=settings.SOURCE_FETCH_TIMEOUT)
        for name, url in settings.source_urls.items()
        if url
    }


# ═══════════════════════════════════════════════════════════════════════════
# Composition
# ═══════════════════════════════════════════════════════════════════════════

def utc_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def build_assessment(
    region: str,
    sources: Mapping[Domain, CanonicalSourceRecord],
    *,
    timestamp: Optional[str] = None,
    heuristics: DisplacementHeuristics = DEFAULT_HEURISTICS,
) -> CrisisAssessment:
    """Run the three pure stages and compose one CrisisAssessment."""
    summary = aggregate_sources(sources)
    displacement = predict_displacement(sources, region, heuristics)
    trend_report = analyze_trends(sources)

    return CrisisAssessment(
        region=region,
        timestamp=timestamp or utc_timestamp(),
        overall_risk=summary.overall_risk,
        risk_score=summary.risk_score,
        confidence=summary.confidence,
        data_quality=summary.data_quality,
        sources={d: sources[d] for d in DOMAINS},
        displacement_risk=displacement,
        trends=trend_report.trends,
        risk_factors=summary.risk_factors,
        protective_factors=summary.protective_factors + trend_report.protective_factors,
        immediate_threats=summary.immediate_threats,
        emerging_concerns=trend_report.emerging_concerns,
    )


def sort_by_risk(assessments: Sequence[CrisisAssessment]) -> List[CrisisAssessment]:
    """Highest overall risk first; ties keep their input order."""
    return sorted(assessments, key=lambda a: -OVERALL_RISK_ORDER[a.overall_risk])


# ═══════════════════════════════════════════════════════════════════════════
# Service
# ═══════════════════════════════════════════════════════════════════════════

class AssessmentService:
    """
    Collects the four domain payloads concurrently and fuses them.

    Parameters
    ----------
    fetchers : mapping Domain → SourceFetcher
        Domains without a fetcher are reported as unavailable.
    cache : RegionCache, optional
        Per-region cache for finished assessments.  ``None`` disables it.
    timeout : float
        Per-fetch timeout in seconds.
    """

    def __init__(
        self,
        fetchers: Mapping[Domain, SourceFetcher],
        *,
        cache: Optional[RegionCache] = None,
        timeout: float = 30.0,
        heuristics: DisplacementHeuristics = DEFAULT_HEURISTICS,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.fetchers = dict(fetchers)
        self.cache = cache
        self.timeout = timeout
        self.heuristics = heuristics
        self._now = now

    @classmethod
    def from_settings(cls) -> "AssessmentService":
        return cls(
            fetchers_from_settings(),
            cache=RegionCache("assessment", ttl=settings.ASSESSMENT_CACHE_TTL),
            timeout=settings.SOURCE_FETCH_TIMEOUT,
        )

    async def close(self) -> None:
        for fetcher in self.fetchers.values():
            close = getattr(fetcher, "close", None)
            if close is not None:
                await close()

    async def _fetch_one(self, domain: Domain, region: str) -> Any:
        fetcher = self.fetchers.get(domain)
        if fetcher is None:
            return None
        return await asyncio.wait_for(fetcher.fetch(region), timeout=self.timeout)

    async def collect(self, region: str) -> Dict[Domain, CanonicalSourceRecord]:
        """Fetch and normalise all four domains; never raises for source failures."""
        tasks = [asyncio.create_task(self._fetch_one(d, region)) for d in DOMAINS]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        records: Dict[Domain, CanonicalSourceRecord] = {}
        for domain, result in zip(DOMAINS, results):
            if isinstance(result, asyncio.TimeoutError):
                result = ExternalServiceError(domain.value, f"timed out after {self.timeout}s")
            records[domain] = normalize_source(domain, result)
        return records

    async def assess(self, region: str, *, force_refresh: bool = False) -> CrisisAssessment:
        """
        Assess one monitored region.

        Raises ``ValidationError`` for regions that are not monitored.
        """
        name = resolve_region(region).name

        if self.cache is not None and not force_refresh:
            cached = await self.cache.get(name)
            if cached:
                try:
                    return CrisisAssessment.from_dict(cached)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning("Discarding unreadable cached assessment: %s", e,
                                   extra={"region": name})

        start = time.perf_counter()
        records = await self.collect(name)
        assessment = build_assessment(
            name, records,
            timestamp=utc_timestamp(self._now()),
            heuristics=self.heuristics,
        )
        duration_ms = round((time.perf_counter() - start) * 1000, 1)

        logger.info(
            "Assessed %s: %s (confidence %.2f, %d/4 sources)",
            name, assessment.overall_risk.value, assessment.confidence,
            assessment.available_count,
            extra={
                "region": name,
                "overall_risk": assessment.overall_risk.value,
                "confidence": round(assessment.confidence, 3),
                "data_quality": assessment.data_quality.value,
                "duration_ms": duration_ms,
            },
        )

        if self.cache is not None:
            await self.cache.set(name, assessment.to_dict())
        return assessment

    async def monitor_regions(
        self,
        regions: Optional[Sequence[str]] = None,
    ) -> List[CrisisAssessment]:
        """
        Assess several regions and rank them by overall risk.

        Unknown names raise before any fetch starts.  A region whose
        assessment fails unexpectedly is reported as an all-unavailable
        assessment instead of being dropped.
        """
        names = [resolve_region(r).name for r in (regions or [r.name for r in MONITORED_REGIONS])]
        results = await asyncio.gather(
            *(self.assess(name) for name in names), return_exceptions=True,
        )

        assessments: List[CrisisAssessment] = []
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.warning("Failed to assess %s: %s", name, result, extra={"region": name})
                result = build_assessment(
                    name,
                    {d: CanonicalSourceRecord.unavailable(d) for d in DOMAINS},
                    timestamp=utc_timestamp(self._now()),
                    heuristics=self.heuristics,
                )
            assessments.append(result)

        ranked = sort_by_risk(assessments)
        logger.info(
            "Monitored %d regions: %d critical, %d high",
            len(ranked),
            sum(1 for a in ranked if a.overall_risk is OverallRisk.CRITICAL),
            sum(1 for a in ranked if a.overall_risk is OverallRisk.HIGH),
        )
        return ranked
