"""
Shared fixtures and fakes for the pipeline tests.

Nothing here touches the network or Redis: sources, caches, model
transports and the clock are all in-memory fakes.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from crisiswatch.app.core.errors import ModelCallError
from crisiswatch.app.pipeline.models import (
    DOMAINS,
    CanonicalSourceRecord,
    Domain,
    RiskLevel,
)


# ═══════════════════════════════════════════════════════════════════════════
# Builders
# ═══════════════════════════════════════════════════════════════════════════

def record(
    domain: Domain,
    level: Optional[RiskLevel],
    *,
    score: float = 0.0,
    confidence: float = 0.8,
    indicators=(),
    trends: Optional[Dict[str, Any]] = None,
    details: Optional[Dict[str, Any]] = None,
) -> CanonicalSourceRecord:
    """``level=None`` builds an unavailable record."""
    if level is None:
        return CanonicalSourceRecord.unavailable(domain)
    return CanonicalSourceRecord(
        domain=domain,
        risk_level=level,
        confidence=confidence,
        score=score,
        indicators=tuple(indicators),
        trends=trends or {},
        details=details or {},
    )


def sources(
    conflict: Optional[RiskLevel] = None,
    economic: Optional[RiskLevel] = None,
    climate: Optional[RiskLevel] = None,
    news: Optional[RiskLevel] = None,
) -> Dict[Domain, CanonicalSourceRecord]:
    levels = {
        Domain.CONFLICT: conflict,
        Domain.ECONOMIC: economic,
        Domain.CLIMATE: climate,
        Domain.NEWS: news,
    }
    return {d: record(d, levels[d]) for d in DOMAINS}


# Raw upstream payloads for a region in acute crisis
CONFLICT_PAYLOAD = {
    "conflictLevel": "HIGH",
    "confidence": 0.85,
    "intensityScore": 40,
    "threatIndicators": ["Shelling in urban areas", {"indicator": "Militia mobilisation"}],
    "recentEvents": [{"type": "battle", "fatalities": 12}],
    "trends": {"increasing": True},
}
ECONOMIC_PAYLOAD = {
    "displacementRisk": {
        "riskLevel": "MEDIUM",
        "confidence": 70,
        "riskScore": 55,
        "riskFactors": [{"factor": "Currency depreciation"}],
    },
    "analysis": {
        "overallStability": "unstable",
        "trends": {"gdp": {"trend": "decreasing"}, "inflation": {"trend": "increasing"}},
    },
}
CLIMATE_PAYLOAD = {
    "displacementRisk": {
        "riskLevel": "LOW",
        "confidence": 0.6,
        "estimatedAffected": 1200,
        "factors": ["Seasonal rainfall deficit"],
    },
    "activeHazards": [
        {"type": "flood", "severity": "MEDIUM"},
    ],
    "climateTrends": {"worsening": False},
}
NEWS_PAYLOAD = {
    "crisisLevel": "MEDIUM",
    "confidence": 0.7,
    "urgencyScore": 65,
    "keyIndicators": ["Reports of mass movement"],
    "sentiment": "Negative",
    "mediaAttention": "High",
    "breakingNews": [],
}

PAYLOADS = {
    Domain.CONFLICT: CONFLICT_PAYLOAD,
    Domain.ECONOMIC: ECONOMIC_PAYLOAD,
    Domain.CLIMATE: CLIMATE_PAYLOAD,
    Domain.NEWS: NEWS_PAYLOAD,
}


# ═══════════════════════════════════════════════════════════════════════════
# Fakes
# ═══════════════════════════════════════════════════════════════════════════

class FakeCache:
    """In-memory stand-in for RegionCache."""

    def __init__(self):
        self.store: Dict[str, Any] = {}
        self.sets = 0

    async def get(self, region: str) -> Optional[Any]:
        return self.store.get(region.lower())

    async def set(self, region: str, value: Any) -> bool:
        self.store[region.lower()] = value
        self.sets += 1
        return True

    async def delete(self, region: str) -> bool:
        return self.store.pop(region.lower(), None) is not None

    async def clear(self) -> int:
        n = len(self.store)
        self.store.clear()
        return n


class StaticFetcher:
    def __init__(self, payload: Any):
        self.payload = payload
        self.calls: List[str] = []

    async def fetch(self, region: str) -> Any:
        self.calls.append(region)
        return self.payload


class FailingFetcher:
    def __init__(self, exc: Exception):
        self.exc = exc

    async def fetch(self, region: str) -> Any:
        raise self.exc


class SlowFetcher:
    def __init__(self, delay: float, payload: Any = None):
        self.delay = delay
        self.payload = payload

    async def fetch(self, region: str) -> Any:
        await asyncio.sleep(self.delay)
        return self.payload


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedTransport:
    """
    Model transport driven by a per-model script.

    Each script entry is a string (returned as the completion), an
    exception instance (raised), or ``"timeout"``, which advances the fake
    clock by ``timeout`` and raises ``asyncio.TimeoutError``.  The last
    entry repeats once the script runs out.
    """

    def __init__(self, scripts: Dict[str, List[Any]], clock: FakeClock, timeout: float):
        self.scripts = scripts
        self.clock = clock
        self.timeout = timeout
        self.calls: List[str] = []

    async def complete(self, spec, messages) -> str:
        self.calls.append(spec.model_id)
        script = self.scripts[spec.model_id]
        n = sum(1 for m in self.calls if m == spec.model_id)
        step = script[min(n, len(script)) - 1]
        if isinstance(step, str) and step == "timeout":
            self.clock.now += self.timeout
            raise asyncio.TimeoutError()
        if isinstance(step, BaseException):
            raise step
        return step


def non_retryable(model: str) -> ModelCallError:
    return ModelCallError(model, "HTTP 401", retryable=False, status_code=401)


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def fake_cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
