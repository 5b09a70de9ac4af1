"""
Deep health probe.

Components:
    redis         cache connectivity
    ai_models     model chain configuration
    data_sources  upstream domain source configuration

Caching is optional and a missing source only lowers assessment
confidence, so those report DEGRADED.  Only an empty model chain makes the
service UNHEALTHY (and ``/health/ready`` answer 503).
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Tuple

from crisiswatch.app.core.cache import ping_redis
from crisiswatch.app.core.config import settings

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


_SEVERITY = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.UNHEALTHY: 2}


@dataclass(frozen=True)
class ComponentHealth:
    name: str
    status: HealthStatus
    message: str
    latency_ms: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "latencyMs": round(self.latency_ms, 2),
            "details": self.details,
        }


@dataclass(frozen=True)
class HealthReport:
    status: HealthStatus
    components: Tuple[ComponentHealth, ...]
    timestamp: str
    uptime_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "timestamp": self.timestamp,
            "uptimeSeconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


CheckResult = Tuple[HealthStatus, str, Dict[str, Any]]

_started = time.monotonic()


async def check_redis() -> CheckResult:
    details = {"url": settings.REDIS_URL.rsplit("@", 1)[-1], "enabled": settings.CACHE_ENABLED}
    if not settings.CACHE_ENABLED:
        return HealthStatus.DEGRADED, "Caching disabled", details
    if await ping_redis():
        return HealthStatus.HEALTHY, "Cache available", details
    return HealthStatus.DEGRADED, "Cache unreachable; serving uncached", details


async def check_ai_models() -> CheckResult:
    details = {
        "baseUrl": settings.AI_BASE_URL,
        "models": list(settings.AI_MODELS),
        "apiKeyConfigured": bool(settings.AI_API_KEY),
    }
    if not settings.AI_MODELS:
        return HealthStatus.UNHEALTHY, "No models configured", details
    if not settings.AI_API_KEY:
        return HealthStatus.DEGRADED, "No API key; analyses will use the heuristic fallback", details
    return HealthStatus.HEALTHY, f"{len(settings.AI_MODELS)} models in chain", details


async def check_data_sources() -> CheckResult:
    urls = settings.source_urls
    missing = [name for name, url in urls.items() if not url]
    details = {"configured": sorted(n for n in urls if n not in missing), "missing": missing}
    if missing:
        return HealthStatus.DEGRADED, f"Unconfigured sources: {', '.join(missing)}", details
    return HealthStatus.HEALTHY, "All sources configured", details


CHECKS: Dict[str, Callable[[], Awaitable[CheckResult]]] = {
    "redis": check_redis,
    "ai_models": check_ai_models,
    "data_sources": check_data_sources,
}


async def _timed(name: str, check: Callable[[], Awaitable[CheckResult]]) -> ComponentHealth:
    start = time.perf_counter()
    status, message, details = await check()
    latency = (time.perf_counter() - start) * 1000
    if status is not HealthStatus.HEALTHY:
        logger.warning("Health %s %s: %s", name, status.value, message)
    return ComponentHealth(name, status, message, latency, details)


def worst_status(statuses: List[HealthStatus]) -> HealthStatus:
    return max(statuses, key=_SEVERITY.__getitem__, default=HealthStatus.HEALTHY)


async def run_health_check() -> HealthReport:
    components = await asyncio.gather(*(_timed(n, c) for n, c in CHECKS.items()))
    return HealthReport(
        status=worst_status([c.status for c in components]),
        components=tuple(components),
        timestamp=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        uptime_seconds=time.monotonic() - _started,
    )
