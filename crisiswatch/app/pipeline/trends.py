"""
trends.py — Per-domain trajectory classification.

    conflict   explicit flags: trends.increasing / trends.decreasing
    economic   any tracked indicator with trend "decreasing" → worsening
               (a falling economic indicator means a worse outcome)
    climate    explicit flags: trends.worsening / trends.improving
    news       urgency score > 50 → increasing
    any        unavailable → unknown

Overall: two or more domains moving the wrong way → deteriorating, two or
more improving → improving, nothing available → unknown, else stable.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Tuple

from crisiswatch.app.pipeline.models import (
    DOMAINS,
    CanonicalSourceRecord,
    Domain,
    Trend,
)

NEWS_URGENCY_THRESHOLD = 50.0
MIN_DOMAINS_FOR_OVERALL = 2

NEGATIVE_TRENDS = frozenset({Trend.INCREASING, Trend.WORSENING})
POSITIVE_TRENDS = frozenset({Trend.DECREASING, Trend.IMPROVING})

DETERIORATING_CONCERN = "Multiple indicators showing negative trends"
IMPROVING_FACTOR = "Multiple indicators showing positive trends"


@dataclass(frozen=True)
class TrendReport:
    trends: Dict[str, Trend]
    emerging_concerns: Tuple[str, ...] = ()
    protective_factors: Tuple[str, ...] = ()


def classify_conflict(record: CanonicalSourceRecord) -> Trend:
    if record.trends.get("increasing"):
        return Trend.INCREASING
    if record.trends.get("decreasing"):
        return Trend.DECREASING
    return Trend.STABLE


def classify_economic(record: CanonicalSourceRecord) -> Trend:
    for indicator in record.trends.values():
        if isinstance(indicator, Mapping) and indicator.get("trend") == "decreasing":
            return Trend.WORSENING
    return Trend.STABLE


def classify_climate(record: CanonicalSourceRecord) -> Trend:
    if record.trends.get("worsening"):
        return Trend.WORSENING
    if record.trends.get("improving"):
        return Trend.IMPROVING
    return Trend.STABLE


def classify_news(record: CanonicalSourceRecord) -> Trend:
    return Trend.INCREASING if record.score > NEWS_URGENCY_THRESHOLD else Trend.STABLE


_CLASSIFIERS = {
    Domain.CONFLICT: classify_conflict,
    Domain.ECONOMIC: classify_economic,
    Domain.CLIMATE: classify_climate,
    Domain.NEWS: classify_news,
}


def analyze_trends(sources: Mapping[Domain, CanonicalSourceRecord]) -> TrendReport:
    trends: Dict[str, Trend] = {}
    negative = positive = available = 0

    for domain in DOMAINS:
        record = sources[domain]
        if not record.available:
            trends[domain.value] = Trend.UNKNOWN
            continue
        available += 1
        trend = _CLASSIFIERS[domain](record)
        trends[domain.value] = trend
        if trend in NEGATIVE_TRENDS:
            negative += 1
        elif trend in POSITIVE_TRENDS:
            positive += 1

    concerns: Tuple[str, ...] = ()
    protective: Tuple[str, ...] = ()
    if available == 0:
        overall = Trend.UNKNOWN
    elif negative >= MIN_DOMAINS_FOR_OVERALL:
        overall = Trend.DETERIORATING
        concerns = (DETERIORATING_CONCERN,)
    elif positive >= MIN_DOMAINS_FOR_OVERALL:
        overall = Trend.IMPROVING
        protective = (IMPROVING_FACTOR,)
    else:
        overall = Trend.STABLE

    trends["overall"] = overall
    return TrendReport(trends=trends, emerging_concerns=concerns, protective_factors=protective)
