"""
displacement.py — Heuristic displacement-risk predictor.

Scans the canonical source records for displacement-triggering patterns:

    Source     Trigger                               Estimate contribution
    ────────   ───────────────────────────────────   ─────────────────────
    conflict   riskLevel HIGH or CRITICAL            score × 500, immediate
    economic   riskLevel HIGH or CRITICAL            score × 300, short-term
    climate    each hazard with severity CRITICAL    +10,000,     immediate
    news       CRITICAL with breaking news items     none,        immediate

The number of triggered factors sets the level:

    ≥ 3 factors, or armed conflict triggered → CRITICAL, 1-4 weeks
    2 factors                                → HIGH,     1-3 months
    1 factor                                 → MEDIUM,   3-6 months
    0 factors                                → LOW,      6+ months

Known limitation: the numeric estimate is an uncalibrated heuristic built
from fixed multipliers.  It is useful for ranking and plan sizing, not as a
forecast of how many people will move.  All multipliers live in
``DisplacementHeuristics`` so deployments can tune them.

Likely destinations come from a static origin → neighbouring-countries
table; they are not derived from the signals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Tuple

from crisiswatch.app.pipeline.models import (
    CanonicalSourceRecord,
    DisplacementRisk,
    Domain,
    RiskLevel,
)

logger = logging.getLogger(__name__)

ARMED_CONFLICT_TRIGGER = "Armed conflict escalation"

MAX_LISTED_CAUSES = 3

DESTINATIONS: Dict[str, Tuple[str, ...]] = {
    "sudan": ("Chad", "Egypt", "Ethiopia", "South Sudan"),
    "myanmar": ("Bangladesh", "Thailand", "India", "Malaysia"),
    "syria": ("Turkey", "Lebanon", "Jordan", "Germany"),
    "yemen": ("Saudi Arabia", "Oman", "Djibouti", "Somalia"),
    "afghanistan": ("Pakistan", "Iran", "Turkey", "Tajikistan"),
    "bangladesh": ("India", "Myanmar", "Internal displacement"),
    "ethiopia": ("Sudan", "Kenya", "Djibouti", "Somalia"),
    "chad": ("Cameroon", "Central African Republic", "Niger"),
    "iraq": ("Turkey", "Iran", "Jordan", "Syria"),
    "somalia": ("Kenya", "Ethiopia", "Yemen", "Uganda"),
}
DEFAULT_DESTINATIONS: Tuple[str, ...] = ("Neighboring countries", "Regional destinations")


@dataclass(frozen=True)
class DisplacementHeuristics:
    """Tunable constants; none of them is empirically calibrated."""
    conflict_multiplier: float = 500.0
    economic_multiplier: float = 300.0
    climate_hazard_base: int = 10_000
    # (level, confidence, timeline) for factor counts ≥3 / 2 / 1 / 0
    levels: Tuple[Tuple[RiskLevel, float, str], ...] = field(default=(
        (RiskLevel.CRITICAL, 0.9, "1-4 weeks"),
        (RiskLevel.HIGH, 0.8, "1-3 months"),
        (RiskLevel.MEDIUM, 0.7, "3-6 months"),
        (RiskLevel.LOW, 0.6, "6+ months"),
    ))


DEFAULT_HEURISTICS = DisplacementHeuristics()


def predict_destinations(region: str) -> Tuple[str, ...]:
    """Look up likely destination countries for an origin region."""
    return DESTINATIONS.get(region.strip().lower(), DEFAULT_DESTINATIONS)


def _is_high(record: CanonicalSourceRecord) -> bool:
    return record.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL)


def predict_displacement(
    sources: Mapping[Domain, CanonicalSourceRecord],
    region: str,
    heuristics: DisplacementHeuristics = DEFAULT_HEURISTICS,
) -> DisplacementRisk:
    """
    Build the displacement sub-assessment from the canonical records.

    Unavailable sources never trigger.  The estimate is always ≥ 0.
    """
    factors: List[str] = []
    triggers: List[str] = []
    timeline_hints: List[str] = []
    estimate = 0.0

    conflict = sources[Domain.CONFLICT]
    if conflict.available and _is_high(conflict):
        factors.append(f"Armed conflict escalation ({conflict.risk_level.value})")
        estimate += conflict.score * heuristics.conflict_multiplier
        timeline_hints.append("immediate")
        triggers.append(ARMED_CONFLICT_TRIGGER)

    economic = sources[Domain.ECONOMIC]
    if economic.available and _is_high(economic):
        factors.append(f"Economic crisis ({economic.risk_level.value})")
        estimate += economic.score * heuristics.economic_multiplier
        timeline_hints.append("short-term")
        triggers.append("Economic collapse")

    climate = sources[Domain.CLIMATE]
    if climate.available:
        for hazard in climate.details.get("hazards", ()):
            if str(hazard.get("severity", "")).upper() != RiskLevel.CRITICAL.value:
                continue
            hazard_type = str(hazard.get("type") or "unspecified hazard")
            factors.append(f"Climate disaster: {hazard_type}")
            estimate += heuristics.climate_hazard_base
            timeline_hints.append("immediate")
            triggers.append(hazard_type)

    news = sources[Domain.NEWS]
    if (
        news.available
        and news.risk_level is RiskLevel.CRITICAL
        and news.details.get("breakingNews")
    ):
        factors.append("Breaking news indicates crisis escalation")
        timeline_hints.append("immediate")
        triggers.append("Media reports of crisis escalation")

    if len(factors) >= 3 or ARMED_CONFLICT_TRIGGER in triggers:
        level, confidence, timeline = heuristics.levels[0]
    elif len(factors) == 2:
        level, confidence, timeline = heuristics.levels[1]
    elif len(factors) == 1:
        level, confidence, timeline = heuristics.levels[2]
    else:
        level, confidence, timeline = heuristics.levels[3]

    result = DisplacementRisk(
        level=level,
        confidence=confidence,
        timeline_label=timeline,
        estimated_numbers=max(0, int(round(estimate))),
        primary_causes=tuple(factors[:MAX_LISTED_CAUSES]),
        likely_destinations=predict_destinations(region),
        trigger_events=tuple(triggers[:MAX_LISTED_CAUSES]),
    )
    logger.debug(
        "Displacement for %s: %s (%d factors, ~%d people, hints=%s)",
        region, level.value, len(factors), result.estimated_numbers, timeline_hints,
        extra={"region": region},
    )
    return result
