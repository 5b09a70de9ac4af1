"""
risk_aggregator.py — Multi-source Crisis Risk Aggregation Engine.

Combines the four canonical source records into one overall risk tier:

    • Conflict indicators     (armed-conflict monitoring)
    • Economic indicators     (macroeconomic stress)
    • Climate indicators      (natural hazards)
    • News coverage           (media urgency)

Produces:
    • overall_risk            (CRITICAL / HIGH / MEDIUM / LOW / MINIMAL / UNKNOWN)
    • risk_score              (0–100, completeness adjusted)
    • confidence              (0–1, bounded by data completeness)
    • data_quality            (EXCELLENT / GOOD / FAIR / POOR)
    • tagged risk factors, protective factors, immediate threats

═══════════════════════════════════════════════════════════════════════════
MATHEMATICAL WEIGHTING FORMULA
═══════════════════════════════════════════════════════════════════════════

    Step 1 — Map each source's risk level to a number:

        CRITICAL = 100   HIGH = 75   MEDIUM = 50   LOW = 25   UNKNOWN = 0

    Step 2 — Weighted sum over AVAILABLE sources only:

        R_w = Σ_available  w_d · S_d

        w_conflict = 0.35   w_news = 0.25   w_economic = 0.25   w_climate = 0.15

    Step 3 — Completeness penalty:

        completeness = n_available / 4
        risk_score   = R_w × completeness

        Sparse data lowers the score instead of letting one or two sources
        dominate the result.

    Step 4 — Threshold:

        risk_score   ≥ 80 → CRITICAL
                     ≥ 60 → HIGH
                     ≥ 40 → MEDIUM
                     ≥ 20 → LOW
                     else → MINIMAL
        n_available = 0   → UNKNOWN

    Step 5 — Critical override:

        If ANY available source reports CRITICAL, overall_risk = CRITICAL
        and an immediate-threat note is recorded, whatever the weighted
        score says.

    Worked example (conflict HIGH, economic unavailable, climate LOW,
    news MEDIUM):

        R_w          = 0.35·75 + 0.25·50 + 0.15·25 = 42.5
        completeness = 3 / 4                       = 0.75
        risk_score   = 42.5 × 0.75                 = 31.875  → LOW

═══════════════════════════════════════════════════════════════════════════
CONFIDENCE
═══════════════════════════════════════════════════════════════════════════

    confidence = min(cap, base + 0.06 · n_available) × completeness

    Tier (from the weighted score)   base    cap
    ──────────────────────────────   ────    ────
    CRITICAL                         0.70    0.95
    HIGH                             0.65    0.90
    MEDIUM                           0.60    0.85
    LOW                              0.55    0.80
    MINIMAL                          0.50    0.75

Higher tiers are capped higher: strong signals are easier to be confident
about.  The completeness factor keeps confidence ≤ the availability ratio.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Tuple

from crisiswatch.app.pipeline.models import (
    DOMAIN_WEIGHTS,
    DOMAINS,
    RISK_LEVEL_SCORES,
    CanonicalSourceRecord,
    DataQuality,
    Domain,
    OverallRisk,
    RiskFactor,
    RiskLevel,
    exhaustive,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Constants — Tunable Parameters
# ═══════════════════════════════════════════════════════════════════════════

TOTAL_SOURCES = len(DOMAINS)

# Escalation thresholds (0–100 scale)
THRESHOLD_CRITICAL = 80.0
THRESHOLD_HIGH = 60.0
THRESHOLD_MEDIUM = 40.0
THRESHOLD_LOW = 20.0

CONFIDENCE_PER_SOURCE = 0.06

# (base, cap) per computed tier
CONFIDENCE_TIERS: Dict[OverallRisk, Tuple[float, float]] = {
    OverallRisk.CRITICAL: (0.70, 0.95),
    OverallRisk.HIGH: (0.65, 0.90),
    OverallRisk.MEDIUM: (0.60, 0.85),
    OverallRisk.LOW: (0.55, 0.80),
    OverallRisk.MINIMAL: (0.50, 0.75),
}

# Completeness ratio → data quality (first match wins)
DATA_QUALITY_BANDS: Tuple[Tuple[float, DataQuality], ...] = (
    (0.75, DataQuality.EXCELLENT),
    (0.50, DataQuality.GOOD),
    (0.25, DataQuality.FAIR),
    (0.0, DataQuality.POOR),
)

CRITICAL_OVERRIDE_NOTE = "Critical alert from one or more monitoring sources"

# Protective conditions, checked only for sources reporting LOW
PROTECTIVE_FACTOR_TEXT = exhaustive({
    Domain.CONFLICT: "Conflict situation stable",
    Domain.ECONOMIC: "Economic stability maintained",
    Domain.CLIMATE: None,  # no protective condition defined for climate
    Domain.NEWS: "Positive media sentiment",
}, Domain)


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RiskSummary:
    """
    Risk/confidence/factor part of a CrisisAssessment.

    Displacement and trend fields are filled by their own stages; the
    assessment service composes all three.
    """
    overall_risk: OverallRisk
    risk_score: float
    weighted_sum: float
    completeness: float
    available_count: int
    confidence: float
    data_quality: DataQuality
    critical_override: bool
    risk_factors: Tuple[RiskFactor, ...] = ()
    protective_factors: Tuple[str, ...] = ()
    immediate_threats: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        return {
            "overallRisk": self.overall_risk.value,
            "riskScore": round(self.risk_score, 4),
            "formulaComponents": {
                "weightedSum": round(self.weighted_sum, 4),
                "completeness": self.completeness,
                "availableSources": self.available_count,
                "criticalOverride": self.critical_override,
                "weights": {d.value: w for d, w in DOMAIN_WEIGHTS.items()},
            },
            "confidence": round(self.confidence, 4),
            "dataQuality": self.data_quality.value,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Classification
# ═══════════════════════════════════════════════════════════════════════════

def classify_overall_risk(score: float, available_count: int = TOTAL_SOURCES) -> OverallRisk:
    """
    Map a completeness-adjusted score (0–100) to an overall tier.

    Examples
    --------
    >>> classify_overall_risk(85.0)
    <OverallRisk.CRITICAL: 'CRITICAL'>
    >>> classify_overall_risk(31.875)
    <OverallRisk.LOW: 'LOW'>
    >>> classify_overall_risk(0.0, available_count=0)
    <OverallRisk.UNKNOWN: 'UNKNOWN'>
    """
    if available_count <= 0:
        return OverallRisk.UNKNOWN
    if score >= THRESHOLD_CRITICAL:
        return OverallRisk.CRITICAL
    if score >= THRESHOLD_HIGH:
        return OverallRisk.HIGH
    if score >= THRESHOLD_MEDIUM:
        return OverallRisk.MEDIUM
    if score >= THRESHOLD_LOW:
        return OverallRisk.LOW
    return OverallRisk.MINIMAL


def classify_data_quality(available_count: int, total: int = TOTAL_SOURCES) -> DataQuality:
    """Map the source availability ratio to a data-quality label."""
    ratio = available_count / total if total else 0.0
    for lower, quality in DATA_QUALITY_BANDS:
        if ratio >= lower:
            return quality
    return DataQuality.POOR


def compute_confidence(tier: OverallRisk, available_count: int) -> float:
    """
    Tiered confidence scaled by completeness.  Zero sources → 0.0.
    """
    if available_count <= 0 or tier is OverallRisk.UNKNOWN:
        return 0.0
    base, cap = CONFIDENCE_TIERS[tier]
    completeness = available_count / TOTAL_SOURCES
    raw = min(cap, base + available_count * CONFIDENCE_PER_SOURCE)
    return max(0.0, min(1.0, raw * completeness))


# ═══════════════════════════════════════════════════════════════════════════
# Factor Collection
# ═══════════════════════════════════════════════════════════════════════════

def collect_risk_factors(
    sources: Mapping[Domain, CanonicalSourceRecord],
) -> List[RiskFactor]:
    """Every available source's indicators, tagged with source and severity."""
    factors: List[RiskFactor] = []
    for domain in DOMAINS:
        record = sources[domain]
        if not record.available:
            continue
        factors.extend(
            RiskFactor(source=domain.value, factor=text, severity=record.risk_level.value)
            for text in record.indicators
        )
    return factors


def _is_protective(domain: Domain, record: CanonicalSourceRecord) -> bool:
    if domain is Domain.ECONOMIC:
        return record.details.get("stability") == "STABLE"
    if domain is Domain.CONFLICT:
        return bool(record.trends.get("stable"))
    if domain is Domain.NEWS:
        return record.details.get("sentiment") == "positive"
    return False


def collect_protective_factors(
    sources: Mapping[Domain, CanonicalSourceRecord],
) -> List[str]:
    """Protective factors come only from available sources reporting LOW."""
    factors: List[str] = []
    for domain in DOMAINS:
        record = sources[domain]
        text = PROTECTIVE_FACTOR_TEXT[domain]
        if (
            text
            and record.available
            and record.risk_level is RiskLevel.LOW
            and _is_protective(domain, record)
        ):
            factors.append(text)
    return factors


# ═══════════════════════════════════════════════════════════════════════════
# Core Aggregation Engine
# ═══════════════════════════════════════════════════════════════════════════

def aggregate_sources(
    sources: Mapping[Domain, CanonicalSourceRecord],
    *,
    weights: Mapping[Domain, float] = DOMAIN_WEIGHTS,
) -> RiskSummary:
    """
    Fuse the four canonical records into a RiskSummary.

    Parameters
    ----------
    sources : mapping Domain → CanonicalSourceRecord
        Must contain all four domains; unavailable ones are skipped.
    weights : mapping Domain → float
        Per-domain weights (default: DOMAIN_WEIGHTS).

    Returns
    -------
    RiskSummary
    """
    missing = [d.value for d in DOMAINS if d not in sources]
    if missing:
        raise ValueError(f"missing source records: {missing}")

    available = [d for d in DOMAINS if sources[d].available]
    n_available = len(available)

    # ---- Steps 1–2: weighted sum over available sources ----
    weighted_sum = sum(
        RISK_LEVEL_SCORES[sources[d].risk_level] * weights[d] for d in available
    )

    # ---- Step 3: completeness penalty ----
    completeness = n_available / TOTAL_SOURCES
    risk_score = weighted_sum * completeness

    # ---- Step 4: threshold ----
    tier = classify_overall_risk(risk_score, n_available)
    confidence = compute_confidence(tier, n_available)

    # ---- Step 5: critical override ----
    immediate_threats: List[str] = []
    critical_override = any(
        sources[d].risk_level is RiskLevel.CRITICAL for d in available
    )
    overall = tier
    if critical_override:
        overall = OverallRisk.CRITICAL
        immediate_threats.append(CRITICAL_OVERRIDE_NOTE)

    summary = RiskSummary(
        overall_risk=overall,
        risk_score=risk_score,
        weighted_sum=weighted_sum,
        completeness=completeness,
        available_count=n_available,
        confidence=confidence,
        data_quality=classify_data_quality(n_available),
        critical_override=critical_override,
        risk_factors=tuple(collect_risk_factors(sources)),
        protective_factors=tuple(collect_protective_factors(sources)),
        immediate_threats=tuple(immediate_threats),
    )

    logger.debug(
        "Aggregated %d/%d sources: score=%.2f tier=%s overall=%s",
        n_available, TOTAL_SOURCES, risk_score, tier.value, overall.value,
    )
    return summary
