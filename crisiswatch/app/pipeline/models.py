"""
models.py — Shared vocabulary of the crisis assessment pipeline.

Enums, fixed lookup tables and the immutable records that flow between the
pipeline stages:

    CanonicalSourceRecord   one per domain per assessment run
    RiskFactor              tagged risk factor (source + severity)
    DisplacementRisk        displacement sub-assessment
    CrisisAssessment        fused output, one per (region, timestamp)

Every record serialises to the camelCase JSON schema consumed by the
persistence and delivery collaborators via ``to_dict()`` and rebuilds an
equal value via ``from_dict()``.

Lookup tables keyed by an enum are checked for exhaustiveness at import
time, so adding an enum member without a table entry fails immediately
instead of silently falling back to a default.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Tuple, Type


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class Domain(str, Enum):
    """The four independent signal domains."""
    CONFLICT = "conflict"
    ECONOMIC = "economic"
    CLIMATE = "climate"
    NEWS = "news"


DOMAINS: Tuple[Domain, ...] = tuple(Domain)


class RiskLevel(str, Enum):
    """Per-source risk level."""
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    UNKNOWN = "UNKNOWN"


class OverallRisk(str, Enum):
    """Discretised output of the weighted risk score."""
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    MINIMAL = "MINIMAL"
    UNKNOWN = "UNKNOWN"


class DataQuality(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"


class Trend(str, Enum):
    STABLE = "stable"
    INCREASING = "increasing"
    DECREASING = "decreasing"
    WORSENING = "worsening"
    IMPROVING = "improving"
    DETERIORATING = "deteriorating"  # overall only
    UNKNOWN = "unknown"


# ═══════════════════════════════════════════════════════════════════════════
# Lookup Tables
# ═══════════════════════════════════════════════════════════════════════════

def exhaustive(table: Dict[Any, Any], enum_cls: Type[Enum]) -> Dict[Any, Any]:
    """Return ``table`` after checking it has exactly one entry per member."""
    missing = set(enum_cls) - set(table)
    extra = set(table) - set(enum_cls)
    if missing or extra:
        raise TypeError(
            f"Lookup table for {enum_cls.__name__} is not exhaustive: "
            f"missing={sorted(m.name for m in missing)} extra={sorted(map(str, extra))}"
        )
    return table


RISK_LEVEL_SCORES: Dict[RiskLevel, int] = exhaustive({
    RiskLevel.CRITICAL: 100,
    RiskLevel.HIGH: 75,
    RiskLevel.MEDIUM: 50,
    RiskLevel.LOW: 25,
    RiskLevel.UNKNOWN: 0,
}, RiskLevel)

# Domain weights (sum to 1.0)
DOMAIN_WEIGHTS: Dict[Domain, float] = exhaustive({
    Domain.CONFLICT: 0.35,  # most direct indicator
    Domain.NEWS: 0.25,      # real-time developments
    Domain.ECONOMIC: 0.25,  # underlying causes
    Domain.CLIMATE: 0.15,   # longer-term factors
}, Domain)

# Ordering used to sort and compare overall tiers
OVERALL_RISK_ORDER: Dict[OverallRisk, int] = exhaustive({
    OverallRisk.CRITICAL: 5,
    OverallRisk.HIGH: 4,
    OverallRisk.MEDIUM: 3,
    OverallRisk.LOW: 2,
    OverallRisk.MINIMAL: 1,
    OverallRisk.UNKNOWN: 0,
}, OverallRisk)


# Upstream vocabularies are not uniform; these words map onto RiskLevel.
RISK_LEVEL_ALIASES: Dict[str, RiskLevel] = {
    "EXTREME": RiskLevel.CRITICAL,
    "SEVERE": RiskLevel.CRITICAL,
    "VERY_HIGH": RiskLevel.HIGH,
    "ELEVATED": RiskLevel.HIGH,
    "MODERATE": RiskLevel.MEDIUM,
    "MINIMAL": RiskLevel.LOW,
    "MINOR": RiskLevel.LOW,
    "NONE": RiskLevel.LOW,
}


def parse_risk_level(value: Any) -> RiskLevel | None:
    """Map an upstream risk word to RiskLevel, or None if unrecognised."""
    if isinstance(value, RiskLevel):
        return value
    if not isinstance(value, str):
        return None
    word = value.strip().upper().replace(" ", "_").replace("-", "_")
    try:
        return RiskLevel(word)
    except ValueError:
        return RISK_LEVEL_ALIASES.get(word)


# ═══════════════════════════════════════════════════════════════════════════
# Records
# ═══════════════════════════════════════════════════════════════════════════

UNAVAILABLE_CONFIDENCE = 0.3

# Core keys of a serialised source record; anything else is a domain extra.
_RECORD_CORE_KEYS = ("riskLevel", "confidence", "score", "indicators", "available", "trends")


@dataclass(frozen=True)
class CanonicalSourceRecord:
    """
    Normalised, domain-agnostic view of one source's assessment.

    Attributes
    ----------
    domain : Domain
        Which signal domain produced the record.
    risk_level : RiskLevel
        Source-reported risk level.
    confidence : float
        Source confidence in [0, 1].
    score : float
        Non-negative intensity on a domain-specific scale.
    indicators : tuple of str
        Short text descriptors, in upstream order.
    available : bool
        False when the upstream source failed or returned nothing usable.
    trends : dict
        Domain-specific trend sub-fields, consumed by the trend analyzer.
    details : dict
        Domain extras (recentEvents, stability, hazards, sentiment, ...).
    """
    domain: Domain
    risk_level: RiskLevel
    confidence: float
    score: float
    indicators: Tuple[str, ...] = ()
    available: bool = True
    trends: Dict[str, Any] = field(default_factory=dict)
    details: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")
        if self.score < 0:
            raise ValueError(f"score must be non-negative: {self.score}")
        if not self.available and (
            self.risk_level is not RiskLevel.UNKNOWN
            or self.confidence > UNAVAILABLE_CONFIDENCE
        ):
            raise ValueError(
                "unavailable source must be UNKNOWN with confidence <= "
                f"{UNAVAILABLE_CONFIDENCE}"
            )

    @classmethod
    def unavailable(cls, domain: Domain) -> "CanonicalSourceRecord":
        return cls(
            domain=domain,
            risk_level=RiskLevel.UNKNOWN,
            confidence=UNAVAILABLE_CONFIDENCE,
            score=0.0,
            indicators=(f"No {domain.value} data available",),
            available=False,
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "riskLevel": self.risk_level.value,
            "confidence": self.confidence,
            "score": self.score,
            "indicators": list(self.indicators),
            "available": self.available,
            "trends": dict(self.trends),
        }
        for key, value in self.details.items():
            d.setdefault(key, value)
        return d

    @classmethod
    def from_dict(cls, domain: Domain | str, data: Mapping[str, Any]) -> "CanonicalSourceRecord":
        return cls(
            domain=Domain(domain),
            risk_level=RiskLevel(data["riskLevel"]),
            confidence=float(data["confidence"]),
            score=float(data["score"]),
            indicators=tuple(data.get("indicators", ())),
            available=bool(data["available"]),
            trends=dict(data.get("trends") or {}),
            details={k: v for k, v in data.items() if k not in _RECORD_CORE_KEYS},
        )


@dataclass(frozen=True)
class RiskFactor:
    """A risk factor tagged with the source that reported it."""
    source: str
    factor: str
    severity: str

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "factor": self.factor, "severity": self.severity}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RiskFactor":
        return cls(source=data["source"], factor=data["factor"], severity=data["severity"])


@dataclass(frozen=True)
class DisplacementRisk:
    """
    Displacement sub-assessment.

    ``estimated_numbers`` is an unvalidated heuristic, never a calibrated
    forecast.
    """
    level: RiskLevel
    confidence: float
    timeline_label: str
    estimated_numbers: int = 0
    primary_causes: Tuple[str, ...] = ()
    likely_destinations: Tuple[str, ...] = ()
    trigger_events: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "confidence": self.confidence,
            "timelineLabel": self.timeline_label,
            "estimatedNumbers": self.estimated_numbers,
            "primaryCauses": list(self.primary_causes),
            "likelyDestinations": list(self.likely_destinations),
            "triggerEvents": list(self.trigger_events),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DisplacementRisk":
        return cls(
            level=RiskLevel(data["level"]),
            confidence=float(data["confidence"]),
            timeline_label=data["timelineLabel"],
            estimated_numbers=int(data.get("estimatedNumbers", 0)),
            primary_causes=tuple(data.get("primaryCauses", ())),
            likely_destinations=tuple(data.get("likelyDestinations", ())),
            trigger_events=tuple(data.get("triggerEvents", ())),
        )


@dataclass(frozen=True)
class CrisisAssessment:
    """
    Fused assessment for one region at one point in time.

    Built once per monitoring cycle by the assessment service and never
    patched afterwards; the next cycle supersedes it with a new value.
    """
    region: str
    timestamp: str
    overall_risk: OverallRisk
    risk_score: float
    confidence: float
    data_quality: DataQuality
    sources: Dict[Domain, CanonicalSourceRecord]
    displacement_risk: DisplacementRisk
    trends: Dict[str, Trend]
    risk_factors: Tuple[RiskFactor, ...] = ()
    protective_factors: Tuple[str, ...] = ()
    immediate_threats: Tuple[str, ...] = ()
    emerging_concerns: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if set(self.sources) != set(DOMAINS):
            raise ValueError(f"sources must cover exactly {[d.value for d in DOMAINS]}")

    @property
    def data_availability(self) -> Dict[str, bool]:
        return {d.value: self.sources[d].available for d in DOMAINS}

    @property
    def available_count(self) -> int:
        return sum(1 for d in DOMAINS if self.sources[d].available)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "region": self.region,
            "timestamp": self.timestamp,
            "overallRisk": self.overall_risk.value,
            "riskScore": self.risk_score,
            "confidence": self.confidence,
            "dataQuality": self.data_quality.value,
            "sources": {d.value: self.sources[d].to_dict() for d in DOMAINS},
            "dataAvailability": self.data_availability,
            "riskFactors": [f.to_dict() for f in self.risk_factors],
            "protectiveFactors": list(self.protective_factors),
            "immediateThreats": list(self.immediate_threats),
            "emergingConcerns": list(self.emerging_concerns),
            "displacementRisk": self.displacement_risk.to_dict(),
            "trends": {k: v.value for k, v in self.trends.items()},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CrisisAssessment":
        return cls(
            region=data["region"],
            timestamp=data["timestamp"],
            overall_risk=OverallRisk(data["overallRisk"]),
            risk_score=float(data["riskScore"]),
            confidence=float(data["confidence"]),
            data_quality=DataQuality(data["dataQuality"]),
            sources={
                d: CanonicalSourceRecord.from_dict(d, data["sources"][d.value])
                for d in DOMAINS
            },
            displacement_risk=DisplacementRisk.from_dict(data["displacementRisk"]),
            trends={k: Trend(v) for k, v in data["trends"].items()},
            risk_factors=tuple(RiskFactor.from_dict(f) for f in data.get("riskFactors", ())),
            protective_factors=tuple(data.get("protectiveFactors", ())),
            immediate_threats=tuple(data.get("immediateThreats", ())),
            emerging_concerns=tuple(data.get("emergingConcerns", ())),
        )
