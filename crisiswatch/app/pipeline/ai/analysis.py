"""
AIAnalysis records.

``AnalysisDraft`` is what a model (or the repair/fallback path) produces;
``AIAnalysis`` wraps a draft with the metadata, the comparison against the
heuristic assessment and the derived insights.  Both serialise to the
camelCase JSON schema used by the persistence and delivery collaborators.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class AIRisk(str, Enum):
    """AI risk vocabulary; deliberately has no UNKNOWN member."""
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Agreement(str, Enum):
    PERFECT = "PERFECT"
    HIGH = "HIGH"
    MODERATE = "MODERATE"
    LOW = "LOW"


def _strs(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(v) for v in value if v is not None)


def _count(value: Any) -> int:
    """Non-negative whole number; anything non-finite or unparseable is 0."""
    if isinstance(value, bool):
        return 0
    try:
        number = float(value or 0)
    except (TypeError, ValueError, OverflowError):
        return 0
    if not math.isfinite(number):
        return 0
    return max(0, int(number))


@dataclass(frozen=True)
class DisplacementPrediction:
    likelihood: str = "MEDIUM"  # VERY_HIGH | HIGH | MEDIUM | LOW
    timeframe: str = "2-6 months"
    estimated_population: int = 0
    primary_triggers: Tuple[str, ...] = ()
    likely_destinations: Tuple[str, ...] = ()
    displacement_type: str = "gradual_exodus"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "likelihood": self.likelihood,
            "timeframe": self.timeframe,
            "estimatedPopulation": self.estimated_population,
            "primaryTriggers": list(self.primary_triggers),
            "likelyDestinations": list(self.likely_destinations),
            "displacementType": self.displacement_type,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DisplacementPrediction":
        return cls(
            likelihood=str(data.get("likelihood") or "MEDIUM").upper(),
            timeframe=str(data.get("timeframe") or "2-6 months"),
            estimated_population=_count(data.get("estimatedPopulation")),
            primary_triggers=_strs(data.get("primaryTriggers")),
            likely_destinations=_strs(data.get("likelyDestinations")),
            displacement_type=str(data.get("displacementType") or "gradual_exodus"),
        )


@dataclass(frozen=True)
class CriticalFactor:
    factor: str
    severity: str
    trend: str
    impact: str

    def to_dict(self) -> Dict[str, Any]:
        return {"factor": self.factor, "severity": self.severity,
                "trend": self.trend, "impact": self.impact}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CriticalFactor":
        return cls(
            factor=str(data.get("factor", "")),
            severity=str(data.get("severity", "MEDIUM")),
            trend=str(data.get("trend", "stable")),
            impact=str(data.get("impact", "")),
        )


@dataclass(frozen=True)
class EarlyWarning:
    immediate_threats: Tuple[str, ...] = ()
    emerging_concerns: Tuple[str, ...] = ()
    time_to_action: str = "days"
    urgency: str = "medium"  # immediate | high | medium | low

    def to_dict(self) -> Dict[str, Any]:
        return {
            "immediateThreats": list(self.immediate_threats),
            "emergingConcerns": list(self.emerging_concerns),
            "timeToAction": self.time_to_action,
            "urgency": self.urgency,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EarlyWarning":
        return cls(
            immediate_threats=_strs(data.get("immediateThreats")),
            emerging_concerns=_strs(data.get("emergingConcerns")),
            time_to_action=str(data.get("timeToAction") or "days"),
            urgency=str(data.get("urgency") or "medium").lower(),
        )


@dataclass(frozen=True)
class Recommendations:
    immediate: Tuple[str, ...] = ()
    short_term: Tuple[str, ...] = ()
    long_term: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "immediate": list(self.immediate),
            "shortTerm": list(self.short_term),
            "longTerm": list(self.long_term),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Recommendations":
        return cls(
            immediate=_strs(data.get("immediate")),
            short_term=_strs(data.get("shortTerm")),
            long_term=_strs(data.get("longTerm")),
        )


@dataclass(frozen=True)
class DataQualityAssessment:
    reliability: str = "medium"
    completeness: str = "fair"
    freshness: str = "current"
    gaps: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reliability": self.reliability,
            "completeness": self.completeness,
            "freshness": self.freshness,
            "gaps": list(self.gaps),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DataQualityAssessment":
        return cls(
            reliability=str(data.get("reliability") or "medium"),
            completeness=str(data.get("completeness") or "fair"),
            freshness=str(data.get("freshness") or "current"),
            gaps=_strs(data.get("gaps")),
        )


@dataclass(frozen=True)
class AnalysisDraft:
    """The model-produced part of an analysis."""
    ai_risk_assessment: AIRisk
    confidence: float
    reasoning: str
    key_findings: Tuple[str, ...] = ()
    displacement_prediction: DisplacementPrediction = DisplacementPrediction()
    critical_factors: Tuple[CriticalFactor, ...] = ()
    early_warning: EarlyWarning = EarlyWarning()
    recommendations: Recommendations = Recommendations()
    data_quality_assessment: DataQualityAssessment = DataQualityAssessment()

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "aiRiskAssessment": self.ai_risk_assessment.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "keyFindings": list(self.key_findings),
            "displacementPrediction": self.displacement_prediction.to_dict(),
            "criticalFactors": [f.to_dict() for f in self.critical_factors],
            "earlyWarning": self.early_warning.to_dict(),
            "recommendations": self.recommendations.to_dict(),
            "dataQualityAssessment": self.data_quality_assessment.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AnalysisDraft":
        """Strict on the four required fields, lenient on everything else."""
        return cls(
            ai_risk_assessment=AIRisk(data["aiRiskAssessment"]),
            confidence=float(data["confidence"]),
            reasoning=str(data["reasoning"]),
            key_findings=_strs(data.get("keyFindings")),
            displacement_prediction=DisplacementPrediction.from_dict(
                data.get("displacementPrediction") or {}
            ),
            critical_factors=tuple(
                CriticalFactor.from_dict(f)
                for f in data.get("criticalFactors") or ()
                if isinstance(f, Mapping)
            ),
            early_warning=EarlyWarning.from_dict(_mapping(data.get("earlyWarning"))),
            recommendations=Recommendations.from_dict(_mapping(data.get("recommendations"))),
            data_quality_assessment=DataQualityAssessment.from_dict(
                _mapping(data.get("dataQualityAssessment"))
            ),
        )


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


@dataclass(frozen=True)
class AnalysisMetadata:
    analysis_timestamp: str
    model_used: str
    region: str
    original_risk_level: str
    data_source_count: int
    analysis_version: str
    parse_status: str  # valid | repaired | fallback
    attempts: int
    elapsed_seconds: float
    warnings: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "analysisTimestamp": self.analysis_timestamp,
            "modelUsed": self.model_used,
            "region": self.region,
            "originalRiskLevel": self.original_risk_level,
            "dataSourceCount": self.data_source_count,
            "analysisVersion": self.analysis_version,
            "parseStatus": self.parse_status,
            "attempts": self.attempts,
            "elapsedSeconds": self.elapsed_seconds,
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AnalysisMetadata":
        return cls(
            analysis_timestamp=data["analysisTimestamp"],
            model_used=data["modelUsed"],
            region=data["region"],
            original_risk_level=data["originalRiskLevel"],
            data_source_count=int(data["dataSourceCount"]),
            analysis_version=data["analysisVersion"],
            parse_status=data["parseStatus"],
            attempts=int(data["attempts"]),
            elapsed_seconds=float(data["elapsedSeconds"]),
            warnings=tuple(data.get("warnings", ())),
        )


@dataclass(frozen=True)
class Comparison:
    system_risk: str
    ai_risk: str
    agreement: Agreement
    system_confidence: float
    ai_confidence: float
    confidence_delta: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "systemRisk": self.system_risk,
            "aiRisk": self.ai_risk,
            "agreement": self.agreement.value,
            "systemConfidence": self.system_confidence,
            "aiConfidence": self.ai_confidence,
            "confidenceDelta": self.confidence_delta,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Comparison":
        return cls(
            system_risk=data["systemRisk"],
            ai_risk=data["aiRisk"],
            agreement=Agreement(data["agreement"]),
            system_confidence=float(data["systemConfidence"]),
            ai_confidence=float(data["aiConfidence"]),
            confidence_delta=float(data["confidenceDelta"]),
        )


@dataclass(frozen=True)
class RiskEscalation:
    risk: str  # HIGH | MEDIUM | LOW
    factors: Tuple[str, ...]
    timeframe: str
    escalate: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"risk": self.risk, "factors": list(self.factors),
                "timeframe": self.timeframe, "escalate": self.escalate}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RiskEscalation":
        return cls(
            risk=data["risk"],
            factors=tuple(data.get("factors", ())),
            timeframe=data["timeframe"],
            escalate=bool(data["escalate"]),
        )


@dataclass(frozen=True)
class ActionableItem:
    action: str
    priority: str
    timeframe: str

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action, "priority": self.priority, "timeframe": self.timeframe}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ActionableItem":
        return cls(action=data["action"], priority=data["priority"], timeframe=data["timeframe"])


@dataclass(frozen=True)
class Insights:
    risk_escalation: RiskEscalation
    priority_score: int
    actionable_items: Tuple[ActionableItem, ...]
    time_to_review: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "riskEscalation": self.risk_escalation.to_dict(),
            "priorityScore": self.priority_score,
            "actionableItems": [i.to_dict() for i in self.actionable_items],
            "timeToReview": self.time_to_review,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Insights":
        return cls(
            risk_escalation=RiskEscalation.from_dict(data["riskEscalation"]),
            priority_score=int(data["priorityScore"]),
            actionable_items=tuple(ActionableItem.from_dict(i) for i in data.get("actionableItems", ())),
            time_to_review=data["timeToReview"],
        )


@dataclass(frozen=True)
class AIAnalysis:
    """A draft plus everything the orchestrator derives around it."""
    draft: AnalysisDraft
    metadata: AnalysisMetadata
    comparison: Comparison
    insights: Insights

    @property
    def ai_risk_assessment(self) -> AIRisk:
        return self.draft.ai_risk_assessment

    @property
    def confidence(self) -> float:
        return self.draft.confidence

    @property
    def model_used(self) -> str:
        return self.metadata.model_used

    @property
    def is_fallback(self) -> bool:
        return self.metadata.parse_status == "fallback"

    def to_dict(self) -> Dict[str, Any]:
        d = self.draft.to_dict()
        d["metadata"] = self.metadata.to_dict()
        d["comparison"] = self.comparison.to_dict()
        d["insights"] = self.insights.to_dict()
        return d

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AIAnalysis":
        return cls(
            draft=AnalysisDraft.from_dict(data),
            metadata=AnalysisMetadata.from_dict(data["metadata"]),
            comparison=Comparison.from_dict(data["comparison"]),
            insights=Insights.from_dict(data["insights"]),
        )


def estimated_population(analysis: Optional[AIAnalysis]) -> int:
    """The displacement estimate carried by an analysis, or 0."""
    if analysis is None:
        return 0
    return analysis.draft.displacement_prediction.estimated_population
