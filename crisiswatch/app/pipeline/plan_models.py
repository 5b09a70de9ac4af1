"""
plan_models.py — ResponsePlan records.

All records are frozen; ``to_dict()`` gives the camelCase JSON schema and
``from_dict()`` rebuilds an equal value.  Money amounts are whole USD.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Tuple


class PlanType(str, Enum):
    EMERGENCY = "EMERGENCY"          # emergency phase only
    COMPREHENSIVE = "COMPREHENSIVE"  # all three phases
    PREVENTION = "PREVENTION"        # all three phases, preparedness-led


class Phase(str, Enum):
    EMERGENCY = "emergency"
    STABILIZATION = "stabilization"
    INTEGRATION = "integration"


PHASE_ORDER: Tuple[Phase, ...] = tuple(Phase)


def phases_for(plan_type: PlanType) -> Tuple[Phase, ...]:
    if plan_type is PlanType.EMERGENCY:
        return (Phase.EMERGENCY,)
    return PHASE_ORDER


# ═══════════════════════════════════════════════════════════════════════════
# Overview & phases
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PlanOverview:
    plan_name: str
    plan_type: PlanType
    target_population: int
    implementation_period: str
    priority: str
    coordinator: str = "UNHCR"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "planName": self.plan_name,
            "planType": self.plan_type.value,
            "targetPopulation": self.target_population,
            "implementationPeriod": self.implementation_period,
            "priority": self.priority,
            "coordinator": self.coordinator,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PlanOverview":
        return cls(
            plan_name=data["planName"],
            plan_type=PlanType(data["planType"]),
            target_population=int(data["targetPopulation"]),
            implementation_period=data["implementationPeriod"],
            priority=data["priority"],
            coordinator=data.get("coordinator", "UNHCR"),
        )


@dataclass(frozen=True)
class PhaseResources:
    personnel: int
    budget: int
    materials: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"personnel": self.personnel, "budget": self.budget, "materials": list(self.materials)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PhaseResources":
        return cls(
            personnel=int(data["personnel"]),
            budget=int(data["budget"]),
            materials=tuple(data.get("materials", ())),
        )


@dataclass(frozen=True)
class PlanPhase:
    phase: Phase
    duration: str
    objectives: Tuple[str, ...]
    activities: Tuple[str, ...]
    resources: PhaseResources

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duration": self.duration,
            "objectives": list(self.objectives),
            "activities": list(self.activities),
            "resources": self.resources.to_dict(),
        }

    @classmethod
    def from_dict(cls, phase: Phase | str, data: Mapping[str, Any]) -> "PlanPhase":
        return cls(
            phase=Phase(phase),
            duration=data["duration"],
            objectives=tuple(data.get("objectives", ())),
            activities=tuple(data.get("activities", ())),
            resources=PhaseResources.from_dict(data["resources"]),
        )


# ═══════════════════════════════════════════════════════════════════════════
# Cost analysis
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CostBreakdown:
    emergency: int
    stabilization: int
    integration: int
    overhead: int
    contingency: int
    total: int

    def __post_init__(self) -> None:
        parts = self.emergency + self.stabilization + self.integration + self.overhead + self.contingency
        if parts != self.total:
            raise ValueError(f"cost breakdown does not add up: {parts} != {self.total}")

    @property
    def operational(self) -> int:
        return self.emergency + self.stabilization + self.integration

    def to_dict(self) -> Dict[str, Any]:
        return {
            "emergency": self.emergency,
            "stabilization": self.stabilization,
            "integration": self.integration,
            "overhead": self.overhead,
            "contingency": self.contingency,
            "total": self.total,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CostBreakdown":
        return cls(**{k: int(data[k]) for k in
                      ("emergency", "stabilization", "integration", "overhead", "contingency", "total")})


@dataclass(frozen=True)
class CostComparison:
    preventive: int
    reactive: int
    savings: int
    savings_percentage: int
    cost_per_person_preventive: int
    cost_per_person_reactive: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "preventive": self.preventive,
            "reactive": self.reactive,
            "savings": self.savings,
            "savingsPercentage": self.savings_percentage,
            "costPerPersonPreventive": self.cost_per_person_preventive,
            "costPerPersonReactive": self.cost_per_person_reactive,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CostComparison":
        return cls(
            preventive=int(data["preventive"]),
            reactive=int(data["reactive"]),
            savings=int(data["savings"]),
            savings_percentage=int(data["savingsPercentage"]),
            cost_per_person_preventive=int(data["costPerPersonPreventive"]),
            cost_per_person_reactive=int(data["costPerPersonReactive"]),
        )


@dataclass(frozen=True)
class EfficiencyMetrics:
    cost_per_beneficiary: int
    operational_efficiency: int
    phase_distribution: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "costPerBeneficiary": self.cost_per_beneficiary,
            "operationalEfficiency": self.operational_efficiency,
            "phaseDistribution": dict(self.phase_distribution),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EfficiencyMetrics":
        return cls(
            cost_per_beneficiary=int(data["costPerBeneficiary"]),
            operational_efficiency=int(data["operationalEfficiency"]),
            phase_distribution={k: int(v) for k, v in data["phaseDistribution"].items()},
        )


@dataclass(frozen=True)
class FundingStrategy:
    recommended: Dict[str, int]
    timeline: Dict[str, int]
    funding_sources: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommended": dict(self.recommended),
            "timeline": dict(self.timeline),
            "fundingSources": list(self.funding_sources),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FundingStrategy":
        return cls(
            recommended={k: int(v) for k, v in data["recommended"].items()},
            timeline={k: int(v) for k, v in data["timeline"].items()},
            funding_sources=tuple(data.get("fundingSources", ())),
        )


@dataclass(frozen=True)
class CostAnalysis:
    breakdown: CostBreakdown
    comparison: CostComparison
    efficiency: EfficiencyMetrics
    funding: FundingStrategy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "breakdown": self.breakdown.to_dict(),
            "comparison": self.comparison.to_dict(),
            "efficiency": self.efficiency.to_dict(),
            "funding": self.funding.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CostAnalysis":
        return cls(
            breakdown=CostBreakdown.from_dict(data["breakdown"]),
            comparison=CostComparison.from_dict(data["comparison"]),
            efficiency=EfficiencyMetrics.from_dict(data["efficiency"]),
            funding=FundingStrategy.from_dict(data["funding"]),
        )


# ═══════════════════════════════════════════════════════════════════════════
# Staffing, implementation, risks
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class StaffPlan:
    by_phase: Dict[str, Dict[str, int]]
    totals: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {phase: dict(roles) for phase, roles in self.by_phase.items()}
        d["total"] = dict(self.totals)
        return d

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StaffPlan":
        return cls(
            by_phase={
                phase: {role: int(n) for role, n in roles.items()}
                for phase, roles in data.items() if phase != "total"
            },
            totals={k: int(v) for k, v in data.get("total", {}).items()},
        )


@dataclass(frozen=True)
class PhaseWindow:
    start: str
    end: str
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {"start": self.start, "end": self.end, "status": self.status}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PhaseWindow":
        return cls(start=data["start"], end=data["end"], status=data["status"])


@dataclass(frozen=True)
class Milestone:
    at: str  # "Week 1", "Month 6"
    milestone: str
    critical: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"at": self.at, "milestone": self.milestone, "critical": self.critical}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Milestone":
        return cls(at=data["at"], milestone=data["milestone"], critical=bool(data["critical"]))


@dataclass(frozen=True)
class ImplementationPlan:
    preparation: str
    phases: Dict[str, PhaseWindow]
    milestones: Tuple[Milestone, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "preparation": self.preparation,
            "phases": {k: v.to_dict() for k, v in self.phases.items()},
            "milestones": [m.to_dict() for m in self.milestones],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ImplementationPlan":
        return cls(
            preparation=data["preparation"],
            phases={k: PhaseWindow.from_dict(v) for k, v in data["phases"].items()},
            milestones=tuple(Milestone.from_dict(m) for m in data.get("milestones", ())),
        )


@dataclass(frozen=True)
class ImplementationRisk:
    risk: str
    likelihood: str
    impact: str
    mitigation: str

    def to_dict(self) -> Dict[str, Any]:
        return {"risk": self.risk, "likelihood": self.likelihood,
                "impact": self.impact, "mitigation": self.mitigation}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ImplementationRisk":
        return cls(risk=data["risk"], likelihood=data["likelihood"],
                   impact=data["impact"], mitigation=data["mitigation"])


@dataclass(frozen=True)
class PlanSummary:
    total_cost: int
    cost_per_person: int
    implementation_period: str
    priority: str
    readiness_score: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalCost": self.total_cost,
            "costPerPerson": self.cost_per_person,
            "implementationPeriod": self.implementation_period,
            "priority": self.priority,
            "readinessScore": self.readiness_score,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PlanSummary":
        return cls(
            total_cost=int(data["totalCost"]),
            cost_per_person=int(data["costPerPerson"]),
            implementation_period=data["implementationPeriod"],
            priority=data["priority"],
            readiness_score=int(data["readinessScore"]),
        )


@dataclass(frozen=True)
class PlanMetadata:
    generated_at: str
    model_used: str
    target_population: int
    region: str
    crisis_risk: str
    plan_version: str = "1.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generatedAt": self.generated_at,
            "modelUsed": self.model_used,
            "targetPopulation": self.target_population,
            "region": self.region,
            "crisisRisk": self.crisis_risk,
            "planVersion": self.plan_version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PlanMetadata":
        return cls(
            generated_at=data["generatedAt"],
            model_used=data["modelUsed"],
            target_population=int(data["targetPopulation"]),
            region=data["region"],
            crisis_risk=data["crisisRisk"],
            plan_version=data.get("planVersion", "1.0"),
        )


# ═══════════════════════════════════════════════════════════════════════════
# ResponsePlan
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ResponsePlan:
    plan_overview: PlanOverview
    phases: Tuple[PlanPhase, ...]
    cost_analysis: CostAnalysis
    staff_plan: StaffPlan
    implementation_plan: ImplementationPlan
    implementation_risks: Tuple[ImplementationRisk, ...]
    summary: PlanSummary
    metadata: PlanMetadata
    narrative_source: str = field(default="template")  # template | ai

    @property
    def plan_type(self) -> PlanType:
        return self.plan_overview.plan_type

    @property
    def total_cost(self) -> int:
        return self.cost_analysis.breakdown.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "planOverview": self.plan_overview.to_dict(),
            "phases": {p.phase.value: p.to_dict() for p in self.phases},
            "costAnalysis": self.cost_analysis.to_dict(),
            "staffPlan": self.staff_plan.to_dict(),
            "implementationPlan": self.implementation_plan.to_dict(),
            "implementationRisks": [r.to_dict() for r in self.implementation_risks],
            "summary": self.summary.to_dict(),
            "metadata": self.metadata.to_dict(),
            "narrativeSource": self.narrative_source,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResponsePlan":
        phases = data["phases"]
        return cls(
            plan_overview=PlanOverview.from_dict(data["planOverview"]),
            phases=tuple(
                PlanPhase.from_dict(p, phases[p.value]) for p in PHASE_ORDER if p.value in phases
            ),
            cost_analysis=CostAnalysis.from_dict(data["costAnalysis"]),
            staff_plan=StaffPlan.from_dict(data["staffPlan"]),
            implementation_plan=ImplementationPlan.from_dict(data["implementationPlan"]),
            implementation_risks=tuple(
                ImplementationRisk.from_dict(r) for r in data.get("implementationRisks", ())
            ),
            summary=PlanSummary.from_dict(data["summary"]),
            metadata=PlanMetadata.from_dict(data["metadata"]),
            narrative_source=data.get("narrativeSource", "template"),
        )
