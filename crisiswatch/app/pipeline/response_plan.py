"""
response_plan.py — Phase-costed humanitarian response plans.

Cost model (USD):

    Phase          Unit                  Categories                          Duration
    ─────────────  ────────────────────  ──────────────────────────────────  ────────
    emergency      per person per day    water, food, shelter, medical,      28 days
                                         sanitation, blankets
    stabilization  per person per month  housing, education, healthcare,     6 months
                                         food, utilities, psychosocial
    integration    per person per year   housing, livelihood, education,     1.5 years
                                         healthcare, integration

    phase cost   = round(population × Σ categories × duration)
    operational  = Σ phase costs           (EMERGENCY plans: emergency only)
    overhead     = round(0.15 × operational)
    contingency  = round(0.10 × operational)
    total        = operational + overhead + contingency
    reactive     = round(1.7 × total)

Staffing uses fixed per-1000 ratios per phase and role, scaled by
ceil(population / 1000).  Funding is split 40 / 35 / 15 / 10 across
bilateral, multilateral, private and host-country sources.

The funding split, the reactive multiplier and every cost rate are
illustrative planning constants, not calibrated figures.  They all live in
``CostModel`` so deployments can supply their own.

Costs are always computed deterministically.  When a model chain is
supplied the phase objectives and activities are requested from the AI;
if that fails in any way the fixed templates below are used.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from crisiswatch.app.core.errors import ValidationError
from crisiswatch.app.pipeline.ai.analysis import AIAnalysis, AIRisk, estimated_population
from crisiswatch.app.pipeline.ai.orchestrator import ModelChain
from crisiswatch.app.pipeline.ai.parsing import extract_json_object
from crisiswatch.app.pipeline.ai.prompts import build_plan_narrative_messages
from crisiswatch.app.pipeline.plan_models import (
    PHASE_ORDER,
    CostAnalysis,
    CostBreakdown,
    CostComparison,
    EfficiencyMetrics,
    FundingStrategy,
    ImplementationPlan,
    ImplementationRisk,
    Milestone,
    Phase,
    PhaseResources,
    PhaseWindow,
    PlanMetadata,
    PlanOverview,
    PlanPhase,
    PlanSummary,
    PlanType,
    ResponsePlan,
    StaffPlan,
    phases_for,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Cost model
# ═══════════════════════════════════════════════════════════════════════════

EMERGENCY_DAILY_COSTS: Dict[str, float] = {
    "water": 2.50,       # 15 L clean water per person
    "food": 4.00,        # basic rations
    "shelter": 3.00,     # emergency shelter materials
    "medical": 2.00,
    "sanitation": 1.50,
    "blankets": 0.75,
}

STABILIZATION_MONTHLY_COSTS: Dict[str, float] = {
    "housing": 85.00,
    "education": 25.00,
    "healthcare": 45.00,
    "food": 120.00,
    "utilities": 30.00,
    "psychosocial": 15.00,
}

INTEGRATION_YEARLY_COSTS: Dict[str, float] = {
    "housing": 1200.00,
    "livelihood": 800.00,
    "education": 400.00,
    "healthcare": 600.00,
    "integration": 300.00,  # language and cultural programmes
}

STAFF_PER_1000: Dict[Phase, Dict[str, int]] = {
    Phase.EMERGENCY: {
        "coordinators": 2, "medical": 8, "logistics": 5,
        "protection": 3, "wash": 4, "food": 3,
    },
    Phase.STABILIZATION: {
        "management": 3, "social_workers": 6, "teachers": 12,
        "medical": 10, "security": 5, "logistics": 4,
    },
    Phase.INTEGRATION: {
        "case_managers": 4, "job_counselors": 3, "teachers": 15,
        "healthcare": 8, "community_liaisons": 2,
    },
}

FUNDING_SPLIT: Dict[str, float] = {
    "bilateral": 0.40,
    "multilateral": 0.35,
    "private": 0.15,
    "host_country": 0.10,
}

FUNDING_SOURCES: Tuple[str, ...] = (
    "UN Central Emergency Response Fund (CERF)",
    "Country-based Pooled Funds",
    "Bilateral donor governments",
    "Private foundations and corporations",
    "Individual donations",
)


@dataclass(frozen=True)
class CostModel:
    """Every tunable planning constant in one value."""
    emergency_daily: Dict[str, float] = field(default_factory=lambda: dict(EMERGENCY_DAILY_COSTS))
    stabilization_monthly: Dict[str, float] = field(default_factory=lambda: dict(STABILIZATION_MONTHLY_COSTS))
    integration_yearly: Dict[str, float] = field(default_factory=lambda: dict(INTEGRATION_YEARLY_COSTS))
    emergency_days: int = 28
    stabilization_months: int = 6
    integration_years: float = 1.5
    overhead_rate: float = 0.15
    contingency_rate: float = 0.10
    reactive_multiplier: float = 1.7
    funding_split: Dict[str, float] = field(default_factory=lambda: dict(FUNDING_SPLIT))
    staff_per_1000: Dict[Phase, Dict[str, int]] = field(
        default_factory=lambda: {p: dict(r) for p, r in STAFF_PER_1000.items()}
    )
    default_population: int = 10_000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "emergency": {"perPersonPerDay": dict(self.emergency_daily), "days": self.emergency_days},
            "stabilization": {
                "perPersonPerMonth": dict(self.stabilization_monthly),
                "months": self.stabilization_months,
            },
            "integration": {
                "perPersonPerYear": dict(self.integration_yearly),
                "years": self.integration_years,
            },
            "overheadRate": self.overhead_rate,
            "contingencyRate": self.contingency_rate,
            "reactiveMultiplier": self.reactive_multiplier,
            "fundingSplit": dict(self.funding_split),
            "staffPer1000": {p.value: dict(r) for p, r in self.staff_per_1000.items()},
            "defaultPopulation": self.default_population,
        }


DEFAULT_COST_MODEL = CostModel()


# ═══════════════════════════════════════════════════════════════════════════
# Cost calculations
# ═══════════════════════════════════════════════════════════════════════════

def _d(x: float) -> Decimal:
    return Decimal(str(x))


def round_half_up(x: Decimal | float) -> int:
    """Nearest whole dollar, halves away from zero."""
    value = x if isinstance(x, Decimal) else _d(x)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _rate_sum(rates: Mapping[str, float]) -> Decimal:
    return sum((_d(v) for v in rates.values()), Decimal("0"))


def calculate_emergency_cost(population: int, model: CostModel = DEFAULT_COST_MODEL) -> int:
    return round_half_up(population * _rate_sum(model.emergency_daily) * model.emergency_days)


def calculate_stabilization_cost(population: int, model: CostModel = DEFAULT_COST_MODEL) -> int:
    return round_half_up(
        population * _rate_sum(model.stabilization_monthly) * model.stabilization_months
    )


def calculate_integration_cost(population: int, model: CostModel = DEFAULT_COST_MODEL) -> int:
    return round_half_up(
        population * _rate_sum(model.integration_yearly) * _d(model.integration_years)
    )


_PHASE_COSTERS: Dict[Phase, Callable[[int, CostModel], int]] = {
    Phase.EMERGENCY: calculate_emergency_cost,
    Phase.STABILIZATION: calculate_stabilization_cost,
    Phase.INTEGRATION: calculate_integration_cost,
}


def calculate_cost_breakdown(
    population: int,
    plan_type: PlanType = PlanType.COMPREHENSIVE,
    model: CostModel = DEFAULT_COST_MODEL,
) -> CostBreakdown:
    included = phases_for(plan_type)
    costs = {
        phase: (_PHASE_COSTERS[phase](population, model) if phase in included else 0)
        for phase in PHASE_ORDER
    }
    operational = sum(costs.values())
    overhead = round_half_up(operational * _d(model.overhead_rate))
    contingency = round_half_up(operational * _d(model.contingency_rate))
    return CostBreakdown(
        emergency=costs[Phase.EMERGENCY],
        stabilization=costs[Phase.STABILIZATION],
        integration=costs[Phase.INTEGRATION],
        overhead=overhead,
        contingency=contingency,
        total=operational + overhead + contingency,
    )


def _ratio(part: int, whole: int) -> Decimal:
    return Decimal(part) / Decimal(whole) if whole else Decimal("0")


def calculate_cost_comparison(
    preventive: int,
    population: int,
    model: CostModel = DEFAULT_COST_MODEL,
) -> CostComparison:
    reactive = round_half_up(preventive * _d(model.reactive_multiplier))
    savings = reactive - preventive
    return CostComparison(
        preventive=preventive,
        reactive=reactive,
        savings=savings,
        savings_percentage=round_half_up(_ratio(savings, reactive) * 100),
        cost_per_person_preventive=round_half_up(_ratio(preventive, population)),
        cost_per_person_reactive=round_half_up(_ratio(reactive, population)),
    )


def calculate_efficiency(breakdown: CostBreakdown, population: int) -> EfficiencyMetrics:
    total = breakdown.total
    return EfficiencyMetrics(
        cost_per_beneficiary=round_half_up(_ratio(total, population)),
        operational_efficiency=round_half_up(_ratio(total - breakdown.overhead, total) * 100),
        phase_distribution={
            Phase.EMERGENCY.value: round_half_up(_ratio(breakdown.emergency, total) * 100),
            Phase.STABILIZATION.value: round_half_up(_ratio(breakdown.stabilization, total) * 100),
            Phase.INTEGRATION.value: round_half_up(_ratio(breakdown.integration, total) * 100),
        },
    )


def generate_funding_strategy(
    breakdown: CostBreakdown,
    model: CostModel = DEFAULT_COST_MODEL,
) -> FundingStrategy:
    return FundingStrategy(
        recommended={
            bucket: round_half_up(breakdown.total * _d(share))
            for bucket, share in model.funding_split.items()
        },
        timeline={
            "immediate": breakdown.emergency,
            "shortTerm": breakdown.stabilization,
            "longTerm": breakdown.integration,
        },
        funding_sources=FUNDING_SOURCES,
    )


def calculate_staff_plan(
    population: int,
    plan_type: PlanType = PlanType.COMPREHENSIVE,
    model: CostModel = DEFAULT_COST_MODEL,
) -> StaffPlan:
    multiplier = math.ceil(population / 1000)
    by_phase: Dict[str, Dict[str, int]] = {}
    totals: Dict[str, int] = {}
    for phase in phases_for(plan_type):
        roles = {role: count * multiplier for role, count in model.staff_per_1000[phase].items()}
        by_phase[phase.value] = roles
        totals[phase.value] = sum(roles.values())
    return StaffPlan(by_phase=by_phase, totals=totals)


# ═══════════════════════════════════════════════════════════════════════════
# Phase narrative templates
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PhaseTemplate:
    duration: str
    objectives: Tuple[str, ...]
    activities: Tuple[str, ...]
    materials: Tuple[str, ...]


PHASE_TEMPLATES: Dict[Phase, PhaseTemplate] = {
    Phase.EMERGENCY: PhaseTemplate(
        duration="4 weeks",
        objectives=(
            "Provide immediate life-saving assistance",
            "Establish protection measures",
        ),
        activities=(
            "Provide clean water (15 L/person/day)",
            "Distribute emergency shelter (3.5 m²/person)",
            "Distribute food rations (2100 kcal/person/day)",
            "Deploy mobile medical teams",
            "Set up sanitation facilities",
            "Register arrivals and identify vulnerable persons",
        ),
        materials=("Tents", "Water containers", "Food rations", "Medical kits", "Blankets"),
    ),
    Phase.STABILIZATION: PhaseTemplate(
        duration="6 months",
        objectives=(
            "Establish temporary services",
            "Support community structures",
        ),
        activities=(
            "Move families into temporary housing",
            "Open temporary learning spaces",
            "Expand primary healthcare coverage",
            "Run monthly food assistance",
            "Provide psychosocial support",
        ),
        materials=("Temporary housing units", "School supplies", "Clinic equipment"),
    ),
    Phase.INTEGRATION: PhaseTemplate(
        duration="18 months",
        objectives=(
            "Support durable solutions",
            "Promote self-reliance",
        ),
        activities=(
            "Secure permanent housing solutions",
            "Run job training and livelihood programmes",
            "Enrol children in formal education",
            "Offer language and cultural orientation",
        ),
        materials=("Vocational training kits", "Learning materials"),
    ),
}

PREVENTION_OBJECTIVES: Dict[Phase, str] = {
    Phase.EMERGENCY: "Pre-position supplies before displacement peaks",
    Phase.STABILIZATION: "Strengthen host-community absorption capacity",
    Phase.INTEGRATION: "Reduce drivers of further displacement",
}

MAX_NARRATIVE_OBJECTIVES = 5
MAX_NARRATIVE_ACTIVITIES = 8

Narrative = Dict[Phase, Tuple[Tuple[str, ...], Tuple[str, ...]]]


def _clean_texts(value: Any, limit: int) -> Optional[Tuple[str, ...]]:
    if not isinstance(value, list):
        return None
    texts = tuple(str(v).strip() for v in value if isinstance(v, str) and v.strip())
    return texts[:limit] if texts else None


def parse_plan_narrative(raw: str, phases: Sequence[Phase]) -> Optional[Narrative]:
    """Validate an AI narrative; None unless every phase has objectives and activities."""
    obj = extract_json_object(raw)
    if obj is None:
        return None
    narrative: Narrative = {}
    for phase in phases:
        section = obj.get(phase.value)
        if not isinstance(section, Mapping):
            return None
        objectives = _clean_texts(section.get("objectives"), MAX_NARRATIVE_OBJECTIVES)
        activities = _clean_texts(section.get("activities"), MAX_NARRATIVE_ACTIVITIES)
        if objectives is None or activities is None:
            return None
        narrative[phase] = (objectives, activities)
    return narrative


def template_narrative(phases: Sequence[Phase], plan_type: PlanType) -> Narrative:
    narrative: Narrative = {}
    for phase in phases:
        template = PHASE_TEMPLATES[phase]
        objectives = template.objectives
        if plan_type is PlanType.PREVENTION:
            objectives = (PREVENTION_OBJECTIVES[phase],) + objectives
        narrative[phase] = (objectives, template.activities)
    return narrative


# ═══════════════════════════════════════════════════════════════════════════
# Implementation planning
# ═══════════════════════════════════════════════════════════════════════════

PREPARATION_TIME = {
    "immediate": "24-48 hours",
    "high": "3-7 days",
    "medium": "1-2 weeks",
}
DEFAULT_PREPARATION_TIME = "2-4 weeks"

PHASE_WINDOWS: Dict[Phase, PhaseWindow] = {
    Phase.EMERGENCY: PhaseWindow("0 days", "28 days", "ready"),
    Phase.STABILIZATION: PhaseWindow("29 days", "6 months", "planned"),
    Phase.INTEGRATION: PhaseWindow("6 months", "24 months", "planned"),
}

MILESTONES: Tuple[Tuple[Phase, Milestone], ...] = (
    (Phase.EMERGENCY, Milestone("Week 1", "Emergency response activated", True)),
    (Phase.EMERGENCY, Milestone("Week 2", "Basic services operational", True)),
    (Phase.EMERGENCY, Milestone("Week 4", "Emergency phase evaluation", False)),
    (Phase.STABILIZATION, Milestone("Month 2", "Stabilization services launched", True)),
    (Phase.INTEGRATION, Milestone("Month 6", "Integration planning begins", False)),
    (Phase.INTEGRATION, Milestone("Month 12", "Self-reliance assessment", False)),
    (Phase.INTEGRATION, Milestone("Month 24", "Program evaluation and transition", True)),
)

IMPLEMENTATION_PERIOD = {
    PlanType.EMERGENCY: "4 weeks",
    PlanType.COMPREHENSIVE: "24 months",
    PlanType.PREVENTION: "24 months",
}

READINESS_BASE = 70
READINESS_STEP = 10


def build_implementation_plan(urgency: str, plan_type: PlanType) -> ImplementationPlan:
    included = phases_for(plan_type)
    return ImplementationPlan(
        preparation=PREPARATION_TIME.get(urgency, DEFAULT_PREPARATION_TIME),
        phases={p.value: PHASE_WINDOWS[p] for p in included},
        milestones=tuple(m for p, m in MILESTONES if p in included),
    )


def assess_implementation_risks(analysis: AIAnalysis) -> Tuple[ImplementationRisk, ...]:
    critical = analysis.ai_risk_assessment is AIRisk.CRITICAL
    very_likely = analysis.draft.displacement_prediction.likelihood == "VERY_HIGH"
    return (
        ImplementationRisk(
            "Security constraints limiting access",
            "HIGH" if critical else "MEDIUM", "HIGH",
            "Security protocols, remote programming, local partnerships",
        ),
        ImplementationRisk(
            "Funding shortfalls", "MEDIUM", "HIGH",
            "Diversified funding strategy, contingency planning",
        ),
        ImplementationRisk(
            "Rapid influx overwhelming capacity",
            "HIGH" if very_likely else "MEDIUM", "HIGH",
            "Scalable response model, surge capacity planning",
        ),
        ImplementationRisk(
            "Host community tensions", "MEDIUM", "MEDIUM",
            "Community engagement, benefit sharing, conflict prevention",
        ),
    )


def readiness_score(phases: Sequence[PlanPhase], ai_narrative: bool, analysis: AIAnalysis) -> int:
    score = READINESS_BASE
    emergency = next((p for p in phases if p.phase is Phase.EMERGENCY), None)
    if emergency is not None and len(emergency.activities) > 5:
        score += READINESS_STEP
    if ai_narrative:
        score += READINESS_STEP
    if not analysis.is_fallback:
        score += READINESS_STEP
    return min(100, score)


# ═══════════════════════════════════════════════════════════════════════════
# Plan assembly
# ═══════════════════════════════════════════════════════════════════════════

def coerce_plan_type(value: PlanType | str) -> PlanType:
    try:
        return PlanType(str(value.value if isinstance(value, PlanType) else value).upper())
    except ValueError:
        raise ValidationError(
            f"Unknown plan type: {value!r}",
            field="plan_type",
            supported=[t.value for t in PlanType],
        ) from None


def resolve_population(
    analysis: Optional[AIAnalysis],
    population: Optional[int],
    model: CostModel = DEFAULT_COST_MODEL,
) -> int:
    """Explicit target, else the analysis estimate, else the model default."""
    if population is not None:
        if isinstance(population, bool) or not isinstance(population, int):
            raise ValidationError("population must be an integer", field="population")
        if population < 1:
            raise ValidationError(
                "population must be >= 1", field="population", value=population,
            )
        return population
    return estimated_population(analysis) or model.default_population


def build_response_plan(
    analysis: AIAnalysis,
    population: int,
    plan_type: PlanType = PlanType.COMPREHENSIVE,
    *,
    model: CostModel = DEFAULT_COST_MODEL,
    narrative: Optional[Narrative] = None,
    model_used: str = "template",
    generated_at: Optional[str] = None,
) -> ResponsePlan:
    """Pure assembly of a ResponsePlan; ``population`` must already be valid."""
    if population < 1:
        raise ValidationError("population must be >= 1", field="population", value=population)

    included = phases_for(plan_type)
    ai_narrative = narrative is not None
    narrative = narrative or template_narrative(included, plan_type)

    breakdown = calculate_cost_breakdown(population, plan_type, model)
    staff = calculate_staff_plan(population, plan_type, model)
    phase_costs = {
        Phase.EMERGENCY: breakdown.emergency,
        Phase.STABILIZATION: breakdown.stabilization,
        Phase.INTEGRATION: breakdown.integration,
    }
    phases = tuple(
        PlanPhase(
            phase=phase,
            duration=PHASE_TEMPLATES[phase].duration,
            objectives=narrative[phase][0],
            activities=narrative[phase][1],
            resources=PhaseResources(
                personnel=staff.totals[phase.value],
                budget=phase_costs[phase],
                materials=PHASE_TEMPLATES[phase].materials,
            ),
        )
        for phase in included
    )

    region = analysis.metadata.region
    risk = analysis.ai_risk_assessment.value
    period = IMPLEMENTATION_PERIOD[plan_type]
    label = {
        PlanType.EMERGENCY: "Emergency Response Plan",
        PlanType.COMPREHENSIVE: "Comprehensive Response Plan",
        PlanType.PREVENTION: "Prevention and Preparedness Plan",
    }[plan_type]

    return ResponsePlan(
        plan_overview=PlanOverview(
            plan_name=f"{label} for {region}",
            plan_type=plan_type,
            target_population=population,
            implementation_period=period,
            priority=risk,
        ),
        phases=phases,
        cost_analysis=CostAnalysis(
            breakdown=breakdown,
            comparison=calculate_cost_comparison(breakdown.total, population, model),
            efficiency=calculate_efficiency(breakdown, population),
            funding=generate_funding_strategy(breakdown, model),
        ),
        staff_plan=staff,
        implementation_plan=build_implementation_plan(
            analysis.draft.early_warning.urgency, plan_type,
        ),
        implementation_risks=assess_implementation_risks(analysis),
        summary=PlanSummary(
            total_cost=breakdown.total,
            cost_per_person=round_half_up(_ratio(breakdown.total, population)),
            implementation_period=period,
            priority=risk,
            readiness_score=readiness_score(phases, ai_narrative, analysis),
        ),
        metadata=PlanMetadata(
            generated_at=generated_at or datetime.now(timezone.utc).isoformat(timespec="seconds"),
            model_used=model_used,
            target_population=population,
            region=region,
            crisis_risk=risk,
        ),
        narrative_source="ai" if ai_narrative else "template",
    )


class ResponsePlanService:
    """
    Builds response plans from AI analyses.

    Parameters
    ----------
    chain : ModelChain, optional
        When given, phase objectives and activities are requested from the
        models; otherwise (or on any failure) templates are used.
    cost_model : CostModel
        Planning constants.
    """

    def __init__(
        self,
        chain: Optional[ModelChain] = None,
        *,
        cost_model: CostModel = DEFAULT_COST_MODEL,
    ):
        self.chain = chain
        self.cost_model = cost_model

    async def _narrative(
        self,
        analysis: AIAnalysis,
        population: int,
        phases: Tuple[Phase, ...],
    ) -> Tuple[Optional[Narrative], str]:
        if self.chain is None:
            return None, "template"
        messages = build_plan_narrative_messages(
            analysis.metadata.region,
            analysis.ai_risk_assessment.value,
            population,
            [p.value for p in phases],
            analysis.draft.displacement_prediction.primary_triggers,
        )
        result = await self.chain.run(
            messages,
            lambda text: parse_plan_narrative(text, phases),
            region=analysis.metadata.region,
        )
        if not result.succeeded:
            logger.warning(
                "AI plan narrative unavailable for %s, using templates",
                analysis.metadata.region, extra={"region": analysis.metadata.region},
            )
            return None, "template"
        return result.value, result.model

    async def generate(
        self,
        analysis: AIAnalysis,
        *,
        population: Optional[int] = None,
        plan_type: PlanType | str = PlanType.COMPREHENSIVE,
    ) -> ResponsePlan:
        """
        Generate a plan.  Raises ``ValidationError`` for a population below
        1 or an unknown plan type; never raises for model failures.
        """
        plan_type = coerce_plan_type(plan_type)
        target = resolve_population(analysis, population, self.cost_model)
        narrative, model_used = await self._narrative(analysis, target, phases_for(plan_type))

        plan = build_response_plan(
            analysis, target, plan_type,
            model=self.cost_model,
            narrative=narrative,
            model_used=model_used,
        )
        logger.info(
            "Generated %s plan for %s: %d people, total $%d",
            plan_type.value, analysis.metadata.region, target, plan.total_cost,
            extra={
                "region": analysis.metadata.region,
                "plan_type": plan_type.value,
                "population": target,
            },
        )
        return plan
