"""
Tests for phase-costed response plans.

Covers:
    • Per-phase cost formulas and the breakdown total invariant
    • Reactive comparison, efficiency and funding split
    • Staffing ratios
    • Population resolution and validation
    • Plan types (EMERGENCY / COMPREHENSIVE / PREVENTION)
    • AI narrative with template fallback
"""

from __future__ import annotations

import asyncio
import dataclasses
import json

import pytest

from conftest import ScriptedTransport, sources
from crisiswatch.app.core.errors import ValidationError
from crisiswatch.app.pipeline.ai.orchestrator import ModelChain, enhance, fallback_draft
from crisiswatch.app.pipeline.ai.transport import ModelSpec
from crisiswatch.app.pipeline.assessment_service import build_assessment
from crisiswatch.app.pipeline.models import RiskLevel
from crisiswatch.app.pipeline.plan_models import CostBreakdown, Phase, PlanType
from crisiswatch.app.pipeline.response_plan import (
    CostModel,
    ResponsePlanService,
    build_response_plan,
    calculate_cost_breakdown,
    calculate_cost_comparison,
    calculate_efficiency,
    calculate_emergency_cost,
    calculate_integration_cost,
    calculate_stabilization_cost,
    calculate_staff_plan,
    generate_funding_strategy,
    parse_plan_narrative,
    resolve_population,
    round_half_up,
)

H = RiskLevel.HIGH

COMPREHENSIVE_TOTAL = 90_687_500


def _analysis(*, parse_status="valid", population=None):
    assessment = build_assessment("Sudan", sources(H, H, H, H), timestamp="2024-03-01T12:00:00Z")
    draft = fallback_draft(assessment)
    if population is not None:
        draft = dataclasses.replace(
            draft,
            displacement_prediction=dataclasses.replace(
                draft.displacement_prediction, estimated_population=population,
            ),
        )
    return enhance(
        draft, assessment,
        model_used="primary" if parse_status != "fallback" else "fallback",
        parse_status=parse_status,
        attempts=1, elapsed_seconds=0.5,
        timestamp="2024-03-01T12:00:00Z",
    )


# ═══════════════════════════════════════════════════════════════════════════
# Cost Formulas
# ═══════════════════════════════════════════════════════════════════════════

class TestPhaseCosts:
    def test_emergency(self):
        # 10,000 × 13.75 × 28
        assert calculate_emergency_cost(10_000) == 3_850_000

    def test_stabilization(self):
        # 10,000 × 320 × 6
        assert calculate_stabilization_cost(10_000) == 19_200_000

    def test_integration(self):
        # 10,000 × 3,300 × 1.5
        assert calculate_integration_cost(10_000) == 49_500_000

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(9068.75) == 9069
        assert round_half_up(0.49) == 0

    def test_custom_rates(self):
        model = CostModel(emergency_daily={"water": 1.0}, emergency_days=10)
        assert calculate_emergency_cost(100, model) == 1_000


class TestBreakdown:
    def test_comprehensive(self):
        b = calculate_cost_breakdown(10_000, PlanType.COMPREHENSIVE)
        assert b.operational == 72_550_000
        assert b.overhead == 10_882_500
        assert b.contingency == 7_255_000
        assert b.total == COMPREHENSIVE_TOTAL

    def test_emergency_plan_costs_emergency_only(self):
        b = calculate_cost_breakdown(10_000, PlanType.EMERGENCY)
        assert b.stabilization == 0
        assert b.integration == 0
        assert b.total == 4_812_500

    def test_prevention_costs_all_phases(self):
        b = calculate_cost_breakdown(10_000, PlanType.PREVENTION)
        assert b.total == COMPREHENSIVE_TOTAL

    @pytest.mark.parametrize("population", [1, 7, 999, 12_345, 250_000])
    @pytest.mark.parametrize("plan_type", list(PlanType))
    def test_total_is_sum_of_parts(self, population, plan_type):
        b = calculate_cost_breakdown(population, plan_type)
        assert b.total == b.emergency + b.stabilization + b.integration + b.overhead + b.contingency

    def test_inconsistent_breakdown_rejected(self):
        with pytest.raises(ValueError):
            CostBreakdown(1, 1, 1, 1, 1, total=6)


class TestComparison:
    def test_reactive_multiplier(self):
        c = calculate_cost_comparison(COMPREHENSIVE_TOTAL, 10_000)
        assert c.reactive == 154_168_750
        assert c.savings == 63_481_250
        assert c.savings_percentage == 41
        assert c.cost_per_person_preventive == 9_069
        assert c.cost_per_person_reactive == 15_417

    def test_efficiency(self):
        b = calculate_cost_breakdown(10_000)
        e = calculate_efficiency(b, 10_000)
        assert e.cost_per_beneficiary == 9_069
        assert e.operational_efficiency == 88
        assert e.phase_distribution == {"emergency": 4, "stabilization": 21, "integration": 55}

    def test_funding_split(self):
        f = generate_funding_strategy(calculate_cost_breakdown(10_000))
        assert f.recommended == {
            "bilateral": 36_275_000,
            "multilateral": 31_740_625,
            "private": 13_603_125,
            "host_country": 9_068_750,
        }
        assert f.timeline["immediate"] == 3_850_000
        assert f.funding_sources


class TestStaffing:
    def test_per_thousand(self):
        staff = calculate_staff_plan(10_000)
        assert staff.by_phase["emergency"]["medical"] == 80
        assert staff.totals == {"emergency": 250, "stabilization": 400, "integration": 320}

    def test_rounds_up_to_next_thousand(self):
        assert calculate_staff_plan(2_500).totals["emergency"] == 75

    def test_emergency_plan_staffs_one_phase(self):
        staff = calculate_staff_plan(10_000, PlanType.EMERGENCY)
        assert list(staff.totals) == ["emergency"]


# ═══════════════════════════════════════════════════════════════════════════
# Population
# ═══════════════════════════════════════════════════════════════════════════

class TestPopulation:
    def test_explicit_wins(self):
        assert resolve_population(_analysis(population=40_000), 5_000) == 5_000

    def test_analysis_estimate(self):
        assert resolve_population(_analysis(population=40_000), None) == 40_000

    def test_default(self):
        assert resolve_population(_analysis(population=0), None) == 10_000

    def test_no_analysis(self):
        assert resolve_population(None, None) == 10_000

    @pytest.mark.parametrize("bad", [0, -10, True, 2.5, "100"])
    def test_invalid_rejected(self, bad):
        with pytest.raises(ValidationError) as exc:
            resolve_population(_analysis(), bad)
        assert exc.value.details["field"] == "population"


# ═══════════════════════════════════════════════════════════════════════════
# Plan Assembly
# ═══════════════════════════════════════════════════════════════════════════

class TestBuildPlan:
    def test_comprehensive_plan(self):
        plan = build_response_plan(_analysis(), 10_000, PlanType.COMPREHENSIVE)
        assert [p.phase for p in plan.phases] == list(Phase)
        assert plan.total_cost == COMPREHENSIVE_TOTAL
        assert plan.summary.cost_per_person == 9_069
        assert plan.summary.implementation_period == "24 months"
        assert plan.plan_overview.priority == "HIGH"
        assert plan.plan_overview.plan_name == "Comprehensive Response Plan for Sudan"
        assert plan.narrative_source == "template"

    def test_phase_budgets_match_breakdown(self):
        plan = build_response_plan(_analysis(), 10_000)
        budgets = {p.phase: p.resources.budget for p in plan.phases}
        b = plan.cost_analysis.breakdown
        assert budgets[Phase.EMERGENCY] == b.emergency
        assert budgets[Phase.INTEGRATION] == b.integration

    def test_emergency_plan(self):
        plan = build_response_plan(_analysis(), 10_000, PlanType.EMERGENCY)
        assert [p.phase for p in plan.phases] == [Phase.EMERGENCY]
        assert plan.summary.implementation_period == "4 weeks"
        assert list(plan.implementation_plan.phases) == ["emergency"]
        assert all("Week" in m.at for m in plan.implementation_plan.milestones)

    def test_prevention_objectives(self):
        plan = build_response_plan(_analysis(), 10_000, PlanType.PREVENTION)
        assert plan.phases[0].objectives[0] == "Pre-position supplies before displacement peaks"

    def test_readiness(self):
        assert build_response_plan(_analysis(), 10_000).summary.readiness_score == 90
        fallback = _analysis(parse_status="fallback")
        assert build_response_plan(fallback, 10_000).summary.readiness_score == 80

    def test_preparation_time_from_urgency(self):
        # fallback drafts carry "medium" urgency
        assert build_response_plan(_analysis(), 10_000).implementation_plan.preparation == "1-2 weeks"

    def test_four_implementation_risks(self):
        assert len(build_response_plan(_analysis(), 10_000).implementation_risks) == 4

    def test_invalid_population(self):
        with pytest.raises(ValidationError):
            build_response_plan(_analysis(), 0)


# ═══════════════════════════════════════════════════════════════════════════
# Service & Narrative
# ═══════════════════════════════════════════════════════════════════════════

NARRATIVE = json.dumps({
    "emergency": {
        "objectives": ["Keep people alive", "Protect children"],
        "activities": ["Truck water", "Open clinics"],
    },
})


def _chain(script, clock):
    transport = ScriptedTransport({"planner": script}, clock, 30.0)
    return ModelChain(
        [ModelSpec("planner")], transport,
        timeout=30.0, max_retries=1, backoff_base=1.0, sleep=clock.sleep, clock=clock,
    )


class TestNarrative:
    def test_parse_requires_every_phase(self):
        assert parse_plan_narrative(NARRATIVE, (Phase.EMERGENCY,)) is not None
        assert parse_plan_narrative(NARRATIVE, tuple(Phase)) is None

    def test_parse_rejects_empty_lists(self):
        raw = json.dumps({"emergency": {"objectives": [], "activities": ["x"]}})
        assert parse_plan_narrative(raw, (Phase.EMERGENCY,)) is None

    def test_ai_narrative_used(self, clock):
        service = ResponsePlanService(_chain([NARRATIVE], clock))
        plan = asyncio.run(service.generate(_analysis(), plan_type="emergency"))
        assert plan.narrative_source == "ai"
        assert plan.metadata.model_used == "planner"
        assert plan.phases[0].activities == ("Truck water", "Open clinics")
        # costs never depend on the narrative
        assert plan.total_cost == 4_812_500

    def test_template_on_model_failure(self, clock):
        service = ResponsePlanService(_chain(["timeout"], clock))
        plan = asyncio.run(service.generate(_analysis(), plan_type=PlanType.EMERGENCY))
        assert plan.narrative_source == "template"
        assert plan.metadata.model_used == "template"
        assert len(plan.phases[0].activities) == 6

    def test_no_chain_uses_templates(self):
        plan = asyncio.run(ResponsePlanService().generate(_analysis(), population=2_000))
        assert plan.narrative_source == "template"
        assert plan.plan_overview.target_population == 2_000

    def test_bad_plan_type(self):
        with pytest.raises(ValidationError):
            asyncio.run(ResponsePlanService().generate(_analysis(), plan_type="RELOCATION"))

    def test_bad_population(self):
        with pytest.raises(ValidationError):
            asyncio.run(ResponsePlanService().generate(_analysis(), population=-1))
