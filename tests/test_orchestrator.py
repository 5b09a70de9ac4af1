"""
Tests for the multi-model AI orchestrator.

Covers:
    • Retry budget and backoff timing with a fake clock
    • Failover on timeout, non-retryable errors and unusable responses
    • Heuristic fallback when every model fails
    • Analysis caching
    • Enhancement: agreement, priority score, escalation, review time
"""

from __future__ import annotations

import asyncio
import json

import pytest

from conftest import ScriptedTransport, non_retryable, sources
from crisiswatch.app.pipeline.ai.analysis import Agreement, AIRisk, AnalysisDraft
from crisiswatch.app.pipeline.ai.orchestrator import (
    FALLBACK_MODEL,
    AIOrchestrator,
    ModelChain,
    OrchestratorState,
    assess_escalation,
    calculate_agreement,
    calculate_priority_score,
    enhance,
    extract_actionable_items,
    fallback_draft,
    review_time,
)
from crisiswatch.app.pipeline.ai.transport import ModelSpec, is_retryable_status
from crisiswatch.app.pipeline.assessment_service import build_assessment
from crisiswatch.app.pipeline.models import RiskLevel, Trend

H, M, L = RiskLevel.HIGH, RiskLevel.MEDIUM, RiskLevel.LOW

TIMEOUT = 60.0
BACKOFF = 2.0

GOOD_RESPONSE = json.dumps({
    "aiRiskAssessment": "HIGH",
    "confidence": 0.82,
    "reasoning": "Clashes are spreading towards the capital.",
    "displacementPrediction": {
        "likelihood": "VERY_HIGH",
        "timeframe": "2-8 weeks",
        "estimatedPopulation": 120000,
    },
    "earlyWarning": {"urgency": "immediate"},
    "recommendations": {
        "immediate": ["Pre-position water", "Scale up registration"],
        "shortTerm": ["Open humanitarian corridors"],
    },
})


def _assessment(levels=(H, H, H, H), region="Sudan"):
    return build_assessment(region, sources(*levels), timestamp="2024-03-01T12:00:00Z")


def _chain(scripts, clock, max_retries=2):
    transport = ScriptedTransport(scripts, clock, TIMEOUT)
    chain = ModelChain(
        [ModelSpec(m) for m in scripts],
        transport,
        timeout=TIMEOUT,
        max_retries=max_retries,
        backoff_base=BACKOFF,
        sleep=clock.sleep,
        clock=clock,
    )
    return chain, transport


def _states(trace):
    return [t.state for t in trace]


# ═══════════════════════════════════════════════════════════════════════════
# Model Chain
# ═══════════════════════════════════════════════════════════════════════════

class TestModelChain:
    def test_primary_success(self, clock):
        chain, transport = _chain({"primary": [GOOD_RESPONSE], "backup": [GOOD_RESPONSE]}, clock)
        run = asyncio.run(AIOrchestrator(chain).run(_assessment()))
        assert run.analysis.model_used == "primary"
        assert run.analysis.metadata.attempts == 1
        assert transport.calls == ["primary"]
        assert _states(run.trace)[-1] is OrchestratorState.DONE

    def test_timeouts_then_backup(self, clock):
        """Primary always times out; backup answers at once."""
        chain, transport = _chain({"primary": ["timeout"], "backup": [GOOD_RESPONSE]}, clock)
        run = asyncio.run(AIOrchestrator(chain).run(_assessment()))

        analysis = run.analysis
        assert analysis.model_used == "backup"
        assert analysis.metadata.attempts == 4
        assert transport.calls == ["primary"] * 3 + ["backup"]
        assert clock.sleeps == [2.0, 4.0]
        # 3 × timeout + backoff × (1 + 2)
        assert analysis.metadata.elapsed_seconds == pytest.approx(3 * TIMEOUT + BACKOFF * 3)

    def test_trace_records_retries_and_failover(self, clock):
        chain, _ = _chain({"primary": ["timeout"], "backup": [GOOD_RESPONSE]}, clock)
        states = _states(asyncio.run(AIOrchestrator(chain).run(_assessment())).trace)
        assert states[0] is OrchestratorState.BUILD_PROMPT
        assert states.count(OrchestratorState.RETRY) == 2
        assert states.count(OrchestratorState.NEXT_MODEL) == 1
        assert states[-2:] == [OrchestratorState.MERGE, OrchestratorState.DONE]

    def test_transient_then_success_same_model(self, clock):
        chain, transport = _chain({"primary": ["timeout", GOOD_RESPONSE]}, clock)
        run = asyncio.run(AIOrchestrator(chain).run(_assessment()))
        assert run.analysis.model_used == "primary"
        assert transport.calls == ["primary", "primary"]
        assert clock.sleeps == [2.0]

    def test_non_retryable_skips_to_next_model(self, clock):
        chain, transport = _chain(
            {"primary": [non_retryable("primary")], "backup": [GOOD_RESPONSE]}, clock,
        )
        run = asyncio.run(AIOrchestrator(chain).run(_assessment()))
        assert run.analysis.model_used == "backup"
        assert transport.calls == ["primary", "backup"]
        assert clock.sleeps == []

    def test_unusable_response_skips_to_next_model(self, clock):
        chain, transport = _chain(
            {"primary": ["I am unable to assist."], "backup": [GOOD_RESPONSE]}, clock,
        )
        run = asyncio.run(AIOrchestrator(chain).run(_assessment()))
        assert run.analysis.model_used == "backup"
        assert transport.calls == ["primary", "backup"]
        assert any("unusable" in w for w in run.analysis.metadata.warnings)

    def test_unknown_exception_is_retried(self, clock):
        chain, transport = _chain({"primary": [RuntimeError("socket closed"), GOOD_RESPONSE]}, clock)
        run = asyncio.run(AIOrchestrator(chain).run(_assessment()))
        assert run.analysis.model_used == "primary"
        assert len(transport.calls) == 2

    def test_zero_retries(self, clock):
        chain, transport = _chain({"primary": ["timeout"], "backup": [GOOD_RESPONSE]}, clock, max_retries=0)
        asyncio.run(AIOrchestrator(chain).run(_assessment()))
        assert transport.calls == ["primary", "backup"]

    def test_repaired_response_accepted(self, clock):
        chain, _ = _chain({"primary": ["Risk is HIGH, confidence 0.9"]}, clock)
        analysis = asyncio.run(AIOrchestrator(chain).run(_assessment())).analysis
        assert analysis.metadata.parse_status == "repaired"
        assert analysis.confidence <= 0.6

    def test_non_finite_population_still_parsed(self, clock):
        reply = GOOD_RESPONSE.replace("120000", "Infinity")
        chain, transport = _chain({"primary": [reply], "backup": [GOOD_RESPONSE]}, clock)
        analysis = asyncio.run(AIOrchestrator(chain).run(_assessment())).analysis
        assert analysis.model_used == "primary"
        assert analysis.draft.displacement_prediction.estimated_population == 0
        assert transport.calls == ["primary"]

    def test_parser_error_counts_as_model_failure(self, clock):
        chain, transport = _chain({"primary": [GOOD_RESPONSE], "backup": [GOOD_RESPONSE]}, clock)

        def accept(text):
            raise OverflowError("cannot convert float infinity to integer")

        result = asyncio.run(chain.run([{"role": "user", "content": "x"}], accept))
        assert result.value is None
        assert transport.calls == ["primary", "backup"]
        assert clock.sleeps == []
        assert result.warnings == ["primary: unusable response", "backup: unusable response"]

    def test_empty_chain_rejected(self, clock):
        with pytest.raises(ValueError):
            ModelChain([], ScriptedTransport({}, clock, TIMEOUT))


class TestRetryableStatus:
    @pytest.mark.parametrize("code,expected", [
        (408, True), (429, True), (500, True), (503, True),
        (400, False), (401, False), (404, False),
    ])
    def test_classification(self, code, expected):
        assert is_retryable_status(code) is expected


# ═══════════════════════════════════════════════════════════════════════════
# Fallback
# ═══════════════════════════════════════════════════════════════════════════

class TestFallback:
    def test_all_models_fail(self, clock):
        chain, transport = _chain({"primary": ["timeout"], "backup": ["timeout"]}, clock)
        run = asyncio.run(AIOrchestrator(chain).run(_assessment()))
        analysis = run.analysis

        assert analysis.model_used == FALLBACK_MODEL
        assert analysis.is_fallback
        assert analysis.metadata.analysis_version == "1.0-fallback"
        assert analysis.metadata.attempts == 6
        assert analysis.draft.reasoning.startswith("NON-AI FALLBACK")
        assert OrchestratorState.ALL_FAILED in _states(run.trace)
        assert _states(run.trace)[-1] is OrchestratorState.SAFE_DEFAULT

    def test_fallback_follows_assessment(self):
        assessment = _assessment()
        draft = fallback_draft(assessment)
        assert draft.ai_risk_assessment is AIRisk.HIGH
        assert draft.confidence == pytest.approx(assessment.confidence - 0.2)
        assert draft.displacement_prediction.timeframe == assessment.displacement_risk.timeline_label

    def test_unknown_assessment_maps_to_medium(self):
        draft = fallback_draft(_assessment(levels=(None, None, None, None)))
        assert draft.ai_risk_assessment is AIRisk.MEDIUM
        assert draft.confidence == 0.0

    def test_minimal_maps_to_low(self):
        # conflict LOW only: 25 × 0.35 × 0.25 → MINIMAL
        draft = fallback_draft(_assessment(levels=(L, None, None, None)))
        assert draft.ai_risk_assessment is AIRisk.LOW


# ═══════════════════════════════════════════════════════════════════════════
# Caching
# ═══════════════════════════════════════════════════════════════════════════

class TestAnalysisCache:
    def test_success_cached(self, clock, fake_cache):
        chain, transport = _chain({"primary": [GOOD_RESPONSE]}, clock)
        orchestrator = AIOrchestrator(chain, cache=fake_cache)
        assessment = _assessment()

        async def twice():
            return await orchestrator.analyze(assessment), await orchestrator.analyze(assessment)

        first, second = asyncio.run(twice())
        assert first == second
        assert transport.calls == ["primary"]

    def test_fallback_not_cached(self, clock, fake_cache):
        chain, _ = _chain({"primary": ["timeout"]}, clock)
        orchestrator = AIOrchestrator(chain, cache=fake_cache)
        analysis = asyncio.run(orchestrator.analyze(_assessment()))
        assert analysis.is_fallback
        assert fake_cache.store == {}


# ═══════════════════════════════════════════════════════════════════════════
# Enhancement
# ═══════════════════════════════════════════════════════════════════════════

def _draft() -> AnalysisDraft:
    return AnalysisDraft.from_dict(json.loads(GOOD_RESPONSE))


class TestEnhancement:
    @pytest.mark.parametrize("system,ai,expected", [
        ("HIGH", "HIGH", Agreement.PERFECT),
        ("MEDIUM", "HIGH", Agreement.HIGH),
        ("LOW", "HIGH", Agreement.MODERATE),
        ("LOW", "CRITICAL", Agreement.LOW),
        ("MINIMAL", "LOW", Agreement.HIGH),
        ("UNKNOWN", "MEDIUM", Agreement.HIGH),
    ])
    def test_agreement(self, system, ai, expected):
        assert calculate_agreement(system, ai) is expected

    def test_priority_score(self):
        # HIGH 30 + immediate 25 + VERY_HIGH 20 + round(0.82 × 15)
        assert calculate_priority_score(_draft()) == 87

    def test_priority_score_capped(self):
        draft = AnalysisDraft.from_dict({
            "aiRiskAssessment": "CRITICAL", "confidence": 1.0, "reasoning": "r",
            "displacementPrediction": {"likelihood": "VERY_HIGH"},
            "earlyWarning": {"urgency": "immediate"},
        })
        assert calculate_priority_score(draft) == 100

    def test_escalation_on_immediate_urgency(self):
        esc = assess_escalation(_assessment(), _draft())
        assert esc.escalate
        assert esc.risk == "HIGH"
        assert esc.timeframe == "2-8 weeks"

    def test_deteriorating_trend_is_medium_escalation(self):
        assessment = _assessment()
        assessment.trends["overall"] = Trend.DETERIORATING
        draft = AnalysisDraft.from_dict({
            "aiRiskAssessment": "MEDIUM", "confidence": 0.5, "reasoning": "r",
            "displacementPrediction": {},
        })
        esc = assess_escalation(assessment, draft)
        assert esc.risk == "MEDIUM"
        assert not esc.escalate

    def test_actionable_items(self):
        items = extract_actionable_items(_draft())
        assert [i.priority for i in items] == ["IMMEDIATE", "IMMEDIATE", "HIGH"]

    def test_review_time(self):
        assert review_time(_draft()) == "6 hours"

    def test_enhance_comparison(self):
        assessment = _assessment()
        analysis = enhance(
            _draft(), assessment,
            model_used="primary", parse_status="valid",
            attempts=1, elapsed_seconds=1.23456, timestamp="2024-03-01T12:00:00Z",
        )
        assert analysis.comparison.system_risk == "HIGH"
        assert analysis.comparison.agreement is Agreement.PERFECT
        assert analysis.metadata.data_source_count == 4
        assert analysis.metadata.elapsed_seconds == 1.235
        assert analysis.insights.priority_score == 87
