"""
Tests for per-domain payload normalisation.

Covers:
    • Field mapping for each of the four domain vocabularies
    • Confidence coercion (fractions, percentages, garbage)
    • Risk-word aliases
    • Unusable payloads → unavailable records (never raises)
"""

from __future__ import annotations

import pytest

from conftest import CLIMATE_PAYLOAD, CONFLICT_PAYLOAD, ECONOMIC_PAYLOAD, NEWS_PAYLOAD
from crisiswatch.app.core.errors import ExternalServiceError
from crisiswatch.app.pipeline.models import (
    UNAVAILABLE_CONFIDENCE,
    Domain,
    RiskLevel,
    parse_risk_level,
)
from crisiswatch.app.pipeline.normalizer import (
    DEFAULT_CONFIDENCE,
    normalize_climate,
    normalize_conflict,
    normalize_economic,
    normalize_news,
    normalize_source,
)


# ═══════════════════════════════════════════════════════════════════════════
# Field Mapping
# ═══════════════════════════════════════════════════════════════════════════

class TestConflict:
    def test_maps_fields(self):
        rec = normalize_conflict(CONFLICT_PAYLOAD)
        assert rec.available
        assert rec.domain is Domain.CONFLICT
        assert rec.risk_level is RiskLevel.HIGH
        assert rec.confidence == 0.85
        assert rec.score == 40.0
        assert rec.trends == {"increasing": True}

    def test_mapping_indicators_flattened(self):
        rec = normalize_conflict(CONFLICT_PAYLOAD)
        assert rec.indicators == ("Shelling in urban areas", "Militia mobilisation")

    def test_recent_events_kept_as_detail(self):
        rec = normalize_conflict(CONFLICT_PAYLOAD)
        assert rec.details["recentEvents"] == [{"type": "battle", "fatalities": 12}]

    def test_missing_trends_default_stable(self):
        rec = normalize_conflict({"conflictLevel": "LOW"})
        assert rec.trends == {"stable": True}

    def test_empty_trends_kept_empty(self):
        rec = normalize_conflict({"conflictLevel": "LOW", "trends": {}})
        assert rec.trends == {}

    def test_non_mapping_trends_default_stable(self):
        rec = normalize_conflict({"conflictLevel": "LOW", "trends": "steady"})
        assert rec.trends == {"stable": True}

    def test_missing_level_is_low(self):
        rec = normalize_conflict({"intensityScore": 3})
        assert rec.risk_level is RiskLevel.LOW

    def test_empty_mapping_unavailable(self):
        assert not normalize_conflict({}).available


class TestEconomic:
    def test_percentage_confidence(self):
        rec = normalize_economic(ECONOMIC_PAYLOAD)
        assert rec.confidence == pytest.approx(0.7)

    def test_stability_uppercased(self):
        rec = normalize_economic(ECONOMIC_PAYLOAD)
        assert rec.details["stability"] == "UNSTABLE"

    def test_trends_from_analysis(self):
        rec = normalize_economic(ECONOMIC_PAYLOAD)
        assert rec.trends["gdp"] == {"trend": "decreasing"}

    def test_requires_displacement_risk(self):
        assert not normalize_economic({"analysis": {}}).available


class TestClimate:
    def test_affected_population_is_score(self):
        rec = normalize_climate(CLIMATE_PAYLOAD)
        assert rec.score == 1200.0
        assert rec.risk_level is RiskLevel.LOW

    def test_hazards_kept(self):
        rec = normalize_climate(CLIMATE_PAYLOAD)
        assert rec.details["hazards"] == [{"type": "flood", "severity": "MEDIUM"}]

    def test_non_mapping_hazards_dropped(self):
        payload = dict(CLIMATE_PAYLOAD, activeHazards=["flood", {"type": "drought"}])
        rec = normalize_climate(payload)
        assert rec.details["hazards"] == [{"type": "drought"}]


class TestNews:
    def test_details_lowercased(self):
        rec = normalize_news(NEWS_PAYLOAD)
        assert rec.details["sentiment"] == "negative"
        assert rec.details["mediaAttention"] == "high"

    def test_urgency_is_score(self):
        assert normalize_news(NEWS_PAYLOAD).score == 65.0

    def test_requires_crisis_level(self):
        assert not normalize_news({"urgencyScore": 90}).available


# ═══════════════════════════════════════════════════════════════════════════
# Coercion
# ═══════════════════════════════════════════════════════════════════════════

class TestCoercion:
    def test_garbage_confidence_defaults(self):
        rec = normalize_conflict({"conflictLevel": "HIGH", "confidence": "sure"})
        assert rec.confidence == DEFAULT_CONFIDENCE

    def test_confidence_clamped(self):
        rec = normalize_conflict({"conflictLevel": "HIGH", "confidence": -2})
        assert rec.confidence == 0.0

    def test_negative_score_clamped(self):
        rec = normalize_conflict({"conflictLevel": "HIGH", "intensityScore": -5})
        assert rec.score == 0.0

    def test_oversized_integer_score_is_zero(self):
        rec = normalize_conflict({"conflictLevel": "HIGH", "intensityScore": 10**400})
        assert rec.available
        assert rec.score == 0.0

    def test_oversized_integer_confidence_defaults(self):
        rec = normalize_news({"crisisLevel": "HIGH", "confidence": 10**400})
        assert rec.confidence == DEFAULT_CONFIDENCE

    @pytest.mark.parametrize("value", [float("inf"), float("-inf"), float("nan")])
    def test_non_finite_score_is_zero(self, value):
        rec = normalize_economic({"displacementRisk": {"riskLevel": "HIGH", "riskScore": value}})
        assert rec.score == 0.0

    def test_unrecognised_level_is_low(self):
        rec = normalize_conflict({"conflictLevel": "apocalyptic"})
        assert rec.risk_level is RiskLevel.LOW

    @pytest.mark.parametrize("word,expected", [
        ("severe", RiskLevel.CRITICAL),
        ("Very High", RiskLevel.HIGH),
        ("moderate", RiskLevel.MEDIUM),
        ("minimal", RiskLevel.LOW),
        ("HIGH", RiskLevel.HIGH),
    ])
    def test_aliases(self, word, expected):
        assert parse_risk_level(word) is expected

    def test_non_string_level_unrecognised(self):
        assert parse_risk_level(3) is None


# ═══════════════════════════════════════════════════════════════════════════
# Failures
# ═══════════════════════════════════════════════════════════════════════════

class TestNormalizeSource:
    @pytest.mark.parametrize("domain", list(Domain))
    def test_none_is_unavailable(self, domain):
        rec = normalize_source(domain, None)
        assert not rec.available
        assert rec.risk_level is RiskLevel.UNKNOWN
        assert rec.confidence <= UNAVAILABLE_CONFIDENCE

    def test_exception_is_unavailable(self):
        rec = normalize_source(Domain.NEWS, ExternalServiceError("news", "HTTP 503"))
        assert not rec.available
        assert rec.indicators == ("No news data available",)

    def test_non_mapping_is_unavailable(self):
        assert not normalize_source("economic", ["not", "a", "payload"]).available

    def test_string_domain_accepted(self):
        assert normalize_source("conflict", CONFLICT_PAYLOAD).risk_level is RiskLevel.HIGH

    def test_oversized_numbers_never_raise(self):
        payload = dict(CONFLICT_PAYLOAD, intensityScore=10**400, confidence=-(10**400))
        rec = normalize_source("conflict", payload)
        assert rec.available
        assert rec.score == 0.0
        assert rec.confidence == DEFAULT_CONFIDENCE
