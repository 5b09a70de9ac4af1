"""
Tests for the crisis HTTP API.

Services are swapped through ``app.dependency_overrides`` so no upstream
source, model endpoint or Redis is touched.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from conftest import PAYLOADS, FakeClock, ScriptedTransport, StaticFetcher
from crisiswatch.app.api.v1.crisis import (
    get_assessment_service,
    get_orchestrator,
    get_plan_service,
)
from crisiswatch.app.main import app
from crisiswatch.app.pipeline.ai.orchestrator import AIOrchestrator, ModelChain
from crisiswatch.app.pipeline.ai.transport import ModelSpec
from crisiswatch.app.pipeline.assessment_service import AssessmentService
from crisiswatch.app.pipeline.regions import MONITORED_REGIONS
from crisiswatch.app.pipeline.response_plan import ResponsePlanService

FIXED_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

ANALYSIS_RESPONSE = json.dumps({
    "aiRiskAssessment": "HIGH",
    "confidence": 0.8,
    "reasoning": "Fighting is spreading and prices are climbing.",
    "displacementPrediction": {"likelihood": "HIGH", "estimatedPopulation": 25000},
    "earlyWarning": {"urgency": "high"},
})


@pytest.fixture
def client():
    clock = FakeClock()
    transport = ScriptedTransport({"primary": [ANALYSIS_RESPONSE]}, clock, 30.0)
    chain = ModelChain(
        [ModelSpec("primary")], transport,
        timeout=30.0, max_retries=0, sleep=clock.sleep, clock=clock,
    )
    assessments = AssessmentService(
        {d: StaticFetcher(p) for d, p in PAYLOADS.items()}, now=lambda: FIXED_NOW,
    )
    orchestrator = AIOrchestrator(chain, now=lambda: FIXED_NOW)
    plans = ResponsePlanService()

    app.dependency_overrides[get_assessment_service] = lambda: assessments
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_plan_service] = lambda: plans
    yield TestClient(app)
    app.dependency_overrides.clear()


# ═══════════════════════════════════════════════════════════════════════════
# Read endpoints
# ═══════════════════════════════════════════════════════════════════════════

class TestReadEndpoints:
    def test_root(self, client):
        assert "response-planning" in client.get("/").json()["modules"]

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_request_id_echoed(self, client):
        r = client.get("/api/v1/crisis/regions", headers={"X-Request-ID": "abc123"})
        assert r.headers["X-Request-ID"] == "abc123"
        assert r.headers["X-Process-Time"].endswith("ms")

    def test_regions(self, client):
        body = client.get("/api/v1/crisis/regions").json()
        assert body["count"] == len(MONITORED_REGIONS)
        assert {"name", "code", "coordinates"} <= set(body["regions"][0])

    def test_cost_model(self, client):
        body = client.get("/api/v1/crisis/cost-model").json()
        assert body["emergency"]["days"] == 28
        assert body["reactiveMultiplier"] == 1.7
        assert body["defaultPopulation"] == 10_000

    def test_monitor(self, client):
        body = client.get("/api/v1/crisis/monitor").json()
        assert body["count"] == len(MONITORED_REGIONS)
        assert body["regions"][0]["overallRisk"] == "MEDIUM"


class TestAssessmentEndpoint:
    def test_assessment(self, client):
        r = client.get("/api/v1/crisis/sudan/assessment")
        assert r.status_code == 200
        body = r.json()
        assert body["region"] == "Sudan"
        assert body["overallRisk"] == "MEDIUM"
        assert body["dataAvailability"] == {
            "conflict": True, "economic": True, "climate": True, "news": True,
        }
        assert body["displacementRisk"]["estimatedNumbers"] == 20_000

    def test_unknown_region(self, client):
        r = client.get("/api/v1/crisis/Atlantis/assessment")
        assert r.status_code == 422
        error = r.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["field"] == "region"


class TestAnalysisEndpoint:
    def test_analysis(self, client):
        body = client.get("/api/v1/crisis/Sudan/analysis").json()
        assert body["metadata"]["modelUsed"] == "primary"
        assert body["aiRiskAssessment"] == "HIGH"
        assert body["comparison"]["systemRisk"] == "MEDIUM"


# ═══════════════════════════════════════════════════════════════════════════
# Plans
# ═══════════════════════════════════════════════════════════════════════════

class TestPlanEndpoint:
    def test_emergency_plan(self, client):
        r = client.post(
            "/api/v1/crisis/Sudan/plan",
            json={"population": 10_000, "plan_type": "EMERGENCY"},
        )
        assert r.status_code == 200
        body = r.json()
        assert body["planOverview"]["planType"] == "EMERGENCY"
        assert body["costAnalysis"]["breakdown"]["total"] == 4_812_500
        assert list(body["phases"]) == ["emergency"]

    def test_population_from_analysis(self, client):
        body = client.post("/api/v1/crisis/Sudan/plan", json={}).json()
        assert body["planOverview"]["targetPopulation"] == 25_000
        assert body["planOverview"]["planType"] == "COMPREHENSIVE"

    def test_zero_population_rejected(self, client):
        r = client.post("/api/v1/crisis/Sudan/plan", json={"population": 0})
        assert r.status_code == 422
        assert r.json()["error"]["details"]["field"] == "population"

    def test_unknown_plan_type_rejected(self, client):
        r = client.post("/api/v1/crisis/Sudan/plan", json={"plan_type": "RELOCATION"})
        assert r.status_code == 422
        error = r.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["errors"][0]["field"] == "plan_type"
