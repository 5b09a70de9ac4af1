"""
FastAPI routes: crisis assessment, AI analysis and response planning.

    GET  /api/v1/crisis/regions               monitored regions
    GET  /api/v1/crisis/monitor               all regions ranked by risk
    GET  /api/v1/crisis/cost-model            planning constants
    GET  /api/v1/crisis/{region}/assessment   fused multi-source assessment
    GET  /api/v1/crisis/{region}/analysis     AI analysis of the assessment
    POST /api/v1/crisis/{region}/plan         phase-costed response plan

Services are process-wide singletons obtained through dependency functions,
so tests can swap them with ``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from crisiswatch.app.api.schemas import PlanRequest, RegionListResponse
from crisiswatch.app.pipeline.ai.orchestrator import AIOrchestrator, ModelChain
from crisiswatch.app.pipeline.assessment_service import AssessmentService
from crisiswatch.app.pipeline.regions import MONITORED_REGIONS
from crisiswatch.app.pipeline.response_plan import ResponsePlanService

router = APIRouter(prefix="/api/v1/crisis", tags=["crisis"])


# ---------------------------------------------------------------------------
# Service singletons
# ---------------------------------------------------------------------------

_assessment_service: Optional[AssessmentService] = None
_orchestrator: Optional[AIOrchestrator] = None
_plan_service: Optional[ResponsePlanService] = None


def get_assessment_service() -> AssessmentService:
    global _assessment_service
    if _assessment_service is None:
        _assessment_service = AssessmentService.from_settings()
    return _assessment_service


def get_orchestrator() -> AIOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = AIOrchestrator.from_settings()
    return _orchestrator


def get_plan_service() -> ResponsePlanService:
    global _plan_service
    if _plan_service is None:
        _plan_service = ResponsePlanService(ModelChain.from_settings())
    return _plan_service


async def shutdown_services() -> None:
    """Close HTTP clients held by the singletons."""
    global _assessment_service, _orchestrator, _plan_service
    if _assessment_service is not None:
        await _assessment_service.close()
    if _orchestrator is not None:
        await _orchestrator.close()
    if _plan_service is not None and _plan_service.chain is not None:
        await _plan_service.chain.close()
    _assessment_service = _orchestrator = _plan_service = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get(
    "/regions",
    response_model=RegionListResponse,
    summary="Monitored Regions",
)
async def list_regions():
    return {
        "count": len(MONITORED_REGIONS),
        "regions": [r.to_dict() for r in MONITORED_REGIONS],
    }


@router.get(
    "/monitor",
    summary="Rank Monitored Regions",
    description="Assess every monitored region concurrently, highest risk first.",
)
async def monitor_regions(
    service: AssessmentService = Depends(get_assessment_service),
) -> Dict[str, Any]:
    ranked = await service.monitor_regions()
    return {
        "count": len(ranked),
        "regions": [
            {
                "region": a.region,
                "overallRisk": a.overall_risk.value,
                "confidence": a.confidence,
                "dataQuality": a.data_quality.value,
                "displacementLevel": a.displacement_risk.level.value,
                "timestamp": a.timestamp,
            }
            for a in ranked
        ],
    }


@router.get(
    "/cost-model",
    summary="Response Plan Cost Model",
    description="Returns the cost rates, ratios and splits used for response plans.",
)
async def get_cost_model(
    service: ResponsePlanService = Depends(get_plan_service),
) -> Dict[str, Any]:
    return service.cost_model.to_dict()


@router.get(
    "/{region}/assessment",
    summary="Crisis Assessment",
    description=(
        "Fuses conflict, economic, climate and news signals into an overall "
        "risk, displacement projection and trends.  Missing sources lower "
        "confidence instead of failing the request."
    ),
)
async def get_assessment(
    region: str,
    force_refresh: bool = Query(default=False, description="Bypass the cache"),
    service: AssessmentService = Depends(get_assessment_service),
) -> Dict[str, Any]:
    assessment = await service.assess(region, force_refresh=force_refresh)
    return assessment.to_dict()


@router.get(
    "/{region}/analysis",
    summary="AI Crisis Analysis",
    description=(
        "Runs the model chain over the region's assessment.  When every model "
        "fails a heuristic analysis tagged modelUsed=fallback is returned."
    ),
)
async def get_analysis(
    region: str,
    force_refresh: bool = Query(default=False, description="Bypass both caches"),
    assessments: AssessmentService = Depends(get_assessment_service),
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    assessment = await assessments.assess(region, force_refresh=force_refresh)
    analysis = await orchestrator.analyze(assessment, force_refresh=force_refresh)
    return analysis.to_dict()


@router.post(
    "/{region}/plan",
    summary="Generate Response Plan",
    description="Assess, analyse and cost a humanitarian response for the region.",
)
async def create_plan(
    region: str,
    req: PlanRequest,
    assessments: AssessmentService = Depends(get_assessment_service),
    orchestrator: AIOrchestrator = Depends(get_orchestrator),
    plans: ResponsePlanService = Depends(get_plan_service),
) -> Dict[str, Any]:
    assessment = await assessments.assess(region, force_refresh=req.force_refresh)
    analysis = await orchestrator.analyze(assessment, force_refresh=req.force_refresh)
    plan = await plans.generate(
        analysis, population=req.population, plan_type=req.plan_type,
    )
    return plan.to_dict()
