"""
orchestrator.py — Multi-model AI analysis with retries and a safe default.

State machine per analysis:

    BUILD_PROMPT
        │
        ▼
    CALL_MODEL(i) ──timeout / retryable error──► RETRY ──sleep(base × k)──► CALL_MODEL(i)
        │   └──retries exhausted / non-retryable / FAILED parse──► NEXT_MODEL ──► CALL_MODEL(i+1)
        ▼
      PARSE ──VALID / REPAIRED──► MERGE ──► DONE

    no model left ──► ALL_FAILED ──► SAFE_DEFAULT

Models are tried strictly in priority order, never concurrently.  Each call
is bounded by ``asyncio.wait_for``; a model gets ``1 + max_retries``
attempts, waiting ``backoff_base × k`` seconds before retry k.  A call that
fails with a non-retryable error (4xx other than 408/429) moves straight to
the next model, and so does a response that cannot be parsed even with
repair.

``sleep`` and ``clock`` are injectable so the retry budget can be checked
deterministically: with a primary that always times out and a backup that
answers at once, the elapsed time is exactly

    (1 + max_retries) × timeout + backoff_base × (1 + 2 + … + max_retries)

The orchestrator never raises for model failures.  When every model is
exhausted it returns a heuristic analysis derived from the assessment alone,
tagged ``modelUsed = "fallback"``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from crisiswatch.app.core.cache import RegionCache
from crisiswatch.app.core.config import settings
from crisiswatch.app.core.errors import ModelCallError
from crisiswatch.app.pipeline.ai.analysis import (
    ActionableItem,
    Agreement,
    AIAnalysis,
    AIRisk,
    AnalysisDraft,
    AnalysisMetadata,
    Comparison,
    DataQualityAssessment,
    DisplacementPrediction,
    EarlyWarning,
    Insights,
    Recommendations,
    RiskEscalation,
)
from crisiswatch.app.pipeline.ai.parsing import ParseOutcome, parse_ai_response
from crisiswatch.app.pipeline.ai.prompts import build_analysis_messages
from crisiswatch.app.pipeline.ai.transport import (
    ChatCompletionTransport,
    ModelSpec,
    ModelTransport,
    model_chain_from_settings,
)
from crisiswatch.app.pipeline.models import (
    CrisisAssessment,
    OverallRisk,
    RiskLevel,
    Trend,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

FALLBACK_MODEL = "fallback"
ANALYSIS_VERSION = "1.0"
FALLBACK_CONFIDENCE_PENALTY = 0.2
MAX_ACTIONABLE_ITEMS = 5


class OrchestratorState(str, Enum):
    BUILD_PROMPT = "BUILD_PROMPT"
    CALL_MODEL = "CALL_MODEL"
    RETRY = "RETRY"
    NEXT_MODEL = "NEXT_MODEL"
    PARSE = "PARSE"
    MERGE = "MERGE"
    DONE = "DONE"
    ALL_FAILED = "ALL_FAILED"
    SAFE_DEFAULT = "SAFE_DEFAULT"


@dataclass(frozen=True)
class Transition:
    state: OrchestratorState
    elapsed: float
    model: Optional[str] = None
    attempt: int = 0
    detail: str = ""


# ═══════════════════════════════════════════════════════════════════════════
# Model chain
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ChainResult(Generic[T]):
    """What a chain run produced; ``value`` is None when every model failed."""
    value: Optional[T]
    model: Optional[str]
    attempts: int
    elapsed: float
    warnings: List[str] = field(default_factory=list)
    trace: List[Transition] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.value is not None


class ModelChain:
    """
    Priority-ordered model calls with per-call timeout, retries and backoff.

    ``accept`` turns raw text into a value, or returns None to mark the
    response unusable, which counts as that model's failure.
    """

    def __init__(
        self,
        models: Sequence[ModelSpec],
        transport: ModelTransport,
        *,
        timeout: float = 60.0,
        max_retries: int = 2,
        backoff_base: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not models:
            raise ValueError("model chain needs at least one model")
        self.models: Tuple[ModelSpec, ...] = tuple(models)
        self.transport = transport
        self.timeout = timeout
        self.max_retries = max(0, max_retries)
        self.backoff_base = backoff_base
        self.sleep = sleep
        self.clock = clock

    @classmethod
    def from_settings(cls, transport: Optional[ModelTransport] = None) -> "ModelChain":
        return cls(
            model_chain_from_settings(),
            transport or ChatCompletionTransport.from_settings(),
            timeout=settings.AI_CALL_TIMEOUT,
            max_retries=settings.AI_MAX_RETRIES,
            backoff_base=settings.AI_RETRY_BACKOFF_BASE,
        )

    async def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()

    async def _call(self, spec: ModelSpec, messages: Sequence[Mapping[str, str]]) -> str:
        try:
            return await asyncio.wait_for(
                self.transport.complete(spec, messages), timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ModelCallError(spec.model_id, f"timed out after {self.timeout}s") from e
        except ModelCallError:
            raise
        except Exception as e:
            # Unknown transport failures are treated as transient.
            raise ModelCallError(spec.model_id, f"{type(e).__name__}: {e}") from e

    async def run(
        self,
        messages: Sequence[Mapping[str, str]],
        accept: Callable[[str], Optional[T]],
        *,
        region: Optional[str] = None,
    ) -> ChainResult[T]:
        start = self.clock()
        result: ChainResult[T] = ChainResult(value=None, model=None, attempts=0, elapsed=0.0)

        def enter(state: OrchestratorState, spec: Optional[ModelSpec] = None,
                  attempt: int = 0, detail: str = "") -> None:
            result.trace.append(Transition(
                state, self.clock() - start,
                spec.model_id if spec else None, attempt, detail,
            ))

        for index, spec in enumerate(self.models):
            attempt = 0
            while True:
                attempt += 1
                result.attempts += 1
                enter(OrchestratorState.CALL_MODEL, spec, attempt)
                try:
                    text = await self._call(spec, messages)
                except ModelCallError as e:
                    logger.warning(
                        "Model %s attempt %d failed: %s", spec.model_id, attempt, e.message,
                        extra={"region": region, "model": spec.model_id, "attempt": attempt},
                    )
                    result.warnings.append(f"{spec.model_id}: {e.message}")
                    if e.retryable and attempt <= self.max_retries:
                        delay = self.backoff_base * attempt
                        enter(OrchestratorState.RETRY, spec, attempt, f"backoff {delay:g}s")
                        await self.sleep(delay)
                        continue
                    break

                enter(OrchestratorState.PARSE, spec, attempt)
                try:
                    value = accept(text)
                except Exception:
                    logger.exception(
                        "Parsing the response from %s raised", spec.model_id,
                        extra={"region": region, "model": spec.model_id, "attempt": attempt},
                    )
                    value = None
                if value is None:
                    logger.warning(
                        "Model %s returned an unusable response", spec.model_id,
                        extra={"region": region, "model": spec.model_id, "attempt": attempt},
                    )
                    result.warnings.append(f"{spec.model_id}: unusable response")
                    break

                result.value = value
                result.model = spec.model_id
                result.elapsed = self.clock() - start
                return result

            if index + 1 < len(self.models):
                enter(OrchestratorState.NEXT_MODEL, spec, attempt)

        enter(OrchestratorState.ALL_FAILED)
        result.elapsed = self.clock() - start
        logger.error(
            "All %d models failed after %d attempts", len(self.models), result.attempts,
            extra={"region": region, "state": OrchestratorState.ALL_FAILED.value},
        )
        return result


# ═══════════════════════════════════════════════════════════════════════════
# Enhancement
# ═══════════════════════════════════════════════════════════════════════════

# Ordinal positions for agreement; MINIMAL sits below LOW, UNKNOWN is neutral.
AGREEMENT_ORDER = {
    "CRITICAL": 4,
    "HIGH": 3,
    "MEDIUM": 2,
    "LOW": 1,
    "MINIMAL": 0,
    "UNKNOWN": 2,
}

RISK_PRIORITY = {"CRITICAL": 40, "HIGH": 30, "MEDIUM": 20, "LOW": 10}
URGENCY_PRIORITY = {"immediate": 25, "high": 20, "medium": 10, "low": 5}
LIKELIHOOD_PRIORITY = {"VERY_HIGH": 20, "HIGH": 15, "MEDIUM": 10, "LOW": 5}
DEFAULT_RISK_PRIORITY = 20
DEFAULT_URGENCY_PRIORITY = 10
DEFAULT_LIKELIHOOD_PRIORITY = 10
CONFIDENCE_PRIORITY_WEIGHT = 15

REVIEW_TIME = {"immediate": "6 hours", "high": "24 hours", "medium": "3 days"}
DEFAULT_REVIEW_TIME = "1 week"


def _round_half_up(x: float) -> int:
    return int(x + 0.5) if x >= 0 else -int(-x + 0.5)


def calculate_agreement(system_risk: str, ai_risk: str) -> Agreement:
    if system_risk == ai_risk:
        return Agreement.PERFECT
    diff = abs(AGREEMENT_ORDER.get(system_risk, 2) - AGREEMENT_ORDER.get(ai_risk, 2))
    if diff <= 1:
        return Agreement.HIGH
    if diff <= 2:
        return Agreement.MODERATE
    return Agreement.LOW


def calculate_priority_score(draft: AnalysisDraft) -> int:
    """Risk tier + urgency + displacement likelihood + confidence, capped at 100."""
    score = RISK_PRIORITY.get(draft.ai_risk_assessment.value, DEFAULT_RISK_PRIORITY)
    score += URGENCY_PRIORITY.get(draft.early_warning.urgency, DEFAULT_URGENCY_PRIORITY)
    score += LIKELIHOOD_PRIORITY.get(
        draft.displacement_prediction.likelihood, DEFAULT_LIKELIHOOD_PRIORITY
    )
    score += _round_half_up(draft.confidence * CONFIDENCE_PRIORITY_WEIGHT)
    return min(100, score)


def assess_escalation(assessment: CrisisAssessment, draft: AnalysisDraft) -> RiskEscalation:
    factors: List[str] = []
    risk = "LOW"
    if draft.ai_risk_assessment is AIRisk.CRITICAL:
        factors.append("AI assessment indicates critical situation")
        risk = "HIGH"
    if draft.early_warning.urgency == "immediate":
        factors.append("Immediate action required")
        risk = "HIGH"
    if assessment.trends.get("overall") is Trend.DETERIORATING:
        factors.append("Deteriorating trend across multiple indicators")
        if risk != "HIGH":
            risk = "MEDIUM"
    return RiskEscalation(
        risk=risk,
        factors=tuple(factors),
        timeframe=draft.displacement_prediction.timeframe or "unknown",
        escalate=risk == "HIGH",
    )


def extract_actionable_items(draft: AnalysisDraft) -> Tuple[ActionableItem, ...]:
    items = [ActionableItem(a, "IMMEDIATE", "24-48 hours") for a in draft.recommendations.immediate]
    items += [ActionableItem(a, "HIGH", "1-2 weeks") for a in draft.recommendations.short_term]
    return tuple(items[:MAX_ACTIONABLE_ITEMS])


def review_time(draft: AnalysisDraft) -> str:
    return REVIEW_TIME.get(draft.early_warning.urgency, DEFAULT_REVIEW_TIME)


def enhance(
    draft: AnalysisDraft,
    assessment: CrisisAssessment,
    *,
    model_used: str,
    parse_status: str,
    attempts: int,
    elapsed_seconds: float,
    warnings: Sequence[str] = (),
    timestamp: Optional[str] = None,
    analysis_version: str = ANALYSIS_VERSION,
) -> AIAnalysis:
    """Wrap a draft with metadata, comparison and insights."""
    system_risk = assessment.overall_risk.value
    ai_risk = draft.ai_risk_assessment.value
    return AIAnalysis(
        draft=draft,
        metadata=AnalysisMetadata(
            analysis_timestamp=timestamp or datetime.now(timezone.utc).isoformat(timespec="seconds"),
            model_used=model_used,
            region=assessment.region,
            original_risk_level=system_risk,
            data_source_count=assessment.available_count,
            analysis_version=analysis_version,
            parse_status=parse_status,
            attempts=attempts,
            elapsed_seconds=round(elapsed_seconds, 3),
            warnings=tuple(warnings),
        ),
        comparison=Comparison(
            system_risk=system_risk,
            ai_risk=ai_risk,
            agreement=calculate_agreement(system_risk, ai_risk),
            system_confidence=assessment.confidence,
            ai_confidence=draft.confidence,
            confidence_delta=round(abs(assessment.confidence - draft.confidence), 4),
        ),
        insights=Insights(
            risk_escalation=assess_escalation(assessment, draft),
            priority_score=calculate_priority_score(draft),
            actionable_items=extract_actionable_items(draft),
            time_to_review=review_time(draft),
        ),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Heuristic fallback
# ═══════════════════════════════════════════════════════════════════════════

_FALLBACK_RISK = {
    OverallRisk.CRITICAL: AIRisk.CRITICAL,
    OverallRisk.HIGH: AIRisk.HIGH,
    OverallRisk.MEDIUM: AIRisk.MEDIUM,
    OverallRisk.LOW: AIRisk.LOW,
    OverallRisk.MINIMAL: AIRisk.LOW,
    OverallRisk.UNKNOWN: AIRisk.MEDIUM,
}

_FALLBACK_LIKELIHOOD = {
    RiskLevel.CRITICAL: "VERY_HIGH",
    RiskLevel.HIGH: "HIGH",
    RiskLevel.MEDIUM: "MEDIUM",
    RiskLevel.LOW: "LOW",
    RiskLevel.UNKNOWN: "MEDIUM",
}


def fallback_draft(assessment: CrisisAssessment) -> AnalysisDraft:
    """Deterministic analysis built from the heuristic assessment alone."""
    d = assessment.displacement_risk
    return AnalysisDraft(
        ai_risk_assessment=_FALLBACK_RISK[assessment.overall_risk],
        confidence=max(0.0, assessment.confidence - FALLBACK_CONFIDENCE_PENALTY),
        reasoning=(
            "NON-AI FALLBACK: no model produced a usable analysis; this result is "
            "derived only from the multi-source heuristic assessment."
        ),
        key_findings=(
            "System assessment completed without AI enhancement",
            "Risk level based on multi-source data aggregation",
            "Recommend manual review of crisis situation",
        ),
        displacement_prediction=DisplacementPrediction(
            likelihood=_FALLBACK_LIKELIHOOD[d.level],
            timeframe=d.timeline_label,
            estimated_population=d.estimated_numbers,
            primary_triggers=d.primary_causes,
            likely_destinations=d.likely_destinations,
            displacement_type="gradual_exodus",
        ),
        early_warning=EarlyWarning(
            immediate_threats=assessment.immediate_threats,
            emerging_concerns=assessment.emerging_concerns,
            time_to_action="days",
            urgency="medium",
        ),
        recommendations=Recommendations(
            immediate=("Monitor situation closely", "Verify data sources"),
            short_term=("Enhance data collection", "Prepare contingency plans"),
            long_term=("Strengthen early warning systems",),
        ),
        data_quality_assessment=DataQualityAssessment(
            reliability="medium",
            completeness=assessment.data_quality.value.lower(),
            freshness="current",
            gaps=("AI analysis unavailable",),
        ),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Orchestrator
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class OrchestrationRun:
    analysis: AIAnalysis
    trace: List[Transition]


class AIOrchestrator:
    """
    Runs the analysis state machine for one assessment at a time.

    Parameters
    ----------
    chain : ModelChain
        Priority-ordered models plus transport and retry policy.
    cache : RegionCache, optional
        Per-region cache for successful analyses.  Fallback analyses are not
        cached, so the next request tries the models again.
    """

    def __init__(
        self,
        chain: ModelChain,
        *,
        cache: Optional[RegionCache] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.chain = chain
        self.cache = cache
        self._now = now

    @classmethod
    def from_settings(cls) -> "AIOrchestrator":
        return cls(
            ModelChain.from_settings(),
            cache=RegionCache("analysis", ttl=settings.ANALYSIS_CACHE_TTL),
        )

    async def close(self) -> None:
        await self.chain.close()

    def _timestamp(self) -> str:
        return self._now().astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")

    async def run(self, assessment: CrisisAssessment) -> OrchestrationRun:
        region = assessment.region
        clock = self.chain.clock
        start = clock()
        trace = [Transition(OrchestratorState.BUILD_PROMPT, 0.0)]
        messages = build_analysis_messages(assessment)

        def accept(text: str) -> Optional[ParseOutcome]:
            outcome = parse_ai_response(text)
            return outcome if outcome.ok else None

        result = await self.chain.run(messages, accept, region=region)
        trace.extend(result.trace)

        if result.succeeded:
            outcome = result.value
            trace.append(Transition(OrchestratorState.MERGE, clock() - start, result.model))
            analysis = enhance(
                outcome.draft, assessment,
                model_used=result.model,
                parse_status=outcome.status.value,
                attempts=result.attempts,
                elapsed_seconds=result.elapsed,
                warnings=list(result.warnings) + list(outcome.warnings),
                timestamp=self._timestamp(),
            )
            trace.append(Transition(OrchestratorState.DONE, clock() - start, result.model))
            logger.info(
                "AI analysis for %s by %s: %s (agreement %s)",
                region, result.model, analysis.ai_risk_assessment.value,
                analysis.comparison.agreement.value,
                extra={
                    "region": region,
                    "model": result.model,
                    "parse_status": outcome.status.value,
                    "duration_ms": round(result.elapsed * 1000, 1),
                },
            )
            return OrchestrationRun(analysis, trace)

        analysis = enhance(
            fallback_draft(assessment), assessment,
            model_used=FALLBACK_MODEL,
            parse_status="fallback",
            attempts=result.attempts,
            elapsed_seconds=result.elapsed,
            warnings=result.warnings,
            timestamp=self._timestamp(),
            analysis_version=f"{ANALYSIS_VERSION}-fallback",
        )
        trace.append(Transition(OrchestratorState.SAFE_DEFAULT, clock() - start))
        logger.warning(
            "Using heuristic fallback analysis for %s", region,
            extra={"region": region, "state": OrchestratorState.SAFE_DEFAULT.value},
        )
        return OrchestrationRun(analysis, trace)

    async def analyze(
        self,
        assessment: CrisisAssessment,
        *,
        force_refresh: bool = False,
    ) -> AIAnalysis:
        region = assessment.region
        if self.cache is not None and not force_refresh:
            cached = await self.cache.get(region)
            if cached:
                try:
                    return AIAnalysis.from_dict(cached)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning("Discarding unreadable cached analysis: %s", e,
                                   extra={"region": region})

        run = await self.run(assessment)
        if self.cache is not None and not run.analysis.is_fallback:
            await self.cache.set(region, run.analysis.to_dict())
        return run.analysis
