"""
Two-stage parse of a model's text into an ``AnalysisDraft``.

    Stage 1  strict     strip code fences → JSON object → required fields
                        valid (aiRiskAssessment ∈ enum, 0 ≤ confidence ≤ 1,
                        reasoning non-empty, displacementPrediction object)
                        → VALID
    Stage 2  repair     a) parsed object with bad/missing fields: coerce
                           what is there, fill the rest with defaults
                        b) no object at all: regex for the first risk word
                           and a confidence number in the raw text
                        → REPAIRED, confidence capped, warnings attached
             give up    no recognisable risk word anywhere → FAILED

Outcomes are returned as a tagged ``ParseOutcome``; nothing here raises for
malformed model output.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from crisiswatch.app.pipeline.ai.analysis import (
    AIRisk,
    AnalysisDraft,
    DataQualityAssessment,
    DisplacementPrediction,
    EarlyWarning,
)
from crisiswatch.app.pipeline.ai.prompts import ANALYSIS_REQUIRED_FIELDS
from crisiswatch.app.pipeline.models import RiskLevel, parse_risk_level

logger = logging.getLogger(__name__)

REPAIRED_CONFIDENCE_CAP = 0.6
DEFAULT_REPAIRED_CONFIDENCE = 0.6
MAX_REPAIRED_REASONING = 500

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.S | re.I)
_RISK_WORD_RE = re.compile(r"\b(CRITICAL|HIGH|MEDIUM|LOW)\b", re.I)
_CONFIDENCE_RE = re.compile(r"confidence\"?\s*[:=]\s*\"?([0-9]*\.?[0-9]+)\s*(%?)", re.I)
_THINK_RE = re.compile(r"<think>.*?</think>", re.S | re.I)


class ParseStatus(str, Enum):
    VALID = "valid"
    REPAIRED = "repaired"
    FAILED = "failed"


@dataclass(frozen=True)
class ParseOutcome:
    status: ParseStatus
    draft: Optional[AnalysisDraft] = None
    warnings: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status is not ParseStatus.FAILED


# ---------------------------------------------------------------------------
# Text clean-up
# ---------------------------------------------------------------------------

def strip_code_fences(text: str) -> str:
    """Drop reasoning blocks and markdown fences around a JSON payload."""
    s = _THINK_RE.sub("", text or "").strip()
    fenced = _FENCE_RE.search(s)
    if fenced:
        return fenced.group(1).strip()
    return s


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    s = strip_code_fences(text)
    if not s:
        return None
    try:
        obj = json.loads(s)
        if isinstance(obj, dict):
            return obj
    except json.JSONDecodeError:
        pass
    start, end = s.find("{"), s.rfind("}")
    if start != -1 and end > start:
        try:
            obj = json.loads(s[start:end + 1])
        except json.JSONDecodeError:
            return None
        if isinstance(obj, dict):
            return obj
    return None


# ---------------------------------------------------------------------------
# Strict validation
# ---------------------------------------------------------------------------

def validation_errors(obj: Mapping[str, Any]) -> List[str]:
    errors = [f"missing required field: {f}" for f in ANALYSIS_REQUIRED_FIELDS if f not in obj]
    if errors:
        return errors
    if obj["aiRiskAssessment"] not in {r.value for r in AIRisk}:
        errors.append(f"invalid aiRiskAssessment: {obj['aiRiskAssessment']!r}")
    conf = obj["confidence"]
    if isinstance(conf, bool) or not isinstance(conf, (int, float)) or not 0.0 <= conf <= 1.0:
        errors.append(f"invalid confidence: {conf!r}")
    if not isinstance(obj["reasoning"], str) or not obj["reasoning"].strip():
        errors.append("reasoning must be a non-empty string")
    if not isinstance(obj["displacementPrediction"], Mapping):
        errors.append("displacementPrediction must be an object")
    return errors


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------

def _to_ai_risk(value: Any) -> Optional[AIRisk]:
    level = parse_risk_level(value)
    if level is None or level is RiskLevel.UNKNOWN:
        return None
    return AIRisk(level.value)


def _coerce_confidence(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%")
    try:
        number = float(value)
    except (ValueError, OverflowError):
        return None
    if not math.isfinite(number):
        return None
    return max(0.0, min(1.0, number / 100.0 if number > 1.0 else number))


def _first_risk_word(text: str) -> Optional[AIRisk]:
    match = _RISK_WORD_RE.search(text or "")
    return AIRisk(match.group(1).upper()) if match else None


def _confidence_in_text(text: str) -> Optional[float]:
    match = _CONFIDENCE_RE.search(text or "")
    if not match:
        return None
    number = float(match.group(1))
    if match.group(2) or number > 1.0:
        number /= 100.0
    return max(0.0, min(1.0, number))


def _capped(conf: Optional[float]) -> float:
    if conf is None:
        return DEFAULT_REPAIRED_CONFIDENCE
    return min(conf, REPAIRED_CONFIDENCE_CAP)


def _repair_object(obj: Dict[str, Any], raw: str, errors: List[str]) -> Optional[ParseOutcome]:
    risk = _to_ai_risk(obj.get("aiRiskAssessment")) or _first_risk_word(raw)
    if risk is None:
        return None
    reasoning = obj.get("reasoning")
    if not isinstance(reasoning, str) or not reasoning.strip():
        reasoning = "Model response was incomplete; fields were repaired automatically."

    repaired = dict(obj)
    repaired.update(
        aiRiskAssessment=risk.value,
        confidence=_capped(_coerce_confidence(obj.get("confidence"))),
        reasoning=reasoning,
    )
    if not isinstance(obj.get("displacementPrediction"), Mapping):
        repaired["displacementPrediction"] = {}
    try:
        draft = AnalysisDraft.from_dict(repaired)
    except (KeyError, TypeError, ValueError, OverflowError) as e:
        logger.debug("Object repair failed: %s", e)
        return None
    return ParseOutcome(ParseStatus.REPAIRED, draft, tuple(errors) + ("fields repaired",))


def _extract_from_text(raw: str) -> Optional[ParseOutcome]:
    risk = _first_risk_word(raw)
    if risk is None:
        return None
    text = _THINK_RE.sub("", raw).strip() or raw.strip()
    reasoning = text[:MAX_REPAIRED_REASONING] + ("..." if len(text) > MAX_REPAIRED_REASONING else "")
    draft = AnalysisDraft(
        ai_risk_assessment=risk,
        confidence=_capped(_confidence_in_text(raw)),
        reasoning=reasoning,
        key_findings=("AI analysis completed with limited parsing",),
        displacement_prediction=DisplacementPrediction(
            primary_triggers=("Multiple factors",),
            likely_destinations=("Regional destinations",),
        ),
        early_warning=EarlyWarning(emerging_concerns=("Data parsing issues",)),
        data_quality_assessment=DataQualityAssessment(gaps=("AI response parsing",)),
    )
    return ParseOutcome(
        ParseStatus.REPAIRED, draft,
        ("response was not valid JSON", "risk level extracted from text"),
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def parse_ai_response(raw: str) -> ParseOutcome:
    obj = extract_json_object(raw)
    if obj is not None:
        errors = validation_errors(obj)
        if not errors:
            try:
                return ParseOutcome(ParseStatus.VALID, AnalysisDraft.from_dict(obj))
            except (KeyError, TypeError, ValueError, OverflowError) as e:
                errors = [f"schema error: {e}"]
        logger.warning("AI response failed validation: %s", "; ".join(errors))
        outcome = _repair_object(obj, raw, errors)
        if outcome is not None:
            return outcome

    outcome = _extract_from_text(raw or "")
    if outcome is not None:
        return outcome
    return ParseOutcome(ParseStatus.FAILED, warnings=("no risk assessment found in response",))
