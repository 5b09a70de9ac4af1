"""
normalizer.py — Map raw per-domain payloads onto CanonicalSourceRecord.

Each upstream client speaks its own vocabulary:

    conflict   {conflictLevel, confidence, intensityScore, threatIndicators,
                recentEvents, trends}
    economic   {displacementRisk: {riskLevel, confidence, riskScore,
                riskFactors}, analysis: {overallStability, trends}}
    climate    {displacementRisk: {riskLevel, confidence, estimatedAffected,
                factors}, activeHazards, climateTrends}
    news       {crisisLevel, confidence, urgencyScore, keyIndicators,
                sentiment, mediaAttention, breakingNews}

The normalizers never raise.  Anything that is not a usable payload
(None, an exception object, a non-mapping, a mapping missing the domain's
anchor field) becomes an ``available=False`` record.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Dict, List, Mapping, Optional

from crisiswatch.app.pipeline.models import (
    CanonicalSourceRecord,
    Domain,
    RiskLevel,
    parse_risk_level,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------

def _level(value: Any, domain: Domain) -> RiskLevel:
    if value is None or value == "":
        return RiskLevel.LOW
    level = parse_risk_level(value)
    if level is None:
        logger.warning(
            "Unrecognised %s risk level %r, treating as LOW", domain.value, value,
            extra={"domain": domain.value},
        )
        return RiskLevel.LOW
    return level


def _confidence(value: Any) -> float:
    try:
        conf = float(value)
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_CONFIDENCE
    if math.isnan(conf):
        return DEFAULT_CONFIDENCE
    if conf > 1.0 and conf <= 100.0:
        conf = conf / 100.0  # percentage
    return max(0.0, min(1.0, conf))


def _score(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    if math.isnan(score) or math.isinf(score):
        return 0.0
    return max(0.0, score)


def _texts(value: Any) -> tuple:
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, (list, tuple)):
        return ()
    out = []
    for item in value:
        if isinstance(item, str):
            out.append(item)
        elif isinstance(item, Mapping):
            text = item.get("factor") or item.get("indicator") or item.get("description")
            if text:
                out.append(str(text))
        elif item is not None:
            out.append(str(item))
    return tuple(out)


def _mapping(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _conflict_trends(value: Any) -> Dict[str, Any]:
    """Absent or non-mapping trends read as stable; an empty mapping stays empty."""
    return dict(value) if isinstance(value, Mapping) else {"stable": True}


# ---------------------------------------------------------------------------
# Per-domain normalizers
# ---------------------------------------------------------------------------

def normalize_conflict(payload: Any) -> CanonicalSourceRecord:
    """Conflict payloads are usable whenever they are a non-empty mapping."""
    if not isinstance(payload, Mapping) or not payload:
        return CanonicalSourceRecord.unavailable(Domain.CONFLICT)

    return CanonicalSourceRecord(
        domain=Domain.CONFLICT,
        risk_level=_level(payload.get("conflictLevel"), Domain.CONFLICT),
        confidence=_confidence(payload.get("confidence", DEFAULT_CONFIDENCE)),
        score=_score(payload.get("intensityScore")),
        indicators=_texts(payload.get("threatIndicators")),
        trends=_conflict_trends(payload.get("trends")),
        details={"recentEvents": _list(payload.get("recentEvents"))},
    )


def normalize_economic(payload: Any) -> CanonicalSourceRecord:
    if not isinstance(payload, Mapping) or not isinstance(payload.get("displacementRisk"), Mapping):
        return CanonicalSourceRecord.unavailable(Domain.ECONOMIC)

    risk = payload["displacementRisk"]
    analysis = _mapping(payload.get("analysis"))
    return CanonicalSourceRecord(
        domain=Domain.ECONOMIC,
        risk_level=_level(risk.get("riskLevel"), Domain.ECONOMIC),
        confidence=_confidence(risk.get("confidence", DEFAULT_CONFIDENCE)),
        score=_score(risk.get("riskScore")),
        indicators=_texts(risk.get("riskFactors")),
        trends=_mapping(analysis.get("trends")),
        details={"stability": str(analysis.get("overallStability") or "UNKNOWN").upper()},
    )


def normalize_climate(payload: Any) -> CanonicalSourceRecord:
    if not isinstance(payload, Mapping) or not isinstance(payload.get("displacementRisk"), Mapping):
        return CanonicalSourceRecord.unavailable(Domain.CLIMATE)

    risk = payload["displacementRisk"]
    hazards = [h for h in _list(payload.get("activeHazards")) if isinstance(h, Mapping)]
    return CanonicalSourceRecord(
        domain=Domain.CLIMATE,
        risk_level=_level(risk.get("riskLevel"), Domain.CLIMATE),
        confidence=_confidence(risk.get("confidence", DEFAULT_CONFIDENCE)),
        score=_score(risk.get("estimatedAffected")),
        indicators=_texts(risk.get("factors")),
        trends=_mapping(payload.get("climateTrends")),
        details={"hazards": [dict(h) for h in hazards]},
    )


def normalize_news(payload: Any) -> CanonicalSourceRecord:
    if not isinstance(payload, Mapping) or payload.get("crisisLevel") is None:
        return CanonicalSourceRecord.unavailable(Domain.NEWS)

    return CanonicalSourceRecord(
        domain=Domain.NEWS,
        risk_level=_level(payload.get("crisisLevel"), Domain.NEWS),
        confidence=_confidence(payload.get("confidence", DEFAULT_CONFIDENCE)),
        score=_score(payload.get("urgencyScore")),
        indicators=_texts(payload.get("keyIndicators")),
        details={
            "sentiment": str(payload.get("sentiment") or "neutral").lower(),
            "mediaAttention": str(payload.get("mediaAttention") or "low").lower(),
            "breakingNews": _list(payload.get("breakingNews")),
        },
    )


NORMALIZERS: Dict[Domain, Callable[[Any], CanonicalSourceRecord]] = {
    Domain.CONFLICT: normalize_conflict,
    Domain.ECONOMIC: normalize_economic,
    Domain.CLIMATE: normalize_climate,
    Domain.NEWS: normalize_news,
}


def normalize_source(domain: Domain | str, payload: Optional[Any]) -> CanonicalSourceRecord:
    """
    Normalise one domain's payload.

    ``payload`` may be the fetched data, ``None``, or the exception raised
    by the fetch; the latter two both yield an unavailable record.
    """
    domain = Domain(domain)
    if isinstance(payload, BaseException):
        logger.warning(
            "%s source failed: %s", domain.value, payload,
            extra={"domain": domain.value},
        )
        return CanonicalSourceRecord.unavailable(domain)
    try:
        return NORMALIZERS[domain](payload)
    except (TypeError, ValueError, AttributeError, OverflowError) as e:
        logger.warning(
            "Malformed %s payload (%s), marking unavailable", domain.value, e,
            extra={"domain": domain.value},
        )
        return CanonicalSourceRecord.unavailable(domain)
