"""
Prompt construction for the AI analysis and the response-plan narrative.

The required-field schema is spelled out in the instruction itself so the
model is primed to answer in a fixed structure that ``parsing`` can check.
"""

from __future__ import annotations

import json
from typing import Dict, List, Sequence

from crisiswatch.app.pipeline.models import CrisisAssessment, Domain

ANALYSIS_REQUIRED_FIELDS = ("aiRiskAssessment", "confidence", "reasoning", "displacementPrediction")

SYSTEM_PROMPT = """You are CrisisWatch, an expert humanitarian crisis analyst specialising in \
displacement risk. You receive fused monitoring data from conflict, economic, climate and \
news sources.

Your role:
- Analyse the situation using evidence, not speculation
- Predict displacement patterns and likely destinations
- Assess the risk level and state your confidence honestly
- Give actionable humanitarian recommendations

Output format: respond with a single valid JSON object and nothing else."""

ANALYSIS_SCHEMA = """{
  "aiRiskAssessment": "CRITICAL|HIGH|MEDIUM|LOW",
  "confidence": 0.0-1.0,
  "reasoning": "Explanation of your analysis",
  "keyFindings": ["finding 1", "finding 2", "finding 3"],
  "displacementPrediction": {
    "likelihood": "VERY_HIGH|HIGH|MEDIUM|LOW",
    "timeframe": "1-2 weeks|2-8 weeks|2-6 months|6+ months",
    "estimatedPopulation": number,
    "primaryTriggers": ["trigger1", "trigger2"],
    "likelyDestinations": ["country1", "country2"],
    "displacementType": "emergency_flight|planned_migration|gradual_exodus|internal_displacement"
  },
  "criticalFactors": [
    {"factor": "name", "severity": "CRITICAL|HIGH|MEDIUM", "trend": "escalating|stable|improving", "impact": "description"}
  ],
  "earlyWarning": {
    "immediateThreats": ["threat1"],
    "emergingConcerns": ["concern1"],
    "timeToAction": "hours|days|weeks|months",
    "urgency": "immediate|high|medium|low"
  },
  "recommendations": {
    "immediate": ["action1"],
    "shortTerm": ["action1"],
    "longTerm": ["action1"]
  },
  "dataQualityAssessment": {
    "reliability": "high|medium|low",
    "completeness": "excellent|good|fair|poor",
    "freshness": "current|recent|outdated",
    "gaps": ["gap1"]
  }
}"""


def _pct(value: float) -> str:
    return f"{round(value * 100)}%"


def _source_block(assessment: CrisisAssessment, domain: Domain, title: str) -> List[str]:
    record = assessment.sources[domain]
    lines = [f"### {title}"]
    if not record.available:
        lines.append("- Unavailable for this cycle")
        return lines
    lines += [
        f"- Risk Level: {record.risk_level.value}",
        f"- Confidence: {_pct(record.confidence)}",
        f"- Score: {record.score:g}",
        f"- Indicators: {json.dumps(list(record.indicators))}",
    ]
    if domain is Domain.CONFLICT:
        lines.append(f"- Recent Events: {len(record.details.get('recentEvents', ()))} tracked")
    elif domain is Domain.ECONOMIC:
        lines.append(f"- Economic Stability: {record.details.get('stability', 'UNKNOWN')}")
    elif domain is Domain.CLIMATE:
        lines.append(f"- Active Hazards: {len(record.details.get('hazards', ()))}")
    elif domain is Domain.NEWS:
        lines.append(f"- Media Attention: {record.details.get('mediaAttention', 'low')}")
        lines.append(f"- Breaking News: {len(record.details.get('breakingNews', ()))} items")
    return lines


def build_analysis_prompt(assessment: CrisisAssessment) -> str:
    """Render the full assessment plus the required JSON schema."""
    d = assessment.displacement_risk
    overall_trend = assessment.trends.get("overall")
    lines = [
        f"Analyse this crisis situation for {assessment.region}:",
        "",
        "## CURRENT SITUATION OVERVIEW",
        f"- Overall Risk Level: {assessment.overall_risk.value}",
        f"- Risk Score: {assessment.risk_score:.1f}",
        f"- System Confidence: {_pct(assessment.confidence)}",
        f"- Data Quality: {assessment.data_quality.value}",
        f"- Assessment Time: {assessment.timestamp}",
        f"- Overall Trend: {overall_trend.value if overall_trend else 'unknown'}",
        "",
        "## DATA SOURCE ANALYSIS",
    ]
    lines += _source_block(assessment, Domain.CONFLICT, "CONFLICT INDICATORS")
    lines += _source_block(assessment, Domain.ECONOMIC, "ECONOMIC INDICATORS")
    lines += _source_block(assessment, Domain.CLIMATE, "CLIMATE & DISASTER DATA")
    lines += _source_block(assessment, Domain.NEWS, "NEWS & MEDIA ANALYSIS")
    lines += ["", "## CURRENT RISK FACTORS"]
    lines += [f"- [{f.source}/{f.severity}] {f.factor}" for f in assessment.risk_factors] or ["- none"]
    lines += ["", "## PROTECTIVE FACTORS"]
    lines += [f"- {f}" for f in assessment.protective_factors] or ["- none"]
    lines += [
        "",
        "## DISPLACEMENT PREDICTION (heuristic)",
        f"- Risk Level: {d.level.value}",
        f"- Timeline: {d.timeline_label}",
        f"- Estimated Numbers: {d.estimated_numbers}",
        f"- Primary Causes: {json.dumps(list(d.primary_causes))}",
        f"- Likely Destinations: {json.dumps(list(d.likely_destinations))}",
        "",
        "## ANALYSIS REQUEST",
        "Respond in exactly this JSON format. The fields "
        + ", ".join(ANALYSIS_REQUIRED_FIELDS)
        + " are required:",
        "",
        ANALYSIS_SCHEMA,
    ]
    return "\n".join(lines)


def build_analysis_messages(assessment: CrisisAssessment) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_analysis_prompt(assessment)},
    ]


# ---------------------------------------------------------------------------
# Response-plan narrative
# ---------------------------------------------------------------------------

PLAN_SYSTEM_PROMPT = """You are a humanitarian response planner. You write concise phase \
objectives and activities for displacement response plans. Respond with a single valid JSON \
object and nothing else."""


def build_plan_narrative_messages(
    region: str,
    risk: str,
    population: int,
    phases: Sequence[str],
    triggers: Sequence[str],
) -> List[Dict[str, str]]:
    schema = {
        phase: {"objectives": ["objective1", "objective2"], "activities": ["activity1", "activity2"]}
        for phase in phases
    }
    prompt = "\n".join([
        f"Write a response plan narrative for {region}.",
        f"- Crisis risk: {risk}",
        f"- Target population: {population}",
        f"- Displacement triggers: {json.dumps(list(triggers))}",
        "",
        "For each phase give 2-5 objectives and 2-6 activities. Respond in exactly this JSON format:",
        json.dumps(schema, indent=2),
    ])
    return [
        {"role": "system", "content": PLAN_SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]
