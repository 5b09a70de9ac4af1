"""
Pydantic schemas for the crisis API.

Separated from the route handlers so they are reusable across the codebase
(background workers, tests).  Response bodies are the records' own
``to_dict()`` output, so only request bodies and small envelopes live here.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from crisiswatch.app.pipeline.plan_models import PlanType


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class PlanRequest(BaseModel):
    """Request body for POST /api/v1/crisis/{region}/plan."""
    population: Optional[int] = Field(
        default=None,
        description="Target population; defaults to the analysis estimate, else 10,000",
        examples=[25000],
    )
    plan_type: PlanType = Field(
        default=PlanType.COMPREHENSIVE,
        description="EMERGENCY | COMPREHENSIVE | PREVENTION",
    )
    force_refresh: bool = Field(
        default=False,
        description="Bypass cached assessment and analysis",
    )


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class RegionOut(BaseModel):
    name: str
    code: str
    coordinates: List[float]


class RegionListResponse(BaseModel):
    count: int
    regions: List[RegionOut]
