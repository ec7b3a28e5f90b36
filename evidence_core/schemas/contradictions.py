"""Pydantic schemas for contradiction tickets."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from evidence_core.db.enums import ContradictionStatus, RegimeTag


class DetectRequest(BaseModel):
    """Run detection for one (indicator, geo, obs_date) group."""

    indicator_code: str
    geo_code: str
    obs_date: date
    as_of: date | None = Field(default=None, description="Compare values known at this date (default: today)")
    threshold: float | None = Field(default=None, ge=0.0, description="Relative deviation that flags a disagreement")
    content_type: str | None = Field(default=None, description="Take the threshold from this content type's policy")
    regime: RegimeTag | None = Field(default=None, description="Restrict comparison to one regime")


class SweepRequest(BaseModel):
    """Run detection over every group with two or more series."""

    as_of: date | None = None
    threshold: float | None = Field(default=None, ge=0.0)
    indicator_code: str | None = None


class ResolveRequest(BaseModel):
    resolution_text: str = Field(min_length=1)
    resolved_by: str = Field(min_length=1)
    dismiss: bool = Field(default=False, description="Close as DISMISSED instead of RESOLVED")


class ContradictionResponse(BaseModel):
    """Schema for contradiction ticket response."""

    id: UUID
    indicator_code: str
    geo_code: str
    obs_date: date
    observation_ids: list[UUID]
    series_ids: list[UUID]
    description: str
    detected_by: str
    status: ContradictionStatus
    max_deviation: float | None = None
    threshold: float | None = None
    resolution_summary: str | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SweepResponse(BaseModel):
    """Tickets opened (or found open) by a sweep."""

    contradictions: list[ContradictionResponse]
    count: int
