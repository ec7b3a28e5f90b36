"""Pydantic schemas for series and versioned observations."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from evidence_core.db.enums import Frequency, RegimeTag, ValueKind
from evidence_core.schemas.common import BaseResponse

# =============================================================================
# Series
# =============================================================================


class SeriesCreate(BaseModel):
    """Get-or-create a series by its identity."""

    indicator_code: str = Field(min_length=1, max_length=100)
    geo_code: str = Field(min_length=1, max_length=50)
    regime: RegimeTag
    source_id: UUID
    external_series_code: str = Field(default="", max_length=200)
    frequency: Frequency = Frequency.IRREGULAR
    value_kind: ValueKind = ValueKind.NUMERIC
    unit: str | None = Field(default=None, max_length=50)
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class SeriesResponse(BaseResponse):
    """Schema for series response."""

    indicator_code: str
    geo_code: str
    regime: RegimeTag
    source_id: UUID
    external_series_code: str
    frequency: Frequency
    value_kind: ValueKind
    unit: str | None = None
    currency: str | None = None


# =============================================================================
# Observations
# =============================================================================


class ObservationCreate(BaseModel):
    """One versioned observation write."""

    obs_date: date = Field(description="Date the value describes")
    value: Decimal | str | dict[str, Any] | list[Any] | bool | None = Field(
        description="Opaque payload: numeric, text or JSON",
    )
    vintage_date: date = Field(description="Date this version of the value was published")
    source_id: UUID
    run_id: UUID = Field(description="Ingestion run that produced the value")
    raw_object_ids: list[UUID] | None = None
    period_start: date | None = None
    period_end: date | None = None
    is_estimate: bool = False
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    notes: str | None = None

    @model_validator(mode="after")
    def validate_period(self) -> "ObservationCreate":
        if self.period_start and self.period_end and self.period_start > self.period_end:
            raise ValueError("period_start must not be after period_end")
        return self


class ObservationResponse(BaseModel):
    """One stored observation version."""

    id: UUID
    series_id: UUID
    obs_date: date
    vintage_date: date
    revision_no: int
    value: Any = Field(description="Numeric, text or JSON payload")
    source_id: UUID
    ingestion_run_id: UUID
    period_start: date | None = None
    period_end: date | None = None
    is_estimate: bool
    confidence: float | None = None
    notes: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GapsResponse(BaseModel):
    """Grid dates of a series with no observation."""

    series_id: UUID
    frequency: Frequency
    start: date
    end: date
    missing: list[date]
