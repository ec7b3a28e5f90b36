"""Pydantic schemas for the source registry and approval policies."""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from evidence_core.db.enums import Frequency, SourceStatus, SourceTier
from evidence_core.schemas.common import BaseResponse

# =============================================================================
# Sources
# =============================================================================


class SourceCreate(BaseModel):
    """Request to register a source."""

    src_id: str = Field(min_length=1, max_length=50, description="Stable external identifier, e.g. SRC-001")
    name_en: str = Field(min_length=1, max_length=500, description="English name")
    name_ar: str | None = Field(default=None, max_length=500, description="Arabic name")
    tier: SourceTier = Field(default=SourceTier.UNKNOWN, description="Reliability tier")
    cadence: Frequency | None = Field(default=None, description="Nominal update cadence")
    url: str | None = Field(default=None, max_length=1000)
    description: str | None = None


class SourceResponse(BaseResponse):
    """Schema for source response."""

    src_id: str
    name_en: str
    name_ar: str | None = None
    tier: SourceTier
    status: SourceStatus
    active: bool
    cadence: Frequency | None = None
    url: str | None = None
    description: str | None = None
    updated_at: datetime


class SourceTierUpdate(BaseModel):
    """Request to change a source's tier."""

    tier: SourceTier
    reason: str | None = None


class SourceStatusUpdate(BaseModel):
    """Request to change a source's operating status."""

    status: SourceStatus
    reason: str | None = None


class DeactivateRequest(BaseModel):
    reason: str | None = None


# =============================================================================
# Approval Policies
# =============================================================================


class PolicyUpsert(BaseModel):
    """Create or update the approval policy of a content type."""

    approval_mode: Literal["AUTOMATED", "HUMAN_FINAL"] | None = None
    min_citations: int | None = Field(default=None, ge=0)
    min_evidence_coverage: float | None = Field(default=None, ge=0.0, le=1.0)
    max_similarity_score: float | None = Field(default=None, ge=0.0, le=1.0)
    max_variance_flag: float | None = Field(default=None, ge=0.0)
    rules: dict[str, Any] | None = Field(
        default=None,
        description='Extra rules, e.g. {"skippable_stages": ["AR_COPY"], "banned_terms": ["..."]}',
    )
    reason: str | None = None

    def thresholds(self) -> dict[str, Any]:
        """Threshold fields that were set on the request."""
        return self.model_dump(
            include={"min_citations", "min_evidence_coverage", "max_similarity_score", "max_variance_flag"},
            exclude_none=True,
        )


class PolicyResponse(BaseModel):
    """Effective approval policy of a content type."""

    content_type: str
    approval_mode: str
    min_citations: int
    min_evidence_coverage: float
    max_similarity_score: float
    max_variance_flag: float
    rules: dict[str, Any] | None = None

    model_config = ConfigDict(from_attributes=True)


class AuditLogResponse(BaseResponse):
    """One stewardship or lifecycle audit row."""

    table_name: str
    record_id: UUID
    action: str
    actor: str | None = None
    old_data: dict[str, Any] | None = None
    new_data: dict[str, Any] | None = None
    reason: str | None = None
