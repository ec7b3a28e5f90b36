"""Pydantic schemas for governed content and the approval pipeline."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from evidence_core.db.enums import (
    ApprovalResult,
    ApprovalStage,
    ContentStatus,
    ContentVisibility,
    LangCode,
    PipelineState,
)
from evidence_core.schemas.common import BaseResponse

# =============================================================================
# Request Schemas
# =============================================================================


class ClaimCreate(BaseModel):
    """A claim and what it cites."""

    claim_text: str = Field(min_length=1)
    lang: LangCode = LangCode.EN
    source_id: UUID | None = None
    observation_id: UUID | None = None
    document_id: UUID | None = None
    page_ref: str | None = Field(default=None, max_length=50)
    url: str | None = Field(default=None, max_length=2000)
    extracted_quote: str | None = None


class ContentCreate(BaseModel):
    """Create a draft content item."""

    content_type: str = Field(min_length=1, max_length=100)
    title_en: str | None = Field(default=None, max_length=500)
    body_en: str | None = None
    title_ar: str | None = Field(default=None, max_length=500)
    body_ar: str | None = None
    visibility: ContentVisibility = ContentVisibility.PUBLIC
    created_by: str | None = None
    claims: list[ClaimCreate] = Field(default_factory=list)


class LifecycleRequest(BaseModel):
    actor: str | None = None
    reason: str | None = None


class ManualOutcomeRequest(BaseModel):
    """Human decision for a stage held as NEEDS_HUMAN."""

    result: ApprovalResult
    decided_by: str = Field(min_length=1)
    notes: str | None = None


class UniquenessCheckCreate(BaseModel):
    similarity_score: float = Field(ge=0.0, le=1.0)
    compared_against: list[str] | None = None
    checker: str | None = None


# =============================================================================
# Response Schemas
# =============================================================================


class ClaimResponse(ClaimCreate):
    id: UUID

    model_config = ConfigDict(from_attributes=True)


class ContentResponse(BaseResponse):
    """Schema for content item response."""

    content_type: str
    title_en: str | None = None
    body_en: str | None = None
    title_ar: str | None = None
    body_ar: str | None = None
    visibility: ContentVisibility
    status: ContentStatus
    review_round: int
    evidence_set_hash: str | None = None
    published_at: datetime | None = None
    created_by: str | None = None
    evidence: list[ClaimResponse] = Field(default_factory=list)


class AgentRunResponse(BaseModel):
    """One stage evaluation."""

    id: UUID
    content_item_id: UUID
    stage: ApprovalStage
    attempt: int
    review_round: int
    result: ApprovalResult
    score: float | None = None
    output: dict[str, Any] | None = None
    is_manual: bool
    decided_by: str | None = None
    notes: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class StageStatusResponse(BaseModel):
    """Where a content item stands in the pipeline."""

    content_item_id: UUID
    item_status: ContentStatus
    stage: ApprovalStage | None = None
    state: PipelineState
    latest_result: ApprovalResult | None = None

    model_config = ConfigDict(from_attributes=True)


class UniquenessCheckResponse(BaseResponse):
    content_item_id: UUID
    similarity_score: float
    compared_against: list[str] | None = None
    checker: str | None = None
