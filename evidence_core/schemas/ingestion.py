"""Pydantic schemas for ingestion runs and raw objects."""

import base64
import binascii
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from evidence_core.db.enums import IngestionRunStatus

# =============================================================================
# Request Schemas
# =============================================================================


class RunStartRequest(BaseModel):
    """Request to open an ingestion run."""

    source_id: UUID = Field(description="Registered source the run pulls from")
    run_context: dict[str, Any] | None = Field(
        default=None,
        description="Connector-supplied context (endpoint, query window, ...)",
    )


class RunCompleteRequest(BaseModel):
    """Request to seal an ingestion run."""

    status: IngestionRunStatus = Field(description="SUCCESS, PARTIAL or FAILED")
    metrics: dict[str, Any] | None = None
    rows_ingested: int | None = Field(default=None, ge=0)
    error_summary: str | None = None
    http_status: int | None = Field(default=None, ge=100, le=599)
    retry_count: int = Field(default=0, ge=0, description="Retries the fetcher made during this run")


class RunCancelRequest(BaseModel):
    """External cancellation of a running ingestion."""

    reason: str = Field(min_length=1)
    cancelled_by: str | None = None


class RawObjectCreate(BaseModel):
    """A captured artifact, base64-encoded for transport."""

    content_b64: str = Field(description="Base64-encoded artifact bytes")
    kind: str = Field(min_length=1, max_length=50, description="Artifact kind, e.g. json, csv, pdf")
    content_type: str | None = Field(default=None, max_length=100)

    @field_validator("content_b64")
    @classmethod
    def validate_base64(cls, v: str) -> str:
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"content_b64 is not valid base64: {e}") from e
        return v

    @property
    def content(self) -> bytes:
        return base64.b64decode(self.content_b64)


# =============================================================================
# Response Schemas
# =============================================================================


class IngestionRunResponse(BaseModel):
    """Schema for ingestion run response."""

    id: UUID
    source_id: UUID
    status: IngestionRunStatus
    started_at: datetime
    ended_at: datetime | None = None
    retry_count: int
    rows_ingested: int | None = None
    objects_written: int
    error_summary: str | None = None
    http_status: int | None = None
    metrics: dict[str, Any] | None = None

    model_config = ConfigDict(from_attributes=True)


class RawObjectResponse(BaseModel):
    """Schema for raw object response."""

    id: UUID
    ingestion_run_id: UUID
    sha256: str
    storage_uri: str
    size_bytes: int
    kind: str
    content_type: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
