"""Pydantic schemas for the provenance ledger."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from evidence_core.db.enums import LedgerAction


class LedgerEntryCreate(BaseModel):
    """
    Append a transformation to the ledger.

    References are "kind:uuid" strings, e.g. "observation:0190f6...".
    """

    action: LedgerAction
    inputs: list[str] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list)
    formula: str | None = None
    parameters: dict[str, Any] | None = None
    ingestion_run_id: UUID | None = None
    agent_run_id: UUID | None = None
    recorded_by: str | None = None


class LedgerEntryResponse(BaseModel):
    """One ledger entry."""

    id: UUID
    action: LedgerAction
    input_refs: dict[str, list[str]]
    output_refs: dict[str, list[str]]
    formula: str | None = None
    parameters: dict[str, Any] | None = None
    ingestion_run_id: UUID | None = None
    agent_run_id: UUID | None = None
    recorded_by: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LineageResponse(BaseModel):
    """Backward lineage of a reference."""

    ref: str
    entries: list[LedgerEntryResponse]
    cycles_detected: int = Field(default=0, description="Cycle edges skipped during traversal")
