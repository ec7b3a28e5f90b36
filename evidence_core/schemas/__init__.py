"""Pydantic schemas for API request/response models."""

from evidence_core.schemas.approvals import (
    AgentRunResponse,
    ClaimCreate,
    ClaimResponse,
    ContentCreate,
    ContentResponse,
    LifecycleRequest,
    ManualOutcomeRequest,
    StageStatusResponse,
    UniquenessCheckCreate,
    UniquenessCheckResponse,
)
from evidence_core.schemas.common import (
    ERROR_RESPONSES,
    BaseResponse,
    ErrorResponse,
    PaginatedResponse,
    PaginationParams,
)
from evidence_core.schemas.contradictions import (
    ContradictionResponse,
    DetectRequest,
    ResolveRequest,
    SweepRequest,
    SweepResponse,
)
from evidence_core.schemas.ingestion import (
    IngestionRunResponse,
    RawObjectCreate,
    RawObjectResponse,
    RunCancelRequest,
    RunCompleteRequest,
    RunStartRequest,
)
from evidence_core.schemas.lineage import (
    LedgerEntryCreate,
    LedgerEntryResponse,
    LineageResponse,
)
from evidence_core.schemas.observations import (
    GapsResponse,
    ObservationCreate,
    ObservationResponse,
    SeriesCreate,
    SeriesResponse,
)
from evidence_core.schemas.registry import (
    AuditLogResponse,
    DeactivateRequest,
    PolicyResponse,
    PolicyUpsert,
    SourceCreate,
    SourceResponse,
    SourceStatusUpdate,
    SourceTierUpdate,
)

__all__ = [
    # Common
    "ERROR_RESPONSES",
    "BaseResponse",
    "ErrorResponse",
    "PaginatedResponse",
    "PaginationParams",
    # Registry
    "SourceCreate",
    "SourceResponse",
    "SourceTierUpdate",
    "SourceStatusUpdate",
    "DeactivateRequest",
    "PolicyUpsert",
    "PolicyResponse",
    "AuditLogResponse",
    # Ingestion
    "RunStartRequest",
    "RunCompleteRequest",
    "RunCancelRequest",
    "RawObjectCreate",
    "IngestionRunResponse",
    "RawObjectResponse",
    # Observations
    "SeriesCreate",
    "SeriesResponse",
    "ObservationCreate",
    "ObservationResponse",
    "GapsResponse",
    # Lineage
    "LedgerEntryCreate",
    "LedgerEntryResponse",
    "LineageResponse",
    # Contradictions
    "DetectRequest",
    "SweepRequest",
    "ResolveRequest",
    "ContradictionResponse",
    "SweepResponse",
    # Approvals
    "ContentCreate",
    "ClaimCreate",
    "ClaimResponse",
    "ContentResponse",
    "LifecycleRequest",
    "ManualOutcomeRequest",
    "UniquenessCheckCreate",
    "UniquenessCheckResponse",
    "AgentRunResponse",
    "StageStatusResponse",
]
