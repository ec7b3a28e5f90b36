"""
Persistence layer: engine, session helpers, vocabulary enums and models.

    from evidence_core.db import get_db_context, transaction
    from evidence_core.db import Series, Observation, RegimeTag
"""

from evidence_core.db.base import (
    AsyncSessionLocal,
    Base,
    CreatedAtMixin,
    JSONType,
    TimestampMixin,
    UUIDMixin,
    append_only,
    dispose_engine,
    engine,
    metadata,
)
from evidence_core.db.enums import (
    ApprovalResult,
    ApprovalStage,
    ContentStatus,
    ContentVisibility,
    ContradictionStatus,
    Frequency,
    IngestionRunStatus,
    LangCode,
    LedgerAction,
    PipelineState,
    RegimeTag,
    SourceStatus,
    SourceTier,
    ValueKind,
)
from evidence_core.db.models import (
    Agent,
    AgentRun,
    ApprovalPolicy,
    AuditAction,
    AuditLog,
    ContentEvidence,
    ContentItem,
    Contradiction,
    ContradictionObservation,
    ContradictionResolution,
    IngestionRun,
    Observation,
    ProvenanceLedgerEntry,
    ProvenanceRef,
    RawObject,
    ScreeningEvent,
    Series,
    Source,
    UniquenessCheck,
)
from evidence_core.db.session import get_db, get_db_context, transaction

__all__ = [
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "CreatedAtMixin",
    "JSONType",
    "append_only",
    "RegimeTag",
    "SourceTier",
    "SourceStatus",
    "Frequency",
    "ValueKind",
    "IngestionRunStatus",
    "LedgerAction",
    "ContradictionStatus",
    "ContentStatus",
    "ContentVisibility",
    "LangCode",
    "ApprovalStage",
    "ApprovalResult",
    "PipelineState",
    "Source",
    "IngestionRun",
    "RawObject",
    "Series",
    "Observation",
    "ProvenanceLedgerEntry",
    "ProvenanceRef",
    "Contradiction",
    "ContradictionObservation",
    "ContradictionResolution",
    "ContentItem",
    "ContentEvidence",
    "Agent",
    "AgentRun",
    "ApprovalPolicy",
    "UniquenessCheck",
    "ScreeningEvent",
    "AuditLog",
    "AuditAction",
    "engine",
    "AsyncSessionLocal",
    "metadata",
    "get_db",
    "get_db_context",
    "transaction",
    "dispose_engine",
]
