"""
Services package - Business logic and external API clients.

This package contains:
- Ingestion tracking and the raw evidence store
- Temporal observation store (append-only revisions, as-of queries)
- Provenance ledger and lineage tracing
- Contradiction detection and resolution
- Approval pipeline for governed content
- Compliance screening client
- Stewardship of the source registry and approval policies
"""

from evidence_core.services.approval import (
    STAGE_VALIDATORS,
    ApprovalPipeline,
    StageContext,
    StageOutcome,
    StageStatus,
    is_satisfied,
)
from evidence_core.services.compliance import (
    BaseComplianceClient,
    ComplianceProvider,
    HttpComplianceClient,
    MockComplianceClient,
    ScreeningMatch,
    ScreeningResult,
    get_compliance_client,
)
from evidence_core.services.contradictions import ContradictionService, relative_deviation
from evidence_core.services.evidence_store import BlobStore, IngestionTracker, LocalBlobStore
from evidence_core.services.observations import ObservationStore, frequency_grid
from evidence_core.services.provenance import ProvenanceLedger, Ref
from evidence_core.services.stewardship import StewardshipService, default_policy

__all__ = [
    # Ingestion
    "IngestionTracker",
    "BlobStore",
    "LocalBlobStore",
    # Observations
    "ObservationStore",
    "frequency_grid",
    # Provenance
    "ProvenanceLedger",
    "Ref",
    # Contradictions
    "ContradictionService",
    "relative_deviation",
    # Approval Pipeline
    "ApprovalPipeline",
    "STAGE_VALIDATORS",
    "StageContext",
    "StageOutcome",
    "StageStatus",
    "is_satisfied",
    # Compliance
    "BaseComplianceClient",
    "HttpComplianceClient",
    "MockComplianceClient",
    "ComplianceProvider",
    "ScreeningMatch",
    "ScreeningResult",
    "get_compliance_client",
    # Stewardship
    "StewardshipService",
    "default_policy",
]
