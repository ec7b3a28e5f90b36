"""
Database models for the evidence and governance engine.

This package contains SQLAlchemy models for:
- Source: Registered evidence providers
- IngestionRun, RawObject: Ingestion attempts and captured artifacts
- Series, Observation: The versioned temporal observation store
- ProvenanceLedgerEntry, ProvenanceRef: The append-only lineage log
- Contradiction, ContradictionObservation, ContradictionResolution
- ContentItem, ContentEvidence: Governed content and its claims
- Agent, AgentRun, ApprovalPolicy, UniquenessCheck, ScreeningEvent
- AuditLog: Stewardship and lifecycle change tracking

Usage:
    from evidence_core.db.models import Series, Observation, ProvenanceLedgerEntry

All models inherit from the base classes in evidence_core.db.base and use:
- UUID7 primary keys (time-sortable, globally unique)
- Timestamp mixins (created_at, updated_at)
- JSON (JSONB on PostgreSQL) for flexible payloads
"""

from evidence_core.db.models.approval import Agent, AgentRun, ApprovalPolicy, ScreeningEvent, UniquenessCheck
from evidence_core.db.models.audit_log import AuditAction, AuditLog
from evidence_core.db.models.content import ContentEvidence, ContentItem, compute_evidence_set_hash
from evidence_core.db.models.contradiction import Contradiction, ContradictionObservation, ContradictionResolution
from evidence_core.db.models.ingestion import IngestionRun, RawObject
from evidence_core.db.models.provenance import ProvenanceLedgerEntry, ProvenanceRef
from evidence_core.db.models.series import Observation, Series
from evidence_core.db.models.source import Source

__all__ = [
    # Registry
    "Source",
    # Ingestion
    "IngestionRun",
    "RawObject",
    # Observation store
    "Series",
    "Observation",
    # Provenance
    "ProvenanceLedgerEntry",
    "ProvenanceRef",
    # Contradictions
    "Contradiction",
    "ContradictionObservation",
    "ContradictionResolution",
    # Content and approval
    "ContentItem",
    "ContentEvidence",
    "compute_evidence_set_hash",
    "Agent",
    "AgentRun",
    "ApprovalPolicy",
    "UniquenessCheck",
    "ScreeningEvent",
    # Audit
    "AuditLog",
    "AuditAction",
]
