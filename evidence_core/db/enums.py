"""
Controlled vocabulary enums for the evidence and governance engine.

This module defines the closed sets used by:
- The source registry (tiers, operating status, cadence)
- Ingestion runs and the temporal observation store (regimes, value kinds)
- The provenance ledger (transformation actions)
- Contradiction tickets
- Governed content and the eight-stage approval pipeline

Enum values equal their member names so the database stores the same
strings the API accepts.
"""

from enum import Enum


class RegimeTag(str, Enum):
    """
    Administrative authority a data point pertains to.

    Series of different regimes are never merged or aggregated
    automatically: two regimes reporting the same indicator for the same
    geo/date are two different series.
    """

    NATIONAL_UNIFIED = "NATIONAL_UNIFIED"
    IRG_ADEN = "IRG_ADEN"
    DFA_SANAA = "DFA_SANAA"
    MIXED = "MIXED"
    NOT_APPLICABLE = "NOT_APPLICABLE"

    @classmethod
    def values(cls) -> list[str]:
        """Return list of all valid regime tags."""
        return [member.value for member in cls]


class SourceTier(str, Enum):
    """Reliability tier of an evidence provider."""

    T1 = "T1"
    T2 = "T2"
    T3 = "T3"
    UNKNOWN = "UNKNOWN"

    @property
    def is_authoritative(self) -> bool:
        """Tiers whose disagreements open contradiction tickets."""
        return self in {SourceTier.T1, SourceTier.T2}


class SourceStatus(str, Enum):
    """Operating status of a registered source."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    PENDING_REVIEW = "PENDING_REVIEW"
    NEEDS_KEY = "NEEDS_KEY"
    BLOCKED = "BLOCKED"
    DEPRECATED = "DEPRECATED"


class Frequency(str, Enum):
    """Nominal cadence of a source or series."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUAL = "ANNUAL"
    IRREGULAR = "IRREGULAR"


class ValueKind(str, Enum):
    """Storage kind of an observation payload."""

    NUMERIC = "NUMERIC"
    TEXT = "TEXT"
    JSON = "JSON"


class IngestionRunStatus(str, Enum):
    """
    Status values for ingestion runs.

    Lifecycle::

        RUNNING -> SUCCESS
                |-> PARTIAL
                |-> FAILED   (also: cancellation, storage exhaustion)
    """

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PARTIAL = "PARTIAL"

    @property
    def is_terminal(self) -> bool:
        """Check if this status seals a run."""
        return self != IngestionRunStatus.RUNNING


class LedgerAction(str, Enum):
    """Kinds of transformation recorded in the provenance ledger."""

    INGEST = "INGEST"
    NORMALIZE = "NORMALIZE"
    TRANSFORM = "TRANSFORM"
    AGGREGATE = "AGGREGATE"
    DERIVE = "DERIVE"
    VALIDATE = "VALIDATE"
    PUBLISH = "PUBLISH"


class ContradictionStatus(str, Enum):
    """Status of a contradiction ticket."""

    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"


class ContentStatus(str, Enum):
    """
    Lifecycle status of a governed content item.

    Lifecycle::

        DRAFT -> UNDER_REVIEW -> PUBLISHED -> RETRACTED
          ^          |                |            |
          +----------+                +-> ARCHIVED <+
    """

    DRAFT = "DRAFT"
    UNDER_REVIEW = "UNDER_REVIEW"
    PUBLISHED = "PUBLISHED"
    RETRACTED = "RETRACTED"
    ARCHIVED = "ARCHIVED"


class ContentVisibility(str, Enum):
    """Visibility tier of a content item."""

    PUBLIC = "PUBLIC"
    PREMIUM = "PREMIUM"
    INTERNAL = "INTERNAL"


class LangCode(str, Enum):
    """Languages content is authored in."""

    EN = "EN"
    AR = "AR"


class ApprovalStage(str, Enum):
    """
    The eight approval stages, in pipeline order.

    Stages are strictly sequential; `ApprovalStage.ordered()` is the
    canonical order and `position` the zero-based index into it.
    """

    DRAFTING = "DRAFTING"
    EVIDENCE = "EVIDENCE"
    CONSISTENCY = "CONSISTENCY"
    SAFETY = "SAFETY"
    AR_COPY = "AR_COPY"
    EN_COPY = "EN_COPY"
    STANDARDS = "STANDARDS"
    FINAL_APPROVAL = "FINAL_APPROVAL"

    @classmethod
    def ordered(cls) -> list["ApprovalStage"]:
        """Return stages in pipeline order."""
        return list(cls)

    @property
    def position(self) -> int:
        """Zero-based position in the pipeline."""
        return ApprovalStage.ordered().index(self)

    @property
    def predecessors(self) -> list["ApprovalStage"]:
        """Stages that must be satisfied before this one may run."""
        return ApprovalStage.ordered()[: self.position]

    @property
    def agent_key(self) -> str:
        """Registry key of the agent that evaluates this stage."""
        return _STAGE_AGENT_KEYS[self]


_STAGE_AGENT_KEYS: dict[ApprovalStage, str] = {
    ApprovalStage.DRAFTING: "AGENT_1_DRAFTING",
    ApprovalStage.EVIDENCE: "AGENT_2_EVIDENCE",
    ApprovalStage.CONSISTENCY: "AGENT_3_CONSISTENCY",
    ApprovalStage.SAFETY: "AGENT_4_SAFETY",
    ApprovalStage.AR_COPY: "AGENT_5_AR_EDITOR",
    ApprovalStage.EN_COPY: "AGENT_6_EN_EDITOR",
    ApprovalStage.STANDARDS: "AGENT_7_STANDARDS",
    ApprovalStage.FINAL_APPROVAL: "AGENT_8_FINAL_APPROVAL",
}


class ApprovalResult(str, Enum):
    """Outcome of one stage evaluation."""

    PASS = "PASS"
    FAIL = "FAIL"
    NEEDS_HUMAN = "NEEDS_HUMAN"
    SKIPPED = "SKIPPED"


class PipelineState(str, Enum):
    """
    Derived state of a content item in the approval pipeline.

    IN_STAGE means the current stage is ready to be evaluated; the other
    values are the pipeline's holding and terminal states.
    """

    NOT_SUBMITTED = "NOT_SUBMITTED"
    IN_STAGE = "IN_STAGE"
    NEEDS_HUMAN = "NEEDS_HUMAN"
    BLOCKED = "BLOCKED"
    PUBLISHED = "PUBLISHED"
    CLOSED = "CLOSED"
