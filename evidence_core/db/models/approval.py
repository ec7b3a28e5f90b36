"""
Approval pipeline models.

This module contains:
- Agent: registry of the eight pipeline agents
- AgentRun: one stage evaluation of one content item (append-only)
- ApprovalPolicy: per content-type thresholds and rules
- UniquenessCheck: similarity results supplied by the similarity collaborator
- ScreeningEvent: audit of each compliance screening call

AgentRuns reference content items without being owned by them, so the
review history outlives later edits of the item.
"""

import uuid

from sqlalchemy import Boolean, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from evidence_core.db.base import Base, CreatedAtMixin, JSONType, TimestampMixin, UUIDMixin, append_only
from evidence_core.db.enums import ApprovalResult, ApprovalStage


class Agent(UUIDMixin, TimestampMixin, Base):
    """
    A registered pipeline agent.

    Attributes:
        agent_key: Stable key ("AGENT_2_EVIDENCE")
        stage: The stage this agent evaluates
        name: Display name
        description: What the agent checks
        active: Whether the agent may run
    """

    agent_key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    stage: Mapped[ApprovalStage] = mapped_column(nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Agent(key={self.agent_key}, stage={self.stage.value})>"


@append_only
class AgentRun(UUIDMixin, CreatedAtMixin, Base):
    """
    One stage's evaluation of one content item.

    Attributes:
        content_item_id: Evaluated content item
        agent_id: Evaluating agent
        stage: Evaluated stage
        attempt: 1-based attempt counter per (content item, agent)
        review_round: Review round of the content item at evaluation time
        result: PASS, FAIL, NEEDS_HUMAN or SKIPPED
        score: Optional numeric score of the check
        output: Structured output of the check (reasons, measurements)
        is_manual: True for human-recorded outcomes
        decided_by: Human actor for manual outcomes
        notes: Free text

    Constraints:
        - (content_item_id, agent_id, attempt) is unique
        - History is never overwritten: re-running a stage inserts a new row
    """

    content_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("content_items.id", ondelete="RESTRICT"),
        nullable=False,
    )

    agent_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("agents.id", ondelete="RESTRICT"),
        nullable=False,
    )

    stage: Mapped[ApprovalStage] = mapped_column(nullable=False)

    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    review_round: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Content item review round the run belongs to",
    )

    result: Mapped[ApprovalResult] = mapped_column(nullable=False)

    score: Mapped[float | None] = mapped_column(Float, nullable=True)

    output: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    is_manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    decided_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "content_item_id",
            "agent_id",
            "attempt",
            name="uq_agent_runs_item_agent_attempt",
        ),
    )

    def __repr__(self) -> str:
        return f"<AgentRun(item={self.content_item_id}, stage={self.stage.value}, attempt={self.attempt}, result={self.result.value})>"


class ApprovalPolicy(UUIDMixin, TimestampMixin, Base):
    """
    Per content-type thresholds consumed by the pipeline.

    Attributes:
        content_type: Policy key
        approval_mode: "AUTOMATED" or "HUMAN_FINAL"
        min_citations: Minimum claim count for the Evidence stage
        min_evidence_coverage: Minimum cited-claim fraction (0-1)
        max_similarity_score: Uniqueness ceiling for the Standards stage
        max_variance_flag: Relative deviation that flags a contradiction
        rules: Extra rules, e.g. {"skippable_stages": ["AR_COPY"],
               "banned_terms": ["..."]}

    Policies are read, never mutated, by the pipeline; stewardship edits them.
    """

    content_type: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    approval_mode: Mapped[str] = mapped_column(String(30), nullable=False, default="AUTOMATED")

    min_citations: Mapped[int] = mapped_column(Integer, nullable=False)

    min_evidence_coverage: Mapped[float] = mapped_column(Float, nullable=False)

    max_similarity_score: Mapped[float] = mapped_column(Float, nullable=False)

    max_variance_flag: Mapped[float] = mapped_column(Float, nullable=False)

    rules: Mapped[dict | None] = mapped_column(JSONType, nullable=True, default=dict)

    def __repr__(self) -> str:
        return f"<ApprovalPolicy(content_type={self.content_type}, mode={self.approval_mode})>"

    @property
    def skippable_stages(self) -> set[ApprovalStage]:
        """Stages for which a SKIPPED result counts as satisfied."""
        return {ApprovalStage(name) for name in (self.rules or {}).get("skippable_stages", [])}

    @property
    def banned_terms(self) -> list[str]:
        return list((self.rules or {}).get("banned_terms", []))


@append_only
class UniquenessCheck(UUIDMixin, CreatedAtMixin, Base):
    """
    A similarity measurement of a content item against prior content.

    Attributes:
        content_item_id: Checked content item
        similarity_score: Highest similarity found (0-1)
        compared_against: Ids of the closest prior items
        checker: Label of the similarity collaborator
    """

    content_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("content_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    similarity_score: Mapped[float] = mapped_column(Float, nullable=False)

    compared_against: Mapped[list | None] = mapped_column(JSONType, nullable=True)

    checker: Mapped[str | None] = mapped_column(String(100), nullable=True)


@append_only
class ScreeningEvent(UUIDMixin, CreatedAtMixin, Base):
    """
    One compliance screening call made by the Safety stage.

    Attributes:
        content_item_id: Screened content item
        provider: Compliance client name
        passed: Collaborator verdict (NULL when the call failed)
        risk_score: Highest risk score returned
        matches: Raw matches returned
        error: Error detail when the call failed
    """

    content_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("content_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    provider: Mapped[str] = mapped_column(String(50), nullable=False)

    passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    risk_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    matches: Mapped[list | None] = mapped_column(JSONType, nullable=True)

    error: Mapped[str | None] = mapped_column(Text, nullable=True)


# === Indexes ===
# Latest run per stage lookups
Index("ix_agent_runs_item_stage", AgentRun.content_item_id, AgentRun.stage, AgentRun.created_at)
