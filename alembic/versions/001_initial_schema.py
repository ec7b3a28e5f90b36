"""Initial schema - create all evidence and governance tables.

Revision ID: 001_initial_schema
Revises:
Create Date: 2024-06-01

This migration creates the complete engine schema:
- sources: Registry of evidence providers
- ingestion_runs, raw_objects: Ingestion attempts and captured artifacts
- series, observations: The versioned temporal observation store
- content_items, content_evidence: Governed content and its claims
- agents, agent_runs, approval_policies: The approval pipeline
- uniqueness_checks, screening_events: Standards and Safety stage inputs
- provenance_ledger_entries, provenance_refs: The lineage log
- contradictions, contradiction_observations, contradiction_resolutions
- audit_logs: Stewardship and lifecycle change tracking

It also creates:
- ENUM types for every controlled vocabulary
- The partial unique index allowing one OPEN contradiction per implicated set
- All indexes for point-in-time and lineage lookups
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ENUMS: dict[str, tuple[str, ...]] = {
    "regimetag": ("NATIONAL_UNIFIED", "IRG_ADEN", "DFA_SANAA", "MIXED", "NOT_APPLICABLE"),
    "sourcetier": ("T1", "T2", "T3", "UNKNOWN"),
    "sourcestatus": ("ACTIVE", "INACTIVE", "PENDING_REVIEW", "NEEDS_KEY", "BLOCKED", "DEPRECATED"),
    "frequency": ("DAILY", "WEEKLY", "MONTHLY", "QUARTERLY", "ANNUAL", "IRREGULAR"),
    "valuekind": ("NUMERIC", "TEXT", "JSON"),
    "ingestionrunstatus": ("RUNNING", "SUCCESS", "FAILED", "PARTIAL"),
    "ledgeraction": ("INGEST", "NORMALIZE", "TRANSFORM", "AGGREGATE", "DERIVE", "VALIDATE", "PUBLISH"),
    "contradictionstatus": ("OPEN", "RESOLVED", "DISMISSED"),
    "contentstatus": ("DRAFT", "UNDER_REVIEW", "PUBLISHED", "RETRACTED", "ARCHIVED"),
    "contentvisibility": ("PUBLIC", "PREMIUM", "INTERNAL"),
    "langcode": ("EN", "AR"),
    "approvalstage": (
        "DRAFTING",
        "EVIDENCE",
        "CONSISTENCY",
        "SAFETY",
        "AR_COPY",
        "EN_COPY",
        "STANDARDS",
        "FINAL_APPROVAL",
    ),
    "approvalresult": ("PASS", "FAIL", "NEEDS_HUMAN", "SKIPPED"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _jsonb() -> postgresql.JSONB:
    return postgresql.JSONB(astext_type=sa.Text())


def _id() -> sa.Column:
    return sa.Column("id", sa.UUID(), nullable=False, comment="UUID7 primary key")


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)


def upgrade() -> None:
    """Create all tables, enums, indexes, and constraints."""

    # ==========================================================================
    # Create ENUM types
    # ==========================================================================
    for name in ENUMS:
        _enum(name).create(op.get_bind(), checkfirst=True)

    # ==========================================================================
    # Registry and ingestion
    # ==========================================================================

    # --------------------------------------------------------------------------
    # sources table
    # --------------------------------------------------------------------------
    op.create_table(
        "sources",
        _id(),
        sa.Column("src_id", sa.String(length=50), nullable=False, comment="Stable external identifier (SRC-001 etc.)"),
        sa.Column("name_en", sa.String(length=500), nullable=False, comment="English display name"),
        sa.Column("name_ar", sa.String(length=500), nullable=True, comment="Arabic display name"),
        sa.Column("tier", _enum("sourcetier"), nullable=False, comment="Reliability tier"),
        sa.Column("status", _enum("sourcestatus"), nullable=False, comment="Operating status"),
        sa.Column("active", sa.Boolean(), nullable=False, comment="False once the source is deactivated"),
        sa.Column("cadence", _enum("frequency"), nullable=True, comment="Nominal publication cadence"),
        sa.Column("url", sa.String(length=1000), nullable=True, comment="Landing page of the provider"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("extra_data", _jsonb(), nullable=True, comment="Free-form registry metadata"),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name="pk_sources"),
        sa.UniqueConstraint("src_id", name="uq_sources_src_id"),
    )
    op.create_index("ix_sources_tier_status", "sources", ["tier", "status"], unique=False)

    # --------------------------------------------------------------------------
    # ingestion_runs table
    # --------------------------------------------------------------------------
    op.create_table(
        "ingestion_runs",
        _id(),
        sa.Column("source_id", sa.UUID(), nullable=False, comment="The source this run pulls from"),
        sa.Column("status", _enum("ingestionrunstatus"), nullable=False, comment="Current run state"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, comment="When the attempt began"),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True, comment="When the attempt was sealed"),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("rows_ingested", sa.Integer(), nullable=True, comment="Observations produced by this run"),
        sa.Column("objects_written", sa.Integer(), nullable=False, comment="Raw objects captured by this run"),
        sa.Column("error_summary", sa.Text(), nullable=True, comment="Error detail if the run failed"),
        sa.Column("error_context", _jsonb(), nullable=True, comment="Diagnostic details"),
        sa.Column("http_status", sa.Integer(), nullable=True),
        sa.Column("metrics", _jsonb(), nullable=True, comment="Fetcher-reported metrics"),
        sa.Column("run_context", _jsonb(), nullable=True, comment="Parameters the run was started with"),
        sa.ForeignKeyConstraint(
            ["source_id"], ["sources.id"], name="fk_ingestion_runs_source_id_sources", ondelete="RESTRICT"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_ingestion_runs"),
    )
    op.create_index("ix_ingestion_runs_source_id", "ingestion_runs", ["source_id"], unique=False)
    op.create_index(
        "ix_ingestion_runs_source_started",
        "ingestion_runs",
        ["source_id", sa.text("started_at DESC")],
        unique=False,
    )
    op.create_index("ix_ingestion_runs_status_started", "ingestion_runs", ["status", "started_at"], unique=False)

    # --------------------------------------------------------------------------
    # raw_objects table (append-only)
    # --------------------------------------------------------------------------
    op.create_table(
        "raw_objects",
        _id(),
        sa.Column("ingestion_run_id", sa.UUID(), nullable=False, comment="The run that captured this object"),
        sa.Column("sha256", sa.String(length=64), nullable=False, comment="SHA256 of the raw bytes"),
        sa.Column("storage_uri", sa.String(length=1000), nullable=False, comment="Blob location"),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("kind", sa.String(length=50), nullable=False, comment="Content kind (json, csv, pdf, html, ...)"),
        sa.Column("content_type", sa.String(length=200), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(
            ["ingestion_run_id"],
            ["ingestion_runs.id"],
            name="fk_raw_objects_ingestion_run_id_ingestion_runs",
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_raw_objects"),
        sa.UniqueConstraint("ingestion_run_id", "sha256", name="uq_raw_objects_run_sha256"),
    )
    op.create_index("ix_raw_objects_ingestion_run_id", "raw_objects", ["ingestion_run_id"], unique=False)
    op.create_index("ix_raw_objects_sha256", "raw_objects", ["sha256"], unique=False)

    # ==========================================================================
    # Temporal observation store
    # ==========================================================================

    # --------------------------------------------------------------------------
    # series table
    # --------------------------------------------------------------------------
    op.create_table(
        "series",
        _id(),
        sa.Column("indicator_code", sa.String(length=100), nullable=False, comment="Indicator identifier"),
        sa.Column("geo_code", sa.String(length=50), nullable=False, comment="Geography code"),
        sa.Column("regime", _enum("regimetag"), nullable=False, comment="Administrative regime tag"),
        sa.Column("source_id", sa.UUID(), nullable=False, comment="Publishing source"),
        sa.Column("external_series_code", sa.String(length=200), nullable=False, comment="Source-side series code"),
        sa.Column("frequency", _enum("frequency"), nullable=False),
        sa.Column("value_kind", _enum("valuekind"), nullable=False),
        sa.Column("unit", sa.String(length=50), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("extra_data", _jsonb(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["source_id"], ["sources.id"], name="fk_series_source_id_sources", ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id", name="pk_series"),
        sa.UniqueConstraint(
            "indicator_code",
            "geo_code",
            "regime",
            "source_id",
            "external_series_code",
            name="uq_series_identity",
        ),
    )
    op.create_index("ix_series_source_id", "series", ["source_id"], unique=False)
    op.create_index("ix_series_indicator_geo", "series", ["indicator_code", "geo_code"], unique=False)

    # --------------------------------------------------------------------------
    # observations table (append-only)
    # --------------------------------------------------------------------------
    op.create_table(
        "observations",
        _id(),
        sa.Column("series_id", sa.UUID(), nullable=False, comment="Owning series"),
        sa.Column("obs_date", sa.Date(), nullable=False, comment="Date the value describes"),
        sa.Column("vintage_date", sa.Date(), nullable=False, comment="Date the value was known to be true"),
        sa.Column(
            "revision_no",
            sa.Integer(),
            nullable=False,
            comment="Supersession counter within (series, obs_date, vintage_date)",
        ),
        sa.Column("value_numeric", sa.Numeric(precision=28, scale=8), nullable=True),
        sa.Column("value_text", sa.Text(), nullable=True),
        sa.Column("value_json", _jsonb(), nullable=True),
        sa.Column("source_id", sa.UUID(), nullable=False, comment="Cited source"),
        sa.Column("ingestion_run_id", sa.UUID(), nullable=False, comment="Cited ingestion run"),
        sa.Column("period_start", sa.Date(), nullable=True),
        sa.Column("period_end", sa.Date(), nullable=True),
        sa.Column("is_estimate", sa.Boolean(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["series_id"], ["series.id"], name="fk_observations_series_id_series", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["source_id"], ["sources.id"], name="fk_observations_source_id_sources", ondelete="RESTRICT"
        ),
        sa.ForeignKeyConstraint(
            ["ingestion_run_id"],
            ["ingestion_runs.id"],
            name="fk_observations_ingestion_run_id_ingestion_runs",
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_observations"),
        sa.UniqueConstraint(
            "series_id",
            "obs_date",
            "vintage_date",
            "revision_no",
            name="uq_observations_version_key",
        ),
    )
    op.create_index("ix_observations_ingestion_run_id", "observations", ["ingestion_run_id"], unique=False)
    op.create_index(
        "ix_observations_asof",
        "observations",
        ["series_id", "obs_date", sa.text("vintage_date DESC"), sa.text("revision_no DESC")],
        unique=False,
    )

    # ==========================================================================
    # Governed content and approval pipeline
    # ==========================================================================

    # --------------------------------------------------------------------------
    # content_items table
    # --------------------------------------------------------------------------
    op.create_table(
        "content_items",
        _id(),
        sa.Column("content_type", sa.String(length=100), nullable=False, comment="Approval policy key"),
        sa.Column("title_en", sa.String(length=500), nullable=True),
        sa.Column("title_ar", sa.String(length=500), nullable=True),
        sa.Column("body_en", sa.Text(), nullable=True),
        sa.Column("body_ar", sa.Text(), nullable=True),
        sa.Column("visibility", _enum("contentvisibility"), nullable=False),
        sa.Column("status", _enum("contentstatus"), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=True),
        sa.Column("period_end", sa.Date(), nullable=True),
        sa.Column(
            "evidence_set_hash",
            sa.String(length=64),
            nullable=True,
            comment="SHA256 of the cited evidence set at publish time",
        ),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(length=100), nullable=True),
        sa.Column("review_round", sa.Integer(), nullable=False, comment="Incremented on every submission for review"),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name="pk_content_items"),
    )
    op.create_index("ix_content_items_content_type", "content_items", ["content_type"], unique=False)
    op.create_index("ix_content_items_status", "content_items", ["status"], unique=False)
    op.create_index("ix_content_items_type_status", "content_items", ["content_type", "status"], unique=False)

    # --------------------------------------------------------------------------
    # content_evidence table
    # --------------------------------------------------------------------------
    op.create_table(
        "content_evidence",
        _id(),
        sa.Column("content_item_id", sa.UUID(), nullable=False),
        sa.Column("claim_text", sa.Text(), nullable=False),
        sa.Column("lang", _enum("langcode"), nullable=False),
        sa.Column("source_id", sa.UUID(), nullable=True),
        sa.Column("observation_id", sa.UUID(), nullable=True),
        sa.Column("document_id", sa.UUID(), nullable=True, comment="Document id owned by the document collaborator"),
        sa.Column("page_ref", sa.String(length=50), nullable=True),
        sa.Column("url", sa.String(length=2000), nullable=True),
        sa.Column("extracted_quote", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(
            ["content_item_id"],
            ["content_items.id"],
            name="fk_content_evidence_content_item_id_content_items",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["source_id"], ["sources.id"], name="fk_content_evidence_source_id_sources", ondelete="RESTRICT"
        ),
        sa.ForeignKeyConstraint(
            ["observation_id"],
            ["observations.id"],
            name="fk_content_evidence_observation_id_observations",
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_content_evidence"),
    )
    op.create_index("ix_content_evidence_content_item_id", "content_evidence", ["content_item_id"], unique=False)
    op.create_index("ix_content_evidence_observation_id", "content_evidence", ["observation_id"], unique=False)

    # --------------------------------------------------------------------------
    # agents table
    # --------------------------------------------------------------------------
    op.create_table(
        "agents",
        _id(),
        sa.Column("agent_key", sa.String(length=100), nullable=False),
        sa.Column("stage", _enum("approvalstage"), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name="pk_agents"),
        sa.UniqueConstraint("agent_key", name="uq_agents_agent_key"),
        sa.UniqueConstraint("stage", name="uq_agents_stage"),
    )

    # --------------------------------------------------------------------------
    # agent_runs table (append-only)
    # --------------------------------------------------------------------------
    op.create_table(
        "agent_runs",
        _id(),
        sa.Column("content_item_id", sa.UUID(), nullable=False),
        sa.Column("agent_id", sa.UUID(), nullable=False),
        sa.Column("stage", _enum("approvalstage"), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False),
        sa.Column(
            "review_round",
            sa.Integer(),
            nullable=False,
            comment="Content item review round the run belongs to",
        ),
        sa.Column("result", _enum("approvalresult"), nullable=False),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("output", _jsonb(), nullable=True),
        sa.Column("is_manual", sa.Boolean(), nullable=False),
        sa.Column("decided_by", sa.String(length=100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(
            ["content_item_id"],
            ["content_items.id"],
            name="fk_agent_runs_content_item_id_content_items",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(["agent_id"], ["agents.id"], name="fk_agent_runs_agent_id_agents", ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id", name="pk_agent_runs"),
        sa.UniqueConstraint("content_item_id", "agent_id", "attempt", name="uq_agent_runs_item_agent_attempt"),
    )
    op.create_index(
        "ix_agent_runs_item_stage",
        "agent_runs",
        ["content_item_id", "stage", "created_at"],
        unique=False,
    )

    # --------------------------------------------------------------------------
    # approval_policies table
    # --------------------------------------------------------------------------
    op.create_table(
        "approval_policies",
        _id(),
        sa.Column("content_type", sa.String(length=100), nullable=False),
        sa.Column("approval_mode", sa.String(length=30), nullable=False),
        sa.Column("min_citations", sa.Integer(), nullable=False),
        sa.Column("min_evidence_coverage", sa.Float(), nullable=False),
        sa.Column("max_similarity_score", sa.Float(), nullable=False),
        sa.Column("max_variance_flag", sa.Float(), nullable=False),
        sa.Column("rules", _jsonb(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name="pk_approval_policies"),
        sa.UniqueConstraint("content_type", name="uq_approval_policies_content_type"),
    )

    # --------------------------------------------------------------------------
    # uniqueness_checks / screening_events tables (append-only)
    # --------------------------------------------------------------------------
    op.create_table(
        "uniqueness_checks",
        _id(),
        sa.Column("content_item_id", sa.UUID(), nullable=False),
        sa.Column("similarity_score", sa.Float(), nullable=False),
        sa.Column("compared_against", _jsonb(), nullable=True),
        sa.Column("checker", sa.String(length=100), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(
            ["content_item_id"],
            ["content_items.id"],
            name="fk_uniqueness_checks_content_item_id_content_items",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_uniqueness_checks"),
    )
    op.create_index("ix_uniqueness_checks_content_item_id", "uniqueness_checks", ["content_item_id"], unique=False)

    op.create_table(
        "screening_events",
        _id(),
        sa.Column("content_item_id", sa.UUID(), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("passed", sa.Boolean(), nullable=True),
        sa.Column("risk_score", sa.Float(), nullable=True),
        sa.Column("matches", _jsonb(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(
            ["content_item_id"],
            ["content_items.id"],
            name="fk_screening_events_content_item_id_content_items",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_screening_events"),
    )
    op.create_index("ix_screening_events_content_item_id", "screening_events", ["content_item_id"], unique=False)

    # ==========================================================================
    # Provenance ledger
    # ==========================================================================

    op.create_table(
        "provenance_ledger_entries",
        _id(),
        sa.Column("action", _enum("ledgeraction"), nullable=False, comment="Transformation kind"),
        sa.Column("input_refs", _jsonb(), nullable=False, comment="Consumed references grouped by kind"),
        sa.Column("output_refs", _jsonb(), nullable=False, comment="Produced references grouped by kind"),
        sa.Column("formula", sa.Text(), nullable=True),
        sa.Column("parameters", _jsonb(), nullable=True),
        sa.Column("ingestion_run_id", sa.UUID(), nullable=True),
        sa.Column("agent_run_id", sa.UUID(), nullable=True),
        sa.Column("recorded_by", sa.String(length=100), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(
            ["ingestion_run_id"],
            ["ingestion_runs.id"],
            name="fk_provenance_ledger_entries_ingestion_run_id_ingestion_runs",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["agent_run_id"],
            ["agent_runs.id"],
            name="fk_provenance_ledger_entries_agent_run_id_agent_runs",
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_provenance_ledger_entries"),
    )
    op.create_index(
        "ix_provenance_ledger_entries_ingestion_run_id",
        "provenance_ledger_entries",
        ["ingestion_run_id"],
        unique=False,
    )
    op.create_index(
        "ix_provenance_ledger_entries_agent_run_id",
        "provenance_ledger_entries",
        ["agent_run_id"],
        unique=False,
    )
    op.create_index(
        "ix_provenance_ledger_entries_order",
        "provenance_ledger_entries",
        ["created_at", "id"],
        unique=False,
    )
    op.create_index("ix_provenance_ledger_entries_action", "provenance_ledger_entries", ["action"], unique=False)

    op.create_table(
        "provenance_refs",
        _id(),
        sa.Column("entry_id", sa.UUID(), nullable=False),
        sa.Column("direction", sa.String(length=3), nullable=False, comment="'in' or 'out'"),
        sa.Column("ref_kind", sa.String(length=40), nullable=False),
        sa.Column("ref_id", sa.UUID(), nullable=False),
        sa.ForeignKeyConstraint(
            ["entry_id"],
            ["provenance_ledger_entries.id"],
            name="fk_provenance_refs_entry_id_provenance_ledger_entries",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_provenance_refs"),
    )
    op.create_index("ix_provenance_refs_entry_id", "provenance_refs", ["entry_id"], unique=False)
    op.create_index(
        "ix_provenance_refs_lookup",
        "provenance_refs",
        ["ref_kind", "ref_id", "direction"],
        unique=False,
    )

    # ==========================================================================
    # Contradictions
    # ==========================================================================

    op.create_table(
        "contradictions",
        _id(),
        sa.Column("indicator_code", sa.String(length=100), nullable=False),
        sa.Column("geo_code", sa.String(length=50), nullable=False),
        sa.Column("obs_date", sa.Date(), nullable=False),
        sa.Column("observation_ids", _jsonb(), nullable=False, comment="Implicated observation ids"),
        sa.Column("series_ids", _jsonb(), nullable=False, comment="Series of the implicated observations"),
        sa.Column(
            "implicated_key",
            sa.String(length=64),
            nullable=False,
            comment="SHA256 of the sorted implicated observation ids",
        ),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("detected_by", sa.String(length=100), nullable=False),
        sa.Column("status", _enum("contradictionstatus"), nullable=False),
        sa.Column("max_deviation", sa.Float(), nullable=True),
        sa.Column("threshold", sa.Float(), nullable=True),
        sa.Column("resolution_summary", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(length=100), nullable=True),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id", name="pk_contradictions"),
    )
    # One OPEN ticket per implicated observation set
    op.create_index(
        "uq_contradictions_open_implicated_key",
        "contradictions",
        ["implicated_key"],
        unique=True,
        postgresql_where=sa.text("status = 'OPEN'"),
    )
    op.create_index(
        "ix_contradictions_quantity",
        "contradictions",
        ["indicator_code", "geo_code", "obs_date"],
        unique=False,
    )
    op.create_index("ix_contradictions_status", "contradictions", ["status"], unique=False)

    op.create_table(
        "contradiction_observations",
        _id(),
        sa.Column("contradiction_id", sa.UUID(), nullable=False),
        sa.Column("observation_id", sa.UUID(), nullable=False),
        sa.Column("series_id", sa.UUID(), nullable=False),
        sa.ForeignKeyConstraint(
            ["contradiction_id"],
            ["contradictions.id"],
            name="fk_contradiction_observations_contradiction_id_contradictions",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["observation_id"],
            ["observations.id"],
            name="fk_contradiction_observations_observation_id_observations",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["series_id"],
            ["series.id"],
            name="fk_contradiction_observations_series_id_series",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_contradiction_observations"),
        sa.UniqueConstraint("contradiction_id", "observation_id", name="uq_contradiction_observations_pair"),
    )
    op.create_index(
        "ix_contradiction_observations_contradiction_id",
        "contradiction_observations",
        ["contradiction_id"],
        unique=False,
    )
    op.create_index(
        "ix_contradiction_observations_series_id",
        "contradiction_observations",
        ["series_id"],
        unique=False,
    )

    op.create_table(
        "contradiction_resolutions",
        _id(),
        sa.Column("contradiction_id", sa.UUID(), nullable=False),
        sa.Column("outcome", _enum("contradictionstatus"), nullable=False),
        sa.Column("resolution_text", sa.Text(), nullable=False),
        sa.Column("resolved_by", sa.String(length=100), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(
            ["contradiction_id"],
            ["contradictions.id"],
            name="fk_contradiction_resolutions_contradiction_id_contradictions",
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_contradiction_resolutions"),
    )
    op.create_index(
        "ix_contradiction_resolutions_contradiction_id",
        "contradiction_resolutions",
        ["contradiction_id"],
        unique=False,
    )

    # ==========================================================================
    # Audit log
    # ==========================================================================

    op.create_table(
        "audit_logs",
        _id(),
        sa.Column("table_name", sa.String(length=100), nullable=False, comment="Name of the affected table"),
        sa.Column("record_id", sa.UUID(), nullable=False, comment="UUID of the affected record"),
        sa.Column("action", sa.String(length=20), nullable=False, comment="CREATE, UPDATE, DEACTIVATE, STATUS_CHANGE"),
        sa.Column("actor", sa.String(length=100), nullable=True, comment="Who performed the action"),
        sa.Column("old_data", _jsonb(), nullable=True, comment="Record state before the action"),
        sa.Column("new_data", _jsonb(), nullable=True, comment="Record state after the action"),
        sa.Column("reason", sa.Text(), nullable=True, comment="Optional context for why this action occurred"),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_audit_logs"),
    )
    op.create_index("ix_audit_logs_table_record", "audit_logs", ["table_name", "record_id"], unique=False)
    op.create_index("ix_audit_logs_created_at", "audit_logs", [sa.text("created_at DESC")], unique=False)


def downgrade() -> None:
    """Drop all tables and enums in reverse order."""

    # Drop tables in reverse dependency order
    op.drop_table("audit_logs")
    op.drop_table("contradiction_resolutions")
    op.drop_table("contradiction_observations")
    op.drop_table("contradictions")
    op.drop_table("provenance_refs")
    op.drop_table("provenance_ledger_entries")
    op.drop_table("screening_events")
    op.drop_table("uniqueness_checks")
    op.drop_table("approval_policies")
    op.drop_table("agent_runs")
    op.drop_table("agents")
    op.drop_table("content_evidence")
    op.drop_table("content_items")
    op.drop_table("observations")
    op.drop_table("series")
    op.drop_table("raw_objects")
    op.drop_table("ingestion_runs")
    op.drop_table("sources")

    # Drop enum types
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
