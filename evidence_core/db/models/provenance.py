"""
Provenance ledger models.

The ledger is an append-only log of transformations from raw evidence to
published output. Each entry names an action and two sets of references
(inputs and outputs); references are "kind:uuid" strings grouped by kind.

ProvenanceRef denormalizes those references into one row each, so lineage
lookups ("which entries produced observation X?") are an indexed equality
query on every database rather than a JSON containment search.
"""

import uuid

from sqlalchemy import ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from evidence_core.db.base import Base, CreatedAtMixin, JSONType, UUIDMixin, append_only
from evidence_core.db.enums import LedgerAction


@append_only
class ProvenanceLedgerEntry(UUIDMixin, CreatedAtMixin, Base):
    """
    One recorded transformation.

    Attributes:
        id: UUID7 primary key
        action: INGEST, NORMALIZE, TRANSFORM, AGGREGATE, DERIVE, VALIDATE or PUBLISH
        input_refs: {kind: [uuid, ...]} consumed by the transformation
        output_refs: {kind: [uuid, ...]} produced by the transformation
        formula: Optional formula or method description
        parameters: Optional parameters of the transformation
        ingestion_run_id: Run in whose context the entry was recorded
        agent_run_id: Agent run in whose context the entry was recorded
        recorded_by: Actor label (service, agent key or user)
        created_at: Total order of the ledger, ties broken by id

    Example:
        ProvenanceLedgerEntry(
            action=LedgerAction.NORMALIZE,
            input_refs={"ingestion_run": ["0190..."], "raw_object": ["0190..."]},
            output_refs={"observation": ["0190..."]},
        )
    """

    action: Mapped[LedgerAction] = mapped_column(
        nullable=False,
        comment="Transformation kind",
    )

    input_refs: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Consumed references grouped by kind",
    )

    output_refs: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Produced references grouped by kind",
    )

    formula: Mapped[str | None] = mapped_column(Text, nullable=True)

    parameters: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    # === Context ===
    ingestion_run_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ingestion_runs.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    agent_run_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("agent_runs.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    recorded_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<ProvenanceLedgerEntry(id={self.id}, action={self.action.value})>"


@append_only
class ProvenanceRef(UUIDMixin, Base):
    """
    One input or output reference of a ledger entry.

    Attributes:
        entry_id: Owning ledger entry
        direction: "in" or "out"
        ref_kind: Referenced entity kind ("observation", "raw_object", ...)
        ref_id: Referenced entity id
    """

    entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("provenance_ledger_entries.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    direction: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        comment="'in' or 'out'",
    )

    ref_kind: Mapped[str] = mapped_column(String(40), nullable=False)

    ref_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)

    def __repr__(self) -> str:
        return f"<ProvenanceRef({self.direction} {self.ref_kind}:{self.ref_id})>"


# === Indexes ===
# Lineage walks look up producers of a reference
Index("ix_provenance_refs_lookup", ProvenanceRef.ref_kind, ProvenanceRef.ref_id, ProvenanceRef.direction)

Index("ix_provenance_ledger_entries_order", ProvenanceLedgerEntry.created_at, ProvenanceLedgerEntry.id)
Index("ix_provenance_ledger_entries_action", ProvenanceLedgerEntry.action)
