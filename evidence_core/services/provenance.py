"""
Provenance ledger service.

Records transformations (ingest -> normalize -> aggregate -> derive ->
validate -> publish) and walks lineage backward from any reference.

Features:
- References are typed ("kind:uuid"); unknown kinds or ids are rejected
  with InvalidReference before anything is written
- Entries are append-only and totally ordered by (created_at, id)
- Lineage traversal is a lazy, iterative depth-first walk guarded by a
  visited set; re-entering an entry on the current path issues a
  LineageCycleDetected warning and the walk continues with the acyclic
  prefix

Reference kinds:
    source, ingestion_run, raw_object, series, observation, contradiction,
    contradiction_resolution, content_item, agent_run, ledger_entry,
    document (owned by the document collaborator, not validated)
"""

import uuid
import warnings
from collections.abc import AsyncIterator, Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from evidence_core.core.exceptions import InvalidReference, LineageCycleDetected, NotFound
from evidence_core.core.logging import get_logger
from evidence_core.db.enums import LedgerAction
from evidence_core.db.models import (
    AgentRun,
    ContentItem,
    Contradiction,
    ContradictionResolution,
    IngestionRun,
    Observation,
    ProvenanceLedgerEntry,
    ProvenanceRef,
    RawObject,
    Series,
    Source,
)

logger = get_logger(__name__)


# =============================================================================
# References
# =============================================================================

# Kinds whose ids must exist in this database
REF_MODELS: dict[str, type] = {
    "source": Source,
    "ingestion_run": IngestionRun,
    "raw_object": RawObject,
    "series": Series,
    "observation": Observation,
    "contradiction": Contradiction,
    "contradiction_resolution": ContradictionResolution,
    "content_item": ContentItem,
    "agent_run": AgentRun,
    "ledger_entry": ProvenanceLedgerEntry,
}

# Kinds owned by collaborators; accepted as-is
EXTERNAL_REF_KINDS = frozenset({"document"})


@dataclass(frozen=True)
class Ref:
    """A typed reference to an entity, rendered as "kind:uuid"."""

    kind: str
    id: uuid.UUID

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"

    @classmethod
    def parse(cls, value: "str | Ref") -> "Ref":
        """
        Parse "kind:uuid" into a Ref.

        Raises:
            InvalidReference: If the string is malformed
        """
        if isinstance(value, Ref):
            return value
        kind, sep, raw_id = str(value).partition(":")
        if not sep or not kind:
            raise InvalidReference(f"Malformed reference {value!r}; expected 'kind:uuid'")
        try:
            return cls(kind=kind, id=uuid.UUID(raw_id))
        except ValueError as e:
            raise InvalidReference(f"Malformed reference {value!r}: {e}") from e

    @classmethod
    def of(cls, kind: str, ids: Iterable[uuid.UUID]) -> list["Ref"]:
        """Build refs of one kind from a list of ids."""
        return [cls(kind=kind, id=i) for i in ids]


def group_refs(refs: Iterable[Ref]) -> dict[str, list[str]]:
    """Group refs by kind as {kind: [sorted unique ids]} for JSON storage."""
    grouped: dict[str, set[str]] = {}
    for ref in refs:
        grouped.setdefault(ref.kind, set()).add(str(ref.id))
    return {kind: sorted(ids) for kind, ids in sorted(grouped.items())}


def ungroup_refs(grouped: dict[str, list[str]] | None) -> list[Ref]:
    """Inverse of group_refs."""
    return [Ref(kind=kind, id=uuid.UUID(i)) for kind, ids in (grouped or {}).items() for i in ids]


# =============================================================================
# Ledger Service
# =============================================================================


class ProvenanceLedger:
    """
    Append-only lineage log.

    Usage:
        ledger = ProvenanceLedger(db)
        entry = await ledger.record(
            LedgerAction.DERIVE,
            inputs=[Ref("observation", a.id), Ref("observation", b.id)],
            outputs=[Ref("observation", derived.id)],
            formula="a / b",
        )
        async for entry in ledger.trace_lineage(f"observation:{derived.id}"):
            ...
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        action: LedgerAction,
        inputs: Iterable[Ref | str],
        outputs: Iterable[Ref | str],
        formula: str | None = None,
        parameters: dict[str, Any] | None = None,
        ingestion_run_id: uuid.UUID | None = None,
        agent_run_id: uuid.UUID | None = None,
        recorded_by: str | None = None,
    ) -> ProvenanceLedgerEntry:
        """
        Append one transformation to the ledger.

        Args:
            action: Transformation kind
            inputs: Consumed references
            outputs: Produced references
            formula: Optional formula/method description
            parameters: Optional transformation parameters
            ingestion_run_id: Optional run context
            agent_run_id: Optional agent run context
            recorded_by: Actor label

        Returns:
            The flushed ledger entry

        Raises:
            InvalidReference: If any reference is malformed, of an unknown
                kind, or names a nonexistent entity
        """
        input_refs = [Ref.parse(r) for r in inputs]
        output_refs = [Ref.parse(r) for r in outputs]

        # Pending rows of the caller must be visible to the existence checks
        await self.db.flush()

        context_refs = []
        if ingestion_run_id is not None:
            context_refs.append(Ref("ingestion_run", ingestion_run_id))
        if agent_run_id is not None:
            context_refs.append(Ref("agent_run", agent_run_id))
        await self._validate([*input_refs, *output_refs, *context_refs])

        entry = ProvenanceLedgerEntry(
            action=action,
            input_refs=group_refs(input_refs),
            output_refs=group_refs(output_refs),
            formula=formula,
            parameters=parameters,
            ingestion_run_id=ingestion_run_id,
            agent_run_id=agent_run_id,
            recorded_by=recorded_by,
        )
        self.db.add(entry)
        await self.db.flush()

        for direction, refs in (("in", input_refs), ("out", output_refs)):
            for ref in set(refs):
                self.db.add(
                    ProvenanceRef(entry_id=entry.id, direction=direction, ref_kind=ref.kind, ref_id=ref.id)
                )
        await self.db.flush()

        logger.debug(
            "Ledger entry recorded",
            entry_id=str(entry.id),
            action=action.value,
            inputs=len(input_refs),
            outputs=len(output_refs),
        )
        return entry

    async def _validate(self, refs: list[Ref]) -> None:
        """Check every reference names an existing entity of its kind."""
        by_kind: dict[str, set[uuid.UUID]] = {}
        for ref in refs:
            if ref.kind in EXTERNAL_REF_KINDS:
                continue
            if ref.kind not in REF_MODELS:
                raise InvalidReference(f"Unknown reference kind {ref.kind!r}")
            by_kind.setdefault(ref.kind, set()).add(ref.id)

        for kind, ids in by_kind.items():
            model = REF_MODELS[kind]
            result = await self.db.execute(select(model.id).where(model.id.in_(ids)))
            found = set(result.scalars().all())
            missing = ids - found
            if missing:
                missing_refs = ", ".join(sorted(f"{kind}:{m}" for m in missing))
                raise InvalidReference(f"Nonexistent reference(s): {missing_refs}")

    async def get_entry(self, entry_id: uuid.UUID) -> ProvenanceLedgerEntry:
        """
        Get a ledger entry by id.

        Raises:
            NotFound: If no such entry exists
        """
        entry = await self.db.get(ProvenanceLedgerEntry, entry_id)
        if entry is None:
            raise NotFound("ledger_entry", entry_id)
        return entry

    async def producers_of(self, refs: Iterable[Ref]) -> list[ProvenanceLedgerEntry]:
        """Entries whose output_refs contain any of the given refs, in ledger order."""
        refs = list(refs)
        if not refs:
            return []
        producing = select(ProvenanceRef.entry_id).where(
            ProvenanceRef.direction == "out",
            ProvenanceRef.ref_id.in_({r.id for r in refs}),
            ProvenanceRef.ref_kind.in_({r.kind for r in refs}),
        )
        result = await self.db.execute(
            select(ProvenanceLedgerEntry)
            .where(ProvenanceLedgerEntry.id.in_(producing))
            .order_by(ProvenanceLedgerEntry.created_at, ProvenanceLedgerEntry.id)
        )
        return list(result.scalars().all())

    async def trace_lineage(self, ref: Ref | str) -> AsyncIterator[ProvenanceLedgerEntry]:
        """
        Walk backward from a reference through every producing entry.

        Yields entries in depth-first pre-order: the producers of `ref`
        first (in ledger order), each followed by its own ancestry. Each
        entry is yielded at most once. Every call re-walks the ledger.

        Issues LineageCycleDetected (a UserWarning) when an entry is reached
        again while it is still on the current path; that edge is skipped.
        """
        start = Ref.parse(ref)

        visited: set[uuid.UUID] = set()
        path: list[uuid.UUID] = []
        on_path: set[uuid.UUID] = set()
        # One iterator per depth; stack[i + 1] holds the producers of path[i]
        stack: list[Iterator[ProvenanceLedgerEntry]] = [iter(await self.producers_of([start]))]

        while stack:
            entry = next(stack[-1], None)
            if entry is None:
                stack.pop()
                if path:
                    on_path.discard(path.pop())
                continue

            if entry.id in on_path:
                logger.warning("Lineage cycle detected", entry_id=str(entry.id), start=str(start))
                warnings.warn(LineageCycleDetected(entry.id, str(start)), stacklevel=2)
                continue
            if entry.id in visited:
                continue

            visited.add(entry.id)
            yield entry

            path.append(entry.id)
            on_path.add(entry.id)
            stack.append(iter(await self.producers_of(ungroup_refs(entry.input_refs))))

    async def lineage(self, ref: Ref | str) -> list[ProvenanceLedgerEntry]:
        """Collect trace_lineage into a list."""
        return [entry async for entry in self.trace_lineage(ref)]
