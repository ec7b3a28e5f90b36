"""Provenance ledger endpoints."""

import warnings
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from evidence_core.core.exceptions import LineageCycleDetected
from evidence_core.core.logging import get_logger
from evidence_core.db import get_db
from evidence_core.schemas import LedgerEntryCreate, LedgerEntryResponse, LineageResponse
from evidence_core.services import ProvenanceLedger, Ref

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/entries",
    response_model=LedgerEntryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a transformation",
    description="Every reference must name an existing entity; unknown references are rejected with 422.",
)
async def record_entry(body: LedgerEntryCreate, db: AsyncSession = Depends(get_db)) -> LedgerEntryResponse:
    entry = await ProvenanceLedger(db).record(
        body.action,
        inputs=body.inputs,
        outputs=body.outputs,
        formula=body.formula,
        parameters=body.parameters,
        ingestion_run_id=body.ingestion_run_id,
        agent_run_id=body.agent_run_id,
        recorded_by=body.recorded_by,
    )
    await db.commit()
    return LedgerEntryResponse.model_validate(entry)


@router.get("/entries/{entry_id}", response_model=LedgerEntryResponse, summary="Get ledger entry")
async def get_entry(entry_id: UUID, db: AsyncSession = Depends(get_db)) -> LedgerEntryResponse:
    return LedgerEntryResponse.model_validate(await ProvenanceLedger(db).get_entry(entry_id))


@router.get(
    "/{ref}",
    response_model=LineageResponse,
    summary="Trace lineage",
    description='Backward lineage of a "kind:uuid" reference, depth-first, each entry once.',
)
async def trace_lineage(ref: str, db: AsyncSession = Depends(get_db)) -> LineageResponse:
    start = Ref.parse(ref)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", LineageCycleDetected)
        entries = await ProvenanceLedger(db).lineage(start)
    cycles = sum(1 for w in caught if issubclass(w.category, LineageCycleDetected))
    return LineageResponse(
        ref=str(start),
        entries=[LedgerEntryResponse.model_validate(e) for e in entries],
        cycles_detected=cycles,
    )
