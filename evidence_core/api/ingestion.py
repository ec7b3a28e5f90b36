"""Ingestion run and raw evidence endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from evidence_core.core.logging import get_logger
from evidence_core.db import get_db
from evidence_core.schemas import (
    IngestionRunResponse,
    RawObjectCreate,
    RawObjectResponse,
    RunCancelRequest,
    RunCompleteRequest,
    RunStartRequest,
)
from evidence_core.services import IngestionTracker

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/runs",
    response_model=IngestionRunResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start an ingestion run",
)
async def start_run(body: RunStartRequest, db: AsyncSession = Depends(get_db)) -> IngestionRunResponse:
    run = await IngestionTracker(db).start_run(body.source_id, run_context=body.run_context)
    await db.commit()
    return IngestionRunResponse.model_validate(run)


@router.get("/runs/{run_id}", response_model=IngestionRunResponse, summary="Get ingestion run")
async def get_run(run_id: UUID, db: AsyncSession = Depends(get_db)) -> IngestionRunResponse:
    return IngestionRunResponse.model_validate(await IngestionTracker(db).get_run(run_id))


@router.post(
    "/runs/{run_id}/complete",
    response_model=IngestionRunResponse,
    summary="Seal an ingestion run",
    description="Completing a run twice is rejected with 409.",
)
async def complete_run(
    run_id: UUID,
    body: RunCompleteRequest,
    db: AsyncSession = Depends(get_db),
) -> IngestionRunResponse:
    run = await IngestionTracker(db).complete_run(
        run_id,
        body.status,
        metrics=body.metrics,
        rows_ingested=body.rows_ingested,
        error_summary=body.error_summary,
        http_status=body.http_status,
        retry_count=body.retry_count,
    )
    await db.commit()
    return IngestionRunResponse.model_validate(run)


@router.post("/runs/{run_id}/cancel", response_model=IngestionRunResponse, summary="Cancel an ingestion run")
async def cancel_run(run_id: UUID, body: RunCancelRequest, db: AsyncSession = Depends(get_db)) -> IngestionRunResponse:
    run = await IngestionTracker(db).cancel_run(run_id, body.reason, cancelled_by=body.cancelled_by)
    await db.commit()
    return IngestionRunResponse.model_validate(run)


@router.post(
    "/runs/{run_id}/raw-objects",
    response_model=RawObjectResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Store a raw object",
    description="Content-addressed and idempotent per (run, sha256).",
)
async def store_raw_object(
    run_id: UUID,
    body: RawObjectCreate,
    db: AsyncSession = Depends(get_db),
) -> RawObjectResponse:
    raw = await IngestionTracker(db).store_raw_object(
        run_id, body.content, body.kind, content_type=body.content_type
    )
    await db.commit()
    return RawObjectResponse.model_validate(raw)


@router.get("/runs/{run_id}/raw-objects", response_model=list[RawObjectResponse], summary="List raw objects")
async def list_raw_objects(run_id: UUID, db: AsyncSession = Depends(get_db)) -> list[RawObjectResponse]:
    tracker = IngestionTracker(db)
    await tracker.get_run(run_id)
    return [RawObjectResponse.model_validate(r) for r in await tracker.list_raw_objects(run_id)]
